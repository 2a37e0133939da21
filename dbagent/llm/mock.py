"""
Scripted provider for monitoring-run tests.

A run makes a fixed sequence of model calls (agent steps, JSON
classifications, the final summary). Tests queue one reply per call and
then inspect `all_calls` to see which of them asked for JSON.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

from dbagent.core.types import (
    LLMChunk,
    Message,
    ModelInfo,
    StopReason,
    ToolCall,
    ToolSpec,
)
from dbagent.llm.base import LLMProvider


class MockLLMProvider(LLMProvider):
    """
    Replays queued replies in order; an empty queue yields a fixed text.

    Scripting a one-step run:
        mock = MockLLMProvider()
        mock.set_response("No issues found.")
        mock.set_json({"summary": "ok", "notificationLevel": "info"})
        mock.set_response("## Report ...")

    A diagnostic tool call:
        mock.set_tool_call("getVacuumStats", {})
    """

    def __init__(
        self,
        model: str = "mock-model",
        context_window: int = 8192,
    ) -> None:
        self._model = model
        self._context_window = context_window

        # Exceptions in the queue are raised instead of streamed
        self._responses: list[list[LLMChunk] | Exception] = []

        self._default_response = "No diagnostics were scripted for this call."

        self.call_count: int = 0
        self.last_messages: list[Message] = []
        self.last_tools: list[ToolSpec] | None = None
        self.all_calls: list[dict] = []

    def set_response(self, text: str) -> None:
        """Queue a plain text reply."""
        self._responses.append(
            [
                LLMChunk(text=text),
                LLMChunk(
                    stop_reason=StopReason.COMPLETE,
                    input_tokens=len(text) // 4,
                    output_tokens=len(text) // 4,
                ),
            ]
        )

    def set_responses(self, texts: list[str]) -> None:
        """Queue several text replies, one per call."""
        for text in texts:
            self.set_response(text)

    def set_json(self, payload: dict[str, Any]) -> None:
        """Queue a structured (JSON) response, e.g. for a classification call."""
        self.set_response(json.dumps(payload))

    def set_tool_call(
        self,
        tool_name: str,
        arguments: dict,
        text_before: str = "",
    ) -> None:
        """Queue a reply that asks for one tool, optionally after some text."""
        tc = ToolCall.new(name=tool_name, arguments=arguments)
        chunks = []
        if text_before:
            chunks.append(LLMChunk(text=text_before))
        chunks.append(
            LLMChunk(
                tool_calls=[tc],
                stop_reason=StopReason.TOOL_USE,
                input_tokens=50,
                output_tokens=25,
            )
        )
        self._responses.append(chunks)

    def set_error(self, error: Exception) -> None:
        """Make the next generate() call raise *error*."""
        self._responses.append(error)

    async def generate(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """Record the call, then stream the next queued reply."""
        self.call_count += 1
        self.last_messages = list(messages)
        self.last_tools = tools
        self.all_calls.append(
            {
                "messages": list(messages),
                "tools": tools,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
                "call_number": self.call_count,
            }
        )

        if self._responses:
            response = self._responses.pop(0)
        else:
            response = [
                LLMChunk(text=self._default_response),
                LLMChunk(
                    stop_reason=StopReason.COMPLETE,
                    input_tokens=10,
                    output_tokens=len(self._default_response) // 4,
                ),
            ]

        if isinstance(response, Exception):
            raise response

        for chunk in response:
            yield chunk

    def get_model_info(self) -> ModelInfo:
        return ModelInfo(
            provider="mock",
            model=self._model,
            context_window=self._context_window,
            max_output_tokens=self._context_window // 4,
            supports_tools=True,
            supports_streaming=True,
        )

    @property
    def pending(self) -> int:
        """Number of queued responses not yet consumed."""
        return len(self._responses)

    def reset(self) -> None:
        """Drop queued replies and recorded calls."""
        self._responses.clear()
        self.call_count = 0
        self.last_messages = []
        self.last_tools = None
        self.all_calls = []
