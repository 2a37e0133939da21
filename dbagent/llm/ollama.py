"""
Ollama LLM Provider — connects to the Ollama API.

API docs: https://github.com/ollama/ollama/blob/main/docs/api.md

This provider:
- Streams responses via Ollama's /api/chat endpoint
- Supports tool calling (Ollama 0.4+)
- Supports JSON-constrained output (`format: "json"`) for classification calls
- Converts dbagent Message format ↔ Ollama format
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from dbagent.core.errors import LLMError
from dbagent.core.types import (
    LLMChunk,
    Message,
    ModelInfo,
    StopReason,
    ToolCall,
    ToolSpec,
)
from dbagent.llm.base import LLMProvider

logger = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """
    LLM provider for Ollama.

    Usage:
        provider = OllamaProvider(
            base_url="http://localhost:11434",
            model="llama3.1",
        )

        async for chunk in provider.generate([Message.user("Hello")]):
            print(chunk.text, end="")
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1",
        context_window: int = 128000,
        max_output_tokens: int = 8192,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._context_window = context_window
        self._max_output_tokens = max_output_tokens
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=300.0,   # playbook steps can think for a while
                    write=10.0,
                    pool=10.0,
                ),
            )
        return self._client

    async def generate(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """Stream a response from Ollama."""
        client = await self._get_client()

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [self._convert_message(msg) for msg in messages],
            "stream": True,
            "options": {
                "temperature": temperature,
            },
        }

        if max_tokens is not None:
            payload["options"]["num_predict"] = max_tokens

        if json_mode:
            payload["format"] = "json"

        if tools:
            payload["tools"] = [self._convert_tool_spec(t) for t in tools]

        try:
            async with client.stream("POST", "/api/chat", json=payload) as response:
                if response.status_code != 200:
                    error_body = await response.aread()
                    raise LLMError(
                        f"Ollama API error ({response.status_code}): {error_body.decode()}",
                        provider="ollama",
                        model=self._model,
                        retryable=response.status_code >= 500,
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue

                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue

                    if "error" in data:
                        raise LLMError(
                            f"Ollama stream error: {data['error']}",
                            provider="ollama",
                            model=self._model,
                            retryable=True,
                        )

                    message_data = data.get("message", {})

                    if message_data.get("tool_calls"):
                        tool_calls = [
                            ToolCall.new(
                                name=tc.get("function", {}).get("name", ""),
                                arguments=tc.get("function", {}).get("arguments", {}),
                            )
                            for tc in message_data["tool_calls"]
                        ]
                        yield LLMChunk(
                            tool_calls=tool_calls,
                            stop_reason=StopReason.TOOL_USE,
                            input_tokens=data.get("prompt_eval_count", 0),
                            output_tokens=data.get("eval_count", 0),
                        )
                        return

                    content = message_data.get("content", "")
                    if content:
                        yield LLMChunk(text=content)

                    if data.get("done"):
                        yield LLMChunk(
                            stop_reason=StopReason.COMPLETE,
                            input_tokens=data.get("prompt_eval_count", 0),
                            output_tokens=data.get("eval_count", 0),
                        )
                        return

        except httpx.ConnectError as e:
            raise LLMError(
                f"Cannot connect to Ollama at {self._base_url}. "
                f"Is Ollama running? Error: {e}",
                provider="ollama",
                model=self._model,
                retryable=True,
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(
                f"Ollama request timed out: {e}",
                provider="ollama",
                model=self._model,
                retryable=True,
            ) from e
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(
                f"Unexpected error communicating with Ollama: {e}",
                provider="ollama",
                model=self._model,
                retryable=False,
            ) from e

    def get_model_info(self) -> ModelInfo:
        return ModelInfo(
            provider="ollama",
            model=self._model,
            context_window=self._context_window,
            max_output_tokens=self._max_output_tokens,
            supports_tools=True,
            supports_streaming=True,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ━━━ Format Conversion ━━━

    @staticmethod
    def _convert_message(msg: Message) -> dict[str, Any]:
        """Convert a dbagent Message to Ollama message format."""
        result: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}

        if msg.role == "tool" and msg.name:
            result["tool_name"] = msg.name
        elif msg.tool_calls:
            result["tool_calls"] = [
                {
                    "function": {
                        "name": tc.name,
                        "arguments": tc.arguments,
                    }
                }
                for tc in msg.tool_calls
            ]

        return result

    @staticmethod
    def _convert_tool_spec(spec: ToolSpec) -> dict[str, Any]:
        """Convert a ToolSpec to Ollama tool format."""
        return {
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.parameters,
            },
        }
