"""
Agent Invoker — tool-augmented completion, run to termination.

Two entry points:

invoke()   — the think → act → observe cycle. Calls the LLM, executes any
             tool calls it requests, feeds the results back, and repeats
             until the model answers with plain text or the iteration
             budget runs out.
classify() — one structured call. The reply must decode into a pydantic
             model; anything else raises ClassificationError.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from dbagent.core.errors import ClassificationError
from dbagent.core.types import Message, StopReason, ToolCall, ToolResult
from dbagent.llm.base import LLMProvider
from dbagent.skills.manager import SkillManager

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


@dataclass
class AgentResult:
    """Final text plus every message the invocation added to the conversation."""

    text: str
    messages: list[Message] = field(default_factory=list)
    iterations: int = 0
    tool_calls: int = 0


class AgentInvoker:
    """
    Runs one model against one tool set.

    Usage:
        invoker = AgentInvoker(llm=provider, max_iterations=20)

        result = await invoker.invoke(
            system_prompt,
            [Message.user("Run this playbook: investigateSlowQueries")],
            tools=skill_manager,
        )
        messages.extend(result.messages)

        decision = await invoker.classify(
            NotificationDecision, system_prompt, messages, prompt
        )
    """

    def __init__(
        self,
        llm: LLMProvider,
        max_iterations: int = 20,
        temperature: float = 0.2,
    ) -> None:
        self._llm = llm
        self._max_iterations = max(1, max_iterations)
        self._temperature = temperature

    @property
    def llm(self) -> LLMProvider:
        return self._llm

    async def invoke(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: SkillManager | None = None,
    ) -> AgentResult:
        """
        Run the tool loop to completion.

        Tool failures become tool output text. LLM failures (LLMError)
        propagate to the caller.
        """
        added: list[Message] = []
        tool_specs = tools.get_all_tool_specs() if tools else []
        tool_call_count = 0
        iteration = 0

        while iteration < self._max_iterations:
            iteration += 1

            text, tool_calls, stop_reason = await self._generate(
                [Message.system(system_prompt), *messages, *added],
                tool_specs,
            )

            if stop_reason == StopReason.COMPLETE or not tool_calls:
                added.append(Message.assistant(text))
                logger.debug(f"Agent finished after {iteration} iteration(s)")
                return AgentResult(
                    text=text,
                    messages=added,
                    iterations=iteration,
                    tool_calls=tool_call_count,
                )

            added.append(Message.assistant(content=text or None, tool_calls=tool_calls))

            for tool_call in tool_calls:
                tool_call_count += 1
                result = await self._execute_tool(tools, tool_call)
                added.append(
                    Message.tool_result(tool_call.id, result.as_text(), name=tool_call.name)
                )

        # Max iterations reached: synthesise with everything gathered so far
        logger.info(f"Agent hit max iterations ({self._max_iterations}), synthesising")
        nudge = Message.user(
            "You have used the maximum number of tool calls. "
            "Do NOT call any more tools. "
            "Based solely on the information you have gathered in this conversation, "
            "provide your best complete answer right now."
        )
        added.append(nudge)
        text, _, _ = await self._generate(
            [Message.system(system_prompt), *messages, *added],
            [],
        )
        added.append(Message.assistant(text))
        return AgentResult(
            text=text,
            messages=added,
            iterations=iteration,
            tool_calls=tool_call_count,
        )

    async def classify(
        self,
        schema: type[T],
        system_prompt: str,
        messages: list[Message],
        prompt: str,
    ) -> T:
        """
        Ask for a structured answer and decode it into `schema`.

        Raises:
            ClassificationError: reply is not JSON or fails validation
        """
        json_schema = json.dumps(schema.model_json_schema(by_alias=True))
        request = Message.user(
            f"{prompt}\n\n"
            f"Respond with a single JSON object that matches this JSON schema "
            f"and nothing else:\n{json_schema}"
        )

        text, _, _ = await self._generate(
            [Message.system(system_prompt), *messages, request],
            [],
            json_mode=True,
        )

        try:
            data = json.loads(_extract_json(text))
        except json.JSONDecodeError as e:
            raise ClassificationError(
                f"{schema.__name__}: model reply is not valid JSON: {e}",
                raw_output=text,
            ) from e

        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise ClassificationError(
                f"{schema.__name__}: model reply does not match schema: {e}",
                raw_output=text,
            ) from e

    # ━━━ Internals ━━━

    async def _generate(
        self,
        messages: list[Message],
        tool_specs: list,
        json_mode: bool = False,
    ) -> tuple[str, list[ToolCall], StopReason | None]:
        collected_text = ""
        collected_tool_calls: list[ToolCall] = []
        stop_reason: StopReason | None = None

        async for chunk in self._llm.generate(
            messages=messages,
            tools=tool_specs or None,
            temperature=self._temperature,
            json_mode=json_mode,
        ):
            if chunk.text:
                collected_text += chunk.text
            if chunk.tool_calls:
                collected_tool_calls.extend(chunk.tool_calls)
            if chunk.stop_reason:
                stop_reason = chunk.stop_reason

        return collected_text, collected_tool_calls, stop_reason

    async def _execute_tool(
        self,
        tools: SkillManager | None,
        tool_call: ToolCall,
    ) -> ToolResult:
        if tools is None:
            return ToolResult(
                tool_call_id=tool_call.id,
                success=False,
                output="",
                error=f"Unknown tool: {tool_call.name}",
            )
        logger.debug(f"Tool call {tool_call.name}({tool_call.arguments})")
        result = await tools.execute_tool(tool_call.name, tool_call.arguments)
        result.tool_call_id = tool_call.id
        return result


def _extract_json(text: str) -> str:
    """Pull the JSON object out of a reply that may carry fences or prose."""
    stripped = _FENCE.sub("", text.strip()).strip()
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end < start:
        return stripped
    return stripped[start : end + 1]
