"""
dbagent shared types — the message and tool objects every layer speaks.

All types are dataclasses. Frozen where immutability makes sense.
Messages serialize to plain dicts so a full agent trace can be stored
with a schedule run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import time
import uuid


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StopReason(str, Enum):
    """Why the LLM stopped generating."""

    COMPLETE = "complete"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    CANCELLED = "cancelled"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Core Message Types
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(slots=True)
class ToolCall:
    """A tool/function call requested by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]

    @staticmethod
    def new(name: str, arguments: dict[str, Any]) -> ToolCall:
        return ToolCall(id=uuid.uuid4().hex[:12], name=name, arguments=arguments)


@dataclass(slots=True)
class ToolResult:
    """Result from executing a tool."""

    tool_call_id: str
    success: bool
    output: str
    error: str | None = None
    duration_ms: int = 0

    def as_text(self) -> str:
        """What the model sees: the output, or the error as plain text."""
        if self.success:
            return self.output
        return f"Error: {self.error or 'tool failed'}"


@dataclass(slots=True)
class Message:
    """A single message in a conversation.

    This is the universal message format used across all layers.
    Provider adapters convert to/from their specific formats.
    """

    role: str  # "system", "user", "assistant", "tool"
    content: str | None = None
    name: str | None = None  # for tool messages: tool name
    tool_calls: list[ToolCall] | None = None  # for assistant messages
    tool_call_id: str | None = None  # for tool result messages
    timestamp: float = field(default_factory=time.time)

    @staticmethod
    def system(content: str) -> Message:
        return Message(role="system", content=content)

    @staticmethod
    def user(content: str) -> Message:
        return Message(role="user", content=content)

    @staticmethod
    def assistant(
        content: str | None = None,
        tool_calls: list[ToolCall] | None = None,
    ) -> Message:
        return Message(role="assistant", content=content, tool_calls=tool_calls)

    @staticmethod
    def tool_result(tool_call_id: str, content: str, name: str = "") -> Message:
        return Message(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            d["name"] = self.name
        if self.tool_calls:
            d["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ]
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        d["timestamp"] = self.timestamp
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Message:
        tool_calls = None
        if d.get("tool_calls"):
            tool_calls = [
                ToolCall(id=tc["id"], name=tc["name"], arguments=tc.get("arguments", {}))
                for tc in d["tool_calls"]
            ]
        return cls(
            role=d["role"],
            content=d.get("content"),
            name=d.get("name"),
            tool_calls=tool_calls,
            tool_call_id=d.get("tool_call_id"),
            timestamp=d.get("timestamp", time.time()),
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# LLM Types
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Static metadata about an LLM model."""

    provider: str  # "ollama", "mock"
    model: str  # "llama3.1", "qwen2.5"
    context_window: int  # max input tokens
    max_output_tokens: int  # max output tokens
    supports_tools: bool = True
    supports_streaming: bool = True


@dataclass(slots=True)
class LLMChunk:
    """A single chunk from a streaming LLM response."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: StopReason | None = None
    input_tokens: int = 0
    output_tokens: int = 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Skill Types
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Tool specification — everything the LLM needs to call it."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


@dataclass(frozen=True, slots=True)
class SkillManifest:
    """Metadata about a skill — its identity and tools."""

    name: str
    version: str
    description: str
    tools: tuple[ToolSpec, ...] = ()
