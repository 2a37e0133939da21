"""
LLM Provider interface — the contract every LLM must implement.

The agent invoker calls these methods. It never knows which specific
LLM is behind the interface. A schedule's `model` field picks the
provider instance through `make_provider`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator

from dbagent.core.errors import ConfigError
from dbagent.core.types import LLMChunk, Message, ModelInfo, ToolSpec

if TYPE_CHECKING:
    from dbagent.core.config import LLMConfig


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implement this to add support for any LLM backend.

    Implementations:
        OllamaProvider — local or remote models via Ollama
        MockLLMProvider — for testing
    """

    @abstractmethod
    async def generate(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """
        Generate a response from the LLM.

        Args:
            messages: Conversation history in dbagent Message format
            tools: Available tools the LLM can call (optional)
            temperature: Randomness (0.0 = deterministic, 1.0 = creative)
            max_tokens: Maximum tokens to generate (None = model default)
            json_mode: Ask the backend to constrain output to JSON

        Yields:
            LLMChunk objects with streaming text and/or tool calls.
            The LAST chunk will have stop_reason set.

        Raises:
            LLMError: On API failures, rate limits, connection errors
        """
        ...

    @abstractmethod
    def get_model_info(self) -> ModelInfo:
        """Return static model metadata."""
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None


_PROVIDERS = frozenset({"ollama", "mock"})


def make_provider(model: str, config: "LLMConfig") -> LLMProvider:
    """
    Build a provider for a schedule's model identifier.

    A model may be qualified with a provider prefix ("ollama:qwen2.5:7b");
    unqualified names ("llama3.1:8b") use `config.default_provider`.
    """
    prefix, _, rest = model.partition(":")
    if prefix in _PROVIDERS:
        provider, name = prefix, rest
    else:
        provider, name = config.default_provider, model
    name = name or config.default_model

    if provider == "ollama":
        from dbagent.llm.ollama import OllamaProvider

        return OllamaProvider(base_url=config.base_url, model=name)
    if provider == "mock":
        from dbagent.llm.mock import MockLLMProvider

        return MockLLMProvider(model=name)
    raise ConfigError(f"Unknown LLM provider: {provider!r}", {"model": model})
