"""Tests for provider selection and the Ollama adapter."""

import json

import httpx
import pytest

from dbagent.core.config import LLMConfig
from dbagent.core.errors import ConfigError, LLMError
from dbagent.core.types import Message, StopReason, ToolCall, ToolSpec
from dbagent.llm.base import make_provider
from dbagent.llm.mock import MockLLMProvider
from dbagent.llm.ollama import OllamaProvider


# ── make_provider ────────────────────────────────────────────────────────────

class TestMakeProvider:
    def test_mock_prefix(self):
        provider = make_provider("mock:tiny", LLMConfig())
        assert isinstance(provider, MockLLMProvider)
        assert provider.get_model_info().model == "tiny"

    def test_unqualified_uses_default_provider(self):
        provider = make_provider("llama3.1:8b", LLMConfig(base_url="http://gpu:11434"))
        assert isinstance(provider, OllamaProvider)
        assert provider.get_model_info().model == "llama3.1:8b"

    def test_tag_with_dots_keeps_its_name(self):
        provider = make_provider("qwen2.5:7b", LLMConfig())
        assert provider.get_model_info().model == "qwen2.5:7b"

    def test_explicit_ollama_prefix(self):
        provider = make_provider("ollama:qwen2.5:7b", LLMConfig())
        assert isinstance(provider, OllamaProvider)
        assert provider.get_model_info().model == "qwen2.5:7b"

    def test_bare_prefix_falls_back_to_default_model(self):
        provider = make_provider("ollama:", LLMConfig(default_model="mistral"))
        assert provider.get_model_info().model == "mistral"

    def test_unknown_default_provider(self):
        with pytest.raises(ConfigError):
            make_provider("gpt-4o", LLMConfig(default_provider="nowhere"))


# ── OllamaProvider ───────────────────────────────────────────────────────────

def _ollama(handler) -> OllamaProvider:
    provider = OllamaProvider(base_url="http://ollama.test", model="llama3.1")
    provider._client = httpx.AsyncClient(
        base_url="http://ollama.test", transport=httpx.MockTransport(handler)
    )
    return provider


def _ndjson(*lines) -> bytes:
    return "\n".join(json.dumps(line) for line in lines).encode()


async def _collect(provider, messages=None, **kwargs):
    chunks = []
    async for chunk in provider.generate(messages or [Message.user("hi")], **kwargs):
        chunks.append(chunk)
    return chunks


@pytest.mark.asyncio
class TestOllamaProvider:
    async def test_streams_text(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(
                200,
                content=_ndjson(
                    {"message": {"content": "All "}},
                    {"message": {"content": "good"}},
                    {"message": {"content": ""}, "done": True, "eval_count": 7},
                ),
            )

        provider = _ollama(handler)
        chunks = await _collect(provider, temperature=0.2, json_mode=True)

        assert "".join(c.text for c in chunks) == "All good"
        assert chunks[-1].stop_reason == StopReason.COMPLETE
        assert chunks[-1].output_tokens == 7
        assert seen["model"] == "llama3.1"
        assert seen["format"] == "json"
        assert seen["options"]["temperature"] == 0.2
        await provider.close()

    async def test_tool_calls(self):
        def handler(request):
            return httpx.Response(
                200,
                content=_ndjson(
                    {
                        "message": {
                            "tool_calls": [
                                {"function": {"name": "getVacuumStats", "arguments": {}}}
                            ]
                        }
                    }
                ),
            )

        spec = ToolSpec(name="getVacuumStats", description="", parameters={"type": "object"})
        chunks = await _collect(_ollama(handler), tools=[spec])

        assert chunks[-1].stop_reason == StopReason.TOOL_USE
        assert chunks[-1].tool_calls[0].name == "getVacuumStats"

    async def test_http_error(self):
        provider = _ollama(lambda request: httpx.Response(500, content=b"model not loaded"))
        with pytest.raises(LLMError) as exc:
            await _collect(provider)
        assert exc.value.retryable is True
        assert "model not loaded" in str(exc.value)

    async def test_stream_error(self):
        provider = _ollama(lambda request: httpx.Response(200, content=_ndjson({"error": "oom"})))
        with pytest.raises(LLMError):
            await _collect(provider)

    async def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LLMError) as exc:
            await _collect(_ollama(handler))
        assert "Is Ollama running?" in str(exc.value)


def test_convert_messages():
    call = ToolCall(id="c1", name="describeTable", arguments={"table": "orders"})
    assistant = OllamaProvider._convert_message(Message.assistant(tool_calls=[call]))
    assert assistant["tool_calls"][0]["function"]["name"] == "describeTable"

    result = OllamaProvider._convert_message(Message.tool_result("c1", "ok", name="describeTable"))
    assert result == {"role": "tool", "content": "ok", "tool_name": "describeTable"}
