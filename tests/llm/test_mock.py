"""Tests for the Mock LLM provider."""

import pytest
from dbagent.core.errors import LLMError
from dbagent.core.types import Message, StopReason
from dbagent.llm.mock import MockLLMProvider


async def _collect(mock, **kwargs):
    chunks = []
    async for chunk in mock.generate([Message.user("hello")], **kwargs):
        chunks.append(chunk)
    return chunks


@pytest.mark.asyncio
async def test_default_response():
    """Mock returns default response when no responses queued."""
    chunks = await _collect(MockLLMProvider())

    assert len(chunks) == 2
    assert "No diagnostics" in chunks[0].text
    assert chunks[1].stop_reason == StopReason.COMPLETE


@pytest.mark.asyncio
async def test_responses_in_order():
    mock = MockLLMProvider()
    mock.set_responses(["first", "second"])

    assert (await _collect(mock))[0].text == "first"
    assert (await _collect(mock))[0].text == "second"
    assert mock.pending == 0


@pytest.mark.asyncio
async def test_set_json():
    mock = MockLLMProvider()
    mock.set_json({"summary": "ok", "notificationLevel": "info"})

    chunks = await _collect(mock, json_mode=True)

    assert chunks[0].text == '{"summary": "ok", "notificationLevel": "info"}'
    assert mock.all_calls[0]["json_mode"] is True


@pytest.mark.asyncio
async def test_set_tool_call():
    """Mock returns tool call response."""
    mock = MockLLMProvider()
    mock.set_tool_call("describeTable", {"table": "orders"}, text_before="Looking.")

    chunks = await _collect(mock)

    assert chunks[0].text == "Looking."
    assert chunks[1].stop_reason == StopReason.TOOL_USE
    assert chunks[1].tool_calls[0].name == "describeTable"
    assert chunks[1].tool_calls[0].arguments == {"table": "orders"}


@pytest.mark.asyncio
async def test_set_error():
    mock = MockLLMProvider()
    mock.set_error(LLMError("rate limited", provider="mock"))

    with pytest.raises(LLMError):
        await _collect(mock)
    assert mock.call_count == 1


@pytest.mark.asyncio
async def test_tracks_calls_and_reset():
    mock = MockLLMProvider()
    await _collect(mock, temperature=0.2)

    assert mock.call_count == 1
    assert mock.last_messages[0].content == "hello"
    assert mock.all_calls[0]["temperature"] == 0.2

    mock.set_response("queued")
    mock.reset()
    assert mock.call_count == 0
    assert mock.all_calls == []
    assert mock.pending == 0


def test_model_info():
    info = MockLLMProvider(model="test-model").get_model_info()
    assert info.provider == "mock"
    assert info.model == "test-model"
