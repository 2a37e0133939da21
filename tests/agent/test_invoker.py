"""Tests for the agent invoker (tool loop and structured classification)."""

import pytest

from dbagent.agent.invoker import AgentInvoker, _extract_json
from dbagent.agent.prompts import monitoring_system_prompt, run_playbook_prompt
from dbagent.core.errors import ClassificationError, LLMError
from dbagent.core.types import Message
from dbagent.llm.mock import MockLLMProvider
from dbagent.monitoring.models import NotificationDecision, PlaybookDecision
from dbagent.skills.base import FunctionSkill, tool
from dbagent.skills.manager import SkillManager

SYSTEM = "You are a test agent."


@pytest.fixture
def tools():
    @tool(name="getVacuumStats")
    async def vacuum_stats() -> str:
        return '[{"table_name": "orders", "dead_tuples": 90000}]'

    manager = SkillManager()
    manager.register(FunctionSkill("postgres", "fake", [vacuum_stats]))
    return manager


@pytest.fixture
def llm():
    return MockLLMProvider()


class TestInvoke:
    @pytest.mark.asyncio
    async def test_plain_answer(self, llm, tools):
        llm.set_response("Nothing to report.")
        invoker = AgentInvoker(llm)

        result = await invoker.invoke(SYSTEM, [Message.user("check")], tools=tools)

        assert result.text == "Nothing to report."
        assert result.iterations == 1
        assert [m.role for m in result.messages] == ["assistant"]
        sent = llm.last_messages
        assert sent[0].role == "system" and sent[0].content == SYSTEM
        assert {t.name for t in llm.last_tools} == {"getVacuumStats"}

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, llm, tools):
        llm.set_tool_call("getVacuumStats", {})
        llm.set_response("orders needs a VACUUM.")
        invoker = AgentInvoker(llm)

        result = await invoker.invoke(SYSTEM, [Message.user("check")], tools=tools)

        assert result.text == "orders needs a VACUUM."
        assert result.tool_calls == 1
        assert [m.role for m in result.messages] == ["assistant", "tool", "assistant"]
        tool_msg = result.messages[1]
        assert tool_msg.name == "getVacuumStats"
        assert "dead_tuples" in tool_msg.content
        assert tool_msg.tool_call_id == result.messages[0].tool_calls[0].id

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self, llm, tools):
        llm.set_tool_call("dropDatabase", {})
        llm.set_response("Sorry.")
        result = await AgentInvoker(llm).invoke(SYSTEM, [Message.user("x")], tools=tools)

        assert result.messages[1].content.startswith("Error: Unknown tool: dropDatabase")

    @pytest.mark.asyncio
    async def test_without_tools(self, llm):
        llm.set_tool_call("getVacuumStats", {})
        llm.set_response("Summary.")
        result = await AgentInvoker(llm).invoke(SYSTEM, [Message.user("x")], tools=None)

        assert llm.all_calls[0]["tools"] is None
        assert "Unknown tool" in result.messages[1].content

    @pytest.mark.asyncio
    async def test_max_iterations_synthesises(self, llm, tools):
        llm.set_tool_call("getVacuumStats", {})
        llm.set_tool_call("getVacuumStats", {})
        llm.set_response("Best effort answer.")
        invoker = AgentInvoker(llm, max_iterations=2)

        result = await invoker.invoke(SYSTEM, [Message.user("x")], tools=tools)

        assert result.text == "Best effort answer."
        assert result.tool_calls == 2
        assert llm.call_count == 3
        assert llm.all_calls[-1]["tools"] is None
        assert "maximum number of tool calls" in result.messages[-2].content

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self, llm, tools):
        llm.set_error(LLMError("connection refused", provider="mock"))
        with pytest.raises(LLMError):
            await AgentInvoker(llm).invoke(SYSTEM, [Message.user("x")], tools=tools)


class TestClassify:
    @pytest.mark.asyncio
    async def test_notification_decision(self, llm):
        llm.set_json({"summary": "High bloat on orders", "notificationLevel": "warning"})

        decision = await AgentInvoker(llm).classify(
            NotificationDecision, SYSTEM, [Message.user("x")], "Decide."
        )

        assert decision.notification_level == "warning"
        assert decision.summary == "High bloat on orders"
        call = llm.all_calls[0]
        assert call["json_mode"] is True
        assert call["tools"] is None
        assert "notificationLevel" in call["messages"][-1].content

    @pytest.mark.asyncio
    async def test_fenced_json(self, llm):
        llm.set_response(
            'Here you go:\n```json\n{"shouldRunPlaybook": true, '
            '"recommendedPlaybook": "investigateSlowQueries"}\n```'
        )
        decision = await AgentInvoker(llm).classify(PlaybookDecision, SYSTEM, [], "Next?")
        assert decision.should_run_playbook is True
        assert decision.recommended_playbook == "investigateSlowQueries"

    @pytest.mark.asyncio
    async def test_not_json(self, llm):
        llm.set_response("I think everything is fine")
        with pytest.raises(ClassificationError) as exc:
            await AgentInvoker(llm).classify(NotificationDecision, SYSTEM, [], "Decide.")
        assert exc.value.raw_output == "I think everything is fine"

    @pytest.mark.asyncio
    async def test_level_outside_enum(self, llm):
        llm.set_json({"summary": "x", "notificationLevel": "critical"})
        with pytest.raises(ClassificationError):
            await AgentInvoker(llm).classify(NotificationDecision, SYSTEM, [], "Decide.")


def test_extract_json():
    assert _extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert _extract_json('sure: {"a": {"b": 2}} done') == '{"a": {"b": 2}}'
    assert _extract_json("no json here") == "no json here"


def test_prompts():
    assert run_playbook_prompt("generalMonitoring") == "Run this playbook: generalMonitoring"
    assert "AWS" in monitoring_system_prompt("aws")
    assert "AWS" not in monitoring_system_prompt("postgres")
