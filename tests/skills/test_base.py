"""Tests for skill base classes and @tool decorator."""

import pytest
from dbagent.skills.base import tool, ToolDef, FunctionSkill


def test_tool_decorator():
    """@tool decorator creates ToolDef with correct attributes."""

    @tool(name="describeTable", description="Describe a table")
    async def describe_table(table: str, schema: str = "public") -> str:
        return f"{schema}.{table}"

    assert isinstance(describe_table, ToolDef)
    assert describe_table.name == "describeTable"
    assert describe_table.description == "Describe a table"
    assert set(describe_table.parameters["properties"]) == {"table", "schema"}
    assert describe_table.parameters["required"] == ["table"]


def test_tool_decorator_default_name():
    """@tool uses function name if name not provided."""

    @tool(description="Test")
    async def my_function() -> str:
        return "test"

    assert my_function.name == "my_function"


def test_tool_description_from_docstring():
    @tool()
    async def vacuum_stats() -> str:
        """Get vacuum statistics.

        More detail here.
        """
        return "[]"

    assert vacuum_stats.description == "Get vacuum statistics."


def test_parameter_descriptions_from_args_section():
    @tool(name="getPlaybook")
    async def get_playbook(name: str, limit: int = 10) -> str:
        """
        Args:
            name: The playbook name
            limit: How many lines to return
        Returns:
            The playbook text
        """
        return name

    props = get_playbook.parameters["properties"]
    assert props["name"]["description"] == "The playbook name"
    assert props["limit"]["type"] == "integer"
    assert props["limit"]["description"] == "How many lines to return"


@pytest.mark.asyncio
async def test_function_skill_execute():
    @tool(name="add")
    async def add(a: int, b: int) -> int:
        return a + b

    skill = FunctionSkill("math", "Math", [add])
    result = await skill.execute_tool("add", {"a": 2, "b": 3})
    assert result.success is True
    assert result.output == "5"


@pytest.mark.asyncio
async def test_function_skill_exception_becomes_error():
    @tool(name="boom")
    async def boom() -> str:
        raise RuntimeError("relation does not exist")

    skill = FunctionSkill("x", "X", [boom])
    result = await skill.execute_tool("boom", {})
    assert result.success is False
    assert "relation does not exist" in result.error
    assert result.as_text().startswith("Error")


@pytest.mark.asyncio
async def test_function_skill_unknown_tool():
    skill = FunctionSkill("x", "X", [])
    result = await skill.execute_tool("nope", {})
    assert result.success is False
    assert "Unknown tool" in result.error


def test_manifest_lists_tools():
    @tool(name="a")
    async def a() -> str:
        return ""

    manifest = FunctionSkill("s", "S", [a], version="2.0.0").manifest()
    assert manifest.name == "s"
    assert manifest.version == "2.0.0"
    assert [t.name for t in manifest.tools] == ["a"]
