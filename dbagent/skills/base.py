"""
Skill interface and @tool decorator.

A Skill is a collection of related tools the agent can call against one
target database. The @tool decorator turns a plain coroutine into a tool
definition whose JSON schema comes from the function signature.
"""

from __future__ import annotations

import inspect
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, get_type_hints

from dbagent.core.types import SkillManifest, ToolResult, ToolSpec


class Skill(ABC):
    """
    Abstract base class for skills.

    Minimal implementation requires only manifest() and execute_tool().
    activate() is called lazily on first tool use, shutdown() when the
    tool set is torn down at the end of a run.
    """

    @abstractmethod
    def manifest(self) -> SkillManifest:
        """Return skill metadata and tool specifications."""
        ...

    async def activate(self) -> None:
        """Called on first use. Do heavy setup here (lazy initialization)."""
        pass

    @abstractmethod
    async def execute_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ToolResult:
        """Execute a tool by name with given arguments."""
        ...

    async def shutdown(self) -> None:
        """Release ALL resources."""
        pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# @tool decorator for creating simple tools
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class ToolDef:
    """A tool definition created by the @tool decorator."""

    name: str
    description: str
    func: Callable
    parameters: dict[str, Any]


def tool(
    name: str | None = None,
    description: str | None = None,
) -> Callable:
    """
    Decorator to define a tool function.

    Usage:
        @tool(name="describeTable", description="Describe a table")
        async def describe_table(table: str, schema: str = "public") -> str:
            '''
            Args:
                table: The table name
                schema: The schema the table lives in
            '''
            ...

    The decorator:
    - Extracts parameter schema from type hints
    - Extracts parameter descriptions from the docstring's Args section
    """

    def decorator(func: Callable) -> ToolDef:
        tool_name = name or func.__name__
        tool_desc = description or (func.__doc__ or "").strip().split("\n")[0].strip()

        return ToolDef(
            name=tool_name,
            description=tool_desc,
            func=func,
            parameters=_generate_parameters_schema(func),
        )

    return decorator


_ARG_LINE = re.compile(r"^\s*(\w+)\s*:\s*(.+)$")


def _docstring_args(func: Callable) -> dict[str, str]:
    """Parse `name: description` lines from a Google-style Args section."""
    doc = inspect.getdoc(func) or ""
    if "Args:" not in doc:
        return {}
    section = doc.split("Args:", 1)[1]
    result: dict[str, str] = {}
    for line in section.splitlines():
        if not line.strip():
            continue
        if line.strip().endswith(":") and not line.startswith(" "):
            break  # next section (Returns:, Raises:)
        match = _ARG_LINE.match(line)
        if match:
            result[match.group(1)] = match.group(2).strip()
    return result


def _generate_parameters_schema(func: Callable) -> dict[str, Any]:
    """Generate JSON Schema for function parameters from type hints."""
    hints = get_type_hints(func) if hasattr(func, "__annotations__") else {}
    docs = _docstring_args(func)
    sig = inspect.signature(func)

    properties: dict[str, Any] = {}
    required: list[str] = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls"):
            continue

        param_type = hints.get(param_name, str)
        properties[param_name] = {
            "type": _python_type_to_json(param_type),
            "description": docs.get(param_name, f"The {param_name} parameter"),
        }

        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    return {
        "type": "object",
        "properties": properties,
        "required": required,
    }


def _python_type_to_json(py_type: Any) -> str:
    """Convert Python type to JSON Schema type."""
    type_map = {
        str: "string",
        int: "integer",
        float: "number",
        bool: "boolean",
        list: "array",
        dict: "object",
    }

    # For Optional[X], Union[X, None], etc., just use the first arg
    origin = getattr(py_type, "__origin__", None)
    if origin is not None:
        args = getattr(py_type, "__args__", ())
        if args:
            return _python_type_to_json(args[0])

    return type_map.get(py_type, "string")


class FunctionSkill(Skill):
    """
    A skill built from @tool-decorated functions.

    Tool functions return a string (or anything str() renders). A raised
    exception becomes a failed ToolResult so the agent sees it as text.
    """

    def __init__(
        self,
        name: str,
        description: str,
        tools: list[ToolDef],
        version: str = "1.0.0",
    ) -> None:
        self._name = name
        self._description = description
        self._version = version
        self._tools = {t.name: t for t in tools}

    def manifest(self) -> SkillManifest:
        return SkillManifest(
            name=self._name,
            version=self._version,
            description=self._description,
            tools=tuple(
                ToolSpec(name=t.name, description=t.description, parameters=t.parameters)
                for t in self._tools.values()
            ),
        )

    async def execute_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ToolResult:
        tool_def = self._tools.get(tool_name)
        if not tool_def:
            return ToolResult(
                tool_call_id="",
                success=False,
                output="",
                error=f"Unknown tool: {tool_name}",
            )

        try:
            result = await tool_def.func(**arguments)
            return ToolResult(tool_call_id="", success=True, output=str(result))
        except Exception as e:
            return ToolResult(tool_call_id="", success=False, output="", error=str(e))
