"""
Skill Manager — registration, lifecycle, and tool routing.

One manager holds the tool set for one playbook run. It handles lazy
activation and routes tool calls to the right skill.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from dbagent.core.errors import SkillError
from dbagent.core.types import ToolResult, ToolSpec
from dbagent.skills.base import Skill

logger = logging.getLogger(__name__)


class SkillManager:
    """
    Manages skill registration, lifecycle, and tool routing.

    Usage:
        manager = SkillManager()
        manager.register(postgres_skill)
        manager.register(playbook_skill)

        # Get all available tools (for sending to LLM)
        tools = manager.get_all_tool_specs()

        # Execute a tool (routes to correct skill)
        result = await manager.execute_tool("describeTable", {"table": "users"})
    """

    def __init__(self) -> None:
        self._skills: dict[str, Skill] = {}  # name → skill
        self._tool_to_skill: dict[str, str] = {}  # tool_name → skill_name
        self._activated: set[str] = set()

    def register(self, skill: Skill) -> None:
        """Register a skill. activate() is deferred to first use."""
        manifest = skill.manifest()
        name = manifest.name

        if name in self._skills:
            logger.warning(f"Skill '{name}' already registered, replacing")

        self._skills[name] = skill

        for tool_spec in manifest.tools:
            if tool_spec.name in self._tool_to_skill:
                other = self._tool_to_skill[tool_spec.name]
                logger.warning(
                    f"Tool '{tool_spec.name}' already registered by '{other}', "
                    f"now owned by '{name}'"
                )
            self._tool_to_skill[tool_spec.name] = name

        logger.debug(f"Registered skill '{name}' with {len(manifest.tools)} tools")

    async def _ensure_activated(self, skill_name: str) -> Skill:
        """Ensure a skill is activated, activating if necessary."""
        skill = self._skills.get(skill_name)
        if not skill:
            raise SkillError(f"Skill '{skill_name}' not found", skill_name=skill_name)

        if skill_name not in self._activated:
            logger.debug(f"Activating skill '{skill_name}'")
            await skill.activate()
            self._activated.add(skill_name)

        return skill

    async def execute_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ToolResult:
        """
        Execute a tool by name.

        Never raises: unknown tools and tool failures come back as a
        failed ToolResult so the model can react to them.
        """
        skill_name = self._tool_to_skill.get(tool_name)
        if not skill_name:
            return ToolResult(
                tool_call_id="",
                success=False,
                output="",
                error=f"Unknown tool: {tool_name}. Available: {list(self._tool_to_skill.keys())}",
            )

        start = time.monotonic()
        try:
            skill = await self._ensure_activated(skill_name)
            result = await skill.execute_tool(tool_name, arguments)
        except Exception as e:
            logger.warning(f"Tool '{tool_name}' failed: {e}")
            result = ToolResult(
                tool_call_id="",
                success=False,
                output="",
                error=f"Tool execution failed: {e}",
            )
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    def get_all_tool_specs(self) -> list[ToolSpec]:
        """Get all tool specifications from all registered skills."""
        specs = []
        for skill in self._skills.values():
            specs.extend(skill.manifest().tools)
        return specs

    def get_skill(self, name: str) -> Skill | None:
        """Get a skill by name."""
        return self._skills.get(name)

    async def shutdown_all(self) -> None:
        """Shutdown all activated skills."""
        for name in list(self._activated):
            skill = self._skills.get(name)
            if skill:
                try:
                    await skill.shutdown()
                except Exception as e:
                    logger.error(f"Error shutting down skill '{name}': {e}")
        self._activated.clear()

    @property
    def skill_names(self) -> list[str]:
        """List all registered skill names."""
        return list(self._skills.keys())

    @property
    def tool_names(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tool_to_skill.keys())
