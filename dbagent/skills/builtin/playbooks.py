"""
Playbook Skill — lets the agent read the procedure it has been asked to run.
"""

from __future__ import annotations

import json

from dbagent.playbooks.registry import PlaybookRegistry
from dbagent.skills.base import FunctionSkill, tool


def make_playbook_skill(registry: PlaybookRegistry) -> FunctionSkill:
    """Build the getPlaybook / listPlaybooks tools over one project's registry."""

    @tool(
        name="getPlaybook",
        description=(
            "Get a playbook contents by name. A playbook is a list of steps "
            "to follow to achieve a goal. Follow it step by step."
        ),
    )
    async def get_playbook(name: str) -> str:
        """
        Args:
            name: The playbook name
        """
        return registry.get_text(name)

    @tool(name="listPlaybooks", description="List the available playbooks.")
    async def list_playbooks() -> str:
        return json.dumps(registry.names())

    return FunctionSkill(
        name="playbooks",
        description="Read diagnostic playbooks",
        tools=[get_playbook, list_playbooks],
    )
