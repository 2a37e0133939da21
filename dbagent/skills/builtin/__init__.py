"""Built-in skills that ship with dbagent."""

from dbagent.skills.builtin.postgres import PostgresSkill
from dbagent.skills.builtin.playbooks import make_playbook_skill

__all__ = ["PostgresSkill", "make_playbook_skill"]
