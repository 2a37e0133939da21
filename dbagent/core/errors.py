"""
dbagent exception hierarchy.

Every error in the system inherits from DBAgentError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        await runner.run(schedule, now)
    except ClassificationError as e:
        # The model returned something outside the contract
    except DBAgentError as e:
        # Handle any dbagent error
"""


class DBAgentError(Exception):
    """Base exception for all dbagent errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Core Errors ━━━


class ConfigError(DBAgentError):
    """Configuration is invalid, missing, or malformed."""

    pass


class StorageError(DBAgentError):
    """Storage backend failure — database errors, corruption, etc."""

    pass


class NotFoundError(StorageError):
    """A record that was expected to exist is missing."""

    pass


class ScheduleNotFoundError(NotFoundError):
    """Requested schedule does not exist (or is not visible to the caller)."""

    pass


class ConnectionNotFoundError(NotFoundError):
    """The connection a schedule points at does not exist."""

    pass


class RunNotFoundError(NotFoundError):
    """Requested schedule run does not exist."""

    pass


# ━━━ Provider Errors ━━━


class LLMError(DBAgentError):
    """LLM provider failure — API errors, rate limits, etc."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        model: str = "",
        retryable: bool = False,
        details: dict | None = None,
    ):
        self.provider = provider
        self.model = model
        self.retryable = retryable
        super().__init__(message, details)


class TargetDBError(DBAgentError):
    """The monitored PostgreSQL database is unreachable or rejected a query."""

    pass


class SkillError(DBAgentError):
    """Skill registration or tool execution failure."""

    def __init__(
        self,
        message: str,
        skill_name: str = "",
        tool_name: str = "",
        details: dict | None = None,
    ):
        self.skill_name = skill_name
        self.tool_name = tool_name
        super().__init__(message, details)


# ━━━ Monitoring Errors ━━━


class ClassificationError(DBAgentError):
    """Structured model output is malformed or outside the allowed values."""

    def __init__(
        self,
        message: str,
        raw_output: str = "",
        details: dict | None = None,
    ):
        self.raw_output = raw_output
        super().__init__(message, details)


class NotificationError(DBAgentError):
    """A notification channel failed to deliver."""

    pass
