"""
dbagent Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (DBAGENT_*, plus the scheduler's legacy names)
3. Project config (./dbagent.toml)
4. User config (~/.dbagent/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    MAX_PARALLEL_RUNS                  → monitoring.max_parallel_runs
    TIMEOUT_FOR_RUNNING_SCHEDULE_SECS  → monitoring.timeout_for_running_schedule_secs
    DBAGENT_LLM_MODEL                  → llm.default_model
    DBAGENT_LLM_BASE_URL               → llm.base_url
    DBAGENT_DB_PATH                    → store.db_path
    DBAGENT_SLACK_WEBHOOK_URL          → notifications.slack_webhook_url
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from dbagent.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class MonitoringConfig(BaseModel):
    """Scheduler and playbook runner configuration."""

    # How many schedules can run in parallel
    max_parallel_runs: int = Field(default=20, ge=1)
    # How long to wait for a running schedule before assuming it's dead
    timeout_for_running_schedule_secs: int = Field(default=15 * 60, ge=0)
    poll_interval: int = 60  # seconds between ticks in `dbagent serve`
    agent_max_iterations: int = 20  # tool-call rounds per agent invocation
    temperature: float = 0.2
    slow_query_threshold_ms: int = 2000


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    default_provider: str = "ollama"
    default_model: str = "llama3.1"
    base_url: str = "http://localhost:11434"
    api_key: str = ""
    extra: dict[str, Any] = Field(default_factory=dict)


class StoreConfig(BaseModel):
    """Persistence configuration."""

    db_path: str = "~/.dbagent/dbagent.db"


class NotificationsConfig(BaseModel):
    """Notification delivery configuration."""

    slack_webhook_url: str = ""  # fallback when a project has no Slack integration
    public_url: str = "http://localhost:4001"
    log_path: str = "~/.dbagent/notifications.log"


class LoggingConfig(BaseModel):
    """Log output configuration."""

    log_dir: str = "~/.dbagent/logs"
    console_level: str = "WARNING"
    file_level: str = "DEBUG"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class DBAgentConfig(BaseModel):
    """Root configuration for dbagent."""

    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> DBAgentConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.dbagent/config.toml)
        user_config_path = user_path or Path.home() / ".dbagent" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./dbagent.toml)
        project_config_path = project_path or Path.cwd() / "dbagent.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        # Substitute ${ENV_VAR} in string values
        _substitute_env_vars(merged)

        try:
            return DBAgentConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_db_path(self) -> Path:
        """Resolved path of the schedule/run database."""
        return Path(self.store.db_path).expanduser()

    def get_home(self) -> Path:
        """The dbagent home directory (~/.dbagent by default)."""
        return self.get_db_path().parent


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    import tomllib

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


_ENV_MAPPING: dict[str, tuple[str, str]] = {
    "MAX_PARALLEL_RUNS": ("monitoring", "max_parallel_runs"),
    "TIMEOUT_FOR_RUNNING_SCHEDULE_SECS": ("monitoring", "timeout_for_running_schedule_secs"),
    "DBAGENT_POLL_INTERVAL": ("monitoring", "poll_interval"),
    "DBAGENT_LLM_PROVIDER": ("llm", "default_provider"),
    "DBAGENT_LLM_MODEL": ("llm", "default_model"),
    "DBAGENT_LLM_BASE_URL": ("llm", "base_url"),
    "DBAGENT_LLM_API_KEY": ("llm", "api_key"),
    "DBAGENT_DB_PATH": ("store", "db_path"),
    "DBAGENT_SLACK_WEBHOOK_URL": ("notifications", "slack_webhook_url"),
    "DBAGENT_PUBLIC_URL": ("notifications", "public_url"),
    "DBAGENT_LOG_LEVEL": ("logging", "console_level"),
}


def _load_from_env() -> dict[str, Any]:
    """Load configuration from environment variables."""
    result: dict[str, Any] = {}

    for env_var, (section, key) in _ENV_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _substitute(value: str) -> str:
    for var_name in _ENV_PATTERN.findall(value):
        value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
    return value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _substitute(value)
        elif isinstance(value, list):
            data[key] = [_substitute(v) if isinstance(v, str) else v for v in value]
