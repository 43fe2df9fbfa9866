"""Engine settings.

All fields can be set through ``JOBENGINE_*`` environment variables
(e.g. ``JOBENGINE_GRACE_PERIOD_SECONDS=10``) or a ``.env`` file.

Examples:
    >>> from jobengine.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.grace_period_seconds
    5.0
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Configuration for :class:`~jobengine.execution.engine.JobEngine`.

    Fields
    ──────
    grace_period_seconds : Delay between terminate() and kill() on cancel
    shell                : Interpreter for multi-line scripts
    retained_executions  : Finished executions kept in memory for late subscribers
    enabled              : Initial value of the global enabled flag
    max_per_project      : Concurrent executions per project (only 1 is supported)
    log_level            : Structlog log level
    json_logs            : Force JSON (True) / console (False) / auto (None)
    """

    model_config = SettingsConfigDict(
        env_prefix="JOBENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Execution ────────────────────────────────────────────────
    grace_period_seconds: float = Field(default=5.0, ge=0)
    shell: str = "/bin/sh"
    retained_executions: int = Field(default=200, ge=0)
    enabled: bool = True
    max_per_project: int = Field(default=1, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None


_settings_cache: dict[str, EngineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> EngineSettings:
    """Load, validate, and cache an :class:`EngineSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = EngineSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
