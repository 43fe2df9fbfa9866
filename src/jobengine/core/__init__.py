"""Core primitives shared by the engine and the CLI: errors, logging, settings."""

from .errors import (
    AlreadyTerminal,
    ConfigError,
    EngineDisabled,
    EngineError,
    ErrorCategory,
    ErrorContext,
    ExecutionNotFound,
    IllegalStateTransition,
    NotFound,
    SpawnError,
)
from .logging import configure_logging, execution_context, get_logger
from .settings import EngineSettings, clear_settings_cache, get_settings

__all__ = [
    # Errors
    "AlreadyTerminal",
    "ConfigError",
    "EngineDisabled",
    "EngineError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionNotFound",
    "IllegalStateTransition",
    "NotFound",
    "SpawnError",
    # Logging
    "execution_context",
    "configure_logging",
    "get_logger",
    # Settings
    "EngineSettings",
    "clear_settings_cache",
    "get_settings",
]
