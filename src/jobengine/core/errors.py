"""
Structured error types for the job engine.

Every error raised by the engine derives from :class:`EngineError` and
carries a category, structured context and an optional chained cause, so
callers (a web layer, the CLI, a scheduler) can map them to typed results
without parsing messages.

Architecture:
    ::

        EngineError  (category, context, cause)
          ├── SpawnError              EXECUTION     process could not launch
          ├── IllegalStateTransition  STATE         rejected lifecycle move
          │     └── AlreadyTerminal   STATE         cancel on finished job
          ├── EngineDisabled          AVAILABILITY  enqueue rejected
          ├── ExecutionNotFound       LOOKUP        unknown execution id
          └── ConfigError             CONFIG        invalid settings

A non-zero exit of the command itself is *not* an error: it is the normal
``failed`` terminal state of an execution.

Usage:
    from jobengine.core.errors import EngineDisabled, ExecutionNotFound

    try:
        engine.cancel_execution(execution_id, requester="alice")
    except ExecutionNotFound:
        return 404
    except AlreadyTerminal:
        return 409
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    EXECUTION = "EXECUTION"
    STATE = "STATE"
    AVAILABILITY = "AVAILABILITY"
    LOOKUP = "LOOKUP"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an :class:`EngineError`."""

    execution_id: str | None = None
    project_key: str | None = None
    command: str | None = None
    state: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return only the populated fields."""
        result: dict[str, Any] = {}
        for key in ("execution_id", "project_key", "command", "state"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EngineError(Exception):
    """Base exception for all job engine errors.

    Subclasses set ``default_category``; the instance category can still be
    overridden at construction time.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EngineError:
        """Add context to this error (fluent API).

        Usage:
            raise SpawnError("No such file").with_context(
                execution_id=execution.id,
                project_key="billing",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class SpawnError(EngineError):
    """The command could not be launched (missing executable, bad cwd, EACCES)."""

    default_category = ErrorCategory.EXECUTION


class IllegalStateTransition(EngineError):
    """An execution was asked to move between states the lifecycle forbids.

    Raised as a guard against duplicate exit notifications and races between
    cancellation and completion. The offending operation is a no-op.
    """

    default_category = ErrorCategory.STATE

    def __init__(self, current: str, target: str, message: str | None = None, **kwargs: Any):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Invalid execution state transition: {current} → {target}",
            **kwargs,
        )
        self.context.state = current


class AlreadyTerminal(IllegalStateTransition):
    """Cancel was requested for an execution that has already finished."""

    def __init__(self, execution_id: str, state: str, **kwargs: Any):
        self.execution_id = execution_id
        super().__init__(
            state,
            "cancelled",
            message=f"Execution {execution_id} already finished ({state})",
            **kwargs,
        )
        self.context.execution_id = execution_id


class EngineDisabled(EngineError):
    """The engine is globally disabled and rejects new executions."""

    default_category = ErrorCategory.AVAILABILITY

    def __init__(self, message: str = "Job execution is disabled", **kwargs: Any):
        super().__init__(message, **kwargs)


class ExecutionNotFound(EngineError):
    """No execution with the given id is known."""

    default_category = ErrorCategory.LOOKUP

    def __init__(self, execution_id: str, **kwargs: Any):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}", **kwargs)
        self.context.execution_id = execution_id


NotFound = ExecutionNotFound


class ConfigError(EngineError):
    """Invalid engine configuration."""

    default_category = ErrorCategory.CONFIG


__all__ = [
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
]
