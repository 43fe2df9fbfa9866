"""Execution domain models.

Defines the core data structures of the engine:
- ExecutionState: the lifecycle states and their legal transitions
- ExitStatus: how a child process ended
- ExecutionContext: where and against which reference a command runs
- Execution: one attempt to run a command (mutable, engine-owned)
- ExecutionSnapshot: a stable read-only copy handed to everyone else

Valid transition graph::

    PENDING → RUNNING | CANCELLED | ERRORED
    RUNNING → SUCCEEDED | FAILED | CANCELLED | ERRORED
    SUCCEEDED, FAILED, CANCELLED, ERRORED → (terminal)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..core.errors import IllegalStateTransition


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class ExecutionState(str, Enum):
    """Lifecycle state of an execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: frozenset[ExecutionState] = frozenset({
    ExecutionState.SUCCEEDED,
    ExecutionState.FAILED,
    ExecutionState.CANCELLED,
    ExecutionState.ERRORED,
})

EXECUTION_VALID_TRANSITIONS: dict[ExecutionState, frozenset[ExecutionState]] = {
    ExecutionState.PENDING: frozenset({
        ExecutionState.RUNNING,
        ExecutionState.CANCELLED,
        ExecutionState.ERRORED,
    }),
    ExecutionState.RUNNING: frozenset({
        ExecutionState.SUCCEEDED,
        ExecutionState.FAILED,
        ExecutionState.CANCELLED,
        ExecutionState.ERRORED,
    }),
    ExecutionState.SUCCEEDED: frozenset(),  # terminal
    ExecutionState.FAILED: frozenset(),  # terminal
    ExecutionState.CANCELLED: frozenset(),  # terminal
    ExecutionState.ERRORED: frozenset(),  # terminal
}


def validate_execution_transition(
    current: ExecutionState,
    target: ExecutionState,
) -> None:
    """Raise :class:`IllegalStateTransition` if *current → target* is illegal.

    Example:
        >>> validate_execution_transition(ExecutionState.RUNNING, ExecutionState.SUCCEEDED)
        >>> validate_execution_transition(ExecutionState.SUCCEEDED, ExecutionState.RUNNING)
        IllegalStateTransition: Invalid execution state transition: succeeded → running
    """
    allowed = EXECUTION_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise IllegalStateTransition(current.value, target.value)


@dataclass(frozen=True)
class ExitStatus:
    """How a child process ended.

    ``code`` follows the ``subprocess`` convention: a negative value means
    the process was killed by signal ``-code``.
    """

    code: int

    @property
    def succeeded(self) -> bool:
        return self.code == 0

    @property
    def killed_by_signal(self) -> bool:
        return self.code < 0

    @property
    def signal(self) -> int | None:
        return -self.code if self.code < 0 else None

    def __str__(self) -> str:
        if self.killed_by_signal:
            return f"signal {self.signal}"
        return f"exit {self.code}"


@dataclass(frozen=True)
class ExecutionContext:
    """Where a command runs.

    Attributes:
        working_directory: Directory the command is spawned in.
        reference: Commit, branch or tag being deployed (informational).
        env: Variables overlaid on the inherited environment.
    """

    working_directory: str = "."
    reference: str | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class Execution:
    """One attempt to run a command under engine supervision.

    Only the owning :class:`~jobengine.execution.machine.ExecutionStateMachine`
    mutates an Execution; everyone else reads an :class:`ExecutionSnapshot`.
    """

    id: str
    project_key: str
    command: str
    context: ExecutionContext
    requester: Any
    state: ExecutionState
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_status: ExitStatus | None = None
    error: str | None = None
    cancelled_by: Any = None
    repo_id: Any = None

    @classmethod
    def create(
        cls,
        project_key: str,
        command: str,
        context: ExecutionContext | None = None,
        requester: Any = None,
    ) -> Execution:
        """Create a new execution in PENDING state."""
        return cls(
            id=str(uuid.uuid4()),
            project_key=project_key,
            command=command,
            context=context or ExecutionContext(),
            requester=requester,
            state=ExecutionState.PENDING,
            created_at=utcnow(),
        )

    def snapshot(self) -> ExecutionSnapshot:
        return ExecutionSnapshot(
            id=self.id,
            project_key=self.project_key,
            command=self.command,
            context=self.context,
            requester=self.requester,
            state=self.state,
            created_at=self.created_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            exit_status=self.exit_status,
            error=self.error,
            cancelled_by=self.cancelled_by,
            repo_id=self.repo_id,
        )


@dataclass(frozen=True)
class ExecutionSnapshot:
    """Immutable copy of an :class:`Execution` at one instant."""

    id: str
    project_key: str
    command: str
    context: ExecutionContext
    requester: Any
    state: ExecutionState
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_status: ExitStatus | None = None
    error: str | None = None
    cancelled_by: Any = None
    repo_id: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "project_key": self.project_key,
            "command": self.command,
            "working_directory": self.context.working_directory,
            "reference": self.context.reference,
            "requester": self.requester,
            "state": self.state.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "exit_status": self.exit_status.code if self.exit_status else None,
            "error": self.error,
            "cancelled_by": self.cancelled_by,
        }
