"""Job engine — the public entry point.

ARCHITECTURE
────────────
::

    JobEngine(settings, repository, runner)
      ├── .is_enabled() / .set_enabled(flag)     ─ EngineSwitch
      ├── .start_execution(key, command, context, requester)
      │                                          ─ EngineDisabled | snapshot
      ├── .cancel_execution(id, requester)       ─ ExecutionNotFound | AlreadyTerminal
      ├── .subscribe(id)                         ─ Subscription (replay + live)
      ├── .get(id) / .active(key) / .queue_position(id)
      ├── .wait(id, timeout)
      └── .shutdown(wait, timeout)

Disabling the engine only gates new requests: queued and running
executions carry on to completion. Who may cancel what is the caller's
decision; the engine only records the requester.

Example::

    engine = JobEngine()
    execution = engine.start_execution(
        "billing",
        "cap production deploy",
        ExecutionContext(working_directory="/srv/billing", reference="master"),
        requester="alice",
    )
    for line in engine.subscribe(execution.id):
        print(line, end="")
"""

from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from typing import Any

from ..core.errors import ConfigError, EngineDisabled
from ..core.logging import get_logger
from ..core.settings import EngineSettings, get_settings
from .broadcast import Subscription
from .dispatcher import Dispatcher
from .models import ExecutionContext, ExecutionSnapshot
from .process import ProcessRunner
from .repository import InMemoryJobRepository, JobRepository
from .runnable import Runnable, as_runnable

logger = get_logger(__name__)


class EngineSwitch:
    """Process-wide enabled flag with guarded reads and writes."""

    def __init__(self, enabled: bool = True):
        self._lock = threading.Lock()
        self._enabled = enabled

    def is_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set(self, enabled: bool) -> bool:
        """Set the flag and return its previous value."""
        with self._lock:
            previous, self._enabled = self._enabled, enabled
            return previous


class JobEngine:
    """Runs deployment commands, one at a time per project."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        repository: JobRepository | None = None,
        runner: ProcessRunner | None = None,
    ):
        self.settings = settings or get_settings()
        if self.settings.max_per_project != 1:
            raise ConfigError(
                "Only one concurrent execution per project is supported",
            ).with_context(max_per_project=self.settings.max_per_project)

        self.repository = repository if repository is not None else InMemoryJobRepository()
        self._switch = EngineSwitch(self.settings.enabled)
        self._dispatcher = Dispatcher(
            runner=runner or ProcessRunner(),
            repository=self.repository,
            grace_period=self.settings.grace_period_seconds,
            retained_executions=self.settings.retained_executions,
        )

    # ------------------------------------------------------------------ #
    # Enabled flag
    # ------------------------------------------------------------------ #

    def is_enabled(self) -> bool:
        return self._switch.is_enabled()

    def set_enabled(self, enabled: bool) -> None:
        previous = self._switch.set(enabled)
        if previous != enabled:
            logger.info("engine_toggled", enabled=enabled)

    # ------------------------------------------------------------------ #
    # Control surface
    # ------------------------------------------------------------------ #

    def start_execution(
        self,
        project_key: str,
        command: str | Sequence[str] | Runnable,
        context: ExecutionContext | None = None,
        requester: Any = None,
    ) -> ExecutionSnapshot:
        """Queue *command* for *project_key*; starts at once if the project is idle.

        Returns promptly; the command runs on its own worker thread.

        Raises:
            EngineDisabled: The engine is disabled; nothing was created.
            ValueError: The command is empty.
        """
        if not self.is_enabled():
            raise EngineDisabled().with_context(project_key=project_key)

        context = context or ExecutionContext()
        runnable = as_runnable(command, context, shell=self.settings.shell)
        return self._dispatcher.enqueue(project_key, runnable, context, requester)

    def cancel_execution(self, execution_id: str, requester: Any = None) -> ExecutionSnapshot:
        """Cancel a queued or running execution.

        Raises:
            ExecutionNotFound: Unknown id; nothing changes.
            AlreadyTerminal: The execution already finished; nothing changes.
        """
        return self._dispatcher.cancel(execution_id, requester)

    def subscribe(self, execution_id: str) -> Subscription:
        """Follow an execution's output: the transcript so far, then live chunks.

        Raises:
            ExecutionNotFound: Unknown (or already released) execution id.
        """
        return self._dispatcher.get(execution_id).channel.subscribe()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get(self, execution_id: str) -> ExecutionSnapshot:
        return self._dispatcher.get(execution_id).snapshot()

    def output(self, execution_id: str) -> str:
        """Transcript produced so far."""
        return self._dispatcher.get(execution_id).channel.text()

    def active(self, project_key: str | None = None) -> list[ExecutionSnapshot]:
        return self._dispatcher.active(project_key)

    def queue_position(self, execution_id: str) -> int | None:
        return self._dispatcher.queue_position(execution_id)

    def wait(self, execution_id: str, timeout: float | None = None) -> ExecutionSnapshot:
        """Block until the execution is terminal.

        Raises:
            TimeoutError: If *timeout* elapses first.
        """
        machine = self._dispatcher.get(execution_id)
        if not machine.wait(timeout):
            raise TimeoutError(f"Execution {execution_id} still {machine.state.value} after {timeout}s")
        return machine.snapshot()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def shutdown(self, wait: bool = True, timeout: float | None = None, requester: Any = "shutdown") -> None:
        """Disable the engine and cancel everything queued or running."""
        self.set_enabled(False)
        cancelled = self._dispatcher.cancel_all(requester)
        logger.info("engine_shutdown", cancelled=len(cancelled))
        if not wait:
            return

        deadline = None if timeout is None else time.monotonic() + timeout
        for machine in self._dispatcher.machines():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            machine.wait(remaining)
            machine.join_worker(remaining)

    def __enter__(self) -> JobEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)
