"""Per-project queue & dispatcher — at most one running execution per project.

WHY
───
Two deploys of the same project must never run concurrently, but a deploy
of project A must never wait for project B. The decision is made in memory,
per project key, under a lock that only guards queue pointers: spawning a
process, draining its output and talking to the repository all happen
outside it.

ARCHITECTURE
────────────
::

    Dispatcher(runner, repository)
      ├── .enqueue(key, runnable, …)  ─ PENDING; promote if the slot is free
      ├── .on_terminal(machine)       ─ free the slot, promote the queue head
      │                                 (entries that fail to spawn are
      │                                 errored and skipped in one loop)
      ├── .cancel(id, requester)      ─ dequeue (if queued) + cancel
      ├── .get(id)                    ─ ExecutionStateMachine
      ├── .active(key=None)           ─ running + queued, admission order
      └── .cancel_all()               ─ shutdown helper

    ProjectQueue (one per key, created lazily, never destroyed)
      running: execution id | None
      pending: deque[execution id]    FIFO = admission order

Lock order: ``Dispatcher._lock`` (registry) and ``ProjectQueue.lock`` are
never held together; a machine's own lock is never taken while a queue
lock is held.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..core.errors import AlreadyTerminal, ExecutionNotFound, IllegalStateTransition
from ..core.logging import get_logger
from .machine import ExecutionStateMachine
from .models import Execution, ExecutionContext, ExecutionSnapshot
from .process import ProcessRunner
from .runnable import Runnable

logger = get_logger(__name__)


@dataclass
class ProjectQueue:
    """Running slot plus FIFO of pending execution ids for one project."""

    key: str
    running: str | None = None
    pending: deque[str] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def promote(self) -> str | None:
        """Move the queue head into the free running slot. Caller holds ``lock``."""
        if self.running is None and self.pending:
            self.running = self.pending.popleft()
            return self.running
        return None

    def position(self, execution_id: str) -> int | None:
        """0 for the running execution, 1.. for queued ones. Caller holds ``lock``."""
        if self.running == execution_id:
            return 0
        try:
            return self.pending.index(execution_id) + 1
        except ValueError:
            return None


class Dispatcher:
    """Admits executions per project key and keeps each key serialised."""

    def __init__(
        self,
        *,
        runner: ProcessRunner,
        repository: Any,
        grace_period: float = 5.0,
        retained_executions: int = 200,
    ):
        self._runner = runner
        self._repository = repository
        self._grace_period = grace_period
        self._retained = retained_executions

        self._lock = threading.Lock()
        self._queues: dict[str, ProjectQueue] = {}
        self._machines: dict[str, ExecutionStateMachine] = {}
        self._finished: deque[str] = deque()

    # ------------------------------------------------------------------ #
    # Admission
    # ------------------------------------------------------------------ #

    def enqueue(
        self,
        project_key: str,
        runnable: Runnable,
        context: ExecutionContext | None = None,
        requester: Any = None,
    ) -> ExecutionSnapshot:
        """Create a PENDING execution and start it if the project is idle."""
        execution = Execution.create(project_key, runnable.describe(), context, requester)
        execution.repo_id = self._repository.record_created(execution)

        machine = ExecutionStateMachine(
            execution,
            runnable,
            runner=self._runner,
            repository=self._repository,
            on_terminal=self.on_terminal,
            grace_period=self._grace_period,
        )

        with self._lock:
            self._machines[execution.id] = machine
            queue = self._queues.get(project_key)
            if queue is None:
                queue = self._queues[project_key] = ProjectQueue(project_key)

        with queue.lock:
            queue.pending.append(execution.id)
            promoted = queue.promote()
            position = queue.position(execution.id)

        logger.info(
            "execution_enqueued",
            execution_id=execution.id,
            project_key=project_key,
            requester=requester,
            position=position,
        )

        self._advance(promoted)
        return machine.snapshot()

    def on_terminal(self, machine: ExecutionStateMachine) -> None:
        """Free the project's running slot and start the next queued execution."""
        self._advance(self._release(machine))

    def _release(self, machine: ExecutionStateMachine) -> str | None:
        """Clear the running slot held by *machine*; return the promoted id."""
        queue = self._queue(machine.project_key)
        with queue.lock:
            if queue.running == machine.id:
                queue.running = None
                promoted = queue.promote()
            else:
                promoted = None

        self._retire(machine.id)
        return promoted

    def _advance(self, execution_id: str | None) -> None:
        """Start promoted executions until one is running or the queue is empty.

        A spawn failure is terminal without a running process, so the loop
        releases the slot and promotes the next entry itself.
        """
        while execution_id is not None:
            machine = self._machines_get(execution_id)
            if machine is None:
                return
            try:
                if machine.start():
                    return
            except IllegalStateTransition:
                # cancelled between promotion and start; on_terminal already ran
                logger.debug("promotion_skipped", execution_id=execution_id, state=machine.state.value)
                return
            execution_id = self._release(machine)

    def _retire(self, execution_id: str) -> None:
        """Keep the newest finished executions for late subscribers."""
        with self._lock:
            self._finished.append(execution_id)
            while len(self._finished) > self._retained:
                self._machines.pop(self._finished.popleft(), None)

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #

    def cancel(self, execution_id: str, requester: Any = None) -> ExecutionSnapshot:
        """Cancel a queued or running execution.

        A queued execution is removed from its project's queue without
        disturbing the order of the others and never spawns.

        Raises:
            ExecutionNotFound: Unknown id.
            AlreadyTerminal: The execution already finished.
        """
        machine = self.get(execution_id)
        queue = self._queue(machine.project_key)
        with queue.lock:
            if execution_id in queue.pending:
                queue.pending.remove(execution_id)
        return machine.cancel(requester)

    def cancel_all(self, requester: Any = None) -> list[ExecutionSnapshot]:
        """Cancel every queued execution, then every running one."""
        with self._lock:
            queues = list(self._queues.values())

        queued: list[str] = []
        running: list[str] = []
        for queue in queues:
            with queue.lock:
                queued.extend(queue.pending)
                if queue.running is not None:
                    running.append(queue.running)

        cancelled = []
        for execution_id in queued + running:
            try:
                cancelled.append(self.cancel(execution_id, requester))
            except (AlreadyTerminal, ExecutionNotFound):
                continue
        return cancelled

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get(self, execution_id: str) -> ExecutionStateMachine:
        machine = self._machines_get(execution_id)
        if machine is None:
            raise ExecutionNotFound(execution_id)
        return machine

    def active(self, project_key: str | None = None) -> list[ExecutionSnapshot]:
        """Running then queued executions, per project in admission order."""
        with self._lock:
            queues = [
                q for k, q in sorted(self._queues.items())
                if project_key is None or k == project_key
            ]

        ids: list[str] = []
        for queue in queues:
            with queue.lock:
                if queue.running is not None:
                    ids.append(queue.running)
                ids.extend(queue.pending)
        return [m.snapshot() for m in self._lookup(ids)]

    def queue_position(self, execution_id: str) -> int | None:
        """0 if running, n if n-th in line, None once finished."""
        machine = self.get(execution_id)
        queue = self._queue(machine.project_key)
        with queue.lock:
            return queue.position(execution_id)

    def machines(self) -> list[ExecutionStateMachine]:
        with self._lock:
            return list(self._machines.values())

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _queue(self, project_key: str) -> ProjectQueue:
        with self._lock:
            return self._queues[project_key]

    def _machines_get(self, execution_id: str) -> ExecutionStateMachine | None:
        with self._lock:
            return self._machines.get(execution_id)

    def _lookup(self, ids: Iterable[str]) -> list[ExecutionStateMachine]:
        with self._lock:
            return [self._machines[i] for i in ids if i in self._machines]
