"""Execution state machine — owns one execution's lifecycle.

ARCHITECTURE
────────────
::

    ExecutionStateMachine(execution, runner, repository, on_terminal)
      ├── .start()                ─ PENDING → RUNNING (spawn + worker thread)
      │                             PENDING → ERRORED  (SpawnError)
      ├── .cancel(requester)      ─ PENDING → CANCELLED (immediate)
      │                             RUNNING → CANCELLED (terminate, kill after grace)
      ├── .wait(timeout)          ─ block until terminal
      ├── .snapshot()             ─ stable read-only copy
      └── .channel                ─ OutputChannel (transcript + live feed)

    Worker thread (one per running execution)
      drain output → channel.publish()
      handle.wait() → SUCCEEDED | FAILED | CANCELLED
      unexpected exception → ERRORED

Each transition, in order:
    1. validate + mutate the Execution under the machine lock
    2. record the change with the Job Repository
    3. on a terminal state: hand the transcript to the repository, close
       the channel, and call ``on_terminal`` so the dispatcher advances
       the project's queue (not for spawn failures, which ``start()``
       reports by returning False)

Steps 2 and 3 happen under the machine's own lock so repository writes
for one execution arrive in lifecycle order; ``on_terminal`` is called
after the lock is released.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from ..core.errors import AlreadyTerminal, IllegalStateTransition, SpawnError
from ..core.logging import execution_context, get_logger
from .broadcast import OutputChannel
from .models import (
    Execution,
    ExecutionSnapshot,
    ExecutionState,
    ExitStatus,
    utcnow,
    validate_execution_transition,
)
from .process import ProcessHandle, ProcessRunner
from .runnable import Runnable

logger = get_logger(__name__)


class ExecutionStateMachine:
    """Drives a single :class:`Execution` from PENDING to a terminal state."""

    def __init__(
        self,
        execution: Execution,
        runnable: Runnable,
        *,
        runner: ProcessRunner,
        repository: Any,
        on_terminal: Callable[[ExecutionStateMachine], None] | None = None,
        grace_period: float = 5.0,
    ):
        self._execution = execution
        self._runnable = runnable
        self._runner = runner
        self._repository = repository
        self._on_terminal = on_terminal
        self._grace_period = grace_period

        self.channel = OutputChannel()
        self._lock = threading.RLock()
        self._done = threading.Event()
        self._handle: ProcessHandle | None = None
        self._worker: threading.Thread | None = None
        self._kill_timer: threading.Timer | None = None
        self._cancel_requested = False

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #

    @property
    def id(self) -> str:
        return self._execution.id

    @property
    def project_key(self) -> str:
        return self._execution.project_key

    @property
    def state(self) -> ExecutionState:
        with self._lock:
            return self._execution.state

    def snapshot(self) -> ExecutionSnapshot:
        with self._lock:
            return self._execution.snapshot()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the execution is terminal. Returns False on timeout."""
        return self._done.wait(timeout)

    def join_worker(self, timeout: float | None = None) -> None:
        """Wait for the output/exit worker thread, if one was started."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def start(self) -> bool:
        """Spawn the process and move to RUNNING.

        A spawn failure moves the execution straight to ERRORED; the
        execution never enters RUNNING. That outcome is reported through
        the return value only: ``on_terminal`` is not called, so the caller
        that started the execution moves on to the next one itself.

        Returns:
            True if the process is running, False if it failed to spawn.

        Raises:
            IllegalStateTransition: If the execution is not PENDING (for
                example it was cancelled while being promoted).
        """
        with self._lock:
            validate_execution_transition(self._execution.state, ExecutionState.RUNNING)
            try:
                handle = self._runner.start(self._runnable, env=self._child_env())
            except SpawnError as exc:
                exc.with_context(execution_id=self.id, project_key=self.project_key)
                logger.warning("spawn_failed", **exc.to_dict())
                self._publish(f"{exc.message}\n")
                self._transition(ExecutionState.ERRORED, error=exc.message)
                self._done.set()
                return False

            self._handle = handle
            self._transition(ExecutionState.RUNNING, started_at=utcnow())
            self._worker = threading.Thread(
                target=self._supervise,
                args=(handle,),
                name=f"execution-{self.id[:8]}",
                daemon=True,
            )
            self._worker.start()
            return True

    def cancel(self, requester: Any = None) -> ExecutionSnapshot:
        """Cancel the execution.

        PENDING executions are cancelled immediately. RUNNING executions are
        sent a graceful termination; if the command has not finished after
        the grace period, its whole process group is killed. The CANCELLED
        transition happens once the output is drained, so this call returns
        without waiting for it.

        Raises:
            AlreadyTerminal: If the execution already finished.
        """
        with self._lock:
            state = self._execution.state
            if state.is_terminal:
                logger.info(
                    "cancel_rejected",
                    execution_id=self.id,
                    project_key=self.project_key,
                    state=state.value,
                    requester=requester,
                )
                raise AlreadyTerminal(self.id, state.value).with_context(
                    project_key=self.project_key,
                )

            if state is ExecutionState.PENDING:
                self._execution.cancelled_by = requester
                self._transition(ExecutionState.CANCELLED)
                pending = True
            else:
                pending = False
                if not self._cancel_requested:
                    self._cancel_requested = True
                    self._execution.cancelled_by = requester
                    logger.info(
                        "execution_cancel_requested",
                        execution_id=self.id,
                        project_key=self.project_key,
                        requester=requester,
                        grace_period=self._grace_period,
                    )
                    self._request_stop()
            snapshot = self._execution.snapshot()

        if pending:
            self._finish()
        return snapshot

    def _request_stop(self) -> None:
        handle = self._handle
        if handle is None:
            return
        handle.terminate()
        self._kill_timer = threading.Timer(self._grace_period, self._force_kill)
        self._kill_timer.daemon = True
        self._kill_timer.start()

    def _force_kill(self) -> None:
        # RUNNING until the output is drained: the leader may already be
        # gone while a descendant still holds the pipe open
        handle = self._handle
        if handle is None or self.state is not ExecutionState.RUNNING:
            return
        logger.warning(
            "execution_force_killed",
            execution_id=self.id,
            project_key=self.project_key,
            grace_period=self._grace_period,
            leader_exited=handle.returncode is not None,
        )
        handle.kill()

    # ------------------------------------------------------------------ #
    # Worker
    # ------------------------------------------------------------------ #

    def _supervise(self, handle: ProcessHandle) -> None:
        """Drain output, wait for exit and record the terminal state."""
        with execution_context(self.id, self.project_key):
            try:
                for line in handle.output():
                    self._publish(line)
                status = handle.wait()
            except Exception as exc:
                logger.exception("execution_supervision_failed")
                handle.kill()
                with self._lock:
                    self._transition(
                        ExecutionState.ERRORED,
                        error=f"{type(exc).__name__}: {exc}",
                        finished_at=utcnow(),
                    )
            else:
                with self._lock:
                    self._complete(status)
            finally:
                if self._kill_timer is not None:
                    self._kill_timer.cancel()

        self._finish()

    def _complete(self, status: ExitStatus) -> None:
        if self._cancel_requested:
            target = ExecutionState.CANCELLED
        elif status.succeeded:
            target = ExecutionState.SUCCEEDED
        else:
            target = ExecutionState.FAILED
        self._transition(target, exit_status=status, finished_at=utcnow())

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _transition(self, target: ExecutionState, **fields: Any) -> None:
        """Apply *target* and record it. Caller holds ``self._lock``."""
        execution = self._execution
        try:
            validate_execution_transition(execution.state, target)
        except IllegalStateTransition as exc:
            exc.with_context(execution_id=self.id, project_key=self.project_key)
            logger.warning("illegal_transition", **exc.to_dict())
            raise

        execution.state = target
        for name, value in fields.items():
            setattr(execution, name, value)
        if target.is_terminal and execution.finished_at is None:
            execution.finished_at = utcnow()

        if target is ExecutionState.RUNNING:
            logger.info(
                "execution_started",
                execution_id=self.id,
                project_key=self.project_key,
                command=execution.command,
            )
        elif target.is_terminal:
            snapshot = execution.snapshot()
            logger.info(
                "execution_finished",
                execution_id=self.id,
                project_key=self.project_key,
                state=target.value,
                exit_status=str(snapshot.exit_status) if snapshot.exit_status else None,
                duration_seconds=snapshot.duration_seconds,
            )

        self._record_state(execution)
        if target.is_terminal:
            self._record_output(execution)
            self.channel.close()

    def _finish(self) -> None:
        """Signal waiters and the dispatcher once the state is terminal."""
        self._done.set()
        if self._on_terminal is not None:
            self._on_terminal(self)

    def _publish(self, chunk: str) -> None:
        self.channel.publish(chunk)

    def _child_env(self) -> dict[str, str]:
        execution = self._execution
        env = {
            "JOBENGINE_EXECUTION_ID": execution.id,
            "JOBENGINE_PROJECT": execution.project_key,
        }
        if execution.context.reference:
            env["JOBENGINE_REFERENCE"] = execution.context.reference
        return env

    def _record_state(self, execution: Execution) -> None:
        try:
            self._repository.record_state_change(
                execution.repo_id,
                execution.state,
                started_at=execution.started_at,
                finished_at=execution.finished_at,
                exit_status=execution.exit_status,
            )
        except Exception:
            logger.exception(
                "repository_write_failed",
                execution_id=execution.id,
                state=execution.state.value,
            )

    def _record_output(self, execution: Execution) -> None:
        try:
            self._repository.record_output(execution.repo_id, self.channel.text())
        except Exception:
            logger.exception("repository_write_failed", execution_id=execution.id, what="output")

    def __repr__(self) -> str:
        return f"<ExecutionStateMachine {self.id} {self.project_key} {self.state.value}>"
