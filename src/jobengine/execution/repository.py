"""Job repository — durable record of executions.

The engine is write-mostly against the repository: it records creation,
every state change, and the final transcript. It never reads back through
this interface to make control decisions; mutual exclusion lives in the
dispatcher.

ARCHITECTURE
────────────
::

    JobRepository (Protocol)
      ├── .record_created(execution)               → repo id
      ├── .record_state_change(repo_id, state, …)
      ├── .record_output(repo_id, output)
      └── .find(repo_id)                           → ExecutionSnapshot
                                                     (raises ExecutionNotFound)
    Implementations
      ├── InMemoryJobRepository  ─ dict-backed, thread-safe (tests, CLI)
      └── SqliteJobRepository    ─ ``jobs`` table on a sqlite3 connection

Example::

    repo = SqliteJobRepository(sqlite3.connect("jobs.db", check_same_thread=False))
    engine = JobEngine(repository=repo)
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from ..core.errors import ExecutionNotFound
from .models import (
    Execution,
    ExecutionContext,
    ExecutionSnapshot,
    ExecutionState,
    ExitStatus,
)


@runtime_checkable
class JobRepository(Protocol):
    """Durable store for execution metadata."""

    def record_created(self, execution: Execution) -> Any:
        """Persist a new execution and return its repository id."""
        ...

    def record_state_change(
        self,
        repo_id: Any,
        state: ExecutionState,
        *,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        exit_status: ExitStatus | None = None,
    ) -> None:
        """Persist a lifecycle transition."""
        ...

    def record_output(self, repo_id: Any, output: str) -> None:
        """Persist the complete transcript of a finished execution."""
        ...

    def find(self, repo_id: Any) -> ExecutionSnapshot:
        """Return the stored execution or raise :class:`ExecutionNotFound`."""
        ...


class InMemoryJobRepository:
    """Dict-backed repository. Thread-safe.

    Keeps the ordered list of recorded states per execution, which makes
    it convenient for asserting lifecycles in tests.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, ExecutionSnapshot] = {}
        self._history: dict[str, list[ExecutionState]] = {}
        self._output: dict[str, str] = {}

    def record_created(self, execution: Execution) -> str:
        with self._lock:
            self._records[execution.id] = replace(execution.snapshot(), repo_id=execution.id)
            self._history[execution.id] = [execution.state]
        return execution.id

    def record_state_change(
        self,
        repo_id: str,
        state: ExecutionState,
        *,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        exit_status: ExitStatus | None = None,
    ) -> None:
        with self._lock:
            record = self._records.get(repo_id)
            if record is None:
                raise ExecutionNotFound(str(repo_id))
            self._records[repo_id] = replace(
                record,
                state=state,
                started_at=started_at,
                finished_at=finished_at,
                exit_status=exit_status,
            )
            self._history[repo_id].append(state)

    def record_output(self, repo_id: str, output: str) -> None:
        with self._lock:
            if repo_id not in self._records:
                raise ExecutionNotFound(str(repo_id))
            self._output[repo_id] = output

    def find(self, repo_id: str) -> ExecutionSnapshot:
        with self._lock:
            record = self._records.get(repo_id)
        if record is None:
            raise ExecutionNotFound(str(repo_id))
        return record

    def history(self, repo_id: str) -> list[ExecutionState]:
        with self._lock:
            return list(self._history.get(repo_id, []))

    def output(self, repo_id: str) -> str | None:
        with self._lock:
            return self._output.get(repo_id)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_id TEXT NOT NULL UNIQUE,
    project_key TEXT NOT NULL,
    command TEXT NOT NULL,
    working_directory TEXT,
    reference TEXT,
    requester TEXT,
    state TEXT NOT NULL,
    created_at TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    exit_status INTEGER,
    output TEXT
)
"""


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteJobRepository:
    """Stores executions in a ``jobs`` table.

    The connection is shared by worker threads, so open it with
    ``check_same_thread=False``; writes are serialised by an internal lock.
    """

    def __init__(self, conn: sqlite3.Connection, *, create_schema: bool = True):
        self._conn = conn
        self._lock = threading.Lock()
        if create_schema:
            with self._lock:
                self._conn.execute(_SCHEMA)
                self._conn.commit()

    def record_created(self, execution: Execution) -> int:
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO jobs (execution_id, project_key, command, working_directory,
                                  reference, requester, state, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    execution.id,
                    execution.project_key,
                    execution.command,
                    execution.context.working_directory,
                    execution.context.reference,
                    None if execution.requester is None else str(execution.requester),
                    execution.state.value,
                    _iso(execution.created_at),
                ),
            )
            self._conn.commit()
            return cursor.lastrowid

    def record_state_change(
        self,
        repo_id: int,
        state: ExecutionState,
        *,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        exit_status: ExitStatus | None = None,
    ) -> None:
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE jobs
                SET state = ?, started_at = ?, finished_at = ?, exit_status = ?
                WHERE id = ?
                """,
                (
                    state.value,
                    _iso(started_at),
                    _iso(finished_at),
                    exit_status.code if exit_status else None,
                    repo_id,
                ),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise ExecutionNotFound(str(repo_id))

    def record_output(self, repo_id: int, output: str) -> None:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE jobs SET output = ? WHERE id = ?",
                (output, repo_id),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise ExecutionNotFound(str(repo_id))

    def find(self, repo_id: int) -> ExecutionSnapshot:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT execution_id, project_key, command, working_directory, reference,
                       requester, state, created_at, started_at, finished_at, exit_status
                FROM jobs WHERE id = ?
                """,
                (repo_id,),
            ).fetchone()
        if row is None:
            raise ExecutionNotFound(str(repo_id))

        return ExecutionSnapshot(
            id=row[0],
            project_key=row[1],
            command=row[2],
            context=ExecutionContext(working_directory=row[3] or ".", reference=row[4]),
            requester=row[5],
            state=ExecutionState(row[6]),
            created_at=_parse(row[7]),
            started_at=_parse(row[8]),
            finished_at=_parse(row[9]),
            exit_status=ExitStatus(row[10]) if row[10] is not None else None,
            repo_id=repo_id,
        )

    def output(self, repo_id: int) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT output FROM jobs WHERE id = ?", (repo_id,)).fetchone()
        if row is None:
            raise ExecutionNotFound(str(repo_id))
        return row[0]
