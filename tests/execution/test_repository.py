"""Tests for the job repositories (in-memory and sqlite3)."""

import sqlite3

import pytest

from jobengine.core.errors import ExecutionNotFound
from jobengine.execution import (
    ExecutionContext,
    ExecutionState,
    InMemoryJobRepository,
    JobEngine,
    JobRepository,
    SqliteJobRepository,
)
from jobengine.execution.models import Execution, ExitStatus, utcnow
from tests._support.fakes import FakeRunner

S = ExecutionState


@pytest.fixture
def sqlite_repo():
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    yield SqliteJobRepository(conn)
    conn.close()


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, sqlite_repo):
    if request.param == "memory":
        return InMemoryJobRepository()
    return sqlite_repo


def _execution():
    return Execution.create("web", "cap deploy", ExecutionContext("/srv/web", "main"), "alice")


class TestProtocol:
    def test_implementations_satisfy_protocol(self, sqlite_repo):
        assert isinstance(InMemoryJobRepository(), JobRepository)
        assert isinstance(sqlite_repo, JobRepository)


class TestRecording:
    def test_created_then_find(self, repo):
        execution = _execution()
        repo_id = repo.record_created(execution)

        found = repo.find(repo_id)
        assert found.id == execution.id
        assert found.project_key == "web"
        assert found.command == "cap deploy"
        assert found.context.working_directory == "/srv/web"
        assert found.context.reference == "main"
        assert found.requester == "alice"
        assert found.state is S.PENDING
        assert found.repo_id == repo_id

    def test_state_changes(self, repo):
        execution = _execution()
        repo_id = repo.record_created(execution)
        started = utcnow()
        repo.record_state_change(repo_id, S.RUNNING, started_at=started)
        finished = utcnow()
        repo.record_state_change(
            repo_id, S.FAILED, started_at=started, finished_at=finished, exit_status=ExitStatus(2)
        )

        found = repo.find(repo_id)
        assert found.state is S.FAILED
        assert found.started_at == started
        assert found.finished_at == finished
        assert found.exit_status == ExitStatus(2)

    def test_output(self, repo):
        repo_id = repo.record_created(_execution())
        repo.record_output(repo_id, "line 1\nline 2\n")
        assert repo.output(repo_id) == "line 1\nline 2\n"

    def test_unknown_ids(self, repo):
        with pytest.raises(ExecutionNotFound):
            repo.find(424242)
        with pytest.raises(ExecutionNotFound):
            repo.record_state_change(424242, S.RUNNING)
        with pytest.raises(ExecutionNotFound):
            repo.record_output(424242, "")


class TestInMemoryHistory:
    def test_history_order(self):
        repo = InMemoryJobRepository()
        repo_id = repo.record_created(_execution())
        repo.record_state_change(repo_id, S.RUNNING)
        repo.record_state_change(repo_id, S.SUCCEEDED)
        assert repo.history(repo_id) == [S.PENDING, S.RUNNING, S.SUCCEEDED]


class TestEngineWithSqlite:
    def test_engine_records_lifecycle(self, sqlite_repo, settings):
        runner = FakeRunner()
        engine = JobEngine(settings, repository=sqlite_repo, runner=runner)

        execution = engine.start_execution("web", "cap deploy", requester="alice")
        handle = runner.wait_for_start(1)
        handle.emit("deploying\n")
        handle.exit(0)
        snapshot = engine.wait(execution.id, 5)

        stored = sqlite_repo.find(snapshot.repo_id)
        assert isinstance(snapshot.repo_id, int)
        assert stored.id == execution.id
        assert stored.state is S.SUCCEEDED
        assert stored.exit_status == ExitStatus(0)
        assert sqlite_repo.output(snapshot.repo_id) == "deploying\n"
        engine.shutdown()
