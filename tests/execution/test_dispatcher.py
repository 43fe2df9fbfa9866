"""
Tests for per-project queueing and dispatch.

Uses the scripted FakeRunner so the tests decide when each "process"
exits. Tests cover:
- FIFO start order and at most one running execution per project
- Independence of distinct project keys
- Cancelling queued executions without disturbing the rest
- Spawn failures advancing the queue
- Queries (active, queue_position) and retention of finished executions
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from jobengine.core.errors import ExecutionNotFound
from jobengine.core.settings import EngineSettings
from jobengine.execution import ExecutionState, InMemoryJobRepository, JobEngine
from tests._support.fakes import FakeRunner, wait_until

S = ExecutionState


def _state(engine, execution_id):
    return engine.get(execution_id).state


class TestSerialisation:
    def test_fifo_one_at_a_time(self, fake_engine, fake_runner):
        ids = [fake_engine.start_execution("p1", f"step {n}").id for n in range(4)]

        for n, execution_id in enumerate(ids):
            handle = fake_runner.wait_for_start(n + 1)
            assert handle.command == f"step {n}"
            assert wait_until(lambda: _state(fake_engine, execution_id) is S.RUNNING)
            running = [s for s in fake_engine.active("p1") if s.state is S.RUNNING]
            assert [s.id for s in running] == [execution_id]
            handle.exit(0)
            fake_engine.wait(execution_id, timeout=5)

        assert fake_runner.commands() == [f"step {n}" for n in range(4)]
        assert all(_state(fake_engine, i) is S.SUCCEEDED for i in ids)

    def test_failure_still_advances(self, fake_engine, fake_runner):
        first = fake_engine.start_execution("p1", "a")
        second = fake_engine.start_execution("p1", "b")

        fake_runner.wait_for_start(1).exit(1)
        assert fake_engine.wait(first.id, 5).state is S.FAILED
        fake_runner.wait_for_start(2).exit(0)
        assert fake_engine.wait(second.id, 5).state is S.SUCCEEDED

    def test_concurrent_enqueue_never_overlaps(self, fake_runner, repository):
        """Many threads enqueueing on one key: starts stay serial and complete."""
        overlap = []
        running = set()
        lock = threading.Lock()
        original_start = fake_runner.start

        def tracking_start(runnable, env=None):
            with lock:
                if running:
                    overlap.append(runnable.describe())
                running.add(env["JOBENGINE_EXECUTION_ID"])
            handle = original_start(runnable, env)
            original_exit = handle.exit

            def exit_and_untrack(code=0):
                with lock:
                    running.discard(env["JOBENGINE_EXECUTION_ID"])
                original_exit(code)

            handle.exit = exit_and_untrack
            threading.Timer(0.01, exit_and_untrack).start()
            return handle

        fake_runner.start = tracking_start
        engine = JobEngine(EngineSettings(retained_executions=100), repository=repository, runner=fake_runner)

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda n: engine.start_execution("p1", f"job {n}").id, range(20)))

        for execution_id in ids:
            assert engine.wait(execution_id, 10).state is S.SUCCEEDED
        assert overlap == []
        assert len(fake_runner.started) == 20
        engine.shutdown(wait=True, timeout=5)


class TestProjectIndependence:
    def test_other_project_starts_immediately(self, fake_engine, fake_runner):
        busy = fake_engine.start_execution("p1", "slow")
        queued = fake_engine.start_execution("p1", "queued")
        other = fake_engine.start_execution("p2", "other")

        assert _state(fake_engine, busy.id) is S.RUNNING
        assert _state(fake_engine, queued.id) is S.PENDING
        assert _state(fake_engine, other.id) is S.RUNNING
        assert fake_runner.commands() == ["slow", "other"]

    def test_active_filters_by_project(self, fake_engine):
        a = fake_engine.start_execution("p1", "a")
        b = fake_engine.start_execution("p1", "b")
        c = fake_engine.start_execution("p2", "c")

        assert [s.id for s in fake_engine.active("p1")] == [a.id, b.id]
        assert [s.id for s in fake_engine.active()] == [a.id, b.id, c.id]
        assert fake_engine.active("unknown") == []


class TestCancelQueued:
    def test_cancel_pending_keeps_order(self, fake_engine, fake_runner):
        head = fake_engine.start_execution("p1", "head")
        a = fake_engine.start_execution("p1", "a")
        b = fake_engine.start_execution("p1", "b")
        c = fake_engine.start_execution("p1", "c")

        snapshot = fake_engine.cancel_execution(b.id, requester="bob")

        assert snapshot.state is S.CANCELLED
        assert snapshot.cancelled_by == "bob"
        assert fake_engine.queue_position(a.id) == 1
        assert fake_engine.queue_position(b.id) is None
        assert fake_engine.queue_position(c.id) == 2

        fake_runner.wait_for_start(1).exit(0)
        fake_runner.wait_for_start(2).exit(0)
        fake_runner.wait_for_start(3).exit(0)
        fake_engine.wait(c.id, 5)

        assert fake_runner.commands() == ["head", "a", "c"]
        assert _state(fake_engine, head.id) is S.SUCCEEDED
        assert _state(fake_engine, b.id) is S.CANCELLED

    def test_cancel_running_promotes_next(self, fake_engine, fake_runner):
        first = fake_engine.start_execution("p1", "first")
        second = fake_engine.start_execution("p1", "second")

        fake_engine.cancel_execution(first.id)
        assert fake_engine.wait(first.id, 5).state is S.CANCELLED
        fake_runner.wait_for_start(2)
        assert wait_until(lambda: _state(fake_engine, second.id) is S.RUNNING)


class TestSpawnFailureInQueue:
    def test_errored_execution_releases_slot(self, settings, repository):
        runner = FakeRunner(fail={"missing-binary"})
        engine = JobEngine(settings, repository=repository, runner=runner)
        try:
            blocker = engine.start_execution("p1", "blocker")
            broken = engine.start_execution("p1", "missing-binary")
            after = engine.start_execution("p1", "after")

            runner.wait_for_start(1).exit(0)
            assert engine.wait(broken.id, 5).state is S.ERRORED
            runner.wait_for_start(2)
            assert wait_until(lambda: _state(engine, after.id) is S.RUNNING)
            assert runner.commands() == ["blocker", "after"]
            assert repository.history(broken.id) == [S.PENDING, S.ERRORED]
            assert _state(engine, blocker.id) is S.SUCCEEDED
        finally:
            engine.shutdown(wait=True, timeout=5)

    def test_long_run_of_failures_is_skipped(self, repository):
        runner = FakeRunner(fail={"missing-binary"})
        engine = JobEngine(
            EngineSettings(grace_period_seconds=0.5, retained_executions=1000),
            repository=repository,
            runner=runner,
        )
        try:
            engine.start_execution("p1", "blocker")
            broken = [engine.start_execution("p1", "missing-binary").id for _ in range(500)]
            after = engine.start_execution("p1", "after")

            runner.wait_for_start(1).exit(0)
            runner.wait_for_start(2)
            assert wait_until(lambda: _state(engine, after.id) is S.RUNNING)
            assert all(_state(engine, i) is S.ERRORED for i in broken)
            assert runner.commands() == ["blocker", "after"]
            assert engine.queue_position(after.id) == 0
        finally:
            engine.shutdown(wait=True, timeout=5)


class TestQueries:
    def test_queue_position(self, fake_engine, fake_runner):
        a = fake_engine.start_execution("p1", "a")
        b = fake_engine.start_execution("p1", "b")
        assert fake_engine.queue_position(a.id) == 0
        assert fake_engine.queue_position(b.id) == 1

        fake_runner.wait_for_start(1).exit(0)
        fake_engine.wait(a.id, 5)
        assert wait_until(lambda: fake_engine.queue_position(b.id) == 0)
        assert fake_engine.queue_position(a.id) is None

    def test_unknown_id(self, fake_engine):
        with pytest.raises(ExecutionNotFound):
            fake_engine.get("no-such-id")
        with pytest.raises(ExecutionNotFound):
            fake_engine.queue_position("no-such-id")

    def test_retention_evicts_oldest(self, fake_runner):
        engine = JobEngine(
            EngineSettings(retained_executions=2),
            repository=InMemoryJobRepository(),
            runner=fake_runner,
        )
        ids = []
        for n in range(3):
            ids.append(engine.start_execution("p1", f"job {n}").id)
            fake_runner.wait_for_start(n + 1).exit(0)
            engine.wait(ids[-1], 5)
            engine._dispatcher.get(ids[-1]).join_worker(5)

        with pytest.raises(ExecutionNotFound):
            engine.get(ids[0])
        assert engine.get(ids[1]).state is S.SUCCEEDED
        assert engine.get(ids[2]).state is S.SUCCEEDED
