"""
Shared pytest fixtures for jobengine tests.

This module provides:
- Settings cache isolation
- Engines wired to an in-memory repository with a short grace period
- A scripted process runner for deterministic dispatcher tests
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from jobengine.core.settings import EngineSettings, clear_settings_cache
from jobengine.execution import InMemoryJobRepository, JobEngine
from tests._support.fakes import FakeRunner


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    root = Path(__file__).parent
    for item in items:
        parts = Path(item.fspath).relative_to(root).parts
        if parts and parts[0] in ("core", "cli"):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Fresh settings per test, unaffected by the caller's JOBENGINE_* variables."""
    import os

    for key in list(os.environ):
        if key.startswith("JOBENGINE_"):
            monkeypatch.delenv(key)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(grace_period_seconds=0.5, retained_executions=50)


@pytest.fixture
def repository() -> InMemoryJobRepository:
    return InMemoryJobRepository()


@pytest.fixture
def engine(settings: EngineSettings, repository: InMemoryJobRepository) -> Generator[JobEngine, None, None]:
    """Engine that spawns real processes."""
    engine = JobEngine(settings, repository=repository)
    yield engine
    engine.shutdown(wait=True, timeout=10)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_engine(
    settings: EngineSettings,
    repository: InMemoryJobRepository,
    fake_runner: FakeRunner,
) -> Generator[JobEngine, None, None]:
    """Engine whose processes are scripted through ``fake_runner``."""
    engine = JobEngine(settings, repository=repository, runner=fake_runner)
    yield engine
    engine.shutdown(wait=True, timeout=10)
