# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from trace_sync.cli.bootstrap import create_session_context
from trace_sync.core.state import SessionContext
from trace_sync.tasks.change_feed import ChangeFeed
from trace_sync.tasks.task_models import collection_path
from trace_sync.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with SessionContext and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="trace-sync",
        app_id="test-app",
        namespace="artifacts",
        log_level="INFO",
        initial_auth_token=None,
        # Paths (tmp per test run)
        data_dir=tmp_path,
        store_path=tmp_path / "tasks.sqlite3",
        # Policy
        enforce_ownership=True,
        restrict_toggle=False,
        # Feed
        feed_poll_seconds=0.01,
        feed_reconnect_attempts=1,
    )


@pytest.fixture()
def collection(settings: SimpleNamespace) -> str:
    return collection_path(settings.namespace, settings.app_id)


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.store_path)


@pytest.fixture()
def feed(store: TaskStore) -> Iterator[ChangeFeed]:
    f = ChangeFeed(store)
    yield f
    f.close()


@pytest.fixture()
def make_ctx(settings: SimpleNamespace) -> Iterator[Callable[[], SessionContext]]:
    """
    Factory for session contexts sharing one store file.

    Each call is an independent session (own feed, own identity), like two
    console processes pointed at the same deployment.
    """
    created: list[SessionContext] = []

    def _make() -> SessionContext:
        ctx = create_session_context(settings=settings)
        created.append(ctx)
        return ctx

    yield _make
    for ctx in created:
        ctx.close()


@pytest.fixture()
def ctx(make_ctx: Callable[[], SessionContext]) -> SessionContext:
    return make_ctx()
