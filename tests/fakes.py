# tests/fakes.py

from __future__ import annotations

import sqlite3
import threading

from trace_sync.tasks.task_models import Snapshot, TaskRecord
from trace_sync.tasks.task_store import TaskStore


class FakeTokenRepo:
    """In-memory TokenRepo: token -> subject. Optionally fails every lookup."""

    def __init__(self, tokens: dict[str, str] | None = None, *, broken: bool = False) -> None:
        self.tokens = dict(tokens or {})
        self.broken = broken
        self.lookups: list[str] = []

    def lookup(self, token: str) -> str | None:
        self.lookups.append(token)
        if self.broken:
            raise sqlite3.OperationalError("database is locked")
        return self.tokens.get(token)


class FlakyStore:
    """
    Wraps a real TaskStore; read_collection fails the next `failures` times.

    Used to exercise the feed reconnect path without touching the file.
    """

    def __init__(self, inner: TaskStore, failures: int = 0) -> None:
        self.inner = inner
        self.failures = failures
        self.reads = 0

    def create(self, text: str, creator_id: str, *, collection: str) -> str:
        return self.inner.create(text, creator_id, collection=collection)

    def toggle(self, task_id: str, caller_id: str | None = None, *, collection: str) -> TaskRecord:
        return self.inner.toggle(task_id, caller_id, collection=collection)

    def delete(self, task_id: str, caller_id: str | None, *, collection: str) -> None:
        self.inner.delete(task_id, caller_id, collection=collection)

    def revision(self, collection: str) -> int:
        return self.inner.revision(collection)

    def read_collection(self, collection: str) -> tuple[int, list[TaskRecord]]:
        self.reads += 1
        if self.failures > 0:
            self.failures -= 1
            raise sqlite3.OperationalError("disk I/O error")
        return self.inner.read_collection(collection)


class SnapshotRecorder:
    """Collects snapshots and feed errors delivered to a listener."""

    def __init__(self) -> None:
        self.snapshots: list[Snapshot] = []
        self.errors: list[Exception] = []

    def __call__(self, snap: Snapshot) -> None:
        self.snapshots.append(snap)

    def on_error(self, err: Exception) -> None:
        self.errors.append(err)

    @property
    def last(self) -> Snapshot:
        return self.snapshots[-1]


class HeldReadStore(FlakyStore):
    """
    TaskStore wrapper that can hold one read_collection result back.

    After hold(), the next read takes its data immediately, sets `read_taken`
    and then waits for release() before returning it.
    """

    def __init__(self, inner: TaskStore) -> None:
        super().__init__(inner)
        self.read_taken = threading.Event()
        self._release = threading.Event()
        self._hold_next = False

    def hold(self) -> None:
        self._hold_next = True
        self.read_taken.clear()
        self._release.clear()

    def release(self) -> None:
        self._release.set()

    def read_collection(self, collection: str) -> tuple[int, list[TaskRecord]]:
        held, self._hold_next = self._hold_next, False
        result = super().read_collection(collection)
        if held:
            self.read_taken.set()
            self._release.wait(timeout=5)
        return result
