# src/trace_sync/tasks/change_feed.py

from __future__ import annotations

"""
Change feed over the record store.

Listeners registered with on_snapshot() get the full current snapshot
immediately and a new snapshot (with an added/modified/removed delta) after
every committed change to the collection, whoever made it.

Changes are picked up two ways:
- refresh(collection) right after a local mutation commits,
- poll_once() comparing stored revisions (mutations from other processes).

A listener never receives an older revision than it has seen, nor the same
revision twice except after a reconnect, which always re-delivers a fresh
full snapshot.

Callbacks run on the thread calling refresh/poll (the session event loop).
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from ..core.ports import CancelFn, FeedErrorCallback, RecordRepo, SnapshotCallback
from ..errors import FeedError
from .task_models import Snapshot, TaskRecord, diff_records, sort_newest_first

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Fetched:
    revision: int
    records: list[TaskRecord]
    from_reconnect: bool = False


@dataclass(eq=False, slots=True)
class _Listener:
    collection: str
    callback: SnapshotCallback
    on_error: FeedErrorCallback | None
    last_revision: int | None = None
    last_records: dict[str, TaskRecord] = field(default_factory=dict)
    active: bool = True


class ChangeFeed:
    def __init__(self, store: RecordRepo, *, reconnect_attempts: int = 1) -> None:
        self._store = store
        self._reconnect_attempts = max(0, int(reconnect_attempts))
        self._listeners: dict[str, list[_Listener]] = {}
        self._lock = threading.RLock()

    # ---- subscription ----

    def on_snapshot(
        self,
        collection: str,
        callback: SnapshotCallback,
        on_error: FeedErrorCallback | None = None,
    ) -> CancelFn:
        """
        Subscribe to a collection. Returns an idempotent cancel function.

        Raises FeedError if the initial snapshot cannot be read.
        """
        fetched = self._fetch(collection)
        listener = _Listener(collection=collection, callback=callback, on_error=on_error)
        with self._lock:
            self._listeners.setdefault(collection, []).append(listener)
        logger.debug("Listener added collection=%s", collection)
        self._deliver(listener, fetched, force=True)

        def cancel() -> None:
            self._remove(listener)

        return cancel

    async def stream(self, collection: str) -> AsyncIterator[Snapshot]:
        """Async iterator of snapshots; raises FeedError when the feed is lost."""
        queue: asyncio.Queue[Snapshot | FeedError] = asyncio.Queue()
        cancel = self.on_snapshot(collection, queue.put_nowait, on_error=queue.put_nowait)
        try:
            while True:
                item = await queue.get()
                if isinstance(item, FeedError):
                    raise item
                yield item
        finally:
            cancel()

    def listener_count(self, collection: str | None = None) -> int:
        with self._lock:
            if collection is not None:
                return len(self._listeners.get(collection, []))
            return sum(len(v) for v in self._listeners.values())

    def close(self) -> None:
        with self._lock:
            listeners = [lst for group in self._listeners.values() for lst in group]
            self._listeners.clear()
        for listener in listeners:
            listener.active = False
        logger.debug("ChangeFeed closed (%d listeners cancelled)", len(listeners))

    # ---- delivery ----

    def refresh(self, collection: str) -> int:
        """Re-read a collection and deliver to its listeners. Returns deliveries made."""
        if not self._listeners_of(collection):
            return 0
        try:
            fetched = self._fetch(collection)
        except FeedError as e:
            self._fail(collection, e)
            return 0
        return self._publish(collection, fetched)

    async def refresh_async(self, collection: str) -> int:
        """Like refresh(), but reads the store in a worker thread."""
        if not self._listeners_of(collection):
            return 0
        try:
            fetched = await asyncio.to_thread(self._fetch, collection)
        except FeedError as e:
            self._fail(collection, e)
            return 0
        return self._publish(collection, fetched)

    def stale_collections(self) -> list[str]:
        """Collections whose stored revision differs from what a listener last saw."""
        with self._lock:
            watched = {c: list(group) for c, group in self._listeners.items() if group}

        stale: list[str] = []
        for collection, listeners in watched.items():
            try:
                rev = self._store.revision(collection)
            except Exception:
                # refresh() will run the reconnect path and surface the error.
                logger.warning("revision check failed collection=%s", collection, exc_info=True)
                stale.append(collection)
                continue
            if any(lst.last_revision != rev for lst in listeners):
                stale.append(collection)
        return stale

    def poll_once(self) -> int:
        return sum(self.refresh(c) for c in self.stale_collections())

    async def poll(self) -> int:
        stale = await asyncio.to_thread(self.stale_collections)
        delivered = 0
        for collection in stale:
            delivered += await self.refresh_async(collection)
        return delivered

    # ---- internals ----

    def _listeners_of(self, collection: str) -> list[_Listener]:
        with self._lock:
            return [lst for lst in self._listeners.get(collection, []) if lst.active]

    def _remove(self, listener: _Listener) -> None:
        with self._lock:
            if not listener.active:
                return
            listener.active = False
            listeners = self._listeners.get(listener.collection, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(listener.collection, None)
        logger.debug("Listener cancelled collection=%s", listener.collection)

    def _fetch(self, collection: str) -> _Fetched:
        """Read a collection, reconnecting up to `reconnect_attempts` times."""
        attempt = 0
        while True:
            try:
                revision, records = self._store.read_collection(collection)
                return _Fetched(revision=revision, records=records, from_reconnect=attempt > 0)
            except Exception as e:
                if attempt >= self._reconnect_attempts:
                    raise FeedError(f"feed lost for {collection}: {e}") from e
                attempt += 1
                logger.warning(
                    "Feed read failed collection=%s, reconnecting (attempt %d/%d): %s",
                    collection,
                    attempt,
                    self._reconnect_attempts,
                    e,
                )

    def _publish(self, collection: str, fetched: _Fetched) -> int:
        delivered = 0
        for listener in self._listeners_of(collection):
            if self._deliver(listener, fetched, force=fetched.from_reconnect):
                delivered += 1
        return delivered

    def _deliver(self, listener: _Listener, fetched: _Fetched, *, force: bool = False) -> bool:
        if not listener.active:
            return False
        last = listener.last_revision
        if last is not None:
            # An overlapping read may finish after a newer one; never go back.
            if fetched.revision < last:
                return False
            if fetched.revision == last and not force:
                return False

        current = {r.id: r for r in fetched.records}
        snapshot = Snapshot(
            collection=listener.collection,
            records=tuple(sort_newest_first(fetched.records)),
            changes=tuple(diff_records(listener.last_records, current)),
            revision=fetched.revision,
            from_reconnect=fetched.from_reconnect,
        )
        listener.last_revision = fetched.revision
        listener.last_records = current

        try:
            listener.callback(snapshot)
        except Exception:
            logger.exception("Snapshot listener crashed collection=%s", listener.collection)
        return True

    def _fail(self, collection: str, error: FeedError) -> None:
        logger.error("Feed error collection=%s: %s", collection, error)
        for listener in self._listeners_of(collection):
            self._remove(listener)
            if listener.on_error is None:
                continue
            try:
                listener.on_error(error)
            except Exception:
                logger.exception("Feed error handler crashed collection=%s", collection)
