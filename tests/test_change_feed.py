# tests/test_change_feed.py

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from trace_sync.errors import FeedError
from trace_sync.tasks.change_feed import ChangeFeed
from trace_sync.tasks.feed_poller import run_feed_poller
from trace_sync.tasks.task_models import ChangeKind
from trace_sync.tasks.task_store import TaskStore

from .fakes import FlakyStore, HeldReadStore, SnapshotRecorder


def test_subscribe_delivers_full_initial_snapshot(store: TaskStore, feed: ChangeFeed, collection: str) -> None:
    a = store.create("a", "alice", collection=collection)
    b = store.create("b", "alice", collection=collection)
    rec = SnapshotRecorder()

    feed.on_snapshot(collection, rec)

    assert len(rec.snapshots) == 1
    snap = rec.last
    assert [r.id for r in snap.records] == [b, a]
    assert {ch.kind for ch in snap.changes} == {ChangeKind.ADDED}
    assert snap.revision == 2


def test_refresh_delivers_change_to_every_listener(store: TaskStore, feed: ChangeFeed, collection: str) -> None:
    r1, r2 = SnapshotRecorder(), SnapshotRecorder()
    feed.on_snapshot(collection, r1)
    feed.on_snapshot(collection, r2)

    task_id = store.create("buy milk", "alice", collection=collection)
    assert feed.refresh(collection) == 2

    for rec in (r1, r2):
        assert len(rec.snapshots) == 2
        (change,) = rec.last.changes
        assert change.kind == ChangeKind.ADDED
        assert change.record.id == task_id
        assert change.record.completed is False


def test_refresh_without_new_revision_delivers_nothing(store: TaskStore, feed: ChangeFeed, collection: str) -> None:
    rec = SnapshotRecorder()
    feed.on_snapshot(collection, rec)

    assert feed.refresh(collection) == 0
    assert feed.poll_once() == 0
    assert len(rec.snapshots) == 1


def test_cancel_stops_delivery_and_is_idempotent(store: TaskStore, feed: ChangeFeed, collection: str) -> None:
    rec = SnapshotRecorder()
    cancel = feed.on_snapshot(collection, rec)

    cancel()
    cancel()
    store.create("late", "alice", collection=collection)
    feed.refresh(collection)

    assert len(rec.snapshots) == 1
    assert feed.listener_count(collection) == 0


def test_deleted_record_never_reappears(store: TaskStore, feed: ChangeFeed, collection: str) -> None:
    rec = SnapshotRecorder()
    task_id = store.create("gone", "alice", collection=collection)
    feed.on_snapshot(collection, rec)

    store.delete(task_id, "alice", collection=collection)
    feed.refresh(collection)
    store.create("other", "alice", collection=collection)
    feed.refresh(collection)

    (removed,) = rec.snapshots[1].changes
    assert removed.kind == ChangeKind.REMOVED
    assert all(task_id not in {r.id for r in s.records} for s in rec.snapshots[1:])


def test_poll_picks_up_mutations_from_another_store(settings: SimpleNamespace, collection: str) -> None:
    writer = TaskStore(settings.store_path)
    reader_feed = ChangeFeed(TaskStore(settings.store_path))
    rec = SnapshotRecorder()
    reader_feed.on_snapshot(collection, rec)

    writer.create("from elsewhere", "bob", collection=collection)

    assert reader_feed.stale_collections() == [collection]
    assert reader_feed.poll_once() == 1
    assert [r.text for r in rec.last.records] == ["from elsewhere"]


def test_listener_crash_does_not_affect_others(store: TaskStore, feed: ChangeFeed, collection: str) -> None:
    def boom(_snap) -> None:
        raise RuntimeError("listener bug")

    rec = SnapshotRecorder()
    feed.on_snapshot(collection, boom)
    feed.on_snapshot(collection, rec)

    store.create("x", "alice", collection=collection)
    feed.refresh(collection)

    assert len(rec.snapshots) == 2


def test_reconnect_redelivers_fresh_snapshot(store: TaskStore, collection: str) -> None:
    flaky = FlakyStore(store)
    feed = ChangeFeed(flaky, reconnect_attempts=1)
    rec = SnapshotRecorder()
    feed.on_snapshot(collection, rec, on_error=rec.on_error)

    flaky.failures = 1
    assert feed.refresh(collection) == 1

    assert rec.last.from_reconnect is True
    assert rec.errors == []
    assert feed.listener_count(collection) == 1


def test_lost_feed_surfaces_terminal_error(store: TaskStore, collection: str) -> None:
    flaky = FlakyStore(store)
    feed = ChangeFeed(flaky, reconnect_attempts=1)
    rec = SnapshotRecorder()
    feed.on_snapshot(collection, rec, on_error=rec.on_error)

    flaky.failures = 2
    store.create("unseen", "alice", collection=collection)
    assert feed.refresh(collection) == 0

    assert len(rec.errors) == 1
    assert isinstance(rec.errors[0], FeedError)
    assert feed.listener_count(collection) == 0


def test_initial_subscribe_failure_raises(store: TaskStore, collection: str) -> None:
    feed = ChangeFeed(FlakyStore(store, failures=5), reconnect_attempts=1)

    with pytest.raises(FeedError):
        feed.on_snapshot(collection, SnapshotRecorder())
    assert feed.listener_count() == 0


@pytest.mark.asyncio
async def test_overlapping_refreshes_never_roll_back(store: TaskStore, collection: str) -> None:
    held = HeldReadStore(store)
    feed = ChangeFeed(held)
    rec = SnapshotRecorder()
    feed.on_snapshot(collection, rec)

    store.create("one", "alice", collection=collection)
    held.hold()
    slow = asyncio.create_task(feed.refresh_async(collection))
    assert await asyncio.to_thread(held.read_taken.wait, 5)

    store.create("two", "alice", collection=collection)
    assert await feed.refresh_async(collection) == 1

    held.release()
    assert await slow == 0

    assert [s.revision for s in rec.snapshots] == [0, 2]
    assert sorted(r.text for r in rec.last.records) == ["one", "two"]
    assert {ch.kind for ch in rec.last.changes} == {ChangeKind.ADDED}
    feed.close()


@pytest.mark.asyncio
async def test_stream_yields_snapshots_and_cancels_on_close(
    store: TaskStore, feed: ChangeFeed, collection: str
) -> None:
    stream = feed.stream(collection)

    first = await stream.__anext__()
    assert len(first) == 0

    store.create("streamed", "alice", collection=collection)
    await feed.refresh_async(collection)
    second = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
    assert [r.text for r in second.records] == ["streamed"]

    await stream.aclose()
    assert feed.listener_count(collection) == 0


@pytest.mark.asyncio
async def test_feed_poller_delivers_until_cancelled(settings: SimpleNamespace, collection: str) -> None:
    writer = TaskStore(settings.store_path)
    feed = ChangeFeed(TaskStore(settings.store_path))
    rec = SnapshotRecorder()
    feed.on_snapshot(collection, rec)

    runner = asyncio.create_task(run_feed_poller(feed, interval_seconds=0.01))
    writer.create("polled", "bob", collection=collection)

    for _ in range(100):
        if len(rec.snapshots) >= 2:
            break
        await asyncio.sleep(0.01)

    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert rec.last.records[0].text == "polled"
