# src/trace_sync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The feed and the identity resolver depend on Protocols instead of concrete
implementations. This keeps the store swappable and makes testing easier.
"""

from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from ..errors import FeedError
    from ..tasks.task_models import Snapshot, TaskRecord

SnapshotCallback = Callable[["Snapshot"], None]
FeedErrorCallback = Callable[["FeedError"], None]
CancelFn = Callable[[], None]


class RecordRepo(Protocol):
    """Authoritative keyed collection of task records."""

    def create(self, text: str, creator_id: str, *, collection: str) -> str: ...
    def toggle(self, task_id: str, caller_id: str | None = None, *, collection: str) -> TaskRecord: ...
    def delete(self, task_id: str, caller_id: str | None, *, collection: str) -> None: ...

    # Feed API
    def revision(self, collection: str) -> int: ...
    def read_collection(self, collection: str) -> tuple[int, list[TaskRecord]]: ...


class TokenRepo(Protocol):
    def lookup(self, token: str) -> str | None: ...
