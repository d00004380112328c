# src/trace_sync/tasks/task_models.py

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


def collection_path(namespace: str, app_id: str) -> str:
    """Path of the shared task collection of one deployment instance."""
    ns = (namespace or "").strip("/ ")
    aid = (app_id or "").strip()
    if not ns or not aid or "/" in aid:
        raise ValueError(f"invalid collection scope namespace={namespace!r} app_id={app_id!r}")
    return f"/{ns}/{aid}/public/data/tasks"


@dataclass(frozen=True, slots=True)
class TaskRecord:
    id: str
    text: str
    completed: bool
    creator_id: str
    # None until the store-assigned timestamp is observed.
    created_at: float | None
    updated_at: float | None = None

    def sort_key(self) -> tuple[float, str]:
        return (self.created_at or 0.0, self.id)

    def to_wire(self) -> dict[str, Any]:
        """Stored fields in the shared wire shape (id travels out of band)."""
        return {
            "text": self.text,
            "completed": self.completed,
            "creatorId": self.creator_id,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_wire(cls, task_id: str, data: Mapping[str, Any]) -> TaskRecord:
        raw_ts = data.get("createdAt")
        return cls(
            id=str(task_id),
            text=str(data.get("text") or ""),
            completed=bool(data.get("completed", False)),
            creator_id=str(data.get("creatorId") or ""),
            created_at=float(raw_ts) if raw_ts is not None else None,
        )


def sort_newest_first(records: Iterable[TaskRecord]) -> list[TaskRecord]:
    """
    Order records by created_at descending, ties by id.

    A record without a timestamp yet sorts as 0 (i.e. last).
    """
    return sorted(records, key=TaskRecord.sort_key, reverse=True)


class ChangeKind(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class DocumentChange:
    kind: ChangeKind
    record: TaskRecord


def diff_records(
    previous: Mapping[str, TaskRecord], current: Mapping[str, TaskRecord]
) -> list[DocumentChange]:
    changes: list[DocumentChange] = []
    for rec in sort_newest_first(current.values()):
        old = previous.get(rec.id)
        if old is None:
            changes.append(DocumentChange(ChangeKind.ADDED, rec))
        elif old != rec:
            changes.append(DocumentChange(ChangeKind.MODIFIED, rec))
    for task_id, old in previous.items():
        if task_id not in current:
            changes.append(DocumentChange(ChangeKind.REMOVED, old))
    return changes


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Full observed state of one collection at one point of the feed."""

    collection: str
    records: tuple[TaskRecord, ...]
    changes: tuple[DocumentChange, ...]
    revision: int
    from_reconnect: bool = False

    @property
    def active(self) -> list[TaskRecord]:
        return [r for r in self.records if not r.completed]

    @property
    def completed(self) -> list[TaskRecord]:
        return [r for r in self.records if r.completed]

    def get(self, task_id: str) -> TaskRecord | None:
        for r in self.records:
            if r.id == task_id:
                return r
        return None

    def __len__(self) -> int:
        return len(self.records)
