# src/trace_sync/errors.py

from __future__ import annotations


class TraceSyncError(RuntimeError):
    """Base error for store, feed and identity operations."""


class ConfigurationError(TraceSyncError):
    """Startup parameters are missing or invalid. Fatal: startup halts."""


class AuthenticationError(TraceSyncError):
    """Identity resolution failed; the session stays unauthenticated."""


class WriteError(TraceSyncError):
    """A mutation failed against the store. Not retried automatically."""


class FeedError(TraceSyncError):
    """A subscription could not be set up or was lost after reconnecting."""


class NotFoundError(TraceSyncError):
    def __init__(self, task_id: str, collection: str | None = None) -> None:
        super().__init__(f"task {task_id!r} not found")
        self.task_id = task_id
        self.collection = collection


class AuthorizationError(TraceSyncError):
    def __init__(self, action: str, task_id: str, caller_id: str | None) -> None:
        super().__init__(f"{action} of task {task_id!r} is not allowed for caller {caller_id!r}")
        self.action = action
        self.task_id = task_id
        self.caller_id = caller_id
