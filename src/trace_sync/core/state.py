# src/trace_sync/core/state.py

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any

from ..auth.identity import Identity, IdentityResolver
from ..errors import AuthenticationError, TraceSyncError
from ..tasks.change_feed import ChangeFeed
from ..tasks.task_models import Snapshot
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ErrorSlot:
    """
    The single user-visible error message.

    Holds one message at a time; a newer report overwrites an
    unacknowledged older one.
    """

    message: str | None = None
    error: BaseException | None = None

    def report(self, message: str, error: BaseException | None = None) -> None:
        if self.message is not None:
            logger.debug("Overwriting unacknowledged error: %s", self.message)
        self.message = message
        self.error = error

    def take(self) -> str | None:
        """Return the current message and acknowledge it."""
        msg = self.message
        self.message = None
        self.error = None
        return msg

    def __bool__(self) -> bool:
        return self.message is not None


@dataclass
class SessionContext:
    """
    Process-scoped context of one session: store handle, feed, identity.

    Built by cli.bootstrap.create_session_context() and torn down with close().
    """

    settings: Any
    store: TaskStore
    feed: ChangeFeed
    resolver: IdentityResolver
    collection: str

    identity: Identity | None = None
    errors: ErrorSlot = field(default_factory=ErrorSlot)
    snapshot: Snapshot | None = None
    # Display order of the last rendered board (index -> task id).
    view_ids: list[str] = field(default_factory=list)
    closed: bool = False

    _cancels: list = field(default_factory=list, repr=False)

    def require_identity(self) -> Identity:
        if self.identity is None:
            raise AuthenticationError("session is not signed in")
        return self.identity

    def add_subscription(self, cancel) -> None:
        self._cancels.append(cancel)

    def close(self) -> None:
        """Cancel feed subscriptions and release the store. Idempotent."""
        if self.closed:
            return
        self.closed = True
        cancels, self._cancels = self._cancels, []
        for cancel in cancels:
            try:
                cancel()
            except TraceSyncError:
                logger.debug("Subscription cancel failed.", exc_info=True)
        self.feed.close()
        with contextlib.suppress(Exception):
            self.store.close()
        logger.debug("Session closed collection=%s", self.collection)
