# src/trace_sync/tasks/task_api.py

"""
Session-level task operations.

These are the boundary between the core (store/feed/resolver raise errors)
and the consumer: every failure is logged and turned into one user-visible
message in ctx.errors, and the last observed snapshot is left untouched.
Nothing here raises.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..auth.identity import Identity
from ..core.state import SessionContext
from ..errors import (
    AuthenticationError,
    AuthorizationError,
    FeedError,
    NotFoundError,
    TraceSyncError,
    WriteError,
)
from .task_models import Snapshot

logger = logging.getLogger(__name__)

SnapshotHook = Callable[[Snapshot], None]
ErrorHook = Callable[[], None]


def _report(ctx: SessionContext, message: str, error: BaseException) -> None:
    ctx.errors.report(message, error)


def _signed_in(ctx: SessionContext, message: str) -> Identity | None:
    try:
        return ctx.require_identity()
    except AuthenticationError as e:
        _report(ctx, message, e)
        return None


async def sign_in(ctx: SessionContext, token: str | None = None) -> Identity | None:
    """Resolve the session identity once; later calls return the same identity."""
    if ctx.identity is not None:
        return ctx.identity
    try:
        ctx.identity = await asyncio.to_thread(ctx.resolver.resolve, token)
    except AuthenticationError as e:
        logger.warning("Authentication failed: %s", e)
        _report(ctx, "Failed to sign in.", e)
        return None
    except Exception as e:
        logger.exception("Identity resolution crashed.")
        _report(ctx, "Failed to sign in.", e)
        return None
    return ctx.identity


def open_feed(
    ctx: SessionContext,
    on_change: SnapshotHook | None = None,
    on_error: ErrorHook | None = None,
) -> bool:
    """
    Subscribe the session to its collection. Requires a resolved identity.

    on_error is called once the feed is lost, after the message is in ctx.errors.
    """
    if _signed_in(ctx, "Sign in before subscribing to tasks.") is None:
        return False

    def _on_snapshot(snap: Snapshot) -> None:
        ctx.snapshot = snap
        if on_change is not None:
            on_change(snap)

    def _on_error(err: FeedError) -> None:
        _report(ctx, "Failed to fetch tasks in real-time.", err)
        if on_error is not None:
            on_error()

    try:
        cancel = ctx.feed.on_snapshot(ctx.collection, _on_snapshot, on_error=_on_error)
    except FeedError as e:
        logger.error("Cannot set up listener collection=%s: %s", ctx.collection, e)
        _report(ctx, "Cannot set up real-time listener.", e)
        return False
    ctx.add_subscription(cancel)
    return True


async def add_task(ctx: SessionContext, text: str) -> str | None:
    """Create a task. Empty/whitespace text is ignored before touching the store."""
    clean = (text or "").strip()
    if not clean:
        return None
    identity = _signed_in(ctx, "Sign in before adding tasks.")
    if identity is None:
        return None

    try:
        task_id = await asyncio.to_thread(
            ctx.store.create, clean, identity.uid, collection=ctx.collection
        )
    except WriteError as e:
        logger.error("Add task failed: %s", e)
        _report(ctx, "Could not add task.", e)
        return None
    except Exception as e:
        logger.exception("Add task crashed.")
        _report(ctx, "Could not add task.", e)
        return None

    await ctx.feed.refresh_async(ctx.collection)
    return task_id


async def toggle_task(ctx: SessionContext, task_id: str) -> bool:
    identity = _signed_in(ctx, "Sign in before updating tasks.")
    if identity is None:
        return False

    try:
        await asyncio.to_thread(
            ctx.store.toggle, task_id, identity.uid, collection=ctx.collection
        )
    except NotFoundError as e:
        logger.info("Toggle of missing task id=%s", task_id)
        _report(ctx, "That task no longer exists.", e)
        return False
    except AuthorizationError as e:
        logger.info("Toggle rejected id=%s caller=%s", task_id, identity.uid)
        _report(ctx, "Only the creator can update this task.", e)
        return False
    except TraceSyncError as e:
        logger.error("Toggle task failed: %s", e)
        _report(ctx, "Could not update task status.", e)
        return False
    except Exception as e:
        logger.exception("Toggle task crashed.")
        _report(ctx, "Could not update task status.", e)
        return False

    await ctx.feed.refresh_async(ctx.collection)
    return True


async def delete_task(ctx: SessionContext, task_id: str) -> bool:
    identity = _signed_in(ctx, "Sign in before deleting tasks.")
    if identity is None:
        return False

    try:
        await asyncio.to_thread(
            ctx.store.delete, task_id, identity.uid, collection=ctx.collection
        )
    except NotFoundError as e:
        logger.info("Delete of missing task id=%s", task_id)
        _report(ctx, "That task no longer exists.", e)
        return False
    except AuthorizationError as e:
        logger.info("Delete rejected id=%s caller=%s", task_id, identity.uid)
        _report(ctx, "Only the creator can delete this task.", e)
        return False
    except TraceSyncError as e:
        logger.error("Delete task failed: %s", e)
        _report(ctx, "Could not delete task.", e)
        return False
    except Exception as e:
        logger.exception("Delete task crashed.")
        _report(ctx, "Could not delete task.", e)
        return False

    await ctx.feed.refresh_async(ctx.collection)
    return True
