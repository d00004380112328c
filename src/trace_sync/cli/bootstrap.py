# src/trace_sync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the concrete store, feed and identity resolver into a SessionContext.
"""

from __future__ import annotations

import logging
import sqlite3

from ..auth.identity import IdentityResolver
from ..auth.token_store import TokenStore
from ..config import get_settings
from ..core.state import SessionContext
from ..errors import ConfigurationError
from ..tasks.change_feed import ChangeFeed
from ..tasks.task_models import collection_path
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_path.parent.mkdir(parents=True, exist_ok=True)


def create_session_context(*, settings=None) -> SessionContext:
    """
    Create a SessionContext from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().

    Raises ConfigurationError when the collection scope or the store location is unusable.
    """
    if settings is None:
        settings = get_settings()

    try:
        collection = collection_path(settings.namespace, settings.app_id)
    except ValueError as e:
        raise ConfigurationError(f"Invalid app id or namespace: {e}") from e

    try:
        _ensure_local_dirs(settings)
        store = TaskStore(
            settings.store_path,
            enforce_ownership=settings.enforce_ownership,
            restrict_toggle=settings.restrict_toggle,
        )
        resolver = IdentityResolver(TokenStore(settings.store_path))
    except (OSError, sqlite3.Error) as e:
        raise ConfigurationError(f"Cannot open store at {settings.store_path}: {e}") from e

    feed = ChangeFeed(store, reconnect_attempts=settings.feed_reconnect_attempts)
    logger.info("Session context ready collection=%s store=%s", collection, settings.store_path)

    return SessionContext(
        settings=settings,
        store=store,
        feed=feed,
        resolver=resolver,
        collection=collection,
    )
