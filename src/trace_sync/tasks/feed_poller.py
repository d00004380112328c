# src/trace_sync/tasks/feed_poller.py

from __future__ import annotations

"""
Feed poller.

A small polling loop that picks up mutations committed by other processes
sharing the same store file:
- asks the feed which subscribed collections have a newer stored revision,
- re-reads those collections and delivers fresh snapshots to their listeners.

Local mutations do not need the poller: the session boundary refreshes the
feed right after they commit.
"""

import asyncio
import logging

from .change_feed import ChangeFeed

logger = logging.getLogger(__name__)


async def run_feed_poller(feed: ChangeFeed, *, interval_seconds: float = 1.0) -> None:
    """
    Every interval_seconds: feed.poll().

    Store failures are handled by the feed itself (reconnect once, then a
    terminal FeedError to the affected listeners), so the loop keeps running.

    To stop the poller, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    logger.debug("Feed poller started interval=%.2fs", sleep_s)

    while True:
        try:
            delivered = await feed.poll()
            if delivered:
                logger.debug("Feed poller delivered %d snapshot(s)", delivered)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("feed poll failed")

        await asyncio.sleep(sleep_s)
