# src/trace_sync/connectors/console_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..cli.commands import render_board, render_changes
from ..core.state import SessionContext
from ..tasks import task_api
from ..tasks.feed_poller import run_feed_poller
from ..tasks.task_models import Snapshot

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _flush_error(ctx: SessionContext) -> None:
    msg = ctx.errors.take()
    if msg:
        _print_ts(f"System Error: {msg}")


async def run_console_loop(ctx: SessionContext, *, token: str | None = None) -> None:
    """
    Interactive console session.

    Signs in once, subscribes to the collection, runs the feed poller in the
    background and reads commands until /exit or EOF.
    """
    logger.info("Console connector started collection=%s.", ctx.collection)

    identity = await task_api.sign_in(ctx, token)
    if identity is None:
        _flush_error(ctx)
        _print_ts("Not signed in; task operations are unavailable.")
        return

    _print_ts(f"App id: {getattr(ctx.settings, 'app_id', '?')}  Session id: {identity.uid}")

    first = True

    def on_change(snap: Snapshot) -> None:
        nonlocal first
        if first:
            first = False
            text, ctx.view_ids = render_board(snap, ctx.identity)
            print(text, flush=True)
            return
        summary = render_changes(snap)
        if summary:
            _print_ts(f"[feed] revision {snap.revision}\n{summary}")

    if not task_api.open_feed(ctx, on_change=on_change, on_error=lambda: _flush_error(ctx)):
        _flush_error(ctx)
        return

    _print_ts("Type a task to add it. Use /help for commands. Use /exit to quit.\n")

    poller = asyncio.create_task(
        run_feed_poller(ctx.feed, interval_seconds=getattr(ctx.settings, "feed_poll_seconds", 1.0))
    )

    def emit(text: str) -> None:
        _print_ts(text)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, ">>> ")).strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                if user_input.startswith("/"):
                    reply = await command_registry.handle(ctx, user_input, emit=emit)
                else:
                    reply = await command_registry.handle(ctx, f"/add {user_input}", emit=emit)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is not None:
                _print_ts(reply)
            _flush_error(ctx)
    finally:
        poller.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await poller

    logger.info("Console connector finished.")
