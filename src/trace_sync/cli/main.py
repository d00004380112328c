# src/trace_sync/cli/main.py

"""
CLI entrypoint.

Initializes logging, checks the deployment parameters, builds the
SessionContext, then runs the console session.

Operator sub-commands:
- issue-token SUBJECT  print a new durable auth token
- revoke-token TOKEN   disable a token
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ..auth.token_store import TokenStore
from ..cli.bootstrap import create_session_context
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..errors import ConfigurationError
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trace-sync", description="Shared live task list.")
    sub = parser.add_subparsers(dest="command")

    p_issue = sub.add_parser("issue-token", help="Issue a durable auth token for SUBJECT.")
    p_issue.add_argument("subject")

    p_revoke = sub.add_parser("revoke-token", help="Revoke a durable auth token.")
    p_revoke.add_argument("token")
    return parser


def _halt(error: ConfigurationError) -> int:
    logger.error("Startup halted: %s", error)
    print(f"Configuration error: {error}", file=sys.stderr)
    return 2


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    try:
        settings.require_app_config()
    except ConfigurationError as e:
        return _halt(e)

    if args.command == "issue-token":
        settings.store_path.parent.mkdir(parents=True, exist_ok=True)
        print(TokenStore(settings.store_path).issue(args.subject))
        return 0

    if args.command == "revoke-token":
        settings.store_path.parent.mkdir(parents=True, exist_ok=True)
        ok = TokenStore(settings.store_path).revoke(args.token)
        print("revoked" if ok else "unknown or already revoked token")
        return 0 if ok else 1

    try:
        ctx = create_session_context(settings=settings)
    except ConfigurationError as e:
        return _halt(e)

    try:
        asyncio.run(run_console_loop(ctx, token=settings.initial_auth_token))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        ctx.close()
        logger.info("Bye.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
