# src/trace_sync/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable

from ..auth.identity import Identity
from ..core.state import SessionContext
from ..tasks import task_api
from ..tasks.task_models import Snapshot, TaskRecord

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[
    [SessionContext, list[str], CommandEmitter | None], Awaitable[str] | str
]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}
        # Commands whose handler gets the rest of the line as one argument.
        self._raw: set[str] = set()

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
        raw: bool = False,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler
        if raw:
            self._raw.update([key, *(a.lower() for a in aliases)])

    async def handle(
        self,
        ctx: SessionContext,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        body = line[1:].lstrip()
        parts = body.split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]
        if name in self._raw:
            rest = body[len(parts[0]) :].strip()
            args = [rest] if rest else []

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        result = handler(ctx, args, emit)
        if inspect.isawaitable(result):
            result = await result
        return result

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- rendering ----


def _render_item(n: int, rec: TaskRecord, identity: Identity | None) -> str:
    is_creator = identity is not None and rec.creator_id == identity.uid
    box = "[x]" if rec.completed else "[ ]"
    owner = "OWNER" if is_creator else "PEER"
    return f"  {n:>2}. {box} {rec.text}  ({owner}, {rec.id[:8]})"


def render_board(snapshot: Snapshot | None, identity: Identity | None) -> tuple[str, list[str]]:
    """
    Render active and completed tasks (newest first).

    Returns the text and the task ids in display order, so that "/toggle 3"
    can refer to the third rendered line.
    """
    if snapshot is None:
        return "No snapshot received yet.", []

    ids: list[str] = []
    lines: list[str] = []
    for title, records in (
        ("Active", snapshot.active),
        ("Completed", snapshot.completed),
    ):
        lines.append(f"{title} ({len(records)}):")
        if not records:
            lines.append("  (none)")
        for rec in records:
            ids.append(rec.id)
            lines.append(_render_item(len(ids), rec, identity))
    return "\n".join(lines), ids


def render_changes(snapshot: Snapshot) -> str:
    marks = {"added": "+", "modified": "~", "removed": "-"}
    lines = []
    for ch in snapshot.changes:
        state = " [done]" if ch.record.completed else ""
        lines.append(f"{marks[ch.kind.value]} {ch.record.text}{state}")
    return "\n".join(lines)


def resolve_task_ref(ctx: SessionContext, ref: str) -> str | None:
    """Map "3" (board line), a full id or a unique id prefix to a task id."""
    ref = (ref or "").strip()
    if not ref:
        return None
    if ref.isdigit():
        idx = int(ref) - 1
        if 0 <= idx < len(ctx.view_ids):
            return ctx.view_ids[idx]
        return None
    records = ctx.snapshot.records if ctx.snapshot is not None else ()
    matches = [r.id for r in records if r.id == ref or r.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    # Let the store decide (may be NotFound).
    return ref if len(ref) == 32 else None


def _board(ctx: SessionContext) -> str:
    text, ids = render_board(ctx.snapshot, ctx.identity)
    ctx.view_ids = ids
    return text


# ---- commands ----


def cmd_help(ctx: SessionContext, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_list(ctx: SessionContext, args: list[str], emit: CommandEmitter | None = None) -> str:
    return _board(ctx)


def cmd_whoami(ctx: SessionContext, args: list[str], emit: CommandEmitter | None = None) -> str:
    ident = ctx.identity
    if ident is None:
        return "Not signed in."
    who = f" subject={ident.subject}" if ident.subject else ""
    return f"Session id: {ident.uid} ({ident.kind.value}{who})"


def cmd_status(ctx: SessionContext, args: list[str], emit: CommandEmitter | None = None) -> str:
    snap = ctx.snapshot
    settings = ctx.settings
    return (
        "Status:\n"
        f"  App id: {getattr(settings, 'app_id', '?')}\n"
        f"  Collection: {ctx.collection}\n"
        f"  Session id: {ctx.identity.uid if ctx.identity else 'N/A'}\n"
        f"  Tasks: {len(snap) if snap else 0} (revision {snap.revision if snap else 0})\n"
        f"  Ownership enforced: {'ON' if ctx.store.enforce_ownership else 'OFF'}\n"
        f"  Toggle restricted: {'ON' if ctx.store.restrict_toggle else 'OFF'}"
    )


async def cmd_add(ctx: SessionContext, args: list[str], emit: CommandEmitter | None = None) -> str:
    text = " ".join(args).strip()
    if not text:
        return "Usage: /add TEXT"
    task_id = await task_api.add_task(ctx, text)
    if task_id is None:
        return "Task not added."
    return f"Added task {task_id[:8]}."


async def cmd_toggle(ctx: SessionContext, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /toggle N|ID"
    task_id = resolve_task_ref(ctx, args[0])
    if task_id is None:
        return f"No task matches {args[0]!r}. Use /list."
    if not await task_api.toggle_task(ctx, task_id):
        return "Task not updated."
    return _board(ctx)


async def cmd_delete(ctx: SessionContext, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /delete N|ID"
    task_id = resolve_task_ref(ctx, args[0])
    if task_id is None:
        return f"No task matches {args[0]!r}. Use /list."

    # Only offered for own tasks; the store enforces it anyway.
    rec = ctx.snapshot.get(task_id) if ctx.snapshot is not None else None
    if rec is not None and ctx.identity is not None and rec.creator_id != ctx.identity.uid:
        logger.debug("Delete offered for a peer task id=%s", task_id)
        if emit:
            emit("This task belongs to another session; asking the store anyway.")

    if not await task_api.delete_task(ctx, task_id):
        return "Task not deleted."
    return _board(ctx)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("list", cmd_list, help_text="Show active and completed tasks.", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add TEXT (bare text works too).", raw=True)
registry.register("toggle", cmd_toggle, help_text="Flip completion: /toggle N|ID.", aliases=["t"])
registry.register("delete", cmd_delete, help_text="Delete an own task: /delete N|ID.", aliases=["rm"])
registry.register("whoami", cmd_whoami, help_text="Show the current session id.")
registry.register("status", cmd_status, help_text="Show app id, collection and policy.")
