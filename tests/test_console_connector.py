# tests/test_console_connector.py

from __future__ import annotations

import builtins

import pytest

from trace_sync.connectors.console_connector import run_console_loop
from trace_sync.core.state import SessionContext


def _scripted_input(lines: list[str]):
    queue = list(lines)

    def fake_input(prompt: str = "") -> str:
        if not queue:
            raise EOFError
        return queue.pop(0)

    return fake_input


@pytest.mark.asyncio
async def test_console_session_adds_and_lists(
    ctx: SessionContext, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(builtins, "input", _scripted_input(["buy  milk", "   ", "/list", "/exit"]))

    await run_console_loop(ctx)

    out = capsys.readouterr().out
    assert ctx.identity is not None
    assert ctx.identity.uid in out
    assert "Added task" in out
    assert "Active (1):" in out
    assert ctx.store.count_records(ctx.collection) == 1
    assert [r.text for r in ctx.store.list_records(ctx.collection)] == ["buy  milk"]


@pytest.mark.asyncio
async def test_console_reports_sign_in_failure(
    ctx: SessionContext, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(builtins, "input", _scripted_input(["never read"]))

    await run_console_loop(ctx, token="bad.token")

    out = capsys.readouterr().out
    assert "System Error: Failed to sign in." in out
    assert ctx.feed.listener_count() == 0


@pytest.mark.asyncio
async def test_console_stops_on_eof(
    ctx: SessionContext, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(builtins, "input", _scripted_input([]))

    await run_console_loop(ctx)

    assert ctx.store.count_records() == 0
