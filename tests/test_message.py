from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

from link_servers.antigravity_link.session_cdp import CdpProtocolError, ExecutionContext
from link_servers.antigravity_link.tools.message import (
    CLICK_SUBMIT_JS,
    EDITOR_SELECTOR,
    ENTER_KEYPRESS_JS,
    build_insert_script,
    send_message,
)


class DummyConn:
    def __init__(self, ctx_ids: list[int], handler: Callable[[str, int], Any]) -> None:
        self.contexts = [ExecutionContext(id=i) for i in ctx_ids]
        self.handler = handler
        self.evals: list[tuple[str, int]] = []

    async def evaluate(self, expression: str, *, context_id=None, return_by_value=True, await_promise=False):  # noqa: ANN001, ARG002
        kind = _kind(expression)
        self.evals.append((kind, context_id))
        value = self.handler(kind, context_id)
        if isinstance(value, Exception):
            raise value
        return {"type": "object", "value": value}


def _kind(expression: str) -> str:
    if expression == CLICK_SUBMIT_JS:
        return "submit"
    if expression == ENTER_KEYPRESS_JS:
        return "enter"
    if "insertText" in expression:
        return "insert"
    raise AssertionError(f"unexpected script: {expression[:60]}")


def _handler(*, editor_in: set[int], submit_enabled: bool) -> Callable[[str, int], Any]:
    def handle(kind: str, ctx: int) -> Any:
        if kind == "insert":
            if ctx not in editor_in:
                return {"ok": False, "reason": "editor_not_found"}
            return {"ok": True, "method": "exec_command"}
        if kind == "submit":
            if submit_enabled:
                return {"ok": True, "method": "click_submit"}
            return {"ok": False, "reason": "submit_unavailable"}
        return {"ok": True, "method": "enter_keypress"}

    return handle


def test_disabled_submit_falls_back_to_enter_keypress() -> None:
    conn = DummyConn([1], _handler(editor_in={1}, submit_enabled=False))
    res = asyncio.run(send_message(conn, "hi"))
    assert res.ok is True
    assert res.method == "enter_keypress"
    assert [k for k, _ in conn.evals] == ["insert", "submit", "enter"]


def test_enabled_submit_is_clicked() -> None:
    conn = DummyConn([1], _handler(editor_in={1}, submit_enabled=True))
    res = asyncio.run(send_message(conn, "hi"))
    assert res.to_dict() == {"ok": True, "method": "click_submit"}
    assert [k for k, _ in conn.evals] == ["insert", "submit"]


def test_submit_runs_in_the_context_that_took_the_text() -> None:
    conn = DummyConn([1, 2, 3], _handler(editor_in={2, 3}, submit_enabled=True))
    res = asyncio.run(send_message(conn, "hi"))
    assert res.ok
    assert conn.evals == [("insert", 1), ("insert", 2), ("submit", 2)]


def test_protocol_errors_move_on_to_next_context() -> None:
    def handle(kind: str, ctx: int) -> Any:
        if ctx == 1:
            return CdpProtocolError("Cannot find context with specified id")
        return _handler(editor_in={2}, submit_enabled=True)(kind, ctx)

    res = asyncio.run(send_message(DummyConn([1, 2], handle), "hi"))
    assert res.ok and res.method == "click_submit"


def test_no_editor_anywhere_reports_editor_not_found() -> None:
    conn = DummyConn([1, 2], _handler(editor_in=set(), submit_enabled=True))
    res = asyncio.run(send_message(conn, "hi"))
    assert res.to_dict() == {"ok": False, "reason": "editor_not_found"}


def test_no_contexts_reports_no_context() -> None:
    conn = DummyConn([], _handler(editor_in=set(), submit_enabled=True))
    res = asyncio.run(send_message(conn, "hi"))
    assert res.reason == "no_context"
    assert conn.evals == []


def test_insert_script_embeds_text_as_json_literal() -> None:
    text = 'he said "hi"\n</script>`${x}`'
    script = build_insert_script(text)
    assert json.dumps(text) in script
    assert json.dumps(EDITOR_SELECTOR) in script
    assert "requestAnimationFrame" in script
