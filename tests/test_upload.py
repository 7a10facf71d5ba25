from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from link_servers.antigravity_link.session_cdp import CdpProtocolError, ExecutionContext
from link_servers.antigravity_link.tools.upload import ADD_CONTEXT_PROBE_JS, DISPATCH_FN, build_menu_script, upload_file


def _kind(expression: str) -> str:
    if expression == ADD_CONTEXT_PROBE_JS:
        return "probe"
    if "clicked_media" in expression:
        return "menu"
    if "setAttribute('data-ag-id'" in expression:
        return "tag"
    if "data-ag-id" in expression:
        return "resolve"
    raise AssertionError("unexpected script")


class DummyConn:
    """Scripted connection: `ui_ctx` shows the Add context control, `inputs` maps ctx -> tag attempts that fail first."""

    def __init__(
        self,
        ctx_ids: list[int],
        *,
        ui_ctx: int | None = None,
        inputs: dict[int, int] | None = None,
        chooser_after_menu: bool = False,
        menu_error: Exception | None = None,
    ) -> None:
        self.contexts = [ExecutionContext(id=i) for i in ctx_ids]
        self.ui_ctx = ui_ctx
        self.inputs = dict(inputs or {})
        self.chooser_after_menu = chooser_after_menu
        self.menu_error = menu_error
        self.events: list[tuple[str, dict[str, Any]]] = [("Page.fileChooserOpened", {"backendNodeId": 1})]
        self.evals: list[tuple[str, int | None]] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def evaluate(self, expression: str, *, context_id=None, return_by_value=True, await_promise=False):  # noqa: ANN001, ARG002
        kind = _kind(expression)
        self.evals.append((kind, context_id))
        if kind == "probe":
            return {"type": "boolean", "value": context_id == self.ui_ctx}
        if kind == "menu":
            if self.menu_error is not None:
                raise self.menu_error
            if self.chooser_after_menu:
                self.events.append(("Page.fileChooserOpened", {"backendNodeId": 42, "mode": "selectSingle"}))
            return {"type": "string", "value": "clicked_media"}
        if kind == "tag":
            remaining = self.inputs.get(context_id)
            if remaining is None:
                return {"type": "boolean", "value": False}
            if remaining > 0:
                self.inputs[context_id] = remaining - 1
                return {"type": "boolean", "value": False}
            return {"type": "boolean", "value": True}
        assert return_by_value is False
        return {"type": "object", "subtype": "node", "objectId": f"obj-{context_id}"}

    async def call(self, method: str, params: dict[str, Any] | None = None, **kwargs: Any) -> dict[str, Any]:  # noqa: ARG002
        self.calls.append((method, params or {}))
        return {}

    def pop_event(self, name: str) -> dict[str, Any] | None:
        for i, (method, params) in enumerate(self.events):
            if method == name:
                del self.events[i]
                return params
        return None

    def discard_events(self, name: str) -> int:
        before = len(self.events)
        self.events = [e for e in self.events if e[0] != name]
        return before - len(self.events)

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


@pytest.fixture()
def attachment(tmp_path: Path) -> Path:
    f = tmp_path / "diagram.png"
    f.write_bytes(b"\x89PNG")
    return f


def _upload(conn: DummyConn, path: Path | str, selector: str | None = None):
    return asyncio.run(upload_file(conn, path, selector, retries=3, backoff=0, settle=0))


def test_missing_local_file_is_reported(tmp_path: Path) -> None:
    conn = DummyConn([1])
    res = _upload(conn, tmp_path / "nope.png")
    assert res.to_dict() == {"ok": False, "reason": "file_not_found"}
    assert conn.calls == []


def test_without_ui_entry_point_direct_input_is_attempted(attachment: Path) -> None:
    conn = DummyConn([1, 2], ui_ctx=None, inputs={2: 0})
    res = _upload(conn, attachment)

    assert res.to_dict() == {"ok": True, "method": "direct_input_injection"}
    assert ("tag", 1) in conn.evals and ("tag", 2) in conn.evals
    set_files = [p for m, p in conn.calls if m == "DOM.setFileInputFiles"]
    assert set_files == [{"files": [str(attachment.resolve())], "objectId": "obj-2"}]


def test_without_ui_and_without_inputs_reports_ui_not_found(attachment: Path) -> None:
    conn = DummyConn([1, 2], ui_ctx=None)
    res = _upload(conn, attachment)

    assert res.reason == "ui_not_found"
    assert [e for e in conn.evals if e[0] == "tag"] == [("tag", 1), ("tag", 2)]
    assert conn.calls[-1] == ("Page.setInterceptFileChooserDialog", {"enabled": False})


def test_intercepted_file_chooser_is_used(attachment: Path) -> None:
    conn = DummyConn([1, 2], ui_ctx=2, chooser_after_menu=True)
    res = _upload(conn, attachment)

    assert res.method == "file_chooser_injection"
    # The stale chooser event from before the upload was discarded.
    set_files = [p for m, p in conn.calls if m == "DOM.setFileInputFiles"]
    assert set_files == [{"files": [str(attachment.resolve())], "backendNodeId": 42}]
    assert conn.methods()[:3] == ["Page.enable", "DOM.enable", "Page.setInterceptFileChooserDialog"]


def test_ui_flow_polls_for_input_then_dispatches_events(attachment: Path) -> None:
    conn = DummyConn([1, 2], ui_ctx=1, inputs={1: 2})
    res = _upload(conn, attachment, selector="input.media")

    assert res.to_dict() == {"ok": True, "method": "ui_interaction_injection"}
    assert [e for e in conn.evals if e[0] == "tag"] == [("tag", 1)] * 3
    assert ("DOM.setFileInputFiles", {"files": [str(attachment.resolve())], "objectId": "obj-1"}) in conn.calls
    dispatch = [p for m, p in conn.calls if m == "Runtime.callFunctionOn"]
    assert dispatch == [{"objectId": "obj-1", "functionDeclaration": DISPATCH_FN}]
    assert ("Runtime.releaseObject", {"objectId": "obj-1"}) in conn.calls
    assert conn.calls[-1] == ("Page.setInterceptFileChooserDialog", {"enabled": False})


def test_ui_flow_exhausted_falls_back_to_direct_in_every_context(attachment: Path) -> None:
    conn = DummyConn([1, 2, 3], ui_ctx=1)
    res = _upload(conn, attachment)

    assert res.reason == "input_not_invokable"
    tags = [ctx for kind, ctx in conn.evals if kind == "tag"]
    assert tags == [1, 1, 1, 1, 2, 3]


def test_unexpected_error_reports_injection_error(attachment: Path) -> None:
    conn = DummyConn([1], ui_ctx=1, menu_error=RuntimeError("socket exploded"))
    res = _upload(conn, attachment)

    assert res.reason == "injection_error"
    assert conn.calls[-1] == ("Page.setInterceptFileChooserDialog", {"enabled": False})


def test_menu_failure_in_ui_context_falls_back_to_direct_input(attachment: Path) -> None:
    conn = DummyConn([1, 2], ui_ctx=1, inputs={2: 0}, menu_error=CdpProtocolError("Execution context was destroyed."))
    res = _upload(conn, attachment)

    assert res.to_dict() == {"ok": True, "method": "direct_input_injection"}
    set_files = [p for m, p in conn.calls if m == "DOM.setFileInputFiles"]
    assert set_files == [{"files": [str(attachment.resolve())], "objectId": "obj-2"}]
    assert conn.calls[-1] == ("Page.setInterceptFileChooserDialog", {"enabled": False})


class ChooserGoneConn(DummyConn):
    async def call(self, method: str, params: dict[str, Any] | None = None, **kwargs: Any) -> dict[str, Any]:
        if method == "DOM.setFileInputFiles" and "backendNodeId" in (params or {}):
            self.calls.append((method, params or {}))
            raise CdpProtocolError("No node with given id found")
        return await super().call(method, params, **kwargs)


def test_rejected_file_chooser_falls_back_to_direct_input(attachment: Path) -> None:
    conn = ChooserGoneConn([1, 2], ui_ctx=1, inputs={2: 0}, chooser_after_menu=True)
    res = _upload(conn, attachment)

    assert res.method == "direct_input_injection"
    set_files = [p for m, p in conn.calls if m == "DOM.setFileInputFiles"]
    assert set_files[0] == {"files": [str(attachment.resolve())], "backendNodeId": 42}
    assert set_files[-1] == {"files": [str(attachment.resolve())], "objectId": "obj-2"}


def test_entry_point_detection_and_menu_click_match_the_same_label() -> None:
    needle = "toLowerCase().includes('add context')"
    assert needle in ADD_CONTEXT_PROBE_JS
    assert needle in build_menu_script(0.1)


def test_probe_uploads_reports_per_context_and_errors() -> None:
    from link_servers.antigravity_link.tools.diagnostics import UPLOAD_PROBE_JS, probe_uploads

    class ProbeConn:
        title = "Antigravity"
        ws_url = "ws://127.0.0.1:9222/devtools/page/chat"
        contexts = [ExecutionContext(id=1, name="top", origin="app://"), ExecutionContext(id=2)]

        async def evaluate(self, expression: str, *, context_id=None, **kwargs: Any):  # noqa: ANN001, ARG002
            assert expression == UPLOAD_PROBE_JS
            if context_id == 2:
                raise CdpProtocolError("context gone")
            return {"type": "object", "value": {"inputs": [{"id": "f", "visible": False}], "buttons": [], "contextHtml": ""}}

    out = asyncio.run(probe_uploads(ProbeConn()))
    assert out["target"] == "Antigravity"
    first, second = out["contexts"]
    assert first["contextId"] == 1 and first["name"] == "top"
    assert first["data"]["inputs"][0]["id"] == "f"
    assert second == {"contextId": 2, "error": "context gone"}
