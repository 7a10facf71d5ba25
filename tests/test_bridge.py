from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path
from typing import Any

import pytest
import websockets

import link_servers.antigravity_link.bridge as bridge_module
from link_servers.antigravity_link.bridge import LinkBridge
from link_servers.antigravity_link.config import LinkConfig
from link_servers.antigravity_link.discovery import CandidateTarget
from link_servers.antigravity_link.session_manager import SessionManager
from link_servers.antigravity_link.session_state import SessionState
from link_servers.antigravity_link.snapshot import Snapshot, fingerprint
from link_servers.antigravity_link.tools import CommandResult


class DummyConn:
    def __init__(self) -> None:
        self.closed = False
        self.contexts: list = []
        self.title = "Antigravity"
        self.ws_url = "ws://127.0.0.1:9222/devtools/page/chat"

    async def close(self) -> None:
        self.closed = True

    def describe(self) -> dict[str, Any]:
        return {"id": "chat", "title": self.title, "url": self.ws_url, "contexts": 0, "closed": self.closed}


TARGET = CandidateTarget(
    id="chat",
    port=9222,
    url="ws://127.0.0.1:9222/devtools/page/chat",
    title="Antigravity",
    page_url="vscode-file://vscode-app/workbench.html",
)


def _bridge(tmp_path: Path, *, poll: float = 3.0) -> tuple[LinkBridge, dict[str, Any]]:
    box: dict[str, Any] = {"html": "<p>one</p>", "captures": 0, "conns": []}
    cfg = LinkConfig(host="127.0.0.1", port=0, poll_interval=poll, upload_dir=str(tmp_path / "up"), max_upload_mb=1)

    async def discover() -> list[CandidateTarget]:
        return [TARGET]

    async def connect(_target: CandidateTarget) -> DummyConn:
        conn = DummyConn()
        box["conns"].append(conn)
        return conn

    async def capture(_conn: DummyConn) -> Snapshot:
        box["captures"] += 1
        return Snapshot(html=box["html"], fingerprint=fingerprint(box["html"]))

    state = SessionState()
    manager = SessionManager(state, cfg, discoverer=discover, connector=connect, capturer=capture)
    return LinkBridge(cfg, manager=manager), box


def test_start_serves_viewers_and_stop_silences_broadcast(tmp_path: Path) -> None:
    bridge, box = _bridge(tmp_path, poll=0.02)

    async def scenario() -> None:
        active = await bridge.start()
        assert active == {"activeTargetId": "chat", "activePort": 9222}
        async with websockets.connect(f"ws://127.0.0.1:{bridge.broadcast.port}") as ws:
            first = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
            assert first["data"]["html"] == "<p>one</p>"

            box["html"] = "<p>two</p>"
            pushed = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
            assert pushed["data"]["html"] == "<p>two</p>"

            await bridge.stop()
            captures = box["captures"]
            box["html"] = "<p>three</p>"
            await asyncio.sleep(0.1)
            assert box["captures"] == captures
        assert bridge.state.connection is None
        assert box["conns"][0].closed
        await bridge.stop()

    asyncio.run(scenario())


def test_commands_without_connection(tmp_path: Path) -> None:
    bridge, _box = _bridge(tmp_path)

    async def scenario() -> None:
        assert (await bridge.send_message("hi")).reason == "not_connected"
        assert (await bridge.send_message("   ")).reason == "empty_message"
        assert (await bridge.click(selector="#x")).reason == "not_connected"
        assert (await bridge.upload_file(tmp_path / "a.png")).reason == "not_connected"
        assert await bridge.probe_uploads() == {"success": False, "error": "not_connected"}
        out = await bridge.upload_content("a.txt", base64.b64encode(b"hi").decode())
        assert out == {"success": False, "injected": False, "reason": "not_connected"}

    asyncio.run(scenario())


def test_successful_click_schedules_refresh(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    bridge, box = _bridge(tmp_path)
    clicks: list[dict[str, Any]] = []

    async def fake_click(conn, **kwargs):  # noqa: ANN001, ANN003, ARG001
        clicks.append(kwargs)
        return CommandResult.success("text_hit", target="Accept")

    monkeypatch.setattr(bridge_module, "click_element", fake_click)

    async def scenario() -> None:
        await bridge.select_target()
        before = box["captures"]
        box["html"] = "<p>after click</p>"
        res = await bridge.click(text="Accept", tag="button")
        assert res.to_dict() == {"ok": True, "method": "text_hit", "target": "Accept"}
        await asyncio.sleep(0.15)
        assert box["captures"] == before + 1
        assert bridge.get_last_snapshot().html == "<p>after click</p>"
        await bridge.stop()

    asyncio.run(scenario())
    assert clicks == [{"selector": None, "text": "Accept", "tag": "button", "x": None, "y": None}]


def test_upload_content_stores_then_injects(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    bridge, _box = _bridge(tmp_path)
    seen: list[tuple[Path, str | None]] = []

    async def fake_upload(conn, path, selector=None, **kwargs):  # noqa: ANN001, ANN003, ARG001
        seen.append((Path(path), selector))
        return CommandResult.failure("input_not_invokable")

    monkeypatch.setattr(bridge_module, "upload_file", fake_upload)

    async def scenario() -> dict[str, Any]:
        await bridge.select_target()
        try:
            return await bridge.upload_content("pic.png", "data:image/png;base64," + base64.b64encode(b"PNG").decode())
        finally:
            await bridge.stop()

    out = asyncio.run(scenario())
    assert out["success"] is True
    assert out["injected"] is False
    assert out["reason"] == "input_not_invokable"
    stored = Path(out["path"])
    assert stored.read_bytes() == b"PNG"
    assert seen == [(stored, None)]


def test_discovery_and_debug_views(tmp_path: Path) -> None:
    bridge, _box = _bridge(tmp_path)

    async def scenario() -> dict[str, Any]:
        assert await bridge.discover_instances() == [
            {"id": "chat", "port": 9222, "url": TARGET.url, "title": "Antigravity"}
        ]
        await bridge.select_target("chat")
        try:
            return await bridge.debug_targets()
        finally:
            await bridge.stop()

    out = asyncio.run(scenario())
    assert out["activeTargetId"] == "chat"
    assert out["activePort"] == 9222
    assert out["connected"][0]["title"] == "Antigravity"
    assert out["instances"][0]["id"] == "chat"
