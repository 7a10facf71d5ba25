"""
Bridge facade.

`LinkBridge` wires the session manager, the injection tools and the viewer
broadcast channel around one shared `SessionState`. It is the surface an
HTTP layer (or a test) talks to.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .broadcast import AcceptHook, BroadcastChannel
from .config import LinkConfig
from .session_manager import SessionManager
from .session_state import SessionState
from .snapshot import Snapshot
from .tools import CommandResult, click_element, probe_uploads, send_message, upload_file
from .uploads import store_upload

logger = logging.getLogger("antigravity_link.bridge")


class LinkBridge:
    def __init__(
        self,
        config: LinkConfig | None = None,
        *,
        state: SessionState | None = None,
        manager: SessionManager | None = None,
        accept: AcceptHook | None = None,
    ) -> None:
        self.config = config or LinkConfig.from_env()
        self.state = state or (manager.state if manager is not None else SessionState())
        self.manager = manager or SessionManager(self.state, self.config)
        self.broadcast = BroadcastChannel(self.config.host, self.config.port, self.get_last_snapshot, accept=accept)
        self.manager.set_snapshot_listener(self._publish)
        self._started = False

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self, *, serve: bool = True) -> dict[str, Any]:
        """Connect to the best target, start polling, and open the viewer channel."""
        if serve:
            await self.broadcast.start()
        active = await self.manager.select_and_connect()
        self.manager.start_polling()
        self._started = True
        logger.info("bridge_started active=%s port=%s", active.get("activeTargetId"), active.get("activePort"))
        return active

    async def stop(self) -> None:
        """Poll first, then viewers, then the socket; nothing is broadcast afterwards."""
        await self.manager.halt()
        await self.broadcast.close()
        await self.manager.shutdown()
        if self._started:
            logger.info("bridge_stopped")
        self._started = False

    async def _publish(self, snapshot: Snapshot) -> None:
        await self.broadcast.publish(snapshot)

    # ─────────────────────────────────────────────────────────────────────────
    # Targets
    # ─────────────────────────────────────────────────────────────────────────

    async def discover_instances(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in await self.manager.discover_instances()]

    async def select_target(self, target_id: str | None = None) -> dict[str, Any]:
        return await self.manager.select_target(target_id)

    def get_last_snapshot(self) -> Snapshot | None:
        return self.state.last_snapshot

    async def debug_targets(self) -> dict[str, Any]:
        instances = await self.discover_instances()
        conn = self.state.connection
        return {
            **self.state.active(),
            "connected": [conn.describe()] if conn is not None else [],
            "instances": instances,
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    def _live_connection(self):
        conn = self.state.connection
        if conn is None or conn.closed:
            return None
        return conn

    async def send_message(self, text: str) -> CommandResult:
        if not isinstance(text, str) or not text.strip():
            return CommandResult.failure("empty_message")
        conn = self._live_connection()
        if conn is None:
            return CommandResult.failure("not_connected")
        return await send_message(conn, text)

    async def click(
        self,
        selector: str | None = None,
        text: str | None = None,
        tag: str | None = None,
        x: float | None = None,
        y: float | None = None,
    ) -> CommandResult:
        conn = self._live_connection()
        if conn is None:
            return CommandResult.failure("not_connected")
        res = await click_element(conn, selector=selector, text=text, tag=tag, x=x, y=y)
        if res.ok:
            self.manager.schedule_refresh(0.05)
        return res

    async def upload_file(self, local_path: str | Path, selector: str | None = None) -> CommandResult:
        conn = self._live_connection()
        if conn is None:
            return CommandResult.failure("not_connected")
        return await upload_file(
            conn,
            local_path,
            selector,
            retries=self.config.upload_retries,
            backoff=self.config.upload_backoff,
            settle=self.config.menu_settle,
        )

    def store_upload(self, name: str, content: str) -> Path:
        return store_upload(name, content, self.config.upload_dir, self.config.max_upload_bytes)

    async def upload_content(self, name: str, content: str, selector: str | None = None) -> dict[str, Any]:
        """Store a viewer upload, then inject it. Raises UploadError for a rejected payload."""
        if self._live_connection() is None:
            return {"success": False, "injected": False, "reason": "not_connected"}
        path = self.store_upload(name, content)
        res = await self.upload_file(path, selector)
        out: dict[str, Any] = {"success": True, "path": str(path), "injected": res.ok}
        if not res.ok:
            out["reason"] = res.reason or "injection_failed"
        return out

    async def probe_uploads(self) -> dict[str, Any]:
        conn = self._live_connection()
        if conn is None:
            return {"success": False, "error": "not_connected"}
        return {"success": True, "targets": [await probe_uploads(conn)]}


__all__ = ["LinkBridge"]
