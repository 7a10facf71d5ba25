"""Viewer broadcast channel.

A small WebSocket server: every connected viewer receives each new snapshot
as `{"type": "snapshot", "data": ..., "timestamp": ...}`. A viewer that joins
gets the latest snapshot right away, and may ask for it again with
`{"type": "request_snapshot"}` (answered to that viewer only).

Authentication lives outside this module; `accept` lets the owner reject a
handshake before the socket is upgraded.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

import websockets

from .snapshot import Snapshot

logger = logging.getLogger("antigravity_link.broadcast")

SnapshotProvider = Callable[[], Snapshot | None]
AcceptHook = Callable[[Any], bool]


def snapshot_message(snapshot: Snapshot) -> str:
    ts = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return json.dumps({"type": "snapshot", "data": snapshot.to_dict(), "timestamp": ts}, ensure_ascii=False)


class BroadcastChannel:
    def __init__(
        self,
        host: str,
        port: int,
        snapshot_provider: SnapshotProvider,
        *,
        accept: AcceptHook | None = None,
    ) -> None:
        self.host = host
        self.port = int(port)
        self._snapshot = snapshot_provider
        self._accept = accept
        self._server: Any | None = None
        self._viewers: set[Any] = set()
        self._closed = False

    @property
    def viewers(self) -> int:
        return len(self._viewers)

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await websockets.serve(
            self._handler,
            self.host,
            self.port,
            process_request=self._process_request,
            max_size=2_000_000,
        )
        # Port 0 means "any free port"; report the one actually bound.
        for sock in self._server.sockets:
            self.port = int(sock.getsockname()[1])
            break
        logger.info("broadcast_listening host=%s port=%s", self.host, self.port)

    def _process_request(self, connection: Any, request: Any) -> Any:
        if self._closed:
            return connection.respond(HTTPStatus.SERVICE_UNAVAILABLE, "Shutting down\n")
        if self._accept is None:
            return None
        try:
            allowed = bool(self._accept(request))
        except Exception:  # noqa: BLE001
            logger.exception("accept_hook_failed")
            allowed = False
        if not allowed:
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")
        return None

    async def _handler(self, ws: Any) -> None:
        self._viewers.add(ws)
        logger.info("viewer_connected viewers=%d", len(self._viewers))
        try:
            await self._send_latest(ws)
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except (TypeError, ValueError):
                    continue
                if isinstance(msg, dict) and msg.get("type") == "request_snapshot":
                    await self._send_latest(ws)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._viewers.discard(ws)
            logger.info("viewer_disconnected viewers=%d", len(self._viewers))

    async def _send_latest(self, ws: Any) -> None:
        snapshot = self._snapshot()
        if snapshot is None:
            return
        await ws.send(snapshot_message(snapshot))

    async def publish(self, snapshot: Snapshot) -> int:
        """Send to every open viewer; returns how many sends succeeded."""
        if self._closed or not self._viewers:
            return 0
        payload = snapshot_message(snapshot)
        viewers = list(self._viewers)
        results = await asyncio.gather(*(ws.send(payload) for ws in viewers), return_exceptions=True)
        delivered = 0
        for ws, res in zip(viewers, results):
            if isinstance(res, BaseException):
                # A viewer that cannot take a push is gone; its handler cleans up.
                logger.debug("viewer_send_failed error=%s", res)
                self._viewers.discard(ws)
            else:
                delivered += 1
        return delivered

    async def close(self) -> None:
        self._closed = True
        srv = self._server
        self._server = None
        if srv is None:
            return
        srv.close()
        with contextlib.suppress(Exception):
            await srv.wait_closed()
        self._viewers.clear()
        logger.info("broadcast_closed")


__all__ = ["BroadcastChannel", "snapshot_message"]
