"""Debugging-protocol transport.

One `CdpConnection` wraps one WebSocket to a discovered target:
- outgoing calls carry a fresh correlation id and park a future in `_pending`
- a single reader task resolves those futures and collects notifications
- `Runtime.executionContextCreated` notifications accumulate in `contexts`

Responses for ids nobody is waiting on (stale waiters after a target switch,
callers that gave up) are dropped silently.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any

import websockets

from .http_client import HttpClientError

logger = logging.getLogger("antigravity_link.cdp")


class CdpConnectionError(HttpClientError):
    """Socket open/handshake failed, or the socket went away."""


class CdpProtocolError(HttpClientError):
    """A call came back with an error payload (the connection stays usable)."""

    def __init__(self, message: str, *, method: str | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.code = code


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    id: int
    name: str = ""
    origin: str = ""

    @classmethod
    def from_event(cls, params: dict[str, Any]) -> ExecutionContext | None:
        ctx = params.get("context") if isinstance(params, dict) else None
        if not isinstance(ctx, dict):
            return None
        ctx_id = ctx.get("id")
        if not isinstance(ctx_id, int) or isinstance(ctx_id, bool):
            return None
        return cls(id=ctx_id, name=str(ctx.get("name") or ""), origin=str(ctx.get("origin") or ""))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "origin": self.origin}


def remote_value(obj: Any) -> Any:
    """Unwrap a Runtime.RemoteObject returned by value (undefined/null -> None)."""
    if not isinstance(obj, dict):
        return None
    if obj.get("type") == "undefined" or obj.get("subtype") == "null":
        return None
    return obj.get("value")


def _exception_text(details: dict[str, Any]) -> str:
    exc = details.get("exception")
    if isinstance(exc, dict):
        desc = exc.get("description")
        if isinstance(desc, str) and desc:
            return desc.splitlines()[0]
    return str(details.get("text") or "uncaught exception")


class CdpConnection:
    """Async CDP WebSocket connection with id correlation and context tracking."""

    def __init__(
        self,
        ws: Any,
        ws_url: str,
        *,
        target_id: str | None = None,
        title: str | None = None,
        max_events: int = 500,
    ) -> None:
        self.ws = ws
        self.ws_url = ws_url
        self.target_id = target_id
        self.title = title
        self.contexts: list[ExecutionContext] = []
        self._next_id = 1
        self._pending: dict[int, asyncio.Future] = {}
        # Non-context notifications, bounded so long sessions don't grow without limit.
        self._events: deque[dict[str, Any]] = deque(maxlen=max(1, int(max_events)))
        self._closed = False
        self._reader: asyncio.Task | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    async def open(
        cls,
        ws_url: str,
        *,
        context_wait: float = 1.0,
        target_id: str | None = None,
        title: str | None = None,
    ) -> CdpConnection:
        """Connect, enable Runtime, and give initial execution contexts time to register."""
        try:
            # Snapshots routinely exceed the default 1 MiB frame limit.
            ws = await websockets.connect(ws_url, max_size=None, ping_interval=None)
        except Exception as exc:  # noqa: BLE001
            raise CdpConnectionError(f"CDP connect failed for {ws_url}: {exc}") from exc

        conn = cls(ws, ws_url, target_id=target_id, title=title)
        conn.start()
        try:
            await conn.call("Runtime.enable")
            # executionContextCreated notifications are not guaranteed to have arrived yet.
            if context_wait > 0:
                await asyncio.sleep(context_wait)
        except HttpClientError as exc:
            await conn.close()
            raise CdpConnectionError(f"CDP handshake failed for {ws_url}: {exc}") from exc
        except asyncio.CancelledError:
            await conn.close()
            raise
        logger.info("cdp_connected url=%s contexts=%d", ws_url, len(conn.contexts))
        return conn

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed and self._reader is None:
            return
        with contextlib.suppress(Exception):
            await self.ws.close()
        reader = self._reader
        self._reader = None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await reader
        self._mark_closed()

    def _mark_closed(self) -> None:
        self._closed = True
        pending = list(self._pending.values())
        self._pending.clear()
        for fut in pending:
            if not fut.done():
                fut.set_exception(CdpConnectionError("CDP connection closed"))

    # ─────────────────────────────────────────────────────────────────────────
    # Calls
    # ─────────────────────────────────────────────────────────────────────────

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        context_id: int | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Send one correlated request and wait for its response (no deadline)."""
        if self._closed:
            raise CdpConnectionError("CDP connection is closed")

        msg_id = self._next_id
        self._next_id += 1

        payload_params = dict(params or {})
        if context_id is not None:
            payload_params["contextId"] = context_id
        msg: dict[str, Any] = {"id": msg_id, "method": method, "params": payload_params}
        if session_id:
            msg["sessionId"] = session_id

        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            await self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(msg_id, None)
            raise CdpConnectionError(f"CDP send failed: {exc}") from exc

        try:
            return await fut
        finally:
            self._pending.pop(msg_id, None)

    async def evaluate(
        self,
        expression: str,
        *,
        context_id: int | None = None,
        return_by_value: bool = True,
        await_promise: bool = False,
    ) -> dict[str, Any]:
        """Runtime.evaluate returning the RemoteObject; a thrown script raises CdpProtocolError."""
        res = await self.call(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": return_by_value, "awaitPromise": await_promise},
            context_id=context_id,
        )
        details = res.get("exceptionDetails")
        if isinstance(details, dict):
            raise CdpProtocolError(f"Evaluation threw: {_exception_text(details)}", method="Runtime.evaluate")
        obj = res.get("result")
        return obj if isinstance(obj, dict) else {}

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest queued notification params for `event_name`."""
        for ev in self._events:
            if ev.get("method") == event_name:
                self._events.remove(ev)
                params = ev.get("params")
                return params if isinstance(params, dict) else {}
        return None

    def discard_events(self, event_name: str) -> int:
        dropped = [ev for ev in self._events if ev.get("method") == event_name]
        for ev in dropped:
            self._events.remove(ev)
        return len(dropped)

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.target_id,
            "title": self.title,
            "url": self.ws_url,
            "contexts": len(self.contexts),
            "closed": self._closed,
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                self._dispatch(raw)
        except websockets.exceptions.ConnectionClosed as exc:
            logger.info("cdp_closed url=%s reason=%s", self.ws_url, exc)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("cdp_reader_failed url=%s", self.ws_url)
        finally:
            self._mark_closed()

    def _dispatch(self, raw: Any) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return
        if not isinstance(data, dict):
            return

        if "id" in data:
            raw_id = data.get("id")
            if not isinstance(raw_id, int):
                return
            fut = self._pending.pop(raw_id, None)
            if fut is None or fut.done():
                return
            err = data.get("error")
            if err is not None:
                message = err.get("message") if isinstance(err, dict) else str(err)
                code = err.get("code") if isinstance(err, dict) else None
                fut.set_exception(CdpProtocolError(str(message or "CDP error"), code=code))
            else:
                result = data.get("result")
                fut.set_result(result if isinstance(result, dict) else {})
            return

        method = data.get("method")
        if not isinstance(method, str) or not method:
            return
        params = data.get("params") if isinstance(data.get("params"), dict) else {}

        if method == "Runtime.executionContextCreated":
            ctx = ExecutionContext.from_event(params)
            if ctx is not None and all(c.id != ctx.id for c in self.contexts):
                self.contexts.append(ctx)
            return

        self._events.append({"method": method, "params": params})


__all__ = [
    "CdpConnection",
    "CdpConnectionError",
    "CdpProtocolError",
    "ExecutionContext",
    "remote_value",
]
