"""Connection lifecycle and snapshot polling.

`SessionManager` owns every transition of the active connection:

    idle -> connecting -> active -> (active | reconnecting) -> stopped

Connect/disconnect run under one `asyncio.Lock`, so two selections can never
race each other into holding two live sockets. The background poll only
captures while a connection is active; a missing or closed connection turns
the poll into a (rate-limited) reconnect attempt instead.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .config import LinkConfig
from .discovery import CandidateTarget, choose_target, discover, rank_targets
from .session_cdp import CdpConnection
from .session_state import SessionState
from .snapshot import Snapshot, capture_snapshot

logger = logging.getLogger("antigravity_link.session")

Discoverer = Callable[[], Awaitable[list[CandidateTarget]]]
Connector = Callable[[CandidateTarget], Awaitable[CdpConnection]]
Capturer = Callable[[CdpConnection], Awaitable[Snapshot | None]]
SnapshotListener = Callable[[Snapshot], Awaitable[None]]


class SessionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class SessionManager:
    def __init__(
        self,
        state: SessionState,
        config: LinkConfig,
        *,
        discoverer: Discoverer | None = None,
        connector: Connector | None = None,
        capturer: Capturer | None = None,
        on_snapshot: SnapshotListener | None = None,
    ) -> None:
        self.state = state
        self.config = config
        self._discover = discoverer or (lambda: discover(config))
        self._connect = connector or self._open_connection
        self._capture = capturer or capture_snapshot
        self._on_snapshot = on_snapshot

        self.status = SessionStatus.IDLE
        self._lifecycle = asyncio.Lock()
        self._stopped = False
        self._poll_task: asyncio.Task | None = None
        self._refresh_tasks: set[asyncio.Task] = set()
        self._last_target_id: str | None = None
        self._last_reconnect_at: float | None = None

    @property
    def stopped(self) -> bool:
        return self._stopped

    def set_snapshot_listener(self, listener: SnapshotListener | None) -> None:
        self._on_snapshot = listener

    async def _open_connection(self, target: CandidateTarget) -> CdpConnection:
        return await CdpConnection.open(
            target.url,
            context_wait=self.config.context_wait,
            target_id=target.id,
            title=target.title,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Selection
    # ─────────────────────────────────────────────────────────────────────────

    async def discover_instances(self) -> list[CandidateTarget]:
        return await self._discover()

    async def select_and_connect(self, preferred_id: str | None = None) -> dict[str, Any]:
        """Pick a target and connect, falling back through the ranked remainder."""
        async with self._lifecycle:
            if self._stopped:
                return self.state.active()
            self.status = SessionStatus.CONNECTING

            instances = await self._discover()
            chosen = choose_target(instances, preferred_id)

            # Tear down first: never two active connections, even briefly.
            await self._release_active()

            if chosen is None:
                logger.info("no_targets preferred=%s", preferred_id)
                self.status = SessionStatus.RECONNECTING
                return self.state.active()

            candidates = [chosen, *[t for t in rank_targets(instances) if t.id != chosen.id]]
            connected = False
            for candidate in candidates:
                try:
                    conn = await self._connect(candidate)
                except Exception as exc:  # noqa: BLE001
                    logger.info("connect_failed target=%s port=%s error=%s", candidate.id, candidate.port, exc)
                    continue
                if self._stopped:
                    await conn.close()
                    break
                self.state.install_connection(conn, candidate)
                self._last_target_id = candidate.id
                connected = True
                logger.info(
                    "target_active id=%s port=%s title=%s contexts=%d",
                    candidate.id,
                    candidate.port,
                    candidate.title,
                    len(conn.contexts),
                )
                break

            if self._stopped:
                self.status = SessionStatus.STOPPED
            elif connected:
                self.status = SessionStatus.ACTIVE
            else:
                self.status = SessionStatus.RECONNECTING
                logger.warning("connect_exhausted candidates=%d", len(candidates))

        if connected:
            await self.update_snapshot()
        return self.state.active()

    async def select_target(self, target_id: str | None = None) -> dict[str, Any]:
        """Switch to `target_id`, or re-push the current snapshot if it is already active."""
        conn = self.state.connection
        if target_id and target_id == self.state.active_target_id and conn is not None and not conn.closed:
            snapshot = self.state.last_snapshot
            if snapshot is not None:
                await self._emit(snapshot)
            return self.state.active()
        return await self.select_and_connect(target_id)

    async def _release_active(self) -> None:
        conn = self.state.release_connection()
        if conn is not None:
            with contextlib.suppress(Exception):
                await conn.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshots
    # ─────────────────────────────────────────────────────────────────────────

    async def update_snapshot(self) -> bool:
        """Capture once; store and broadcast only when the fingerprint changed."""
        conn = self.state.connection
        if conn is None or conn.closed or self._stopped:
            return False
        snapshot = await self._capture(conn)
        if snapshot is None:
            return False
        # The target may have been switched while the capture was in flight.
        if self._stopped or self.state.connection is not conn:
            return False
        if not self.state.record_snapshot(snapshot):
            return False
        await self._emit(snapshot)
        return True

    async def _emit(self, snapshot: Snapshot) -> None:
        listener = self._on_snapshot
        if listener is None or self._stopped:
            return
        try:
            await listener(snapshot)
        except Exception:  # noqa: BLE001
            logger.exception("snapshot_listener_failed")

    def schedule_refresh(self, delay: float = 0.05) -> None:
        """Capture again shortly (after a click the UI usually changes)."""
        if self._stopped:
            return

        async def _later() -> None:
            await asyncio.sleep(delay)
            try:
                await self.update_snapshot()
            except Exception:  # noqa: BLE001
                logger.exception("snapshot_refresh_failed")

        task = asyncio.get_running_loop().create_task(_later())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    # ─────────────────────────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────────────────────────

    def start_polling(self) -> None:
        if self._stopped:
            return
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.config.poll_interval)
            if self._stopped:
                break
            conn = self.state.connection
            if conn is None or conn.closed:
                await self._maybe_reconnect(conn)
                continue
            try:
                await self.update_snapshot()
            except Exception:  # noqa: BLE001
                logger.exception("snapshot_poll_failed")

    async def _maybe_reconnect(self, dead: CdpConnection | None) -> None:
        if dead is not None:
            # Only release it if nobody replaced it meanwhile.
            if self.state.release_connection(expected=dead) is not None:
                logger.info("connection_lost target=%s", self._last_target_id)
                with contextlib.suppress(Exception):
                    await dead.close()
            if not self._stopped:
                self.status = SessionStatus.RECONNECTING

        now = asyncio.get_running_loop().time()
        last = self._last_reconnect_at
        if last is not None and now - last < self.config.reconnect_interval:
            return
        self._last_reconnect_at = now
        try:
            await self.select_and_connect(self._last_target_id)
        except Exception:  # noqa: BLE001
            logger.exception("reconnect_failed")

    # ─────────────────────────────────────────────────────────────────────────
    # Shutdown
    # ─────────────────────────────────────────────────────────────────────────

    async def halt(self) -> None:
        """Stop the poll timer and pending refreshes; nothing is emitted afterwards."""
        self._stopped = True
        tasks = [t for t in (self._poll_task, *self._refresh_tasks) if t is not None and not t.done()]
        self._poll_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    async def shutdown(self) -> None:
        """Close and release the active connection."""
        self._stopped = True
        async with self._lifecycle:
            await self._release_active()
            self.status = SessionStatus.STOPPED

    async def stop(self) -> None:
        await self.halt()
        await self.shutdown()


__all__ = ["SessionManager", "SessionStatus"]
