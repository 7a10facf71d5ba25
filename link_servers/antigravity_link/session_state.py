"""Shared session state.

A single `SessionState` is created by the bridge and handed to every
component that needs it. All mutation goes through the methods below, each of
which completes without awaiting, so cooperative tasks never observe a
half-applied update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .discovery import CandidateTarget
    from .session_cdp import CdpConnection
    from .snapshot import Snapshot


@dataclass
class SessionState:
    connection: CdpConnection | None = None
    active_target_id: str | None = None
    active_port: int | None = None
    active_title: str | None = None
    last_snapshot: Snapshot | None = None
    last_fingerprint: str | None = None
    snapshot_cache: dict[int, Snapshot] = field(default_factory=dict)

    def active(self) -> dict[str, object]:
        return {"activeTargetId": self.active_target_id, "activePort": self.active_port}

    def install_connection(self, conn: CdpConnection, target: CandidateTarget) -> None:
        self.connection = conn
        self.active_target_id = target.id
        self.active_port = target.port
        self.active_title = target.title

    def release_connection(self, expected: CdpConnection | None = None) -> CdpConnection | None:
        """Detach the active connection; with `expected`, only if it is still that one."""
        conn = self.connection
        if expected is not None and conn is not expected:
            return None
        self.connection = None
        self.active_target_id = None
        self.active_port = None
        self.active_title = None
        return conn

    def record_snapshot(self, snapshot: Snapshot) -> bool:
        """Store a capture; returns False when its fingerprint matches the last one."""
        if snapshot.fingerprint == self.last_fingerprint:
            return False
        self.last_snapshot = snapshot
        self.last_fingerprint = snapshot.fingerprint
        if self.active_port is not None:
            self.snapshot_cache[self.active_port] = snapshot
        return True

    def cached_snapshot(self, port: int) -> Snapshot | None:
        return self.snapshot_cache.get(port)
