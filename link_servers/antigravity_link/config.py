from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CDP_PORTS: list[int] = [
    # Electron/VS Code style hosts
    9000,
    9001,
    9002,
    9003,
    9004,
    9005,
    # Chromium default range
    9222,
    9223,
    9224,
    9225,
    9226,
    9227,
    9228,
    9229,
    9230,
    # Node inspector legacy port
    5858,
]


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def parse_ports(raw: str | None, default: list[int] | None = None) -> list[int]:
    """Parse "9000-9005,9222,5858" into an ordered, de-duplicated port list."""
    fallback = list(default if default is not None else DEFAULT_CDP_PORTS)
    text = (raw or "").strip()
    if not text:
        return fallback

    ports: list[int] = []

    def _add(p: int) -> None:
        if p < 1 or p > 65535:
            return
        if p not in ports:
            ports.append(p)

    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        m = re.match(r"^(\d+)\s*-\s*(\d+)$", part)
        if m:
            lo, hi = int(m.group(1)), int(m.group(2))
            if lo > hi:
                lo, hi = hi, lo
            for p in range(lo, min(hi, lo + 500) + 1):
                _add(p)
            continue
        if part.isdigit():
            _add(int(part))
    return ports or fallback


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


@dataclass
class LinkConfig:
    cdp_ports: list[int] = field(default_factory=lambda: list(DEFAULT_CDP_PORTS))
    cdp_host: str = "127.0.0.1"
    http_timeout: float = 2.0
    context_wait: float = 1.0
    poll_interval: float = 3.0
    reconnect_interval: float = 10.0
    host: str = "0.0.0.0"
    port: int = 3000
    upload_dir: str = "uploads"
    max_upload_mb: int = 50
    upload_retries: int = 5
    upload_backoff: float = 0.2
    menu_settle: float = 0.6

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb) * 1024 * 1024

    @classmethod
    def from_env(cls) -> LinkConfig:
        return cls(
            cdp_ports=parse_ports(os.environ.get("LINK_CDP_PORTS")),
            cdp_host=(os.environ.get("LINK_CDP_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            http_timeout=max(0.1, _env_float("LINK_HTTP_TIMEOUT", 2.0)),
            context_wait=max(0.0, _env_float("LINK_CONTEXT_WAIT", 1.0)),
            poll_interval=max(0.1, _env_float("LINK_POLL_INTERVAL", 3.0)),
            reconnect_interval=max(0.5, _env_float("LINK_RECONNECT_INTERVAL", 10.0)),
            host=(os.environ.get("LINK_HOST") or "0.0.0.0").strip() or "0.0.0.0",
            port=_env_int("LINK_PORT", 3000),
            upload_dir=expand_path(os.environ.get("LINK_UPLOAD_DIR", "uploads")),
            max_upload_mb=max(1, _env_int("LINK_MAX_UPLOAD_MB", 50)),
            upload_retries=max(1, _env_int("LINK_UPLOAD_RETRIES", 5)),
            upload_backoff=max(0.0, _env_float("LINK_UPLOAD_BACKOFF", 0.2)),
            menu_settle=max(0.0, _env_float("LINK_MENU_SETTLE", 0.6)),
        )
