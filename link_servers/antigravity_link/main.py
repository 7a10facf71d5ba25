"""
Antigravity Link bridge entry point.

Discovers the app's debugging endpoint, mirrors its chat panel to viewers over
WebSocket, and runs until interrupted.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal

from .bridge import LinkBridge
from .config import LinkConfig


def _log_level(raw: str | None) -> int:
    level = getattr(logging, (raw or "INFO").strip().upper(), None)
    return level if isinstance(level, int) else logging.INFO


logging.basicConfig(
    level=_log_level(os.environ.get("LINK_LOG_LEVEL")),
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("antigravity_link")

__all__ = ["main", "run"]


async def run(config: LinkConfig | None = None) -> None:
    bridge = LinkBridge(config or LinkConfig.from_env())
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    try:
        active = await bridge.start()
        logger.info(
            "link_ready viewers=ws://%s:%s target=%s",
            bridge.config.host,
            bridge.broadcast.port,
            active.get("activeTargetId"),
        )
        await stop.wait()
    finally:
        await bridge.stop()


def main() -> None:
    """Main entry point for the bridge."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run())


if __name__ == "__main__":
    main()
