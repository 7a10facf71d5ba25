from __future__ import annotations

import json
from http.client import HTTPException
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

# /json/list for a busy instance stays well under this.
MAX_JSON_BYTES = 2 * 1024 * 1024


class HttpClientError(Exception):
    pass


def _build_request(url: str) -> Request:
    return Request(url, headers={"User-Agent": "antigravity-link/1.0"})


def http_get_json(url: str, timeout: float = 2.0, max_bytes: int = MAX_JSON_BYTES) -> Any:
    """Fetch and decode a JSON document.

    Blocking; callers on the event loop run it through `asyncio.to_thread`.
    Bodies larger than `max_bytes` are rejected rather than parsed.
    """
    try:
        with urlopen(_build_request(url), timeout=timeout) as resp:
            body = resp.read(max_bytes + 1)
    except (TimeoutError, URLError, HTTPException, OSError) as exc:
        raise HttpClientError(str(exc) or type(exc).__name__) from exc
    if len(body) > max_bytes:
        raise HttpClientError(f"Response from {url} exceeds {max_bytes} bytes")
    try:
        return json.loads(body.decode("utf-8", errors="replace"))
    except ValueError as exc:
        raise HttpClientError(f"Invalid JSON from {url}: {exc}") from exc


__all__ = ["MAX_JSON_BYTES", "HttpClientError", "http_get_json"]
