"""Upload payload storage.

Viewers send files as base64 (optionally a `data:` URL). They are decoded,
size-checked and written to the uploads directory as `{ms}-{basename}` before
being injected into the app.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("antigravity_link.uploads")

_DATA_URL_PREFIX = re.compile(r"^data:[^,]*,")


@dataclass
class UploadError(Exception):
    """Rejected upload payload."""

    reason: str
    status: int = 400
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"upload rejected: {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.reason, "status": self.status, **({"details": self.details} if self.details else {})}


def safe_basename(name: str) -> str:
    # Accept both separators; only the last component survives.
    base = str(name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    if base in {"", ".", ".."}:
        raise UploadError("invalid_name", details={"name": name})
    return base


def decode_content(content: str, max_bytes: int) -> bytes:
    raw = _DATA_URL_PREFIX.sub("", str(content or "").strip(), count=1)
    if not raw:
        raise UploadError("empty_content")
    # Cheap upper bound before decoding anything large.
    if (len(raw) * 3) // 4 > max_bytes + 3:
        raise UploadError("too_large", status=413, details={"maxBytes": max_bytes})
    try:
        data = base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise UploadError("invalid_base64", details={"error": str(exc)}) from exc
    if len(data) > max_bytes:
        raise UploadError("too_large", status=413, details={"maxBytes": max_bytes, "size": len(data)})
    return data


def store_upload(name: str, content: str, upload_dir: str | Path, max_bytes: int) -> Path:
    """Decode `content` and write it under `upload_dir`; returns the absolute path."""
    if not name or not content:
        raise UploadError("name_and_content_required")
    base = safe_basename(name)
    data = decode_content(content, max_bytes)

    target_dir = Path(upload_dir).expanduser()
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        path = (target_dir / f"{int(time.time() * 1000)}-{base}").resolve()
        path.write_bytes(data)
    except OSError as exc:
        raise UploadError("write_failed", status=500, details={"error": str(exc)}) from exc

    logger.info("upload_stored path=%s bytes=%d", path, len(data))
    return path


__all__ = ["UploadError", "decode_content", "safe_basename", "store_upload"]
