"""UI capture from the active target.

The capture routine runs inside each execution context in turn; the first one
that yields a usable description wins. App-internal `vscode-file://` asset
references are inlined as data URIs so viewers on other machines can render
them.
"""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import unquote

from .http_client import HttpClientError
from .session_cdp import CdpConnection, remote_value

logger = logging.getLogger("antigravity_link.snapshot")


class CaptureError(Exception):
    """The capture routine reported a failure inside the remote context."""


CAPTURE_SCRIPT = r"""(() => {
  try {
    const cascade = document.getElementById('cascade');
    let cleanHtml;
    if (cascade) {
      const clone = cascade.cloneNode(true);
      const editable = clone.querySelector('[contenteditable="true"]');
      const input = editable ? editable.closest('div[id^="cascade"] > div') : null;
      if (input) input.remove();
      cleanHtml = clone.outerHTML;
    } else {
      cleanHtml = document.body.outerHTML;
    }

    const fullBodyHtml = document.body.outerHTML;

    let allCSS = '';
    for (const sheet of document.styleSheets) {
      try {
        for (const rule of sheet.cssRules) allCSS += rule.cssText + '\n';
      } catch (e) {
        // Cross-origin stylesheet.
      }
    }

    const rootStyles = window.getComputedStyle(document.documentElement);
    const bodyStyles = window.getComputedStyle(document.body);

    return {
      html: cleanHtml,
      controlsHtml: fullBodyHtml,
      css: allCSS,
      backgroundColor: bodyStyles.backgroundColor,
      color: bodyStyles.color,
      fontFamily: bodyStyles.fontFamily,
      themeClass: document.documentElement.className,
      themeAttr: document.documentElement.getAttribute('data-theme') || '',
      colorScheme: rootStyles.colorScheme || 'dark',
      bodyBg: bodyStyles.backgroundColor,
      bodyColor: bodyStyles.color
    };
  } catch (e) {
    return { error: String(e) };
  }
})()"""


@dataclass(slots=True)
class Snapshot:
    html: str
    controls_html: str = ""
    css: str = ""
    background_color: str = ""
    color: str = ""
    font_family: str = ""
    theme_class: str = ""
    theme_attr: str = ""
    color_scheme: str = "dark"
    body_bg: str = ""
    body_color: str = ""
    fingerprint: str = ""
    error: str | None = None

    @classmethod
    def from_capture(cls, raw: dict[str, Any]) -> Snapshot:
        def _s(key: str, default: str = "") -> str:
            v = raw.get(key)
            return v if isinstance(v, str) else default

        html = _s("html")
        return cls(
            html=html,
            controls_html=_s("controlsHtml"),
            css=_s("css"),
            background_color=_s("backgroundColor"),
            color=_s("color"),
            font_family=_s("fontFamily"),
            theme_class=_s("themeClass"),
            theme_attr=_s("themeAttr"),
            color_scheme=_s("colorScheme", "dark") or "dark",
            body_bg=_s("bodyBg"),
            body_color=_s("bodyColor"),
            fingerprint=fingerprint(html),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "html": self.html,
            "controlsHtml": self.controls_html,
            "css": self.css,
            "backgroundColor": self.background_color,
            "color": self.color,
            "fontFamily": self.font_family,
            "themeClass": self.theme_class,
            "themeAttr": self.theme_attr,
            "colorScheme": self.color_scheme,
            "bodyBg": self.body_bg,
            "bodyColor": self.body_color,
            "fingerprint": self.fingerprint,
        }
        if self.error:
            out["error"] = self.error
        return out


# ─────────────────────────────────────────────────────────────────────────────
# Fingerprint
# ─────────────────────────────────────────────────────────────────────────────

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def fingerprint(text: str) -> str:
    """32-bit FNV-1a over code points. Equality check only, not integrity."""
    h = _FNV_OFFSET
    for ch in text or "":
        h ^= ord(ch)
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return f"{h:08x}"


# ─────────────────────────────────────────────────────────────────────────────
# Asset inlining
# ─────────────────────────────────────────────────────────────────────────────

APP_ASSET_RE = re.compile(r"vscode-file://vscode-app(/[^\"'\s)]+\.(?:svg|png|jpe?g|gif))", re.IGNORECASE)

_MIME_BY_EXT = {
    "svg": "image/svg+xml",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
}


def _local_path(url_path: str) -> Path:
    decoded = unquote(url_path)
    # "/C:/Program Files/..." on Windows hosts.
    if re.match(r"^/[A-Za-z]:[/\\]", decoded):
        decoded = decoded[1:]
    return Path(decoded)


@lru_cache(maxsize=512)
def _data_uri(path: str, mtime_ns: int, size: int) -> str:  # noqa: ARG001
    data = Path(path).read_bytes()
    ext = path.rsplit(".", 1)[-1].lower()
    mime = _MIME_BY_EXT.get(ext, f"image/{ext}")
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def inline_app_assets(text: str) -> str:
    """Replace app-internal asset URLs with data URIs; missing files stay as-is."""
    if not text or "vscode-file://" not in text:
        return text

    def _replace(m: re.Match[str]) -> str:
        path = _local_path(m.group(1))
        try:
            st = path.stat()
            if not path.is_file():
                return m.group(0)
            return _data_uri(str(path), st.st_mtime_ns, st.st_size)
        except OSError:
            return m.group(0)

    return APP_ASSET_RE.sub(_replace, text)


# ─────────────────────────────────────────────────────────────────────────────
# Capture
# ─────────────────────────────────────────────────────────────────────────────


def _parse_capture(obj: dict[str, Any]) -> Snapshot:
    value = remote_value(obj)
    if not isinstance(value, dict):
        raise CaptureError("capture returned no value")
    if value.get("error"):
        raise CaptureError(str(value.get("error")))
    if not isinstance(value.get("html"), str):
        raise CaptureError("capture returned no html")
    return Snapshot.from_capture(value)


async def capture_snapshot(conn: CdpConnection) -> Snapshot | None:
    """First context that yields a usable snapshot wins; per-context failures are skipped."""
    for ctx in list(conn.contexts):
        try:
            obj = await conn.evaluate(CAPTURE_SCRIPT, context_id=ctx.id, return_by_value=True)
            snapshot = _parse_capture(obj)
        except CaptureError as exc:
            logger.debug("capture_error ctx=%s title=%s error=%s", ctx.id, conn.title, exc)
            continue
        except HttpClientError as exc:
            logger.debug("capture_call_failed ctx=%s error=%s", ctx.id, exc)
            continue

        snapshot.html = inline_app_assets(snapshot.html)
        snapshot.css = inline_app_assets(snapshot.css)
        return snapshot
    return None


__all__ = [
    "APP_ASSET_RE",
    "CAPTURE_SCRIPT",
    "CaptureError",
    "Snapshot",
    "capture_snapshot",
    "fingerprint",
    "inline_app_assets",
]
