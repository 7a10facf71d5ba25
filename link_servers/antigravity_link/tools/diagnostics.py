"""Read-only probes used when an upload or click does not land."""

from __future__ import annotations

from typing import Any

from ..http_client import HttpClientError
from ..session_cdp import CdpConnection
from .base import evaluate_value

OVERLAY_HTML_CAP = 50_000

UPLOAD_PROBE_JS = r"""(() => {
  const results = { inputs: [], buttons: [], contextHtml: '' };
  const isVisible = (el) => {
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0 && window.getComputedStyle(el).visibility !== 'hidden';
  };
  const docs = [document];
  for (const frame of Array.from(document.querySelectorAll('iframe'))) {
    try {
      if (frame.contentDocument) docs.push(frame.contentDocument);
    } catch (e) {
      // Cross-origin frame.
    }
  }
  const area = (el) => {
    const r = el.getBoundingClientRect();
    return r.width * r.height;
  };
  for (const doc of docs) {
    doc.querySelectorAll('input[type="file"]').forEach((i) => {
      results.inputs.push({ id: i.id, className: String(i.className || ''), visible: isVisible(i) });
    });
    doc.querySelectorAll('button, [role="button"]').forEach((b) => {
      const text = (b.textContent || '').trim();
      const aria = b.getAttribute('aria-label') || '';
      if (text || aria) results.buttons.push({ text, aria, visible: isVisible(b) });
    });
    if (!results.contextHtml) {
      const overlays = Array.from(
        doc.querySelectorAll('.fixed, .absolute, [role="menu"], [role="dialog"], [role="listbox"]')
      ).filter(isVisible).sort((a, b) => area(b) - area(a));
      if (overlays.length) results.contextHtml = overlays[0].outerHTML.slice(0, %d);
    }
  }
  return results;
})()""" % OVERLAY_HTML_CAP


async def probe_uploads(conn: CdpConnection) -> dict[str, Any]:
    """Per context: file inputs, labelled buttons, and the largest visible overlay."""
    contexts: list[dict[str, Any]] = []
    for ctx in list(conn.contexts):
        try:
            data = await evaluate_value(conn, UPLOAD_PROBE_JS, ctx)
        except HttpClientError as exc:
            contexts.append({"contextId": ctx.id, "error": str(exc)})
            continue
        if data:
            contexts.append({"contextId": ctx.id, "name": ctx.name, "origin": ctx.origin, "data": data})
    return {"target": conn.title, "url": conn.ws_url, "contexts": contexts}


__all__ = ["probe_uploads"]
