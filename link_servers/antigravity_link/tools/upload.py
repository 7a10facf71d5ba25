"""
File upload injection.

Provides:
- upload_file: put a local file into the app's attachment flow

Two strategies, in order:
- ui_interaction: open the "Add context" menu, pick "Media", then catch the
  intercepted file chooser or poll for the file input it reveals
- direct_input: find any file input (deep, across shadow roots and
  same-origin frames) in each context and set files on it
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Any

from ..http_client import HttpClientError
from ..session_cdp import CdpConnection, ExecutionContext
from .base import CommandResult, Strategy, evaluate_value, first_success
from .shadow_dom import DEEP_QUERY_JS

logger = logging.getLogger("antigravity_link.tools.upload")

ADD_CONTEXT_PROBE_JS = """(() => {
  const btn = Array.from(document.querySelectorAll('div, button'))
    .find((el) => (el.innerText || '').toLowerCase().includes('add context'));
  return !!btn;
})()"""


def build_menu_script(settle: float) -> str:
    delay_ms = max(0, int(settle * 1000))
    return """(async () => {
  try {
    const addContext = Array.from(document.querySelectorAll('div, button'))
      .find((el) => (el.innerText || '').toLowerCase().includes('add context'));
    if (!addContext) return 'no_add_btn';
    addContext.click();
    await new Promise((r) => setTimeout(r, %d));
    const media = Array.from(document.querySelectorAll('div, button'))
      .find((el) => (el.innerText || '').trim() === 'Media' && el.offsetParent !== null);
    if (!media) return 'media_not_found';
    media.click();
    return 'clicked_media';
  } catch (e) {
    return String(e);
  }
})()""" % delay_ms


def build_tag_script(uid: str, selector: str | None) -> str:
    """Mark the preferred file input (selector, then visible, then any) with `data-ag-id`."""
    return (
        "(() => {"
        f"{DEEP_QUERY_JS}\n"
        f"  const selector = {json.dumps(selector or '')};\n"
        "  let input = null;\n"
        "  if (selector) {\n"
        "    input = __agQueryAllDeep(selector, 1)[0] || null;\n"
        "  }\n"
        "  if (!input) {\n"
        "    const inputs = __agQueryAllDeep('input[type=\"file\"]', 50);\n"
        "    input = inputs.find((n) => __agIsVisible(n)) || inputs[0] || null;\n"
        "  }\n"
        "  if (!input) return false;\n"
        f"  input.setAttribute('data-ag-id', {json.dumps(uid)});\n"
        "  return true;\n"
        "})()"
    )


def build_resolve_script(uid: str) -> str:
    marker = json.dumps(f'[data-ag-id="{uid}"]')
    return f"(() => {{ {DEEP_QUERY_JS}\n  return __agQueryAllDeep({marker}, 1)[0] || null;\n}})()"


DISPATCH_FN = """function() {
  const tracker = this._valueTracker;
  if (tracker) tracker.setValue('');
  this.dispatchEvent(new Event('input', { bubbles: true }));
  this.dispatchEvent(new Event('change', { bubbles: true }));
}"""


# ─────────────────────────────────────────────────────────────────────────────
# Steps
# ─────────────────────────────────────────────────────────────────────────────


async def _prepare(conn: CdpConnection) -> None:
    for method, params in (
        ("Page.enable", {}),
        ("DOM.enable", {}),
        ("Page.setInterceptFileChooserDialog", {"enabled": True}),
    ):
        try:
            await conn.call(method, params)
        except HttpClientError as exc:
            logger.debug("upload_prepare_failed method=%s error=%s", method, exc)


async def _find_ui_context(conn: CdpConnection) -> ExecutionContext | None:
    for ctx in list(conn.contexts):
        try:
            if await evaluate_value(conn, ADD_CONTEXT_PROBE_JS, ctx):
                return ctx
        except HttpClientError:
            continue
    return None


async def _tag_and_resolve(conn: CdpConnection, ctx: ExecutionContext, selector: str | None) -> str | None:
    """Find a file input in `ctx` and return a remote object id for it."""
    uid = f"ag-{uuid.uuid4().hex[:12]}"
    if not await evaluate_value(conn, build_tag_script(uid, selector), ctx):
        return None
    obj = await conn.evaluate(build_resolve_script(uid), context_id=ctx.id, return_by_value=False)
    object_id = obj.get("objectId")
    return object_id if isinstance(object_id, str) and object_id else None


async def set_files_and_dispatch(conn: CdpConnection, object_id: str, files: list[str]) -> None:
    try:
        await conn.call("DOM.setFileInputFiles", {"files": files, "objectId": object_id})
        # Frameworks that cache the input value only react once the tracker is reset.
        await conn.call("Runtime.callFunctionOn", {"objectId": object_id, "functionDeclaration": DISPATCH_FN})
    finally:
        with suppress(HttpClientError):
            await conn.call("Runtime.releaseObject", {"objectId": object_id})


async def _take_file_chooser(conn: CdpConnection, files: list[str]) -> bool:
    params = conn.pop_event("Page.fileChooserOpened")
    if not params:
        return False
    backend_node_id = params.get("backendNodeId")
    if not isinstance(backend_node_id, int):
        return False
    try:
        await conn.call("DOM.setFileInputFiles", {"files": files, "backendNodeId": backend_node_id})
    except HttpClientError as exc:
        logger.debug("upload_chooser_failed node=%s error=%s", backend_node_id, exc)
        return False
    return True


async def _ui_interaction(
    conn: CdpConnection,
    ctx: ExecutionContext,
    files: list[str],
    selector: str | None,
    *,
    retries: int,
    backoff: float,
    settle: float,
) -> CommandResult:
    try:
        outcome = await evaluate_value(conn, build_menu_script(settle), ctx, await_promise=True)
    except HttpClientError as exc:
        logger.info("upload_menu_failed ctx=%s error=%s", ctx.id, exc)
        return CommandResult.failure("menu_failed")
    logger.info("upload_menu ctx=%s result=%s", ctx.id, outcome)

    if await _take_file_chooser(conn, files):
        return CommandResult.success("file_chooser_injection")

    for attempt in range(max(1, retries)):
        try:
            object_id = await _tag_and_resolve(conn, ctx, selector)
            if object_id:
                await set_files_and_dispatch(conn, object_id, files)
                return CommandResult.success("ui_interaction_injection")
        except HttpClientError as exc:
            logger.debug("upload_poll_failed ctx=%s attempt=%d error=%s", ctx.id, attempt, exc)
        # The chooser may open late, after the menu animation.
        if await _take_file_chooser(conn, files):
            return CommandResult.success("file_chooser_injection")
        await asyncio.sleep(backoff)
    return CommandResult.failure("input_not_found")


def _direct_input(files: list[str], selector: str | None) -> Strategy:
    async def run(conn: CdpConnection, ctx: ExecutionContext) -> CommandResult:
        try:
            object_id = await _tag_and_resolve(conn, ctx, selector)
        except HttpClientError:
            return CommandResult.failure("input_not_invokable")
        if not object_id:
            return CommandResult.failure("input_not_found")
        await set_files_and_dispatch(conn, object_id, files)
        return CommandResult.success("direct_input_injection")

    return Strategy("direct_input", run)


# ─────────────────────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────────────────────


async def upload_file(
    conn: CdpConnection,
    file_path: str | Path,
    selector: str | None = None,
    *,
    retries: int = 5,
    backoff: float = 0.2,
    settle: float = 0.6,
) -> CommandResult:
    """Attach a local file through the app UI, falling back to direct input injection.

    Args:
        conn: Active connection
        file_path: Local path of the file to attach
        selector: CSS selector for the file input (auto-detected if omitted)
        retries: File input polls after the menu click
        backoff: Seconds between polls
        settle: Seconds to let the context menu open

    Returns:
        CommandResult with method `file_chooser_injection`, `ui_interaction_injection`
        or `direct_input_injection`; reasons `file_not_found`, `ui_not_found`,
        `input_not_invokable`, `injection_error`.
    """
    path = Path(file_path).expanduser()
    if not path.is_file():
        return CommandResult.failure("file_not_found")
    files = [str(path.resolve())]

    try:
        return await _upload(conn, files, selector, retries=retries, backoff=backoff, settle=settle)
    except Exception as exc:  # noqa: BLE001
        logger.warning("upload_failed path=%s error=%s", files[0], exc)
        return CommandResult.failure("injection_error")
    finally:
        with suppress(Exception):
            await conn.call("Page.setInterceptFileChooserDialog", {"enabled": False})


async def _upload(
    conn: CdpConnection,
    files: list[str],
    selector: str | None,
    *,
    retries: int,
    backoff: float,
    settle: float,
) -> CommandResult:
    await _prepare(conn)
    conn.discard_events("Page.fileChooserOpened")
    direct = [_direct_input(files, selector)]

    ui_ctx = await _find_ui_context(conn)
    if ui_ctx is None:
        res = await first_success(conn, direct)
        return res if res.ok else CommandResult.failure("ui_not_found")

    res = await _ui_interaction(
        conn, ui_ctx, files, selector, retries=retries, backoff=backoff, settle=settle
    )
    if res.ok:
        logger.info("upload_injected method=%s ctx=%s", res.method, ui_ctx.id)
        return res

    res = await first_success(conn, direct)
    return res if res.ok else CommandResult.failure("input_not_invokable")


__all__ = ["set_files_and_dispatch", "upload_file"]
