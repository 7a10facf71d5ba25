"""Chat message injection.

Per execution context: put the text into the visible chat editor, then try to
submit it. The first context whose editor accepts the text and whose submit
succeeds wins.
"""

from __future__ import annotations

import json
import logging

from ..http_client import HttpClientError
from ..session_cdp import CdpConnection, ExecutionContext
from .base import CommandResult, Strategy, evaluate_value, first_success

logger = logging.getLogger("antigravity_link.tools.message")

EDITOR_SELECTOR = '#cascade [data-lexical-editor="true"][contenteditable="true"][role="textbox"]'

_FIND_EDITOR_JS = """
const __agFindEditor = () => {
  const editors = Array.from(document.querySelectorAll(%(selector)s))
    .filter((el) => el.offsetParent !== null);
  return editors.length ? editors[editors.length - 1] : null;
};
"""


def _with_editor(body: str) -> str:
    prelude = _FIND_EDITOR_JS % {"selector": json.dumps(EDITOR_SELECTOR)}
    return f"(async () => {{ {prelude}\n{body}\n}})()"


def build_insert_script(text: str) -> str:
    body = """
  const editor = __agFindEditor();
  if (!editor) return { ok: false, reason: "editor_not_found" };
  const text = %(text)s;

  editor.focus();
  let inserted = false;
  try {
    document.execCommand("selectAll", false, null);
    document.execCommand("delete", false, null);
    inserted = !!document.execCommand("insertText", false, text);
  } catch (e) {
    inserted = false;
  }
  if (!inserted) {
    editor.textContent = text;
    editor.dispatchEvent(new InputEvent("beforeinput", { bubbles: true, inputType: "insertText", data: text }));
    editor.dispatchEvent(new InputEvent("input", { bubbles: true, inputType: "insertText", data: text }));
  }

  // Let the editor framework commit its state; rAF may never fire in a hidden window.
  await Promise.race([
    new Promise((r) => requestAnimationFrame(() => requestAnimationFrame(r))),
    new Promise((r) => setTimeout(r, 100)),
  ]);
  return { ok: true, method: inserted ? "exec_command" : "direct_assign" };
""" % {"text": json.dumps(text)}
    return _with_editor(body)


CLICK_SUBMIT_JS = """(() => {
  const icon = document.querySelector("svg.lucide-arrow-right");
  const submit = icon ? icon.closest("button") : null;
  if (!submit || submit.disabled) return { ok: false, reason: "submit_unavailable" };
  submit.click();
  return { ok: true, method: "click_submit" };
})()"""

ENTER_KEYPRESS_JS = _with_editor("""
  const editor = __agFindEditor();
  if (!editor) return { ok: false, reason: "editor_not_found" };
  const init = { bubbles: true, cancelable: true, key: "Enter", code: "Enter", keyCode: 13, which: 13 };
  editor.dispatchEvent(new KeyboardEvent("keydown", init));
  editor.dispatchEvent(new KeyboardEvent("keyup", init));
  return { ok: true, method: "enter_keypress" };
""")


async def _click_submit(conn: CdpConnection, ctx: ExecutionContext) -> CommandResult:
    return CommandResult.from_value(await evaluate_value(conn, CLICK_SUBMIT_JS, ctx))


async def _enter_keypress(conn: CdpConnection, ctx: ExecutionContext) -> CommandResult:
    value = await evaluate_value(conn, ENTER_KEYPRESS_JS, ctx, await_promise=True)
    return CommandResult.from_value(value)


SUBMIT_STRATEGIES: tuple[Strategy, ...] = (
    Strategy("click_submit", _click_submit),
    Strategy("enter_keypress", _enter_keypress),
)


async def send_message(conn: CdpConnection, text: str) -> CommandResult:
    """Insert `text` into the chat editor and submit it.

    Contexts are tried in order; a context counts only when both the insert
    and one of the submit strategies succeed there.
    """
    contexts = list(conn.contexts)
    if not contexts:
        return CommandResult.failure("no_context")

    script = build_insert_script(text)
    last = CommandResult.failure("editor_not_found")
    for ctx in contexts:
        try:
            inserted = CommandResult.from_value(await evaluate_value(conn, script, ctx, await_promise=True))
        except HttpClientError as exc:
            logger.debug("insert_failed ctx=%s error=%s", ctx.id, exc)
            continue
        if not inserted.ok:
            last = inserted
            continue

        submitted = await first_success(conn, SUBMIT_STRATEGIES, contexts=[ctx], default_reason="submit_failed")
        if submitted.ok:
            logger.info("message_sent ctx=%s method=%s insertion=%s", ctx.id, submitted.method, inserted.method)
            return submitted
        last = submitted
    return last


__all__ = ["EDITOR_SELECTOR", "SUBMIT_STRATEGIES", "build_insert_script", "send_message"]
