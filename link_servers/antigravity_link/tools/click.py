"""Remote click with a strict strategy priority.

selector_hit > coordinate_hit > text_hit (exact, then substring). Each
strategy is tried in every execution context before the next one is considered,
so a selector match in any frame always beats a coordinate hit.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..session_cdp import CdpConnection, ExecutionContext
from .base import CommandResult, Strategy, evaluate_value, first_success
from .shadow_dom import DEEP_QUERY_JS

logger = logging.getLogger("antigravity_link.tools.click")

CLICK_HELPERS_JS = r"""
const __agDispatchClick = (el, x, y) => {
  const rect = el.getBoundingClientRect();
  const clickX = typeof x === 'number' ? x : rect.left + rect.width / 2;
  const clickY = typeof y === 'number' ? y : rect.top + rect.height / 2;
  const view = (el.ownerDocument && el.ownerDocument.defaultView) || window;
  const opts = {
    bubbles: true, cancelable: true, view,
    clientX: clickX, clientY: clickY, screenX: clickX, screenY: clickY,
  };
  el.dispatchEvent(new MouseEvent('mousedown', opts));
  el.dispatchEvent(new MouseEvent('mouseup', opts));
  el.dispatchEvent(new MouseEvent('click', opts));
  try {
    el.dispatchEvent(new PointerEvent('pointerdown', opts));
    el.dispatchEvent(new PointerEvent('pointerup', opts));
  } catch (e) {
    // PointerEvent unavailable.
  }
  if (['INPUT', 'TEXTAREA'].includes(el.tagName) || el.getAttribute('contenteditable') === 'true') {
    el.focus();
  }
};

const __agInteractiveAncestor = (el, withOnclick) => {
  let parent = __agParentOf(el);
  while (parent && parent !== document.body && parent.tagName) {
    const tag = parent.tagName.toLowerCase();
    if (tag === 'button' || tag === 'a' || parent.getAttribute('role') === 'button') return parent;
    if (withOnclick && parent.onclick) return parent;
    parent = __agParentOf(parent);
  }
  return el;
};
"""


def _script(body: str, params: dict[str, Any]) -> str:
    args = json.dumps(params)
    return f"(() => {{ {DEEP_QUERY_JS}\n{CLICK_HELPERS_JS}\nconst args = {args};\n{body}\n}})()"


SELECTOR_BODY = r"""
const hit = __agQueryAllDeep(args.selector, 500).find((el) => __agIsVisible(el));
if (!hit) return { success: false, error: 'selector_miss' };
__agDispatchClick(hit);
return { success: true, method: 'selector_hit', target: args.selector };
"""

COORDINATE_BODY = r"""
const el = document.elementFromPoint(args.x, args.y);
if (!el) return { success: false, error: 'coordinate_miss' };
const interactive = __agInteractiveAncestor(el, true);
__agDispatchClick(interactive, args.x, args.y);
return { success: true, method: 'coordinate_hit', target: interactive.tagName };
"""

TEXT_BODY = r"""
const wanted = args.text;
const tag = (args.tag || '*').toLowerCase();
const textOf = (el) => (el.innerText || el.textContent || '');
const matches = args.exact
  ? (el) => textOf(el).trim() === wanted
  : (el) => textOf(el).includes(wanted);

// Outer containers match substrings too; keep the innermost match of the first subtree.
let best = null;
for (const el of __agQueryAllDeep('*', 20000)) {
  if (!el.tagName) continue;
  if (tag !== '*' && el.tagName.toLowerCase() !== tag) continue;
  if (!matches(el) || !__agIsVisible(el)) continue;
  if (best === null || best.contains(el)) best = el;
}
if (!best) return { success: false, error: 'text_miss' };
const interactive = __agInteractiveAncestor(best, false);
__agDispatchClick(interactive);
return { success: true, method: 'text_hit', target: wanted };
"""


def _runner(body: str, params: dict[str, Any]):
    script = _script(body, params)

    async def run(conn: CdpConnection, ctx: ExecutionContext) -> CommandResult:
        value = await evaluate_value(conn, script, ctx, await_promise=True)
        return CommandResult.from_value(value, default_reason="element_not_found")

    return run


def click_strategies(
    selector: str | None = None,
    text: str | None = None,
    tag: str | None = None,
    x: float | None = None,
    y: float | None = None,
) -> list[Strategy]:
    """Strategies applicable to the given inputs, highest priority first."""
    strategies: list[Strategy] = []
    if selector:
        strategies.append(Strategy("selector_hit", _runner(SELECTOR_BODY, {"selector": selector})))
    if isinstance(x, (int, float)) and isinstance(y, (int, float)):
        strategies.append(Strategy("coordinate_hit", _runner(COORDINATE_BODY, {"x": x, "y": y})))
    if text:
        for exact in (True, False):
            params = {"text": text, "tag": tag or "*", "exact": exact}
            name = "text_exact" if exact else "text_contains"
            strategies.append(Strategy(name, _runner(TEXT_BODY, params)))
    return strategies


async def click_element(
    conn: CdpConnection,
    selector: str | None = None,
    text: str | None = None,
    tag: str | None = None,
    x: float | None = None,
    y: float | None = None,
) -> CommandResult:
    strategies = click_strategies(selector, text, tag, x, y)
    res = await first_success(conn, strategies, default_reason="element_not_found")
    if res.ok:
        logger.info("click_hit method=%s target=%s", res.method, res.target)
        return res
    # Per-strategy misses are internal; callers only see one reason.
    return CommandResult.failure("element_not_found")


__all__ = ["click_element", "click_strategies"]
