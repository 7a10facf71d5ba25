"""Shared JavaScript helpers for reaching into nested DOM surfaces.

The walker visits the document, every *open* shadow root and every same-origin
frame document below it, breadth first and bounded. Cross-origin frames throw
on access and are skipped; they show up as their own execution contexts.
"""

from __future__ import annotations

DEEP_QUERY_JS = r"""
const __agCollectRoots = (start) => {
  const LIMITS = { roots: 60, depth: 6, scan: 4000 };
  const seen = new Set();
  const roots = [];
  let frontier = [start];

  for (let depth = 0; frontier.length && depth <= LIMITS.depth; depth += 1) {
    const next = [];
    for (const root of frontier) {
      if (!root || seen.has(root) || roots.length >= LIMITS.roots) continue;
      seen.add(root);
      roots.push(root);
      if (!root.querySelectorAll) continue;

      const all = root.querySelectorAll('*');
      const n = Math.min(all.length, LIMITS.scan);
      for (let i = 0; i < n; i += 1) {
        const el = all[i];
        if (el.shadowRoot) next.push(el.shadowRoot);
        if (el.tagName !== 'IFRAME' && el.tagName !== 'FRAME') continue;
        try {
          const doc = el.contentDocument;
          if (doc) next.push(doc);
        } catch (e) {
          // Cross-origin frame.
        }
      }
    }
    frontier = next;
  }
  return roots;
};

const __agIsVisible = (el) => {
  try {
    if (!el || !el.getBoundingClientRect) return false;
    const box = el.getBoundingClientRect();
    if (box.width <= 0 || box.height <= 0) return false;
    const view = (el.ownerDocument && el.ownerDocument.defaultView) || globalThis;
    const style = view.getComputedStyle ? view.getComputedStyle(el) : null;
    return !style || (style.display !== 'none' && style.visibility !== 'hidden');
  } catch (e) {
    return false;
  }
};

const __agQueryAllDeep = (selector, maxTotal) => {
  const cap = maxTotal > 0 ? maxTotal : 1000;
  const out = [];
  for (const root of __agCollectRoots(document)) {
    try {
      for (const el of root.querySelectorAll(selector)) {
        out.push(el);
        if (out.length >= cap) return out;
      }
    } catch (e) {
      // Invalid selector for this root.
    }
  }
  return out;
};

const __agParentOf = (el) => {
  if (!el) return null;
  if (el.parentElement) return el.parentElement;
  const node = el.parentNode;
  return node && node.host ? node.host : null;
};
"""
