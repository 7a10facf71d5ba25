"""Target discovery and ranking.

Discovery sweeps the configured local ports for `/json/list`, keeps only
targets that plausibly belong to the chat application, de-duplicates them by
socket URL and ranks them with a small weight table. Classification and
scoring are pure functions over `CandidateTarget` so they can be tested
without any networking.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .config import LinkConfig
from .http_client import HttpClientError, http_get_json

logger = logging.getLogger("antigravity_link.discovery")

SELF_TITLES = frozenset({"antigravity link", "antigravity-link"})


@dataclass(frozen=True, slots=True)
class CandidateTarget:
    id: str
    port: int
    url: str  # webSocketDebuggerUrl
    title: str
    page_url: str = ""
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "port": self.port, "url": self.url, "title": self.title}


# ─────────────────────────────────────────────────────────────────────────────
# Classification
# ─────────────────────────────────────────────────────────────────────────────


def _lower(raw: Any) -> str:
    return str(raw or "").lower()


def exclusion_reason(entry: dict[str, Any]) -> str | None:
    """Return why a raw `/json/list` entry is skipped, or None to keep it.

    Checks run in priority order; the first hit names the reason.
    """
    raw_title = str(entry.get("title") or "")
    title = raw_title.lower()
    url = _lower(entry.get("url"))

    if title.strip() in SELF_TITLES:
        return "self"
    if "devtools" in title or "devtools" in url:
        return "devtools"
    if "vscode-webview" in title or "vscode-webview" in url:
        return "webview"
    if _lower(entry.get("type")) == "service_worker":
        return "service_worker"
    if "launchpad" in title:
        return "launchpad"
    if not raw_title.strip() or title.startswith("instance :"):
        return "blank"
    if not ("antigravity" in title or "workbench" in url or "jetski" in url):
        return "not_app"
    if not entry.get("webSocketDebuggerUrl"):
        return "no_socket"
    return None


def dedupe_key(port: int, entry: dict[str, Any]) -> str:
    ws_url = entry.get("webSocketDebuggerUrl")
    if ws_url:
        return str(ws_url).lower()
    return f"{port}-{entry.get('id') or entry.get('title') or ''}".lower()


def to_candidate(port: int, entry: dict[str, Any]) -> CandidateTarget:
    title = str(entry.get("title") or "")
    ws_url = str(entry.get("webSocketDebuggerUrl") or "")
    return CandidateTarget(
        id=str(entry.get("id") or ws_url or f"{port}-{title}"),
        port=int(port),
        url=ws_url,
        title=title or f"Instance :{port}",
        page_url=str(entry.get("url") or ""),
        type=str(entry.get("type") or ""),
    )


def merge_targets(sweep: Iterable[tuple[int, list[dict[str, Any]]]]) -> list[CandidateTarget]:
    """Filter and de-duplicate raw listings (first occurrence wins, port order)."""
    seen: set[str] = set()
    out: list[CandidateTarget] = []
    for port, entries in sweep:
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            reason = exclusion_reason(entry)
            if reason is not None:
                continue
            key = dedupe_key(port, entry)
            if key in seen:
                continue
            seen.add(key)
            out.append(to_candidate(port, entry))
    return out


# ─────────────────────────────────────────────────────────────────────────────
# Scoring
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ScoreRule:
    name: str
    predicate: Callable[[str, str], bool]  # (title, url) lower-cased
    weight: int


SCORE_RULES: tuple[ScoreRule, ...] = (
    ScoreRule("workbench_url", lambda t, u: "workbench" in u or "jetski" in u, 6),
    ScoreRule("link_title", lambda t, u: "antigravity-link" in t, 6),
    ScoreRule("launchpad", lambda t, u: "launchpad" in t, 2),
    ScoreRule("app_title", lambda t, u: "antigravity" in t, 2),
    ScoreRule("auth_page", lambda t, u: "auth.ts" in t, -6),
    ScoreRule("pairing_qr", lambda t, u: "qr" in t, -6),
    ScoreRule("devtools", lambda t, u: "devtools" in u or "visual studio code" in t, -8),
    ScoreRule("webview", lambda t, u: "vscode-webview" in t, -8),
)


def _title_url(target: CandidateTarget) -> tuple[str, str]:
    # Page URL only: every socket URL contains "/devtools/page/".
    return target.title.lower(), target.page_url.lower()


def score_target(target: CandidateTarget, rules: Iterable[ScoreRule] = SCORE_RULES) -> int:
    title, url = _title_url(target)
    score = 0
    for rule in rules:
        if rule.predicate(title, url):
            score += rule.weight
    return score


def is_workbench_target(target: CandidateTarget) -> bool:
    title, url = _title_url(target)
    return "workbench" in url or "jetski" in url or "antigravity" in title or "launchpad" in title


def is_chat_target(target: CandidateTarget) -> bool:
    """Stricter than inclusion: no pairing, auth, devtools or webview surfaces."""
    title, url = _title_url(target)
    if "qr" in title:
        return False
    if "devtools" in title or "devtools" in url:
        return False
    if "vscode-webview" in title:
        return False
    if "auth.ts" in title:
        return False
    return is_workbench_target(target)


def rank_targets(targets: Iterable[CandidateTarget]) -> list[CandidateTarget]:
    """Stable sort by descending score; ties keep discovery order."""
    return sorted(targets, key=score_target, reverse=True)


def choose_target(targets: list[CandidateTarget], preferred_id: str | None = None) -> CandidateTarget | None:
    """Explicit id when live, else best chat target, else best overall."""
    if preferred_id:
        for t in targets:
            if t.id == preferred_id:
                return t
    chat = rank_targets(t for t in targets if is_chat_target(t))
    if chat:
        return chat[0]
    ranked = rank_targets(targets)
    return ranked[0] if ranked else None


# ─────────────────────────────────────────────────────────────────────────────
# Sweep
# ─────────────────────────────────────────────────────────────────────────────


async def probe_port(host: str, port: int, timeout: float) -> list[dict[str, Any]]:
    """Return the raw target list on one port; any failure means "nothing here"."""
    url = f"http://{host}:{port}/json/list"
    try:
        data = await asyncio.to_thread(http_get_json, url, timeout)
    except HttpClientError as exc:
        logger.debug("discovery_miss port=%s error=%s", port, exc)
        return []
    except Exception as exc:  # noqa: BLE001
        logger.debug("discovery_miss port=%s error=%r", port, exc)
        return []
    if not isinstance(data, list):
        return []
    return [e for e in data if isinstance(e, dict)]


async def discover(config: LinkConfig) -> list[CandidateTarget]:
    ports = list(config.cdp_ports)
    listings = await asyncio.gather(*(probe_port(config.cdp_host, p, config.http_timeout) for p in ports))
    found = merge_targets(zip(ports, listings))
    logger.debug("discovery ports=%d candidates=%d", len(ports), len(found))
    return found


__all__ = [
    "CandidateTarget",
    "SCORE_RULES",
    "ScoreRule",
    "choose_target",
    "dedupe_key",
    "discover",
    "exclusion_reason",
    "is_chat_target",
    "is_workbench_target",
    "merge_targets",
    "probe_port",
    "rank_targets",
    "score_target",
    "to_candidate",
]
