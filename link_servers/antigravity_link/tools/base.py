"""
Shared pieces for command injection.

Provides:
- CommandResult: the structured outcome every command returns
- Strategy: a named per-context step
- first_success: runs strategies across execution contexts until one works
- evaluate_value: Runtime.evaluate by value, pinned to one context
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from ..http_client import HttpClientError
from ..session_cdp import CdpConnection, ExecutionContext, remote_value

logger = logging.getLogger("antigravity_link.tools")


@dataclass(slots=True)
class CommandResult:
    """Outcome of a send/click/upload: which strategy worked, or why none did."""

    ok: bool
    method: str | None = None
    reason: str | None = None
    target: str | None = None

    @classmethod
    def success(cls, method: str, target: str | None = None) -> CommandResult:
        return cls(ok=True, method=method, target=target)

    @classmethod
    def failure(cls, reason: str) -> CommandResult:
        return cls(ok=False, reason=reason)

    @classmethod
    def from_value(cls, value: Any, *, default_reason: str = "no_result") -> CommandResult:
        """Interpret a script's `{ok|success, method, reason|error, target}` object."""
        if not isinstance(value, dict):
            return cls.failure(default_reason)
        ok = bool(value.get("ok", value.get("success", False)))
        target = value.get("target")
        if ok:
            return cls.success(str(value.get("method") or "unknown"), str(target) if target is not None else None)
        reason = value.get("reason") or value.get("error") or default_reason
        return cls.failure(str(reason))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok}
        if self.method:
            out["method"] = self.method
        if self.reason:
            out["reason"] = self.reason
        if self.target:
            out["target"] = self.target
        return out


StrategyFn = Callable[[CdpConnection, ExecutionContext], Awaitable[CommandResult]]


@dataclass(frozen=True, slots=True)
class Strategy:
    name: str
    run: StrategyFn


async def first_success(
    conn: CdpConnection,
    strategies: Iterable[Strategy],
    *,
    contexts: Iterable[ExecutionContext] | None = None,
    default_reason: str = "no_context",
) -> CommandResult:
    """Try each strategy in order, each across every context; first ok result wins.

    Protocol errors in one context are absorbed. When everything fails, the
    last failure reported by a strategy is returned.
    """
    ctx_list = list(conn.contexts if contexts is None else contexts)
    last = CommandResult.failure(default_reason)
    for strategy in strategies:
        for ctx in ctx_list:
            try:
                res = await strategy.run(conn, ctx)
            except HttpClientError as exc:
                logger.debug("strategy_error name=%s ctx=%s error=%s", strategy.name, ctx.id, exc)
                continue
            if res.ok:
                logger.debug("strategy_hit name=%s ctx=%s method=%s", strategy.name, ctx.id, res.method)
                return res
            last = res
    return last


async def evaluate_value(
    conn: CdpConnection,
    expression: str,
    ctx: ExecutionContext,
    *,
    await_promise: bool = False,
) -> Any:
    obj = await conn.evaluate(expression, context_id=ctx.id, return_by_value=True, await_promise=await_promise)
    return remote_value(obj)


__all__ = ["CommandResult", "Strategy", "StrategyFn", "evaluate_value", "first_success"]
