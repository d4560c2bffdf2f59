"""Ordered fallback strategies (first success wins)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from piclet.image_engine import OpResult


@dataclass(frozen=True)
class Strategy:
    name: str
    run: Callable[[], Awaitable[OpResult]]


@dataclass
class Attempt:
    name: str
    result: OpResult


async def first_success(strategies: Sequence[Strategy]) -> tuple[Strategy | None, list[Attempt]]:
    """Run ``strategies`` in order until one succeeds.

    Returns the winning strategy (or ``None``) and every attempt made, so the
    caller can log the fallbacks that were tried.
    """
    attempts: list[Attempt] = []
    for strategy in strategies:
        res = await strategy.run()
        attempts.append(Attempt(strategy.name, res))
        if res.ok:
            return strategy, attempts
    return None, attempts
