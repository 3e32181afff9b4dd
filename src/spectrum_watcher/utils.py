"""Miscellaneous helpers."""

from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from typing import Iterator

DEFAULT_POLL_INTERVAL_MS = 5 * 60 * 1000
MIN_POLL_INTERVAL_MS = 15_000


class RateLimiter:
    """Simple rate limiter using sleep between events."""

    def __init__(self, rate_per_second: float):
        self.update_rate(rate_per_second)
        self._lock = asyncio.Lock()
        self._next_time = 0.0

    def update_rate(self, rate_per_second: float) -> None:
        self._interval = 0.0 if rate_per_second <= 0 else 1.0 / rate_per_second

    async def wait(self) -> None:
        async with self._lock:
            if self._interval <= 0:
                return
            now = time.perf_counter()
            if now < self._next_time:
                await asyncio.sleep(self._next_time - now)
            self._next_time = time.perf_counter() + self._interval


class SingleFlightGuard:
    """Allow at most one holder at a time; late callers are turned away."""

    def __init__(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @contextmanager
    def attempt(self) -> Iterator[bool]:
        if self._busy:
            yield False
            return
        self._busy = True
        try:
            yield True
        finally:
            self._busy = False


def parse_interval(
    value: str | int | None,
    default: int = DEFAULT_POLL_INTERVAL_MS,
    minimum: int = MIN_POLL_INTERVAL_MS,
) -> int:
    """Parse a poll interval in milliseconds.

    Missing, malformed or too small values yield ``default``.
    """

    if value is None:
        return default
    stripped = str(value).strip()
    if not stripped:
        return default
    try:
        parsed = int(stripped)
    except ValueError:
        return default
    if parsed < minimum:
        return default
    return parsed


def parse_rate(value: str | None, default: float = 1.0) -> float:
    if value is None:
        return default
    stripped = value.strip()
    if not stripped:
        return default
    try:
        return float(stripped)
    except ValueError:
        return default
