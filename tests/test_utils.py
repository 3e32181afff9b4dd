import asyncio
import time

from spectrum_watcher.utils import (
    DEFAULT_POLL_INTERVAL_MS,
    RateLimiter,
    SingleFlightGuard,
    parse_interval,
    parse_rate,
)


def test_parse_interval_accepts_valid_values() -> None:
    assert parse_interval("60000") == 60000
    assert parse_interval(" 15000 ") == 15000
    assert parse_interval(20000) == 20000


def test_parse_interval_falls_back_to_default() -> None:
    assert parse_interval(None) == DEFAULT_POLL_INTERVAL_MS
    assert parse_interval("") == DEFAULT_POLL_INTERVAL_MS
    assert parse_interval("soon") == DEFAULT_POLL_INTERVAL_MS
    assert parse_interval("14999") == DEFAULT_POLL_INTERVAL_MS
    assert parse_interval("-5") == DEFAULT_POLL_INTERVAL_MS


def test_parse_rate() -> None:
    assert parse_rate("2.5") == 2.5
    assert parse_rate(None) == 1.0
    assert parse_rate("fast", default=3.0) == 3.0


def test_single_flight_guard_rejects_overlap() -> None:
    guard = SingleFlightGuard()
    with guard.attempt() as first:
        assert first is True
        assert guard.busy is True
        with guard.attempt() as second:
            assert second is False
        assert guard.busy is True
    assert guard.busy is False


def test_single_flight_guard_resets_after_error() -> None:
    guard = SingleFlightGuard()
    try:
        with guard.attempt():
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert guard.busy is False


def test_rate_limiter_spacing() -> None:
    limiter = RateLimiter(0)

    async def runner() -> None:
        start = time.perf_counter()
        for _ in range(5):
            await limiter.wait()
        assert time.perf_counter() - start < 0.5

        limiter.update_rate(4.0)
        start = time.perf_counter()
        for _ in range(3):
            await limiter.wait()
        assert time.perf_counter() - start >= 0.45

    asyncio.run(runner())
