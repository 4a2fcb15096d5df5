"""Unit tests for the in-memory multi-window rate limiter adapter."""

from unittest.mock import Mock

import pytest

from feedcore.adapters.rate_limit.in_memory import InMemoryMultiWindowRateLimiter, WindowSpec

MINUTE_AND_HOUR = (WindowSpec(limit=60, window_seconds=60), WindowSpec(limit=1000, window_seconds=3600))


def test_allows_up_to_limit_in_same_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryMultiWindowRateLimiter(windows=[WindowSpec(limit=3, window_seconds=60)], clock=clock)

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is True
    result = limiter.consume("k")
    assert result.allowed is True
    assert result.remaining == 0


def test_sixty_first_request_in_a_minute_is_blocked() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryMultiWindowRateLimiter(windows=MINUTE_AND_HOUR, clock=clock)

    for i in range(60):
        clock.return_value = 1000.0 + i * 0.5
        assert limiter.consume("forum").allowed is True

    blocked = limiter.consume("forum")
    assert blocked.allowed is False
    assert blocked.limit == 60
    assert blocked.remaining == 0
    # Window opened at t=1000, now is t=1029.5
    assert blocked.retry_after_seconds == 31


def test_thousand_and_first_request_in_an_hour_is_blocked() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryMultiWindowRateLimiter(windows=MINUTE_AND_HOUR, clock=clock)

    # 50 requests per minute never saturate the minute window
    for minute in range(20):
        clock.return_value = 1000.0 + minute * 60
        for _ in range(50):
            assert limiter.consume("forum").allowed is True

    clock.return_value = 1000.0 + 20 * 60
    blocked = limiter.consume("forum")
    assert blocked.allowed is False
    assert blocked.limit == 1000
    assert blocked.retry_after_seconds == 3600 - 20 * 60


def test_blocked_request_consumes_nothing() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryMultiWindowRateLimiter(
        windows=[WindowSpec(limit=1, window_seconds=10), WindowSpec(limit=3, window_seconds=100)],
        clock=clock,
    )

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is False
    assert limiter.consume("k").allowed is False

    clock.return_value = 1010.0
    assert limiter.consume("k").allowed is True
    clock.return_value = 1020.0
    assert limiter.consume("k").allowed is True

    clock.return_value = 1030.0
    blocked = limiter.consume("k")
    assert blocked.allowed is False
    assert blocked.limit == 3


def test_resets_on_new_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryMultiWindowRateLimiter(windows=[WindowSpec(limit=1, window_seconds=10)], clock=clock)

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is False

    clock.return_value = 1010.0
    assert limiter.consume("k").allowed is True


def test_isolated_by_key() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryMultiWindowRateLimiter(windows=[WindowSpec(limit=1, window_seconds=60)], clock=clock)

    assert limiter.consume("k1").allowed is True
    assert limiter.consume("k1").allowed is False

    assert limiter.consume("k2").allowed is True


def test_reset_forgets_usage() -> None:
    limiter = InMemoryMultiWindowRateLimiter(windows=[WindowSpec(limit=1, window_seconds=60)])

    assert limiter.consume("k").allowed is True
    limiter.reset()
    assert limiter.consume("k").allowed is True


@pytest.mark.parametrize(
    "windows",
    [
        [],
        [WindowSpec(limit=0, window_seconds=60)],
        [WindowSpec(limit=1, window_seconds=0)],
    ],
)
def test_invalid_constructor_args(windows: list) -> None:
    with pytest.raises(ValueError):
        InMemoryMultiWindowRateLimiter(windows=windows)


def test_invalid_consume_args() -> None:
    limiter = InMemoryMultiWindowRateLimiter(windows=[WindowSpec(limit=1, window_seconds=60)])

    with pytest.raises(ValueError):
        limiter.consume("")

    with pytest.raises(ValueError):
        limiter.consume("k", cost=0)
