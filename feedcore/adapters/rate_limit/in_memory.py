"""In-memory multi-window rate limiter.

Notes:
- Per-process only: the budget mirrors what a single client may send.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from feedcore.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


@dataclass(frozen=True)
class WindowSpec:
    """A budget of ``limit`` units per ``window_seconds``."""

    limit: int
    window_seconds: int


@dataclass
class _WindowState:
    window_started_at: float
    count: int


class InMemoryMultiWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter enforcing several overlapping windows per key.

    A window opens with the first request admitted after the previous window
    expired. A request is admitted only if every window has room for it, and
    admitting it increments every window, so a short window cannot hide a
    saturated long one (e.g., 60/minute and 1000/hour).
    """

    def __init__(
        self,
        *,
        windows: Sequence[WindowSpec],
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            windows: Window budgets to enforce together.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If no windows are given or any window is invalid.
        """
        if not windows:
            raise ValueError("at least one window is required")
        for window in windows:
            if window.limit < 1:
                raise ValueError("limit must be >= 1")
            if window.window_seconds < 1:
                raise ValueError("window_seconds must be >= 1")

        self._windows = tuple(windows)
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, list[_WindowState]] = {}

    @property
    def windows(self) -> tuple[WindowSpec, ...]:
        return self._windows

    def _current_states(self, key: str, now: float) -> list[_WindowState]:
        """Return per-window state for key, reopening any expired window."""
        states = self._state_by_key.get(key)
        if states is None:
            states = [_WindowState(window_started_at=now, count=0) for _ in self._windows]
            self._state_by_key[key] = states
            return states

        for window, state in zip(self._windows, states):
            if now - state.window_started_at >= window.window_seconds:
                state.window_started_at = now
                state.count = 0
        return states

    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume budget in every window for the provided key.

        Args:
            key: Unique identifier for the budget.
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or cost is invalid.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()

        with self._lock:
            states = self._current_states(key, now)
            blocked = [
                (window, state)
                for window, state in zip(self._windows, states)
                if state.count + cost > window.limit
            ]

            if not blocked:
                for state in states:
                    state.count += cost
                window, state = self._tightest(states)
                return RateLimitResult(
                    allowed=True,
                    limit=window.limit,
                    remaining=max(0, window.limit - state.count),
                    reset_at=int(state.window_started_at + window.window_seconds),
                    retry_after_seconds=None,
                )

            # Wait for the window that reopens last; earlier ones do not help.
            window, state = max(
                blocked, key=lambda item: item[1].window_started_at + item[0].window_seconds
            )
            reset_at = state.window_started_at + window.window_seconds
            return RateLimitResult(
                allowed=False,
                limit=window.limit,
                remaining=max(0, window.limit - state.count),
                reset_at=int(reset_at),
                retry_after_seconds=max(0, int(math.ceil(reset_at - now))),
            )

    def reset(self) -> None:
        with self._lock:
            self._state_by_key.clear()

    def _tightest(self, states: list[_WindowState]) -> tuple[WindowSpec, _WindowState]:
        return min(
            zip(self._windows, states),
            key=lambda item: item[0].limit - item[1].count,
        )
