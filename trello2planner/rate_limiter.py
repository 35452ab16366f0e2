"""Sliding-window rate limiter for API requests."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any


class RateLimiter:
    """Sliding-window rate limiter for API requests

    Grants at most ``requests_per_second`` permits within any trailing window
    of ``window`` seconds. Callers that find the window full wait on a
    condition variable until the oldest grant ages out.

    Both Trello and Graph get their own instance. The default of 9/sec sits
    just under the ceilings the providers enforce so that bursts are not
    rejected server-side.
    """

    def __init__(self, requests_per_second: int = 9, window: float = 1.0):
        """
        Initialize rate limiter

        Args:
            requests_per_second: Maximum grants within one window
            window: Window length in seconds
        """
        if requests_per_second < 1:
            raise ValueError(f"requests_per_second must be at least 1, got: {requests_per_second}")
        self.max_requests = requests_per_second
        self.window = window
        self._grants: deque[float] = deque()
        self._condition = threading.Condition()

    def _expire(self, now: float) -> None:
        while self._grants and now - self._grants[0] >= self.window:
            self._grants.popleft()

    def acquire(self, timeout: float | None = None) -> bool:
        """
        Acquire permission to make a request

        Blocks until fewer than ``max_requests`` grants fall inside the trailing
        window, then records this grant.

        Args:
            timeout: Maximum time to wait (seconds). None waits indefinitely.

        Returns:
            True if permission granted, False if timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._condition:
            while True:
                now = time.monotonic()
                self._expire(now)

                if len(self._grants) < self.max_requests:
                    self._grants.append(now)
                    return True

                wait = self._grants[0] + self.window - now
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return False  # Timeout
                    wait = min(wait, remaining)

                self._condition.wait(wait)

    def get_status(self) -> dict[str, Any]:
        """Get current rate limiter status for debugging"""
        with self._condition:
            self._expire(time.monotonic())
            in_window = len(self._grants)
            return {
                "max_requests": self.max_requests,
                "window_seconds": self.window,
                "in_window": in_window,
                "utilization_percent": in_window / self.max_requests * 100,
            }
