"""Fixed-window request limiter shared by every caller of one service."""

from __future__ import annotations

import time
from typing import Callable

WINDOW_MS = 60_000


class FixedWindowRateLimiter:
    """Allows ``limit`` requests per 60 second window.

    ``clock`` returns wall-clock seconds and is injectable for tests. The
    window restarts on the first request made once it has aged
    ``window_ms`` or more.
    """

    def __init__(
        self,
        limit: int,
        window_ms: int = WINDOW_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._window_ms = window_ms
        self._clock = clock
        self._count = 0
        self._window_start_ms: float | None = None

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def count(self) -> int:
        return self._count

    def try_acquire(self) -> bool:
        """Count one request. Returns False once the window's budget is spent."""
        now_ms = self._clock() * 1000
        if self._window_start_ms is None or now_ms - self._window_start_ms >= self._window_ms:
            self._window_start_ms = now_ms
            self._count = 0
        self._count += 1
        return self._count <= self._limit

    def reset(self) -> None:
        self._count = 0
        self._window_start_ms = None
