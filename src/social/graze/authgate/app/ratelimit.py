"""
Per-client fixed-window rate limiter.

Each client address gets a window of `window_seconds` that starts with its first
attempt. Up to `max_attempts` attempts are admitted in a window; later ones are
rejected with the number of seconds until the window ends. Once the window has
ended the next attempt opens a fresh one.

Windows are held in memory, one limiter per process. Expired windows are dropped
when their address is seen again and by `sweep`, which the server runs
periodically.
"""

import asyncio
from dataclasses import dataclass
import logging
import math
import time
from typing import Callable, Dict, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allowed:
    remaining: int


@dataclass(frozen=True)
class Rejected:
    retry_after_seconds: int


Admission = Union[Allowed, Rejected]


@dataclass(frozen=True)
class RateWindow:
    count: int
    window_reset_at: float


class RateLimiter:
    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = asyncio.Lock()

    async def admit(self, client_address: str) -> Admission:
        async with self._lock:
            now = self._clock()
            window = self._windows.get(client_address)

            if window is None or now > window.window_reset_at:
                self._windows[client_address] = RateWindow(
                    count=1, window_reset_at=now + self.window_seconds
                )
                return Allowed(remaining=self.max_attempts - 1)

            if window.count >= self.max_attempts:
                retry_after = max(1, math.ceil(window.window_reset_at - now))
                logger.warning(
                    "Rate limit exceeded for %s (%d attempts, retry after %ds)",
                    client_address,
                    window.count,
                    retry_after,
                )
                return Rejected(retry_after_seconds=retry_after)

            self._windows[client_address] = RateWindow(
                count=window.count + 1, window_reset_at=window.window_reset_at
            )
            return Allowed(remaining=self.max_attempts - window.count - 1)

    async def reset(self, client_address: str) -> None:
        async with self._lock:
            self._windows.pop(client_address, None)

    async def sweep(self) -> int:
        """Drop expired windows. Returns how many were dropped."""
        async with self._lock:
            now = self._clock()
            expired = [
                address
                for address, window in self._windows.items()
                if now > window.window_reset_at
            ]
            for address in expired:
                del self._windows[address]
            return len(expired)

    def __len__(self) -> int:
        return len(self._windows)
