from __future__ import annotations

import threading
import time
from typing import Callable

from liquidation_bot.models import ReserveToken


class RpcBudget:
    """Token bucket capping calls per second against one RPC provider."""

    def __init__(
        self,
        name: str,
        calls_per_second: float,
        burst: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.rate = max(0.0, float(calls_per_second))
        self.capacity = float(burst) if burst is not None else max(1.0, self.rate)
        self._clock = clock
        self._tokens = self.capacity
        self._last = clock()
        self._spent = 0
        self._denied = 0
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last)
        self._last = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)

    def try_acquire(self, cost: float = 1.0) -> bool:
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= cost:
                self._tokens -= cost
                self._spent += 1
                return True
            self._denied += 1
            return False

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"spent": self._spent, "denied": self._denied}


class ReserveCache:
    def __init__(self, refresh_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.refresh_seconds = refresh_seconds
        self._clock = clock
        self._reserves: list[ReserveToken] = []
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def get(self, fetch: Callable[[], list[ReserveToken]]) -> list[ReserveToken]:
        now = self._clock()
        with self._lock:
            current = list(self._reserves)
            age = now - self._fetched_at
        if current and age <= self.refresh_seconds:
            return current
        fresh = fetch()
        with self._lock:
            self._reserves = list(fresh)
            self._fetched_at = now
        return list(fresh)
