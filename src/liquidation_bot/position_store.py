from __future__ import annotations

import threading
from typing import Iterable

from liquidation_bot.models import Position, normalize_address


class PositionStore:
    """Latest known position per account. Last write wins."""

    def __init__(self) -> None:
        self._positions: dict[str, Position] = {}
        self._lock = threading.Lock()

    def upsert(self, position: Position) -> None:
        with self._lock:
            self._positions[position.account] = position

    def get(self, account: str) -> Position | None:
        with self._lock:
            return self._positions.get(normalize_address(account))

    def remove(self, account: str) -> bool:
        with self._lock:
            return self._positions.pop(normalize_address(account), None) is not None

    def many(self, accounts: Iterable[str]) -> list[Position]:
        with self._lock:
            out = []
            for account in accounts:
                position = self._positions.get(normalize_address(account))
                if position is not None:
                    out.append(position)
            return out

    def snapshot(self) -> dict[str, Position]:
        with self._lock:
            return dict(self._positions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    def __contains__(self, account: object) -> bool:
        if not isinstance(account, str):
            return False
        with self._lock:
            return normalize_address(account) in self._positions
