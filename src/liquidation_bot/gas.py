from __future__ import annotations

from decimal import Decimal
import logging
import threading
from typing import Protocol

from liquidation_bot.config import BotConfig
from liquidation_bot.pricing import gwei_to_wei

LOGGER = logging.getLogger("liquidation_bot")


class GasReader(Protocol):
    def base_fee(self) -> int:
        ...

    def gas_price(self) -> int:
        ...


class GasStrategy:
    """
    Keeps a current bid price: latest base fee scaled by gas_multiplier,
    raised to the floor and capped at the ceiling. refresh() is driven by a
    PeriodicLoop; readers only take the lock to copy the value.
    """

    def __init__(self, config: BotConfig, reader: GasReader) -> None:
        self.config = config
        self.reader = reader
        self.floor_wei = gwei_to_wei(config.gas_floor_gwei)
        self.ceiling_wei = gwei_to_wei(config.gas_ceiling_gwei)
        self._multiplier = Decimal(str(config.gas_multiplier))
        self._force_multiplier = Decimal(str(config.force_gas_multiplier))
        self._bid_wei = self.floor_wei
        self._base_fee_wei = 0
        self._lock = threading.Lock()

    def _bound(self, value: int) -> int:
        return max(self.floor_wei, min(self.ceiling_wei, value))

    def refresh(self) -> int:
        try:
            base_fee = int(self.reader.base_fee())
        except Exception as exc:
            LOGGER.warning("gas_refresh_failed error=%s", exc)
            with self._lock:
                return self._bid_wei
        bid = self._bound(int(Decimal(base_fee) * self._multiplier))
        with self._lock:
            self._base_fee_wei = base_fee
            self._bid_wei = bid
        LOGGER.debug("gas_bid base_fee=%d bid=%d", base_fee, bid)
        return bid

    def current_bid(self) -> int:
        with self._lock:
            return self._bid_wei

    def force_bid(self) -> int:
        """Live network gas price scaled for manual forced liquidations."""
        try:
            price = int(self.reader.gas_price())
        except Exception as exc:
            LOGGER.warning("gas_force_read_failed error=%s", exc)
            return self.current_bid()
        return self._bound(int(Decimal(price) * self._force_multiplier))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {"base_fee_wei": self._base_fee_wei, "bid_wei": self._bid_wei}
