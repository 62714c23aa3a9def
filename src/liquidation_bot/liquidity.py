from __future__ import annotations

import logging
import threading
from typing import Protocol

from liquidation_bot.config import BotConfig
from liquidation_bot.models import FlashSource, LiquiditySource, normalize_address
from liquidation_bot.pricing import asset_value_base, usd_to_base

LOGGER = logging.getLogger("liquidation_bot")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

BALANCER_SOURCE = LiquiditySource(
    source_id=int(FlashSource.BALANCER),
    pool_address=ZERO_ADDRESS,
    label="balancer",
    fee_bps=0,
)


class LiquidityProvider(Protocol):
    def source_for(self, asset: str) -> LiquiditySource | None:
        ...


class LiquidityReader(Protocol):
    def token_balance(self, token: str, holder: str) -> int:
        ...

    def token_decimals(self, token: str) -> int:
        ...

    def asset_price(self, asset: str) -> int:
        ...


class LiquidityMonitor:
    """
    Chooses the flash-loan source per debt asset. Balancer is preferred while
    its vault holds enough of the token; otherwise the configured fallback
    pool is used, then Aave's own flash loan if allowed. Assets never evaluated
    default to Balancer.
    """

    def __init__(self, config: BotConfig, reader: LiquidityReader) -> None:
        self.config = config
        self.reader = reader
        self._min_liquidity_base = usd_to_base(config.balancer_min_liquidity_usd)
        self._fallbacks = {normalize_address(k): v for k, v in config.flash_fallbacks.items()}
        self._sources: dict[str, LiquiditySource | None] = {}
        self._decimals: dict[str, int] = {}
        self._lock = threading.Lock()

    def _fallback_source(self, asset: str) -> LiquiditySource | None:
        entry = self._fallbacks.get(asset)
        if entry is not None:
            source_id, pool, fee_bps = entry
            label = FlashSource(source_id).name.lower() if source_id in (0, 1, 2) else f"source-{source_id}"
            return LiquiditySource(source_id=source_id, pool_address=pool or ZERO_ADDRESS, label=label, fee_bps=fee_bps)
        if self.config.aave_flash_fallback:
            return LiquiditySource(
                source_id=int(FlashSource.AAVE),
                pool_address=ZERO_ADDRESS,
                label="aave",
                fee_bps=self.config.aave_flash_fee_bps,
            )
        return None

    def evaluate(self, asset: str) -> LiquiditySource | None:
        key = normalize_address(asset)
        decimals = self._decimals.get(key)
        if decimals is None:
            decimals = self.reader.token_decimals(asset)
            self._decimals[key] = decimals
        balance = self.reader.token_balance(asset, self.config.balancer_vault_address)
        price = self.reader.asset_price(asset)
        value = asset_value_base(balance, price, decimals)
        if value > self._min_liquidity_base:
            return BALANCER_SOURCE
        return self._fallback_source(key)

    def refresh(self) -> dict[str, LiquiditySource | None]:
        evaluated: dict[str, LiquiditySource | None] = {}
        for token in self.config.monitored_tokens:
            key = normalize_address(token)
            try:
                evaluated[key] = self.evaluate(token)
            except Exception as exc:
                LOGGER.warning("liquidity_check_failed token=%s error=%s", key, exc)
        with self._lock:
            self._sources.update(evaluated)
        LOGGER.info(
            "liquidity_refresh evaluated=%d non_balancer=%d",
            len(evaluated),
            sum(1 for s in evaluated.values() if s is None or s.source_id != int(FlashSource.BALANCER)),
        )
        return evaluated

    def source_for(self, asset: str) -> LiquiditySource | None:
        key = normalize_address(asset)
        with self._lock:
            if key not in self._sources:
                return BALANCER_SOURCE
            return self._sources[key]
