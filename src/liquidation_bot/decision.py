from __future__ import annotations

import logging
from typing import Protocol, Sequence

from liquidation_bot.config import BotConfig
from liquidation_bot.liquidity import LiquidityProvider
from liquidation_bot.models import AssetSnapshot, LiquidationTarget, Position, ReserveToken
from liquidation_bot.pricing import (
    BPS,
    base_to_usd,
    bonus_profit_base,
    close_factor_bps,
    debt_to_cover,
    hf_to_float,
    to_wad,
    usd_to_base,
)
from liquidation_bot.runtime_support import ReserveCache, RpcBudget

LOGGER = logging.getLogger("liquidation_bot")


class ReserveReader(Protocol):
    def reserve_tokens(self) -> list[ReserveToken]:
        ...

    def user_asset_snapshots(self, account: str, reserves: Sequence[ReserveToken]) -> list[AssetSnapshot]:
        ...


def select_collateral(snapshots: Sequence[AssetSnapshot]) -> AssetSnapshot | None:
    candidates = [s for s in snapshots if s.collateral_enabled and s.collateral_value_base > 0]
    if not candidates:
        return None
    return max(candidates, key=lambda s: s.collateral_value_base)


def select_debt(snapshots: Sequence[AssetSnapshot]) -> AssetSnapshot | None:
    candidates = [s for s in snapshots if s.debt_value_base > 0]
    if not candidates:
        return None
    return max(candidates, key=lambda s: s.debt_value_base)


class DecisionEngine:
    def __init__(
        self,
        config: BotConfig,
        *,
        reader: ReserveReader,
        liquidity: LiquidityProvider,
        reserve_cache: ReserveCache | None = None,
        budget: RpcBudget | None = None,
    ) -> None:
        self.config = config
        self.reader = reader
        self.liquidity = liquidity
        self.reserve_cache = reserve_cache or ReserveCache(config.reserve_cache_seconds)
        self.budget = budget
        self._liquidation_hf = to_wad(config.liquidation_hf)
        self._full_close_hf = to_wad(config.full_close_hf)
        self._min_profit_base = usd_to_base(config.min_profit_usd)
        self._gas_cost_base = usd_to_base(config.gas_cost_estimate_usd)

    def analyze(self, position: Position, force: bool = False) -> LiquidationTarget | None:
        hf = position.health_factor
        if hf == 0:
            return None
        if hf >= self._liquidation_hf and not force:
            return None
        if self.budget is not None and not self.budget.try_acquire():
            LOGGER.debug("decision_budget_skip account=%s provider=%s", position.account, self.budget.name)
            return None

        try:
            reserves = self.reserve_cache.get(self.reader.reserve_tokens)
            snapshots = self.reader.user_asset_snapshots(position.account, reserves)
        except Exception as exc:
            LOGGER.warning("decision_read_failed account=%s error=%s", position.account, exc)
            return None

        collateral = select_collateral(snapshots)
        debt = select_debt(snapshots)
        if collateral is None or debt is None:
            LOGGER.info(
                "decision_skip account=%s reason=missing_assets collateral=%s debt=%s",
                position.account,
                collateral is not None,
                debt is not None,
            )
            return None
        if debt.price <= 0:
            LOGGER.info("decision_skip account=%s reason=zero_price asset=%s", position.account, debt.asset)
            return None

        close_bps = close_factor_bps(hf, self._full_close_hf)
        amount = debt_to_cover(position.total_debt_base, close_bps, debt.price, debt.decimals)
        if amount <= 0:
            return None

        covered_value = position.total_debt_base * close_bps // BPS
        profit = bonus_profit_base(covered_value, self.config.liquidation_bonus_bps, self._gas_cost_base)
        if profit < self._min_profit_base and self.config.enforce_min_profit and not force:
            LOGGER.debug(
                "decision_skip account=%s reason=unprofitable profit_usd=%.6f",
                position.account,
                base_to_usd(profit),
            )
            return None

        source = self.liquidity.source_for(debt.asset)
        if source is None:
            LOGGER.info("decision_skip account=%s reason=no_liquidity asset=%s", position.account, debt.asset)
            return None

        target = LiquidationTarget(
            account=position.account,
            collateral_asset=collateral.asset,
            debt_asset=debt.asset,
            debt_to_cover=amount,
            expected_profit_base=profit,
            health_factor=hf,
            liquidity_source=source,
            debt_value_base=position.total_debt_base,
            forced=force,
        )
        LOGGER.info(
            "decision_target account=%s hf=%.4f collateral=%s debt=%s close_bps=%d debt_to_cover=%d profit_usd=%.4f source=%s",
            target.account,
            hf_to_float(hf),
            collateral.symbol or collateral.asset,
            debt.symbol or debt.asset,
            close_bps,
            amount,
            base_to_usd(profit),
            source.label,
        )
        return target
