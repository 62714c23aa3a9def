from __future__ import annotations

from decimal import Decimal

WAD = 10**18
BASE_UNIT = 10**8
BPS = 10_000
GWEI = 10**9


def to_wad(value: float) -> int:
    return int(Decimal(str(value)) * WAD)


def usd_to_base(usd: float) -> int:
    """USD amount -> oracle base units (1e8)."""
    return int(Decimal(str(usd)) * BASE_UNIT)


def base_to_usd(amount: int) -> float:
    return amount / BASE_UNIT


def hf_to_float(health_factor: int) -> float:
    return health_factor / WAD


def gwei_to_wei(gwei: float) -> int:
    return int(Decimal(str(gwei)) * GWEI)


def asset_value_base(amount: int, price: int, decimals: int) -> int:
    """Native token amount valued in oracle base units, integer truncation only."""
    if amount <= 0 or price <= 0:
        return 0
    return amount * price // (10**decimals)


def close_factor_bps(health_factor: int, full_close_hf: int) -> int:
    """
    Portion of the debt a liquidator may repay in one call:
      hf <  full_close_hf -> 100%
      otherwise            -> 50%
    """
    if health_factor < full_close_hf:
        return BPS
    return BPS // 2


def debt_to_cover(total_debt_base: int, close_bps: int, price: int, decimals: int) -> int:
    if price <= 0:
        return 0
    return total_debt_base * close_bps * (10**decimals) // (BPS * price)


def bonus_profit_base(covered_value_base: int, bonus_bps: int, gas_cost_base: int) -> int:
    return covered_value_base * bonus_bps // BPS - gas_cost_base
