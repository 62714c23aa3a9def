from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time
from typing import Any, Sequence


class Membership(str, Enum):
    HOT = "hot"
    COLD = "cold"
    UNTRACKED = "untracked"


class BatchStatus(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    EXECUTING = "executing"
    BLOCKED = "blocked"


class FlashSource(int, Enum):
    BALANCER = 0
    UNISWAP = 1
    AAVE = 2


def normalize_address(address: str) -> str:
    return str(address or "").strip().lower()


@dataclass(frozen=True)
class AccountData:
    """Typed result of Pool.getUserAccountData."""

    total_collateral_base: int
    total_debt_base: int
    available_borrows_base: int
    current_liquidation_threshold: int
    ltv: int
    health_factor: int

    @classmethod
    def from_values(cls, values: Sequence[Any]) -> "AccountData":
        if len(values) != 6:
            raise ValueError(f"getUserAccountData expected 6 values, got {len(values)}")
        ints: list[int] = []
        for value in values:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"getUserAccountData returned non-integer value {value!r}")
            ints.append(value)
        return cls(*ints)


@dataclass
class Position:
    account: str
    health_factor: int
    total_collateral_base: int
    total_debt_base: int
    available_borrows_base: int
    last_update: float = field(default_factory=time.time)

    @classmethod
    def from_account_data(cls, account: str, data: AccountData, now_ts: float | None = None) -> "Position":
        return cls(
            account=normalize_address(account),
            health_factor=data.health_factor,
            total_collateral_base=data.total_collateral_base,
            total_debt_base=data.total_debt_base,
            available_borrows_base=data.available_borrows_base,
            last_update=now_ts if now_ts is not None else time.time(),
        )

    @property
    def has_debt(self) -> bool:
        return self.health_factor > 0 and self.total_debt_base > 0

    def is_dust(self, min_base: int) -> bool:
        return self.total_debt_base < min_base or self.total_collateral_base < min_base


@dataclass(frozen=True)
class ReserveToken:
    symbol: str
    address: str


@dataclass(frozen=True)
class AssetSnapshot:
    asset: str
    symbol: str
    decimals: int
    price: int
    collateral_balance: int
    debt_balance: int
    collateral_enabled: bool

    @property
    def collateral_value_base(self) -> int:
        if self.price <= 0 or self.collateral_balance <= 0:
            return 0
        return self.collateral_balance * self.price // (10**self.decimals)

    @property
    def debt_value_base(self) -> int:
        if self.price <= 0 or self.debt_balance <= 0:
            return 0
        return self.debt_balance * self.price // (10**self.decimals)


@dataclass(frozen=True)
class LiquiditySource:
    source_id: int
    pool_address: str
    label: str
    fee_bps: int


@dataclass(frozen=True)
class LiquidationTarget:
    account: str
    collateral_asset: str
    debt_asset: str
    debt_to_cover: int
    expected_profit_base: int
    health_factor: int
    liquidity_source: LiquiditySource
    debt_value_base: int
    forced: bool = False


@dataclass
class ExecutionResult:
    success: bool
    covered_accounts: list[str] = field(default_factory=list)
    tx_hash: str = ""
    error: str = ""
    simulated_only: bool = False
    raw: dict[str, Any] = field(default_factory=dict)
