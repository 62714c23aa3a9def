from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import sys
from typing import Iterable

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from liquidation_bot.config import load_config  # noqa: E402
from liquidation_bot.models import (  # noqa: E402
    AccountData,
    AssetSnapshot,
    ExecutionResult,
    LiquidationTarget,
    LiquiditySource,
    Position,
    ReserveToken,
)
from liquidation_bot.pricing import BASE_UNIT, WAD  # noqa: E402

USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
WETH = "0x4200000000000000000000000000000000000006"
BALANCER = LiquiditySource(source_id=0, pool_address="0x" + "00" * 20, label="balancer", fee_bps=0)


def build_config(tmpdir: str | None = None, **kwargs):
    cfg = load_config()
    kwargs.setdefault("liquidator_address", "0x" + "4b" * 20)
    kwargs.setdefault("premium_rpc_url", "http://127.0.0.1:8545")
    if tmpdir is not None:
        kwargs.setdefault("hot_list_path", str(Path(tmpdir) / "hot.json"))
        kwargs.setdefault("cold_list_path", str(Path(tmpdir) / "cold.json"))
        kwargs.setdefault("seed_list_path", str(Path(tmpdir) / "seed.json"))
        kwargs.setdefault("database_path", str(Path(tmpdir) / "bot.db"))
    return replace(cfg, **kwargs)


def account(n: int) -> str:
    return "0x" + f"{n:040x}"


def account_data(hf: float, debt_usd: float = 1_000.0, collateral_usd: float | None = None) -> AccountData:
    debt = int(debt_usd * BASE_UNIT)
    collateral = int((collateral_usd if collateral_usd is not None else debt_usd * 1.5) * BASE_UNIT)
    return AccountData(
        total_collateral_base=collateral,
        total_debt_base=debt,
        available_borrows_base=0,
        current_liquidation_threshold=8_000,
        ltv=7_500,
        health_factor=int(round(hf * 10_000)) * (WAD // 10_000),
    )


def position(acct: str, hf: float, debt_usd: float = 1_000.0, collateral_usd: float | None = None) -> Position:
    return Position.from_account_data(acct, account_data(hf, debt_usd, collateral_usd), now_ts=1_000.0)


def target(
    acct: str,
    debt_asset: str = USDC,
    debt_usd: float = 5.0,
    forced: bool = False,
) -> LiquidationTarget:
    return LiquidationTarget(
        account=acct,
        collateral_asset=WETH,
        debt_asset=debt_asset,
        debt_to_cover=int(debt_usd * 10**6) // 2,
        expected_profit_base=int(debt_usd * BASE_UNIT) // 40,
        health_factor=WAD * 9 // 10,
        liquidity_source=BALANCER,
        debt_value_base=int(debt_usd * BASE_UNIT),
        forced=forced,
    )


class FakeAccountReader:
    def __init__(self, name: str = "fake", data: dict[str, AccountData] | None = None) -> None:
        self.name = name
        self.data: dict[str, AccountData] = dict(data or {})
        self.fail_accounts: set[str] = set()
        self.calls: list[list[str]] = []

    def account_data_batch(self, accounts: Iterable[str]) -> dict[str, AccountData]:
        chunk = list(accounts)
        self.calls.append(chunk)
        if any(a in self.fail_accounts for a in chunk):
            raise TimeoutError("read timed out")
        return {a: self.data[a] for a in chunk if a in self.data}


class FakeReserveReader:
    def __init__(self, snapshots: list[AssetSnapshot] | None = None) -> None:
        self.snapshots = list(snapshots or [])
        self.reserve_calls = 0
        self.snapshot_calls = 0
        self.fail = False

    def reserve_tokens(self) -> list[ReserveToken]:
        self.reserve_calls += 1
        return [ReserveToken(symbol=s.symbol, address=s.asset) for s in self.snapshots]

    def user_asset_snapshots(self, acct: str, reserves) -> list[AssetSnapshot]:
        self.snapshot_calls += 1
        if self.fail:
            raise ConnectionError("rpc unavailable")
        return list(self.snapshots)


class FixedLiquidity:
    def __init__(self, source: LiquiditySource | None = BALANCER) -> None:
        self.source = source

    def source_for(self, asset: str) -> LiquiditySource | None:
        return self.source


def usdc_debt_snapshot(debt_usd: float, collateral_enabled: bool = False) -> AssetSnapshot:
    return AssetSnapshot(
        asset=USDC,
        symbol="USDC",
        decimals=6,
        price=BASE_UNIT,
        collateral_balance=0,
        debt_balance=int(debt_usd * 10**6),
        collateral_enabled=collateral_enabled,
    )


def weth_collateral_snapshot(collateral_usd: float, price_usd: float = 2_000.0) -> AssetSnapshot:
    price = int(price_usd * BASE_UNIT)
    return AssetSnapshot(
        asset=WETH,
        symbol="WETH",
        decimals=18,
        price=price,
        collateral_balance=int(collateral_usd / price_usd * 10**18),
        debt_balance=0,
        collateral_enabled=True,
    )


class FakeExecutor:
    mode = "paper"

    def __init__(self) -> None:
        self.batches: list[list[LiquidationTarget]] = []
        self.singles: list[LiquidationTarget] = []
        self.results: list[ExecutionResult] = []

    def preflight(self) -> None:
        return

    def _next(self, accounts: list[str]) -> ExecutionResult:
        if self.results:
            return self.results.pop(0)
        return ExecutionResult(success=True, covered_accounts=accounts)

    def execute_batch(self, targets) -> ExecutionResult:
        batch = list(targets)
        self.batches.append(batch)
        return self._next([t.account for t in batch])

    def execute_single(self, tgt: LiquidationTarget) -> ExecutionResult:
        self.singles.append(tgt)
        return self._next([tgt.account])
