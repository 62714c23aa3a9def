from __future__ import annotations

import logging
import threading
from typing import Any

from liquidation_bot.models import ExecutionResult, LiquidationTarget, Position
from liquidation_bot.pricing import base_to_usd, hf_to_float

LOGGER = logging.getLogger("liquidation_bot")


class Notifier:
    """Observability sink. The core only talks to this interface."""

    def positions_updated(self, positions: list[Position]) -> None:
        return

    def execution_attempt(self, path: str, targets: list[LiquidationTarget]) -> None:
        return

    def execution_result(self, path: str, targets: list[LiquidationTarget], result: ExecutionResult) -> None:
        return

    def scan_progress(self, label: str, done: int, total: int) -> None:
        return

    def stats_updated(self, stats: dict[str, Any]) -> None:
        return


class LoggingNotifier(Notifier):
    def __init__(self, top_n: int = 5) -> None:
        self.top_n = top_n
        self._attempts = 0
        self._success = 0
        self._failed = 0
        self._lock = threading.Lock()

    def positions_updated(self, positions: list[Position]) -> None:
        if not positions:
            return
        head = ", ".join(
            f"{p.account[:10]}:{hf_to_float(p.health_factor):.4f}" for p in positions[: self.top_n]
        )
        LOGGER.debug("hot_positions count=%d riskiest=[%s]", len(positions), head)

    def execution_attempt(self, path: str, targets: list[LiquidationTarget]) -> None:
        with self._lock:
            self._attempts += 1
        for target in targets:
            LOGGER.info(
                "liquidation_attempt path=%s account=%s hf=%.4f debt_asset=%s debt_to_cover=%d profit_usd=%.4f source=%s",
                path,
                target.account,
                hf_to_float(target.health_factor),
                target.debt_asset,
                target.debt_to_cover,
                base_to_usd(target.expected_profit_base),
                target.liquidity_source.label,
            )

    def execution_result(self, path: str, targets: list[LiquidationTarget], result: ExecutionResult) -> None:
        with self._lock:
            if result.success:
                self._success += 1
            else:
                self._failed += 1
        if result.success:
            LOGGER.info(
                "liquidation_success path=%s covered=%d/%d tx=%s simulated_only=%s",
                path,
                len(result.covered_accounts),
                len(targets),
                result.tx_hash or "-",
                result.simulated_only,
            )
        else:
            LOGGER.warning("liquidation_failed path=%s accounts=%d error=%s", path, len(targets), result.error)

    def scan_progress(self, label: str, done: int, total: int) -> None:
        LOGGER.info("scan_progress label=%s done=%d total=%d", label, done, total)

    def stats_updated(self, stats: dict[str, Any]) -> None:
        with self._lock:
            attempts, success, failed = self._attempts, self._success, self._failed
        LOGGER.info(
            "stats attempts=%d success=%d failed=%d %s",
            attempts,
            success,
            failed,
            " ".join(f"{key}={value}" for key, value in sorted(stats.items())),
        )
