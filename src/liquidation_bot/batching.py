"""
Per-debt-asset batching with a circuit breaker.

    idle --enqueue--> queued --size>=batch_size or timer--> executing
    executing --success--> queued (remainder) | idle
    executing --failure--> blocked | queued (new account arrived mid-attempt)
    blocked --new distinct account--> queued

The fallback timer only flushes keys that are queued; a blocked key stays
blocked until a new account arrives for it. Each batch snapshot puts the
accounts that arrived since the previous snapshot first, so a retry after a
failure always includes the account that reopened the key. Targets above
the direct execution threshold, and forced targets, skip the queue entirely.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from liquidation_bot.config import BotConfig
from liquidation_bot.execution import BaseExecutor
from liquidation_bot.models import BatchStatus, ExecutionResult, LiquidationTarget, normalize_address
from liquidation_bot.notifier import Notifier
from liquidation_bot.pricing import usd_to_base
from liquidation_bot.runtime_state import BatchKeyState
from liquidation_bot.storage import Storage

LOGGER = logging.getLogger("liquidation_bot")


class ExecutionQueue:
    def __init__(
        self,
        config: BotConfig,
        executor: BaseExecutor,
        *,
        notifier: Notifier | None = None,
        storage: Storage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.executor = executor
        self.notifier = notifier or Notifier()
        self.storage = storage
        self._clock = clock
        self._direct_min_base = usd_to_base(config.direct_execution_min_usd)
        self._states: dict[str, BatchKeyState] = {}
        self._lock = threading.Lock()

    def is_direct(self, target: LiquidationTarget) -> bool:
        return target.forced or target.debt_value_base >= self._direct_min_base

    def submit(self, target: LiquidationTarget) -> ExecutionResult | None:
        """Route a target. Returns the result for direct executions, else None."""
        if self.is_direct(target):
            return self.execute_direct(target)
        self.enqueue(target)
        return None

    def enqueue(self, target: LiquidationTarget) -> bool:
        key = normalize_address(target.debt_asset)
        with self._lock:
            state = self._states.setdefault(key, BatchKeyState())
            if state.contains(target.account):
                return False
            state.items.append(target)
            state.fresh.append(target.account)
            state.enqueued_at[target.account] = self._clock()
            if state.status == BatchStatus.BLOCKED:
                LOGGER.info(
                    "batch_unblocked debt_asset=%s size=%d failed_size=%d",
                    key,
                    len(state.items),
                    state.failed_size,
                )
                state.status = BatchStatus.QUEUED
            elif state.status == BatchStatus.IDLE:
                state.status = BatchStatus.QUEUED
            size = len(state.items)
            ready = state.status == BatchStatus.QUEUED and size >= self.config.batch_size
        LOGGER.info("batch_enqueued debt_asset=%s account=%s size=%d", key, target.account, size)
        if ready:
            self.process(key)
        return True

    def process(self, debt_asset: str) -> ExecutionResult | None:
        key = normalize_address(debt_asset)
        with self._lock:
            state = self._states.get(key)
            if state is None or state.status != BatchStatus.QUEUED or not state.items:
                return None
            state.status = BatchStatus.EXECUTING
            batch = state.snapshot(self.config.max_batch_size)
            state.fresh = []

        LOGGER.info("batch_executing debt_asset=%s size=%d", key, len(batch))
        self.notifier.execution_attempt("batch", batch)
        try:
            result = self.executor.execute_batch(batch)
        except Exception as exc:
            result = ExecutionResult(success=False, error=f"executor_error {exc}")

        with self._lock:
            if result.success:
                state.drop({normalize_address(a) for a in result.covered_accounts})
                state.status = BatchStatus.QUEUED if state.items else BatchStatus.IDLE
                state.failed_size = 0
            elif state.fresh:
                # a distinct account arrived mid-attempt and has not been tried yet
                state.status = BatchStatus.QUEUED
                state.failed_size = len(state.items)
            else:
                state.status = BatchStatus.BLOCKED
                state.failed_size = len(state.items)
            remaining = len(state.items)
            status = state.status
            retry = not result.success and status == BatchStatus.QUEUED and remaining >= self.config.batch_size

        LOGGER.info(
            "batch_done debt_asset=%s success=%s covered=%d remaining=%d status=%s",
            key,
            result.success,
            len(result.covered_accounts),
            remaining,
            status.value,
        )
        self.notifier.execution_result("batch", batch, result)
        self._record("batch", batch, result)
        if retry:
            self.process(key)
        return result

    def flush_due(self) -> list[str]:
        """Process queued keys whose oldest entry has waited batch_timeout_seconds."""
        now = self._clock()
        with self._lock:
            due = []
            for key, state in self._states.items():
                if state.status != BatchStatus.QUEUED or not state.items:
                    continue
                oldest = state.oldest_enqueued_at
                if oldest is not None and now - oldest >= self.config.batch_timeout_seconds:
                    due.append(key)
        for key in due:
            self.process(key)
        return due

    def execute_direct(self, target: LiquidationTarget) -> ExecutionResult:
        self.notifier.execution_attempt("direct", [target])
        try:
            result = self.executor.execute_single(target)
        except Exception as exc:
            result = ExecutionResult(success=False, error=f"executor_error {exc}")
        self.notifier.execution_result("direct", [target], result)
        self._record("direct", [target], result)
        return result

    def _record(self, path: str, targets: list[LiquidationTarget], result: ExecutionResult) -> None:
        if self.storage is None:
            return
        try:
            self.storage.record_execution(path=path, mode=self.executor.mode, targets=targets, result=result)
        except Exception as exc:
            LOGGER.warning("execution_record_failed path=%s error=%s", path, exc)

    def state(self, debt_asset: str) -> BatchKeyState:
        with self._lock:
            state = self._states.get(normalize_address(debt_asset))
            return state.copy() if state is not None else BatchKeyState()

    def is_queued(self, account: str) -> bool:
        key = normalize_address(account)
        with self._lock:
            return any(state.contains(key) for state in self._states.values())

    def summary(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {
                key: {"status": state.status.value, "size": len(state.items), "failed_size": state.failed_size}
                for key, state in self._states.items()
            }
