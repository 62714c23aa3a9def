"""
Three-tier position refresh.

Tier 1 (priority): the riskiest Hot positions with meaningful debt, read every
second through the premium provider in a single multicall.
Tier 2 (background): the rest of the Hot set, chunked, through the secondary
provider every few seconds.
Tier 3 (audit): the Cold set plus any Hot overflow, through the public
provider; the end of an audit pass is when Hot/Cold flips are applied.

Every tick snapshots the sets first, performs all I/O, then applies the
results. A chunk that times out, errors, or exceeds its RPC budget is skipped
for that tick and picked up again on the next one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Callable, Iterable, Protocol, Sequence

from liquidation_bot.classification import ClassificationEngine, PassSummary
from liquidation_bot.config import BotConfig
from liquidation_bot.models import AccountData, Position
from liquidation_bot.notifier import Notifier
from liquidation_bot.position_store import PositionStore
from liquidation_bot.pricing import to_wad, usd_to_base
from liquidation_bot.runtime_support import RpcBudget
from liquidation_bot.storage import Storage

LOGGER = logging.getLogger("liquidation_bot")


class AccountReader(Protocol):
    name: str

    def account_data_batch(self, accounts: Iterable[str]) -> dict[str, AccountData]:
        ...


@dataclass
class TickReport:
    tier: str
    requested: int = 0
    read: int = 0
    evicted: int = 0
    skipped_chunks: int = 0
    liquidatable: list[str] = field(default_factory=list)
    pass_summary: PassSummary | None = None


def chunked(items: Sequence[str], size: int) -> list[list[str]]:
    size = max(1, int(size))
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class TieredScheduler:
    def __init__(
        self,
        config: BotConfig,
        *,
        store: PositionStore,
        classifier: ClassificationEngine,
        priority_reader: AccountReader,
        background_reader: AccountReader,
        audit_reader: AccountReader,
        priority_budget: RpcBudget | None = None,
        background_budget: RpcBudget | None = None,
        audit_budget: RpcBudget | None = None,
        on_liquidatable: Callable[[Position], None] | None = None,
        notifier: Notifier | None = None,
        storage: Storage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store = store
        self.classifier = classifier
        self.priority_reader = priority_reader
        self.background_reader = background_reader
        self.audit_reader = audit_reader
        self.priority_budget = priority_budget
        self.background_budget = background_budget
        self.audit_budget = audit_budget
        self.on_liquidatable = on_liquidatable
        self.notifier = notifier or Notifier()
        self.storage = storage
        self._clock = clock
        self._liquidation_hf = to_wad(config.liquidation_hf)
        self._min_debt_base = usd_to_base(config.min_debt_usd)
        self._priority_min_debt_base = usd_to_base(config.priority_min_debt_usd)

    def ordered_hot_positions(self) -> list[Position]:
        hot = self.classifier.hot_snapshot()
        positions = [p for p in self.store.many(hot) if p.health_factor > 0]
        positions.sort(key=lambda p: p.health_factor)
        return positions

    def partition_hot(self) -> tuple[list[str], list[str], list[str]]:
        """Split the Hot set into (tier1, tier2, overflow) account lists."""
        hot = self.classifier.hot_snapshot()
        ordered = self.ordered_hot_positions()
        tier1: list[str] = []
        for position in ordered:
            if len(tier1) >= self.config.tier1_size:
                break
            if position.total_debt_base >= self._priority_min_debt_base:
                tier1.append(position.account)
        tier1_set = set(tier1)
        known = {p.account for p in ordered}
        rest = [p.account for p in ordered if p.account not in tier1_set]
        rest.extend(sorted(hot - known - tier1_set))
        tier2 = rest[: self.config.tier2_size]
        overflow = rest[self.config.tier2_size :]
        return tier1, tier2, overflow

    def _read_chunk(
        self,
        tier: str,
        reader: AccountReader,
        budget: RpcBudget | None,
        accounts: list[str],
    ) -> dict[str, AccountData] | None:
        if budget is not None and not budget.try_acquire():
            LOGGER.debug("tier_chunk_budget_skip tier=%s provider=%s size=%d", tier, reader.name, len(accounts))
            return None
        try:
            return reader.account_data_batch(accounts)
        except Exception as exc:
            LOGGER.warning(
                "tier_chunk_failed tier=%s provider=%s size=%d error=%s",
                tier,
                reader.name,
                len(accounts),
                exc,
            )
            return None

    def _collect(
        self,
        report: TickReport,
        reader: AccountReader,
        budget: RpcBudget | None,
        accounts: list[str],
        chunk_size: int,
        progress_label: str | None = None,
    ) -> dict[str, AccountData]:
        results: dict[str, AccountData] = {}
        report.requested += len(accounts)
        chunks = chunked(accounts, chunk_size)
        done = 0
        for chunk in chunks:
            data = self._read_chunk(report.tier, reader, budget, chunk)
            done += len(chunk)
            if data is None:
                report.skipped_chunks += 1
            else:
                results.update(data)
            if progress_label:
                self.notifier.scan_progress(progress_label, done, len(accounts))
        return results

    def _apply(self, report: TickReport, reads: dict[str, AccountData]) -> list[Position]:
        now = self._clock()
        liquidatable: list[Position] = []
        for account, data in reads.items():
            position = Position.from_account_data(account, data, now_ts=now)
            report.read += 1
            if position.is_dust(self._min_debt_base):
                self.store.remove(position.account)
                self.classifier.evict(position.account)
                report.evicted += 1
                continue
            self.store.upsert(position)
            self.classifier.observe(position)
            if 0 < position.health_factor < self._liquidation_hf:
                liquidatable.append(position)
                report.liquidatable.append(position.account)
        return liquidatable

    def _trigger(self, positions: list[Position]) -> None:
        if self.on_liquidatable is None:
            return
        for position in positions:
            try:
                self.on_liquidatable(position)
            except Exception as exc:
                LOGGER.error("liquidation_trigger_failed account=%s error=%s", position.account, exc)

    def tick_priority(self) -> TickReport:
        report = TickReport(tier="priority")
        tier1, _, _ = self.partition_hot()
        if not tier1:
            return report
        reads = self._collect(report, self.priority_reader, self.priority_budget, tier1, len(tier1))
        self._trigger(self._apply(report, reads))
        self.notifier.positions_updated(self.ordered_hot_positions())
        return report

    def tick_background(self) -> TickReport:
        report = TickReport(tier="background")
        _, tier2, _ = self.partition_hot()
        if not tier2:
            return report
        reads = self._collect(
            report,
            self.background_reader,
            self.background_budget,
            tier2,
            self.config.background_chunk_size,
        )
        self._trigger(self._apply(report, reads))
        return report

    def tick_audit(self) -> TickReport:
        report = TickReport(tier="audit")
        _, _, overflow = self.partition_hot()
        accounts = sorted(self.classifier.cold_snapshot()) + overflow
        reads = self._collect(
            report,
            self.audit_reader,
            self.audit_budget,
            accounts,
            self.config.audit_chunk_size,
            progress_label="audit",
        )
        self._trigger(self._apply(report, reads))
        summary = self.classifier.complete_pass()
        report.pass_summary = summary
        if self.storage is not None:
            self.storage.record_audit_pass(
                hot=summary.hot,
                cold=summary.cold,
                promoted=summary.promoted,
                demoted=summary.demoted,
                evicted=summary.evicted,
            )
        LOGGER.info(
            "audit_pass requested=%d read=%d skipped_chunks=%d liquidatable=%d",
            report.requested,
            report.read,
            report.skipped_chunks,
            len(report.liquidatable),
        )
        return report


class PeriodicLoop:
    """Calls fn every interval_seconds on a daemon thread until stopped."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        fn: Callable[[], object],
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval_seconds = max(0.05, float(interval_seconds))
        self.fn = fn
        self.run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        if not self.run_immediately and self._stop_event.wait(self.interval_seconds):
            return
        while not self._stop_event.is_set():
            started = time.time()
            try:
                self.fn()
            except Exception as exc:
                LOGGER.error("loop_iteration_failed loop=%s error=%s", self.name, exc)
            elapsed = time.time() - started
            if self._stop_event.wait(max(0.0, self.interval_seconds - elapsed)):
                return
