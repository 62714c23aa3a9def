from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Iterable, Protocol

from liquidation_bot.classification import ClassificationEngine
from liquidation_bot.config import BotConfig
from liquidation_bot.models import AccountData, Membership, Position, normalize_address
from liquidation_bot.notifier import Notifier
from liquidation_bot.position_store import PositionStore
from liquidation_bot.pricing import usd_to_base
from liquidation_bot.scheduler import chunked
from liquidation_bot.storage import AccountListStore

LOGGER = logging.getLogger("liquidation_bot")


class EventReader(Protocol):
    def block_number(self) -> int:
        ...

    def pool_events(self, event_name: str, from_block: int, to_block: int) -> list[dict[str, Any]]:
        ...

    def account_data_batch(self, accounts: Iterable[str]) -> dict[str, AccountData]:
        ...


@dataclass
class SeedResult:
    requested: int = 0
    read: int = 0
    hot: int = 0
    cold: int = 0
    dust: int = 0
    skipped_chunks: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def seed_accounts(
    accounts: Iterable[str],
    *,
    reader: EventReader,
    store: PositionStore,
    classifier: ClassificationEngine,
    chunk_size: int,
    min_debt_base: int,
    notifier: Notifier | None = None,
) -> SeedResult:
    """Read every candidate once and place it in Hot or Cold."""
    notifier = notifier or Notifier()
    ordered = list(dict.fromkeys(normalize_address(a) for a in accounts if a))
    result = SeedResult(requested=len(ordered))
    done = 0
    for chunk in chunked(ordered, chunk_size):
        try:
            reads = reader.account_data_batch(chunk)
        except Exception as exc:
            LOGGER.warning("seed_chunk_failed size=%d error=%s", len(chunk), exc)
            result.skipped_chunks += 1
            reads = {}
        for account, data in reads.items():
            position = Position.from_account_data(account, data)
            result.read += 1
            if position.is_dust(min_debt_base) or position.health_factor == 0:
                result.dust += 1
                continue
            store.upsert(position)
            membership = classifier.admit(position)
            if membership == Membership.HOT:
                result.hot += 1
            elif membership == Membership.COLD:
                result.cold += 1
        done += len(chunk)
        notifier.scan_progress("seed", done, len(ordered))
    classifier.persist()
    LOGGER.info(
        "seed_done requested=%d read=%d hot=%d cold=%d dust=%d skipped_chunks=%d",
        result.requested,
        result.read,
        result.hot,
        result.cold,
        result.dust,
        result.skipped_chunks,
    )
    return result


def load_seed_file(path: str) -> list[str]:
    return AccountListStore(path).load()


class BorrowerTracker:
    """
    Follows pool events block by block. New borrowers with enough debt are
    admitted; accounts that repaid or were liquidated are re-read and dropped
    once their debt is gone.
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        reader: EventReader,
        store: PositionStore,
        classifier: ClassificationEngine,
        start_block: int | None = None,
    ) -> None:
        self.config = config
        self.reader = reader
        self.store = store
        self.classifier = classifier
        self.last_block = start_block
        self._track_min_base = usd_to_base(config.track_min_debt_usd)
        self._min_debt_base = usd_to_base(config.min_debt_usd)

    def poll(self) -> dict[str, int]:
        latest = int(self.reader.block_number())
        if self.last_block is None:
            self.last_block = latest
            return {"admitted": 0, "evicted": 0, "updated": 0}
        from_block = self.last_block + 1
        if from_block > latest:
            return {"admitted": 0, "evicted": 0, "updated": 0}
        to_block = min(latest, from_block + max(1, self.config.tracker_max_block_range) - 1)

        borrowers: set[str] = set()
        for event in self.reader.pool_events("Borrow", from_block, to_block):
            borrowers.add(normalize_address(event["args"].get("onBehalfOf", "")))
        touched: set[str] = set()
        for name in ("Repay", "LiquidationCall"):
            for event in self.reader.pool_events(name, from_block, to_block):
                touched.add(normalize_address(event["args"].get("user", "")))
        borrowers.discard("")
        touched.discard("")
        touched = {a for a in touched if a in self.store or self.classifier.membership(a) != Membership.UNTRACKED}

        accounts = sorted(borrowers | touched)
        reads = self.reader.account_data_batch(accounts) if accounts else {}
        stats = {"admitted": 0, "evicted": 0, "updated": 0}
        for account, data in reads.items():
            position = Position.from_account_data(account, data)
            tracked = account in self.store or self.classifier.membership(account) != Membership.UNTRACKED
            if position.is_dust(self._min_debt_base) or position.health_factor == 0:
                if tracked:
                    self.store.remove(account)
                    self.classifier.evict(account)
                    stats["evicted"] += 1
                continue
            if tracked:
                self.store.upsert(position)
                self.classifier.observe(position)
                stats["updated"] += 1
            elif position.total_debt_base >= self._track_min_base:
                self.store.upsert(position)
                self.classifier.admit(position)
                stats["admitted"] += 1
        self.last_block = to_block
        if any(stats.values()):
            LOGGER.info(
                "tracker_poll from_block=%d to_block=%d admitted=%d updated=%d evicted=%d",
                from_block,
                to_block,
                stats["admitted"],
                stats["updated"],
                stats["evicted"],
            )
        return stats
