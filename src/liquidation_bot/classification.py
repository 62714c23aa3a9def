from __future__ import annotations

from dataclasses import dataclass
import logging
import threading

from liquidation_bot.config import BotConfig
from liquidation_bot.models import Membership, Position, normalize_address
from liquidation_bot.pricing import to_wad, usd_to_base
from liquidation_bot.storage import AccountListStore

LOGGER = logging.getLogger("liquidation_bot")


@dataclass(frozen=True)
class PassSummary:
    promoted: int
    demoted: int
    evicted: int
    hot: int
    cold: int


class ClassificationEngine:
    """
    Hot/Cold membership with a hysteresis band.

    An account in Cold moves to Hot when hf < promote; an account in Hot
    moves back to Cold only when hf > demote. Observations collected during
    an audit pass are applied together by complete_pass(), so each account
    flips at most once per pass. Dust and no-debt accounts leave the Hot set
    immediately.
    """

    def __init__(
        self,
        *,
        promote_hf: int,
        demote_hf: int,
        min_debt_base: int,
        hot_store: AccountListStore | None = None,
        cold_store: AccountListStore | None = None,
    ) -> None:
        if demote_hf <= promote_hf:
            raise ValueError("demotion threshold must exceed promotion threshold")
        self.promote_hf = promote_hf
        self.demote_hf = demote_hf
        self.min_debt_base = min_debt_base
        self.hot_store = hot_store
        self.cold_store = cold_store
        self._hot: set[str] = set()
        self._cold: set[str] = set()
        self._pending: dict[str, int] = {}
        self._evicted_in_pass = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: BotConfig) -> "ClassificationEngine":
        return cls(
            promote_hf=to_wad(config.promote_hf),
            demote_hf=to_wad(config.demote_hf),
            min_debt_base=usd_to_base(config.min_debt_usd),
            hot_store=AccountListStore(config.hot_list_path),
            cold_store=AccountListStore(config.cold_list_path),
        )

    def load(self) -> None:
        hot = set(self.hot_store.load()) if self.hot_store else set()
        cold = set(self.cold_store.load()) if self.cold_store else set()
        with self._lock:
            self._hot = hot
            self._cold = cold - hot
        LOGGER.info("classification_loaded hot=%d cold=%d", len(hot), len(cold - hot))

    def persist(self) -> None:
        with self._lock:
            hot = sorted(self._hot)
            cold = sorted(self._cold)
        if self.hot_store:
            self.hot_store.save(hot)
        if self.cold_store:
            self.cold_store.save(cold)

    def membership(self, account: str) -> Membership:
        key = normalize_address(account)
        with self._lock:
            if key in self._hot:
                return Membership.HOT
            if key in self._cold:
                return Membership.COLD
        return Membership.UNTRACKED

    def hot_snapshot(self) -> set[str]:
        with self._lock:
            return set(self._hot)

    def cold_snapshot(self) -> set[str]:
        with self._lock:
            return set(self._cold)

    def counts(self) -> tuple[int, int]:
        with self._lock:
            return len(self._hot), len(self._cold)

    def _is_dust(self, position: Position) -> bool:
        return position.is_dust(self.min_debt_base)

    def admit(self, position: Position) -> Membership:
        """Place an untracked account directly. Tracked accounts keep their membership."""
        if self._is_dust(position) or position.health_factor == 0:
            return self.membership(position.account)
        with self._lock:
            account = position.account
            if account in self._hot:
                return Membership.HOT
            if account in self._cold:
                return Membership.COLD
            if position.health_factor < self.promote_hf:
                self._hot.add(account)
                return Membership.HOT
            self._cold.add(account)
            return Membership.COLD

    def observe(self, position: Position) -> None:
        if self._is_dust(position):
            self.evict(position.account)
            return
        account = position.account
        with self._lock:
            if position.health_factor == 0:
                if account in self._hot:
                    self._hot.discard(account)
                    self._cold.add(account)
                self._pending.pop(account, None)
                return
            tracked = account in self._hot or account in self._cold
            if tracked:
                self._pending[account] = position.health_factor
        if not tracked:
            self.admit(position)

    def evict(self, account: str) -> None:
        key = normalize_address(account)
        with self._lock:
            removed = key in self._hot or key in self._cold
            self._hot.discard(key)
            self._cold.discard(key)
            self._pending.pop(key, None)
            if removed:
                self._evicted_in_pass += 1

    def complete_pass(self) -> PassSummary:
        promoted = 0
        demoted = 0
        with self._lock:
            pending = self._pending
            self._pending = {}
            evicted = self._evicted_in_pass
            self._evicted_in_pass = 0
            for account, hf in pending.items():
                if account in self._hot and hf > self.demote_hf:
                    self._hot.discard(account)
                    self._cold.add(account)
                    demoted += 1
                elif account in self._cold and 0 < hf < self.promote_hf:
                    self._cold.discard(account)
                    self._hot.add(account)
                    promoted += 1
            hot_count = len(self._hot)
            cold_count = len(self._cold)
        self.persist()
        summary = PassSummary(
            promoted=promoted,
            demoted=demoted,
            evicted=evicted,
            hot=hot_count,
            cold=cold_count,
        )
        LOGGER.info(
            "classification_pass promoted=%d demoted=%d evicted=%d hot=%d cold=%d",
            promoted,
            demoted,
            evicted,
            hot_count,
            cold_count,
        )
        return summary
