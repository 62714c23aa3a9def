from __future__ import annotations

from dataclasses import dataclass, field

from liquidation_bot.models import BatchStatus, LiquidationTarget


@dataclass
class BatchKeyState:
    items: list[LiquidationTarget] = field(default_factory=list)
    status: BatchStatus = BatchStatus.IDLE
    failed_size: int = 0
    enqueued_at: dict[str, float] = field(default_factory=dict)
    # accounts enqueued since the last batch snapshot was taken
    fresh: list[str] = field(default_factory=list)

    def accounts(self) -> list[str]:
        return [t.account for t in self.items]

    def contains(self, account: str) -> bool:
        return any(t.account == account for t in self.items)

    @property
    def oldest_enqueued_at(self) -> float | None:
        times = [self.enqueued_at[t.account] for t in self.items if t.account in self.enqueued_at]
        return min(times) if times else None

    def snapshot(self, limit: int) -> list[LiquidationTarget]:
        """Newly arrived accounts first, then the older backlog, capped at limit."""
        fresh = set(self.fresh)
        ordered = [t for t in self.items if t.account in fresh]
        ordered.extend(t for t in self.items if t.account not in fresh)
        return ordered[: max(1, int(limit))]

    def drop(self, accounts: set[str]) -> None:
        self.items = [t for t in self.items if t.account not in accounts]
        self.fresh = [a for a in self.fresh if a not in accounts]
        for account in accounts:
            self.enqueued_at.pop(account, None)

    def copy(self) -> "BatchKeyState":
        return BatchKeyState(
            items=list(self.items),
            status=self.status,
            failed_size=self.failed_size,
            enqueued_at=dict(self.enqueued_at),
            fresh=list(self.fresh),
        )
