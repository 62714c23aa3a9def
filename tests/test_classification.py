from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from tests.helpers import account, position
from liquidation_bot.classification import ClassificationEngine
from liquidation_bot.models import Membership
from liquidation_bot.pricing import to_wad, usd_to_base
from liquidation_bot.storage import AccountListStore


def _engine(tmp: str | None = None) -> ClassificationEngine:
    hot_store = AccountListStore(str(Path(tmp) / "hot.json")) if tmp else None
    cold_store = AccountListStore(str(Path(tmp) / "cold.json")) if tmp else None
    return ClassificationEngine(
        promote_hf=to_wad(1.5),
        demote_hf=to_wad(2.0),
        min_debt_base=usd_to_base(0.000001),
        hot_store=hot_store,
        cold_store=cold_store,
    )


class ClassificationTests(unittest.TestCase):
    def test_rejects_inverted_band(self) -> None:
        with self.assertRaises(ValueError):
            ClassificationEngine(promote_hf=to_wad(2.0), demote_hf=to_wad(1.5), min_debt_base=100)

    def test_admit_places_untracked_accounts(self) -> None:
        engine = _engine()
        self.assertEqual(engine.admit(position(account(1), 1.2)), Membership.HOT)
        self.assertEqual(engine.admit(position(account(2), 1.7)), Membership.COLD)
        self.assertEqual(engine.admit(position(account(3), 0.0)), Membership.UNTRACKED)
        self.assertEqual(engine.admit(position(account(4), 1.2, debt_usd=0.0)), Membership.UNTRACKED)

    def test_admit_keeps_existing_membership(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.2))
        self.assertEqual(engine.admit(position(account(1), 5.0)), Membership.HOT)

    def test_zero_health_factor_never_hot(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.2))
        engine.observe(position(account(1), 0.0, debt_usd=10.0))
        self.assertNotIn(account(1), engine.hot_snapshot())
        engine.complete_pass()
        self.assertNotIn(account(1), engine.hot_snapshot())

    def test_flips_only_on_complete_pass(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.7))
        engine.observe(position(account(1), 1.4))
        self.assertEqual(engine.membership(account(1)), Membership.COLD)
        summary = engine.complete_pass()
        self.assertEqual(engine.membership(account(1)), Membership.HOT)
        self.assertEqual(summary.promoted, 1)

    def test_hysteresis_oscillation(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.7))
        memberships = []
        for hf in (1.4, 1.6, 1.4, 1.6, 1.9):
            engine.observe(position(account(1), hf))
            engine.complete_pass()
            memberships.append(engine.membership(account(1)))
        # promoted once at 1.4, never demoted while hf stays at or below 2.0
        self.assertEqual(memberships, [Membership.HOT] * 5)

    def test_demotes_only_above_band(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.2))
        engine.observe(position(account(1), 2.0))
        engine.complete_pass()
        self.assertEqual(engine.membership(account(1)), Membership.HOT)
        engine.observe(position(account(1), 2.01))
        summary = engine.complete_pass()
        self.assertEqual(engine.membership(account(1)), Membership.COLD)
        self.assertEqual(summary.demoted, 1)

    def test_at_most_one_flip_per_pass(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.7))
        engine.observe(position(account(1), 1.4))
        engine.observe(position(account(1), 2.5))
        summary = engine.complete_pass()
        # only the latest observation counts; the account stays Cold
        self.assertEqual(engine.membership(account(1)), Membership.COLD)
        self.assertEqual(summary.promoted + summary.demoted, 0)

    def test_dust_observation_evicts(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.2))
        engine.observe(position(account(1), 1.2, debt_usd=0.0000001))
        self.assertEqual(engine.membership(account(1)), Membership.UNTRACKED)
        self.assertEqual(engine.complete_pass().evicted, 1)

    def test_pass_persists_and_load_prefers_hot(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            engine = _engine(tmp)
            engine.admit(position(account(1), 1.2))
            engine.admit(position(account(2), 1.8))
            engine.complete_pass()
            self.assertEqual(AccountListStore(str(Path(tmp) / "hot.json")).load(), [account(1)])
            self.assertEqual(AccountListStore(str(Path(tmp) / "cold.json")).load(), [account(2)])

            AccountListStore(str(Path(tmp) / "cold.json")).save([account(1), account(2)])
            reloaded = _engine(tmp)
            reloaded.load()
            self.assertEqual(reloaded.hot_snapshot(), {account(1)})
            self.assertEqual(reloaded.cold_snapshot(), {account(2)})

    def test_snapshots_are_copies(self) -> None:
        engine = _engine()
        engine.admit(position(account(1), 1.2))
        snap = engine.hot_snapshot()
        snap.clear()
        self.assertEqual(engine.counts(), (1, 0))


if __name__ == "__main__":
    unittest.main()
