from __future__ import annotations

import unittest
from unittest.mock import patch

from tests.helpers import account, build_config, target
from liquidation_bot.execution import LiveExecutor
from liquidation_bot.gas import GasStrategy


class _GasReader:
    def __init__(self, base_fee: int = 10**7, gas_price: int = 2 * 10**7) -> None:
        self._base_fee = base_fee
        self._gas_price = gas_price

    def base_fee(self) -> int:
        return self._base_fee

    def gas_price(self) -> int:
        return self._gas_price


class _FakeCalls:
    def __init__(self, revert: str = "") -> None:
        self.revert = revert
        self.simulated: list[tuple[object, str | None]] = []

    def single_fn(self, tgt):
        return ("single", tgt.account)

    def batch_fn(self, targets):
        return ("batch", [t.account for t in targets])

    def simulate(self, fn, sender):
        self.simulated.append((fn, sender))
        return self.revert


def _executor(revert: str = "", **overrides) -> LiveExecutor:
    cfg = build_config(mode="live", **overrides)
    gas = GasStrategy(cfg, _GasReader())
    gas.refresh()
    executor = LiveExecutor(cfg, chain=None, gas=gas)
    executor.calls = _FakeCalls(revert)
    executor._signer_address = account(99)
    return executor


class LiveExecutorTests(unittest.TestCase):
    def test_receipt_status_variants(self) -> None:
        self.assertEqual(LiveExecutor._receipt_status({"status": 1}), 1)
        self.assertEqual(LiveExecutor._receipt_status({"status": "0x1"}), 1)
        self.assertEqual(LiveExecutor._receipt_status({"status": "0"}), 0)
        self.assertEqual(LiveExecutor._receipt_status({}), 0)
        self.assertEqual(LiveExecutor._receipt_status(None), 0)

    def test_receipt_summary_keeps_ints(self) -> None:
        summary = LiveExecutor._receipt_summary({"status": 1, "blockNumber": 12, "gasUsed": "300"})
        self.assertEqual(summary, {"status": 1, "blockNumber": 12, "gasUsed": 300})

    def test_covered_accounts_filters_to_submitted(self) -> None:
        submitted = [account(1), account(2), account(3)]
        covered = LiveExecutor._covered_accounts([account(2).upper(), account(9), account(2)], submitted)
        self.assertEqual(covered, [account(2)])

    def test_covered_accounts_falls_back_to_submitted(self) -> None:
        submitted = [account(1), account(2)]
        self.assertEqual(LiveExecutor._covered_accounts([], submitted), submitted)

    def test_simulation_revert_never_sends(self) -> None:
        executor = _executor(revert="ContractLogicError: execution reverted")
        with patch.object(LiveExecutor, "_send_function_tx") as send:
            result = executor.execute_batch([target(account(1)), target(account(2))])
        send.assert_not_called()
        self.assertFalse(result.success)
        self.assertIn("simulation_reverted", result.error)

    def test_successful_batch_reports_liquidated_users(self) -> None:
        executor = _executor()
        receipt = {"status": 1, "blockNumber": 100, "gasUsed": 250_000}
        with patch.object(LiveExecutor, "_send_function_tx", return_value="0xabc") as send, patch.object(
            LiveExecutor, "_wait_receipt", return_value=receipt
        ), patch.object(LiveExecutor, "_liquidated_users", return_value=[account(1)]):
            result = executor.execute_batch([target(account(1)), target(account(2))])
        self.assertTrue(result.success)
        self.assertEqual(result.tx_hash, "0xabc")
        self.assertEqual(result.covered_accounts, [account(1)])
        self.assertEqual(result.raw["blockNumber"], 100)
        self.assertEqual(send.call_args.args[1], executor.gas.current_bid())
        self.assertEqual(executor.calls.simulated[0][1], account(99))

    def test_reverted_receipt_is_failure(self) -> None:
        executor = _executor()
        with patch.object(LiveExecutor, "_send_function_tx", return_value="0xabc"), patch.object(
            LiveExecutor, "_wait_receipt", return_value={"status": 0}
        ):
            result = executor.execute_single(target(account(1), debt_usd=50.0))
        self.assertFalse(result.success)
        self.assertEqual(result.tx_hash, "0xabc")
        self.assertEqual(result.error, "transaction reverted")

    def test_send_failure_is_reported(self) -> None:
        executor = _executor()
        with patch.object(LiveExecutor, "_send_function_tx", side_effect=ValueError("nonce too low")):
            result = executor.execute_single(target(account(1), debt_usd=50.0))
        self.assertFalse(result.success)
        self.assertIn("send_failed", result.error)
        self.assertIn("nonce too low", result.error)

    def test_forced_target_uses_force_bid(self) -> None:
        executor = _executor()
        with patch.object(LiveExecutor, "_send_function_tx", return_value="0xabc") as send, patch.object(
            LiveExecutor, "_wait_receipt", return_value={"status": 1}
        ), patch.object(LiveExecutor, "_liquidated_users", return_value=[]):
            result = executor.execute_single(target(account(1), forced=True))
        self.assertTrue(result.success)
        self.assertEqual(send.call_args.args[1], executor.gas.force_bid())
        self.assertGreater(executor.gas.force_bid(), executor.gas.current_bid())

    def test_missing_private_key_fails_without_simulating(self) -> None:
        executor = _executor(private_key="")
        executor._signer_address = ""
        result = executor.execute_single(target(account(1), debt_usd=50.0))
        self.assertFalse(result.success)
        self.assertIn("PRIVATE_KEY", result.error)
        self.assertEqual(executor.calls.simulated, [])

    def test_empty_batch_is_noop(self) -> None:
        self.assertTrue(_executor().execute_batch([]).success)


if __name__ == "__main__":
    unittest.main()
