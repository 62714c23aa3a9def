from __future__ import annotations

import unittest

from tests.helpers import account, build_config, target
from liquidation_bot.execution import PaperExecutor, _exception_text


class _FakeCalls:
    def __init__(self, revert: str = "") -> None:
        self.revert = revert
        self.built: list[str] = []

    def single_fn(self, tgt):
        self.built.append("single")
        return object()

    def batch_fn(self, targets):
        self.built.append("batch")
        return object()

    def simulate(self, fn, sender):
        return self.revert


class PaperExecutorTests(unittest.TestCase):
    def test_without_chain_every_account_is_covered(self) -> None:
        executor = PaperExecutor(build_config(private_key=""))
        result = executor.execute_batch([target(account(1)), target(account(2))])
        self.assertTrue(result.success)
        self.assertTrue(result.simulated_only)
        self.assertEqual(result.covered_accounts, [account(1), account(2)])
        self.assertEqual(result.tx_hash, "")

    def test_simulation_result_is_reported(self) -> None:
        executor = PaperExecutor(build_config(private_key=""))
        executor.calls = _FakeCalls()
        ok = executor.execute_single(target(account(1)))
        self.assertTrue(ok.success)
        self.assertEqual(executor.calls.built, ["single"])

        executor.calls = _FakeCalls(revert="ContractLogicError: health factor not below threshold")
        failed = executor.execute_batch([target(account(1))])
        self.assertFalse(failed.success)
        self.assertTrue(failed.simulated_only)
        self.assertIn("health factor not below threshold", failed.error)

    def test_exception_text_prefers_message(self) -> None:
        class _RpcError(Exception):
            message = "execution reverted: 35"

        self.assertEqual(_exception_text(_RpcError("ignored")), "_RpcError: execution reverted: 35")
        self.assertEqual(_exception_text(ValueError("bad")), "ValueError: bad")


if __name__ == "__main__":
    unittest.main()
