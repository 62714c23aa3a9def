from __future__ import annotations

import unittest
from unittest.mock import patch

from eth_abi import encode

from tests.helpers import account
from liquidation_bot.clients_chain import ACCOUNT_DATA_TYPES, ChainClient, _to_bytes


def _client() -> ChainClient:
    return ChainClient(
        name="test",
        rpc_url="http://127.0.0.1:1",
        timeout_seconds=1.0,
        pool_address="0xA238Dd80C259a72e81d7e4664a9801593F98d1c5",
        data_provider_address="0x2d8A3C5677189723C4cB8873CfC9C8976FDF38Ac",
        oracle_address="0x2Cc0Fc26eD4563A5ce5e8bdcfe1A2878676Ae156",
        multicall_address="0xcA11bde05977b3631167028862bE2a173976CA11",
    )


class ChainClientTests(unittest.TestCase):
    def test_to_bytes(self) -> None:
        self.assertEqual(_to_bytes("0x0102"), b"\x01\x02")
        self.assertEqual(_to_bytes(bytearray(b"\x03")), b"\x03")
        self.assertEqual(_to_bytes(None), b"")

    def test_batch_drops_failed_and_undecodable_entries(self) -> None:
        good = encode(ACCOUNT_DATA_TYPES, [300, 200, 0, 8_000, 7_500, 12 * 10**17])
        results = [(True, good), (False, b""), (True, b"\x01")]
        client = _client()
        with patch.object(ChainClient, "aggregate", return_value=results) as aggregate:
            out = client.account_data_batch([account(1).upper().replace("0X", "0x"), account(2), account(3)])
        self.assertEqual(list(out), [account(1)])
        self.assertEqual(out[account(1)].health_factor, 12 * 10**17)
        self.assertEqual(out[account(1)].total_debt_base, 200)
        calls = aggregate.call_args.args[0]
        self.assertEqual(len(calls), 3)
        self.assertTrue(all(target == client.pool_address for target, _ in calls))

    def test_empty_batch_makes_no_call(self) -> None:
        client = _client()
        with patch.object(ChainClient, "aggregate") as aggregate:
            self.assertEqual(client.account_data_batch([]), {})
        aggregate.assert_not_called()


if __name__ == "__main__":
    unittest.main()
