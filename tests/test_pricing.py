from __future__ import annotations

import unittest

from tests.helpers import build_config  # noqa: F401  (puts src on sys.path)
from liquidation_bot.pricing import (
    BASE_UNIT,
    BPS,
    WAD,
    asset_value_base,
    bonus_profit_base,
    close_factor_bps,
    debt_to_cover,
    gwei_to_wei,
    to_wad,
    usd_to_base,
)


class PricingTests(unittest.TestCase):
    def test_close_factor_full_below_threshold(self) -> None:
        self.assertEqual(close_factor_bps(to_wad(0.90), to_wad(0.95)), BPS)

    def test_close_factor_half_at_one(self) -> None:
        self.assertEqual(close_factor_bps(to_wad(1.00), to_wad(0.95)), BPS // 2)

    def test_close_factor_boundary_is_half(self) -> None:
        self.assertEqual(close_factor_bps(to_wad(0.95), to_wad(0.95)), BPS // 2)

    def test_debt_to_cover_reference_case(self) -> None:
        amount = debt_to_cover(1_000_000, BPS // 2, 100_000_000, 6)
        self.assertEqual(amount, 5_000 * 10**6)

    def test_debt_to_cover_truncates(self) -> None:
        # 1 base unit of debt at price 3 with 0 decimals -> 1/6 truncates to 0
        self.assertEqual(debt_to_cover(1, BPS // 2, 3, 0), 0)

    def test_debt_to_cover_zero_price(self) -> None:
        self.assertEqual(debt_to_cover(1_000_000, BPS, 0, 6), 0)

    def test_to_wad_is_exact(self) -> None:
        self.assertEqual(to_wad(1.5), 15 * WAD // 10)
        self.assertEqual(to_wad(2.0), 2 * WAD)

    def test_usd_to_base(self) -> None:
        self.assertEqual(usd_to_base(0.000001), 100)
        self.assertEqual(usd_to_base(15), 15 * BASE_UNIT)

    def test_asset_value_base(self) -> None:
        # 2 WETH at $2000
        self.assertEqual(asset_value_base(2 * 10**18, 2_000 * BASE_UNIT, 18), 4_000 * BASE_UNIT)
        self.assertEqual(asset_value_base(0, 2_000 * BASE_UNIT, 18), 0)

    def test_bonus_profit_subtracts_gas(self) -> None:
        profit = bonus_profit_base(100 * BASE_UNIT, 500, usd_to_base(0.01))
        self.assertEqual(profit, 5 * BASE_UNIT - BASE_UNIT // 100)

    def test_gwei_to_wei(self) -> None:
        self.assertEqual(gwei_to_wei(0.0005), 500_000)


if __name__ == "__main__":
    unittest.main()
