from __future__ import annotations

import contextlib
import io
import json
import os
from pathlib import Path
import tempfile
import unittest
from unittest.mock import patch

from tests.helpers import account, target
from liquidation_bot.main import build_parser, cli
from liquidation_bot.models import ExecutionResult
from liquidation_bot.storage import Storage


def _env(tmp: str, **extra: str) -> dict[str, str]:
    env = {
        "BOT_DB_PATH": str(Path(tmp) / "bot.db"),
        "HOT_LIST_PATH": str(Path(tmp) / "hot.json"),
        "COLD_LIST_PATH": str(Path(tmp) / "cold.json"),
        "SEED_LIST_PATH": str(Path(tmp) / "seed.json"),
    }
    env.update(extra)
    return env


class CliTests(unittest.TestCase):
    def test_parser_commands(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["run", "--mode", "live", "--skip-seed"])
        self.assertEqual(args.mode, "live")
        self.assertTrue(args.skip_seed)
        args = parser.parse_args(["liquidate", "--account", account(1)])
        self.assertEqual(args.account, account(1))
        self.assertEqual(parser.parse_args(["report"]).window, 24)

    def test_liquidate_requires_account(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["liquidate"])

    def test_run_exits_2_without_liquidator(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with patch.dict(os.environ, _env(tmp, FLASH_LIQUIDATOR_ADDRESS=""), clear=True):
                self.assertEqual(cli(["run", "--skip-seed"]), 2)

    def test_invalid_config_exits_2(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with patch.dict(os.environ, _env(tmp, PROMOTE_HF="2.5"), clear=True):
                self.assertEqual(cli(["report"]), 2)

    def test_report_prints_summary(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            env = _env(tmp)
            storage = Storage(env["BOT_DB_PATH"])
            storage.record_execution(
                path="direct",
                mode="paper",
                targets=[target(account(1), debt_usd=40.0)],
                result=ExecutionResult(success=True, covered_accounts=[account(1)], simulated_only=True),
            )
            storage.close()
            out = io.StringIO()
            with patch.dict(os.environ, env, clear=True), contextlib.redirect_stdout(out):
                code = cli(["report", "--window", "1"])
        self.assertEqual(code, 0)
        report = json.loads(out.getvalue())
        self.assertEqual(report["attempts"], 1)
        self.assertEqual(report["per_path"]["direct"]["success"], 1)

    def test_seed_with_empty_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            seed_path = Path(tmp) / "candidates.json"
            seed_path.write_text("[]", encoding="utf-8")
            out = io.StringIO()
            with patch.dict(os.environ, _env(tmp), clear=True), contextlib.redirect_stdout(out):
                code = cli(["seed", "--file", str(seed_path)])
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out.getvalue())["requested"], 0)


if __name__ == "__main__":
    unittest.main()
