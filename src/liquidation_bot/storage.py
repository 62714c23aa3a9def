from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import json
import logging
import os
import shutil
import sqlite3
import threading
from typing import Any, Iterable

from liquidation_bot.models import ExecutionResult, LiquidationTarget, normalize_address
from liquidation_bot.pricing import base_to_usd

LOGGER = logging.getLogger("liquidation_bot")


class AccountListStore:
    """
    JSON list of account addresses on disk.

    Writes go to a temp file and are renamed over the target, so a reader
    never sees a half-written list. The previous version is kept as <name>.bak.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def load(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("account_list_unreadable path=%s error=%s", self.path, exc)
            return []
        if not isinstance(payload, list):
            LOGGER.warning("account_list_malformed path=%s type=%s", self.path, type(payload).__name__)
            return []
        seen: set[str] = set()
        out: list[str] = []
        for raw in payload:
            account = normalize_address(str(raw))
            if account and account not in seen:
                seen.add(account)
                out.append(account)
        return out

    def save(self, accounts: Iterable[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            try:
                shutil.copyfile(self.path, self.path.with_name(self.path.name + ".bak"))
            except OSError as exc:
                LOGGER.warning("account_list_backup_failed path=%s error=%s", self.path, exc)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(sorted(set(accounts)), indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


class Storage:
    def __init__(self, database_path: str) -> None:
        self.path = Path(database_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS executions (
              ts TEXT NOT NULL,
              mode TEXT NOT NULL,
              path TEXT NOT NULL,
              debt_asset TEXT NOT NULL,
              accounts TEXT NOT NULL,
              covered TEXT NOT NULL,
              success INTEGER NOT NULL,
              simulated_only INTEGER NOT NULL,
              tx_hash TEXT NOT NULL,
              expected_profit_usd REAL NOT NULL,
              error TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_passes (
              ts TEXT NOT NULL,
              hot INTEGER NOT NULL,
              cold INTEGER NOT NULL,
              promoted INTEGER NOT NULL,
              demoted INTEGER NOT NULL,
              evicted INTEGER NOT NULL
            );
            """
        )
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def record_execution(
        self,
        *,
        path: str,
        mode: str,
        targets: list[LiquidationTarget],
        result: ExecutionResult,
    ) -> None:
        debt_asset = targets[0].debt_asset if targets else ""
        profit = sum(base_to_usd(t.expected_profit_base) for t in targets if t.account in set(result.covered_accounts))
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO executions (
                  ts, mode, path, debt_asset, accounts, covered, success,
                  simulated_only, tx_hash, expected_profit_usd, error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    datetime.now(tz=timezone.utc).isoformat(),
                    mode,
                    path,
                    debt_asset,
                    json.dumps([t.account for t in targets]),
                    json.dumps(list(result.covered_accounts)),
                    1 if result.success else 0,
                    1 if result.simulated_only else 0,
                    result.tx_hash,
                    round(profit, 6) if result.success else 0.0,
                    result.error[:500],
                ),
            )
            self.conn.commit()

    def record_audit_pass(self, *, hot: int, cold: int, promoted: int, demoted: int, evicted: int) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO audit_passes (ts, hot, cold, promoted, demoted, evicted) VALUES (?, ?, ?, ?, ?, ?)",
                (datetime.now(tz=timezone.utc).isoformat(), hot, cold, promoted, demoted, evicted),
            )
            self.conn.commit()

    def report(self, window_hours: int) -> dict[str, Any]:
        since = (datetime.now(tz=timezone.utc) - timedelta(hours=window_hours)).isoformat()
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM executions WHERE ts >= ? ORDER BY ts ASC",
                (since,),
            ).fetchall()
            latest_audit = self.conn.execute(
                "SELECT * FROM audit_passes ORDER BY ts DESC LIMIT 1"
            ).fetchone()

        per_path: dict[str, dict[str, Any]] = {}
        for row in rows:
            metric = per_path.setdefault(
                str(row["path"]),
                {"attempts": 0, "success": 0, "failed": 0, "covered_accounts": 0, "expected_profit_usd": 0.0},
            )
            metric["attempts"] += 1
            if int(row["success"]):
                metric["success"] += 1
                metric["covered_accounts"] += len(json.loads(row["covered"] or "[]"))
                metric["expected_profit_usd"] += float(row["expected_profit_usd"] or 0.0)
            else:
                metric["failed"] += 1
        for metric in per_path.values():
            metric["expected_profit_usd"] = round(float(metric["expected_profit_usd"]), 6)

        recent_errors = [
            {"ts": row["ts"], "path": row["path"], "error": row["error"]}
            for row in rows
            if not int(row["success"]) and row["error"]
        ][-10:]
        return {
            "window_hours": window_hours,
            "attempts": sum(m["attempts"] for m in per_path.values()),
            "success": sum(m["success"] for m in per_path.values()),
            "failed": sum(m["failed"] for m in per_path.values()),
            "per_path": per_path,
            "recent_errors": recent_errors,
            "latest_audit": dict(latest_audit) if latest_audit else {},
        }
