from __future__ import annotations

import argparse
from concurrent.futures import Future, ThreadPoolExecutor
import json
import logging
import signal
import threading
from dataclasses import replace
from typing import Iterable

from liquidation_bot.batching import ExecutionQueue
from liquidation_bot.classification import ClassificationEngine
from liquidation_bot.clients_chain import ChainClient
from liquidation_bot.config import BotConfig, load_config
from liquidation_bot.decision import DecisionEngine
from liquidation_bot.discovery import BorrowerTracker, SeedResult, load_seed_file, seed_accounts
from liquidation_bot.execution import BaseExecutor, LiveExecutor, PaperExecutor
from liquidation_bot.gas import GasStrategy
from liquidation_bot.liquidity import LiquidityMonitor
from liquidation_bot.models import ExecutionResult, Position, normalize_address
from liquidation_bot.notifier import LoggingNotifier, Notifier
from liquidation_bot.position_store import PositionStore
from liquidation_bot.pricing import to_wad, usd_to_base
from liquidation_bot.runtime_support import ReserveCache, RpcBudget
from liquidation_bot.scheduler import PeriodicLoop, TieredScheduler
from liquidation_bot.storage import Storage

LOGGER = logging.getLogger("liquidation_bot")


def _chain_client(config: BotConfig, name: str, rpc_url: str, timeout_seconds: float) -> ChainClient:
    return ChainClient(
        name=name,
        rpc_url=rpc_url,
        timeout_seconds=timeout_seconds,
        pool_address=config.pool_address,
        data_provider_address=config.data_provider_address,
        oracle_address=config.oracle_address,
        multicall_address=config.multicall_address,
    )


class BotRuntime:
    def __init__(self, config: BotConfig, notifier: Notifier | None = None) -> None:
        self.config = config
        self.storage = Storage(config.database_path)
        self.notifier = notifier or LoggingNotifier()
        self.premium = _chain_client(config, "premium", config.premium_rpc_url, config.premium_timeout_seconds)
        self.secondary = _chain_client(config, "secondary", config.secondary_rpc_url, config.background_timeout_seconds)
        self.public = _chain_client(config, "public", config.public_rpc_url, config.background_timeout_seconds)
        self.budgets = {
            "premium": RpcBudget("premium", config.premium_calls_per_second),
            "secondary": RpcBudget("secondary", config.secondary_calls_per_second),
            "public": RpcBudget("public", config.public_calls_per_second),
        }
        self.store = PositionStore()
        self.classifier = ClassificationEngine.from_config(config)
        self.gas = GasStrategy(config, self.premium)
        self.liquidity = LiquidityMonitor(config, self.public)
        self.decision = DecisionEngine(
            config,
            reader=self.premium,
            liquidity=self.liquidity,
            reserve_cache=ReserveCache(config.reserve_cache_seconds),
            budget=self.budgets["premium"],
        )

        self.executor: BaseExecutor
        if config.live_mode:
            self.executor = LiveExecutor(config, self.premium, self.gas)
        else:
            self.executor = PaperExecutor(config, self.premium)

        self.queue = ExecutionQueue(config, self.executor, notifier=self.notifier, storage=self.storage)
        self.scheduler = TieredScheduler(
            config,
            store=self.store,
            classifier=self.classifier,
            priority_reader=self.premium,
            background_reader=self.secondary,
            audit_reader=self.public,
            priority_budget=self.budgets["premium"],
            background_budget=self.budgets["secondary"],
            audit_budget=self.budgets["public"],
            on_liquidatable=self.trigger_liquidation,
            notifier=self.notifier,
            storage=self.storage,
        )
        self.tracker = BorrowerTracker(config, reader=self.public, store=self.store, classifier=self.classifier)
        self._workers = ThreadPoolExecutor(max_workers=max(1, config.execution_workers), thread_name_prefix="liquidate")
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()
        self._liquidation_hf = to_wad(config.liquidation_hf)
        self._stop_event = threading.Event()
        self._loops = [
            PeriodicLoop("gas", config.gas_refresh_seconds, self.gas.refresh),
            PeriodicLoop("liquidity", config.liquidity_refresh_seconds, self.liquidity.refresh, run_immediately=False),
            PeriodicLoop("tier1", config.tier1_interval_seconds, self.scheduler.tick_priority),
            PeriodicLoop("tier2", config.tier2_interval_seconds, self.scheduler.tick_background),
            PeriodicLoop("tier3", config.tier3_interval_seconds, self.scheduler.tick_audit, run_immediately=False),
            PeriodicLoop("tracker", config.tracker_interval_seconds, self.tracker.poll),
            PeriodicLoop("batch-timer", config.batch_poll_seconds, self.queue.flush_due),
            PeriodicLoop("sweep", config.execution_sweep_seconds, self._execution_sweep),
            PeriodicLoop("stats", config.stats_interval_seconds, self._publish_stats, run_immediately=False),
        ]

    def stop(self) -> None:
        self._stop_event.set()

    def preflight(self) -> None:
        missing = self.config.missing_required()
        if missing:
            raise RuntimeError(f"missing required settings: {', '.join(missing)}")
        if not self.config.live_mode:
            return
        self.executor.preflight()

    def run(self, seed: bool = True) -> None:
        self.classifier.load()
        if seed:
            self.seed(self.config.seed_list_path)
        self.gas.refresh()
        self.liquidity.refresh()
        for loop in self._loops:
            loop.start()
        hot, cold = self.classifier.counts()
        LOGGER.info("runtime_started mode=%s hot=%d cold=%d", self.config.mode, hot, cold)
        while not self._stop_event.wait(1.0):
            pass

    def close(self) -> None:
        for loop in self._loops:
            loop.stop()
        self._workers.shutdown(wait=False, cancel_futures=True)
        try:
            self.classifier.persist()
        except OSError as exc:
            LOGGER.warning("close_persist_failed error=%s", exc)
        self.storage.close()

    def seed(self, path: str) -> SeedResult:
        accounts = load_seed_file(path)
        if not accounts:
            LOGGER.info("seed_skipped path=%s reason=empty", path)
            return SeedResult()
        known = self.classifier.hot_snapshot() | self.classifier.cold_snapshot()
        fresh = [a for a in accounts if a not in known]
        return seed_accounts(
            fresh,
            reader=self.public,
            store=self.store,
            classifier=self.classifier,
            chunk_size=self.config.seed_chunk_size,
            min_debt_base=usd_to_base(self.config.min_debt_usd),
            notifier=self.notifier,
        )

    def trigger_liquidation(self, position: Position, force: bool = False) -> Future | None:
        account = position.account
        if not force and self.queue.is_queued(account):
            return None
        with self._in_flight_lock:
            if account in self._in_flight:
                return None
            self._in_flight.add(account)
        try:
            return self._workers.submit(self._liquidate, position, force)
        except RuntimeError:
            with self._in_flight_lock:
                self._in_flight.discard(account)
            return None

    def _liquidate(self, position: Position, force: bool) -> ExecutionResult | None:
        try:
            target = self.decision.analyze(position, force=force)
            if target is None:
                return None
            return self.queue.submit(target)
        except Exception as exc:
            LOGGER.error("liquidation_worker_failed account=%s error=%s", position.account, exc)
            return None
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(position.account)

    def _execution_sweep(self) -> int:
        triggered = 0
        for position in self.scheduler.ordered_hot_positions():
            if position.health_factor >= self._liquidation_hf:
                break
            if self.trigger_liquidation(position) is not None:
                triggered += 1
        return triggered

    def liquidate_account(self, account: str) -> ExecutionResult | None:
        data = self.premium.account_data(account)
        position = Position.from_account_data(account, data)
        self.store.upsert(position)
        target = self.decision.analyze(position, force=True)
        if target is None:
            return None
        return self.queue.execute_direct(target)

    def _publish_stats(self) -> None:
        hot, cold = self.classifier.counts()
        stats: dict[str, object] = {
            "hot": hot,
            "cold": cold,
            "positions": len(self.store),
            "rpc_premium": self.premium.call_count,
            "rpc_secondary": self.secondary.call_count,
            "rpc_public": self.public.call_count,
            "gas_bid_wei": self.gas.current_bid(),
            "batches": self.queue.summary(),
        }
        for name, budget in self.budgets.items():
            stats[f"budget_denied_{name}"] = budget.stats()["denied"]
        self.notifier.stats_updated(stats)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("urllib3", "web3", "requests", "aiohttp"):
        logging.getLogger(noisy).setLevel(logging.ERROR)


def _load_config(args: argparse.Namespace) -> BotConfig | None:
    try:
        config = load_config()
    except ValueError as exc:
        _setup_logging("INFO")
        LOGGER.error("Invalid configuration: %s", exc)
        return None
    mode = getattr(args, "mode", None)
    if mode:
        config = replace(config, mode=mode.lower())
    _setup_logging(config.log_level)
    return config


def _run_command(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 2
    runtime = BotRuntime(config)
    try:
        runtime.preflight()
    except Exception as exc:
        LOGGER.error("Preflight failed: %s", exc)
        runtime.close()
        return 2
    LOGGER.info(
        "Starting liquidation bot mode=%s liquidator=%s tier1=%d batch_size=%d",
        config.mode,
        config.liquidator_address,
        config.tier1_size,
        config.batch_size,
    )
    signal_count = {"count": 0}

    def _handle_signal(signum: int, _frame: object) -> None:
        signal_count["count"] += 1
        if signal_count["count"] >= 2:
            LOGGER.error("Received signal %s again, forcing exit now", signum)
            raise SystemExit(130)
        LOGGER.warning(
            "Received signal %s, stopping loops (press Ctrl+C again to force-exit)",
            signum,
        )
        runtime.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    try:
        runtime.run(seed=not args.skip_seed)
        return 0
    except Exception as exc:
        LOGGER.error("Fatal runtime error: %s", exc)
        return 2
    finally:
        runtime.close()


def _seed_command(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 2
    runtime = BotRuntime(config)
    try:
        runtime.classifier.load()
        result = runtime.seed(args.file or config.seed_list_path)
        print(json.dumps(result.to_dict(), indent=2))
        return 0
    except Exception as exc:
        LOGGER.error("seed failed: %s", exc)
        return 2
    finally:
        runtime.close()


def _liquidate_command(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 2
    runtime = BotRuntime(config)
    try:
        runtime.preflight()
        runtime.gas.refresh()
        runtime.liquidity.refresh()
        result = runtime.liquidate_account(normalize_address(args.account))
        if result is None:
            LOGGER.error("No liquidation target for account=%s", args.account)
            return 2
        print(
            json.dumps(
                {
                    "success": result.success,
                    "tx_hash": result.tx_hash,
                    "covered_accounts": result.covered_accounts,
                    "simulated_only": result.simulated_only,
                    "error": result.error,
                },
                indent=2,
            )
        )
        return 0 if result.success else 2
    except Exception as exc:
        LOGGER.error("liquidate failed: %s", exc)
        return 2
    finally:
        runtime.close()


def _report_command(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 2
    storage = Storage(config.database_path)
    try:
        report = storage.report(args.window)
        print(json.dumps(report, indent=2, default=str))
    finally:
        storage.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liquidation_bot", description="Lending pool liquidation bot"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run monitoring and execution loops")
    run.add_argument("--mode", choices=("paper", "live"), default=None)
    run.add_argument(
        "--skip-seed",
        action="store_true",
        help="Do not categorise the seed account list at startup",
    )
    run.set_defaults(func=_run_command)

    seed = sub.add_parser("seed", help="One-time Hot/Cold categorisation of a candidate account list")
    seed.add_argument("--file", default=None, help="JSON list of account addresses")
    seed.set_defaults(func=_seed_command)

    liquidate = sub.add_parser("liquidate", help="Force a liquidation attempt for one account")
    liquidate.add_argument("--account", required=True, help="Borrower address")
    liquidate.add_argument("--mode", choices=("paper", "live"), default=None)
    liquidate.set_defaults(func=_liquidate_command)

    report = sub.add_parser("report", help="Print execution summary from SQLite")
    report.add_argument("--window", type=int, default=24, help="Window in hours")
    report.set_defaults(func=_report_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
