from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from liquidation_bot.clients_chain import ChainClient
from liquidation_bot.config import BotConfig
from liquidation_bot.gas import GasStrategy
from liquidation_bot.models import ExecutionResult, LiquidationTarget, normalize_address

LOGGER = logging.getLogger("liquidation_bot")

LIQUIDATOR_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "address", "name": "collateralAsset", "type": "address"},
            {"internalType": "address", "name": "debtAsset", "type": "address"},
            {"internalType": "address", "name": "user", "type": "address"},
            {"internalType": "uint256", "name": "debtToCover", "type": "uint256"},
            {"internalType": "uint8", "name": "source", "type": "uint8"},
            {"internalType": "address", "name": "flashPool", "type": "address"},
        ],
        "name": "executeLiquidation",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address[]", "name": "collateralAssets", "type": "address[]"},
            {"internalType": "address[]", "name": "debtAssets", "type": "address[]"},
            {"internalType": "address[]", "name": "users", "type": "address[]"},
            {"internalType": "uint256[]", "name": "debtsToCover", "type": "uint256[]"},
        ],
        "name": "executeBatch",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class BaseExecutor:
    mode = "base"

    def preflight(self) -> None:
        return

    def execute_single(self, target: LiquidationTarget) -> ExecutionResult:
        raise NotImplementedError

    def execute_batch(self, targets: Sequence[LiquidationTarget]) -> ExecutionResult:
        raise NotImplementedError


def _exception_text(exc: Exception) -> str:
    for attr in ("message", "msg"):
        value = getattr(exc, attr, None)
        if value:
            return f"{exc.__class__.__name__}: {value}"
    return f"{exc.__class__.__name__}: {exc}"


class _LiquidatorCalls:
    """Builds and simulates calls against the flash liquidator contract."""

    def __init__(self, config: BotConfig, chain: ChainClient) -> None:
        self.config = config
        self.chain = chain
        self._contract = None

    def contract(self):
        if self._contract is None:
            from web3 import Web3

            self._contract = self.chain.web3().eth.contract(
                address=Web3.to_checksum_address(self.config.liquidator_address),
                abi=LIQUIDATOR_ABI,
            )
        return self._contract

    def single_fn(self, target: LiquidationTarget):
        from web3 import Web3

        return self.contract().functions.executeLiquidation(
            Web3.to_checksum_address(target.collateral_asset),
            Web3.to_checksum_address(target.debt_asset),
            Web3.to_checksum_address(target.account),
            int(target.debt_to_cover),
            int(target.liquidity_source.source_id),
            Web3.to_checksum_address(target.liquidity_source.pool_address),
        )

    def batch_fn(self, targets: Sequence[LiquidationTarget]):
        from web3 import Web3

        return self.contract().functions.executeBatch(
            [Web3.to_checksum_address(t.collateral_asset) for t in targets],
            [Web3.to_checksum_address(t.debt_asset) for t in targets],
            [Web3.to_checksum_address(t.account) for t in targets],
            [int(t.debt_to_cover) for t in targets],
        )

    @staticmethod
    def simulate(fn, sender: str | None) -> str:
        """Returns an empty string when the eth_call succeeds, else the revert text."""
        try:
            if sender:
                fn.call({"from": sender})
            else:
                fn.call()
        except Exception as exc:
            return _exception_text(exc)
        return ""


class PaperExecutor(BaseExecutor):
    """Simulates every liquidation and never submits a transaction."""

    mode = "paper"

    def __init__(self, config: BotConfig, chain: ChainClient | None = None) -> None:
        self.config = config
        self.calls = _LiquidatorCalls(config, chain) if chain is not None else None
        self._sender: str | None = None
        if config.private_key:
            from eth_account import Account

            self._sender = Account.from_key(config.private_key).address

    def _dry_run(self, targets: Sequence[LiquidationTarget], fn_builder) -> ExecutionResult:
        accounts = [t.account for t in targets]
        if self.calls is None:
            return ExecutionResult(success=True, covered_accounts=accounts, simulated_only=True)
        error = self.calls.simulate(fn_builder(), self._sender)
        if error:
            return ExecutionResult(success=False, error=f"simulation_reverted {error}", simulated_only=True)
        return ExecutionResult(success=True, covered_accounts=accounts, simulated_only=True)

    def execute_single(self, target: LiquidationTarget) -> ExecutionResult:
        return self._dry_run([target], lambda: self.calls.single_fn(target))

    def execute_batch(self, targets: Sequence[LiquidationTarget]) -> ExecutionResult:
        return self._dry_run(targets, lambda: self.calls.batch_fn(targets))


class LiveExecutor(BaseExecutor):
    mode = "live"

    def __init__(self, config: BotConfig, chain: ChainClient, gas: GasStrategy) -> None:
        self.config = config
        self.chain = chain
        self.gas = gas
        self.calls = _LiquidatorCalls(config, chain)
        self._preflight_done = False
        self._signer_address = ""

    def _signer(self) -> str:
        if self._signer_address:
            return self._signer_address
        if not self.config.private_key:
            raise RuntimeError("Missing PRIVATE_KEY for live mode")
        try:
            from eth_account import Account
        except Exception as exc:
            raise RuntimeError("eth-account is required for live mode. Install with `pip install eth-account`.") from exc
        self._signer_address = Account.from_key(self.config.private_key).address
        return self._signer_address

    def preflight(self) -> None:
        if self._preflight_done:
            return
        signer = self._signer()
        w3 = self.chain.web3()
        chain_id = int(w3.eth.chain_id)
        if chain_id != int(self.config.chain_id):
            raise RuntimeError(f"RPC chain id {chain_id} does not match expected {self.config.chain_id}")
        from web3 import Web3

        code = w3.eth.get_code(Web3.to_checksum_address(self.config.liquidator_address))
        if not code:
            raise RuntimeError(f"no contract deployed at liquidator address {self.config.liquidator_address}")
        balance = int(w3.eth.get_balance(signer))
        LOGGER.info(
            "live_preflight signer=%s liquidator=%s chain_id=%d balance_wei=%d",
            signer,
            self.config.liquidator_address,
            chain_id,
            balance,
        )
        self._preflight_done = True

    @staticmethod
    def _receipt_status(receipt: Any) -> int:
        if receipt is None:
            return 0
        raw = receipt.get("status") if isinstance(receipt, dict) else getattr(receipt, "status", None)
        if raw is None:
            return 0
        if isinstance(raw, str):
            return int(raw, 16) if raw.startswith("0x") else int(raw)
        return int(raw)

    @staticmethod
    def _receipt_summary(receipt: Any) -> dict[str, Any]:
        if receipt is None:
            return {}
        out: dict[str, Any] = {"status": LiveExecutor._receipt_status(receipt)}
        for key in ("blockNumber", "gasUsed", "effectiveGasPrice"):
            value = receipt.get(key) if isinstance(receipt, dict) else getattr(receipt, key, None)
            if value is not None:
                try:
                    out[key] = int(value)
                except (TypeError, ValueError):
                    out[key] = str(value)
        return out

    @staticmethod
    def _covered_accounts(liquidated_users: Iterable[str], submitted: Sequence[str]) -> list[str]:
        submitted_set = {normalize_address(a) for a in submitted}
        covered = []
        for user in liquidated_users:
            key = normalize_address(user)
            if key in submitted_set and key not in covered:
                covered.append(key)
        if not covered:
            return [normalize_address(a) for a in submitted]
        return covered

    def _liquidated_users(self, receipt: Any) -> list[str]:
        from web3.logs import DISCARD

        events = self.chain.pool.events.LiquidationCall().process_receipt(receipt, errors=DISCARD)
        return [str(event["args"]["user"]) for event in events]

    def _send_function_tx(self, fn, gas_price: int) -> str:
        self.preflight()
        try:
            from eth_account import Account
        except Exception as exc:
            raise RuntimeError("eth-account is required for live mode. Install with `pip install eth-account`.") from exc

        signer = self._signer()
        w3 = self.chain.web3()
        nonce = int(w3.eth.get_transaction_count(signer, "pending"))
        tx = fn.build_transaction(
            {
                "from": signer,
                "nonce": nonce,
                "chainId": int(self.config.chain_id),
                "gasPrice": max(1, int(gas_price)),
            }
        )
        gas_limit = int(tx.get("gas", 0) or 0)
        if gas_limit <= 0:
            gas_limit = int(w3.eth.estimate_gas(tx))
        tx["gas"] = max(21_000, int(gas_limit * self.config.gas_limit_multiplier))

        signed = Account.sign_transaction(tx, self.config.private_key)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise RuntimeError("unable to access signed raw transaction")
        tx_hash = w3.eth.send_raw_transaction(raw_tx)
        return tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash)

    def _wait_receipt(self, tx_hash: str) -> Any:
        return self.chain.web3().eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self.config.receipt_timeout_seconds,
        )

    def _submit(self, fn, targets: Sequence[LiquidationTarget], gas_price: int) -> ExecutionResult:
        accounts = [t.account for t in targets]
        try:
            sender = self._signer()
        except RuntimeError as exc:
            return ExecutionResult(success=False, error=f"signer_unavailable {exc}")
        error = self.calls.simulate(fn, sender)
        if error:
            return ExecutionResult(success=False, error=f"simulation_reverted {error}")
        try:
            tx_hash = self._send_function_tx(fn, gas_price)
        except Exception as exc:
            return ExecutionResult(success=False, error=f"send_failed {_exception_text(exc)}")
        LOGGER.info("liquidation_tx_sent tx=%s accounts=%d gas_price=%d", tx_hash, len(accounts), gas_price)
        try:
            receipt = self._wait_receipt(tx_hash)
        except Exception as exc:
            return ExecutionResult(success=False, tx_hash=tx_hash, error=f"receipt_unavailable {_exception_text(exc)}")
        summary = self._receipt_summary(receipt)
        if self._receipt_status(receipt) != 1:
            return ExecutionResult(success=False, tx_hash=tx_hash, error="transaction reverted", raw=summary)
        try:
            liquidated = self._liquidated_users(receipt)
        except Exception as exc:
            LOGGER.warning("receipt_decode_failed tx=%s error=%s", tx_hash, exc)
            liquidated = []
        return ExecutionResult(
            success=True,
            covered_accounts=self._covered_accounts(liquidated, accounts),
            tx_hash=tx_hash,
            raw=summary,
        )

    def execute_single(self, target: LiquidationTarget) -> ExecutionResult:
        gas_price = self.gas.force_bid() if target.forced else self.gas.current_bid()
        return self._submit(self.calls.single_fn(target), [target], gas_price)

    def execute_batch(self, targets: Sequence[LiquidationTarget]) -> ExecutionResult:
        if not targets:
            return ExecutionResult(success=True)
        return self._submit(self.calls.batch_fn(targets), targets, self.gas.current_bid())
