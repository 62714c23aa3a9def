from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Sequence

from eth_abi import decode

from liquidation_bot.models import AccountData, AssetSnapshot, ReserveToken, normalize_address

LOGGER = logging.getLogger("liquidation_bot")

ACCOUNT_DATA_TYPES = ["uint256"] * 6
USER_RESERVE_TYPES = ["uint256"] * 7 + ["uint40", "bool"]

POOL_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"internalType": "address", "name": "user", "type": "address"}],
        "name": "getUserAccountData",
        "outputs": [
            {"internalType": "uint256", "name": "totalCollateralBase", "type": "uint256"},
            {"internalType": "uint256", "name": "totalDebtBase", "type": "uint256"},
            {"internalType": "uint256", "name": "availableBorrowsBase", "type": "uint256"},
            {"internalType": "uint256", "name": "currentLiquidationThreshold", "type": "uint256"},
            {"internalType": "uint256", "name": "ltv", "type": "uint256"},
            {"internalType": "uint256", "name": "healthFactor", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "reserve", "type": "address"},
            {"indexed": False, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "onBehalfOf", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
            {"indexed": False, "internalType": "uint8", "name": "interestRateMode", "type": "uint8"},
            {"indexed": False, "internalType": "uint256", "name": "borrowRate", "type": "uint256"},
            {"indexed": True, "internalType": "uint16", "name": "referralCode", "type": "uint16"},
        ],
        "name": "Borrow",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "reserve", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "repayer", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
            {"indexed": False, "internalType": "bool", "name": "useATokens", "type": "bool"},
        ],
        "name": "Repay",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "collateralAsset", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "debtAsset", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "debtToCover", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "liquidatedCollateralAmount", "type": "uint256"},
            {"indexed": False, "internalType": "address", "name": "liquidator", "type": "address"},
            {"indexed": False, "internalType": "bool", "name": "receiveAToken", "type": "bool"},
        ],
        "name": "LiquidationCall",
        "type": "event",
    },
]

DATA_PROVIDER_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "getAllReservesTokens",
        "outputs": [
            {
                "components": [
                    {"internalType": "string", "name": "symbol", "type": "string"},
                    {"internalType": "address", "name": "tokenAddress", "type": "address"},
                ],
                "internalType": "struct IPoolDataProvider.TokenData[]",
                "name": "",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "asset", "type": "address"},
            {"internalType": "address", "name": "user", "type": "address"},
        ],
        "name": "getUserReserveData",
        "outputs": [
            {"internalType": "uint256", "name": "currentATokenBalance", "type": "uint256"},
            {"internalType": "uint256", "name": "currentStableDebt", "type": "uint256"},
            {"internalType": "uint256", "name": "currentVariableDebt", "type": "uint256"},
            {"internalType": "uint256", "name": "principalStableDebt", "type": "uint256"},
            {"internalType": "uint256", "name": "scaledVariableDebt", "type": "uint256"},
            {"internalType": "uint256", "name": "stableBorrowRate", "type": "uint256"},
            {"internalType": "uint256", "name": "liquidityRate", "type": "uint256"},
            {"internalType": "uint40", "name": "stableRateLastUpdated", "type": "uint40"},
            {"internalType": "bool", "name": "usageAsCollateralEnabled", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]

ORACLE_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"internalType": "address", "name": "asset", "type": "address"}],
        "name": "getAssetPrice",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

MULTICALL3_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "target", "type": "address"},
                    {"internalType": "bool", "name": "allowFailure", "type": "bool"},
                    {"internalType": "bytes", "name": "callData", "type": "bytes"},
                ],
                "internalType": "struct Multicall3.Call3[]",
                "name": "calls",
                "type": "tuple[]",
            }
        ],
        "name": "aggregate3",
        "outputs": [
            {
                "components": [
                    {"internalType": "bool", "name": "success", "type": "bool"},
                    {"internalType": "bytes", "name": "returnData", "type": "bytes"},
                ],
                "internalType": "struct Multicall3.Result[]",
                "name": "returnData",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "payable",
        "type": "function",
    }
]


def _to_bytes(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if data is None:
        return b""
    raw = str(data)
    if raw.startswith("0x"):
        raw = raw[2:]
    return bytes.fromhex(raw)


class ChainClient:
    """
    Read-side access to one RPC provider. All batched reads go through
    Multicall3.aggregate3 with allowFailure=true so one bad account never
    fails a whole chunk; transport errors and timeouts propagate.
    """

    def __init__(
        self,
        *,
        name: str,
        rpc_url: str,
        timeout_seconds: float,
        pool_address: str,
        data_provider_address: str,
        oracle_address: str,
        multicall_address: str,
    ) -> None:
        self.name = name
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self.pool_address = pool_address
        self.data_provider_address = data_provider_address
        self.oracle_address = oracle_address
        self.multicall_address = multicall_address
        self._w3 = None
        self._contracts: dict[str, Any] = {}
        self._calls = 0
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return self._calls

    def _count(self, n: int = 1) -> None:
        with self._lock:
            self._calls += n

    def web3(self):
        if self._w3 is not None:
            return self._w3
        try:
            from web3 import Web3
        except Exception as exc:
            raise RuntimeError("web3 is required for chain access. Install with `pip install web3`.") from exc

        provider = Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.timeout_seconds})
        self._w3 = Web3(provider)
        return self._w3

    def _contract(self, address: str, abi: list[dict[str, Any]]):
        key = normalize_address(address)
        contract = self._contracts.get(key)
        if contract is None:
            from web3 import Web3

            contract = self.web3().eth.contract(address=Web3.to_checksum_address(address), abi=abi)
            self._contracts[key] = contract
        return contract

    @property
    def pool(self):
        return self._contract(self.pool_address, POOL_ABI)

    @property
    def data_provider(self):
        return self._contract(self.data_provider_address, DATA_PROVIDER_ABI)

    @property
    def oracle(self):
        return self._contract(self.oracle_address, ORACLE_ABI)

    def erc20(self, token: str):
        return self._contract(token, ERC20_ABI)

    def aggregate(self, calls: Sequence[tuple[str, bytes]]) -> list[tuple[bool, bytes]]:
        if not calls:
            return []
        from web3 import Web3

        multicall = self._contract(self.multicall_address, MULTICALL3_ABI)
        payload = [(Web3.to_checksum_address(target), True, data) for target, data in calls]
        self._count()
        results = multicall.functions.aggregate3(payload).call()
        return [(bool(success), _to_bytes(data)) for success, data in results]

    def account_data(self, account: str) -> AccountData:
        from web3 import Web3

        self._count()
        values = self.pool.functions.getUserAccountData(Web3.to_checksum_address(account)).call()
        return AccountData.from_values(list(values))

    def account_data_batch(self, accounts: Iterable[str]) -> dict[str, AccountData]:
        from web3 import Web3

        ordered = [normalize_address(a) for a in accounts]
        if not ordered:
            return {}
        pool = self.pool
        calls = [
            (
                self.pool_address,
                _to_bytes(pool.functions.getUserAccountData(Web3.to_checksum_address(acct))._encode_transaction_data()),
            )
            for acct in ordered
        ]
        out: dict[str, AccountData] = {}
        for account, (success, data) in zip(ordered, self.aggregate(calls)):
            if not success or not data:
                continue
            try:
                out[account] = AccountData.from_values(list(decode(ACCOUNT_DATA_TYPES, data)))
            except Exception as exc:
                LOGGER.debug("account_decode_failed provider=%s account=%s error=%s", self.name, account, exc)
        return out

    def reserve_tokens(self) -> list[ReserveToken]:
        self._count()
        rows = self.data_provider.functions.getAllReservesTokens().call()
        return [ReserveToken(symbol=str(symbol), address=normalize_address(address)) for symbol, address in rows]

    def user_asset_snapshots(self, account: str, reserves: Sequence[ReserveToken]) -> list[AssetSnapshot]:
        from web3 import Web3

        if not reserves:
            return []
        user = Web3.to_checksum_address(account)
        provider = self.data_provider
        oracle = self.oracle
        calls: list[tuple[str, bytes]] = []
        for reserve in reserves:
            asset = Web3.to_checksum_address(reserve.address)
            calls.append((reserve.address, _to_bytes(self.erc20(reserve.address).functions.decimals()._encode_transaction_data())))
            calls.append((self.oracle_address, _to_bytes(oracle.functions.getAssetPrice(asset)._encode_transaction_data())))
            calls.append(
                (
                    self.data_provider_address,
                    _to_bytes(provider.functions.getUserReserveData(asset, user)._encode_transaction_data()),
                )
            )
        results = self.aggregate(calls)
        snapshots: list[AssetSnapshot] = []
        for idx, reserve in enumerate(reserves):
            decimals_res, price_res, reserve_res = results[idx * 3 : idx * 3 + 3]
            if not (decimals_res[0] and price_res[0] and reserve_res[0]):
                continue
            try:
                decimals = int(decode(["uint8"], decimals_res[1])[0])
                price = int(decode(["uint256"], price_res[1])[0])
                values = decode(USER_RESERVE_TYPES, reserve_res[1])
            except Exception as exc:
                LOGGER.debug("reserve_decode_failed asset=%s account=%s error=%s", reserve.address, account, exc)
                continue
            snapshots.append(
                AssetSnapshot(
                    asset=reserve.address,
                    symbol=reserve.symbol,
                    decimals=decimals,
                    price=price,
                    collateral_balance=int(values[0]),
                    debt_balance=int(values[1]) + int(values[2]),
                    collateral_enabled=bool(values[8]),
                )
            )
        return snapshots

    def asset_price(self, asset: str) -> int:
        from web3 import Web3

        self._count()
        return int(self.oracle.functions.getAssetPrice(Web3.to_checksum_address(asset)).call())

    def token_decimals(self, token: str) -> int:
        self._count()
        return int(self.erc20(token).functions.decimals().call())

    def token_balance(self, token: str, holder: str) -> int:
        from web3 import Web3

        self._count()
        return int(self.erc20(token).functions.balanceOf(Web3.to_checksum_address(holder)).call())

    def base_fee(self) -> int:
        self._count()
        block = self.web3().eth.get_block("latest")
        return int(block.get("baseFeePerGas", 0) or 0)

    def gas_price(self) -> int:
        self._count()
        return int(self.web3().eth.gas_price)

    def block_number(self) -> int:
        self._count()
        return int(self.web3().eth.block_number)

    def pool_events(self, event_name: str, from_block: int, to_block: int) -> list[dict[str, Any]]:
        self._count()
        event = getattr(self.pool.events, event_name)()
        logs = event.get_logs(from_block=from_block, to_block=to_block)
        return [
            {
                "event": event_name,
                "block_number": int(log["blockNumber"]),
                "args": {key: value for key, value in dict(log["args"]).items()},
            }
            for log in logs
        ]
