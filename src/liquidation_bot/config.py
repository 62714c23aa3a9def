from __future__ import annotations

from dataclasses import dataclass
import json
import os


BASE_CHAIN_ID = 8453

# Reserve tokens whose flash-loan liquidity is re-evaluated periodically (Base mainnet).
MONITORED_TOKENS = (
    "0x4200000000000000000000000000000000000006",  # WETH
    "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",  # USDC
    "0xd9aAEc86B65D86f6A7B5B1b0c42FFA531710b6CA",  # USDbC
    "0xcbB7C0000aB88B473b1f5aFd9ef808440eed33Bf",  # cbBTC
    "0x60a3E35Cc302bFA44Cb288Bc5a4F316Fdb1adb42",  # EURC
    "0x04C0599Ae5A44757c0af6F9eC3b93da8976c150A",  # weETH
    "0x2Ae3F1Ec7F1F5012CFEab0185bfc7aa3cf0DEc22",  # cbETH
    "0x6Bb7a212910682DCFdbd5BCBb3e28FB4E8da10Ee",  # GHO
    "0xc1CBa3fCea344f92D9239c08C0568f6F2F0ee452",  # wstETH
    "0x63706e401c06ac8513145b7687A14804d17f814b",  # AAVE
    "0xecAc9C5F704e954931349Da37F60E39f515c11c1",  # LBTC
    "0x236aa50979D5f3De3Bd1Eeb40E81137F22ab794b",  # tBTC
    "0x2416092f143378750bb29b79eD961ab195CcEea5",  # ezETH
    "0xEDfa23602D0EC14714057867A78d01e94176BEA0",  # wrsETH
)

# token -> (source id, pool address, fee bps) used when Balancer liquidity is too thin.
DEFAULT_FLASH_FALLBACKS: dict[str, tuple[int, str, int]] = {
    "0x60a3e35cc302bfa44cb288bc5a4f316fdb1adb42": (1, "0x7279c08A36333e12c3Fc81747963264c100D66fB", 5),
}

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class BotConfig:
    mode: str
    chain_id: int
    premium_rpc_url: str
    secondary_rpc_url: str
    public_rpc_url: str
    premium_timeout_seconds: float
    background_timeout_seconds: float
    premium_calls_per_second: float
    secondary_calls_per_second: float
    public_calls_per_second: float

    pool_address: str
    data_provider_address: str
    oracle_address: str
    multicall_address: str
    balancer_vault_address: str
    liquidator_address: str
    private_key: str

    promote_hf: float
    demote_hf: float
    liquidation_hf: float
    full_close_hf: float
    min_debt_usd: float
    priority_min_debt_usd: float
    direct_execution_min_usd: float
    track_min_debt_usd: float
    min_profit_usd: float
    enforce_min_profit: bool
    liquidation_bonus_bps: int
    gas_cost_estimate_usd: float

    tier1_size: int
    tier2_size: int
    tier1_interval_seconds: float
    tier2_interval_seconds: float
    tier3_interval_seconds: float
    background_chunk_size: int
    audit_chunk_size: int
    seed_chunk_size: int

    batch_size: int
    max_batch_size: int
    batch_timeout_seconds: float
    batch_poll_seconds: float
    execution_sweep_seconds: float
    stats_interval_seconds: float
    execution_workers: int
    receipt_timeout_seconds: float

    gas_multiplier: float
    gas_floor_gwei: float
    gas_ceiling_gwei: float
    force_gas_multiplier: float
    gas_refresh_seconds: float
    gas_limit_multiplier: float

    reserve_cache_seconds: float
    liquidity_refresh_seconds: float
    balancer_min_liquidity_usd: float
    aave_flash_fallback: bool
    aave_flash_fee_bps: int
    monitored_tokens: tuple[str, ...]
    flash_fallbacks: dict[str, tuple[int, str, int]]

    tracker_interval_seconds: float
    tracker_max_block_range: int

    hot_list_path: str
    cold_list_path: str
    seed_list_path: str
    database_path: str

    log_level: str

    @property
    def live_mode(self) -> bool:
        return self.mode.lower() == "live"

    @property
    def paper_mode(self) -> bool:
        return not self.live_mode

    def missing_required(self) -> list[str]:
        missing: list[str] = []
        if not self.liquidator_address:
            missing.append("FLASH_LIQUIDATOR_ADDRESS")
        if self.live_mode and not self.private_key:
            missing.append("PRIVATE_KEY")
        if not self.premium_rpc_url:
            missing.append("BASE_RPC_URL")
        return missing


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUE_VALUES


def _parse_fallbacks(raw: str) -> dict[str, tuple[int, str, int]]:
    """
    FLASH_FALLBACK_POOLS is a JSON object:
      {"0xtoken": {"source": 1, "pool": "0xpool", "fee_bps": 5}}
    """
    if not raw.strip():
        return dict(DEFAULT_FLASH_FALLBACKS)
    payload = json.loads(raw)
    out: dict[str, tuple[int, str, int]] = {}
    for token, entry in payload.items():
        out[str(token).lower()] = (
            int(entry.get("source", 1)),
            str(entry.get("pool", "")),
            int(entry.get("fee_bps", 5)),
        )
    return out


def validate_config(config: BotConfig) -> BotConfig:
    if config.demote_hf <= config.promote_hf:
        raise ValueError(
            f"demotion threshold {config.demote_hf} must exceed promotion threshold {config.promote_hf}"
        )
    if config.promote_hf <= config.liquidation_hf:
        raise ValueError(
            f"promotion threshold {config.promote_hf} must exceed liquidation threshold {config.liquidation_hf}"
        )
    if config.batch_size <= 0 or config.max_batch_size < config.batch_size:
        raise ValueError("batch sizes must satisfy 0 < batch_size <= max_batch_size")
    if config.gas_ceiling_gwei < config.gas_floor_gwei:
        raise ValueError("gas ceiling must not be below the gas floor")
    return config


def load_config() -> BotConfig:
    tokens_raw = os.getenv("MONITORED_TOKENS", "").strip()
    monitored = tuple(t.strip() for t in tokens_raw.split(",") if t.strip()) if tokens_raw else MONITORED_TOKENS
    premium_url = os.getenv("BASE_RPC_URL", "").strip()
    config = BotConfig(
        mode=os.getenv("BOT_MODE", "paper").strip().lower(),
        chain_id=BASE_CHAIN_ID,
        premium_rpc_url=premium_url,
        secondary_rpc_url=os.getenv("SECONDARY_RPC_URL", "") or premium_url,
        public_rpc_url=os.getenv("RPC_URL_PUBLIC", "https://base-rpc.publicnode.com"),
        premium_timeout_seconds=_env_float("PREMIUM_TIMEOUT_SECONDS", 3.0),
        background_timeout_seconds=_env_float("BACKGROUND_TIMEOUT_SECONDS", 10.0),
        premium_calls_per_second=_env_float("PREMIUM_CALLS_PER_SECOND", 10.0),
        secondary_calls_per_second=_env_float("SECONDARY_CALLS_PER_SECOND", 5.0),
        public_calls_per_second=_env_float("PUBLIC_CALLS_PER_SECOND", 2.0),
        pool_address="0xA238Dd80C259a72e81d7e4664a9801593F98d1c5",
        data_provider_address="0x2d8A3C5677189723C4cB8873CfC9C8976FDF38Ac",
        oracle_address="0x2Cc0Fc26eD4563A5ce5e8bdcfe1A2878676Ae156",
        multicall_address="0xcA11bde05977b3631167028862bE2a173976CA11",
        balancer_vault_address="0xBA12222222228d8Ba445958a75a0704d566BF2C8",
        liquidator_address=os.getenv("FLASH_LIQUIDATOR_ADDRESS", "").strip(),
        private_key=os.getenv("PRIVATE_KEY", "").strip(),
        promote_hf=_env_float("PROMOTE_HF", 1.5),
        demote_hf=_env_float("DEMOTE_HF", 2.0),
        liquidation_hf=1.0,
        full_close_hf=0.95,
        min_debt_usd=0.000001,
        priority_min_debt_usd=_env_float("PRIORITY_MIN_DEBT_USD", 15.0),
        direct_execution_min_usd=_env_float("DIRECT_EXECUTION_MIN_USD", 15.0),
        track_min_debt_usd=_env_float("TRACK_MIN_DEBT_USD", 50.0),
        min_profit_usd=_env_float("MIN_PROFIT_USD", 0.10),
        enforce_min_profit=_env_bool("ENFORCE_MIN_PROFIT", True),
        liquidation_bonus_bps=500,
        gas_cost_estimate_usd=0.01,
        tier1_size=_env_int("TIER1_SIZE", 23),
        tier2_size=_env_int("TIER2_SIZE", 500),
        tier1_interval_seconds=1.0,
        tier2_interval_seconds=5.0,
        tier3_interval_seconds=_env_float("AUDIT_INTERVAL_SECONDS", 300.0),
        background_chunk_size=100,
        audit_chunk_size=100,
        seed_chunk_size=500,
        batch_size=_env_int("BATCH_SIZE", 5),
        max_batch_size=_env_int("MAX_BATCH_SIZE", 10),
        batch_timeout_seconds=_env_float("BATCH_TIMEOUT_SECONDS", 30.0),
        batch_poll_seconds=1.0,
        execution_sweep_seconds=10.0,
        stats_interval_seconds=60.0,
        execution_workers=4,
        receipt_timeout_seconds=30.0,
        gas_multiplier=_env_float("GAS_MULTIPLIER", 1.05),
        gas_floor_gwei=_env_float("GAS_FLOOR_GWEI", 0.0005),
        gas_ceiling_gwei=_env_float("GAS_CEILING_GWEI", 5.0),
        force_gas_multiplier=1.5,
        gas_refresh_seconds=2.0,
        gas_limit_multiplier=1.20,
        reserve_cache_seconds=3600.0,
        liquidity_refresh_seconds=300.0,
        balancer_min_liquidity_usd=_env_float("BALANCER_MIN_LIQUIDITY_USD", 10_000.0),
        aave_flash_fallback=_env_bool("AAVE_FLASH_FALLBACK", True),
        aave_flash_fee_bps=9,
        monitored_tokens=monitored,
        flash_fallbacks=_parse_fallbacks(os.getenv("FLASH_FALLBACK_POOLS", "")),
        tracker_interval_seconds=_env_float("TRACKER_INTERVAL_SECONDS", 10.0),
        tracker_max_block_range=_env_int("TRACKER_MAX_BLOCK_RANGE", 2000),
        hot_list_path=os.getenv("HOT_LIST_PATH", "data/kill_list.json"),
        cold_list_path=os.getenv("COLD_LIST_PATH", "data/safe_users.json"),
        seed_list_path=os.getenv("SEED_LIST_PATH", "data/active_users.json"),
        database_path=os.getenv("BOT_DB_PATH", "data/liquidations.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )
    return validate_config(config)
