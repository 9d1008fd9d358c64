# flasharb/config.py
"""
Arbitrage Engine Configuration
Reads the environment (optionally seeded from a .env file) once at startup
and freezes it into a Settings object that is passed to every component
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional, Union

from dotenv import load_dotenv
from web3 import Web3

from flasharb.exceptions import ConfigError
from flasharb.pairs import (
    TOKENS, VENUES, ROUTE_TABLE, HUB_TOKEN, AAVE_V3_POOL,
    Token, Venue, Route, build_routes,
)

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_ENV_PATH = BASE_DIR / "config" / ".env"

# Bot modes
MODE_SCAN = "scan"          # Observe only
MODE_SIMULATE = "simulate"  # Observe + dry-run the contract call
MODE_EXECUTE = "execute"    # Real submission
MODES = (MODE_SCAN, MODE_SIMULATE, MODE_EXECUTE)


@dataclass(frozen=True)
class Settings:
    # Chain
    rpc_url: str
    chain_id: int = 137
    private_key: Optional[str] = field(default=None, repr=False)
    arb_contract: Optional[str] = None
    flash_pool: str = AAVE_V3_POOL

    # Trading parameters
    default_base_amount: int = 100_000_000   # 100 units of a 6-decimal token
    base_amounts: Dict[str, int] = field(default_factory=dict, compare=False, hash=False)
    min_profit_usd: Decimal = Decimal("1")
    premium_bps: int = 9
    slippage_bps: int = 200
    liquidity_safety_bps: int = 5000          # Borrow at most 50% of pool liquidity

    # Scheduling
    scan_interval: float = 10.0
    cooldown: float = 30.0
    max_consecutive_failures: int = 5
    failure_pause: float = 60.0

    # Venue calls
    quote_timeout: float = 10.0
    retry_count: int = 3
    retry_delay: float = 1.0
    max_workers: int = 4
    enable_fallback_estimates: bool = False
    scan_reverse: bool = True

    # Execution
    gas_limit: int = 500_000
    confirm_timeout: float = 120.0

    # Registry
    tokens: Dict[str, Token] = field(default_factory=lambda: dict(TOKENS), compare=False, hash=False)
    venues: Dict[str, Venue] = field(default_factory=lambda: dict(VENUES), compare=False, hash=False)
    routes: List[Route] = field(default_factory=list, compare=False, hash=False)
    hub_token: Optional[str] = HUB_TOKEN

    log_level: str = "INFO"

    def base_amount_for(self, token: Token) -> int:
        """
        Base trade amount in the token's smallest unit. Falls back to the
        default amount (expressed in 6 decimals) rescaled to the token
        """
        if token.address in self.base_amounts:
            return self.base_amounts[token.address]
        if token.decimals >= 6:
            return self.default_base_amount * 10 ** (token.decimals - 6)
        return self.default_base_amount // 10 ** (6 - token.decimals)

    def require_signer(self):
        """Simulation and execution need a key and a deployed contract"""
        if not self.private_key:
            raise ConfigError("PRIVATE_KEY not set in environment")
        if not self.arb_contract:
            raise ConfigError("ARB_CONTRACT_ADDRESS not set in environment")


# -----------------------------
# Environment parsing helpers
# -----------------------------

def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.replace("_", ""))
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ConfigError(f"{name} must be a decimal, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_address(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if not raw:
        return None
    if not Web3.is_address(raw):
        raise ConfigError(f"{name} is not a valid address: {raw!r}")
    return Web3.to_checksum_address(raw)


def _parse_base_amounts(raw: Optional[str], tokens: Dict[str, Token]) -> Dict[str, int]:
    """BASE_AMOUNTS="USDC=100000000,DAI=100000000000000000000" (smallest units)"""
    if not raw:
        return {}
    by_symbol = {t.symbol.upper(): t.address for t in tokens.values()}
    amounts = {}
    for item in raw.split(","):
        if not item.strip():
            continue
        symbol, _, value = item.partition("=")
        address = by_symbol.get(symbol.strip().upper())
        if address is None:
            raise ConfigError(f"BASE_AMOUNTS references unknown token {symbol.strip()!r}")
        try:
            amounts[address] = int(value.strip())
        except ValueError:
            raise ConfigError(f"BASE_AMOUNTS value for {symbol.strip()} must be an integer")
    return amounts


def validate_settings(settings: Settings) -> Settings:
    if not settings.rpc_url:
        raise ConfigError("RPC_URL not set in environment")
    if settings.default_base_amount <= 0:
        raise ConfigError("DEFAULT_BASE_AMOUNT must be positive")
    if settings.premium_bps < 0 or settings.slippage_bps < 0:
        raise ConfigError("PREMIUM_BPS and SLIPPAGE_BUFFER_BPS must not be negative")
    if settings.min_profit_usd < 0:
        raise ConfigError("MIN_PROFIT_USD must not be negative")
    if not 0 < settings.liquidity_safety_bps <= 10000:
        raise ConfigError("LIQUIDITY_SAFETY_BPS must be in (0, 10000]")
    if settings.retry_count < 1:
        raise ConfigError("RETRY_COUNT must be at least 1")
    if settings.quote_timeout <= 0:
        raise ConfigError("QUOTE_TIMEOUT_SECONDS must be positive")
    if settings.scan_interval < 0 or settings.cooldown < 0:
        raise ConfigError("Scan interval and cooldown must not be negative")
    for route in settings.routes:
        if not route.is_closed:
            raise ConfigError(f"Route {route.label} does not return to its start token")
    return settings


def load_settings(env_path: Union[str, Path, None] = None, **overrides) -> Settings:
    """
    Build Settings from the environment. Values from env_path (or
    config/.env when present) never override variables already set.
    Keyword overrides win over both.
    """
    path = Path(env_path) if env_path else DEFAULT_ENV_PATH
    if env_path and not path.exists():
        raise ConfigError(f".env file not found at {path}")
    if path.exists():
        load_dotenv(path)

    tokens = dict(TOKENS)
    venues = dict(VENUES)

    try:
        routes = build_routes(ROUTE_TABLE, tokens, venues)
    except (KeyError, ValueError) as e:
        raise ConfigError(f"Invalid route table: {e}")

    values = dict(
        rpc_url=os.getenv("RPC_URL", ""),
        chain_id=_env_int("CHAIN_ID", 137),
        private_key=os.getenv("PRIVATE_KEY") or None,
        arb_contract=_env_address("ARB_CONTRACT_ADDRESS"),
        flash_pool=_env_address("FLASH_POOL_ADDRESS") or AAVE_V3_POOL,
        default_base_amount=_env_int("DEFAULT_BASE_AMOUNT", 100_000_000),
        base_amounts=_parse_base_amounts(os.getenv("BASE_AMOUNTS"), tokens),
        min_profit_usd=_env_decimal("MIN_PROFIT_USD", Decimal("1")),
        premium_bps=_env_int("PREMIUM_BPS", 9),
        slippage_bps=_env_int("SLIPPAGE_BUFFER_BPS", 200),
        liquidity_safety_bps=_env_int("LIQUIDITY_SAFETY_BPS", 5000),
        scan_interval=_env_float("SCAN_INTERVAL_SECONDS", 10.0),
        cooldown=_env_float("COOLDOWN_SECONDS", 30.0),
        max_consecutive_failures=_env_int("MAX_CONSECUTIVE_FAILURES", 5),
        failure_pause=_env_float("FAILURE_PAUSE_SECONDS", 60.0),
        quote_timeout=_env_float("QUOTE_TIMEOUT_SECONDS", 10.0),
        retry_count=_env_int("RETRY_COUNT", 3),
        retry_delay=_env_float("RETRY_DELAY_SECONDS", 1.0),
        max_workers=_env_int("MAX_WORKERS", 4),
        enable_fallback_estimates=_env_bool("ENABLE_FALLBACK_ESTIMATES", False),
        scan_reverse=_env_bool("SCAN_REVERSE", True),
        gas_limit=_env_int("GAS_LIMIT", 500_000),
        confirm_timeout=_env_float("CONFIRM_TIMEOUT_SECONDS", 120.0),
        tokens=tokens,
        venues=venues,
        routes=routes,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    values.update(overrides)

    return validate_settings(Settings(**values))
