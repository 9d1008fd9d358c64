"""
Tests for environment loading and validation
"""

from decimal import Decimal

import pytest

from flasharb.config import Settings, load_settings, validate_settings
from flasharb.exceptions import ConfigError
from flasharb.pairs import TOKENS, USDC, DAI, WBTC

ENV_VARS = [
    "RPC_URL", "CHAIN_ID", "PRIVATE_KEY", "ARB_CONTRACT_ADDRESS", "FLASH_POOL_ADDRESS",
    "DEFAULT_BASE_AMOUNT", "BASE_AMOUNTS", "MIN_PROFIT_USD", "PREMIUM_BPS",
    "SLIPPAGE_BUFFER_BPS", "LIQUIDITY_SAFETY_BPS", "SCAN_INTERVAL_SECONDS",
    "COOLDOWN_SECONDS", "MAX_CONSECUTIVE_FAILURES", "FAILURE_PAUSE_SECONDS",
    "QUOTE_TIMEOUT_SECONDS", "RETRY_COUNT", "RETRY_DELAY_SECONDS", "MAX_WORKERS",
    "ENABLE_FALLBACK_ESTIMATES", "SCAN_REVERSE", "GAS_LIMIT",
    "CONFIRM_TIMEOUT_SECONDS", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores the original state, including
    # anything load_dotenv writes during a test
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def env_file(tmp_path):
    def _write(text):
        path = tmp_path / ".env"
        path.write_text(text)
        return path
    return _write


class TestLoadSettings:
    def test_defaults(self, env_file):
        settings = load_settings(env_file("RPC_URL=http://localhost:8545\n"))

        assert settings.rpc_url == "http://localhost:8545"
        assert settings.chain_id == 137
        assert settings.premium_bps == 9
        assert settings.slippage_bps == 200
        assert settings.min_profit_usd == Decimal("1")
        assert settings.scan_interval == 10.0
        assert settings.cooldown == 30.0
        assert settings.enable_fallback_estimates is False
        assert len(settings.routes) == 7
        assert all(route.is_closed for route in settings.routes)

    def test_values_from_env_file(self, env_file):
        settings = load_settings(env_file(
            "RPC_URL=http://node:8545\n"
            "PREMIUM_BPS=5\n"
            "MIN_PROFIT_USD=2.5\n"
            "ENABLE_FALLBACK_ESTIMATES=true\n"
            "BASE_AMOUNTS=USDC=5000000,DAI=5000000000000000000\n"
        ))

        assert settings.premium_bps == 5
        assert settings.min_profit_usd == Decimal("2.5")
        assert settings.enable_fallback_estimates is True
        assert settings.base_amounts[USDC] == 5_000_000

    def test_process_env_wins_over_file(self, env_file, monkeypatch):
        monkeypatch.setenv("PREMIUM_BPS", "7")
        settings = load_settings(env_file("RPC_URL=http://node:8545\nPREMIUM_BPS=5\n"))
        assert settings.premium_bps == 7

    def test_keyword_overrides_win(self, env_file):
        settings = load_settings(env_file("RPC_URL=http://node:8545\n"), default_base_amount=5)
        assert settings.default_base_amount == 5

    def test_missing_rpc_url(self, env_file):
        with pytest.raises(ConfigError, match="RPC_URL"):
            load_settings(env_file("PREMIUM_BPS=9\n"))

    def test_missing_explicit_env_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.env")

    def test_bad_integer(self, env_file):
        with pytest.raises(ConfigError, match="PREMIUM_BPS"):
            load_settings(env_file("RPC_URL=http://node:8545\nPREMIUM_BPS=lots\n"))

    def test_bad_contract_address(self, env_file):
        with pytest.raises(ConfigError, match="ARB_CONTRACT_ADDRESS"):
            load_settings(env_file("RPC_URL=http://node:8545\nARB_CONTRACT_ADDRESS=0x123\n"))

    def test_unknown_base_amount_token(self, env_file):
        with pytest.raises(ConfigError, match="FOO"):
            load_settings(env_file("RPC_URL=http://node:8545\nBASE_AMOUNTS=FOO=1\n"))


class TestSettings:
    def test_base_amount_scales_with_decimals(self):
        settings = Settings(rpc_url="http://x")

        assert settings.base_amount_for(TOKENS[USDC]) == 100_000_000
        assert settings.base_amount_for(TOKENS[DAI]) == 100 * 10 ** 18
        assert settings.base_amount_for(TOKENS[WBTC]) == 100 * 10 ** 8

    def test_explicit_base_amount(self):
        settings = Settings(rpc_url="http://x", base_amounts={USDC: 5})
        assert settings.base_amount_for(TOKENS[USDC]) == 5

    def test_require_signer(self):
        with pytest.raises(ConfigError, match="PRIVATE_KEY"):
            Settings(rpc_url="http://x").require_signer()
        with pytest.raises(ConfigError, match="ARB_CONTRACT_ADDRESS"):
            Settings(rpc_url="http://x", private_key="0x01").require_signer()

    def test_validation_rejects_bad_safety_margin(self):
        with pytest.raises(ConfigError):
            validate_settings(Settings(rpc_url="http://x", liquidity_safety_bps=0))

    def test_validation_rejects_open_route(self, usdc, weth):
        from flasharb.pairs import Route, VENUES
        open_route = Route(tokens=(usdc, weth), venues=(VENUES["quickswap"],))
        with pytest.raises(ConfigError, match="does not return"):
            validate_settings(Settings(rpc_url="http://x", routes=[open_route]))
