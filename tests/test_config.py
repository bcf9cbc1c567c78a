"""Tests for BotConfig: env loading, parsing, validation."""

from __future__ import annotations

import pytest

from polyarb.config import (
    BotConfig,
    ConfigError,
    parse_list,
    parse_monitor_mode,
    parse_strategies,
)
from polyarb.models.opportunity import MonitorMode, Strategy

TEST_KEY = "0x" + "ab" * 32

_ENV_VARS = [
    "POLYMARKET_PRIVATE_KEY",
    "POLYMARKET_FUNDER",
    "POLYARB_MIN_PROFIT_THRESHOLD",
    "POLYARB_MAX_POSITION_SIZE",
    "POLYARB_MIN_POSITION_SIZE",
    "POLYARB_ENABLED_STRATEGIES",
    "POLYARB_MONITOR_MODE",
    "POLYARB_MONITOR_CATEGORIES",
    "POLYARB_CUSTOM_MARKET_IDS",
    "POLYARB_DRY_RUN",
    "POLYARB_ENABLE_RISK_MANAGEMENT",
    "POLYARB_SCAN_INTERVAL",
    "POLYARB_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_from_env_defaults(self):
        config = BotConfig.from_env()
        assert config.dry_run is True
        assert config.min_profit_threshold == 2.0
        assert config.max_position_size == 100.0
        assert config.min_position_size == 10.0
        assert config.max_slippage == 1.0
        assert config.daily_max_loss == 50.0
        assert config.enabled_strategies == [Strategy.PRICE_IMBALANCE]
        assert config.monitor_mode is MonitorMode.CATEGORY
        assert config.monitor_categories == ["crypto", "politics"]
        assert config.min_liquidity == 1000.0
        assert config.max_concurrent_positions == 5
        assert config.scan_interval == 10.0
        assert config.market_refresh_interval == 1800.0
        config.validate()

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("POLYARB_DRY_RUN", "false")
        monkeypatch.setenv("POLYMARKET_PRIVATE_KEY", TEST_KEY)
        monkeypatch.setenv("POLYARB_ENABLED_STRATEGIES", "time_based, CROSS_MARKET,bogus")
        monkeypatch.setenv("POLYARB_MONITOR_MODE", "custom")
        monkeypatch.setenv("POLYARB_CUSTOM_MARKET_IDS", "0xa,0xb,0xa")
        monkeypatch.setenv("POLYARB_ENABLE_RISK_MANAGEMENT", "0")
        monkeypatch.setenv("POLYARB_LOG_LEVEL", "debug")
        config = BotConfig.from_env()
        assert config.dry_run is False
        assert config.enabled_strategies == [Strategy.TIME_BASED, Strategy.CROSS_MARKET]
        assert config.monitor_mode is MonitorMode.CUSTOM
        assert config.custom_market_ids == ["0xa", "0xb"]
        assert config.enable_risk_management is False
        assert config.log_level == "DEBUG"
        config.validate()


class TestParsing:
    def test_parse_list(self):
        assert parse_list(" a, b ,,a ,c") == ["a", "b", "c"]
        assert parse_list(None) == []

    def test_parse_strategies_ignores_unknown(self):
        assert parse_strategies("PRICE_IMBALANCE,nope,price_imbalance") == [Strategy.PRICE_IMBALANCE]

    def test_unknown_monitor_mode_falls_back(self):
        assert parse_monitor_mode("everything") is MonitorMode.CATEGORY
        assert parse_monitor_mode("all") is MonitorMode.ALL


class TestValidate:
    def test_live_requires_key(self):
        with pytest.raises(ConfigError) as exc_info:
            BotConfig(dry_run=False).validate()
        assert any("PRIVATE_KEY is required" in e for e in exc_info.value.errors)

    @pytest.mark.parametrize("key", ["0x1234", "zz" * 32, "ab" * 33])
    def test_malformed_key(self, key):
        with pytest.raises(ConfigError):
            BotConfig(private_key=key).validate()

    def test_key_without_prefix_ok(self):
        BotConfig(private_key="ab" * 32).validate()

    def test_collects_every_error(self):
        config = BotConfig(
            min_profit_threshold=0,
            min_position_size=200,
            max_slippage=150,
            enabled_strategies=[],
            monitor_categories=[],
        )
        with pytest.raises(ConfigError) as exc_info:
            config.validate()
        errors = exc_info.value.errors
        assert len(errors) == 5
        assert "min_position_size" in str(exc_info.value)

    def test_custom_mode_requires_ids(self):
        with pytest.raises(ConfigError):
            BotConfig(monitor_mode=MonitorMode.CUSTOM).validate()


class TestWalletAddress:
    def test_funder_preferred(self):
        config = BotConfig(private_key=TEST_KEY, funder="0xfunder")
        assert config.wallet_address == "0xfunder"

    def test_derived_from_key(self):
        address = BotConfig(private_key=TEST_KEY).wallet_address
        assert address.startswith("0x")
        assert len(address) == 42

    def test_none_without_key(self):
        assert BotConfig().wallet_address is None


class TestSummary:
    def test_summary_hides_secrets(self):
        config = BotConfig(private_key=TEST_KEY)
        text = config.summary()
        assert "DRY RUN" in text
        assert "crypto, politics" in text
        assert TEST_KEY not in text
