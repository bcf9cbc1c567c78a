"""Bot configuration: environment-based settings and validation."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Optional

from eth_account import Account

from polyarb.models.opportunity import MonitorMode, Strategy

CLOB_API_URL = "https://clob.polymarket.com"
GAMMA_API_URL = "https://gamma-api.polymarket.com"

_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
_FALSE_VALUES = ("false", "0", "no", "off")


class ConfigError(Exception):
    """Invalid configuration. Fatal at startup."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration:\n  - " + "\n  - ".join(self.errors))


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_list(value: str | None) -> list[str]:
    """Comma-separated -> de-duplicated list, order preserved."""
    items: list[str] = []
    for part in (value or "").split(","):
        part = part.strip()
        if part and part not in items:
            items.append(part)
    return items


def parse_strategies(value: str | None) -> list[Strategy]:
    """Strategy names -> enums. Unknown names are ignored."""
    strategies: list[Strategy] = []
    for name in parse_list(value):
        try:
            strategy = Strategy(name.upper())
        except ValueError:
            continue
        if strategy not in strategies:
            strategies.append(strategy)
    return strategies


def parse_monitor_mode(value: str | None) -> MonitorMode:
    try:
        return MonitorMode((value or "").strip().upper())
    except ValueError:
        return MonitorMode.CATEGORY


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() not in _FALSE_VALUES


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.environ.get(name, default))


# ---------------------------------------------------------------------------
# BotConfig
# ---------------------------------------------------------------------------


@dataclass
class BotConfig:
    """봇 전체 설정. 환경변수 또는 기본값."""

    # Wallet
    private_key: str = ""
    funder: str = ""

    # Endpoints
    clob_api_url: str = CLOB_API_URL
    gamma_api_url: str = GAMMA_API_URL

    # Trading
    min_profit_threshold: float = 2.0   # percent
    max_position_size: float = 100.0    # USDC
    min_position_size: float = 10.0     # USDC
    max_slippage: float = 1.0           # percent
    daily_max_loss: float = 50.0        # USDC
    enabled_strategies: list[Strategy] = field(
        default_factory=lambda: [Strategy.PRICE_IMBALANCE]
    )

    # Market selection
    monitor_mode: MonitorMode = MonitorMode.CATEGORY
    monitor_categories: list[str] = field(default_factory=lambda: ["crypto", "politics"])
    custom_market_ids: list[str] = field(default_factory=list)
    min_liquidity: float = 1000.0
    max_markets: int = 300

    # Risk
    enable_risk_management: bool = True
    max_concurrent_positions: int = 5

    # Timing
    order_timeout: float = 30.0             # seconds
    api_timeout: float = 10.0               # seconds
    scan_interval: float = 10.0             # seconds
    market_refresh_interval: float = 1800.0  # seconds

    # Mode
    dry_run: bool = True
    paper_balance: float = 1000.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> BotConfig:
        """환경변수에서 설정 로드. 없으면 안전한 기본값."""
        return cls(
            private_key=os.environ.get("POLYMARKET_PRIVATE_KEY", "").strip(),
            funder=os.environ.get("POLYMARKET_FUNDER", "").strip(),
            clob_api_url=os.environ.get("POLYARB_CLOB_API_URL", CLOB_API_URL),
            gamma_api_url=os.environ.get("POLYARB_GAMMA_API_URL", GAMMA_API_URL),
            min_profit_threshold=_env_float("POLYARB_MIN_PROFIT_THRESHOLD", "2.0"),
            max_position_size=_env_float("POLYARB_MAX_POSITION_SIZE", "100"),
            min_position_size=_env_float("POLYARB_MIN_POSITION_SIZE", "10"),
            max_slippage=_env_float("POLYARB_MAX_SLIPPAGE", "1.0"),
            daily_max_loss=_env_float("POLYARB_DAILY_MAX_LOSS", "50"),
            enabled_strategies=parse_strategies(
                os.environ.get("POLYARB_ENABLED_STRATEGIES", "PRICE_IMBALANCE")
            ),
            monitor_mode=parse_monitor_mode(os.environ.get("POLYARB_MONITOR_MODE", "CATEGORY")),
            monitor_categories=parse_list(
                os.environ.get("POLYARB_MONITOR_CATEGORIES", "crypto,politics")
            ),
            custom_market_ids=parse_list(os.environ.get("POLYARB_CUSTOM_MARKET_IDS", "")),
            min_liquidity=_env_float("POLYARB_MIN_LIQUIDITY", "1000"),
            max_markets=_env_int("POLYARB_MAX_MARKETS", "300"),
            enable_risk_management=_env_bool("POLYARB_ENABLE_RISK_MANAGEMENT", "true"),
            max_concurrent_positions=_env_int("POLYARB_MAX_CONCURRENT_POSITIONS", "5"),
            order_timeout=_env_float("POLYARB_ORDER_TIMEOUT", "30"),
            api_timeout=_env_float("POLYARB_API_TIMEOUT", "10"),
            scan_interval=_env_float("POLYARB_SCAN_INTERVAL", "10"),
            market_refresh_interval=_env_float("POLYARB_MARKET_REFRESH_INTERVAL", "1800"),
            dry_run=_env_bool("POLYARB_DRY_RUN", "true"),
            paper_balance=_env_float("POLYARB_PAPER_BALANCE", "1000"),
            log_level=os.environ.get("POLYARB_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def wallet_address(self) -> Optional[str]:
        """Funder (proxy) address, else the address derived from the key."""
        if self.funder:
            return self.funder
        if self.private_key and _PRIVATE_KEY_RE.match(self.private_key):
            return Account.from_key(self.private_key).address
        return None

    def validate(self) -> None:
        """Raise ConfigError listing every problem found."""
        errors: list[str] = []

        if not self.dry_run and not self.private_key:
            errors.append("POLYMARKET_PRIVATE_KEY is required for live trading")
        if self.private_key and not _PRIVATE_KEY_RE.match(self.private_key):
            errors.append("POLYMARKET_PRIVATE_KEY must be 64 hex characters (optional 0x prefix)")

        if self.min_profit_threshold <= 0:
            errors.append("min_profit_threshold must be positive")
        if self.max_position_size <= 0:
            errors.append("max_position_size must be positive")
        if self.min_position_size <= 0:
            errors.append("min_position_size must be positive")
        if self.min_position_size > self.max_position_size:
            errors.append("min_position_size must not exceed max_position_size")
        if not 0 <= self.max_slippage <= 100:
            errors.append("max_slippage must be between 0 and 100")
        if self.daily_max_loss <= 0:
            errors.append("daily_max_loss must be positive")
        if not self.enabled_strategies:
            errors.append("at least one strategy must be enabled")

        if self.monitor_mode is MonitorMode.CATEGORY and not self.monitor_categories:
            errors.append("CATEGORY monitor mode requires POLYARB_MONITOR_CATEGORIES")
        if self.monitor_mode is MonitorMode.CUSTOM and not self.custom_market_ids:
            errors.append("CUSTOM monitor mode requires POLYARB_CUSTOM_MARKET_IDS")

        if self.scan_interval <= 0:
            errors.append("scan_interval must be positive")

        if errors:
            raise ConfigError(errors)

    def summary(self) -> str:
        """Human-readable settings, secrets omitted."""
        mode = "DRY RUN" if self.dry_run else "LIVE"
        if self.monitor_mode is MonitorMode.CATEGORY:
            markets = f"{self.monitor_mode.value} ({', '.join(self.monitor_categories)})"
        elif self.monitor_mode is MonitorMode.CUSTOM:
            markets = f"{self.monitor_mode.value} ({len(self.custom_market_ids)} ids)"
        else:
            markets = self.monitor_mode.value
        lines = [
            f"Mode:               {mode}",
            f"Strategies:         {', '.join(s.value for s in self.enabled_strategies)}",
            f"Markets:            {markets}",
            f"Min profit:         {self.min_profit_threshold:.2f}%",
            f"Position size:      ${self.min_position_size:.2f} - ${self.max_position_size:.2f}",
            f"Max slippage:       {self.max_slippage:.2f}%",
            f"Daily max loss:     ${self.daily_max_loss:.2f}",
            f"Max positions:      {self.max_concurrent_positions}",
            f"Risk management:    {'on' if self.enable_risk_management else 'off'}",
            f"Scan interval:      {self.scan_interval:.0f}s",
            f"Market refresh:     {self.market_refresh_interval:.0f}s",
        ]
        return "\n".join(lines)
