"""Opportunity, Trade and strategy enums."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Strategy(Enum):
    """Arbitrage detection strategies."""

    PRICE_IMBALANCE = "PRICE_IMBALANCE"  # YES + NO != $1.00
    CROSS_MARKET = "CROSS_MARKET"        # logical inconsistency across markets
    TIME_BASED = "TIME_BASED"            # mean reversion


class MonitorMode(Enum):
    """Which markets the bot loads."""

    ALL = "ALL"
    CATEGORY = "CATEGORY"
    CUSTOM = "CUSTOM"


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class RiskLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass
class Trade:
    """One leg of an opportunity."""

    market_id: str
    token_id: str
    side: OrderSide
    order_type: OrderType
    price: float
    amount: float = 1.0


@dataclass
class Opportunity:
    """A detected pricing inefficiency.

    An empty ``trades`` list marks a signal-only opportunity: it is reported
    but never auto-executed.
    """

    id: str
    strategy: Strategy
    market_id: str
    description: str
    expected_profit: float
    profit_percentage: float
    required_capital: float
    timestamp: float
    risk: RiskLevel
    trades: list[Trade] = field(default_factory=list)

    @property
    def is_signal_only(self) -> bool:
        return not self.trades

    @property
    def headline(self) -> str:
        """First description line, used in log output."""
        return self.description.split("\n", 1)[0]
