"""Data models for polyarb."""

from polyarb.models.market import Market, OrderBook, OrderBookLevel, Quote, Token
from polyarb.models.opportunity import (
    MonitorMode,
    Opportunity,
    OrderSide,
    OrderType,
    RiskLevel,
    Strategy,
    Trade,
)
from polyarb.models.trading import (
    Balance,
    OrderResult,
    OrderStatus,
    Position,
    TradingStats,
)

__all__ = [
    "Market",
    "Token",
    "Quote",
    "OrderBook",
    "OrderBookLevel",
    "Strategy",
    "MonitorMode",
    "OrderSide",
    "OrderType",
    "RiskLevel",
    "Trade",
    "Opportunity",
    "OrderStatus",
    "OrderResult",
    "Position",
    "TradingStats",
    "Balance",
]
