"""Order results, positions, balances and trading statistics."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OrderStatus(Enum):
    """Order lifecycle: PENDING -> FILLED | PARTIALLY_FILLED | CANCELLED | FAILED."""

    PENDING = "PENDING"
    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


@dataclass
class OrderResult:
    """Outcome of a single submitted leg."""

    order_id: str
    status: OrderStatus
    filled_amount: float
    average_price: float
    error: Optional[str] = None

    @staticmethod
    def failed(error: str) -> OrderResult:
        return OrderResult(
            order_id="",
            status=OrderStatus.FAILED,
            filled_amount=0.0,
            average_price=0.0,
            error=error,
        )


@dataclass
class Position:
    """An open position, owned by the RiskManager."""

    market_id: str
    token_id: str
    amount: float
    average_price: float
    current_price: float
    unrealized_pnl: float
    opened_at: float

    @property
    def cost_basis(self) -> float:
        return self.amount * self.average_price


@dataclass
class Balance:
    """Wallet balance: USDC (quote currency) and MATIC (gas)."""

    usdc: float
    matic: float
    timestamp: float = 0.0


@dataclass
class TradingStats:
    """Cumulative trading counters."""

    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    net_profit: float = 0.0
    win_rate: float = 0.0
    average_profit: float = 0.0
    largest_profit: float = 0.0
    largest_loss: float = 0.0
    daily_pnl: float = 0.0
