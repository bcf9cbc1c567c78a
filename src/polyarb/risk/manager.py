"""Risk manager: 기회 승인, 일일 손실 한도, 포지션 관리."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional

from polyarb.models.opportunity import Opportunity, RiskLevel
from polyarb.models.trading import Balance, Position, TradingStats

logger = logging.getLogger(__name__)

DAY_SECS = 24 * 60 * 60
EMERGENCY_STOP_RATIO = 0.8     # stop scanning at 80% of the daily loss limit
HIGH_RISK_MIN_PROFIT_PCT = 5.0
LARGE_POSITION_RATIO = 0.2     # warn above 20% of balance


def _now() -> float:
    return time.time()


@dataclass
class RiskDecision:
    """Result of evaluating one opportunity."""

    approved: bool
    reason: Optional[str] = None
    adjusted_size: Optional[float] = None


class RiskManager:
    """Gatekeeper between detection and execution.

    Owns trading statistics and open positions for the lifetime of the
    process. Mutated only from the controller task.

    Args:
        max_position_size: Capital cap per opportunity (USDC).
        min_position_size: Capital floor per opportunity (USDC).
        daily_max_loss: Hard daily loss limit (USDC).
        max_concurrent_positions: Open position cap.
        enable_risk_management: When False every executable opportunity is
            approved at full size.
        clock: Epoch-seconds clock, injectable for tests.
    """

    def __init__(
        self,
        max_position_size: float = 100.0,
        min_position_size: float = 10.0,
        daily_max_loss: float = 50.0,
        max_concurrent_positions: int = 5,
        enable_risk_management: bool = True,
        clock: Callable[[], float] = _now,
    ):
        self.max_position_size = max_position_size
        self.min_position_size = min_position_size
        self.daily_max_loss = daily_max_loss
        self.max_concurrent_positions = max_concurrent_positions
        self.enable_risk_management = enable_risk_management
        self._clock = clock

        self._positions: dict[tuple[str, str], Position] = {}
        self._stats = TradingStats()
        self._daily_pnl = 0.0
        self._last_reset = clock()

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def evaluate_opportunity(
        self, opportunity: Opportunity, balance: Balance,
    ) -> RiskDecision:
        """Run the ordered checks; the first failing one is the reason."""
        capital = opportunity.required_capital

        if opportunity.is_signal_only:
            return RiskDecision(False, "No executable trades (signal only)")

        if not self.enable_risk_management:
            return RiskDecision(True, adjusted_size=capital)

        if abs(self._daily_pnl) >= self.daily_max_loss:
            return RiskDecision(
                False,
                f"Daily loss limit reached: ${abs(self._daily_pnl):.2f} "
                f">= ${self.daily_max_loss:.2f}",
            )

        if balance.usdc < capital:
            return RiskDecision(
                False,
                f"Insufficient balance: ${balance.usdc:.2f} < ${capital:.2f}",
            )

        if capital > self.max_position_size:
            logger.info(
                "[RISK] Capping position $%.2f -> $%.2f",
                capital, self.max_position_size,
            )
            return RiskDecision(True, adjusted_size=self.max_position_size)

        if capital < self.min_position_size:
            return RiskDecision(
                False,
                f"Position too small: ${capital:.2f} < ${self.min_position_size:.2f}",
            )

        if len(self._positions) >= self.max_concurrent_positions:
            return RiskDecision(
                False,
                f"Max concurrent positions reached: {len(self._positions)}",
            )

        if (
            opportunity.risk is RiskLevel.HIGH
            and opportunity.profit_percentage < HIGH_RISK_MIN_PROFIT_PCT
        ):
            return RiskDecision(
                False,
                f"High risk with low profit: {opportunity.profit_percentage:.2f}% "
                f"< {HIGH_RISK_MIN_PROFIT_PCT:.0f}%",
            )

        if balance.usdc > 0 and capital / balance.usdc > LARGE_POSITION_RATIO:
            logger.warning(
                "[RISK] Large position: $%.2f is %.1f%% of balance",
                capital, capital / balance.usdc * 100,
            )

        return RiskDecision(True, adjusted_size=capital)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def record_trade(self, profit: float, success: bool) -> None:
        """거래 결과 기록."""
        s = self._stats
        s.total_trades += 1

        if success:
            s.successful_trades += 1
            if profit > 0:
                s.total_profit += profit
                s.largest_profit = max(s.largest_profit, profit)
            else:
                s.total_loss += abs(profit)
                s.largest_loss = max(s.largest_loss, abs(profit))
            self._daily_pnl += profit
        else:
            s.failed_trades += 1

        s.net_profit = s.total_profit - s.total_loss
        s.win_rate = s.successful_trades / s.total_trades * 100
        s.average_profit = (
            s.net_profit / s.successful_trades if s.successful_trades else 0.0
        )
        s.daily_pnl = self._daily_pnl

        logger.info(
            "[RISK] Trade recorded: %s profit=$%.4f daily_pnl=$%.4f",
            "success" if success else "failure", profit, self._daily_pnl,
        )

    def should_emergency_stop(self) -> bool:
        threshold = self.daily_max_loss * EMERGENCY_STOP_RATIO
        if abs(self._daily_pnl) >= threshold:
            logger.warning(
                "[RISK] Emergency stop: daily P&L $%.2f reached %.0f%% of limit $%.2f",
                self._daily_pnl, EMERGENCY_STOP_RATIO * 100, self.daily_max_loss,
            )
            return True
        return False

    def reset_daily_stats(self) -> bool:
        """Clear daily P&L once 24h have passed since the last reset.

        Returns:
            True if a reset happened.
        """
        now = self._clock()
        if now - self._last_reset < DAY_SECS:
            return False
        logger.info("[RISK] New day: resetting daily P&L ($%.2f)", self._daily_pnl)
        self._daily_pnl = 0.0
        self._stats.daily_pnl = 0.0
        self._last_reset = now
        return True

    @property
    def daily_pnl(self) -> float:
        return self._daily_pnl

    @property
    def stats(self) -> TradingStats:
        return replace(self._stats)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def add_position(
        self, market_id: str, token_id: str, amount: float, price: float,
    ) -> Position:
        """Open (or average into) a position."""
        key = (market_id, token_id)
        existing = self._positions.get(key)
        if existing is not None:
            total = existing.amount + amount
            avg = (existing.cost_basis + amount * price) / total if total else price
            existing.amount = total
            existing.average_price = avg
            existing.current_price = price
            existing.unrealized_pnl = (price - avg) * total
            return existing

        position = Position(
            market_id=market_id,
            token_id=token_id,
            amount=amount,
            average_price=price,
            current_price=price,
            unrealized_pnl=0.0,
            opened_at=self._clock(),
        )
        self._positions[key] = position
        logger.info(
            "[RISK] Position opened: %s/%s %.2f @ $%.3f",
            market_id, token_id[:12], amount, price,
        )
        return position

    def remove_position(self, market_id: str, token_id: str) -> Optional[Position]:
        position = self._positions.pop((market_id, token_id), None)
        if position is not None:
            logger.info("[RISK] Position closed: %s/%s", market_id, token_id[:12])
        return position

    def get_positions(self) -> list[Position]:
        return list(self._positions.values())

    def update_position_price(self, token_id: str, price: float) -> None:
        """Mark every position in ``token_id`` to ``price``."""
        for position in self._positions.values():
            if position.token_id == token_id:
                position.current_price = price
                position.unrealized_pnl = (
                    (price - position.average_price) * position.amount
                )

    def close_positions_not_in(self, active_market_ids: Iterable[str]) -> list[Position]:
        """Drop positions whose market is no longer active."""
        active = set(active_market_ids)
        closed = []
        for market_id, token_id in list(self._positions):
            if market_id not in active:
                position = self.remove_position(market_id, token_id)
                if position is not None:
                    closed.append(position)
        return closed

    @property
    def total_exposure(self) -> float:
        return sum(p.cost_basis for p in self._positions.values())

    def risk_summary(self, balance: Balance | None = None) -> dict:
        s = self._stats
        summary = {
            "total_trades": s.total_trades,
            "successful_trades": s.successful_trades,
            "failed_trades": s.failed_trades,
            "win_rate": round(s.win_rate, 2),
            "net_profit": round(s.net_profit, 4),
            "daily_pnl": round(self._daily_pnl, 4),
            "daily_loss_limit": self.daily_max_loss,
            "open_positions": len(self._positions),
            "total_exposure": round(self.total_exposure, 4),
            "emergency_threshold": self.daily_max_loss * EMERGENCY_STOP_RATIO,
        }
        if balance is not None:
            summary["balance_usdc"] = round(balance.usdc, 2)
        return summary
