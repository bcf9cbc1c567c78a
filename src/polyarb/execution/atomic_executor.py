"""Atomic multi-leg executor.

A batch of legs either ends up fully filled, or every leg is reported FAILED
and any leg that went live is cancelled:

    pre-validate all legs (depth at slippage-limited price)
        -> any leg short          => FAILED batch, nothing submitted
    create all orders (concurrently)
    post all orders (concurrently)
        -> any leg FAILED         => cancel live legs, FAILED batch ("atomic rollback")
        -> otherwise              => per-leg results as posted

Never raises: every exception becomes a FAILED result for each leg.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from typing import Any, Optional, Protocol

from polyarb.models.market import OrderBook
from polyarb.models.opportunity import OrderSide, Trade
from polyarb.models.trading import OrderResult, OrderStatus

logger = logging.getLogger(__name__)

MIN_PRICE = 0.001
MAX_PRICE = 0.999
ROLLBACK_ERROR = "atomic rollback"

_STATUS_MAP = {
    "LIVE": OrderStatus.PENDING,
    "DELAYED": OrderStatus.PENDING,
    "UNMATCHED": OrderStatus.PENDING,
    "MATCHED": OrderStatus.FILLED,
    "FILLED": OrderStatus.FILLED,
    "PARTIAL": OrderStatus.PARTIALLY_FILLED,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "CANCELED": OrderStatus.CANCELLED,
    "FAILED": OrderStatus.FAILED,
}

# Legs that may still hold exchange state after posting.
_LIVE_STATUSES = {OrderStatus.FILLED, OrderStatus.PENDING, OrderStatus.PARTIALLY_FILLED}


class OrderBookSource(Protocol):
    async def get_order_book(self, token_id: str) -> Optional[OrderBook]: ...


class OrderGateway(Protocol):
    async def create_order(
        self, token_id: str, price: float, size: float, side: OrderSide,
    ) -> Optional[Any]: ...

    async def post_order(self, signed_order: Any) -> dict: ...

    async def cancel_order(self, order_id: str) -> dict: ...

    async def get_order(self, order_id: str) -> dict: ...


def clamp_price(price: float) -> float:
    """Clamp to the tradable range. Non-finite input -> 0."""
    if not math.isfinite(price):
        return 0.0
    return min(MAX_PRICE, max(MIN_PRICE, price))


def map_order_status(status: str) -> OrderStatus:
    """Exchange status string -> OrderStatus (unknown -> PENDING)."""
    return _STATUS_MAP.get(str(status or "").upper(), OrderStatus.PENDING)


class AtomicExecutor:
    """Execute trade legs as one all-or-nothing unit.

    Args:
        orderbooks: Order-book source used for depth pre-validation.
        gateway: Order gateway. May be None when ``dry_run`` is True.
        max_slippage: Allowed slippage in percent (1.0 = 1%).
        dry_run: Validate depth but never touch the gateway.
    """

    def __init__(
        self,
        orderbooks: OrderBookSource,
        gateway: OrderGateway | None,
        max_slippage: float = 1.0,
        dry_run: bool = True,
    ):
        self.orderbooks = orderbooks
        self.gateway = gateway
        self.max_slippage = max_slippage
        self.dry_run = dry_run

    # ------------------------------------------------------------------
    # Pricing / depth
    # ------------------------------------------------------------------

    def apply_slippage_limit(self, trade: Trade) -> float:
        """Worst acceptable price for ``trade``."""
        slip = self.max_slippage / 100
        if trade.side is OrderSide.BUY:
            return clamp_price(trade.price * (1 + slip))
        return clamp_price(trade.price * (1 - slip))

    async def check_fillable(self, trade: Trade, limit_price: float) -> bool:
        """Enough depth on the opposite side at or better than ``limit_price``."""
        book = await self.orderbooks.get_order_book(trade.token_id)
        if book is None:
            logger.warning("[ATOMIC] No order book for %s", trade.token_id[:16])
            return False

        if trade.side is OrderSide.BUY:
            available = book.ask_depth_at_or_below(limit_price)
        else:
            available = book.bid_depth_at_or_above(limit_price)

        if available < trade.amount:
            logger.warning(
                "[ATOMIC] Insufficient depth for %s %s: %.2f < %.2f @ $%.4f",
                trade.side.value, trade.token_id[:16], available, trade.amount, limit_price,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    async def execute_trades(self, trades: list[Trade]) -> list[OrderResult]:
        """Execute ``trades`` atomically. One result per leg, same order."""
        if not trades:
            return []

        try:
            limits = [self.apply_slippage_limit(t) for t in trades]

            fillable = await asyncio.gather(
                *(self.check_fillable(t, p) for t, p in zip(trades, limits))
            )
            for i, ok in enumerate(fillable):
                if not ok:
                    logger.warning(
                        "[ATOMIC] Pre-validation failed on leg %d/%d, nothing submitted",
                        i + 1, len(trades),
                    )
                    return self._fail_all(
                        trades, f"Insufficient liquidity for leg {i + 1}",
                    )

            if self.dry_run:
                return self._dry_run_results(trades, limits)

            if self.gateway is None:
                return self._fail_all(trades, "No order gateway configured")

            signed_orders = await asyncio.gather(
                *(
                    self.gateway.create_order(t.token_id, p, t.amount, t.side)
                    for t, p in zip(trades, limits)
                )
            )
            if any(s is None for s in signed_orders):
                return self._fail_all(trades, "Order creation failed")

            responses = await asyncio.gather(
                *(self.gateway.post_order(s) for s in signed_orders),
                return_exceptions=True,
            )
            results = [
                self._to_result(resp, t, p)
                for resp, t, p in zip(responses, trades, limits)
            ]

            if any(r.status is OrderStatus.FAILED for r in results):
                await self._rollback(results)
                return [
                    OrderResult(
                        order_id=r.order_id,
                        status=OrderStatus.FAILED,
                        filled_amount=0.0,
                        average_price=0.0,
                        error=ROLLBACK_ERROR,
                    )
                    for r in results
                ]

            logger.info(
                "[ATOMIC] %d legs posted: %s",
                len(results), ", ".join(r.status.value for r in results),
            )
            return results

        except Exception as exc:
            logger.exception("[ATOMIC] Batch execution error")
            return self._fail_all(trades, str(exc))

    async def execute_trade(self, trade: Trade) -> OrderResult:
        """Single leg: same depth check, no rollback."""
        try:
            limit = self.apply_slippage_limit(trade)
            if not await self.check_fillable(trade, limit):
                return OrderResult.failed("Insufficient liquidity")

            if self.dry_run:
                return self._dry_run_results([trade], [limit])[0]

            if self.gateway is None:
                return OrderResult.failed("No order gateway configured")

            signed = await self.gateway.create_order(
                trade.token_id, limit, trade.amount, trade.side,
            )
            if signed is None:
                return OrderResult.failed("Order creation failed")
            response = await self.gateway.post_order(signed)
            return self._to_result(response, trade, limit)

        except Exception as exc:
            logger.exception("[ATOMIC] Trade execution error")
            return OrderResult.failed(str(exc))

    # ------------------------------------------------------------------
    # Order management
    # ------------------------------------------------------------------

    async def cancel_order(self, order_id: str) -> bool:
        if self.gateway is None or not order_id:
            return False
        try:
            await self.gateway.cancel_order(order_id)
            logger.info("[CANCEL] Order %s cancelled", order_id)
            return True
        except Exception as exc:
            logger.error("[CANCEL] Failed to cancel order %s: %s", order_id, exc)
            return False

    async def get_order_status(self, order_id: str) -> OrderStatus:
        if self.gateway is None:
            return OrderStatus.FAILED
        try:
            order = await self.gateway.get_order(order_id)
            return map_order_status(order.get("status", ""))
        except Exception as exc:
            logger.warning("[ATOMIC] get_order %s failed: %s", order_id, exc)
            return OrderStatus.FAILED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _rollback(self, results: list[OrderResult]) -> None:
        to_cancel = []
        for r in results:
            if r.status in _LIVE_STATUSES and r.order_id and r.order_id not in to_cancel:
                to_cancel.append(r.order_id)

        failed = [r.error for r in results if r.status is OrderStatus.FAILED]
        logger.warning(
            "[ATOMIC] Leg failed (%s), rolling back %d order(s)",
            "; ".join(e or "unknown" for e in failed), len(to_cancel),
        )
        if to_cancel:
            await asyncio.gather(*(self.cancel_order(oid) for oid in to_cancel))

    def _to_result(self, response: Any, trade: Trade, limit_price: float) -> OrderResult:
        if isinstance(response, BaseException):
            return OrderResult.failed(str(response) or type(response).__name__)
        if not isinstance(response, dict):
            return OrderResult.failed(f"invalid response: {type(response).__name__}")

        if response.get("success") is False:
            return OrderResult.failed(response.get("errorMsg") or "order rejected")

        order_id = response.get("orderID") or response.get("orderId") or ""
        if not order_id:
            return OrderResult.failed(response.get("errorMsg") or "no order id in response")

        status = map_order_status(response.get("status", ""))
        filled = trade.amount if status is OrderStatus.FILLED else 0.0
        return OrderResult(
            order_id=order_id,
            status=status,
            filled_amount=filled,
            average_price=limit_price if filled else 0.0,
            error=response.get("errorMsg") or None,
        )

    def _dry_run_results(self, trades: list[Trade], limits: list[float]) -> list[OrderResult]:
        results = []
        for trade, limit in zip(trades, limits):
            logger.info(
                "[DRY RUN] Would submit: %s %s %.1f shares @ $%.4f",
                trade.side.value, trade.token_id[:12], trade.amount, limit,
            )
            results.append(OrderResult(
                order_id=f"dry-{uuid.uuid4().hex[:8]}",
                status=OrderStatus.FILLED,
                filled_amount=trade.amount,
                average_price=limit,
            ))
        return results

    @staticmethod
    def _fail_all(trades: list[Trade], error: str) -> list[OrderResult]:
        return [OrderResult.failed(error) for _ in trades]
