"""Arbitrage pipeline: load markets → detect → risk → execute → record.

전체 거래 파이프라인 오케스트레이션. Every component is injected; ``build``
wires the production set from a BotConfig.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from polyarb.config import BotConfig
from polyarb.discovery.gamma_client import GammaClient
from polyarb.execution.atomic_executor import AtomicExecutor
from polyarb.execution.clob_gateway import ClobOrderGateway
from polyarb.market.balance import StaticBalanceSource, WalletBalanceClient
from polyarb.market.orderbook import OrderbookService
from polyarb.market.price_history import PriceHistory
from polyarb.models.market import Market
from polyarb.models.opportunity import MonitorMode, Opportunity
from polyarb.models.trading import Balance, OrderResult, OrderStatus
from polyarb.risk.manager import RiskManager
from polyarb.strategy.detector import OpportunityDetector

logger = logging.getLogger(__name__)


class BalanceSource(Protocol):
    async def get_balance(self) -> Balance: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class TradeRecord:
    """단일 거래 시도 기록."""

    opportunity_id: str
    market_id: str
    strategy: str
    executed: bool = False
    reject_reason: Optional[str] = None
    capital: float = 0.0
    expected_profit: float = 0.0
    order_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class CycleSummary:
    """한 사이클 결과 요약."""

    cycle_number: int = 0
    markets_scanned: int = 0
    opportunities_found: int = 0
    trades_attempted: int = 0
    trades_executed: int = 0
    trades_rejected: int = 0
    emergency_stop: bool = False


@dataclass
class SessionSummary:
    """세션 전체 요약."""

    total_cycles: int = 0
    total_opportunities: int = 0
    total_trades: int = 0
    total_executed: int = 0
    total_rejected: int = 0
    skipped_scans: int = 0
    net_profit: float = 0.0
    daily_pnl: float = 0.0
    active_positions: int = 0

    def __str__(self) -> str:
        lines = [
            "═" * 50,
            "  Session Summary",
            "═" * 50,
            f"  Cycles: {self.total_cycles} (skipped: {self.skipped_scans})",
            f"  Opportunities: {self.total_opportunities}",
            f"  Trades: {self.total_trades} "
            f"(executed {self.total_executed}, rejected {self.total_rejected})",
            f"  Active positions: {self.active_positions}",
            f"  Net profit: ${self.net_profit:.4f}",
            f"  Daily P&L: ${self.daily_pnl:.4f}",
            "═" * 50,
        ]
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Bot
# ---------------------------------------------------------------------------


class ArbitrageBot:
    """Scan loop controller.

    Args:
        config: Bot settings.
        gamma: Market source.
        orderbooks: Quote / order-book source.
        detector: Opportunity detector.
        risk: Risk manager (owns stats and positions).
        executor: Atomic executor.
        balance_source: Account balance source.
        gateway: Order gateway, authenticated on ``start`` (live only).
        clock: Monotonic clock for the market refresh schedule.
    """

    def __init__(
        self,
        config: BotConfig,
        gamma: GammaClient,
        orderbooks: OrderbookService,
        detector: OpportunityDetector,
        risk: RiskManager,
        executor: AtomicExecutor,
        balance_source: BalanceSource,
        gateway: ClobOrderGateway | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.gamma = gamma
        self.orderbooks = orderbooks
        self.detector = detector
        self.risk = risk
        self.executor = executor
        self.balance_source = balance_source
        self.gateway = gateway
        self._clock = clock

        self.markets: list[Market] = []
        self._last_market_refresh: Optional[float] = None
        self._scanning = False
        self._cycle_count = 0
        self._skipped_scans = 0
        self._total_opportunities = 0
        self._trade_log: list[TradeRecord] = []

    @classmethod
    def build(cls, config: BotConfig) -> ArbitrageBot:
        """Wire production components from ``config``."""
        orderbooks = OrderbookService(base_url=config.clob_api_url)
        gamma = GammaClient(
            base_url=config.gamma_api_url,
            timeout=config.api_timeout,
            max_markets=config.max_markets,
        )
        detector = OpportunityDetector(
            orderbooks,
            min_profit_threshold=config.min_profit_threshold,
            enabled_strategies=config.enabled_strategies,
            price_history=PriceHistory(),
        )
        risk = RiskManager(
            max_position_size=config.max_position_size,
            min_position_size=config.min_position_size,
            daily_max_loss=config.daily_max_loss,
            max_concurrent_positions=config.max_concurrent_positions,
            enable_risk_management=config.enable_risk_management,
        )

        gateway = None if config.dry_run else ClobOrderGateway.from_config(config)
        executor = AtomicExecutor(
            orderbooks, gateway, max_slippage=config.max_slippage, dry_run=config.dry_run,
        )

        if config.dry_run:
            balance_source: BalanceSource = StaticBalanceSource(config.paper_balance)
        else:
            balance_source = WalletBalanceClient(
                config.wallet_address or "", timeout=config.api_timeout,
            )

        return cls(
            config, gamma, orderbooks, detector, risk, executor, balance_source,
            gateway=gateway,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Authenticate (live), report balance, load markets."""
        await self.gamma.open()
        if self.gateway is not None:
            await self.gateway.authenticate()

        balance = await self.balance_source.get_balance()
        logger.info(
            "%s Balance: $%.2f USDC | %.4f MATIC",
            "[DRY RUN]" if self.config.dry_run else "[LIVE]",
            balance.usdc, balance.matic,
        )
        await self.load_markets()

    async def close(self) -> None:
        await self.gamma.close()
        await self.orderbooks.close()
        await self.balance_source.close()

    # ------------------------------------------------------------------
    # Markets
    # ------------------------------------------------------------------

    async def load_markets(self) -> list[Market]:
        """Fetch markets per monitor mode, keep the liquid ones."""
        cfg = self.config
        logger.info("Loading markets (%s)...", cfg.monitor_mode.value)

        if cfg.monitor_mode is MonitorMode.ALL:
            markets = await self.gamma.list_active_markets()
        elif cfg.monitor_mode is MonitorMode.CATEGORY:
            markets = []
            seen: set[str] = set()
            for category in cfg.monitor_categories:
                for market in await self.gamma.list_active_markets(category):
                    if market.id not in seen:
                        seen.add(market.id)
                        markets.append(market)
        else:
            fetched = await asyncio.gather(
                *(self.gamma.get_market(mid) for mid in cfg.custom_market_ids)
            )
            markets = [m for m in fetched if m is not None]

        self.markets = [
            m for m in markets
            if any(t.liquidity >= cfg.min_liquidity for t in m.tokens)
        ]
        self._last_market_refresh = self._clock()
        logger.info("Loaded %d markets (of %d fetched)", len(self.markets), len(markets))

        if self.risk.get_positions():
            active_ids = {m.id for m in markets if m.active and not m.closed}
            closed = self.risk.close_positions_not_in(active_ids)
            if closed:
                logger.info("Closed %d position(s) in inactive markets", len(closed))
        return self.markets

    def _market_refresh_due(self) -> bool:
        if self._last_market_refresh is None:
            return True
        elapsed = self._clock() - self._last_market_refresh
        return elapsed > self.config.market_refresh_interval

    # ------------------------------------------------------------------
    # Scan cycle
    # ------------------------------------------------------------------

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    async def run_scan(self) -> Optional[CycleSummary]:
        """One scan cycle. None when a previous scan is still in flight."""
        if self._scanning:
            self._skipped_scans += 1
            logger.debug("Previous scan still running, skipping")
            return None

        self._scanning = True
        self._cycle_count += 1
        summary = CycleSummary(cycle_number=self._cycle_count)
        try:
            if self._market_refresh_due():
                await self.load_markets()

            self.risk.reset_daily_stats()
            if self.risk.should_emergency_stop():
                logger.warning("Emergency stop active, skipping cycle %d", summary.cycle_number)
                summary.emergency_stop = True
                return summary

            summary.markets_scanned = len(self.markets)
            opportunities = await self.detector.scan_opportunities(self.markets)
            summary.opportunities_found = len(opportunities)
            self._total_opportunities += len(opportunities)

            for opp in opportunities:
                if opp.is_signal_only:
                    self.detector.discard(opp.id)
                    continue
                record = await self.process_opportunity(opp)
                summary.trades_attempted += 1
                if record.executed:
                    summary.trades_executed += 1
                elif record.reject_reason:
                    summary.trades_rejected += 1

            self.detector.clear_old_opportunities()
            await self._mark_positions()

            logger.info(
                "=== Cycle %d: %d markets, %d opportunities, %d executed, %d rejected ===",
                summary.cycle_number, summary.markets_scanned,
                summary.opportunities_found, summary.trades_executed,
                summary.trades_rejected,
            )
        except Exception:
            logger.exception("Error in scan cycle %d", summary.cycle_number)
        finally:
            self._scanning = False
        return summary

    async def process_opportunity(self, opp: Opportunity) -> TradeRecord:
        """단일 기회 처리: balance → risk → execute → record.

        Returns:
            TradeRecord (절대 예외를 던지지 않음).
        """
        record = TradeRecord(
            opportunity_id=opp.id,
            market_id=opp.market_id,
            strategy=opp.strategy.value,
            capital=opp.required_capital,
            expected_profit=opp.expected_profit,
        )
        try:
            balance = await self.balance_source.get_balance()
            decision = self.risk.evaluate_opportunity(opp, balance)
            if not decision.approved:
                record.reject_reason = decision.reason
                logger.debug("Opportunity %s rejected: %s", opp.id, decision.reason)
                return record

            if decision.adjusted_size is not None and decision.adjusted_size < opp.required_capital:
                logger.info(
                    "[RISK] Size capped to $%.2f (legs stay at 1 share)",
                    decision.adjusted_size,
                )

            logger.info(
                "Executing %s: +%.2f%% ($%.4f)",
                opp.id, opp.profit_percentage, opp.expected_profit,
            )
            results = await self.executor.execute_trades(opp.trades)
            record.order_ids = [r.order_id for r in results if r.order_id]

            if results and all(r.status is OrderStatus.FILLED for r in results):
                record.executed = True
                self.risk.record_trade(opp.expected_profit, True)
                for trade, result in zip(opp.trades, results):
                    self.risk.add_position(
                        trade.market_id, trade.token_id,
                        result.filled_amount, result.average_price or trade.price,
                    )
                logger.info("Arbitrage filled: +$%.4f", opp.expected_profit)
            else:
                await self._unwind_mixed(opp, results)
                errors = {r.error for r in results if r.error}
                record.error = "; ".join(sorted(errors)) or "not filled"
                self.risk.record_trade(0, False)
                logger.warning("Arbitrage not filled: %s", record.error)

        except Exception as exc:
            logger.exception("Error processing opportunity %s", opp.id)
            record.error = str(exc)
            self.risk.record_trade(0, False)
        finally:
            self.detector.discard(opp.id)
            self._trade_log.append(record)
        return record

    async def _unwind_mixed(self, opp: Opportunity, results: list[OrderResult]) -> None:
        """부분 체결 배치 정리: 남은 주문 취소, 체결된 leg는 포지션으로 기록."""
        resting = {
            r.order_id for r in results
            if r.order_id and r.status in (OrderStatus.PENDING, OrderStatus.PARTIALLY_FILLED)
        }
        if resting:
            logger.warning("[UNWIND] Cancelling %d resting order(s)", len(resting))
            await asyncio.gather(*(self.executor.cancel_order(oid) for oid in resting))

        for trade, result in zip(opp.trades, results):
            if result.filled_amount > 0:
                self.risk.add_position(
                    trade.market_id, trade.token_id,
                    result.filled_amount, result.average_price or trade.price,
                )
                logger.warning(
                    "[UNWIND] Leg %s filled alone, tracking %.1f shares",
                    trade.token_id[:12], result.filled_amount,
                )

    async def _mark_positions(self) -> None:
        """Update open positions to the current mid price."""
        token_ids = {p.token_id for p in self.risk.get_positions()}
        for token_id in token_ids:
            quote = await self.orderbooks.get_best_prices(token_id)
            if quote is not None:
                self.risk.update_position_price(token_id, quote.mid)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @property
    def trade_log(self) -> list[TradeRecord]:
        return list(self._trade_log)

    def session_summary(self) -> SessionSummary:
        stats = self.risk.stats
        return SessionSummary(
            total_cycles=self._cycle_count,
            total_opportunities=self._total_opportunities,
            total_trades=len(self._trade_log),
            total_executed=sum(1 for r in self._trade_log if r.executed),
            total_rejected=sum(1 for r in self._trade_log if r.reject_reason),
            skipped_scans=self._skipped_scans,
            net_profit=stats.net_profit,
            daily_pnl=self.risk.daily_pnl,
            active_positions=len(self.risk.get_positions()),
        )
