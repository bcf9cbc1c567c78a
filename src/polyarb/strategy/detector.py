"""Opportunity detector: price imbalance, cross-market and mean reversion.

Markets are scanned in fixed-size batches (asyncio.gather per batch, short
pause between batches) to bound concurrent requests to the quote source.
Any per-market, per-strategy exception is logged and treated as "no
opportunity"; one bad market never aborts the scan.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from polyarb.market.price_history import PriceHistory
from polyarb.models.market import Market, Quote
from polyarb.models.opportunity import (
    Opportunity,
    OrderSide,
    OrderType,
    RiskLevel,
    Strategy,
    Trade,
)
from polyarb.strategy.fee_calculator import net_arb_profit, round_trip_fee_pct
from polyarb.strategy.question_parser import (
    MarketCondition,
    parse_market_question,
    question_similarity,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BATCH_SIZE = 20
DEFAULT_BATCH_PAUSE = 0.05  # seconds
PROGRESS_LOG_EVERY = 100

NESTED_TOLERANCE = 0.02         # 2% probability slack between nested markets
SIMILARITY_MIN = 0.7            # exclusive
SIMILARITY_MAX = 0.95           # exclusive
Z_SCORE_THRESHOLD = 2.0
Z_SCORE_MEDIUM_RISK = 3.0
MIN_REVERSION_SAMPLES = 10
CROSS_MARKET_CAPITAL = 2.0      # placeholder: one share in each market
OPPORTUNITY_MAX_AGE = 60.0      # seconds


class QuoteSource(Protocol):
    async def get_best_prices(self, token_id: str) -> Optional[Quote]: ...


@dataclass
class ScanStats:
    """Diagnostics for the last scan."""

    total_markets: int = 0
    binary_markets: int = 0
    markets_missing_token_id: int = 0
    markets_missing_prices: int = 0
    min_ask_sum: Optional[float] = None
    ask_sums: list[tuple[float, str, str]] = field(default_factory=list)

    def record_ask_sum(self, ask_sum: float, market: Market) -> None:
        if self.min_ask_sum is None or ask_sum < self.min_ask_sum:
            self.min_ask_sum = ask_sum
        self.ask_sums.append((ask_sum, market.id, market.question))

    def lowest_ask_sums(self, n: int = 5) -> list[tuple[float, str, str]]:
        return sorted(self.ask_sums, key=lambda x: x[0])[:n]


def calculate_risk(profit_percentage: float, capital: float) -> RiskLevel:
    """Risk tier of an executable price-imbalance opportunity."""
    if profit_percentage >= 5 and capital <= 50:
        return RiskLevel.LOW
    if profit_percentage >= 3 or capital <= 100:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def rank_opportunities(opportunities: list[Opportunity]) -> list[Opportunity]:
    """Sort by profit percentage, highest first. Returns a new list."""
    return sorted(opportunities, key=lambda o: o.profit_percentage, reverse=True)


class OpportunityDetector:
    """Scan markets for arbitrage opportunities.

    Args:
        quotes: Source of best bid/ask per token.
        min_profit_threshold: Minimum profit percentage (e.g. 2.0 = 2%).
        enabled_strategies: Strategies to run.
        price_history: Rolling history used by the mean-reversion strategy.
        batch_size: Markets scanned concurrently per batch.
        batch_pause: Pause between batches in seconds.
    """

    def __init__(
        self,
        quotes: QuoteSource,
        min_profit_threshold: float,
        enabled_strategies: list[Strategy],
        price_history: PriceHistory | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause: float = DEFAULT_BATCH_PAUSE,
    ):
        self.quotes = quotes
        self.min_profit_threshold = min_profit_threshold
        self.enabled_strategies = list(enabled_strategies)
        self.price_history = price_history or PriceHistory()
        self.batch_size = max(1, batch_size)
        self.batch_pause = batch_pause
        self._opportunities: list[Opportunity] = []
        self._stats = ScanStats()
        self._seq = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def scan_opportunities(self, markets: list[Market]) -> list[Opportunity]:
        """Run all enabled strategies over ``markets``.

        Returns the opportunities of this scan, best first.
        """
        self._opportunities = []
        self._stats = ScanStats(total_markets=len(markets))

        binary = [m for m in markets if m.is_binary]
        self._stats.binary_markets = len(binary)
        # Cross-market peers: each unordered pair is compared once.
        peers = {m.id: binary[i + 1:] for i, m in enumerate(binary)}

        total = len(markets)
        for start in range(0, total, self.batch_size):
            batch = markets[start:start + self.batch_size]
            if start % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    "[SCAN] Scanning markets %d-%d / %d...",
                    start + 1, min(start + PROGRESS_LOG_EVERY, total), total,
                )

            await asyncio.gather(
                *(self._scan_market(m, peers.get(m.id, [])) for m in batch)
            )

            if start + self.batch_size < total and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

        self._log_scan_summary()
        self._opportunities = rank_opportunities(self._opportunities)
        return list(self._opportunities)

    def get_opportunities(self) -> list[Opportunity]:
        return list(self._opportunities)

    @property
    def last_scan_stats(self) -> ScanStats:
        return self._stats

    def clear_old_opportunities(self, max_age: float = OPPORTUNITY_MAX_AGE) -> None:
        """Drop opportunities older than ``max_age`` seconds."""
        now = time.time()
        self._opportunities = [
            o for o in self._opportunities if now - o.timestamp < max_age
        ]

    def discard(self, opportunity_id: str) -> None:
        """Remove a consumed opportunity."""
        self._opportunities = [o for o in self._opportunities if o.id != opportunity_id]

    # ------------------------------------------------------------------
    # Per-market dispatch
    # ------------------------------------------------------------------

    async def _scan_market(self, market: Market, peers: list[Market]) -> None:
        if not market.is_binary:
            return

        for strategy in self.enabled_strategies:
            try:
                if strategy is Strategy.PRICE_IMBALANCE:
                    await self.detect_price_imbalance(market)
                elif strategy is Strategy.CROSS_MARKET:
                    await self.detect_cross_market(market, peers)
                elif strategy is Strategy.TIME_BASED:
                    await self.detect_time_based(market)
            except Exception:
                logger.exception(
                    "[SCAN] %s detection failed for market %s", strategy.value, market.id,
                )

    # ------------------------------------------------------------------
    # Strategy 1: price imbalance (YES + NO != $1.00)
    # ------------------------------------------------------------------

    async def detect_price_imbalance(self, market: Market) -> None:
        yes_token, no_token = market.tokens[0], market.tokens[1]
        if not yes_token.token_id or not no_token.token_id:
            self._stats.markets_missing_token_id += 1
            logger.debug(
                "Skipping market without token id: %s %s",
                market.id, market.question[:60],
            )
            return

        yes_quote, no_quote = await asyncio.gather(
            self.quotes.get_best_prices(yes_token.token_id),
            self.quotes.get_best_prices(no_token.token_id),
        )
        if yes_quote is None or no_quote is None:
            self._stats.markets_missing_prices += 1
            return

        ask_sum = yes_quote.ask + no_quote.ask
        self._stats.record_ask_sum(ask_sum, market)

        if ask_sum < 1.0:
            gross, fees, net = net_arb_profit(ask_sum)
            pct = net / ask_sum * 100
            if net > 0 and pct >= self.min_profit_threshold:
                self._add_opportunity(Opportunity(
                    id=self._new_id(f"{market.id}_imbalance_buy"),
                    strategy=Strategy.PRICE_IMBALANCE,
                    market_id=market.id,
                    description=(
                        f"{market.question}\n"
                        f"Buy YES(${yes_quote.ask:.3f}) + NO(${no_quote.ask:.3f}) "
                        f"= ${ask_sum:.3f} < $1.00\n"
                        f"Gross: ${gross:.4f} | Fees: ${fees:.4f} | Net: ${net:.4f}"
                    ),
                    expected_profit=net,
                    profit_percentage=pct,
                    required_capital=ask_sum,
                    timestamp=time.time(),
                    risk=calculate_risk(pct, ask_sum),
                    trades=[
                        Trade(
                            market_id=market.id,
                            token_id=yes_token.token_id,
                            side=OrderSide.BUY,
                            order_type=OrderType.MARKET,
                            price=yes_quote.ask,
                            amount=1,
                        ),
                        Trade(
                            market_id=market.id,
                            token_id=no_token.token_id,
                            side=OrderSide.BUY,
                            order_type=OrderType.MARKET,
                            price=no_quote.ask,
                            amount=1,
                        ),
                    ],
                ))

        # Mid-price signal: informational only, never executed.
        mid_sum = yes_quote.mid + no_quote.mid
        if 0 < mid_sum < 1.0:
            profit = 1.0 - mid_sum
            pct = profit / mid_sum * 100
            if pct >= self.min_profit_threshold:
                self._add_opportunity(Opportunity(
                    id=self._new_id(f"{market.id}_imbalance_signal"),
                    strategy=Strategy.PRICE_IMBALANCE,
                    market_id=market.id,
                    description=(
                        f"{market.question}\n"
                        f"Signal: mid YES+NO = ${mid_sum:.3f} < $1.00"
                    ),
                    expected_profit=profit,
                    profit_percentage=pct,
                    required_capital=mid_sum,
                    timestamp=time.time(),
                    risk=RiskLevel.HIGH,
                ))

    # ------------------------------------------------------------------
    # Strategy 2: cross-market logical consistency
    # ------------------------------------------------------------------

    async def detect_cross_market(self, market: Market, peers: list[Market]) -> None:
        """Compare ``market`` with each peer (nested thresholds, similar questions)."""
        info = parse_market_question(market.question)

        for other in peers:
            if other.id == market.id:
                continue

            other_info = parse_market_question(other.question)
            if (
                info is not None
                and other_info is not None
                and info.asset == other_info.asset
                and info.direction == other_info.direction
                and info.threshold != other_info.threshold
            ):
                await self._check_nested(market, other, info, other_info)

            if market.category == other.category:
                similarity = question_similarity(market.question, other.question)
                if SIMILARITY_MIN < similarity < SIMILARITY_MAX:
                    await self._check_similar(market, other)

    async def _implied_probability(self, market: Market) -> Optional[float]:
        token_id = market.tokens[0].token_id
        if not token_id:
            return None
        quote = await self.quotes.get_best_prices(token_id)
        return quote.mid if quote is not None else None

    async def _check_nested(
        self,
        market1: Market,
        market2: Market,
        info1: MarketCondition,
        info2: MarketCondition,
    ) -> None:
        """A higher threshold must not be priced above a lower one."""
        prob1, prob2 = await asyncio.gather(
            self._implied_probability(market1),
            self._implied_probability(market2),
        )
        if prob1 is None or prob2 is None:
            return

        if info1.threshold < info2.threshold:
            low, high, low_prob, high_prob = market1, market2, prob1, prob2
        else:
            low, high, low_prob, high_prob = market2, market1, prob2, prob1

        # one ordering rule for every direction, "below" included
        if high_prob <= low_prob + NESTED_TOLERANCE:
            return

        gap = high_prob - low_prob
        pct = gap * 100
        if pct < self.min_profit_threshold:
            return

        self._add_opportunity(Opportunity(
            id=self._new_id(f"crossmarket_nested_{market1.id}_{market2.id}"),
            strategy=Strategy.CROSS_MARKET,
            market_id=market1.id,
            description=(
                f"Nested market inconsistency ({info1.asset} {info1.direction})\n"
                f"  {low.question[:50]}... ({low_prob * 100:.1f}%)\n"
                f"  {high.question[:50]}... ({high_prob * 100:.1f}%)\n"
                f"Higher threshold priced above lower threshold"
            ),
            expected_profit=gap,
            profit_percentage=pct,
            required_capital=CROSS_MARKET_CAPITAL,
            timestamp=time.time(),
            risk=RiskLevel.HIGH,
        ))

    async def _check_similar(self, market1: Market, market2: Market) -> None:
        prob1, prob2 = await asyncio.gather(
            self._implied_probability(market1),
            self._implied_probability(market2),
        )
        if prob1 is None or prob2 is None:
            return

        diff = abs(prob1 - prob2)
        pct = diff * 100
        if pct < self.min_profit_threshold * 2:
            return

        self._add_opportunity(Opportunity(
            id=self._new_id(f"crossmarket_similar_{market1.id}_{market2.id}"),
            strategy=Strategy.CROSS_MARKET,
            market_id=market1.id,
            description=(
                f"Similar market divergence\n"
                f"  {market1.question[:50]}... ({prob1 * 100:.1f}%)\n"
                f"  {market2.question[:50]}... ({prob2 * 100:.1f}%)\n"
                f"Price gap: {pct:.1f}%"
            ),
            expected_profit=diff,
            profit_percentage=pct,
            required_capital=CROSS_MARKET_CAPITAL,
            timestamp=time.time(),
            risk=RiskLevel.HIGH,
        ))

    # ------------------------------------------------------------------
    # Strategy 3: mean reversion
    # ------------------------------------------------------------------

    async def detect_time_based(self, market: Market) -> None:
        token = market.tokens[0]
        if not token.token_id:
            return

        quote = await self.quotes.get_best_prices(token.token_id)
        if quote is None:
            return
        mid = quote.mid
        if mid <= 0:
            return

        self.price_history.record(token.token_id, mid)

        z = self.price_history.z_score(token.token_id, mid)
        if z is None:
            return
        stats = self.price_history.stats(token.token_id)
        if stats.mean is None or stats.count < MIN_REVERSION_SAMPLES:
            return
        if abs(z) < Z_SCORE_THRESHOLD:
            return

        potential = abs(mid - stats.mean)
        net_pct = potential / mid * 100 - round_trip_fee_pct()
        if net_pct < self.min_profit_threshold:
            return

        side = OrderSide.SELL if z > 0 else OrderSide.BUY
        direction = (
            "Price above mean, expect reversion down"
            if z > 0 else "Price below mean, expect reversion up"
        )
        trend = self.price_history.trend(token.token_id)
        trend_label = {1: "rising", -1: "falling"}.get(trend, "flat")

        self._add_opportunity(Opportunity(
            id=self._new_id(f"timebased_{market.id}"),
            strategy=Strategy.TIME_BASED,
            market_id=market.id,
            description=(
                f"{market.question}\n{direction}\n"
                f"Now: ${mid:.3f} | Mean: ${stats.mean:.3f} | Z: {z:.2f} | "
                f"Trend: {trend_label}"
            ),
            expected_profit=potential,
            profit_percentage=net_pct,
            required_capital=mid,
            timestamp=time.time(),
            risk=RiskLevel.MEDIUM if abs(z) > Z_SCORE_MEDIUM_RISK else RiskLevel.HIGH,
            trades=[
                Trade(
                    market_id=market.id,
                    token_id=token.token_id,
                    side=side,
                    order_type=OrderType.LIMIT,
                    price=mid,
                    amount=1,
                ),
            ],
        ))
        logger.debug(
            "Mean-reversion candidate: %s Z=%.2f", market.question[:40], z,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{int(time.time() * 1000)}_{self._seq}"

    def _add_opportunity(self, opportunity: Opportunity) -> None:
        self._opportunities.append(opportunity)
        logger.info(
            "[OPP] %s | %s | profit $%.4f (%.2f%%) | capital $%.2f | risk %s%s",
            opportunity.strategy.value,
            opportunity.headline[:50],
            opportunity.expected_profit,
            opportunity.profit_percentage,
            opportunity.required_capital,
            opportunity.risk.value,
            " | signal only" if opportunity.is_signal_only else "",
        )

    def _log_scan_summary(self) -> None:
        stats = self._stats
        logger.info(
            "[SCAN] Done: %d opportunities found", len(self._opportunities),
        )
        if stats.binary_markets == 0:
            return

        min_text = "N/A" if stats.min_ask_sum is None else f"${stats.min_ask_sum:.4f}"
        logger.info(
            "[SCAN] binary %d/%d | missing token id %d | missing book %d | "
            "min YES+NO ask %s",
            stats.binary_markets, stats.total_markets,
            stats.markets_missing_token_id, stats.markets_missing_prices,
            min_text,
        )
        top = stats.lowest_ask_sums()
        if top:
            logger.info(
                "[SCAN] Lowest ask sums: %s",
                " | ".join(f"{s:.4f} {mid} {q[:60]}" for s, mid, q in top),
            )
