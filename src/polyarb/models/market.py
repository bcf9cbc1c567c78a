"""Market, Token and order-book data models."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_OUTCOMES = ["Yes", "No"]
DEFAULT_OUTCOME_PRICES = ["0.5", "0.5"]


@dataclass
class Token:
    """One outcome instrument of a market. Empty token_id = not tradable."""

    token_id: str
    outcome: str
    price: float
    liquidity: float


@dataclass
class Market:
    """A Polymarket market snapshot."""

    id: str
    question: str
    category: str = "unknown"
    end_date: Optional[datetime] = None
    active: bool = True
    closed: bool = False
    tokens: list[Token] = field(default_factory=list)

    @property
    def is_binary(self) -> bool:
        """Exactly two outcome tokens (YES/NO)."""
        return len(self.tokens) == 2

    @property
    def max_liquidity(self) -> float:
        return max((t.liquidity or 0.0 for t in self.tokens), default=0.0)

    @staticmethod
    def from_gamma(raw: dict) -> Market:
        """Gamma API raw dict -> Market.

        Malformed outcome JSON falls back to a 50/50 Yes/No market; malformed
        token ids leave the tokens untradable.
        """
        try:
            outcomes = _load_json_list(raw.get("outcomes"))
            prices = _load_json_list(raw.get("outcomePrices"))
        except (json.JSONDecodeError, TypeError, ValueError):
            outcomes = list(DEFAULT_OUTCOMES)
            prices = list(DEFAULT_OUTCOME_PRICES)

        try:
            token_ids = _load_json_list(raw.get("clobTokenIds"))
        except (json.JSONDecodeError, TypeError, ValueError):
            token_ids = []

        liquidity = _to_float(raw.get("liquidity") or raw.get("liquidityNum"))

        tokens = [
            Token(
                token_id=str(token_ids[i]) if i < len(token_ids) else "",
                outcome=str(outcome),
                price=_to_float(prices[i]) if i < len(prices) else 0.0,
                liquidity=liquidity,
            )
            for i, outcome in enumerate(outcomes)
        ]

        return Market(
            id=str(raw.get("conditionId") or raw.get("condition_id") or raw.get("id", "")),
            question=raw.get("question") or "",
            category=_category(raw),
            end_date=_parse_date(
                raw.get("endDateIso") or raw.get("end_date_iso") or raw.get("endDate")
            ),
            active=bool(raw.get("active", True)),
            closed=bool(raw.get("closed", False)),
            tokens=tokens,
        )


@dataclass
class Quote:
    """Best bid/ask for one token. bid <= ask is not guaranteed upstream."""

    bid: float
    ask: float

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2


@dataclass
class OrderBookLevel:
    """One price level (price + size in shares)."""

    price: float
    size: float


@dataclass
class OrderBook:
    """Order book snapshot for a single token."""

    market_id: str
    token_id: str
    bids: list[OrderBookLevel] = field(default_factory=list)
    asks: list[OrderBookLevel] = field(default_factory=list)
    timestamp: float = 0.0

    @property
    def best_bid(self) -> float:
        """Highest bid, 0 when the bid side is empty."""
        return max((lv.price for lv in self.bids), default=0.0)

    @property
    def best_ask(self) -> float:
        """Lowest ask, 1 when the ask side is empty."""
        return min((lv.price for lv in self.asks), default=1.0)

    def ask_depth_at_or_below(self, limit_price: float) -> float:
        """Shares offered at prices <= limit_price."""
        return sum(lv.size for lv in self.asks if lv.price <= limit_price)

    def bid_depth_at_or_above(self, limit_price: float) -> float:
        """Shares bid at prices >= limit_price."""
        return sum(lv.size for lv in self.bids if lv.price >= limit_price)

    @staticmethod
    def from_clob(token_id: str, data: dict, timestamp: float) -> OrderBook:
        """CLOB /book payload -> OrderBook. Raises on malformed levels."""
        return OrderBook(
            market_id=str(data.get("market") or ""),
            token_id=token_id,
            bids=[
                OrderBookLevel(price=float(b["price"]), size=float(b["size"]))
                for b in data.get("bids") or []
            ],
            asks=[
                OrderBookLevel(price=float(a["price"]), size=float(a["size"]))
                for a in data.get("asks") or []
            ],
            timestamp=timestamp,
        )


# ---------------------------------------------------------------------------
# Gamma parsing helpers
# ---------------------------------------------------------------------------


def _load_json_list(value) -> list:
    """Gamma returns list fields either as JSON strings or as lists."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError(f"Expected list, got {type(value).__name__}")
    return value


def _to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _category(raw: dict) -> str:
    tags = raw.get("tags")
    if isinstance(tags, list) and tags:
        first = tags[0]
        if isinstance(first, dict):
            label = first.get("label") or first.get("slug")
            if label:
                return str(label)
        elif first:
            return str(first)
    return raw.get("groupItemTitle") or "unknown"


def _parse_date(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable market end date: %r", value)
        return None
