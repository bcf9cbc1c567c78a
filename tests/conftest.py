"""Shared test fixtures for polyarb."""

from __future__ import annotations

import time
from typing import Optional

import pytest

from polyarb.models.market import Market, OrderBook, OrderBookLevel, Quote, Token
from polyarb.models.opportunity import (
    Opportunity,
    OrderSide,
    OrderType,
    RiskLevel,
    Strategy,
    Trade,
)
from polyarb.models.trading import Balance


class FakeQuotes:
    """In-memory quote / order-book source keyed by token id."""

    def __init__(self, quotes: dict[str, Quote] | None = None):
        self.quotes: dict[str, Quote] = dict(quotes or {})
        self.books: dict[str, OrderBook] = {}
        self.calls: list[str] = []

    def set_book(self, token_id: str, bids=(), asks=()) -> None:
        self.books[token_id] = OrderBook(
            market_id="",
            token_id=token_id,
            bids=[OrderBookLevel(price=p, size=s) for p, s in bids],
            asks=[OrderBookLevel(price=p, size=s) for p, s in asks],
            timestamp=time.time(),
        )

    async def get_best_prices(self, token_id: str) -> Optional[Quote]:
        self.calls.append(token_id)
        return self.quotes.get(token_id)

    async def get_order_book(self, token_id: str) -> Optional[OrderBook]:
        self.calls.append(token_id)
        return self.books.get(token_id)

    async def close(self) -> None:
        return None


def make_market(
    market_id: str = "M",
    question: str = "Will it rain tomorrow?",
    yes_id: str = "YES",
    no_id: str = "NO",
    category: str = "weather",
    liquidity: float = 5000.0,
    active: bool = True,
) -> Market:
    return Market(
        id=market_id,
        question=question,
        category=category,
        active=active,
        tokens=[
            Token(token_id=yes_id, outcome="Yes", price=0.5, liquidity=liquidity),
            Token(token_id=no_id, outcome="No", price=0.5, liquidity=liquidity),
        ],
    )


def make_opportunity(
    capital: float = 20.0,
    pct: float = 6.0,
    risk: RiskLevel = RiskLevel.LOW,
    trades: list[Trade] | None = None,
) -> Opportunity:
    if trades is None:
        trades = [
            Trade("M", "YES", OrderSide.BUY, OrderType.MARKET, 0.45),
            Trade("M", "NO", OrderSide.BUY, OrderType.MARKET, 0.50),
        ]
    return Opportunity(
        id="opp_1",
        strategy=Strategy.PRICE_IMBALANCE,
        market_id="M",
        description="Test opportunity",
        expected_profit=capital * pct / 100,
        profit_percentage=pct,
        required_capital=capital,
        timestamp=time.time(),
        risk=risk,
        trades=trades,
    )


@pytest.fixture
def fake_quotes() -> FakeQuotes:
    return FakeQuotes()


@pytest.fixture
def binary_market() -> Market:
    return make_market()


@pytest.fixture
def rich_balance() -> Balance:
    return Balance(usdc=1000.0, matic=1.0)


@pytest.fixture
def sample_gamma_market_dict() -> dict:
    """Raw market dict as returned by the Gamma API."""
    return {
        "id": "512345",
        "conditionId": "0xabc123",
        "question": "Will BTC hit 100k by June?",
        "outcomes": '["Yes", "No"]',
        "outcomePrices": '["0.62", "0.38"]',
        "clobTokenIds": '["tok_yes", "tok_no"]',
        "liquidity": "15000.5",
        "active": True,
        "closed": False,
        "endDateIso": "2026-06-30T00:00:00Z",
        "tags": [{"label": "crypto", "slug": "crypto"}],
    }
