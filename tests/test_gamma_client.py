"""Tests for the Gamma API market source."""

from __future__ import annotations

import asyncio
import re

from aioresponses import aioresponses

from polyarb.discovery.gamma_client import GammaClient

MARKETS_PATTERN = re.compile(r"^https://gamma-api\.polymarket\.com/markets(\?.*)?$")
MARKET_PATTERN = re.compile(r"^https://gamma-api\.polymarket\.com/markets/[^/?]+")


def _raw(market_id: str, liquidity: float) -> dict:
    return {
        "id": market_id,
        "conditionId": f"0x{market_id}",
        "question": f"Question {market_id}?",
        "outcomes": '["Yes", "No"]',
        "outcomePrices": '["0.5", "0.5"]',
        "clobTokenIds": f'["{market_id}_y", "{market_id}_n"]',
        "liquidity": str(liquidity),
    }


def _client(**kw) -> GammaClient:
    kw.setdefault("retry_delay", 0)
    return GammaClient(**kw)


class TestGammaClientContextManager:
    async def test_async_context_manager(self):
        async with _client() as client:
            assert client._session is not None
        assert client._session is None

    async def test_manual_close(self):
        client = _client()
        await client.open()
        assert client._session is not None
        await client.close()
        assert client._session is None


class TestListActiveMarkets:
    async def test_success_sorted_by_liquidity(self):
        with aioresponses() as m:
            m.get(MARKETS_PATTERN, payload=[_raw("a", 100), _raw("b", 900), _raw("c", 500)])
            async with _client() as client:
                markets = await client.list_active_markets()
        assert [mk.id for mk in markets] == ["0xb", "0xc", "0xa"]
        assert markets[0].tokens[0].token_id == "b_y"

    async def test_truncated_to_max_markets(self):
        with aioresponses() as m:
            m.get(MARKETS_PATTERN, payload=[_raw(str(i), i) for i in range(10)])
            async with _client(max_markets=3) as client:
                markets = await client.list_active_markets()
        assert [mk.id for mk in markets] == ["0x9", "0x8", "0x7"]

    async def test_accepts_wrapped_payload(self):
        with aioresponses() as m:
            m.get(MARKETS_PATTERN, payload={"markets": [_raw("a", 1)]})
            async with _client() as client:
                markets = await client.list_active_markets(category="crypto")
        assert len(markets) == 1

    async def test_category_sent_as_tag(self):
        with aioresponses() as m:
            m.get(MARKETS_PATTERN, payload=[])
            async with _client() as client:
                await client.list_active_markets(category="politics")
            (method, url), _ = next(iter(m.requests.items()))
        assert method == "GET"
        assert url.query["tag"] == "politics"
        assert url.query["active"] == "true"
        assert url.query["closed"] == "false"

    async def test_skips_non_dict_entries(self):
        with aioresponses() as m:
            m.get(MARKETS_PATTERN, payload=[_raw("a", 1), "junk", None])
            async with _client() as client:
                markets = await client.list_active_markets()
        assert len(markets) == 1

    async def test_retries_then_succeeds(self):
        with aioresponses() as m:
            m.get(MARKETS_PATTERN, status=500)
            m.get(MARKETS_PATTERN, exception=asyncio.TimeoutError())
            m.get(MARKETS_PATTERN, payload=[_raw("a", 1)])
            async with _client() as client:
                markets = await client.list_active_markets()
        assert len(markets) == 1

    async def test_all_attempts_fail_returns_empty(self):
        with aioresponses() as m:
            for _ in range(3):
                m.get(MARKETS_PATTERN, status=429)
            async with _client() as client:
                assert await client.list_active_markets() == []

    async def test_unexpected_payload_returns_empty(self):
        with aioresponses() as m:
            m.get(MARKETS_PATTERN, payload={"error": "nope"})
            async with _client() as client:
                assert await client.list_active_markets() == []


class TestGetMarket:
    async def test_found(self):
        with aioresponses() as m:
            m.get(MARKET_PATTERN, payload=_raw("x", 10))
            async with _client() as client:
                market = await client.get_market("x")
        assert market is not None
        assert market.id == "0xx"

    async def test_not_found(self):
        with aioresponses() as m:
            m.get(MARKET_PATTERN, status=404)
            async with _client() as client:
                assert await client.get_market("missing") is None

    async def test_error_returns_none(self):
        with aioresponses() as m:
            m.get(MARKET_PATTERN, exception=asyncio.TimeoutError())
            async with _client() as client:
                assert await client.get_market("x") is None
