"""CLOB order-book and best-price source.

Fetches https://clob.polymarket.com/book per token, with a short TTL cache
keyed by token id; expired keys are pruned on write. Every failure (timeout,
404, 429, malformed JSON) becomes None: callers skip the instrument for this
pass.

Concurrent readers may race to refresh the same key; last write wins.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from polyarb.models.market import OrderBook, Quote

logger = logging.getLogger(__name__)

CLOB_API_URL = "https://clob.polymarket.com"
DEFAULT_TIMEOUT = 3  # seconds
CACHE_TTL_SECS = 2.0
MAX_JITTER_SECS = 0.1
RATE_LIMIT_BACKOFF_SECS = 1.0


@dataclass
class _CacheEntry:
    book: Optional[OrderBook]
    fetched_at: float


class OrderbookService:
    """Async order-book fetcher with TTL cache.

    Args:
        base_url: CLOB API base URL.
        session: Optional shared aiohttp session (not closed by us).
        timeout: Per-request timeout in seconds.
        cache_ttl: Seconds a cached book (or a cached 404) is served.
        max_jitter: Upper bound of the random delay before each fetch.
        rate_limit_backoff: Base pause after a 429 (plus up to the same again).
    """

    def __init__(
        self,
        base_url: str = CLOB_API_URL,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: float = CACHE_TTL_SECS,
        max_jitter: float = MAX_JITTER_SECS,
        rate_limit_backoff: float = RATE_LIMIT_BACKOFF_SECS,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self.cache_ttl = cache_ttl
        self.max_jitter = max_jitter
        self.rate_limit_backoff = rate_limit_backoff
        self._cache: dict[str, _CacheEntry] = {}
        self._last_prune = time.monotonic()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close owned aiohttp session."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_order_book(self, token_id: str) -> Optional[OrderBook]:
        """Order book for a token, or None when no data is available."""
        cached = self._cache.get(token_id)
        if cached is not None and time.monotonic() - cached.fetched_at < self.cache_ttl:
            return cached.book

        if self.max_jitter > 0:
            await asyncio.sleep(random.uniform(0, self.max_jitter))

        try:
            session = await self._ensure_session()
            async with session.get(
                f"{self.base_url}/book",
                params={"token_id": token_id},
                timeout=self._timeout,
            ) as resp:
                if resp.status == 404:
                    self._store(token_id, None)
                    return None
                if resp.status == 429:
                    wait = self.rate_limit_backoff * (1 + random.random())
                    logger.warning(
                        "CLOB 429 for token %s, backing off %.1fs", token_id, wait,
                    )
                    await asyncio.sleep(wait)
                    return None
                if resp.status != 200:
                    logger.warning(
                        "CLOB /book returned %d for token %s", resp.status, token_id,
                    )
                    return None
                data = await resp.json()

            book = OrderBook.from_clob(token_id, data, timestamp=time.time())
        except asyncio.TimeoutError:
            logger.debug("CLOB /book timeout for token %s", token_id)
            return None
        except Exception as exc:
            logger.debug("CLOB /book error for token %s: %s", token_id, exc)
            return None

        self._store(token_id, book)
        return book

    def _store(self, token_id: str, book: Optional[OrderBook]) -> None:
        """Cache ``book``; expired entries are dropped at most once per TTL."""
        now = time.monotonic()
        if now - self._last_prune >= self.cache_ttl:
            self._cache = {
                k: v for k, v in self._cache.items()
                if now - v.fetched_at < self.cache_ttl
            }
            self._last_prune = now
        self._cache[token_id] = _CacheEntry(book, now)

    async def get_best_prices(self, token_id: str) -> Optional[Quote]:
        """Best bid/ask. Empty bid side -> 0, empty ask side -> 1."""
        book = await self.get_order_book(token_id)
        if book is None:
            return None
        return Quote(bid=book.best_bid, ask=book.best_ask)

    async def check_liquidity(self, token_id: str, min_liquidity: float) -> bool:
        """True if total bid + ask size reaches ``min_liquidity`` shares."""
        book = await self.get_order_book(token_id)
        if book is None:
            return False
        total = sum(lv.size for lv in book.bids) + sum(lv.size for lv in book.asks)
        return total >= min_liquidity

    def clear_cache(self) -> None:
        self._cache.clear()
