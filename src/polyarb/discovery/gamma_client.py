"""Gamma API market source with retry and error handling."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from polyarb.models.market import Market

logger = logging.getLogger(__name__)

GAMMA_API_URL = "https://gamma-api.polymarket.com"
DEFAULT_TIMEOUT = 10  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds, grows x1.5 per attempt
RETRY_BACKOFF_FACTOR = 1.5
DEFAULT_PAGE_LIMIT = 300


class GammaClient:
    """Async client for the Polymarket Gamma API.

    Usage:
        async with GammaClient() as client:
            markets = await client.list_active_markets(category="crypto")
    """

    def __init__(
        self,
        base_url: str = GAMMA_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_markets: int = DEFAULT_PAGE_LIMIT,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_markets = max_markets
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self) -> None:
        """Open aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> GammaClient:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_active_markets(self, category: str | None = None) -> list[Market]:
        """GET /markets?active=true&closed=false. Empty list on failure.

        Markets are ordered by liquidity (highest first) and truncated to
        ``max_markets``.
        """
        params = {
            "active": "true",
            "closed": "false",
            "limit": str(DEFAULT_PAGE_LIMIT),
        }
        if category:
            params["tag"] = category

        data = await self._get_with_retry(f"{self.base_url}/markets", params)
        if isinstance(data, list):
            raw_markets = data
        elif isinstance(data, dict) and isinstance(data.get("markets"), list):
            raw_markets = data["markets"]
        else:
            raw_markets = []

        markets: list[Market] = []
        for raw in raw_markets:
            if not isinstance(raw, dict):
                continue
            markets.append(Market.from_gamma(raw))

        markets.sort(key=lambda m: m.max_liquidity, reverse=True)
        selected = markets[: self.max_markets]
        logger.info(
            "Fetched %d active markets%s",
            len(selected), f" (category: {category})" if category else "",
        )
        return selected

    async def get_market(self, market_id: str) -> Optional[Market]:
        """GET /markets/{id}. None if missing or on error."""
        data = await self._get_once(f"{self.base_url}/markets/{market_id}", {})
        if not isinstance(data, dict):
            logger.warning("Market %s not found", market_id)
            return None
        return Market.from_gamma(data)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get_with_retry(self, url: str, params: dict):
        """GET -> JSON with exponential backoff. None after the last attempt."""
        delay = self.retry_delay
        for attempt in range(1, self.max_retries + 1):
            try:
                await self.open()
                async with self._session.get(url, params=params) as resp:
                    if resp.status == 200:
                        return await resp.json(content_type=None)
                    logger.warning(
                        "Gamma API %s returned %d (attempt %d/%d)",
                        url, resp.status, attempt, self.max_retries,
                    )
            except Exception as exc:
                logger.warning(
                    "Gamma API %s error (attempt %d/%d): %s",
                    url, attempt, self.max_retries, exc,
                )

            if attempt < self.max_retries:
                await asyncio.sleep(delay)
                delay *= RETRY_BACKOFF_FACTOR

        logger.error("Gamma API %s failed after %d attempts", url, self.max_retries)
        return None

    async def _get_once(self, url: str, params: dict):
        try:
            await self.open()
            async with self._session.get(url, params=params) as resp:
                if resp.status != 200:
                    logger.warning("Gamma API %s returned %d", url, resp.status)
                    return None
                return await resp.json(content_type=None)
        except Exception as exc:
            logger.warning("Gamma API %s error: %s", url, exc)
            return None
