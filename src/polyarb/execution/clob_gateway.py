"""Order gateway over py_clob_client.

ClobClient is synchronous; every call runs in a worker thread under
``order_timeout`` so it suspends only the calling task.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import OrderArgs, OrderType

from polyarb.config import BotConfig
from polyarb.models.opportunity import OrderSide

logger = logging.getLogger(__name__)

POLYGON_CHAIN_ID = 137
SIGNATURE_TYPE_POLY_PROXY = 2
SIGNATURE_TYPE_EOA = 0
DEFAULT_ORDER_TIMEOUT = 30.0  # seconds


class ClobOrderGateway:
    """Create, post, cancel and look up orders on the CLOB.

    Args:
        client: Authenticated (or authenticatable) ClobClient.
        order_timeout: Per-call timeout in seconds.
    """

    def __init__(self, client: ClobClient, order_timeout: float = DEFAULT_ORDER_TIMEOUT):
        self._client = client
        self.order_timeout = order_timeout

    @classmethod
    def from_config(cls, config: BotConfig) -> ClobOrderGateway:
        """ClobClient from the wallet settings in ``config``."""
        funder = config.funder
        client = ClobClient(
            host=config.clob_api_url,
            chain_id=POLYGON_CHAIN_ID,
            key=config.private_key,
            signature_type=SIGNATURE_TYPE_POLY_PROXY if funder else SIGNATURE_TYPE_EOA,
            funder=funder or None,
        )
        return cls(client, order_timeout=config.order_timeout)

    async def _call(self, fn, *args, **kwargs) -> Any:
        return await asyncio.wait_for(
            asyncio.to_thread(fn, *args, **kwargs), timeout=self.order_timeout,
        )

    async def authenticate(self) -> None:
        """Derive (or create) L2 API credentials and attach them to the client."""
        creds = await self._call(self._client.create_or_derive_api_creds)
        self._client.set_api_creds(creds)
        logger.info("[CLOB] API credentials ready")

    async def create_order(
        self, token_id: str, price: float, size: float, side: OrderSide,
    ) -> Optional[Any]:
        """Signed order, or None when the client refuses to build one."""
        order_args = OrderArgs(
            token_id=token_id,
            price=price,
            size=size,
            side=side.value,
        )
        signed = await self._call(self._client.create_order, order_args)
        if signed is None:
            logger.warning("[CLOB] create_order returned nothing for %s", token_id[:16])
        return signed

    async def post_order(self, signed_order: Any) -> dict:
        response = await self._call(self._client.post_order, signed_order, OrderType.GTC)
        if not isinstance(response, dict):
            raise TypeError(f"invalid post_order response: {type(response).__name__}")
        return response

    async def cancel_order(self, order_id: str) -> dict:
        response = await self._call(self._client.cancel, order_id=order_id)
        return response if isinstance(response, dict) else {}

    async def get_order(self, order_id: str) -> dict:
        response = await self._call(self._client.get_order, order_id)
        return response if isinstance(response, dict) else {}
