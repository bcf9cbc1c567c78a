"""Wallet balance sources.

WalletBalanceClient reads the wallet through web3.py against public Polygon
RPC endpoints (MATIC via ``eth.get_balance``, USDC via ERC-20 ``balanceOf``
on both the bridged and the native contract). Endpoints are tried in order;
the first that answers wins. When every endpoint fails the balance is
reported as zero, never raised.

StaticBalanceSource serves a fixed paper balance for dry runs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import aiohttp
from web3 import AsyncWeb3

from polyarb.models.trading import Balance

logger = logging.getLogger(__name__)

USDC_BRIDGED = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"  # USDC.e
USDC_NATIVE = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"

RPC_ENDPOINTS: list[str] = [
    "https://polygon-bor-rpc.publicnode.com",
    "https://polygon.llamarpc.com",
    "https://polygon-rpc.com",
]

# balanceOf only
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

USDC_DECIMALS = 6
MATIC_DECIMALS = 18
DEFAULT_TIMEOUT = 10  # seconds


def make_web3(url: str, timeout: float = DEFAULT_TIMEOUT) -> AsyncWeb3:
    """AsyncWeb3 bound to a single HTTP RPC endpoint."""
    provider = AsyncWeb3.AsyncHTTPProvider(
        url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
    )
    return AsyncWeb3(provider)


class WalletBalanceClient:
    """Read USDC and MATIC balances of a wallet over Polygon RPC.

    Args:
        address: Wallet address (0x...).
        rpc_endpoints: RPC URLs, tried in order.
        timeout: Per-request timeout in seconds.
        web3_factory: Builds the AsyncWeb3 for an endpoint URL.
    """

    def __init__(
        self,
        address: str,
        rpc_endpoints: list[str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        web3_factory: Callable[[str], AsyncWeb3] | None = None,
    ):
        self.address = address
        self.rpc_endpoints = rpc_endpoints or list(RPC_ENDPOINTS)
        self._web3_factory = web3_factory or (lambda url: make_web3(url, timeout))
        self._clients: dict[str, AsyncWeb3] = {}

    def _web3(self, url: str) -> AsyncWeb3:
        if url not in self._clients:
            self._clients[url] = self._web3_factory(url)
        return self._clients[url]

    async def close(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for w3 in clients:
            await w3.provider.disconnect()

    async def get_balance(self) -> Balance:
        for url in self.rpc_endpoints:
            try:
                w3 = self._web3(url)
                owner = AsyncWeb3.to_checksum_address(self.address)
                matic_wei, bridged, native = await asyncio.gather(
                    w3.eth.get_balance(owner),
                    self._erc20_balance(w3, USDC_BRIDGED, owner),
                    self._erc20_balance(w3, USDC_NATIVE, owner),
                )
                return Balance(
                    usdc=(bridged + native) / 10 ** USDC_DECIMALS,
                    matic=matic_wei / 10 ** MATIC_DECIMALS,
                    timestamp=time.time(),
                )
            except Exception as exc:
                logger.debug("RPC %s failed (%s), trying next", url, exc)
                continue

        logger.error("All RPC endpoints failed; reporting zero balance")
        return Balance(usdc=0.0, matic=0.0, timestamp=time.time())

    @staticmethod
    async def _erc20_balance(w3: AsyncWeb3, token: str, owner: str) -> int:
        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token),
            abi=ERC20_BALANCE_ABI,
        )
        return await contract.functions.balanceOf(owner).call()


class StaticBalanceSource:
    """Fixed balance (dry-run paper account)."""

    def __init__(self, usdc: float, matic: float = 0.0):
        self.usdc = usdc
        self.matic = matic

    async def get_balance(self) -> Balance:
        return Balance(usdc=self.usdc, matic=self.matic, timestamp=time.time())

    async def close(self) -> None:
        return None
