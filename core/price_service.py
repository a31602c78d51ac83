"""
Token valuation via CoinGecko and token metadata via BSC JSON-RPC.
Lookups never raise: failures are logged and a safe default is returned.
"""
import logging
from typing import Dict, Optional

import aiohttp

from utils.evm_formatting import decode_abi_string

logger = logging.getLogger(__name__)

# ERC-20 symbol() selector
SYMBOL_SELECTOR = "0x95d89b41"


class PriceService:
    """USD prices and symbols for BEP-20 tokens."""

    def __init__(
        self,
        api_url: str = "https://api.coingecko.com/api/v3",
        platform: str = "binance-smart-chain",
        rpc_url: str = "https://bsc-dataseed.binance.org/",
        api_key: Optional[str] = None,
        timeout: float = 10.0
    ):
        self.api_url = api_url.rstrip("/")
        self.platform = platform
        self.rpc_url = rpc_url
        self.api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._symbol_cache: Dict[str, str] = {}

    async def get_token_price_in_usd(self, token_address: str) -> float:
        """
        Unit USD price of a token by contract address.

        Returns:
            Price in USD, or 0.0 if the token is unknown or the lookup failed
        """
        token_address = token_address.lower()
        if not token_address:
            return 0.0

        url = f"{self.api_url}/simple/token_price/{self.platform}"
        params = {"contract_addresses": token_address, "vs_currencies": "usd"}
        headers = {"x-cg-demo-api-key": self.api_key} if self.api_key else None

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url, params=params, headers=headers) as resp:
                    if resp.status != 200:
                        logger.warning(f"CoinGecko returned {resp.status} for token {token_address}")
                        return 0.0
                    data = await resp.json()
        except Exception as e:
            logger.error(f"Error fetching price for token {token_address}: {e}")
            return 0.0

        price = (data.get(token_address) or {}).get("usd")
        if not price:
            logger.warning(f"Price not found for token {token_address}")
            return 0.0
        return float(price)

    async def get_token_symbol(self, token_address: str) -> str:
        """
        Symbol of a token via an `eth_call` to `symbol()`.
        Caches results to avoid repeated RPC calls.
        """
        token_address = token_address.lower()
        if token_address in self._symbol_cache:
            return self._symbol_cache[token_address]
        if not token_address:
            return "UNKNOWN"

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_call",
            "params": [{"to": token_address, "data": SYMBOL_SELECTOR}, "latest"]
        }

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(self.rpc_url, json=payload) as resp:
                    if resp.status != 200:
                        logger.warning(f"RPC returned {resp.status} for symbol of {token_address}")
                        return "UNKNOWN"
                    data = await resp.json()
            symbol = decode_abi_string(data.get("result") or "0x").strip()
        except Exception as e:
            logger.error(f"Error fetching symbol for token {token_address}: {e}")
            return "UNKNOWN"

        if not symbol:
            return "UNKNOWN"

        self._symbol_cache[token_address] = symbol
        logger.debug(f"Fetched token symbol for {token_address}: {symbol}")
        return symbol
