"""
Gate.io APIv4 client used for hedging trades.
Public market discovery plus HMAC-SHA512 signed private endpoints.
"""
import hashlib
import hmac
import json
import logging
import time
from typing import Optional
from urllib.parse import urlencode, urlparse

import aiohttp

from core.errors import ConfigurationError, TradeError

logger = logging.getLogger(__name__)

QUOTE_CURRENCIES = ("USDT", "USD")


def sign_request(
    secret: str,
    method: str,
    path: str,
    query_string: str,
    body: str,
    timestamp: str
) -> str:
    """
    Compute the Gate.io APIv4 SIGN header.

    Args:
        secret: API secret key
        method: HTTP method, upper case
        path: Full request path including the /api/v4 prefix
        query_string: URL-encoded query string without '?'
        body: Request body exactly as sent ('' for none)
        timestamp: Unix seconds as string, same value as the Timestamp header
    """
    hashed_body = hashlib.sha512(body.encode("utf-8")).hexdigest()
    message = f"{method}\n{path}\n{query_string}\n{hashed_body}\n{timestamp}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha512).hexdigest()


class GateioClient:
    """Spot market lookup and order placement on Gate.io."""

    def __init__(
        self,
        api_key: Optional[str],
        secret_key: Optional[str],
        api_url: str = "https://api.gateio.ws/api/v4",
        timeout: float = 10.0
    ):
        if not api_key or not secret_key:
            raise ConfigurationError("GATEIO_API_KEY and GATEIO_SECRET_KEY must be set to place trades")
        self.api_key = api_key
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self._path_prefix = urlparse(self.api_url).path
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        data: Optional[dict] = None
    ):
        """Send a signed request. Raises TradeError on non-2xx responses."""
        query_string = urlencode(params or {})
        body = json.dumps(data) if data is not None else ""
        timestamp = str(int(time.time()))
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "KEY": self.api_key,
            "Timestamp": timestamp,
            "SIGN": sign_request(
                self.secret_key, method, self._path_prefix + endpoint,
                query_string, body, timestamp
            )
        }
        url = self.api_url + endpoint + (f"?{query_string}" if query_string else "")

        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.request(method, url, data=body or None, headers=headers) as resp:
                text = await resp.text()
                try:
                    payload = json.loads(text) if text else None
                except json.JSONDecodeError:
                    payload = text
                if resp.status >= 300:
                    logger.error(f"Gate.io API error {resp.status}: {payload}")
                    raise TradeError(f"Gate.io {method} {endpoint} failed with {resp.status}", resp.status, payload)
                return payload

    async def get_trading_pairs(self) -> list:
        """All spot currency pairs (public endpoint)."""
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(f"{self.api_url}/spot/currency_pairs") as resp:
                    if resp.status != 200:
                        logger.warning(f"Failed to fetch trading pairs: {resp.status}")
                        return []
                    return await resp.json()
        except Exception as e:
            logger.error(f"Error fetching trading pairs: {e}")
            return []

    async def find_trading_pair(self, token_symbol: str) -> Optional[str]:
        """
        Find a spot market selling token_symbol against USDT (preferred) or USD.

        Returns:
            Pair id such as "CAKE_USDT", or None if the token is not listed
        """
        if not token_symbol or token_symbol.upper() == "UNKNOWN":
            return None

        symbol = token_symbol.upper()
        pairs = await self.get_trading_pairs()
        candidates = {
            str(p.get("quote", "")).upper(): p.get("id")
            for p in pairs
            if str(p.get("base", "")).upper() == symbol and p.get("trade_status", "tradable") == "tradable"
        }
        for quote in QUOTE_CURRENCIES:
            if candidates.get(quote):
                return candidates[quote]

        logger.warning(f"Trading pair not found for {token_symbol}")
        return None

    async def open_short_position(self, trading_pair: str, amount: float) -> dict:
        """
        Place a market sell order.

        Raises:
            TradeError: if Gate.io rejects the order
        """
        order = {
            "currency_pair": trading_pair,
            "side": "sell",
            "type": "market",
            "time_in_force": "ioc",
            "amount": f"{amount:.8f}".rstrip("0").rstrip(".")
        }
        result = await self._request("POST", "/spot/orders", data=order)
        logger.info(f"Short position opened on {trading_pair}: {result}")
        return result

    async def get_account_balance(self) -> list:
        """Spot account balances."""
        return await self._request("GET", "/spot/accounts")
