"""
Moralis Streams subscription lifecycle.

One stream per monitored wallet, delivering ERC-20 Transfer logs for that
address to the webhook endpoint. The stream id is stored on the wallet
after creation and cleared after deletion.
"""
import asyncio
import logging
from typing import Optional

import aiohttp

from core.database import Database
from core.errors import ConfigurationError, SubscriptionError
from core.models import MonitoredAddress

logger = logging.getLogger(__name__)

ERC20_TRANSFER_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"}
        ],
        "name": "Transfer",
        "type": "event"
    }
]

TRANSFER_EVENT = "Transfer(address,address,uint256)"


class StreamManager:
    """Creates and deletes Moralis streams for monitored wallets."""

    def __init__(
        self,
        db: Database,
        api_key: Optional[str],
        webhook_base_url: Optional[str],
        webhook_path: str = "/webhook/moralis",
        chain_id: str = "0x38",
        api_url: str = "https://api.moralis-streams.com",
        attach_delay: float = 2.0,
        timeout: float = 10.0
    ):
        if not api_key:
            raise ConfigurationError("MORALIS_API_KEY is not set")
        self.db = db
        self.api_key = api_key
        self.chain_id = chain_id
        self.api_url = api_url.rstrip("/")
        self.attach_delay = attach_delay
        self._timeout = aiohttp.ClientTimeout(total=timeout)

        self.webhook_url: Optional[str] = None
        if webhook_base_url:
            self.webhook_url = webhook_base_url.rstrip("/") + webhook_path
            logger.info(f"Webhook URL configured: {self.webhook_url}")
        else:
            logger.warning(
                "WEBHOOK_BASE_URL is not set! Moralis needs a publicly accessible URL. "
                "For development run a tunnel (ngrok http 3001 or cloudflared tunnel --url "
                "http://localhost:3001) and set WEBHOOK_BASE_URL to its address."
            )

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        headers = {"X-API-Key": self.api_key, "Accept": "application/json"}
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.request(method, f"{self.api_url}{path}", json=payload, headers=headers) as resp:
                if resp.status >= 300:
                    detail = await resp.text()
                    raise SubscriptionError(f"Moralis {method} {path} failed with {resp.status}: {detail}")
                if resp.content_type == "application/json":
                    return await resp.json()
                return {}

    async def create_stream_for_wallet(self, wallet: MonitoredAddress) -> str:
        """
        Create a stream watching wallet and store its id.

        Raises:
            ConfigurationError: if no public webhook URL is configured
            SubscriptionError: if Moralis rejects the request
        """
        if not self.webhook_url:
            raise ConfigurationError(
                "WEBHOOK_BASE_URL is not set! Moralis requires a publicly accessible URL."
            )

        logger.info(f"Creating stream for wallet {wallet.address}")

        stream = {
            "chainIds": [self.chain_id],
            "description": f"Token transfers for wallet {wallet.address}",
            "tag": f"wallet_{wallet.id}",
            "webhookUrl": self.webhook_url,
            "includeNativeTxs": False,
            "includeContractLogs": True,
            "includeInternalTxs": False,
            "abi": ERC20_TRANSFER_ABI,
            "topic0": [TRANSFER_EVENT]
        }

        try:
            created = await self._request("PUT", "/streams/evm", stream)
            stream_id = created.get("id")
            if not stream_id:
                raise SubscriptionError(f"Moralis returned no stream id: {created}")

            # Moralis verifies the webhook URL with a test delivery first
            logger.info(f"Stream created with ID: {stream_id}, waiting for test webhook...")
            await asyncio.sleep(self.attach_delay)

            await self._request("POST", f"/streams/evm/{stream_id}/address", {"address": wallet.address})
        except aiohttp.ClientError as e:
            raise SubscriptionError(f"Error creating stream for {wallet.address}: {e}") from e
        except SubscriptionError as e:
            if "502" in str(e):
                logger.error(
                    f"Tunnel cannot reach the application. Check that the server is running and "
                    f"the tunnel points at it. Current webhook URL: {self.webhook_url}"
                )
            raise

        await self.db.set_stream_id(wallet.address, stream_id)
        wallet.stream_id = stream_id
        logger.info(f"Stream created successfully for wallet {wallet.address}, streamId: {stream_id}")
        return stream_id

    async def delete_stream_for_wallet(self, wallet: MonitoredAddress) -> bool:
        """Delete the wallet's stream and clear its id. Best effort, never raises."""
        if not wallet.stream_id:
            return False

        logger.info(f"Deleting stream {wallet.stream_id} for wallet {wallet.address}")
        try:
            await self._request("DELETE", f"/streams/evm/{wallet.stream_id}")
            await self.db.set_stream_id(wallet.address, None)
        except Exception as e:
            logger.error(f"Error deleting stream for wallet {wallet.address}: {e}")
            return False

        wallet.stream_id = None
        logger.info(f"Stream deleted successfully for wallet {wallet.address}")
        return True

    async def recreate_stream_for_wallet(self, wallet: MonitoredAddress) -> str:
        """Replace the wallet's stream, e.g. after the public URL changed."""
        if wallet.stream_id:
            await self.delete_stream_for_wallet(wallet)
        return await self.create_stream_for_wallet(wallet)

    async def initialize_streams(self) -> int:
        """Create streams for active wallets that have none. Returns streams created."""
        created = 0
        for wallet in await self.db.get_all_active_wallets():
            if wallet.stream_id:
                continue
            try:
                await self.create_stream_for_wallet(wallet)
                created += 1
            except Exception as e:
                logger.error(f"Error creating stream for wallet {wallet.address}: {e}")
        return created
