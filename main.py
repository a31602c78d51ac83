"""
BSC Transfer Tracker - Main Entry Point
Telegram alerts for incoming token transfers on monitored BSC wallets,
with optional Gate.io hedging above a USD threshold.
"""
import asyncio
import logging
import sys
from typing import Optional

import uvicorn
from aiogram import Bot, Dispatcher
from pydantic import ValidationError

from bot.handlers import commands, moralis_webhook
from bot.notifier import Notifier
from config import Settings, ensure_data_directory, get_settings
from core.database import Database
from core.errors import ConfigurationError
from core.gateio_client import GateioClient
from core.moralis_streams import StreamManager
from core.pipeline import IngestionPipeline
from core.price_service import PriceService
from utils.logging_config import setup_logging
from webhook_server import create_app

logger = logging.getLogger(__name__)


class TransferTrackerBot:
    """Main application orchestrating bot, webhook server and pipeline."""

    def __init__(self, settings: Settings):
        """Initialize bot components."""
        self.settings = settings

        # Core components
        self.bot = Bot(token=settings.bot_token)
        self.dp = Dispatcher()
        self.db: Optional[Database] = None
        self.notifier: Optional[Notifier] = None
        self.pipeline: Optional[IngestionPipeline] = None
        self.stream_manager: Optional[StreamManager] = None
        self.trade_client: Optional[GateioClient] = None
        self.server: Optional[uvicorn.Server] = None

    async def setup(self):
        """
        Setup all components.

        Raises:
            ConfigurationError: if a required credential is missing
        """
        logger.info("Setting up BSC Transfer Tracker...")
        settings = self.settings

        self.db = Database(settings.database_path)

        # Raises before anything is opened if MORALIS_API_KEY is missing
        self.stream_manager = StreamManager(
            self.db,
            api_key=settings.moralis_api_key,
            webhook_base_url=settings.webhook_base_url,
            webhook_path=moralis_webhook.WEBHOOK_PATH,
            chain_id=settings.chain_id,
            api_url=settings.moralis_streams_url,
            attach_delay=settings.stream_attach_delay,
            timeout=settings.http_timeout
        )

        ensure_data_directory(settings.database_path)
        await self.db.connect()

        self.notifier = Notifier(self.bot)

        price_service = PriceService(
            api_url=settings.coingecko_api_url,
            platform=settings.coingecko_platform,
            rpc_url=settings.bsc_rpc_url,
            api_key=settings.coingecko_api_key,
            timeout=settings.http_timeout
        )

        if settings.trading_enabled:
            self.trade_client = GateioClient(
                api_key=settings.gateio_api_key,
                secret_key=settings.gateio_secret_key,
                api_url=settings.gateio_api_url,
                timeout=settings.http_timeout
            )
        else:
            logger.warning("GATEIO_API_KEY / GATEIO_SECRET_KEY not set, hedging trades are disabled")

        self.pipeline = IngestionPipeline(
            db=self.db,
            price_service=price_service,
            notifier=self.notifier,
            trade_client=self.trade_client,
            trade_size_fraction=settings.trade_size_fraction
        )

        # Setup handlers
        commands.db = self.db
        commands.stream_manager = self.stream_manager
        commands.default_threshold_usd = settings.default_threshold_usd
        self.dp.include_router(commands.router)

        app = create_app(self.pipeline, self.db)
        self.server = uvicorn.Server(uvicorn.Config(
            app=app,
            host=settings.host,
            port=settings.port,
            log_level="info",
            access_log=True
        ))

        logger.info("Setup complete!")

    async def check_trading_account(self):
        """Log whether the Gate.io credentials work."""
        if not self.trade_client:
            return
        try:
            balances = await self.trade_client.get_account_balance()
            logger.info(f"Gate.io account reachable, {len(balances or [])} spot balances")
        except Exception as e:
            logger.warning(f"Gate.io credentials check failed, trades may fail: {e}")

    async def initialize_streams(self):
        """Create streams for active wallets once the webhook server is listening."""
        # Moralis sends a test webhook that must be answered
        while not self.server.started:
            if self.server.should_exit:
                return
            await asyncio.sleep(0.1)
        created = await self.stream_manager.initialize_streams()
        logger.info(f"Stream initialization done, {created} stream(s) created")

    async def start(self):
        """Start the webhook server, the bot poller and startup tasks."""
        logger.info(f"Starting webhook server on {self.settings.host}:{self.settings.port}")

        polling = asyncio.create_task(
            self.dp.start_polling(self.bot, handle_signals=False),
            name="telegram_polling"
        )
        startup = [
            asyncio.create_task(self.initialize_streams(), name="stream_init"),
            asyncio.create_task(self.check_trading_account(), name="trading_check"),
        ]

        try:
            # Returns on SIGINT / SIGTERM (uvicorn handles the signals)
            await self.server.serve()
        finally:
            for task in startup:
                task.cancel()
            if not polling.done():
                try:
                    await self.dp.stop_polling()
                except RuntimeError:
                    polling.cancel()
            await asyncio.gather(polling, *startup, return_exceptions=True)
            await self.shutdown()

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down BSC Transfer Tracker...")

        if self.pipeline:
            await self.pipeline.drain()

        if self.db:
            await self.db.close()

        await self.bot.session.close()

        logger.info("Shutdown complete")


async def main():
    """Main entry point."""
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging("INFO")
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(settings.log_level)

    app = TransferTrackerBot(settings)
    try:
        await app.setup()
    except ConfigurationError as e:
        logger.critical(str(e))
        await app.shutdown()
        sys.exit(1)

    try:
        await app.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Tracker stopped by user")
