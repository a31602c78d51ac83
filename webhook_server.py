"""
FastAPI application receiving Moralis stream webhooks.
Served by uvicorn inside the main process (see main.py).
"""
import logging
from typing import Optional

from fastapi import FastAPI

from bot.handlers import moralis_webhook
from core.database import Database
from core.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


def create_app(pipeline: IngestionPipeline, db: Optional[Database] = None) -> FastAPI:
    """Build the webhook app around an ingestion pipeline."""
    app = FastAPI(
        title="BSC Transfer Tracker Webhook Server",
        description="Receives Moralis stream webhooks for monitored BSC wallets",
        version="1.0.0"
    )
    app.state.pipeline = pipeline
    app.state.db = db

    app.include_router(moralis_webhook.fastapi_router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "BSC Transfer Tracker Webhook Server",
            "endpoints": {
                "webhook": moralis_webhook.WEBHOOK_PATH,
                "health": "/health"
            }
        }

    @app.get("/health")
    async def health_check():
        """Detailed health check."""
        database = app.state.db
        connected = bool(database and database.conn)
        result = {
            "status": "healthy" if connected else "degraded",
            "database": "connected" if connected else "disconnected",
            "pending_deliveries": app.state.pipeline.pending_count
        }
        if connected:
            result["stats"] = await database.get_stats()
        return result

    return app
