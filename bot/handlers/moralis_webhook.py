"""
Moralis Streams webhook endpoint.

Moralis treats any non-200 answer as a failed delivery, retries it and
eventually disables the stream. The endpoint therefore acknowledges every
delivery immediately and unconditionally; processing runs as a background
task on the ingestion pipeline.
"""
import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# FastAPI router for webhook endpoint
fastapi_router = APIRouter()

WEBHOOK_PATH = "/webhook/moralis"
ACK = {"status": "ok"}


def _entry_count(value) -> str:
    return str(len(value)) if isinstance(value, list) else type(value).__name__


def _summarize(body) -> str:
    if not isinstance(body, dict):
        return f"non-object body ({type(body).__name__})"
    return (f"keys={','.join(map(str, body.keys()))} confirmed={body.get('confirmed')} "
            f"streamId={body.get('streamId')} "
            f"erc20Transfers={_entry_count(body.get('erc20Transfers') or [])} "
            f"logs={_entry_count(body.get('logs') or [])}")


@fastapi_router.post(WEBHOOK_PATH)
async def moralis_webhook_handler(request: Request):
    """
    Receive a Moralis stream delivery.

    Always returns 200 {"status": "ok"}, including for test webhooks,
    malformed bodies and internal failures.
    """
    try:
        raw = await request.body()
        body = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to parse Moralis webhook body: {e}")
        return JSONResponse(ACK, status_code=200)

    try:
        logger.info(f"🔔 Webhook received from Moralis: {_summarize(body)}")
        request.app.state.pipeline.submit(body)
    except Exception as e:
        logger.error(f"Error dispatching webhook delivery: {e}", exc_info=True)

    return JSONResponse(ACK, status_code=200)
