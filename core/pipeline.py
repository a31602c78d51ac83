"""
Ingestion pipeline for Moralis stream deliveries.

A delivery goes through:

    ping / unconfirmed filter -> normalize each entry -> wallet lookup
    -> dedup by tx hash -> valuate -> persist -> notify -> threshold
    -> (optional) hedge trade

Every entry reaches a terminal state on its own. A failure in one entry
never stops the rest of the delivery, and nothing raised here reaches the
webhook response.

Dedup is check-then-insert. Concurrent deliveries of the same hash can both
pass the check; the UNIQUE index on transactions.tx_hash rejects the second
insert, which is then treated as a duplicate.
"""
import asyncio
import logging
from typing import List, Optional, Set

from bot.notifier import Notifier
from core.database import Database
from core.evm_models import NormalizationError, TransferEvent
from core.gateio_client import GateioClient
from core.models import MonitoredAddress, TransactionRecord
from core.normalizer import (
    delivery_block_number, is_transfer_log,
    normalize_erc20_transfer, normalize_transfer_log
)
from core.price_service import PriceService
from utils.evm_formatting import format_units
from utils.logging_config import log_trade, log_transfer

logger = logging.getLogger(__name__)


def is_verification_ping(payload: dict) -> bool:
    """Moralis test delivery: tag and streamId present, no transfer data."""
    return bool(
        payload.get("tag")
        and payload.get("streamId")
        and not payload.get("erc20Transfers")
        and not payload.get("logs")
    )


def _entries(payload: dict, key: str) -> list:
    entries = payload.get(key) or []
    if not isinstance(entries, list):
        logger.warning(f"Ignoring '{key}' that is not a list: {type(entries).__name__}")
        return []
    return entries


def extract_transfers(payload: dict) -> List[TransferEvent]:
    """
    Normalize all transfer entries of a delivery.
    Entries that cannot be normalized are logged and dropped.
    """
    block_number = delivery_block_number(payload)
    events: List[TransferEvent] = []

    for transfer in _entries(payload, "erc20Transfers"):
        try:
            events.append(normalize_erc20_transfer(transfer, block_number))
        except NormalizationError as e:
            logger.warning(f"Skipping ERC20 transfer: {e}")
        except Exception as e:
            logger.warning(f"Skipping malformed ERC20 transfer: {e}", exc_info=True)

    for log in _entries(payload, "logs"):
        if not is_transfer_log(log):
            continue
        try:
            events.append(normalize_transfer_log(log, block_number))
        except NormalizationError as e:
            logger.warning(f"Skipping transfer log: {e}")
        except Exception as e:
            logger.warning(f"Skipping malformed transfer log: {e}", exc_info=True)

    return events


class IngestionPipeline:
    """Processes Moralis deliveries into recorded transactions, alerts and trades."""

    def __init__(
        self,
        db: Database,
        price_service: PriceService,
        notifier: Notifier,
        trade_client: Optional[GateioClient] = None,
        trade_size_fraction: float = 0.01
    ):
        self.db = db
        self.price_service = price_service
        self.notifier = notifier
        self.trade_client = trade_client
        self.trade_size_fraction = trade_size_fraction
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def submit(self, payload) -> asyncio.Task:
        """
        Schedule a delivery for processing and return immediately.
        The task is kept referenced until it finishes.
        """
        task = asyncio.create_task(self._run_delivery(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self):
        """Wait for all submitted deliveries to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _run_delivery(self, payload):
        try:
            await self.handle_delivery(payload)
        except Exception as e:
            logger.error(f"Error processing webhook delivery: {e}", exc_info=True)

    async def handle_delivery(self, payload) -> List[TransactionRecord]:
        """
        Process one delivery.

        Returns:
            Transactions recorded from this delivery
        """
        if not isinstance(payload, dict):
            logger.warning(f"Ignoring webhook delivery that is not an object: {type(payload).__name__}")
            return []

        logger.debug(f"Received webhook event, confirmed: {payload.get('confirmed')}, "
                     f"streamId: {payload.get('streamId')}")

        if is_verification_ping(payload):
            logger.info(f"Received test webhook for stream {payload.get('streamId')}")
            return []

        # Unconfirmed deliveries are sent again once confirmed
        if not payload.get("confirmed"):
            logger.debug("Skipping unconfirmed webhook event")
            return []

        recorded = []
        for event in extract_transfers(payload):
            try:
                record = await self.process_transfer(event)
            except Exception as e:
                logger.error(f"Error processing transfer {event.tx_hash}: {e}", exc_info=True)
                continue
            if record:
                recorded.append(record)
        return recorded

    async def process_transfer(self, event: TransferEvent) -> Optional[TransactionRecord]:
        """
        Record, announce and possibly hedge a single transfer.

        Returns:
            The new transaction, or None if the event was discarded
        """
        wallet = await self.db.get_wallet_by_address(event.to_address)
        if not wallet:
            logger.debug(f"No wallet registered for address {event.to_address}")
            return None
        if not wallet.active:
            logger.debug(f"Wallet {event.to_address} is not active")
            return None

        if await self.db.get_transaction_by_hash(event.tx_hash):
            logger.debug(f"Transaction {event.tx_hash} already processed")
            return None

        token_symbol = event.token_symbol
        if not token_symbol:
            token_symbol = await self.price_service.get_token_symbol(event.token_address)

        amount = format_units(event.raw_value, event.decimals)
        try:
            price = await self.price_service.get_token_price_in_usd(event.token_address)
        except Exception as e:
            logger.warning(f"Price lookup failed for {event.token_address}, using 0: {e}")
            price = 0.0
        amount_usd = float(amount) * price

        record = await self.db.add_transaction(TransactionRecord(
            tx_hash=event.tx_hash,
            wallet_id=wallet.id,
            token_address=event.token_address,
            token_symbol=token_symbol or "UNKNOWN",
            amount=amount,
            amount_usd=amount_usd,
            block_number=event.block_number,
            trade_triggered=False
        ))
        if record is None:
            # Lost the race against a concurrent delivery of the same hash
            return None

        logger.info(f"Token transfer detected: {amount} {record.token_symbol} "
                    f"(${amount_usd:.2f}) to {wallet.address}")
        log_transfer(record.token_symbol, amount, amount_usd, wallet.address, record.tx_hash)

        try:
            await self.notifier.notify_transfer(wallet, record)
        except Exception as e:
            logger.error(f"Error sending transfer notification for {record.tx_hash}: {e}")

        if amount_usd >= wallet.threshold_usd:
            await self.open_short_position(record, wallet)

        return record

    async def open_short_position(self, record: TransactionRecord, wallet: MonitoredAddress) -> bool:
        """
        Sell trade_size_fraction of the transfer's USD value on Gate.io.

        Returns:
            True if an order was placed and the record flagged
        """
        if record.trade_triggered:
            return False
        if self.trade_client is None:
            logger.warning(f"Trading disabled, not hedging {record.token_symbol} (${record.amount_usd:.2f})")
            return False

        order_amount = record.amount_usd * self.trade_size_fraction
        if order_amount <= 0:
            logger.info(f"Order size for {record.tx_hash} is zero, skipping short")
            return False

        logger.info(f"Opening short position for {record.token_symbol} (${record.amount_usd:.2f})")

        try:
            trading_pair = await self.trade_client.find_trading_pair(record.token_symbol)
            if not trading_pair:
                logger.warning(f"Trading pair not found for {record.token_symbol}")
                return False

            await self.trade_client.open_short_position(trading_pair, order_amount)
            log_trade(trading_pair, order_amount, record.tx_hash)

            if not await self.db.mark_trade_triggered(record.id):
                logger.warning(f"Order placed for {record.tx_hash} but its trade flag was already set")
                return False
            record.trade_triggered = True
        except Exception as e:
            logger.error(f"Error opening short position for {record.tx_hash}: {e}")
            return False

        logger.info(f"Short position opened successfully for {record.token_symbol}")
        await self.notifier.notify_trade(wallet, record, order_amount)
        return True
