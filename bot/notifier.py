"""
Notification system for sending alerts to Telegram chats.
Delivery is best effort: failures are logged and never raised to callers.
"""
import asyncio
import logging
from typing import Set

from aiogram import Bot
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter

from core.models import MonitoredAddress, TransactionRecord
from utils.formatting import format_trade_alert, format_transfer_alert

logger = logging.getLogger(__name__)


class Notifier:
    """Sends transfer and trade alerts to the chat that owns the wallet."""

    def __init__(self, bot: Bot, rate_limit_delay: float = 0.05):
        self.bot = bot
        self._rate_limit_delay = rate_limit_delay  # pause before every message
        self._blocked_chats: Set[int] = set()

    async def send(self, chat_id: int, text: str) -> bool:
        """
        Send text to a chat.

        Returns:
            True if the message was delivered
        """
        if chat_id in self._blocked_chats:
            logger.debug(f"Skipping message to blocked chat {chat_id}")
            return False

        try:
            await self._send_message(chat_id, text)
            return True
        except Exception as e:
            logger.error(f"Error sending notification to {chat_id}: {e}")
            return False

    async def notify_transfer(self, wallet: MonitoredAddress, record: TransactionRecord) -> bool:
        """Send the transfer alert to the wallet's chat."""
        return await self.send(wallet.chat_id, format_transfer_alert(record))

    async def notify_trade(self, wallet: MonitoredAddress, record: TransactionRecord, order_amount_usd: float) -> bool:
        """Send the short-opened follow-up to the wallet's chat."""
        return await self.send(wallet.chat_id, format_trade_alert(record, order_amount_usd))

    async def _send_message(self, chat_id: int, text: str):
        """
        Deliver text as a plain Telegram message.

        A flood-control answer is waited out once; a chat that blocked the
        bot is muted for the rest of the process lifetime.
        """
        await asyncio.sleep(self._rate_limit_delay)

        for attempt in range(2):
            try:
                await self.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=None,
                    disable_web_page_preview=True
                )
                return
            except TelegramRetryAfter as e:
                if attempt:
                    raise
                logger.warning(f"Telegram flood control on chat {chat_id}, retrying in {e.retry_after}s")
                await asyncio.sleep(e.retry_after)
            except TelegramForbiddenError:
                logger.warning(f"Chat {chat_id} blocked the bot, muting it")
                self._blocked_chats.add(chat_id)
                raise
