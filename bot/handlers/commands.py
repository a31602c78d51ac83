"""
Command handlers for BSC Transfer Tracker.
Wallet registration, thresholds and transaction history.
"""
import logging
from typing import Optional

from aiogram import F, Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message

from core.database import Database
from core.models import MonitoredAddress
from core.moralis_streams import StreamManager
from utils.evm_formatting import is_valid_address
from utils.formatting import (
    HELP_TEXT, format_transaction_list, format_usd, format_wallet_list
)

logger = logging.getLogger(__name__)

router = Router()

# Global references (will be set by main.py)
db: Optional[Database] = None
stream_manager: Optional[StreamManager] = None
default_threshold_usd: float = 1000.0


def _first_arg(command: CommandObject) -> Optional[str]:
    """First whitespace-separated argument of a command, if any."""
    if not command.args:
        return None
    parts = command.args.split()
    return parts[0] if parts else None


@router.message(CommandStart())
async def cmd_start(message: Message):
    """Handle /start command."""
    await message.answer("Welcome to BSC Token Tracker Bot!\n\n" + HELP_TEXT)


@router.message(Command("help"))
async def cmd_help(message: Message):
    """Handle /help command."""
    await message.answer(HELP_TEXT)


@router.message(Command("add_wallet"))
async def cmd_add_wallet(message: Message, command: CommandObject):
    """Register a wallet for transfer alerts and subscribe to its transfers."""
    address = _first_arg(command)
    if not address:
        await message.answer("Please specify a wallet address: /add_wallet <address>")
        return

    if not is_valid_address(address):
        await message.answer("Invalid wallet address format")
        return

    try:
        wallet = await db.add_wallet(MonitoredAddress(
            address=address,
            chat_id=message.chat.id,
            threshold_usd=default_threshold_usd,
            active=True
        ))
        if wallet is None:
            await message.answer(f"Wallet {address} is already being tracked")
            return

        stream_note = ""
        if stream_manager:
            try:
                await stream_manager.create_stream_for_wallet(wallet)
            except Exception as e:
                logger.error(f"Error creating stream for {wallet.address}: {e}")
                stream_note = "\n\n⚠️ Could not subscribe to transfers yet. Use /recreate_streams to retry."

        await message.answer(
            f"Wallet {address} added! Default threshold: "
            f"{format_usd(default_threshold_usd)}{stream_note}"
        )
    except Exception as e:
        logger.error(f"Error adding wallet: {e}", exc_info=True)
        await message.answer("Error adding wallet. Please try again.")


@router.message(Command("set_threshold"))
async def cmd_set_threshold(message: Message, command: CommandObject):
    """Set the USD threshold for every wallet of the chat."""
    raw_amount = _first_arg(command)
    try:
        amount = float(raw_amount) if raw_amount else 0.0
    except ValueError:
        amount = 0.0
    if not amount > 0 or amount == float("inf"):
        await message.answer("Please specify a valid threshold amount: /set_threshold <amount>")
        return

    try:
        updated = await db.update_threshold(message.chat.id, amount)
        if updated == 0:
            await message.answer("No wallets found. Add one first: /add_wallet <address>")
            return
        await message.answer(f"Threshold set to {format_usd(amount)} for all your wallets")
    except Exception as e:
        logger.error(f"Error setting threshold: {e}", exc_info=True)
        await message.answer("Error setting threshold. Please try again.")


@router.message(Command("list_wallets"))
async def cmd_list_wallets(message: Message):
    """List the chat's tracked wallets."""
    try:
        wallets = await db.get_chat_wallets(message.chat.id)
        if not wallets:
            await message.answer("No tracked wallets. Add one: /add_wallet <address>")
            return
        await message.answer(format_wallet_list(wallets))
    except Exception as e:
        logger.error(f"Error listing wallets: {e}", exc_info=True)
        await message.answer("Error fetching wallets. Please try again.")


@router.message(Command("remove_wallet"))
async def cmd_remove_wallet(message: Message, command: CommandObject):
    """Stop tracking a wallet. The stream is deleted first, best effort."""
    address = _first_arg(command)
    if not address:
        await message.answer("Please specify a wallet address: /remove_wallet <address>")
        return

    try:
        wallet = await db.get_chat_wallet(address, message.chat.id)
        if not wallet:
            await message.answer(f"Wallet {address} not found")
            return

        if stream_manager:
            await stream_manager.delete_stream_for_wallet(wallet)

        await db.remove_wallet(wallet.address, message.chat.id)
        await message.answer(f"Wallet {address} removed")
    except Exception as e:
        logger.error(f"Error removing wallet: {e}", exc_info=True)
        await message.answer("Error removing wallet. Please try again.")


@router.message(Command("transactions"))
async def cmd_transactions(message: Message):
    """Show the 10 most recent transactions across the chat's wallets."""
    try:
        wallets = await db.get_chat_wallets(message.chat.id)
        if not wallets:
            await message.answer("No tracked wallets. Add one: /add_wallet <address>")
            return

        transactions = await db.get_recent_transactions(message.chat.id, limit=10)
        if not transactions:
            await message.answer("No transactions found")
            return
        await message.answer(format_transaction_list(transactions))
    except Exception as e:
        logger.error(f"Error fetching transactions: {e}", exc_info=True)
        await message.answer("Error fetching transactions. Please try again.")


@router.message(Command("recreate_streams"))
async def cmd_recreate_streams(message: Message):
    """Recreate streams for the chat's active wallets, e.g. after the public URL changed."""
    if not stream_manager:
        await message.answer("Stream management is not configured")
        return

    try:
        wallets = await db.get_chat_wallets(message.chat.id, active_only=True)
        if not wallets:
            await message.answer("You have no active wallets to recreate streams for")
            return

        await message.answer("Recreating streams...")

        success_count = 0
        error_count = 0
        for wallet in wallets:
            try:
                await stream_manager.recreate_stream_for_wallet(wallet)
                success_count += 1
            except Exception as e:
                logger.error(f"Error recreating stream for {wallet.address}: {e}")
                error_count += 1

        await message.answer(
            f"Stream recreation finished.\n"
            f"Succeeded: {success_count}\n"
            f"Failed: {error_count}"
        )
    except Exception as e:
        logger.error(f"Error recreating streams: {e}", exc_info=True)
        await message.answer("Error recreating streams. Check the logs.")


@router.message(F.text)
async def unknown_command(message: Message):
    """Fallback for anything that is not a known command."""
    await message.answer("Unknown command. Use /help to see available commands.")
