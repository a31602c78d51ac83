"""
Message formatting utilities for Telegram notifications and command replies.
"""
from typing import List

from core.models import MonitoredAddress, TransactionRecord
from utils.evm_formatting import shorten_hash

HELP_TEXT = (
    "Available commands:\n\n"
    "/add_wallet <address> - Track a wallet\n"
    "/set_threshold <amount> - Set the USD threshold for all your wallets\n"
    "/list_wallets - Show tracked wallets\n"
    "/remove_wallet <address> - Stop tracking a wallet\n"
    "/transactions - Show recent transactions\n"
    "/recreate_streams - Recreate all streams with the current WEBHOOK_BASE_URL\n"
    "/help - Show this help"
)


def format_usd(value: float) -> str:
    """Format a USD amount with two decimals: 1234.5 -> $1,234.50"""
    return f"${value:,.2f}"


def format_transfer_alert(record: TransactionRecord) -> str:
    """
    Format a detected incoming transfer.

    Args:
        record: The persisted transaction

    Returns:
        Plain text message
    """
    return (
        f"🔔 New token transfer detected!\n\n"
        f"Token: {record.token_symbol}\n"
        f"Amount: {record.amount}\n"
        f"Value: {format_usd(record.amount_usd)}\n"
        f"Transaction: {record.tx_hash}\n"
        f"Block: {record.block_number}"
    )


def format_trade_alert(record: TransactionRecord, order_amount_usd: float) -> str:
    """Format the follow-up message sent after a short position was opened."""
    return (
        f"📉 Short position opened for {record.token_symbol}!\n"
        f"Transfer value: {format_usd(record.amount_usd)}\n"
        f"Order size: {format_usd(order_amount_usd)}"
    )


def format_wallet_list(wallets: List[MonitoredAddress]) -> str:
    """Numbered list of a chat's wallets with threshold and status."""
    lines = ["Tracked wallets:\n"]
    for index, wallet in enumerate(wallets, start=1):
        status = "🟢 Active" if wallet.active else "🔴 Inactive"
        lines.append(f"{index}. {wallet.address}")
        lines.append(f"   Threshold: {format_usd(wallet.threshold_usd)}")
        lines.append(f"   Status: {status}\n")
    return "\n".join(lines)


def format_transaction_list(transactions: List[TransactionRecord]) -> str:
    """Numbered list of recent transactions."""
    lines = ["Recent transactions:\n"]
    for index, tx in enumerate(transactions, start=1):
        lines.append(f"{index}. {tx.token_symbol}")
        lines.append(f"   Amount: {tx.amount}")
        lines.append(f"   Value: {format_usd(tx.amount_usd)}")
        lines.append(f"   Short: {'Yes' if tx.trade_triggered else 'No'}")
        lines.append(f"   {shorten_hash(tx.tx_hash)}\n")
    return "\n".join(lines)
