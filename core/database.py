"""
Database layer using aiosqlite for BSC Transfer Tracker.
Handles all database operations with async/await support.
"""
import logging
from datetime import datetime
from typing import List, Optional

import aiosqlite

from core.models import MonitoredAddress, TransactionRecord

logger = logging.getLogger(__name__)


class Database:
    """Async database manager using SQLite."""

    def __init__(self, db_path: str):
        """Initialize database with path."""
        self.db_path = db_path
        self.conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Connect to the database and create tables if needed."""
        self.conn = await aiosqlite.connect(self.db_path)
        self.conn.row_factory = aiosqlite.Row
        await self.conn.execute("PRAGMA foreign_keys = ON")
        await self._create_tables()
        logger.info(f"Database connected: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS wallets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                address TEXT NOT NULL UNIQUE,
                chat_id INTEGER NOT NULL,
                threshold_usd REAL NOT NULL DEFAULT 0,
                active INTEGER NOT NULL DEFAULT 1,
                stream_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # tx_hash UNIQUE backs up the pipeline's check-then-insert dedup
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tx_hash TEXT NOT NULL UNIQUE,
                wallet_id INTEGER NOT NULL,
                token_address TEXT NOT NULL,
                token_symbol TEXT NOT NULL,
                amount TEXT NOT NULL,
                amount_usd REAL NOT NULL DEFAULT 0,
                block_number INTEGER NOT NULL DEFAULT 0,
                trade_triggered INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY (wallet_id) REFERENCES wallets(id) ON DELETE CASCADE
            )
        """)

        # Create indexes for faster queries
        await self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_wallets_chat_id ON wallets(chat_id)
        """)

        await self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_wallets_active ON wallets(active)
        """)

        await self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_transactions_wallet_id ON transactions(wallet_id)
        """)

        await self.conn.commit()

    @staticmethod
    def _row_to_wallet(row) -> MonitoredAddress:
        return MonitoredAddress(
            id=row['id'],
            address=row['address'],
            chat_id=row['chat_id'],
            threshold_usd=row['threshold_usd'],
            active=bool(row['active']),
            stream_id=row['stream_id'],
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at'])
        )

    @staticmethod
    def _row_to_transaction(row) -> TransactionRecord:
        return TransactionRecord(
            id=row['id'],
            tx_hash=row['tx_hash'],
            wallet_id=row['wallet_id'],
            token_address=row['token_address'],
            token_symbol=row['token_symbol'],
            amount=row['amount'],
            amount_usd=row['amount_usd'],
            block_number=row['block_number'],
            trade_triggered=bool(row['trade_triggered']),
            created_at=datetime.fromisoformat(row['created_at'])
        )

    # Wallet operations
    async def add_wallet(self, wallet: MonitoredAddress) -> Optional[MonitoredAddress]:
        """Register a wallet. Returns the stored wallet, or None if the address is taken."""
        now = datetime.utcnow()
        try:
            cursor = await self.conn.execute("""
                INSERT INTO wallets (address, chat_id, threshold_usd, active, stream_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                wallet.address.lower(),
                wallet.chat_id,
                wallet.threshold_usd,
                int(wallet.active),
                wallet.stream_id,
                now.isoformat(),
                now.isoformat()
            ))
            await self.conn.commit()
        except aiosqlite.IntegrityError:
            logger.warning(f"Wallet {wallet.address} is already registered")
            return None
        return wallet.model_copy(update={
            'id': cursor.lastrowid,
            'address': wallet.address.lower(),
            'created_at': now,
            'updated_at': now
        })

    async def get_wallet_by_address(self, address: str) -> Optional[MonitoredAddress]:
        """Get a wallet by its address (case-insensitive)."""
        cursor = await self.conn.execute("""
            SELECT * FROM wallets WHERE address = ?
        """, (address.lower(),))
        row = await cursor.fetchone()
        return self._row_to_wallet(row) if row else None

    async def get_chat_wallet(self, address: str, chat_id: int) -> Optional[MonitoredAddress]:
        """Get a wallet only if it belongs to the chat."""
        cursor = await self.conn.execute("""
            SELECT * FROM wallets WHERE address = ? AND chat_id = ?
        """, (address.lower(), chat_id))
        row = await cursor.fetchone()
        return self._row_to_wallet(row) if row else None

    async def get_chat_wallets(self, chat_id: int, active_only: bool = False) -> List[MonitoredAddress]:
        """Get all wallets registered by a chat."""
        query = "SELECT * FROM wallets WHERE chat_id = ?"
        if active_only:
            query += " AND active = 1"
        cursor = await self.conn.execute(query + " ORDER BY id", (chat_id,))
        rows = await cursor.fetchall()
        return [self._row_to_wallet(row) for row in rows]

    async def get_all_active_wallets(self) -> List[MonitoredAddress]:
        """Get all active wallets across all chats."""
        cursor = await self.conn.execute("""
            SELECT * FROM wallets WHERE active = 1 ORDER BY id
        """)
        rows = await cursor.fetchall()
        return [self._row_to_wallet(row) for row in rows]

    async def update_threshold(self, chat_id: int, threshold_usd: float) -> int:
        """Set the USD threshold on every wallet of a chat. Returns rows updated."""
        cursor = await self.conn.execute("""
            UPDATE wallets SET threshold_usd = ?, updated_at = ? WHERE chat_id = ?
        """, (threshold_usd, datetime.utcnow().isoformat(), chat_id))
        await self.conn.commit()
        return cursor.rowcount

    async def set_stream_id(self, address: str, stream_id: Optional[str]) -> bool:
        """Store or clear the Moralis stream handle of a wallet."""
        cursor = await self.conn.execute("""
            UPDATE wallets SET stream_id = ?, updated_at = ? WHERE address = ?
        """, (stream_id, datetime.utcnow().isoformat(), address.lower()))
        await self.conn.commit()
        return cursor.rowcount > 0

    async def remove_wallet(self, address: str, chat_id: int) -> bool:
        """Delete a wallet (must belong to chat). Its transactions cascade."""
        cursor = await self.conn.execute("""
            DELETE FROM wallets WHERE address = ? AND chat_id = ?
        """, (address.lower(), chat_id))
        await self.conn.commit()
        return cursor.rowcount > 0

    # Transaction operations
    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[TransactionRecord]:
        """Get a recorded transaction by hash."""
        cursor = await self.conn.execute("""
            SELECT * FROM transactions WHERE tx_hash = ?
        """, (tx_hash,))
        row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None

    async def add_transaction(self, record: TransactionRecord) -> Optional[TransactionRecord]:
        """Insert a transaction. Returns None if the hash was already recorded."""
        now = datetime.utcnow()
        try:
            cursor = await self.conn.execute("""
                INSERT INTO transactions (
                    tx_hash, wallet_id, token_address, token_symbol, amount,
                    amount_usd, block_number, trade_triggered, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.tx_hash,
                record.wallet_id,
                record.token_address,
                record.token_symbol,
                record.amount,
                record.amount_usd,
                record.block_number,
                int(record.trade_triggered),
                now.isoformat()
            ))
            await self.conn.commit()
        except aiosqlite.IntegrityError:
            logger.info(f"Transaction {record.tx_hash} already recorded")
            return None
        return record.model_copy(update={'id': cursor.lastrowid, 'created_at': now})

    async def mark_trade_triggered(self, transaction_id: int) -> bool:
        """Flip trade_triggered to true. There is no way back."""
        cursor = await self.conn.execute("""
            UPDATE transactions SET trade_triggered = 1 WHERE id = ? AND trade_triggered = 0
        """, (transaction_id,))
        await self.conn.commit()
        return cursor.rowcount > 0

    async def get_recent_transactions(self, chat_id: int, limit: int = 10) -> List[TransactionRecord]:
        """Get the latest transactions across all wallets of a chat."""
        cursor = await self.conn.execute("""
            SELECT t.* FROM transactions t
            JOIN wallets w ON w.id = t.wallet_id
            WHERE w.chat_id = ?
            ORDER BY t.created_at DESC, t.id DESC
            LIMIT ?
        """, (chat_id, limit))
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    # Statistics
    async def get_stats(self) -> dict:
        """Wallet and transaction counters for the health endpoint."""
        cursor = await self.conn.execute("""
            SELECT
                (SELECT COUNT(*) FROM wallets) AS total_wallets,
                (SELECT COUNT(*) FROM wallets WHERE active = 1) AS active_wallets,
                (SELECT COUNT(*) FROM transactions) AS total_transactions,
                (SELECT COUNT(*) FROM transactions WHERE trade_triggered = 1) AS trades_triggered
        """)
        return dict(await cursor.fetchone())
