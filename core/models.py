"""
Pydantic models for BSC Transfer Tracker data structures.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class MonitoredAddress(BaseModel):
    """Wallet address registered for transfer alerts by a chat."""
    id: Optional[int] = None
    address: str  # Always lower-cased
    chat_id: int
    threshold_usd: float = Field(default=0.0, ge=0)
    active: bool = True
    stream_id: Optional[str] = None  # Moralis stream handle
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("address")
    @classmethod
    def lower_address(cls, value: str) -> str:
        return value.strip().lower()


class TransactionRecord(BaseModel):
    """Persisted incoming transfer to a monitored address."""
    id: Optional[int] = None
    tx_hash: str
    wallet_id: int
    token_address: str
    token_symbol: str = "UNKNOWN"
    amount: str  # Decimal string, e.g. "5.0"
    amount_usd: float = 0.0  # Valuation at detection time, never recomputed
    block_number: int = 0
    trade_triggered: bool = False  # Only ever flips False -> True
    created_at: Optional[datetime] = None
