"""
Pydantic models for EVM transfer events.
Canonical form shared by both Moralis payload shapes.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class TransferSource(str, Enum):
    """Payload shape a transfer was extracted from."""
    ERC20_TRANSFER = "erc20_transfer"  # Decoded `erc20Transfers` entry
    CONTRACT_LOG = "contract_log"  # Raw `logs` entry with Transfer topic0


class TransferEvent(BaseModel):
    """ERC-20 token transfer normalized from a Moralis stream delivery."""
    tx_hash: str
    to_address: str  # Lower-cased
    token_address: str  # Lower-cased, empty if unknown
    token_symbol: Optional[str] = None  # None when the payload carried no symbol

    # Raw on-chain quantity, kept as an exact integer
    raw_value: int = 0
    decimals: int = 18

    block_number: int = 0
    source: TransferSource


class NormalizationError(ValueError):
    """Raw payload entry could not be turned into a TransferEvent."""
