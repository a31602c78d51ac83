"""
Normalization of Moralis stream payload entries into TransferEvent.

Moralis delivers the same ERC-20 transfer in one of two shapes:

- `erc20Transfers` entries: already decoded, field names vary between
  API versions (`to` / `toAddress`, `hash` / `transactionHash`, ...)
- `logs` entries: raw contract logs with `topic0..topic3` and hex `data`

Each shape has its own function. Both return a TransferEvent or raise
NormalizationError, which the pipeline treats as a discard.
"""
from typing import Any, Optional

from core.evm_models import NormalizationError, TransferEvent, TransferSource
from utils.evm_formatting import parse_quantity

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

DEFAULT_DECIMALS = 18


def _first(data: dict, *keys: str) -> Any:
    """Return the first present, non-empty value among keys."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_int(raw: Any, default: int = 0) -> int:
    if raw in (None, ""):
        return default
    try:
        return parse_quantity(raw)
    except ValueError:
        return default


def delivery_block_number(payload: dict) -> Optional[int]:
    """Block number carried at delivery level (`block.number` or `blockNumber`)."""
    block = payload.get("block")
    raw = block.get("number") if isinstance(block, dict) else None
    if raw in (None, ""):
        raw = payload.get("blockNumber")
    if raw in (None, ""):
        return None
    return _parse_int(raw)


def _entry_block_number(entry: dict, fallback: Optional[int]) -> int:
    block = entry.get("block")
    if isinstance(block, dict):
        raw = block.get("number")
    else:
        raw = block
    if raw in (None, ""):
        raw = entry.get("blockNumber")
    if raw in (None, ""):
        return fallback or 0
    return _parse_int(raw, fallback or 0)


def is_transfer_log(log: dict) -> bool:
    """True for logs whose topic0 is the ERC-20 Transfer signature."""
    topic0 = log.get("topic0") if isinstance(log, dict) else None
    return isinstance(topic0, str) and topic0.lower() == TRANSFER_TOPIC


def normalize_erc20_transfer(transfer: dict, block_number: Optional[int] = None) -> TransferEvent:
    """
    Normalize a decoded `erc20Transfers` entry.

    Args:
        transfer: Raw entry from the delivery
        block_number: Delivery-level block number used when the entry has none

    Raises:
        NormalizationError: if the hash or destination is missing or the value is malformed
    """
    if not isinstance(transfer, dict):
        raise NormalizationError(f"Transfer entry is not an object: {transfer!r}")

    tx_hash = _first(transfer, "transactionHash", "hash")
    if not tx_hash:
        raise NormalizationError("Transfer has no transaction hash")

    to_address = _first(transfer, "to", "toAddress")
    if not isinstance(to_address, str):
        raise NormalizationError(f"Transfer {tx_hash} has no destination address")

    token_address = _first(transfer, "contract", "tokenAddress", "address") or ""
    token_symbol = _first(transfer, "tokenSymbol", "symbol")

    try:
        raw_value = parse_quantity(_first(transfer, "value", "amount"))
    except ValueError as e:
        raise NormalizationError(f"Transfer {tx_hash} has invalid value: {e}") from e

    return TransferEvent(
        tx_hash=str(tx_hash),
        to_address=str(to_address).lower(),
        token_address=str(token_address).lower(),
        token_symbol=str(token_symbol) if token_symbol else None,
        raw_value=raw_value,
        decimals=_parse_int(_first(transfer, "tokenDecimals", "decimals"), DEFAULT_DECIMALS),
        block_number=_entry_block_number(transfer, block_number),
        source=TransferSource.ERC20_TRANSFER,
    )


def normalize_transfer_log(log: dict, block_number: Optional[int] = None) -> TransferEvent:
    """
    Normalize a raw Transfer log entry.

    The destination is the low 20 bytes of topic2; the value is the low
    32 bytes of `data`. Logs carry no symbol or decimals, so the default
    18 decimals apply.

    Raises:
        NormalizationError: if the log is not a Transfer or lacks hash / destination
    """
    if not is_transfer_log(log):
        raise NormalizationError("Log is not an ERC-20 Transfer event")

    tx_hash = _first(log, "transactionHash", "hash")
    if not tx_hash:
        raise NormalizationError("Transfer log has no transaction hash")

    topic2 = log.get("topic2")
    if not isinstance(topic2, str) or len(topic2) < 40:
        raise NormalizationError(f"Transfer log {tx_hash} has no destination topic")
    to_address = "0x" + topic2[-40:].lower()

    data = log.get("data") or ""
    if not isinstance(data, str):
        raise NormalizationError(f"Transfer log {tx_hash} has non-hex data: {data!r}")
    token_address = log.get("address") or ""
    if not isinstance(token_address, str):
        raise NormalizationError(f"Transfer log {tx_hash} has invalid token address: {token_address!r}")

    value_hex = data[2:] if data.lower().startswith("0x") else data
    try:
        raw_value = int(value_hex[-64:], 16) if value_hex else 0
    except ValueError as e:
        raise NormalizationError(f"Transfer log {tx_hash} has invalid data: {data!r}") from e

    return TransferEvent(
        tx_hash=str(tx_hash),
        to_address=to_address,
        token_address=token_address.lower(),
        token_symbol=None,
        raw_value=raw_value,
        decimals=DEFAULT_DECIMALS,
        block_number=_entry_block_number(log, block_number),
        source=TransferSource.CONTRACT_LOG,
    )
