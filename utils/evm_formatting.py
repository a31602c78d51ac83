"""
Helpers for EVM quantities and addresses.
Token amounts stay exact integers until they are formatted for display.
"""
import re
from typing import Union

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(address: str) -> bool:
    """Check for a 0x-prefixed 20-byte hex address."""
    return bool(address) and bool(ADDRESS_RE.match(address))


def shorten_hash(tx_hash: str) -> str:
    """Shorten a transaction hash to its first 10 characters."""
    if len(tx_hash) <= 10:
        return tx_hash
    return f"{tx_hash[:10]}..."


def parse_quantity(raw: Union[int, str, float, None]) -> int:
    """
    Parse an on-chain quantity into an int.

    Accepts ints, hex strings ("0x1bc16d674ec80000"), decimal strings
    ("5000000000000000000") and integral floats. None and "" map to 0.

    Raises:
        ValueError: if the value is not an unsigned integer quantity
    """
    if raw is None:
        return 0
    if isinstance(raw, bool):
        raise ValueError(f"Invalid quantity: {raw!r}")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if not raw.is_integer():
            raise ValueError(f"Quantity is not integral: {raw!r}")
        value = int(raw)
    else:
        text = str(raw).strip()
        if not text:
            return 0
        if text.lower().startswith("0x"):
            value = int(text, 16) if len(text) > 2 else 0
        else:
            value = int(text, 10)
    if value < 0:
        raise ValueError(f"Quantity must be unsigned: {raw!r}")
    return value


def format_units(value: int, decimals: int = 18) -> str:
    """
    Divide an integer quantity by 10**decimals and render it as a decimal string.

    Trailing zeros of the fraction are dropped but at least one fractional
    digit is kept, so 5 * 10**18 with 18 decimals renders as "5.0".
    """
    if decimals < 0:
        raise ValueError(f"Invalid decimals: {decimals}")
    sign = "-" if value < 0 else ""
    value = abs(value)
    whole, remainder = divmod(value, 10 ** decimals)
    fraction = str(remainder).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{fraction or '0'}"


def parse_units(text: str, decimals: int = 18) -> int:
    """
    Inverse of format_units: "1.5" with 18 decimals -> 1500000000000000000.

    Raises:
        ValueError: on malformed input or more fractional digits than decimals
    """
    text = text.strip()
    negative = text.startswith("-")
    if negative:
        text = text[1:]
    whole, _, fraction = text.partition(".")
    if not whole and not fraction:
        raise ValueError("Empty amount")
    if not (whole or "0").isdigit() or (fraction and not fraction.isdigit()):
        raise ValueError(f"Invalid amount: {text!r}")
    fraction = fraction.rstrip("0")
    if len(fraction) > decimals:
        raise ValueError(f"Too many decimal places for {decimals} decimals: {text!r}")
    value = int(whole or "0") * 10 ** decimals + int(fraction.ljust(decimals, "0") or "0")
    return -value if negative else value


def decode_abi_string(result: str) -> str:
    """
    Decode the return data of an ERC-20 `symbol()` call.

    Handles the standard dynamic `string` encoding and the legacy `bytes32`
    form some older tokens use.
    """
    data = bytes.fromhex(result[2:] if result.startswith("0x") else result)
    if not data:
        return ""
    if len(data) == 32:
        return data.rstrip(b"\x00").decode("utf-8", errors="ignore")
    offset = int.from_bytes(data[:32], "big")
    length = int.from_bytes(data[offset:offset + 32], "big")
    start = offset + 32
    return data[start:start + length].decode("utf-8", errors="ignore")
