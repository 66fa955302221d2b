"""
Address encodings.

Tron addresses appear on the wire as 21-byte hex ("41" + 20 bytes) and are
displayed as base58check ("T..."). EVM addresses are 20-byte hex. All
comparisons happen on the normalized form produced by normalize_address().
"""

import logging
import string
from typing import Tuple

import base58

from chain_adapters.exceptions import AddressEncodingError
from chain_adapters.models import Chain, ChainFamily
from core.constants import (
    NATIVE_ASSET,
    TRON_ADDRESS_HEX_PREFIX,
    TRON_BASE58_ADDRESS_LENGTH,
    TRON_HEX_ADDRESS_LENGTH,
)


logger = logging.getLogger(__name__)

_HEX_DIGITS = set(string.hexdigits)


def _is_hex(value: str) -> bool:
    return bool(value) and all(c in _HEX_DIGITS for c in value)


def _strip_0x(value: str) -> str:
    if value[:2].lower() == "0x":
        return value[2:]
    return value


def tron_hex_to_base58(hex_address: str) -> str:
    """
    Convert a Tron hex address to base58check.
    
    Accepts "41" + 40 hex chars, or a bare/0x-prefixed 20-byte address
    (as found in ABI slots and event results).
    
    Raises:
        AddressEncodingError: If the value is not a 20/21 byte hex address
    """
    body = _strip_0x(hex_address.strip())
    if len(body) == 40:
        body = TRON_ADDRESS_HEX_PREFIX + body
    
    if (
        len(body) != TRON_HEX_ADDRESS_LENGTH
        or not body.lower().startswith(TRON_ADDRESS_HEX_PREFIX)
        or not _is_hex(body)
    ):
        raise AddressEncodingError(
            f"Not a Tron hex address: {hex_address!r}",
            chain=Chain.TRON.value,
            raw_data=hex_address,
        )
    
    return base58.b58encode_check(bytes.fromhex(body)).decode("ascii")


def tron_base58_to_hex(address: str) -> str:
    """
    Convert a base58check Tron address to its "41..." hex form.
    
    Raises:
        AddressEncodingError: On bad length, alphabet or checksum
    """
    try:
        raw = base58.b58decode_check(address.strip())
    except ValueError as e:
        raise AddressEncodingError(
            f"Invalid base58 address: {address!r}",
            chain=Chain.TRON.value,
            raw_data=address,
            original_error=e,
        )
    
    if len(raw) != 21 or raw[0] != 0x41:
        raise AddressEncodingError(
            f"Decoded address has wrong prefix or length: {address!r}",
            chain=Chain.TRON.value,
            raw_data=address,
        )
    return raw.hex()


def is_valid_tron_address(address: str) -> bool:
    """Check a base58check Tron address (length, prefix, checksum)."""
    if len(address) != TRON_BASE58_ADDRESS_LENGTH or not address.startswith("T"):
        return False
    try:
        tron_base58_to_hex(address)
    except AddressEncodingError:
        return False
    return True


def _looks_like_tron_hex(value: str) -> bool:
    body = _strip_0x(value)
    return (
        len(body) == TRON_HEX_ADDRESS_LENGTH
        and body.lower().startswith(TRON_ADDRESS_HEX_PREFIX)
        and _is_hex(body)
    )


def to_canonical_tron(address: str) -> Tuple[str, bool]:
    """
    Convert a Tron address to display encoding when it arrives as hex.
    
    Returns:
        (address, fallback) where fallback is True when conversion failed
        and the original value was kept.
    """
    value = address.strip()
    body = _strip_0x(value)
    if not _is_hex(body) or len(body) not in (40, TRON_HEX_ADDRESS_LENGTH):
        return value, False
    try:
        return tron_hex_to_base58(value), False
    except AddressEncodingError as e:
        logger.debug(f"Keeping raw Tron address {value}: {e}")
        return value, True


def normalize_address(chain: Chain, address: str) -> str:
    """
    Normalize an address for membership comparisons.
    
    Tron: hex input is converted to base58 first. Every chain is then
    case-folded so differently-cased spellings compare equal.
    """
    value = (address or "").strip()
    if not value or value == NATIVE_ASSET:
        return value
    
    if chain.family == ChainFamily.TRON:
        if _looks_like_tron_hex(value):
            value = tron_hex_to_base58(value)
        return value.casefold()
    
    body = _strip_0x(value)
    if len(body) == 40 and _is_hex(body):
        value = "0x" + body
    return value.casefold()
