"""
Key card QR code decoding.

The QR code printed on an eQ-3 eqiva "Key Card" looks like::

    M001A22123456K0123456789ABCDEF0123456789ABCDEFNEQ1234567

Format: ["M"][MAC (12 hex)]["K"][Card key (32 hex)][Serial (10 chars)]
Total: 56 characters
"""

import re
import string
from dataclasses import dataclass

from .errors import MalformedCredential

ADDRESS_HEX_LENGTH = 12
KEY_SIZE = 16
SERIAL_LENGTH = 10
KEY_CARD_LENGTH = 1 + ADDRESS_HEX_LENGTH + 1 + KEY_SIZE * 2 + SERIAL_LENGTH

_HEX_DIGITS = set(string.hexdigits)
_SERIAL_PATTERN = re.compile(r"^[0-9A-Z]{10}$")


@dataclass(frozen=True)
class KeyCard:
    """Decoded key card data."""
    address: str  # "AA:BB:CC:DD:EE:FF"
    key: bytes    # 16 bytes
    serial: str

    def __repr__(self) -> str:
        # Card key stays out of reprs that end up in tracebacks
        return f"KeyCard(address={self.address!r}, serial={self.serial!r})"


def _format_address(hex_digits: str) -> str:
    pairs = [hex_digits[i:i + 2] for i in range(0, len(hex_digits), 2)]
    return ":".join(pairs).upper()


def decode(data: str) -> KeyCard:
    """
    Decode the data encoded in a key card QR code.

    Args:
        data: Raw QR code text

    Returns:
        KeyCard with address, card key and serial

    Raises:
        MalformedCredential: If the text is not valid key card data
    """
    text = data.strip()

    if len(text) != KEY_CARD_LENGTH:
        raise MalformedCredential(
            f"Key card data must be {KEY_CARD_LENGTH} characters, got {len(text)}"
        )

    address_end = 1 + ADDRESS_HEX_LENGTH
    key_end = address_end + 1 + KEY_SIZE * 2

    if text[0] != "M":
        raise MalformedCredential("Key card data must start with 'M'")
    if text[address_end] != "K":
        raise MalformedCredential(f"Expected 'K' marker at position {address_end}")

    address_hex = text[1:address_end]
    key_hex = text[address_end + 1:key_end]
    serial = text[key_end:]

    if not set(address_hex) <= _HEX_DIGITS:
        raise MalformedCredential(f"Invalid address in key card data: {address_hex}")
    if not set(key_hex) <= _HEX_DIGITS:
        raise MalformedCredential("Invalid card key in key card data")
    if not _SERIAL_PATTERN.match(serial):
        raise MalformedCredential(f"Invalid serial in key card data: {serial}")

    return KeyCard(
        address=_format_address(address_hex),
        key=bytes.fromhex(key_hex),
        serial=serial,
    )


def encode(card: KeyCard) -> str:
    """Encode a KeyCard back into its QR code text."""
    address_hex = card.address.replace(":", "").upper()
    if len(address_hex) != ADDRESS_HEX_LENGTH:
        raise ValueError(f"Invalid address: {card.address}")
    if len(card.key) != KEY_SIZE:
        raise ValueError(f"Card key must be {KEY_SIZE} bytes")
    if not _SERIAL_PATTERN.match(card.serial):
        raise ValueError(f"Invalid serial: {card.serial}")
    return f"M{address_hex}K{card.key.hex().upper()}{card.serial}"
