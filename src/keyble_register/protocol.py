"""
eQ-3 eqiva lock message definitions and fragmentation.

Message format: [Type (1 byte)][Payload (variable)]

Messages travel in 16-byte fragments:
    [Status (1B)][Data (15B, zero padded)]
Status bit 7 marks the first fragment, bits 0-6 count the fragments still to
follow. Secure messages (type bit 7 set) carry an encrypted payload followed
by the sender's security counter and an authentication value.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from .crypto import (
    AUTH_VALUE_SIZE,
    KEY_SIZE,
    SESSION_NONCE_SIZE,
    compute_auth_value,
    crypt_data,
    pad_to_multiple,
)

logger = logging.getLogger(__name__)

FRAGMENT_SIZE = 16
FRAGMENT_DATA_SIZE = FRAGMENT_SIZE - 1
FIRST_FRAGMENT_FLAG = 0x80
REMAINING_FRAGMENTS_MASK = 0x7F

# User id used for the connection request before pairing has assigned one
UNREGISTERED_USER_ID = 0xFF

PAIR_KEY_FIELD_SIZE = 22
USER_NAME_SIZE = 20
SECURITY_COUNTER_SIZE = 2


class MessageType(IntEnum):
    """Protocol message types."""
    FRAGMENT_ACK = 0x00
    ANSWER_WITHOUT_SECURITY = 0x01
    CONNECTION_REQUEST = 0x02
    CONNECTION_INFO = 0x03
    PAIRING_REQUEST = 0x04
    STATUS_CHANGED_NOTIFICATION = 0x05
    CLOSE_CONNECTION = 0x06
    ANSWER_WITH_SECURITY = 0x81
    STATUS_REQUEST = 0x82
    STATUS_INFO = 0x83
    USER_NAME_SET = 0x90

    @property
    def is_secure(self) -> bool:
        return bool(self & 0x80)


class ProtocolError(Exception):
    """Malformed or unexpected data from the lock."""


@dataclass
class Fragment:
    """A single 16-byte message fragment."""
    status: int
    data: bytes

    @property
    def is_first(self) -> bool:
        return bool(self.status & FIRST_FRAGMENT_FLAG)

    @property
    def remaining(self) -> int:
        return self.status & REMAINING_FRAGMENTS_MASK

    @property
    def is_last(self) -> bool:
        return self.remaining == 0

    def build(self) -> bytes:
        return bytes([self.status]) + self.data.ljust(FRAGMENT_DATA_SIZE, b"\x00")

    @classmethod
    def parse(cls, raw: bytes) -> "Fragment":
        if len(raw) < 2:
            raise ProtocolError(f"Fragment too short: {len(raw)} bytes")
        return cls(status=raw[0], data=bytes(raw[1:]))


def split_message(message: bytes) -> list[Fragment]:
    """Split a complete message (type byte included) into fragments."""
    if not message:
        raise ValueError("Cannot split an empty message")

    chunks = [
        message[offset:offset + FRAGMENT_DATA_SIZE]
        for offset in range(0, len(message), FRAGMENT_DATA_SIZE)
    ]
    if len(chunks) > REMAINING_FRAGMENTS_MASK + 1:
        raise ValueError(f"Message too long: {len(message)} bytes")

    fragments = []
    for index, chunk in enumerate(chunks):
        status = len(chunks) - 1 - index
        if index == 0:
            status |= FIRST_FRAGMENT_FLAG
        fragments.append(Fragment(status=status, data=chunk))
    return fragments


class MessageAssembler:
    """Collects received fragments into complete messages."""

    def __init__(self):
        self._fragments: list[Fragment] = []

    def add(self, fragment: Fragment) -> Optional[bytes]:
        """
        Add a received fragment.

        Returns:
            The complete message once its last fragment arrived, else None.
            Padding of the last fragment is kept; parsers ignore trailing bytes.
        """
        if fragment.is_first:
            if self._fragments:
                logger.warning("Discarding incomplete message, new message started")
            self._fragments = []
        elif not self._fragments:
            raise ProtocolError("Continuation fragment without a first fragment")
        else:
            expected = self._fragments[-1].remaining - 1
            if fragment.remaining != expected:
                self._fragments = []
                raise ProtocolError(
                    f"Out of order fragment: {fragment.remaining} remaining, expected {expected}"
                )

        self._fragments.append(fragment)
        if not fragment.is_last:
            return None

        message = b"".join(f.data for f in self._fragments)
        self._fragments = []
        return message


def build_fragment_ack(fragment: Fragment) -> bytes:
    """Build FRAGMENT_ACK message bytes acknowledging a received fragment."""
    return bytes([MessageType.FRAGMENT_ACK, fragment.status])


@dataclass
class ConnectionRequest:
    """
    CONNECTION_REQUEST message (0x02).

    Format: [0x02][User ID (1B)][Client session nonce (8B)]
    """
    user_id: int
    session_nonce: bytes

    def build(self) -> bytes:
        """Build CONNECTION_REQUEST message bytes."""
        return bytes([MessageType.CONNECTION_REQUEST, self.user_id]) + self.session_nonce


@dataclass
class ConnectionInfo:
    """
    CONNECTION_INFO message (0x03).

    Format: [0x03][User ID (1B)][Lock session nonce (8B)][Unknown (1B)]
            [Bootloader version (1B)][Application version (1B)]
    """
    user_id: int
    session_nonce: bytes
    bootloader_version: int
    application_version: int

    @classmethod
    def parse(cls, data: bytes) -> "ConnectionInfo":
        """Parse CONNECTION_INFO from raw bytes (excluding message type)."""
        if len(data) < 1 + SESSION_NONCE_SIZE + 3:
            raise ProtocolError(f"CONNECTION_INFO too short: {len(data)} bytes")
        return cls(
            user_id=data[0],
            session_nonce=bytes(data[1:1 + SESSION_NONCE_SIZE]),
            bootloader_version=data[1 + SESSION_NONCE_SIZE + 1],
            application_version=data[1 + SESSION_NONCE_SIZE + 2],
        )


@dataclass
class PairingRequest:
    """
    PAIRING_REQUEST message (0x04).

    Format: [0x04][User ID (1B)][Enc_CK(User key) (22B)][Security counter (2B)][Auth (4B)]
    Total: 30 bytes

    The user key is zero padded to 22 bytes, encrypted and authenticated with
    the card key rather than a session key.
    """
    user_id: int
    user_key: bytes

    def build(self, card_key: bytes, lock_session_nonce: bytes, security_counter: int) -> bytes:
        """Build PAIRING_REQUEST message bytes."""
        if len(self.user_key) != KEY_SIZE:
            raise ValueError(f"User key must be {KEY_SIZE} bytes")

        padded_key = self.user_key.ljust(PAIR_KEY_FIELD_SIZE, b"\x00")
        encrypted_key = crypt_data(
            card_key, padded_key, MessageType.PAIRING_REQUEST,
            lock_session_nonce, security_counter,
        )
        auth_value = compute_auth_value(
            card_key, bytes([self.user_id]) + padded_key, MessageType.PAIRING_REQUEST,
            lock_session_nonce, security_counter,
        )
        return (
            bytes([MessageType.PAIRING_REQUEST, self.user_id]) +
            encrypted_key +
            security_counter.to_bytes(SECURITY_COUNTER_SIZE, "big") +
            auth_value
        )


@dataclass
class UserNameSet:
    """
    USER_NAME_SET message (0x90), secure.

    Payload: [User ID (1B)][Name (20B UTF-8, zero padded)]
    """
    user_id: int
    name: str

    def payload(self) -> bytes:
        encoded = self.name.encode("utf-8")
        if len(encoded) > USER_NAME_SIZE:
            raise ValueError(f"User name must be at most {USER_NAME_SIZE} bytes in UTF-8")
        return bytes([self.user_id]) + encoded.ljust(USER_NAME_SIZE, b"\x00")


@dataclass
class Answer:
    """ANSWER_WITHOUT_SECURITY (0x01) / ANSWER_WITH_SECURITY (0x81) payload."""
    status: int

    @property
    def accepted(self) -> bool:
        """Lock accepted the request (status bit 7 clear)."""
        return not self.status & 0x80

    @classmethod
    def parse(cls, data: bytes) -> "Answer":
        if not data:
            raise ProtocolError("Empty answer")
        return cls(status=data[0])


def seal_secure_message(
    message_type: MessageType,
    payload: bytes,
    user_key: bytes,
    lock_session_nonce: bytes,
    security_counter: int,
) -> bytes:
    """
    Build a secure message.

    Format: [Type (1B)][Enc_UK(Payload padded to 15n)][Security counter (2B)][Auth (4B)]
    """
    padded = pad_to_multiple(payload, FRAGMENT_DATA_SIZE)
    encrypted = crypt_data(user_key, padded, message_type, lock_session_nonce, security_counter)
    auth_value = compute_auth_value(user_key, padded, message_type, lock_session_nonce, security_counter)
    return (
        bytes([message_type]) +
        encrypted +
        security_counter.to_bytes(SECURITY_COUNTER_SIZE, "big") +
        auth_value
    )


def open_secure_message(
    message: bytes,
    user_key: bytes,
    client_session_nonce: bytes,
) -> tuple[int, bytes, int]:
    """
    Decrypt and verify a received secure message.

    The assembled message may carry fragment padding after the authentication
    value, so the ciphertext length is taken as the largest multiple of 15
    that still leaves room for the counter and authentication value.

    Returns:
        Tuple of (message_type, payload, security_counter)

    Raises:
        ProtocolError: If the message is too short or fails authentication
    """
    trailer = SECURITY_COUNTER_SIZE + AUTH_VALUE_SIZE
    body_length = len(message) - 1 - trailer
    if body_length < FRAGMENT_DATA_SIZE:
        raise ProtocolError(f"Secure message too short: {len(message)} bytes")

    body_length -= body_length % FRAGMENT_DATA_SIZE
    message_type = message[0]
    encrypted = message[1:1 + body_length]
    counter_bytes = message[1 + body_length:1 + body_length + SECURITY_COUNTER_SIZE]
    auth_value = message[1 + body_length + SECURITY_COUNTER_SIZE:1 + body_length + trailer]
    security_counter = int.from_bytes(counter_bytes, "big")

    payload = crypt_data(user_key, encrypted, message_type, client_session_nonce, security_counter)
    expected = compute_auth_value(user_key, payload, message_type, client_session_nonce, security_counter)
    if expected != auth_value:
        raise ProtocolError("Authentication value mismatch")

    return message_type, payload, security_counter
