"""
Cryptographic utilities for the eQ-3 eqiva lock protocol.

The lock uses AES-128 in a CCM-like construction: a counter-mode keystream
for confidentiality and a CBC-MAC truncated to 4 bytes for authentication.
Both are built here on top of the raw AES-ECB block primitive.
"""

import os
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend

# Constants
KEY_SIZE = 16  # 128 bits
BLOCK_SIZE = 16
SESSION_NONCE_SIZE = 8
AUTH_VALUE_SIZE = 4


def generate_random_bytes(size: int) -> bytes:
    """Generate cryptographically secure random bytes."""
    return os.urandom(size)


def generate_session_nonce() -> bytes:
    """Generate a random 8-byte session open nonce."""
    return generate_random_bytes(SESSION_NONCE_SIZE)


def generate_user_key() -> bytes:
    """Generate a random 16-byte user key."""
    return generate_random_bytes(KEY_SIZE)


def pad_to_multiple(data: bytes, multiple: int) -> bytes:
    """Zero-pad data to the next multiple of the given size."""
    remainder = len(data) % multiple
    if remainder == 0:
        return data
    return data + bytes(multiple - remainder)


def xor_bytes(a: bytes, b: bytes) -> bytes:
    """XOR two byte strings, truncated to the shorter one."""
    return bytes(x ^ y for x, y in zip(a, b))


def encrypt_block(key: bytes, block: bytes) -> bytes:
    """Encrypt a single 16-byte block with AES-128-ECB."""
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes")
    if len(block) != BLOCK_SIZE:
        raise ValueError(f"Block must be {BLOCK_SIZE} bytes")

    cipher = Cipher(algorithms.AES(key), modes.ECB(), backend=default_backend())
    encryptor = cipher.encryptor()
    return encryptor.update(block) + encryptor.finalize()


def compute_nonce(message_type: int, session_nonce: bytes, security_counter: int) -> bytes:
    """
    Build the 13-byte nonce used for both encryption and authentication.

    Format: [Type (1B)][Session nonce (8B)][0x00 0x00][Security counter (2B BE)]
    """
    if len(session_nonce) != SESSION_NONCE_SIZE:
        raise ValueError(f"Session nonce must be {SESSION_NONCE_SIZE} bytes")
    return (
        bytes([message_type]) +
        session_nonce +
        b"\x00\x00" +
        security_counter.to_bytes(2, "big")
    )


def crypt_data(
    key: bytes,
    data: bytes,
    message_type: int,
    session_nonce: bytes,
    security_counter: int,
) -> bytes:
    """
    Encrypt or decrypt data with the counter-mode keystream.

    The operation is its own inverse.
    """
    nonce = compute_nonce(message_type, session_nonce, security_counter)
    output = bytearray()
    for offset in range(0, len(data), BLOCK_SIZE):
        counter = offset // BLOCK_SIZE + 1
        keystream = encrypt_block(key, bytes([0x01]) + nonce + counter.to_bytes(2, "big"))
        output += xor_bytes(data[offset:offset + BLOCK_SIZE], keystream)
    return bytes(output)


def compute_auth_value(
    key: bytes,
    data: bytes,
    message_type: int,
    session_nonce: bytes,
    security_counter: int,
) -> bytes:
    """
    Compute the 4-byte authentication value (truncated CBC-MAC) for data.

    Args:
        key: 16-byte key
        data: Plaintext data
        message_type: Message type the data belongs to
        session_nonce: Session open nonce of the receiving side
        security_counter: Security counter of the sending side

    Returns:
        4-byte authentication value
    """
    nonce = compute_nonce(message_type, session_nonce, security_counter)
    padded = pad_to_multiple(data, BLOCK_SIZE)

    mac = encrypt_block(key, bytes([0x09]) + nonce + len(data).to_bytes(2, "big"))
    for offset in range(0, len(padded), BLOCK_SIZE):
        mac = encrypt_block(key, xor_bytes(mac, padded[offset:offset + BLOCK_SIZE]))

    tag_mask = encrypt_block(key, bytes([0x01]) + nonce + b"\x00\x00")
    return xor_bytes(mac[:AUTH_VALUE_SIZE], tag_mask)
