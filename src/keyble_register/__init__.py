"""
User registration for eQ-3 eqiva Bluetooth smart locks.

This package decodes "Key Card" QR data, pairs a new user with the lock over
BLE and sets the user's name, one card at a time.
"""

from .errors import (
    RegistrationError,
    MalformedCredential,
    ConnectionFailed,
    PairingRejected,
    PairingTimeout,
    WriteRejected,
    TransportFault,
)
from .key_card import KeyCard, decode, encode
from .session import LockSession, PairingResult, SessionFactory, opened
from .feed import CredentialFeed, SingleCredentialFeed, StreamCredentialFeed, from_options
from .registrar import (
    Registrar,
    RegistrarConfig,
    RegistrarState,
    RegistrationOutcome,
    BatchResult,
    DEFAULT_USER_NAME,
    DEFAULT_GRACE_PERIOD,
)

__all__ = [
    # Errors
    "RegistrationError",
    "MalformedCredential",
    "ConnectionFailed",
    "PairingRejected",
    "PairingTimeout",
    "WriteRejected",
    "TransportFault",
    # Key card
    "KeyCard",
    "decode",
    "encode",
    # Session
    "LockSession",
    "PairingResult",
    "SessionFactory",
    "opened",
    # Feed
    "CredentialFeed",
    "SingleCredentialFeed",
    "StreamCredentialFeed",
    "from_options",
    # Registrar
    "Registrar",
    "RegistrarConfig",
    "RegistrarState",
    "RegistrationOutcome",
    "BatchResult",
    "DEFAULT_USER_NAME",
    "DEFAULT_GRACE_PERIOD",
]
