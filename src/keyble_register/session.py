"""
Lock session contract consumed by the registrar.

A session is one BLE connection to exactly one lock. Sessions are opened per
key card and never reused: a pairing may invalidate a stale connection.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairingResult:
    """Credentials handed out by the lock for the new user."""
    user_id: int
    user_key: bytes  # 16 bytes


class LockSession(ABC):
    """An open connection to a single lock."""

    address: str

    @abstractmethod
    async def pairing_request(self, card_key: bytes) -> PairingResult:
        """
        Register a new user using the card key.

        Raises:
            PairingRejected: Lock refused the card key
            PairingTimeout: Lock did not answer (not in pairing mode)
        """

    @abstractmethod
    async def set_user_name(self, name: str) -> None:
        """
        Set the name of the user created by pairing_request().

        Raises:
            WriteRejected: Lock refused the write or the link was lost
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""


# Opens a session to the given address. Raises ConnectionFailed.
SessionFactory = Callable[[str], Awaitable[LockSession]]


@asynccontextmanager
async def opened(factory: SessionFactory, address: str) -> AsyncIterator[LockSession]:
    """
    Open a session and close it on every exit path.

    A failing open propagates without a close. Errors raised by close() are
    logged and dropped so they never replace the outcome of the body.
    """
    session = await factory(address)
    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"Failed to close session to {address}: {e}")
