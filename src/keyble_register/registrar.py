"""
Registration of new users on eQ-3 eqiva smart locks.

For every key card data string from a feed the registrar decodes the card,
opens a fresh session to the lock, pairs a new user, sets its name and closes
the session. The batch stops at the first failure: the lock's pairing mode is
a single time-limited window, so later cards would only produce partial,
confusing registrations.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Awaitable, Callable, Optional

from . import key_card
from .errors import RegistrationError, TransportFault
from .feed import CredentialFeed
from .session import SessionFactory, opened

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "keyble"
DEFAULT_GRACE_PERIOD = 2.0  # seconds

PAIRING_MODE_INSTRUCTION = (
    'Press and hold "Unlock" button until the yellow light flashes '
    "in order to enter pairing mode"
)


class RegistrarState(Enum):
    """Registrar state machine states."""
    IDLE = auto()
    AWAITING_OPERATOR_READY = auto()
    PROCESSING_ITEM = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    TERMINATED = auto()


@dataclass
class RegistrarConfig:
    """Registrar configuration."""
    user_name: str = DEFAULT_USER_NAME
    grace_period: float = DEFAULT_GRACE_PERIOD


@dataclass
class RegistrationOutcome:
    """Result of registering one key card."""
    success: bool
    address: Optional[str] = None
    serial: Optional[str] = None
    user_id: Optional[int] = None
    user_key: Optional[bytes] = None
    error: Optional[RegistrationError] = None


@dataclass
class BatchResult:
    """Result of a whole run."""
    success: bool
    outcomes: list[RegistrationOutcome] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class Registrar:
    """
    Registers users for a sequence of key cards, one at a time.

    Args:
        session_factory: Opens a LockSession for a lock address
        config: User name and grace period
        sleep: Awaitable sleep used for the grace period
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        config: Optional[RegistrarConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.config = config or RegistrarConfig()
        self.sleep = sleep
        self.state = RegistrarState.IDLE

    def _set_state(self, state: RegistrarState) -> None:
        logger.debug(f"Registrar state: {self.state.name} -> {state.name}")
        self.state = state

    async def register_card(
        self,
        data: str,
        outcome: Optional[RegistrationOutcome] = None,
    ) -> RegistrationOutcome:
        """
        Register a new user with the lock described by one key card.

        Args:
            data: Key card data string
            outcome: Filled in step by step, so a caller still holds the
                address and any handed out user_id/user_key after a failure

        Raises:
            RegistrationError: On any failure; the session is closed first
        """
        if outcome is None:
            outcome = RegistrationOutcome(success=False)

        card = key_card.decode(data)
        outcome.address = card.address
        outcome.serial = card.serial
        logger.info(
            f'Registering user on Smart Lock with address "{card.address}", '
            f'card key "{card.key.hex()}" and serial "{card.serial}"...'
        )

        async with opened(self.session_factory, card.address) as session:
            result = await session.pairing_request(card.key)
            outcome.user_id = result.user_id
            outcome.user_key = result.user_key
            logger.info("User registered!")
            logger.info(
                f'Use arguments: "--address {card.address} '
                f'--user_id {result.user_id} --user_key {result.user_key.hex()}"'
            )

            logger.info(f'Setting user name to "{self.config.user_name}"...')
            await session.set_user_name(self.config.user_name)
            logger.info("User name changed!")

        logger.info("Finished registering user.")
        outcome.success = True
        return outcome

    async def _process(self, data: str) -> RegistrationOutcome:
        """Register one card, reporting any failure as a failed outcome."""
        outcome = RegistrationOutcome(success=False)
        try:
            return await self.register_card(data, outcome)
        except RegistrationError as e:
            outcome.error = e
        except Exception as e:
            outcome.error = TransportFault(f"Unexpected error: {e!r}")
            outcome.error.__cause__ = e

        logger.error(f"Registration failed: {outcome.error}")
        logger.debug("Registration failure details", exc_info=outcome.error)
        return outcome

    async def run(self, feed: CredentialFeed) -> BatchResult:
        """
        Register users for every key card data string from the feed.

        Returns:
            BatchResult; success only if every card was registered
        """
        result = BatchResult(success=True)

        self._set_state(RegistrarState.AWAITING_OPERATOR_READY)
        logger.info(PAIRING_MODE_INSTRUCTION)
        if feed.waits_for_operator:
            logger.info("Waiting for you to press unlock...")
            await self.sleep(self.config.grace_period)

        async for data in feed:
            self._set_state(RegistrarState.PROCESSING_ITEM)
            outcome = await self._process(data)
            result.outcomes.append(outcome)

            if not outcome.success:
                result.success = False
                self._set_state(RegistrarState.FAILED)
                break
            self._set_state(RegistrarState.SUCCEEDED)

        self._set_state(RegistrarState.TERMINATED)
        succeeded = sum(1 for o in result.outcomes if o.success)
        logger.info(
            f"Registered {succeeded} user(s), {'done' if result.success else 'aborted'}"
        )
        return result
