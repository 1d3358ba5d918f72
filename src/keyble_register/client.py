"""
BLE transport for eQ-3 eqiva smart locks.

Uses the bleak library to connect to a lock and exchange fragmented
protocol messages over its GATT service.
"""

import asyncio
import logging
from typing import Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.exc import BleakError

from .crypto import generate_session_nonce, generate_user_key
from .errors import ConnectionFailed, PairingRejected, PairingTimeout, TransportFault, WriteRejected
from .protocol import (
    Answer,
    ConnectionInfo,
    ConnectionRequest,
    Fragment,
    MessageAssembler,
    MessageType,
    PairingRequest,
    ProtocolError,
    UNREGISTERED_USER_ID,
    UserNameSet,
    build_fragment_ack,
    open_secure_message,
    seal_secure_message,
    split_message,
)
from .session import LockSession, PairingResult

logger = logging.getLogger(__name__)

# GATT UUIDs
LOCK_SERVICE_UUID = "58e06900-15d8-11e6-b737-0002a5d5c51b"
SEND_CHAR_UUID = "3141dd40-15db-11e6-a24b-0002a5d5c51b"
RECEIVE_CHAR_UUID = "359d4820-15db-11e6-82bd-0002a5d5c51b"

# Timeouts (seconds)
CONNECT_TIMEOUT = 10.0
RESPONSE_TIMEOUT = 10.0


class BleakLockSession(LockSession):
    """
    Connection to one lock over bleak.

    Use BleakLockSession.open() to create a connected session.
    """

    def __init__(self, address: str, response_timeout: float = RESPONSE_TIMEOUT):
        self.address = address
        self.response_timeout = response_timeout
        self.client: Optional[BleakClient] = None
        self.user_id = UNREGISTERED_USER_ID
        self.user_key: Optional[bytes] = None

        self._messages: asyncio.Queue[bytes] = asyncio.Queue()
        self._assembler = MessageAssembler()
        self._client_nonce = generate_session_nonce()
        self._lock_nonce: Optional[bytes] = None
        self._security_counter = 1
        self._lock_security_counter = 0
        self._disconnected = asyncio.Event()
        self._ack_tasks: set[asyncio.Task] = set()

    @classmethod
    async def open(
        cls,
        address: str,
        timeout: float = CONNECT_TIMEOUT,
        response_timeout: float = RESPONSE_TIMEOUT,
    ) -> "BleakLockSession":
        """
        Connect to the lock and open a protocol session.

        Raises:
            ConnectionFailed: Lock not found, connection or discovery failed
        """
        session = cls(address, response_timeout=response_timeout)
        try:
            await session._connect(timeout)
        except ConnectionFailed:
            await session._abort()
            raise
        except (BleakError, asyncio.TimeoutError, ProtocolError) as e:
            await session._abort()
            raise ConnectionFailed(f"Could not connect to {address}: {e}") from e
        except BaseException:
            # Cancellation and unexpected errors still release the link
            await session._abort()
            raise
        return session

    async def _abort(self) -> None:
        """Drop a half-open connection, keeping the original error."""
        try:
            await self.close()
        except TransportFault as e:
            logger.debug(f"Ignoring {e} while aborting connection")

    async def _connect(self, timeout: float) -> None:
        logger.info(f"Looking for lock {self.address}...")
        device = await BleakScanner.find_device_by_address(self.address, timeout=timeout)
        if device is None:
            raise ConnectionFailed(f"Lock {self.address} not found")

        logger.info(f"Connecting to {device.address}...")
        self.client = BleakClient(
            device,
            disconnected_callback=self._on_disconnect,
            timeout=timeout,
        )
        await self.client.connect()

        if self.client.services.get_service(LOCK_SERVICE_UUID) is None:
            raise ConnectionFailed(f"Device {self.address} has no eQ-3 lock service")

        await self.client.start_notify(RECEIVE_CHAR_UUID, self._notification_handler)

        request = ConnectionRequest(user_id=self.user_id, session_nonce=self._client_nonce)
        await self._send(request.build())
        data = await self._expect(MessageType.CONNECTION_INFO)
        info = ConnectionInfo.parse(data)

        self.user_id = info.user_id
        self._lock_nonce = info.session_nonce
        logger.info(
            f"Connected to lock {self.address} "
            f"(bootloader {info.bootloader_version}, app {info.application_version})"
        )
        logger.debug(f"Lock session nonce: {info.session_nonce.hex()}")

    def _on_disconnect(self, client: BleakClient) -> None:
        logger.debug(f"Lock {self.address} disconnected")
        self._disconnected.set()

    def _notification_handler(
        self,
        characteristic: BleakGATTCharacteristic,
        data: bytearray,
    ) -> None:
        """Handle incoming fragments."""
        logger.debug(f"Fragment received ({len(data)} bytes): {data.hex()}")
        try:
            fragment = Fragment.parse(bytes(data))
            message = self._assembler.add(fragment)
        except ProtocolError as e:
            logger.warning(f"Dropping fragment: {e}")
            return

        if not fragment.is_last:
            ack = split_message(build_fragment_ack(fragment))[0]
            task = asyncio.create_task(self._write_fragment(ack))
            self._ack_tasks.add(task)
            task.add_done_callback(self._ack_done)
        if message is not None:
            self._messages.put_nowait(message)

    async def _write_fragment(self, fragment: Fragment) -> None:
        raw = fragment.build()
        logger.debug(f"Fragment sent ({len(raw)} bytes): {raw.hex()}")
        await self.client.write_gatt_char(SEND_CHAR_UUID, raw, response=True)

    def _ack_done(self, task: asyncio.Task) -> None:
        self._ack_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Failed to acknowledge fragment: {error}")

    async def _receive(self) -> bytes:
        """Wait for the next complete message or a disconnect."""
        get = asyncio.ensure_future(self._messages.get())
        lost = asyncio.ensure_future(self._disconnected.wait())
        try:
            done, _ = await asyncio.wait(
                {get, lost},
                timeout=self.response_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (get, lost):
                if not task.done():
                    task.cancel()

        if get in done:
            return get.result()
        if lost in done:
            raise BleakError("Lock disconnected")
        raise asyncio.TimeoutError()

    async def _send(self, message: bytes) -> None:
        """Send a message fragment by fragment, waiting for acks in between."""
        fragments = split_message(message)
        logger.debug(f"Sending {MessageType(message[0]).name} in {len(fragments)} fragment(s)")
        for fragment in fragments:
            await self._write_fragment(fragment)
            if fragment.is_last:
                break
            ack = await self._receive()
            if ack[0] != MessageType.FRAGMENT_ACK:
                raise ProtocolError(f"Expected FRAGMENT_ACK, got {ack[0]:#x}")

    async def _send_secure(self, message_type: MessageType, payload: bytes) -> None:
        message = seal_secure_message(
            message_type, payload, self.user_key, self._lock_nonce, self._security_counter,
        )
        self._security_counter += 1
        await self._send(message)

    async def _expect(self, message_type: MessageType) -> bytes:
        """Wait for a message of the given type and return its payload."""
        while True:
            message = await self._receive()
            received = message[0]

            if received & 0x80:
                if self.user_key is None:
                    raise ProtocolError(f"Secure message {received:#x} before pairing")
                received, payload, counter = open_secure_message(
                    message, self.user_key, self._client_nonce,
                )
                if counter <= self._lock_security_counter:
                    raise ProtocolError(f"Stale security counter {counter}")
                self._lock_security_counter = counter
            else:
                payload = message[1:]

            if received == message_type:
                return payload
            logger.debug(f"Ignoring message {received:#x} while waiting for {message_type.name}")

    async def pairing_request(self, card_key: bytes) -> PairingResult:
        """Register a new user on the lock using the card key."""
        self.user_key = generate_user_key()
        request = PairingRequest(user_id=self.user_id, user_key=self.user_key)

        try:
            await self._send(request.build(card_key, self._lock_nonce, self._security_counter))
            answer = Answer.parse(await self._expect(MessageType.ANSWER_WITHOUT_SECURITY))
        except asyncio.TimeoutError as e:
            raise PairingTimeout(
                "No answer from lock. Is it in pairing mode?"
            ) from e
        except (BleakError, ProtocolError) as e:
            raise PairingRejected(f"Pairing failed: {e}") from e

        if not answer.accepted:
            raise PairingRejected(f"Lock rejected the card key (status {answer.status:#04x})")

        return PairingResult(user_id=self.user_id, user_key=self.user_key)

    async def set_user_name(self, name: str) -> None:
        """Set the name of the paired user."""
        if self.user_key is None:
            raise WriteRejected("No paired user in this session")

        try:
            payload = UserNameSet(user_id=self.user_id, name=name).payload()
        except ValueError as e:
            raise WriteRejected(str(e)) from e

        try:
            await self._send_secure(MessageType.USER_NAME_SET, payload)
            answer = Answer.parse(await self._expect(MessageType.ANSWER_WITH_SECURITY))
        except (BleakError, ProtocolError, asyncio.TimeoutError) as e:
            raise WriteRejected(f"Setting user name failed: {e}") from e

        if not answer.accepted:
            raise WriteRejected(f"Lock rejected the user name (status {answer.status:#04x})")

    async def close(self) -> None:
        """Disconnect from the lock."""
        for task in list(self._ack_tasks):
            task.cancel()
        if self.client and self.client.is_connected:
            try:
                await self.client.disconnect()
            except BleakError as e:
                raise TransportFault(f"Disconnect failed: {e}") from e
            logger.info(f"Disconnected from {self.address}")
        self.client = None


def bleak_session_factory(
    timeout: float = CONNECT_TIMEOUT,
    response_timeout: float = RESPONSE_TIMEOUT,
):
    """Return a SessionFactory opening BleakLockSession instances."""

    async def factory(address: str) -> LockSession:
        return await BleakLockSession.open(
            address, timeout=timeout, response_timeout=response_timeout,
        )

    return factory
