"""
Sources of key card data strings.

Either a single value given on the command line or successive lines read from
a text stream (stdin by default). Both are one-shot async iterators: once
exhausted, iterating again yields nothing.
"""

import asyncio
import logging
import sys
import threading
from typing import Optional, TextIO

logger = logging.getLogger(__name__)


class CredentialFeed:
    """Base class for key card data sources."""

    # True when the data was supplied up front, so the operator gets a grace
    # period to arm pairing mode before the first registration.
    waits_for_operator = False

    def __init__(self):
        self._exhausted = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self._exhausted:
            raise StopAsyncIteration
        value = await self._next()
        if value is None:
            self._exhausted = True
            raise StopAsyncIteration
        return value

    async def _next(self) -> Optional[str]:
        raise NotImplementedError


class SingleCredentialFeed(CredentialFeed):
    """Yields exactly one key card data string."""

    waits_for_operator = True

    def __init__(self, value: str):
        super().__init__()
        self.value = value
        self._consumed = False

    async def _next(self) -> Optional[str]:
        if self._consumed:
            return None
        self._consumed = True
        return self.value


class StreamCredentialFeed(CredentialFeed):
    """Yields non-blank lines from a text stream until end of input."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__()
        self.stream = stream if stream is not None else sys.stdin

    async def _next(self) -> Optional[str]:
        while True:
            line = await self._read_line()
            if not line:
                return None
            line = line.strip()
            if line:
                return line
            logger.debug("Skipping blank input line")

    async def _read_line(self) -> str:
        """
        Read one line on a daemon thread.

        readline() blocks on an interactive terminal and cannot be interrupted.
        A reader left blocked by Ctrl-C must not hold up event loop shutdown,
        which a default executor thread would.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def deliver(setter, value) -> None:
            if not future.done():
                setter(value)

        def read() -> None:
            try:
                line = self.stream.readline()
            except Exception as e:
                args = (deliver, future.set_exception, e)
            else:
                args = (deliver, future.set_result, line)
            try:
                loop.call_soon_threadsafe(*args)
            except RuntimeError:
                logger.debug("Event loop closed before the input line arrived")

        threading.Thread(target=read, name="credential-reader", daemon=True).start()
        return await future


def from_options(qr_code_data: Optional[str], stream: Optional[TextIO] = None) -> CredentialFeed:
    """Pick the feed for the given command line options."""
    if qr_code_data:
        return SingleCredentialFeed(qr_code_data)
    return StreamCredentialFeed(stream)
