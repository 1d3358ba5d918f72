import asyncio
import io
import threading

import pytest

from keyble_register.feed import SingleCredentialFeed, StreamCredentialFeed, from_options


async def collect(feed):
    return [item async for item in feed]


@pytest.mark.asyncio
async def test_single_feed_yields_value_once():
    feed = SingleCredentialFeed("M123")

    assert await collect(feed) == ["M123"]
    assert await collect(feed) == []
    assert feed.waits_for_operator


@pytest.mark.asyncio
async def test_stream_feed_skips_blank_lines():
    feed = StreamCredentialFeed(io.StringIO("A\n\n   \nB\r\nC"))

    assert await collect(feed) == ["A", "B", "C"]
    assert not feed.waits_for_operator


@pytest.mark.asyncio
async def test_stream_feed_is_not_restartable():
    stream = io.StringIO("A\nB\n")
    feed = StreamCredentialFeed(stream)

    assert await collect(feed) == ["A", "B"]
    stream.seek(0)
    assert await collect(feed) == []


@pytest.mark.asyncio
async def test_empty_stream_yields_nothing():
    assert await collect(StreamCredentialFeed(io.StringIO(""))) == []


def test_from_options_picks_variant():
    stream = io.StringIO()

    assert isinstance(from_options("M123", stream), SingleCredentialFeed)
    assert isinstance(from_options(None, stream), StreamCredentialFeed)
    assert from_options(None, stream).stream is stream


class BlockingStream:
    """Text stream whose readline() blocks until released, like a quiet terminal."""

    def __init__(self):
        self.release = threading.Event()

    def readline(self):
        self.release.wait()
        return ""


def test_cancelled_read_does_not_block_loop_shutdown():
    stream = BlockingStream()

    async def read_then_cancel():
        task = asyncio.create_task(StreamCredentialFeed(stream).__anext__())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    runner = threading.Thread(target=asyncio.run, args=(read_then_cancel(),), daemon=True)
    runner.start()
    runner.join(timeout=5)
    try:
        assert not runner.is_alive()
    finally:
        stream.release.set()


@pytest.mark.asyncio
async def test_stream_read_error_propagates():
    class BrokenStream:
        def readline(self):
            raise OSError("stdin closed")

    with pytest.raises(OSError):
        await StreamCredentialFeed(BrokenStream()).__anext__()
