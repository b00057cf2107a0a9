"""Tests for the bounded Channel."""

from __future__ import annotations

import threading
import time

import pytest

from nodectl.core.channel import Channel, ChannelClosed
from nodectl.core.context import CallContext


class TestChannel:
    def test_send_and_drain(self):
        ch: Channel[int] = Channel(3)
        ctx = CallContext.background()
        for i in range(3):
            assert ch.send(ctx, i)
        ch.close()
        assert list(ch) == [0, 1, 2]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            Channel(0)

    def test_full_channel_blocks_until_received(self):
        ch: Channel[int] = Channel(1)
        ctx = CallContext.background()
        ch.send(ctx, 1)
        sent = threading.Event()

        def producer():
            ch.send(ctx, 2)
            sent.set()

        t = threading.Thread(target=producer)
        t.start()
        assert not sent.wait(0.1)
        assert ch.receive() == (1, True)
        assert sent.wait(2)
        t.join()
        assert ch.receive() == (2, True)

    def test_send_returns_false_on_cancel(self):
        ch: Channel[int] = Channel(1)
        ctx, cancel = CallContext.background().with_cancel()
        ch.send(ctx, 1)
        threading.Timer(0.05, cancel).start()
        start = time.monotonic()
        assert ch.send(ctx, 2) is False
        assert time.monotonic() - start < 2

    def test_send_on_cancelled_context(self):
        ch: Channel[int] = Channel(1)
        ctx, cancel = CallContext.background().with_cancel()
        cancel()
        assert ch.send(ctx, 1) is False

    def test_send_after_close(self):
        ch: Channel[int] = Channel(1)
        ch.close()
        with pytest.raises(ChannelClosed):
            ch.send(CallContext.background(), 1)

    def test_close_twice(self):
        ch: Channel[int] = Channel(1)
        ch.close()
        assert ch.closed
        with pytest.raises(ChannelClosed):
            ch.close()

    def test_receive_timeout(self):
        ch: Channel[int] = Channel(1)
        assert ch.receive(timeout=0.01) == (None, True)
        ch.close()
        assert ch.receive(timeout=0.01) == (None, False)
