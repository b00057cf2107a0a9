"""Channel — bounded hand-off between producer threads and one consumer.

Producers call :meth:`Channel.send` with a :class:`CallContext`; a full
channel blocks the producer until the consumer catches up or the context is
cancelled.  The consumer iterates the channel, which drains the remaining
items once :meth:`Channel.close` has been called.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

from nodectl.core.context import CallContext

T = TypeVar("T")

# how often blocked senders re-check their context
_POLL_INTERVAL = 0.05


class ChannelClosed(Exception):
    """Raised when sending on a closed channel."""


class Channel(Generic[T]):
    def __init__(self, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError("channel capacity must be positive")
        self._capacity = capacity
        self._items: deque[T] = deque()
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, ctx: CallContext, item: T) -> bool:
        """Queue *item*; return False if *ctx* was cancelled before it fit."""
        with self._cond:
            while len(self._items) >= self._capacity:
                if self._closed:
                    raise ChannelClosed("send on closed channel")
                if ctx.cancelled:
                    return False
                self._cond.wait(_POLL_INTERVAL)
            if self._closed:
                raise ChannelClosed("send on closed channel")
            if ctx.cancelled:
                return False
            self._items.append(item)
            self._cond.notify_all()
            return True

    def close(self) -> None:
        with self._cond:
            if self._closed:
                raise ChannelClosed("close of closed channel")
            self._closed = True
            self._cond.notify_all()

    def receive(self, timeout: float | None = None) -> tuple[T | None, bool]:
        """Return ``(item, True)``, or ``(None, False)`` once closed and drained.

        With a *timeout*, ``(None, True)`` means nothing arrived in time.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout):
                return None, True
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item, True
            return None, False

    def __iter__(self) -> Iterator[T]:
        while True:
            item, ok = self.receive()
            if not ok:
                return
            yield item  # type: ignore[misc]
