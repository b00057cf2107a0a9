"""In-memory byte pipe with close-with-error semantics.

The writer half blocks while the buffer is full, so a slow reader throttles
the producing thread.  Closing the writer with an error makes every
subsequent read (after buffered bytes are drained) raise that error;
closing the reader makes every subsequent write raise ``BrokenPipeError``.
"""

from __future__ import annotations

import io
import threading
from collections.abc import Callable

DEFAULT_CAPACITY = 64 * 1024


class Pipe:
    """A connected :class:`PipeReader` / :class:`PipeWriter` pair."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._capacity = capacity
        self._buf = bytearray()
        self._cond = threading.Condition()
        self._write_closed = False
        self._read_closed = False
        self._error: BaseException | None = None

        self.reader = PipeReader(self)
        self.writer = PipeWriter(self)

    # -- writer side ---------------------------------------------------------

    def _write(self, data: bytes) -> int:
        view = memoryview(data)
        written = 0
        with self._cond:
            while written < len(view):
                self._cond.wait_for(
                    lambda: self._read_closed
                    or self._write_closed
                    or len(self._buf) < self._capacity
                )
                if self._read_closed:
                    raise BrokenPipeError("read end of pipe is closed")
                if self._write_closed:
                    raise ValueError("write to closed pipe")
                room = self._capacity - len(self._buf)
                chunk = view[written:written + room]
                self._buf += chunk
                written += len(chunk)
                self._cond.notify_all()
        return written

    def _close_writer(self, error: BaseException | None) -> None:
        with self._cond:
            if self._write_closed:
                return
            self._write_closed = True
            self._error = error
            self._cond.notify_all()

    # -- reader side ---------------------------------------------------------

    def _readinto(self, b: memoryview | bytearray) -> int:
        if len(b) == 0:
            return 0
        with self._cond:
            self._cond.wait_for(lambda: self._buf or self._write_closed or self._read_closed)
            if self._buf:
                n = min(len(b), len(self._buf))
                b[:n] = self._buf[:n]
                del self._buf[:n]
                self._cond.notify_all()
                return n
            if self._read_closed:
                raise ValueError("read from closed pipe")
            if self._error is not None:
                raise self._error.with_traceback(None)
            return 0

    def _close_reader(self) -> None:
        with self._cond:
            self._read_closed = True
            self._buf.clear()
            self._cond.notify_all()


class PipeReader(io.RawIOBase):
    """Readable half; usable anywhere a binary file object is expected."""

    def __init__(self, pipe: Pipe) -> None:
        super().__init__()
        self._pipe = pipe
        self._on_close: list[Callable[[], None]] = []

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:  # type: ignore[override]
        return self._pipe._readinto(b)

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        self._on_close.append(callback)

    def close(self) -> None:
        if self.closed:
            return
        self._pipe._close_reader()
        callbacks, self._on_close = self._on_close, []
        for callback in callbacks:
            callback()
        super().close()


class PipeWriter:
    """Writable half."""

    def __init__(self, pipe: Pipe) -> None:
        self._pipe = pipe

    @property
    def closed(self) -> bool:
        return self._pipe._write_closed

    def write(self, data: bytes) -> int:
        return self._pipe._write(data)

    def close(self, error: BaseException | None = None) -> None:
        """Close the writer; readers see EOF, or *error* if one is given."""
        self._pipe._close_writer(error)
