"""Terminal helpers: raw mode and window size."""

from __future__ import annotations

import fcntl
import logging
import os
import struct
import termios
import tty
from typing import Any

log = logging.getLogger(__name__)


def is_terminal(stream: Any) -> bool:
    try:
        return os.isatty(stream.fileno())
    except (AttributeError, OSError, ValueError):
        return False


def window_size(fd: int) -> tuple[int, int] | None:
    """Return ``(width, height)`` of the terminal on *fd*, or None."""
    try:
        packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\x00" * 8)
    except OSError:
        return None
    rows, cols, _, _ = struct.unpack("HHHH", packed)
    return cols, rows


class RawMode:
    """Put a terminal into raw mode; restore the saved attributes on exit."""

    def __init__(self, fd: int) -> None:
        self._fd = fd
        self._saved: list | None = None

    def __enter__(self) -> RawMode:
        self._saved = termios.tcgetattr(self._fd)
        tty.setraw(self._fd)
        log.debug("terminal %d in raw mode", self._fd)
        return self

    def restore(self) -> None:
        if self._saved is None:
            return
        termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)
        self._saved = None
        log.debug("terminal %d restored", self._fd)

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.restore()
        return False
