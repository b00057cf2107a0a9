"""Tests for terminal helpers."""

import io
import os

from nodectl.session.terminal import RawMode, is_terminal, window_size


class TestTerminal:
    def test_bytes_io_is_not_a_terminal(self):
        assert is_terminal(io.BytesIO()) is False

    def test_pipe_is_not_a_terminal(self):
        r, w = os.pipe()
        try:
            with os.fdopen(r, "rb") as f:
                assert is_terminal(f) is False
        finally:
            os.close(w)

    def test_window_size_of_non_tty(self):
        r, w = os.pipe()
        try:
            assert window_size(r) is None
        finally:
            os.close(r)
            os.close(w)

    def test_restore_without_enter_is_noop(self):
        RawMode(0).restore()
