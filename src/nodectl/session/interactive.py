"""Interactive debug container session over a bidirectional stream.

The session sends the container spec, then runs four cooperating pumps:

* signal pump: forwarded signals become ``signal`` messages, SIGWINCH
  becomes ``term_resize``;
* stdin reader: standard input is copied through a :class:`Pipe` whose
  writer is closed on cancellation, so the blocking read can be abandoned;
* send loop: the request iterator handed to gRPC drains the outbound
  channel;
* receive loop: ``stdout_data`` goes to standard output, ``exit_code`` ends
  the session.

Whichever of stdin or the receive loop finishes first starts the drain.
The terminal is restored on every exit path.
"""

from __future__ import annotations

import logging
import queue
import signal
import sys
import threading
from collections.abc import Callable, Iterator
from typing import Any, BinaryIO

import grpc

from nodectl.client import api
from nodectl.client.filter import status_code
from nodectl.core.channel import Channel, ChannelClosed
from nodectl.core.context import CallContext
from nodectl.core.errors import SessionError
from nodectl.core.pipe import Pipe
from nodectl.session.terminal import RawMode, is_terminal, window_size

log = logging.getLogger(__name__)

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT, signal.SIGHUP)
SEND_QUEUE_SIZE = 100
STDIN_CHUNK_SIZE = 4096

# Opens the bidi call: (ctx, request iterator) -> response iterator with cancel()
StreamOpener = Callable[[CallContext, Iterator[api.DebugContainerRunRequest]], Any]


class InteractiveSession:
    """One ``run`` of an interactive debug container.

    *stdin* and *stdout* are binary streams (``sys.stdin.buffer`` and
    ``sys.stdout.buffer`` by default).  Signal handlers are installed only
    when *install_signal_handlers* is set and the session runs on the main
    thread; :meth:`deliver_signal` feeds the same path directly.
    """

    def __init__(
        self,
        open_stream: StreamOpener,
        image: str,
        args: list[str] | None = None,
        *,
        privileged: bool = True,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self._open_stream = open_stream
        self._image = image
        self._args = list(args or [])
        self._privileged = privileged
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._install_signal_handlers = install_signal_handlers

        self._signals: queue.SimpleQueue[int] = queue.SimpleQueue()
        self._send: Channel[api.DebugContainerRunRequest] = Channel(SEND_QUEUE_SIZE)
        self._tty = is_terminal(self._stdin)
        self._exit_code: int | None = None
        self._recv_error: BaseException | None = None

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    def deliver_signal(self, signum: int) -> None:
        """Queue *signum* for forwarding (safe to call from a signal handler)."""
        self._signals.put(signum)

    # -- pumps ---------------------------------------------------------------

    def _requests(self, pump_ctx: CallContext, spec: api.ContainerSpec) -> Iterator[api.DebugContainerRunRequest]:
        yield api.DebugContainerRunRequest(spec=spec)
        for msg in self._send:
            if pump_ctx.cancelled:
                break
            yield msg

    def _signal_pump(self, pump_ctx: CallContext) -> None:
        while not pump_ctx.cancelled:
            try:
                signum = self._signals.get(timeout=0.1)
            except queue.Empty:
                continue

            if signum == signal.SIGWINCH:
                size = window_size(self._stdin.fileno()) if self._tty else None
                if size is None:
                    continue
                msg = api.DebugContainerRunRequest(term_resize=api.TermResize(width=size[0], height=size[1]))
            else:
                msg = api.DebugContainerRunRequest(signal=int(signum))

            try:
                if not self._send.send(pump_ctx, msg):
                    return
            except ChannelClosed:
                return

    def _copy_stdin(self, pipe: Pipe) -> None:
        read = getattr(self._stdin, "read1", None) or self._stdin.read
        try:
            while True:
                chunk = read(STDIN_CHUNK_SIZE)
                if not chunk:
                    break
                pipe.writer.write(chunk)
        except (ValueError, BrokenPipeError):
            # pipe closed underneath us on cancellation
            return
        except OSError as exc:
            pipe.writer.close(exc)
            return
        pipe.writer.close()

    def _stdin_reader(self, pump_ctx: CallContext, pipe: Pipe, done: threading.Event,
                      wake: threading.Event) -> None:
        try:
            while True:
                try:
                    chunk = pipe.reader.read(STDIN_CHUNK_SIZE)
                except OSError as exc:
                    log.warning("stdin: %s", exc)
                    return
                if not chunk:
                    return
                try:
                    if not self._send.send(pump_ctx, api.DebugContainerRunRequest(stdin_data=chunk)):
                        return
                except ChannelClosed:
                    return
        finally:
            done.set()
            wake.set()

    def _receive(self, call: Any, done: threading.Event, wake: threading.Event) -> None:
        try:
            for resp in call:
                if resp.stdout_data:
                    self._stdout.write(resp.stdout_data)
                    self._stdout.flush()
                if resp.exit_code is not None:
                    self._exit_code = resp.exit_code
                    return
        except grpc.RpcError as exc:
            self._recv_error = exc
        finally:
            done.set()
            wake.set()

    # -- lifecycle -----------------------------------------------------------

    def _install_handlers(self) -> dict[int, Any]:
        if not self._install_signal_handlers or threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for sig in (*FORWARDED_SIGNALS, signal.SIGWINCH):
            previous[sig] = signal.signal(sig, lambda signum, frame: self.deliver_signal(signum))
        return previous

    def run(self, ctx: CallContext) -> None:
        """Run the session until the container exits, stdin closes or *ctx* is cancelled.

        Raises :class:`SessionError` when the container exits non-zero or
        the stream fails; a CANCELLED stream is a normal return.
        """
        pump_ctx, cancel_pumps = ctx.with_cancel()
        spec = api.ContainerSpec(image=self._image, args=self._args, privileged=self._privileged, tty=self._tty)

        call = self._open_stream(ctx, self._requests(pump_ctx, spec))
        log.info("debug container %s started (tty=%s)", self._image, self._tty)

        raw = RawMode(self._stdin.fileno()) if self._tty else None
        previous_handlers: dict[int, Any] = {}
        try:
            if raw is not None:
                raw.__enter__()
            previous_handlers = self._install_handlers()

            stdin_done = threading.Event()
            recv_done = threading.Event()
            wake = threading.Event()

            pipe = Pipe()
            pump_ctx.add_done_callback(pipe.writer.close)

            threading.Thread(target=self._signal_pump, args=(pump_ctx,), name="session-signals",
                             daemon=True).start()
            threading.Thread(target=self._copy_stdin, args=(pipe,), name="session-stdin-copy",
                             daemon=True).start()
            stdin_thread = threading.Thread(target=self._stdin_reader, args=(pump_ctx, pipe, stdin_done, wake),
                                            name="session-stdin", daemon=True)
            stdin_thread.start()
            recv_thread = threading.Thread(target=self._receive, args=(call, recv_done, wake),
                                           name="session-recv", daemon=True)
            recv_thread.start()

            if self._tty:
                self.deliver_signal(signal.SIGWINCH)

            wake.wait()

            if recv_done.is_set():
                cancel_pumps()
                stdin_thread.join()
                self._send.close()
            else:
                # stdin ended: let queued input drain, then wait for the exit code
                self._send.close()
                recv_thread.join()
                cancel_pumps()
        finally:
            cancel_pumps()
            if not self._send.closed:
                self._send.close()
            for sig, handler in previous_handlers.items():
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            if raw is not None:
                raw.restore()

        self._finish()

    def _finish(self) -> None:
        err = self._recv_error
        if err is not None:
            if status_code(err) == grpc.StatusCode.CANCELLED:
                log.info("context canceled")
                return
            raise SessionError(f"debug container stream failed: {err}") from err

        if self._exit_code not in (None, 0):
            raise SessionError(f"container exited with code {self._exit_code}", exit_code=self._exit_code)


def run_container(ctx: CallContext, open_stream: StreamOpener, image: str, args: list[str] | None = None,
                  **kwargs: Any) -> None:
    """Run an interactive debug container; see :class:`InteractiveSession`."""
    InteractiveSession(open_stream, image, args, **kwargs).run(ctx)
