"""Turn server-streaming calls of ``Data`` chunks into byte streams."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

import grpc

from nodectl.client.filter import is_clean_termination, message_error, metadata_to_error
from nodectl.core.errors import MultiError, NodeError, StreamError
from nodectl.core.pipe import Pipe, PipeReader

log = logging.getLogger(__name__)


def stream_error(exc: grpc.RpcError) -> StreamError:
    """Wrap a terminal RPC error raised while receiving."""
    code = exc.code() if hasattr(exc, "code") else grpc.StatusCode.UNKNOWN
    details = exc.details() if hasattr(exc, "details") else str(exc)
    return StreamError(code, details or "")


def read_stream(stream: Iterator[Any]) -> PipeReader:
    """Expose a chunk stream as a blocking binary reader.

    A daemon thread copies ``chunk.bytes`` into a :class:`Pipe`.  The reader
    sees EOF when the stream ends cleanly or is CANCELLED / DEADLINE_EXCEEDED;
    any other terminal status, or a chunk carrying ``metadata.error``, is
    raised from the next read once buffered bytes are consumed.  Closing the
    reader cancels the call.
    """
    pipe = Pipe()

    cancel = getattr(stream, "cancel", None)
    if cancel is not None:
        pipe.reader.add_close_callback(cancel)

    def pump() -> None:
        err: BaseException | None = None
        try:
            for chunk in stream:
                if chunk.bytes:
                    pipe.writer.write(chunk.bytes)
                metadata = chunk.metadata
                if metadata is not None and metadata.error:
                    err = metadata_to_error(metadata)
                    break
        except BrokenPipeError:
            log.debug("stream reader closed, abandoning stream")
        except grpc.RpcError as exc:
            if not is_clean_termination(exc):
                err = stream_error(exc)
        finally:
            pipe.writer.close(err)

    threading.Thread(target=pump, name="read-stream", daemon=True).start()
    return pipe.reader


def read_grpc_stream(stream: Iterator[Any], handle: Callable[[Any, str], None]) -> None:
    """Consume a multi-node chunk stream, calling ``handle(chunk, node)``.

    Chunks carrying ``metadata.error`` are collected rather than handled;
    after the stream ends they are raised together as a :class:`MultiError`
    of :class:`NodeError`.  A clean cancellation simply ends the loop.
    """
    errors: MultiError | None = None
    try:
        for chunk in stream:
            metadata = chunk.metadata
            node = metadata.hostname if metadata is not None else ""
            if metadata is not None and metadata.error:
                if errors is None:
                    errors = MultiError()
                errors.append(NodeError(node, message_error(metadata)))
                continue
            handle(chunk, node)
    except grpc.RpcError as exc:
        if not is_clean_termination(exc):
            raise stream_error(exc) from exc

    if errors is not None:
        raise errors
