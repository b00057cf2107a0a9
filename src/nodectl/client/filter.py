"""Reply aggregation: split per-node errors out of envelope replies.

Every unary reply is ``{messages: [...]}`` where each message may carry
``metadata.error``.  :func:`filter_messages` works on that shape by
attribute name, so one function serves every reply type.
"""

from __future__ import annotations

import logging
from typing import Any

import grpc

from nodectl.core.errors import (
    MultiError,
    NodeError,
    NodectlError,
    RPCStatusError,
    status_code_from_number,
)

log = logging.getLogger(__name__)

_CLEAN_CODES = (grpc.StatusCode.CANCELLED, grpc.StatusCode.DEADLINE_EXCEEDED)


def status_code(err: BaseException | None) -> grpc.StatusCode:
    """Best-effort RPC status code of *err* (``OK`` for None)."""
    if err is None:
        return grpc.StatusCode.OK
    if isinstance(err, RPCStatusError):
        return err.code
    if isinstance(err, NodeError):
        return status_code(err.err)
    if isinstance(err, MultiError) and len(err.errors) == 1:
        return status_code(err.errors[0])
    if isinstance(err, grpc.RpcError) and hasattr(err, "code"):
        return err.code()
    return grpc.StatusCode.UNKNOWN


def is_clean_termination(err: BaseException | None) -> bool:
    """True for the statuses treated as a normal end of a call."""
    return err is not None and status_code(err) in _CLEAN_CODES


def message_error(metadata: Any) -> Exception:
    """The error carried by a message whose ``metadata.error`` is set."""
    status = getattr(metadata, "status", None)
    if status is not None and status.code:
        return RPCStatusError(status_code_from_number(status.code), status.message or metadata.error)
    return NodectlError(metadata.error)


def metadata_to_error(metadata: Any) -> Exception | None:
    """Convert out-of-band stream metadata into an error.

    Returns None when there is no error, or when the embedded status is
    ``CANCELLED`` or ``DEADLINE_EXCEEDED``.
    """
    if metadata is None or not getattr(metadata, "error", ""):
        return None
    err = message_error(metadata)
    if isinstance(err, RPCStatusError) and err.code in _CLEAN_CODES:
        return None
    return err


def filter_messages(reply: Any, err: Exception | None = None) -> tuple[Any, Exception | None]:
    """Remove failed messages from *reply* and merge their errors.

    Returns ``(reply, error)``: *reply* keeps its clean messages in their
    original order, *error* is a :class:`MultiError` of :class:`NodeError`
    (or None).  When every message failed the reply is dropped and only the
    error is returned.
    """
    if reply is None:
        return None, err

    try:
        messages = reply.messages
    except AttributeError:
        raise TypeError(f"{type(reply).__name__} has no messages field") from None

    multi: MultiError | None = None
    if err is not None:
        multi = MultiError([err])

    kept = []
    for message in messages:
        metadata = getattr(message, "metadata", None)
        if metadata is None or not metadata.error:
            kept.append(message)
            continue

        node_err = NodeError(metadata.hostname, message_error(metadata))
        log.debug("dropping failed message: %s", node_err)
        if multi is None:
            multi = MultiError()
        multi.append(node_err)

    reply.messages = kept

    if not kept and multi is not None:
        return None, multi
    return reply, multi
