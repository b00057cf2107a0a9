"""Invoke RPC methods with a :class:`CallContext`.

The context supplies the deadline and the ``nodes`` metadata, and its
cancellation cancels the in-flight call.
"""

from __future__ import annotations

import logging
from typing import Any

import grpc
from pydantic import BaseModel

from nodectl.client import api
from nodectl.client.filter import filter_messages
from nodectl.core.context import CallContext
from nodectl.core.errors import RPCStatusError

log = logging.getLogger(__name__)


def _bind(ctx: CallContext, call: Any) -> None:
    """Cancel *call* with *ctx*, and drop that hook once the call completes."""
    cancel = call.cancel
    ctx.add_done_callback(cancel)
    add_done = getattr(call, "add_done_callback", None)
    if add_done is not None:
        add_done(lambda _: ctx.remove_done_callback(cancel))


def unary_call(channel: grpc.Channel, ctx: CallContext, name: str, request: BaseModel | None = None) -> Any:
    """Perform unary method *name* and return its raw reply."""
    method = api.METHODS[name]
    call = api.multicallable(channel, method)
    future = call.future(
        request if request is not None else method.request(),
        timeout=ctx.time_remaining(),
        metadata=ctx.metadata(),
    )
    _bind(ctx, future)
    log.debug("%s nodes=%s", method.path, list(ctx.nodes))
    try:
        return future.result()
    except grpc.FutureCancelledError:
        if ctx.deadline_exceeded:
            raise RPCStatusError(grpc.StatusCode.DEADLINE_EXCEEDED, "context deadline exceeded") from None
        raise RPCStatusError(grpc.StatusCode.CANCELLED, "context canceled") from None


def envelope_call(channel: grpc.Channel, ctx: CallContext, name: str, request: BaseModel | None = None) -> Any:
    """Perform unary method *name* and filter per-node errors out of the reply.

    Raises the merged error when no node succeeded; otherwise returns the
    reply with partial failures on ``reply.node_error``.
    """
    reply, err = filter_messages(unary_call(channel, ctx, name, request))
    if reply is None:
        raise err
    reply._node_error = err
    return reply


def stream_call(channel: grpc.Channel, ctx: CallContext, name: str, request: BaseModel | None = None):
    """Open server-streaming method *name*; the result iterates messages."""
    method = api.METHODS[name]
    call = api.multicallable(channel, method)(
        request if request is not None else method.request(),
        timeout=ctx.time_remaining(),
        metadata=ctx.metadata(),
    )
    _bind(ctx, call)
    log.debug("%s nodes=%s (stream)", method.path, list(ctx.nodes))
    return call


def bidi_call(channel: grpc.Channel, ctx: CallContext, name: str, requests):
    """Open bidirectional method *name* fed from the *requests* iterator."""
    method = api.METHODS[name]
    call = api.multicallable(channel, method)(
        requests,
        timeout=ctx.time_remaining(),
        metadata=ctx.metadata(),
    )
    _bind(ctx, call)
    log.debug("%s nodes=%s (bidi)", method.path, list(ctx.nodes))
    return call
