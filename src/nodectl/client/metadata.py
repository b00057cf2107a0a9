"""Outgoing request metadata: product/cluster tags and node targeting."""

from __future__ import annotations

import collections
from collections.abc import Sequence

import grpc

from nodectl.core.context import CallContext

RUNTIME_KEY = "runtime"
CONTEXT_KEY = "context"
RUNTIME = "nodectl"


class _CallDetails(
    collections.namedtuple(
        "_CallDetails",
        ("method", "timeout", "metadata", "credentials", "wait_for_ready", "compression"),
    ),
    grpc.ClientCallDetails,
):
    pass


def append_metadata(details: grpc.ClientCallDetails, pairs: Sequence[tuple[str, str]]) -> grpc.ClientCallDetails:
    """Return a copy of *details* with *pairs* appended to its metadata."""
    metadata = list(details.metadata or ())
    metadata.extend(pairs)
    return _CallDetails(
        details.method,
        details.timeout,
        metadata,
        details.credentials,
        getattr(details, "wait_for_ready", None),
        getattr(details, "compression", None),
    )


class MetadataInterceptor(
    grpc.UnaryUnaryClientInterceptor,
    grpc.UnaryStreamClientInterceptor,
    grpc.StreamUnaryClientInterceptor,
    grpc.StreamStreamClientInterceptor,
):
    """Append a fixed set of header pairs to every call."""

    def __init__(self, pairs: Sequence[tuple[str, str]]) -> None:
        self._pairs = tuple(pairs)

    @property
    def pairs(self) -> tuple[tuple[str, str], ...]:
        return self._pairs

    def intercept_unary_unary(self, continuation, client_call_details, request):
        return continuation(append_metadata(client_call_details, self._pairs), request)

    def intercept_unary_stream(self, continuation, client_call_details, request):
        return continuation(append_metadata(client_call_details, self._pairs), request)

    def intercept_stream_unary(self, continuation, client_call_details, request_iterator):
        return continuation(append_metadata(client_call_details, self._pairs), request_iterator)

    def intercept_stream_stream(self, continuation, client_call_details, request_iterator):
        return continuation(append_metadata(client_call_details, self._pairs), request_iterator)


def runtime_interceptor(cluster: str = "") -> MetadataInterceptor:
    """Tag calls with ``runtime`` and, when set, the ``context`` cluster name."""
    pairs = [(RUNTIME_KEY, RUNTIME)]
    if cluster:
        pairs.append((CONTEXT_KEY, cluster))
    return MetadataInterceptor(pairs)


def with_nodes(ctx: CallContext, *nodes: str) -> CallContext:
    """Derive a context whose calls target *nodes*."""
    return ctx.with_nodes(*nodes)
