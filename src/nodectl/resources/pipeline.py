"""get / list / watch of resources across nodes, rendered through a writer.

Watches buffer writer output until every node has sent its
``Bootstrapped`` event, flush once, and from then on flush after each
event.  An ``Errored`` event ends the watch with the carried error; a
node whose stream fails drops out and is reported once the others finish.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any

from nodectl.client import api
from nodectl.client.fanout import stream_fanout, unary_fanout
from nodectl.core.context import CallContext
from nodectl.core.errors import MultiError, NodectlError, NodeError
from nodectl.core.types import NodeResult
from nodectl.output.base import Writer

log = logging.getLogger(__name__)


def _hostname(message: Any, default: str) -> str:
    metadata = getattr(message, "metadata", None)
    if metadata is not None and metadata.hostname:
        return metadata.hostname
    return default


class ResourcePipeline:
    """Drive one get/list/watch for *nodes* (empty means the endpoint's default)."""

    def __init__(self, client: Any, writer: Writer, nodes: Sequence[str] = ()) -> None:
        self._client = client
        self._writer = writer
        self._nodes = list(nodes)

    # -- helpers -------------------------------------------------------------

    def _definition(self, ctx: CallContext, type: str) -> api.ResourceDefinitionSpec:
        lookup_ctx = ctx.with_nodes(self._nodes[0]) if self._nodes else ctx
        return self._client.resources.resolve_definition(lookup_ctx, type)

    def _streams(self, ctx: CallContext, open_stream: Callable[[CallContext], Iterable[Any]],
                 on_error: Callable[[NodeError], None]) -> Iterator[tuple[str, str, Any]]:
        """Yield ``(target, hostname, message)``; per-node failures go to *on_error*."""
        if not self._nodes:
            for message in open_stream(ctx):
                yield "", _hostname(message, ""), message
            return

        for result in stream_fanout(ctx, self._nodes, open_stream):
            if result.error is not None:
                on_error(NodeError(result.node, result.error))
                continue
            yield result.node, _hostname(result.payload, result.node), result.payload

    # -- modes ---------------------------------------------------------------

    def get(self, ctx: CallContext, type: str, id: str, namespace: str = "") -> None:
        definition = self._definition(ctx, type)
        self._writer.write_header(definition, False)

        def fetch(c: CallContext) -> api.GetResponse:
            return self._client.resources.get(c, definition.type, id, namespace)

        errors: list[Exception] = []
        if self._nodes:
            results = list(unary_fanout(ctx, self._nodes, fetch))
        else:
            results = [_direct(ctx, fetch)]

        for result in results:
            if result.error is not None:
                errors.append(result.error if not result.node else NodeError(result.node, result.error))
                continue
            reply = result.payload
            if reply.node_error is not None:
                errors.append(reply.node_error)
            for msg in reply.messages:
                if msg.resource is not None:
                    self._writer.write_resource(_hostname(msg, result.node), msg.resource, api.EventType.CREATED)

        self._writer.flush()
        if errors:
            raise MultiError(errors)

    def list(self, ctx: CallContext, type: str, namespace: str = "") -> None:
        definition = self._definition(ctx, type)
        self._writer.write_header(definition, False)

        errors: list[Exception] = []

        def opener(c: CallContext):
            return self._client.resources.list(c, definition.type, namespace)

        for _, node, msg in self._streams(ctx, opener, errors.append):
            if msg.resource is not None:
                self._writer.write_resource(node, msg.resource, api.EventType.CREATED)

        self._writer.flush()
        if errors:
            raise MultiError(errors)

    def watch(self, ctx: CallContext, type: str, id: str = "", namespace: str = "",
              tail_events: int = 0) -> None:
        definition = self._definition(ctx, type)
        self._writer.write_header(definition, True)

        watch_ctx, cancel = ctx.with_cancel()
        pending = set(self._nodes)
        bootstrapped = False
        errors: list[Exception] = []

        def bootstrap_done(target: str) -> None:
            nonlocal bootstrapped
            pending.discard(target)
            if not bootstrapped and not pending:
                bootstrapped = True
                log.debug("all nodes bootstrapped")
                self._writer.flush()

        def node_failed(err: NodeError) -> None:
            log.warning("watch on %s failed: %s", err.node, err.err)
            errors.append(err)
            bootstrap_done(err.node)

        def opener(c: CallContext):
            return self._client.resources.watch(c, definition.type, id, namespace, tail_events)

        try:
            for target, node, event in self._streams(watch_ctx, opener, node_failed):
                if event.event_type == api.EventType.ERRORED:
                    raise NodeError(node, NodectlError(event.error or "watch failed"))

                if event.event_type == api.EventType.BOOTSTRAPPED:
                    bootstrap_done(target)
                    continue

                if event.resource is not None:
                    self._writer.write_resource(node, event.resource, event.event_type)
                if bootstrapped:
                    self._writer.flush()
        finally:
            cancel()
            self._writer.flush()
        if errors:
            raise MultiError(errors)


def _direct(ctx: CallContext, fn: Callable[[CallContext], Any]) -> NodeResult:
    try:
        return NodeResult("", payload=fn(ctx))
    except Exception as exc:
        return NodeResult("", error=exc)


def run(ctx: CallContext, client: Any, writer: Writer, nodes: Sequence[str], type: str, id: str = "",
        namespace: str = "", watch: bool = False, tail_events: int = 0) -> None:
    """Dispatch to get, list or watch the way ``nodectl get`` does."""
    pipeline = ResourcePipeline(client, writer, nodes)
    if watch:
        pipeline.watch(ctx, type, id, namespace, tail_events)
    elif id:
        pipeline.get(ctx, type, id, namespace)
    else:
        pipeline.list(ctx, type, namespace)
