"""Client for the generic resource service (Get / List / Watch / WatchKind)."""

from __future__ import annotations

import logging

import grpc

from nodectl.client import api
from nodectl.client.calls import envelope_call, stream_call
from nodectl.core.context import CallContext
from nodectl.core.errors import NodectlError

log = logging.getLogger(__name__)


class ResourceClient:
    def __init__(self, channel: grpc.Channel) -> None:
        self._channel = channel

    def get(self, ctx: CallContext, type: str, id: str, namespace: str = "") -> api.GetResponse:
        req = api.ResourceRequest(namespace=namespace, type=type, id=id)
        return envelope_call(self._channel, ctx, "resource_get", req)

    def list(self, ctx: CallContext, type: str, namespace: str = ""):
        """Stream :class:`api.ListResponse` messages for every resource of *type*."""
        req = api.ResourceRequest(namespace=namespace, type=type)
        return stream_call(self._channel, ctx, "resource_list", req)

    def watch(self, ctx: CallContext, type: str, id: str = "", namespace: str = "", tail_events: int = 0):
        """Stream :class:`api.WatchResponse` events.

        Without *id* the whole kind is watched: one ``Created`` event per
        existing resource, then ``Bootstrapped``, then changes.
        """
        req = api.WatchRequest(namespace=namespace, type=type, id=id, tail_events=tail_events)
        name = "resource_watch" if id else "resource_watch_kind"
        return stream_call(self._channel, ctx, name, req)

    def resolve_definition(self, ctx: CallContext, name: str) -> api.ResourceDefinitionSpec:
        """Find the definition whose type, display type or alias matches *name*."""
        stream = self.list(ctx, api.RESOURCE_DEFINITION_TYPE, api.META_NAMESPACE)
        try:
            for msg in stream:
                if msg.resource is None:
                    continue
                spec = api.ResourceDefinitionSpec.model_validate(msg.resource.spec or {})
                if spec.matches(name):
                    log.debug("resolved resource type %r to %s", name, spec.type)
                    return spec
        finally:
            stream.cancel()
        raise NodectlError(f"resource type {name!r} is not registered")
