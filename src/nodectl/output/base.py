"""Writer interface shared by every output format."""

from __future__ import annotations

from typing import Any, Protocol

from nodectl.client.api import EventType, Resource, ResourceDefinitionSpec


class Writer(Protocol):
    def write_header(self, definition: ResourceDefinitionSpec, with_events: bool) -> None:
        ...

    def write_resource(self, node: str, resource: Resource, event: EventType) -> None:
        ...

    def flush(self) -> None:
        ...


def resource_to_dict(resource: Resource) -> dict[str, Any]:
    """JSON-compatible intermediate form of *resource*."""
    return resource.model_dump(mode="json")
