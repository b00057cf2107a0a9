"""JSON output: one pretty-printed object per resource."""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from nodectl.client.api import EventType, Resource, ResourceDefinitionSpec
from nodectl.output.base import resource_to_dict


def intermediate(node: str, resource: Resource, event: EventType | None) -> dict[str, Any]:
    """Resource dict with ``node`` and, when watching, a lowercased ``event``."""
    data = resource_to_dict(resource)
    data["node"] = node
    if event is not None:
        data["event"] = event.value.lower()
    return data


class JSONWriter:
    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out or sys.stdout
        self._with_events = False

    def write_header(self, definition: ResourceDefinitionSpec, with_events: bool) -> None:
        self._with_events = with_events

    def write_resource(self, node: str, resource: Resource, event: EventType) -> None:
        data = intermediate(node, resource, event if self._with_events else None)
        self._out.write(json.dumps(data, indent=4) + "\n")

    def flush(self) -> None:
        self._out.flush()
