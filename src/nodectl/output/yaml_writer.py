"""YAML output: ``---`` separated documents prefixed by ``node:``."""

from __future__ import annotations

import sys
from typing import TextIO

import yaml

from nodectl.client.api import EventType, Resource, ResourceDefinitionSpec
from nodectl.output.base import resource_to_dict


class YAMLWriter:
    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out or sys.stdout
        self._with_events = False
        self._first = True

    def write_header(self, definition: ResourceDefinitionSpec, with_events: bool) -> None:
        self._with_events = with_events

    def write_resource(self, node: str, resource: Resource, event: EventType) -> None:
        if not self._first:
            self._out.write("---\n")
        self._first = False

        self._out.write(f"node: {node}\n")
        if self._with_events:
            self._out.write(f"event: {event.value.lower()}\n")
        self._out.write(yaml.safe_dump(resource_to_dict(resource), default_flow_style=False, sort_keys=False))

    def flush(self) -> None:
        self._out.flush()
