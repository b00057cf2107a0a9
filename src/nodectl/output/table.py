"""Tab-aligned table output."""

from __future__ import annotations

import sys
from typing import Any, TextIO

from nodectl.client.api import EventType, Resource, ResourceDefinitionSpec
from nodectl.output.base import resource_to_dict
from nodectl.output.jsonpath import compile_expression

PADDING = 3

_EVENT_MARKS = {
    EventType.CREATED: "+",
    EventType.UPDATED: " ",
    EventType.DESTROYED: "-",
    EventType.BOOTSTRAPPED: " ",
    EventType.ERRORED: "!",
}


class TabWriter:
    """Buffer rows and pad every column to its widest cell on flush."""

    def __init__(self, out: TextIO, padding: int = PADDING) -> None:
        self._out = out
        self._padding = padding
        self._rows: list[list[str]] = []

    def add_row(self, cells: list[str]) -> None:
        self._rows.append(cells)

    def flush(self) -> None:
        if not self._rows:
            return
        ncols = max(len(r) for r in self._rows)
        widths = [0] * ncols
        for row in self._rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))
        for row in self._rows:
            parts = [
                cell if i == len(row) - 1 else cell.ljust(widths[i] + self._padding)
                for i, cell in enumerate(row)
            ]
            self._out.write("".join(parts) + "\n")
        self._rows.clear()
        self._out.flush()


class TableWriter:
    """``NODE NAMESPACE TYPE ID`` plus the definition's print columns."""

    def __init__(self, out: TextIO | None = None) -> None:
        self._tw = TabWriter(out or sys.stdout)
        self._columns: list[tuple[str, Any]] = []
        self._with_events = False

    def write_header(self, definition: ResourceDefinitionSpec, with_events: bool) -> None:
        self._with_events = with_events
        self._columns = [(c.name, compile_expression(c.json_path)) for c in definition.print_columns]
        header = ["NODE", "NAMESPACE", "TYPE", "ID"] + [name.upper() for name, _ in self._columns]
        if with_events:
            header.insert(0, "*")
        self._tw.add_row(header)

    def write_resource(self, node: str, resource: Resource, event: EventType) -> None:
        md = resource.metadata
        row = [node, md.namespace, md.type, md.id]
        spec = resource_to_dict(resource).get("spec")
        for _, expr in self._columns:
            values = [m.value for m in expr.find(spec)]
            row.append(",".join(_cell(v) for v in values))
        if self._with_events:
            row.insert(0, _EVENT_MARKS.get(event, " "))
        self._tw.add_row(row)

    def flush(self) -> None:
        self._tw.flush()


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)
