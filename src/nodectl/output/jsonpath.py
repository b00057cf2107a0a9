"""JSONPath output: evaluate one expression per resource."""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from jsonpath_ng import parse as parse_jsonpath
from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError

from nodectl.client.api import EventType, Resource, ResourceDefinitionSpec
from nodectl.core.errors import OutputError
from nodectl.output.json_writer import intermediate


def compile_expression(expression: str):
    """Compile a JSONPath expression; kubectl-style ``{.a.b}`` is accepted."""
    expr = expression.strip()
    if expr.startswith("{") and expr.endswith("}"):
        expr = expr[1:-1]
    if expr.startswith("."):
        expr = "$" + expr
    if not expr:
        raise OutputError("empty JSONPath expression")
    try:
        return parse_jsonpath(expr)
    except (JsonPathLexerError, JsonPathParserError) as exc:
        raise OutputError(f"invalid JSONPath expression {expression!r}: {exc}") from exc


class JSONPathWriter:
    """Scalars print as plain lines, composites as indented JSON."""

    def __init__(self, expression: str, out: TextIO | None = None) -> None:
        self._expr = compile_expression(expression)
        self._out = out or sys.stdout
        self._with_events = False

    def write_header(self, definition: ResourceDefinitionSpec, with_events: bool) -> None:
        self._with_events = with_events

    def write_resource(self, node: str, resource: Resource, event: EventType) -> None:
        data = intermediate(node, resource, event if self._with_events else None)
        for match in self._expr.find(data):
            self._out.write(_render(match.value))

    def flush(self) -> None:
        self._out.flush()


def _render(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2) + "\n"
    if isinstance(value, bool):
        return f"{str(value).lower()}\n"
    if value is None:
        return "null\n"
    return f"{value}\n"
