"""Resource output writers (table, yaml, json, jsonpath)."""

from __future__ import annotations

from typing import TextIO

from nodectl.core.errors import OutputError
from nodectl.output.base import Writer
from nodectl.output.json_writer import JSONWriter
from nodectl.output.jsonpath import JSONPathWriter
from nodectl.output.table import TableWriter
from nodectl.output.yaml_writer import YAMLWriter

MODES = ("table", "yaml", "json", "jsonpath")


def new_writer(mode: str, out: TextIO | None = None) -> Writer:
    """Build a writer from an ``-o`` value such as ``yaml`` or ``jsonpath={.spec}``."""
    name, _, arg = mode.partition("=")
    if name == "table":
        return TableWriter(out)
    if name == "yaml":
        return YAMLWriter(out)
    if name == "json":
        return JSONWriter(out)
    if name == "jsonpath":
        if not arg:
            raise OutputError("jsonpath output requires an expression: -o jsonpath={.path}")
        return JSONPathWriter(arg, out)
    raise OutputError(f"unknown output mode {mode!r}, expected one of: {', '.join(MODES)}")


__all__ = [
    "JSONPathWriter",
    "JSONWriter",
    "MODES",
    "TableWriter",
    "Writer",
    "YAMLWriter",
    "new_writer",
]
