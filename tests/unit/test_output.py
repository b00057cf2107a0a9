"""Tests for the output writers."""

from __future__ import annotations

import io
import json

import pytest
import yaml

from nodectl.client import api
from nodectl.core.errors import OutputError
from nodectl.output import JSONPathWriter, JSONWriter, TableWriter, YAMLWriter, new_writer


@pytest.fixture()
def definition() -> api.ResourceDefinitionSpec:
    return api.ResourceDefinitionSpec(
        type="Members.cluster.example.dev",
        print_columns=[
            api.PrintColumn(name="Hostname", json_path="{.hostname}"),
            api.PrintColumn(name="Ready", json_path="{.ready}"),
        ],
    )


def _resource(id: str, spec) -> api.Resource:
    return api.Resource(
        metadata=api.ResourceMetadata(namespace="cluster", type="Members.cluster.example.dev", id=id, version="1"),
        spec=spec,
    )


class TestTableWriter:
    def test_rows_aligned(self, definition):
        out = io.StringIO()
        w = TableWriter(out)
        w.write_header(definition, False)
        w.write_resource("10.0.0.2", _resource("cp-1", {"hostname": "cp-1.local", "ready": True}), api.EventType.CREATED)
        w.write_resource("10.0.0.3", _resource("w", {"hostname": "w", "ready": False}), api.EventType.CREATED)
        w.flush()

        lines = out.getvalue().splitlines()
        assert lines[0].split() == ["NODE", "NAMESPACE", "TYPE", "ID", "HOSTNAME", "READY"]
        assert lines[1].split() == ["10.0.0.2", "cluster", "Members.cluster.example.dev", "cp-1", "cp-1.local", "true"]
        assert lines[2].split()[-1] == "false"
        # columns line up
        assert lines[0].index("ID") == lines[1].index("cp-1")

    def test_buffered_until_flush(self, definition):
        out = io.StringIO()
        w = TableWriter(out)
        w.write_header(definition, False)
        w.write_resource("n", _resource("a", {}), api.EventType.CREATED)
        assert out.getvalue() == ""
        w.flush()
        assert out.getvalue() != ""

    def test_event_column(self, definition):
        out = io.StringIO()
        w = TableWriter(out)
        w.write_header(definition, True)
        w.write_resource("n", _resource("a", {}), api.EventType.CREATED)
        w.write_resource("n", _resource("a", {}), api.EventType.DESTROYED)
        w.flush()
        lines = out.getvalue().splitlines()
        assert lines[0].startswith("*")
        assert lines[1].startswith("+")
        assert lines[2].startswith("-")

    def test_missing_column_value_is_empty(self, definition):
        out = io.StringIO()
        w = TableWriter(out)
        w.write_header(definition, False)
        w.write_resource("n", _resource("a", None), api.EventType.CREATED)
        w.flush()
        assert out.getvalue().splitlines()[1].split() == ["n", "cluster", "Members.cluster.example.dev", "a"]


class TestYAMLWriter:
    def test_documents(self, definition):
        out = io.StringIO()
        w = YAMLWriter(out)
        w.write_header(definition, False)
        w.write_resource("n1", _resource("a", {"x": 1}), api.EventType.CREATED)
        w.write_resource("n2", _resource("b", {"x": 2}), api.EventType.CREATED)
        w.flush()

        docs = list(yaml.safe_load_all(out.getvalue()))
        assert [d["node"] for d in docs] == ["n1", "n2"]
        assert docs[1]["spec"] == {"x": 2}
        assert docs[0]["metadata"]["id"] == "a"
        assert "event" not in docs[0]

    def test_event_when_watching(self, definition):
        out = io.StringIO()
        w = YAMLWriter(out)
        w.write_header(definition, True)
        w.write_resource("n1", _resource("a", {}), api.EventType.UPDATED)
        assert yaml.safe_load(out.getvalue())["event"] == "updated"


class TestJSONWriter:
    def test_object(self, definition):
        out = io.StringIO()
        w = JSONWriter(out)
        w.write_header(definition, True)
        w.write_resource("n1", _resource("a", {"x": 1}), api.EventType.DESTROYED)
        data = json.loads(out.getvalue())
        assert data["node"] == "n1"
        assert data["event"] == "destroyed"
        assert data["spec"] == {"x": 1}


class TestJSONPathWriter:
    def test_scalar(self, definition):
        out = io.StringIO()
        w = JSONPathWriter("{.spec.hostname}", out)
        w.write_header(definition, False)
        w.write_resource("n1", _resource("a", {"hostname": "cp-1"}), api.EventType.CREATED)
        assert out.getvalue() == "cp-1\n"

    def test_composite(self, definition):
        out = io.StringIO()
        w = JSONPathWriter(".spec", out)
        w.write_header(definition, False)
        w.write_resource("n1", _resource("a", {"ready": True}), api.EventType.CREATED)
        assert json.loads(out.getvalue()) == {"ready": True}

    def test_bool_and_node(self, definition):
        out = io.StringIO()
        w = JSONPathWriter("{.spec.ready}", out)
        w.write_header(definition, False)
        w.write_resource("n1", _resource("a", {"ready": False}), api.EventType.CREATED)
        assert out.getvalue() == "false\n"

    def test_invalid_expression(self):
        with pytest.raises(OutputError):
            JSONPathWriter("{.spec[}", io.StringIO())


class TestNewWriter:
    def test_modes(self):
        assert isinstance(new_writer("table", io.StringIO()), TableWriter)
        assert isinstance(new_writer("yaml", io.StringIO()), YAMLWriter)
        assert isinstance(new_writer("json", io.StringIO()), JSONWriter)
        assert isinstance(new_writer("jsonpath={.spec}", io.StringIO()), JSONPathWriter)

    def test_unknown(self):
        with pytest.raises(OutputError, match="unknown output mode"):
            new_writer("xml")

    def test_jsonpath_needs_expression(self):
        with pytest.raises(OutputError):
            new_writer("jsonpath")
