"""Tests for reply aggregation and status helpers."""

from __future__ import annotations

import grpc
import pytest

from conftest import FakeRpcError, meta
from nodectl.client import api
from nodectl.client.filter import (
    filter_messages,
    is_clean_termination,
    message_error,
    metadata_to_error,
    status_code,
)
from nodectl.core.errors import MultiError, NodeError, NodectlError, RPCStatusError


def _reply(*messages: api.ServiceAction) -> api.ServiceActionResponse:
    return api.ServiceActionResponse(messages=list(messages))


class TestFilterMessages:
    def test_mixed_reply(self):
        reply = _reply(
            api.ServiceAction(metadata=meta("host1"), resp="abc"),
            api.ServiceAction(metadata=meta("host2", "something wrong")),
            api.ServiceAction(resp="def"),
            api.ServiceAction(metadata=meta("host4", "even more wrong")),
        )
        out, err = filter_messages(reply)
        assert out is reply
        assert [m.resp for m in out.messages] == ["abc", "def"]
        assert isinstance(err, MultiError)
        assert [e.node for e in err] == ["host2", "host4"]
        assert all(isinstance(e, NodeError) for e in err)
        assert str(err.errors[0].err) == "something wrong"

    def test_all_errors(self):
        reply = _reply(
            api.ServiceAction(metadata=meta("host1", "err1")),
            api.ServiceAction(metadata=meta("host2", "err2")),
        )
        out, err = filter_messages(reply)
        assert out is None
        assert len(err.errors) == 2

    def test_all_clean(self):
        reply = _reply(api.ServiceAction(metadata=meta("h1"), resp="a"))
        out, err = filter_messages(reply)
        assert out is reply
        assert err is None

    def test_none_reply(self):
        e = NodectlError("dial failed")
        assert filter_messages(None, e) == (None, e)
        assert filter_messages(None) == (None, None)

    def test_input_error_is_merged_first(self):
        reply = _reply(
            api.ServiceAction(metadata=meta("h1"), resp="a"),
            api.ServiceAction(metadata=meta("h2", "bad")),
        )
        base = NodectlError("transport")
        out, err = filter_messages(reply, base)
        assert [m.resp for m in out.messages] == ["a"]
        assert err.errors[0] is base
        assert err.errors[1].node == "h2"

    def test_idempotent(self):
        reply = _reply(
            api.ServiceAction(metadata=meta("h1"), resp="a"),
            api.ServiceAction(metadata=meta("h2", "bad")),
        )
        first, _ = filter_messages(reply)
        kept = list(first.messages)
        second, err = filter_messages(first)
        assert second.messages == kept
        assert err is None

    def test_embedded_status(self):
        reply = _reply(
            api.ServiceAction(metadata=meta("h1", "gone", code=5)),
            api.ServiceAction(metadata=meta("h2"), resp="ok"),
        )
        _, err = filter_messages(reply)
        inner = err.errors[0].err
        assert isinstance(inner, RPCStatusError)
        assert inner.code == grpc.StatusCode.NOT_FOUND

    def test_no_messages_field(self):
        with pytest.raises(TypeError):
            filter_messages(object())


class TestMetadataToError:
    def test_no_error(self):
        assert metadata_to_error(None) is None
        assert metadata_to_error(meta("h1")) is None

    def test_plain_error(self):
        err = metadata_to_error(meta("h1", "boom"))
        assert isinstance(err, NodectlError)
        assert str(err) == "boom"

    def test_clean_codes_are_not_errors(self):
        assert metadata_to_error(meta("h1", "canceled", code=1)) is None
        assert metadata_to_error(meta("h1", "deadline", code=4)) is None

    def test_other_code(self):
        err = metadata_to_error(meta("h1", "internal", code=13))
        assert err.code == grpc.StatusCode.INTERNAL

    def test_message_error_prefers_status(self):
        err = message_error(meta("h1", "x", code=7))
        assert err.code == grpc.StatusCode.PERMISSION_DENIED


class TestStatusCode:
    def test_values(self):
        assert status_code(None) == grpc.StatusCode.OK
        assert status_code(RPCStatusError(grpc.StatusCode.NOT_FOUND, "")) == grpc.StatusCode.NOT_FOUND
        assert status_code(FakeRpcError(grpc.StatusCode.UNAVAILABLE)) == grpc.StatusCode.UNAVAILABLE
        assert status_code(ValueError("x")) == grpc.StatusCode.UNKNOWN

    def test_unwraps_node_and_single_multi(self):
        inner = RPCStatusError(grpc.StatusCode.CANCELLED, "")
        assert status_code(NodeError("n", inner)) == grpc.StatusCode.CANCELLED
        assert status_code(MultiError([NodeError("n", inner)])) == grpc.StatusCode.CANCELLED
        assert status_code(MultiError([inner, inner])) == grpc.StatusCode.UNKNOWN

    def test_clean_termination(self):
        assert is_clean_termination(FakeRpcError(grpc.StatusCode.CANCELLED))
        assert is_clean_termination(FakeRpcError(grpc.StatusCode.DEADLINE_EXCEEDED))
        assert not is_clean_termination(FakeRpcError(grpc.StatusCode.INTERNAL))
        assert not is_clean_termination(None)
