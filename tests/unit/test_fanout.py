"""Tests for unary and streaming fan-out."""

from __future__ import annotations

import threading
import time

import grpc

from conftest import FakeRpcError, FakeStream
from nodectl.client.fanout import stream_fanout, unary_fanout
from nodectl.core.context import CallContext
from nodectl.core.errors import NodectlError, StreamError


class TestUnaryFanout:
    def test_one_result_per_node(self):
        out = unary_fanout(CallContext.background(), ["a", "b", "c"], lambda ctx: f"payload-{ctx.nodes[0]}")
        results = list(out)
        assert sorted((r.node, r.payload) for r in results) == [
            ("a", "payload-a"), ("b", "payload-b"), ("c", "payload-c"),
        ]
        assert all(r.ok for r in results)
        assert out.closed

    def test_each_node_gets_own_context(self):
        seen = []
        list(unary_fanout(CallContext.background().with_nodes("x", "y"), ["x", "y"],
                          lambda ctx: seen.append(ctx.nodes)))
        assert sorted(seen) == [("x",), ("y",)]

    def test_failure_is_isolated(self):
        def factory(ctx):
            if ctx.nodes[0] == "bad":
                raise NodectlError("boom")
            return "ok"

        results = {r.node: r for r in unary_fanout(CallContext.background(), ["good", "bad"], factory)}
        assert results["good"].payload == "ok"
        assert str(results["bad"].error) == "boom"

    def test_no_nodes(self):
        assert list(unary_fanout(CallContext.background(), [], lambda ctx: 1)) == []

    def test_closes_after_all_workers(self):
        release = threading.Event()

        def factory(ctx):
            if ctx.nodes[0] == "slow":
                release.wait(5)
            return ctx.nodes[0]

        out = unary_fanout(CallContext.background(), ["fast", "slow"], factory, capacity=2)
        item, ok = out.receive()
        assert ok and item.node == "fast"
        time.sleep(0.05)
        assert not out.closed
        release.set()
        assert [r.node for r in out] == ["slow"]


class TestStreamFanout:
    def test_forwards_messages(self):
        streams = {"a": FakeStream([1, 2]), "b": FakeStream([3])}
        results = list(stream_fanout(CallContext.background(), ["a", "b"], lambda ctx: streams[ctx.nodes[0]]))
        assert sorted((r.node, r.payload) for r in results) == [("a", 1), ("a", 2), ("b", 3)]

    def test_clean_cancel_is_not_an_error(self):
        stream = FakeStream([1], error=FakeRpcError(grpc.StatusCode.CANCELLED))
        results = list(stream_fanout(CallContext.background(), ["a"], lambda ctx: stream))
        assert [r.payload for r in results] == [1]

    def test_stream_failure(self):
        stream = FakeStream([], error=FakeRpcError(grpc.StatusCode.UNAVAILABLE, "down"))
        results = list(stream_fanout(CallContext.background(), ["a"], lambda ctx: stream))
        assert len(results) == 1
        assert isinstance(results[0].error, StreamError)

    def test_factory_failure(self):
        def factory(ctx):
            raise NodectlError("cannot open")

        results = list(stream_fanout(CallContext.background(), ["a"], factory))
        assert str(results[0].error) == "cannot open"

    def test_cancellation_stops_workers(self):
        ctx, cancel = CallContext.background().with_cancel()
        streams = []

        def factory(node_ctx):
            s = FakeStream([1], block=True)
            node_ctx.add_done_callback(s.cancel)
            streams.append(s)
            return s

        out = stream_fanout(ctx, ["a", "b"], factory, capacity=4)
        first, ok = out.receive()
        assert ok
        cancel()
        list(out)
        assert out.closed
        assert all(s.cancelled.is_set() for s in streams)
