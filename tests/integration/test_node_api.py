"""Integration test: the client against an in-process node API on a unix socket."""

from __future__ import annotations

import io
from concurrent import futures

import grpc
import pytest

from nodectl.client import Client, api, read_grpc_stream
from nodectl.core.context import CallContext, nodes_from_metadata
from nodectl.core.errors import NodectlError
from nodectl.output import new_writer
from nodectl.resources import run

pytestmark = pytest.mark.integration

MEMBERS = api.ResourceDefinitionSpec(
    type="Members.cluster.example.dev",
    display_type="Member",
    default_namespace="cluster",
    aliases=["members", "member"],
)


def _nodes(context) -> list[str]:
    return nodes_from_metadata(context.invocation_metadata()) or ["localhost"]


def _meta(node: str, error: str = "") -> api.Metadata:
    return api.Metadata(hostname=node, error=error)


def _member(id: str) -> api.Resource:
    return api.Resource(
        metadata=api.ResourceMetadata(namespace="cluster", type=MEMBERS.type, id=id),
        spec={"hostname": id},
    )


class FakeNodeAPI:
    """A node API that answers for every node named in the ``nodes`` metadata.

    Node ``down`` always fails.
    """

    FILES = {"/etc/hostname": b"cp-1\n"}

    def version(self, request, context):
        messages = []
        for node in _nodes(context):
            if node == "down":
                messages.append(api.Version(metadata=_meta(node, "connection refused")))
                continue
            messages.append(api.Version(metadata=_meta(node), version=api.VersionInfo(tag="v1.7.0")))
        return api.VersionResponse(messages=messages)

    def read(self, request, context):
        data = self.FILES.get(request.path)
        if data is None:
            yield api.Data(metadata=_meta(_nodes(context)[0], f"open {request.path}: no such file or directory"))
            return
        yield api.Data(bytes=data)

    def logs(self, request, context):
        for node in _nodes(context):
            if node == "down":
                yield api.Data(metadata=_meta(node, "log not found"))
                continue
            yield api.Data(bytes=f"{request.id} started\n".encode(), metadata=_meta(node))

    def resource_list(self, request, context):
        if request.type == api.RESOURCE_DEFINITION_TYPE:
            yield api.ListResponse(resource=api.Resource(spec=MEMBERS.model_dump(by_alias=True)))
            return
        for node in _nodes(context):
            for id in ("cp-1", "cp-2"):
                yield api.ListResponse(metadata=_meta(node), resource=_member(id))

    def resource_watch_kind(self, request, context):
        node = _nodes(context)[0]
        yield api.WatchResponse(metadata=_meta(node), event_type=api.EventType.CREATED, resource=_member("cp-1"))
        yield api.WatchResponse(metadata=_meta(node), event_type=api.EventType.BOOTSTRAPPED)
        yield api.WatchResponse(metadata=_meta(node), event_type=api.EventType.UPDATED, resource=_member("cp-1"))


def _handlers(impl: FakeNodeAPI) -> list[grpc.GenericRpcHandler]:
    services: dict[str, dict[str, grpc.RpcMethodHandler]] = {}
    factories = {
        api.UNARY: grpc.unary_unary_rpc_method_handler,
        api.SERVER_STREAM: grpc.unary_stream_rpc_method_handler,
    }
    for name, method in api.METHODS.items():
        fn = getattr(impl, name, None)
        if fn is None:
            continue
        service, rpc = method.path.lstrip("/").split("/")
        services.setdefault(service, {})[rpc] = factories[method.kind](
            fn,
            request_deserializer=api.decoder(method.request),
            response_serializer=api.encode,
        )
    return [grpc.method_handlers_generic_handler(service, rpcs) for service, rpcs in services.items()]


@pytest.fixture(scope="module")
def socket_path(tmp_path_factory):
    path = str(tmp_path_factory.mktemp("api") / "api.sock")
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=8))
    server.add_generic_rpc_handlers(_handlers(FakeNodeAPI()))
    server.add_insecure_port(f"unix://{path}")
    server.start()
    yield path
    server.stop(grace=None)


@pytest.fixture()
def client(socket_path):
    with Client(unix_socket_path=socket_path) as c:
        yield c


@pytest.fixture()
def ctx():
    root, cancel = CallContext.background().with_timeout(10)
    yield root
    cancel()


class TestUnary:
    def test_version(self, client, ctx):
        reply = client.version(ctx.with_nodes("n1", "n2"))
        assert [(m.metadata.hostname, m.version.tag) for m in reply.messages] == [
            ("n1", "v1.7.0"),
            ("n2", "v1.7.0"),
        ]
        assert reply.node_error is None

    def test_partial_failure(self, client, ctx):
        reply = client.version(ctx.with_nodes("n1", "down"))
        assert [m.metadata.hostname for m in reply.messages] == ["n1"]
        assert "down: connection refused" in str(reply.node_error)

    def test_every_node_failed(self, client, ctx):
        with pytest.raises(NodectlError, match="connection refused"):
            client.version(ctx.with_nodes("down"))


class TestStreams:
    def test_read(self, client, ctx):
        with client.read(ctx, "/etc/hostname") as reader:
            assert reader.read() == b"cp-1\n"

    def test_read_missing_file(self, client, ctx):
        with client.read(ctx, "/etc/shadow") as reader:
            with pytest.raises(NodectlError, match="no such file or directory"):
                reader.read()

    def test_logs_across_nodes(self, client, ctx):
        lines = []
        stream = client.logs(ctx.with_nodes("n1", "n2"), "kubelet")
        read_grpc_stream(stream, lambda chunk, node: lines.append((node, chunk.bytes)))
        assert lines == [("n1", b"kubelet started\n"), ("n2", b"kubelet started\n")]

    def test_logs_node_error_collected(self, client, ctx):
        lines = []
        stream = client.logs(ctx.with_nodes("n1", "down"), "kubelet")
        with pytest.raises(NodectlError, match="log not found"):
            read_grpc_stream(stream, lambda chunk, node: lines.append(node))
        assert lines == ["n1"]


class TestResources:
    def test_list_by_alias(self, client, ctx):
        out = io.StringIO()
        run(ctx, client, new_writer("jsonpath={.metadata.id}", out), [], "members")
        assert out.getvalue().splitlines() == ["cp-1", "cp-2"]

    def test_list_fans_out(self, client, ctx):
        out = io.StringIO()
        run(ctx, client, new_writer("jsonpath={.node}", out), ["n1", "n2"], "member")
        assert sorted(out.getvalue().splitlines()) == ["n1", "n1", "n2", "n2"]

    def test_watch(self, client, ctx):
        out = io.StringIO()
        run(ctx, client, new_writer("jsonpath={.metadata.id}", out), [], "Member", watch=True)
        assert out.getvalue().splitlines() == ["cp-1", "cp-1"]

    def test_unknown_type(self, client, ctx):
        with pytest.raises(NodectlError, match="is not registered"):
            run(ctx, client, new_writer("yaml", io.StringIO()), [], "widgets")
