"""The node API client.

A :class:`Client` resolves its configuration context, dials the endpoints
once, and exposes every RPC as a method taking a :class:`CallContext`.  Use
it as a context manager so the channel is always closed::

    with Client(context_name="prod") as c:
        reply = c.version(ctx.with_nodes("10.5.0.2", "10.5.0.3"))
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import grpc

from nodectl.archive.targz import concat_tar_gz
from nodectl.client import api
from nodectl.client.calls import bidi_call, envelope_call, stream_call
from nodectl.client.config import Config, Context
from nodectl.client.endpoints import DEFAULT_PORT
from nodectl.client.resources import ResourceClient
from nodectl.client.stream import read_stream
from nodectl.client.transport import dial
from nodectl.core.context import CallContext
from nodectl.core.errors import ConfigError, NodectlError
from nodectl.core.pipe import PipeReader
from nodectl.core.types import ServiceInfo

log = logging.getLogger(__name__)


def fail_if_multi_nodes(ctx: CallContext, command: str) -> None:
    """Reject commands that only make sense against a single node."""
    if len(ctx.nodes) > 1:
        raise NodectlError(f"command {command!r} is not supported with multiple nodes")


class Client:
    """Client for the node API.

    Endpoints come from *endpoints* when given, otherwise from the resolved
    context.  With *unix_socket_path* no configuration is needed at all.
    """

    def __init__(
        self,
        *,
        config_path: str | Path = "",
        context_name: str = "",
        config: Config | None = None,
        context: Context | None = None,
        endpoints: Sequence[str] | None = None,
        cluster: str = "",
        unix_socket_path: str = "",
        default_port: int = DEFAULT_PORT,
        options: Sequence[tuple[str, Any]] = (),
        keys_dir: Path | None = None,
    ) -> None:
        self._endpoints_override = list(endpoints or [])
        self._unix_socket_path = unix_socket_path

        if context is not None:
            self._context = context
        elif unix_socket_path and config is None and not config_path and not context_name:
            self._context = Context()
        else:
            cfg = config if config is not None else Config.open(config_path)
            self._context = cfg.resolve_context(context_name)

        if not self.get_endpoints():
            raise ConfigError("failed to determine endpoints")

        self._cluster = cluster or self._context.cluster
        self._channel = dial(
            self._context,
            self.get_endpoints(),
            cluster=self._cluster,
            unix_socket_path=unix_socket_path,
            options=options,
            default_port=default_port,
            keys_dir=keys_dir,
        )
        self.resources = ResourceClient(self._channel)

    # -- lifecycle -----------------------------------------------------------

    def get_config_context(self) -> Context:
        return self._context

    def get_endpoints(self) -> list[str]:
        if self._unix_socket_path:
            return [self._unix_socket_path]
        if self._endpoints_override:
            return list(self._endpoints_override)
        return list(self._context.endpoints)

    @property
    def channel(self) -> grpc.Channel:
        return self._channel

    def close(self) -> None:
        self._channel.close()
        log.debug("Client closed")

    def __enter__(self) -> Client:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # -- unary envelope calls ------------------------------------------------

    def version(self, ctx: CallContext) -> api.VersionResponse:
        return envelope_call(self._channel, ctx, "version")

    def memory(self, ctx: CallContext) -> api.MemoryResponse:
        return envelope_call(self._channel, ctx, "memory")

    def mounts(self, ctx: CallContext) -> api.MountsResponse:
        return envelope_call(self._channel, ctx, "mounts")

    def processes(self, ctx: CallContext) -> api.ProcessesResponse:
        return envelope_call(self._channel, ctx, "processes")

    def interfaces(self, ctx: CallContext) -> api.InterfacesResponse:
        return envelope_call(self._channel, ctx, "interfaces")

    def routes(self, ctx: CallContext) -> api.RoutesResponse:
        return envelope_call(self._channel, ctx, "routes")

    def netstat(self, ctx: CallContext, filter: str = "CONNECTED", listening: bool = False,
                pid: bool = False) -> api.NetstatResponse:
        req = api.NetstatRequest(filter=filter, listening=listening, pid=pid)
        return envelope_call(self._channel, ctx, "netstat", req)

    def service_list(self, ctx: CallContext) -> api.ServiceListResponse:
        return envelope_call(self._channel, ctx, "service_list")

    def service_info(self, ctx: CallContext, id: str) -> list[ServiceInfo]:
        """Per-node state of service *id*, derived from the service list.

        Partial failures are logged; nodes that failed are simply absent.
        """
        reply = self.service_list(ctx)
        if reply.node_error is not None:
            log.warning("%s", reply.node_error)
        return [
            ServiceInfo(metadata=msg.metadata, service=svc)
            for msg in reply.messages
            for svc in msg.services
            if svc.id == id
        ]

    def service_start(self, ctx: CallContext, id: str) -> api.ServiceActionResponse:
        return envelope_call(self._channel, ctx, "service_start", api.ServiceRequest(id=id))

    def service_stop(self, ctx: CallContext, id: str) -> api.ServiceActionResponse:
        return envelope_call(self._channel, ctx, "service_stop", api.ServiceRequest(id=id))

    def service_restart(self, ctx: CallContext, id: str) -> api.ServiceActionResponse:
        return envelope_call(self._channel, ctx, "service_restart", api.ServiceRequest(id=id))

    def apply_configuration(self, ctx: CallContext,
                            req: api.ApplyConfigurationRequest) -> api.ApplyConfigurationResponse:
        return envelope_call(self._channel, ctx, "apply_configuration", req)

    def generate_configuration(self, ctx: CallContext,
                               req: api.GenerateConfigurationRequest) -> api.GenerateConfigurationResponse:
        return envelope_call(self._channel, ctx, "generate_configuration", req)

    def reboot(self, ctx: CallContext, mode: str = "DEFAULT") -> api.ActionResponse:
        return envelope_call(self._channel, ctx, "reboot", api.RebootRequest(mode=mode))

    def shutdown(self, ctx: CallContext, force: bool = False) -> api.ActionResponse:
        return envelope_call(self._channel, ctx, "shutdown", api.ShutdownRequest(force=force))

    def reset(self, ctx: CallContext, graceful: bool = True, reboot: bool = False) -> api.ActionResponse:
        return envelope_call(self._channel, ctx, "reset", api.ResetRequest(graceful=graceful, reboot=reboot))

    def bootstrap(self, ctx: CallContext, req: api.BootstrapRequest | None = None) -> api.ActionResponse:
        return envelope_call(self._channel, ctx, "bootstrap", req)

    def upgrade(self, ctx: CallContext, image: str, preserve: bool = False, stage: bool = False,
                force: bool = False) -> api.ActionResponse:
        req = api.UpgradeRequest(image=image, preserve=preserve, stage=stage, force=force)
        return envelope_call(self._channel, ctx, "upgrade", req)

    # -- streams -------------------------------------------------------------

    def logs(self, ctx: CallContext, id: str, namespace: str = "system", follow: bool = False,
             tail_lines: int = -1):
        """Raw chunk stream of service/container logs (see ``read_grpc_stream``)."""
        req = api.LogsRequest(namespace=namespace, id=id, follow=follow, tail_lines=tail_lines)
        return stream_call(self._channel, ctx, "logs", req)

    def dmesg(self, ctx: CallContext, follow: bool = False, tail: bool = False):
        """Raw chunk stream of the kernel log."""
        return stream_call(self._channel, ctx, "dmesg", api.DmesgRequest(follow=follow, tail=tail))

    def read(self, ctx: CallContext, path: str) -> PipeReader:
        return read_stream(stream_call(self._channel, ctx, "read", api.ReadRequest(path=path)))

    def copy(self, ctx: CallContext, root_path: str) -> PipeReader:
        """tar.gz stream of *root_path* on the node."""
        return read_stream(stream_call(self._channel, ctx, "copy", api.CopyRequest(root_path=root_path)))

    def etcd_snapshot(self, ctx: CallContext) -> PipeReader:
        return read_stream(stream_call(self._channel, ctx, "etcd_snapshot"))

    def packet_capture(self, ctx: CallContext, interface: str, promiscuous: bool = False,
                       snap_len: int = 65536) -> PipeReader:
        req = api.PacketCaptureRequest(interface=interface, promiscuous=promiscuous, snap_len=snap_len)
        return read_stream(stream_call(self._channel, ctx, "packet_capture", req))

    def kubeconfig_raw(self, ctx: CallContext) -> PipeReader:
        """tar.gz stream holding the admin kubeconfig."""
        return read_stream(stream_call(self._channel, ctx, "kubeconfig"))

    def kubeconfig(self, ctx: CallContext) -> bytes:
        """The admin kubeconfig, extracted from its single-file archive."""
        with self.kubeconfig_raw(ctx) as reader:
            return concat_tar_gz(reader)

    def container_run(self, ctx: CallContext, requests):
        """Open the interactive container bidi stream fed by *requests*."""
        return bidi_call(self._channel, ctx, "container_run", requests)
