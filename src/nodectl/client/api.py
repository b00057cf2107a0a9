"""Pydantic models for the RPC messages exchanged with the node API.

Messages travel as JSON over gRPC generic multicallables: field names are
camelCased on the wire and ``bytes`` fields are base64 encoded.  Every
unary reply follows the envelope shape ``{messages: [{metadata, ...}]}``.
"""

from __future__ import annotations

import builtins
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for every message sent or received over the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )


def encode(message: BaseModel) -> bytes:
    """Serialize *message* to its wire form."""
    return message.model_dump_json(by_alias=True, exclude_none=True).encode()


def decoder(model: type[BaseModel]):
    """Return a deserializer producing *model* instances from wire bytes."""

    def _decode(data: bytes) -> BaseModel:
        return model.model_validate_json(data)

    return _decode


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

class Status(WireModel):
    """An RPC status embedded in reply metadata."""

    code: int = 0
    message: str = ""


class Metadata(WireModel):
    """Per-node metadata carried by every envelope message and stream chunk."""

    hostname: str = ""
    error: str = ""
    status: Status | None = None


class Message(WireModel):
    metadata: Metadata | None = None


class Reply(WireModel):
    """A unary reply envelope.

    After :func:`nodectl.client.filter.filter_messages` has run, partial
    per-node failures are available as :attr:`node_error`.
    """

    messages: list[Message] = Field(default_factory=list)

    _node_error: Exception | None = PrivateAttr(default=None)

    @property
    def node_error(self) -> Exception | None:
        return self._node_error


class Empty(WireModel):
    pass


class Data(WireModel):
    """A stream chunk: opaque bytes and/or out-of-band metadata."""

    bytes: builtins.bytes = b""
    metadata: Metadata | None = None


# ---------------------------------------------------------------------------
# Machine service
# ---------------------------------------------------------------------------

class VersionInfo(WireModel):
    tag: str = ""
    sha: str = ""
    built: str = ""
    go_version: str = ""
    os: str = ""
    arch: str = ""


class PlatformInfo(WireModel):
    name: str = ""
    mode: str = ""


class Version(Message):
    version: VersionInfo | None = None
    platform: PlatformInfo | None = None


class VersionResponse(Reply):
    messages: list[Version] = Field(default_factory=list)


class MemInfo(WireModel):
    memtotal: int = 0
    memfree: int = 0
    memavailable: int = 0
    buffers: int = 0
    cached: int = 0
    swapcached: int = 0
    swaptotal: int = 0
    swapfree: int = 0
    shmem: int = 0


class Memory(Message):
    meminfo: MemInfo | None = None


class MemoryResponse(Reply):
    messages: list[Memory] = Field(default_factory=list)


class MountStat(WireModel):
    filesystem: str = ""
    size: int = 0
    available: int = 0
    mounted_on: str = ""


class Mounts(Message):
    stats: list[MountStat] = Field(default_factory=list)


class MountsResponse(Reply):
    messages: list[Mounts] = Field(default_factory=list)


class ProcessInfo(WireModel):
    pid: int = 0
    ppid: int = 0
    state: str = ""
    threads: int = 0
    cpu_time: float = 0.0
    virtual_memory: int = 0
    resident_memory: int = 0
    command: str = ""
    executable: str = ""
    args: str = ""


class Process(Message):
    processes: list[ProcessInfo] = Field(default_factory=list)


class ProcessesResponse(Reply):
    messages: list[Process] = Field(default_factory=list)


class ServiceEvent(WireModel):
    msg: str = ""
    state: str = ""
    ts: str = ""


class ServiceEvents(WireModel):
    events: list[ServiceEvent] = Field(default_factory=list)


class ServiceHealth(WireModel):
    unknown: bool = False
    healthy: bool = False
    last_message: str = ""
    last_change: str = ""


class ServiceState(WireModel):
    """One service as reported by a node."""

    id: str = ""
    state: str = ""
    events: ServiceEvents | None = None
    health: ServiceHealth | None = None


class ServiceList(Message):
    services: list[ServiceState] = Field(default_factory=list)


class ServiceListResponse(Reply):
    messages: list[ServiceList] = Field(default_factory=list)


class ServiceRequest(WireModel):
    id: str


class ServiceAction(Message):
    resp: str = ""


class ServiceActionResponse(Reply):
    messages: list[ServiceAction] = Field(default_factory=list)


class ApplyConfigurationRequest(WireModel):
    data: bytes = b""
    mode: str = "AUTO"
    dry_run: bool = False


class ApplyConfiguration(Message):
    warnings: list[str] = Field(default_factory=list)
    mode: str = ""
    mode_details: str = ""


class ApplyConfigurationResponse(Reply):
    messages: list[ApplyConfiguration] = Field(default_factory=list)


class GenerateConfigurationRequest(WireModel):
    config_version: str = "v1alpha1"
    cluster_name: str = ""
    control_plane_endpoint: str = ""
    machine_type: str = ""


class GenerateConfiguration(Message):
    data: list[bytes] = Field(default_factory=list)
    client_config: bytes = b""


class GenerateConfigurationResponse(Reply):
    messages: list[GenerateConfiguration] = Field(default_factory=list)


class RebootRequest(WireModel):
    mode: str = "DEFAULT"


class ShutdownRequest(WireModel):
    force: bool = False


class ResetRequest(WireModel):
    graceful: bool = True
    reboot: bool = False


class BootstrapRequest(WireModel):
    recover_etcd: bool = False
    recover_skip_hash_check: bool = False


class UpgradeRequest(WireModel):
    image: str = ""
    preserve: bool = False
    stage: bool = False
    force: bool = False


class Action(Message):
    """Reply message of a lifecycle action (reboot, shutdown, ...)."""

    actor_id: str = ""
    ack: str = ""


class ActionResponse(Reply):
    messages: list[Action] = Field(default_factory=list)


class InterfaceInfo(WireModel):
    index: int = 0
    mtu: int = 0
    name: str = ""
    hardwareaddr: str = ""
    flags: str = ""
    ipaddress: list[str] = Field(default_factory=list)


class Interfaces(Message):
    interfaces: list[InterfaceInfo] = Field(default_factory=list)


class InterfacesResponse(Reply):
    messages: list[Interfaces] = Field(default_factory=list)


class RouteInfo(WireModel):
    interface: str = ""
    destination: str = ""
    gateway: str = ""
    metric: int = 0
    scope: int = 0
    source: str = ""
    family: str = ""
    protocol: str = ""
    flags: int = 0


class Routes(Message):
    routes: list[RouteInfo] = Field(default_factory=list)


class RoutesResponse(Reply):
    messages: list[Routes] = Field(default_factory=list)


class NetstatRequest(WireModel):
    filter: str = "CONNECTED"
    listening: bool = False
    pid: bool = False


class ConnectRecord(WireModel):
    l4proto: str = ""
    localip: str = ""
    localport: int = 0
    remoteip: str = ""
    remoteport: int = 0
    state: str = ""
    txqueue: int = 0
    rxqueue: int = 0
    pid: int = 0
    process: str = ""


class Netstat(Message):
    connectrecord: list[ConnectRecord] = Field(default_factory=list)


class NetstatResponse(Reply):
    messages: list[Netstat] = Field(default_factory=list)


# -- streaming requests ------------------------------------------------------

class LogsRequest(WireModel):
    namespace: str = "system"
    id: str = ""
    driver: str = "CONTAINERD"
    follow: bool = False
    tail_lines: int = -1


class DmesgRequest(WireModel):
    follow: bool = False
    tail: bool = False


class ReadRequest(WireModel):
    path: str


class CopyRequest(WireModel):
    root_path: str


class PacketCaptureRequest(WireModel):
    interface: str
    promiscuous: bool = False
    snap_len: int = 65536


# ---------------------------------------------------------------------------
# Debug service (interactive container run)
# ---------------------------------------------------------------------------

class ContainerSpec(WireModel):
    image: str
    args: list[str] = Field(default_factory=list)
    privileged: bool = True
    tty: bool = False


class TermResize(WireModel):
    width: int
    height: int


class DebugContainerRunRequest(WireModel):
    """Exactly one of the fields is set per message."""

    spec: ContainerSpec | None = None
    stdin_data: bytes | None = None
    signal: int | None = None
    term_resize: TermResize | None = None


class DebugContainerRunResponse(WireModel):
    stdout_data: bytes | None = None
    exit_code: int | None = None


# ---------------------------------------------------------------------------
# Resource service
# ---------------------------------------------------------------------------

META_NAMESPACE = "meta"
RESOURCE_DEFINITION_TYPE = "ResourceDefinitions.meta.cosi.dev"


class EventType(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    DESTROYED = "Destroyed"
    ERRORED = "Errored"
    BOOTSTRAPPED = "Bootstrapped"


class ResourceMetadata(WireModel):
    namespace: str = ""
    type: str = ""
    id: str = ""
    version: str = ""
    owner: str = ""
    phase: str = "running"
    created: str = ""
    updated: str = ""
    labels: dict[str, str] = Field(default_factory=dict)


class Resource(WireModel):
    """An opaque resource; ``spec`` is any YAML-serializable value."""

    metadata: ResourceMetadata = Field(default_factory=ResourceMetadata)
    spec: Any = None


class PrintColumn(WireModel):
    name: str
    json_path: str


class ResourceDefinitionSpec(WireModel):
    type: str = ""
    display_type: str = ""
    default_namespace: str = ""
    aliases: list[str] = Field(default_factory=list)
    print_columns: list[PrintColumn] = Field(default_factory=list)

    def matches(self, name: str) -> bool:
        name = name.lower()
        return (
            name == self.type.lower()
            or name == self.display_type.lower()
            or name in (a.lower() for a in self.aliases)
        )


class ResourceRequest(WireModel):
    namespace: str = ""
    type: str
    id: str = ""


class WatchRequest(WireModel):
    namespace: str = ""
    type: str
    id: str = ""
    tail_events: int = 0


class Get(Message):
    definition: Resource | None = None
    resource: Resource | None = None


class GetResponse(Reply):
    messages: list[Get] = Field(default_factory=list)


class ListResponse(WireModel):
    metadata: Metadata | None = None
    definition: Resource | None = None
    resource: Resource | None = None


class WatchResponse(WireModel):
    metadata: Metadata | None = None
    event_type: EventType = EventType.CREATED
    definition: Resource | None = None
    resource: Resource | None = None
    error: str = ""


# ---------------------------------------------------------------------------
# Auth service (signature key enrollment)
# ---------------------------------------------------------------------------

class RegisterPublicKeyRequest(WireModel):
    identity: str
    public_key: bytes


class RegisterPublicKeyResponse(WireModel):
    login_url: str = ""
    public_key_id: str = ""


class AwaitPublicKeyConfirmationRequest(WireModel):
    public_key_id: str


# ---------------------------------------------------------------------------
# Method table
# ---------------------------------------------------------------------------

UNARY = "unary_unary"
SERVER_STREAM = "unary_stream"
BIDI_STREAM = "stream_stream"


@dataclass(frozen=True)
class Method:
    """A single RPC: full path, call shape and message types."""

    path: str
    kind: str
    request: type[BaseModel]
    response: type[BaseModel]


def _machine(name: str, kind: str, request: type[BaseModel], response: type[BaseModel]) -> Method:
    return Method(f"/machine.MachineService/{name}", kind, request, response)


def _resource(name: str, kind: str, request: type[BaseModel], response: type[BaseModel]) -> Method:
    return Method(f"/resource.ResourceService/{name}", kind, request, response)


METHODS: dict[str, Method] = {
    "version": _machine("Version", UNARY, Empty, VersionResponse),
    "memory": _machine("Memory", UNARY, Empty, MemoryResponse),
    "mounts": _machine("Mounts", UNARY, Empty, MountsResponse),
    "processes": _machine("Processes", UNARY, Empty, ProcessesResponse),
    "netstat": _machine("Netstat", UNARY, NetstatRequest, NetstatResponse),
    "service_list": _machine("ServiceList", UNARY, Empty, ServiceListResponse),
    "service_start": _machine("ServiceStart", UNARY, ServiceRequest, ServiceActionResponse),
    "service_stop": _machine("ServiceStop", UNARY, ServiceRequest, ServiceActionResponse),
    "service_restart": _machine("ServiceRestart", UNARY, ServiceRequest, ServiceActionResponse),
    "apply_configuration": _machine(
        "ApplyConfiguration", UNARY, ApplyConfigurationRequest, ApplyConfigurationResponse
    ),
    "generate_configuration": _machine(
        "GenerateConfiguration", UNARY, GenerateConfigurationRequest, GenerateConfigurationResponse
    ),
    "reboot": _machine("Reboot", UNARY, RebootRequest, ActionResponse),
    "shutdown": _machine("Shutdown", UNARY, ShutdownRequest, ActionResponse),
    "reset": _machine("Reset", UNARY, ResetRequest, ActionResponse),
    "bootstrap": _machine("Bootstrap", UNARY, BootstrapRequest, ActionResponse),
    "upgrade": _machine("Upgrade", UNARY, UpgradeRequest, ActionResponse),
    "logs": _machine("Logs", SERVER_STREAM, LogsRequest, Data),
    "dmesg": _machine("Dmesg", SERVER_STREAM, DmesgRequest, Data),
    "read": _machine("Read", SERVER_STREAM, ReadRequest, Data),
    "copy": _machine("Copy", SERVER_STREAM, CopyRequest, Data),
    "etcd_snapshot": _machine("EtcdSnapshot", SERVER_STREAM, Empty, Data),
    "kubeconfig": _machine("Kubeconfig", SERVER_STREAM, Empty, Data),
    "packet_capture": _machine("PacketCapture", SERVER_STREAM, PacketCaptureRequest, Data),
    "interfaces": Method("/network.NetworkService/Interfaces", UNARY, Empty, InterfacesResponse),
    "routes": Method("/network.NetworkService/Routes", UNARY, Empty, RoutesResponse),
    "container_run": Method(
        "/machine.DebugService/ContainerRun", BIDI_STREAM,
        DebugContainerRunRequest, DebugContainerRunResponse,
    ),
    "resource_get": _resource("Get", UNARY, ResourceRequest, GetResponse),
    "resource_list": _resource("List", SERVER_STREAM, ResourceRequest, ListResponse),
    "resource_watch": _resource("Watch", SERVER_STREAM, WatchRequest, WatchResponse),
    "resource_watch_kind": _resource("WatchKind", SERVER_STREAM, WatchRequest, WatchResponse),
    "register_public_key": Method(
        "/auth.AuthService/RegisterPublicKey", UNARY,
        RegisterPublicKeyRequest, RegisterPublicKeyResponse,
    ),
    "await_public_key_confirmation": Method(
        "/auth.AuthService/AwaitPublicKeyConfirmation", UNARY,
        AwaitPublicKeyConfirmationRequest, Empty,
    ),
}


def multicallable(channel, method: Method):
    """Bind *method* to *channel* as a gRPC multicallable."""
    factory = getattr(channel, method.kind)
    return factory(
        method.path,
        request_serializer=encode,
        response_deserializer=decoder(method.response),
    )
