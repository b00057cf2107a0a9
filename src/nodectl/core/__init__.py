"""Core types, errors and concurrency primitives for nodectl."""

from nodectl.core.channel import Channel, ChannelClosed
from nodectl.core.context import CallContext, nodes_from_metadata
from nodectl.core.errors import (
    ArchiveError,
    ConfigError,
    MultiError,
    NodectlError,
    NodeError,
    OutputError,
    RPCStatusError,
    SessionError,
    StreamError,
    TransportError,
)
from nodectl.core.pipe import Pipe, PipeReader, PipeWriter
from nodectl.core.types import Address, NodeResult, ServiceInfo

__all__ = [
    "Address",
    "ArchiveError",
    "CallContext",
    "Channel",
    "ChannelClosed",
    "ConfigError",
    "MultiError",
    "NodeError",
    "NodeResult",
    "NodectlError",
    "OutputError",
    "Pipe",
    "PipeReader",
    "PipeWriter",
    "RPCStatusError",
    "ServiceInfo",
    "SessionError",
    "StreamError",
    "TransportError",
    "nodes_from_metadata",
]
