"""Node API client: configuration, transport, calls and streams."""

from nodectl.client.client import Client, fail_if_multi_nodes
from nodectl.client.config import Config, Context
from nodectl.client.fanout import stream_fanout, unary_fanout
from nodectl.client.filter import filter_messages, metadata_to_error, status_code
from nodectl.client.metadata import with_nodes
from nodectl.client.stream import read_grpc_stream, read_stream

__all__ = [
    "Client",
    "Config",
    "Context",
    "fail_if_multi_nodes",
    "filter_messages",
    "metadata_to_error",
    "read_grpc_stream",
    "read_stream",
    "status_code",
    "stream_fanout",
    "unary_fanout",
    "with_nodes",
]
