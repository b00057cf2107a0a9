"""Secure channel construction.

Credentials are picked from the context in this order: basic auth, then
signature identity, then mutual TLS.  A configured unix socket bypasses all
of them.  Every channel is wrapped so that calls carry ``runtime`` and, when
known, ``context`` metadata.
"""

from __future__ import annotations

import base64
import binascii
import itertools
import logging
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import grpc
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from nodectl.client import resolver
from nodectl.client.auth import (
    SignatureInterceptor,
    basic_auth_credentials,
    basic_auth_interceptor,
)
from nodectl.client.config import Context
from nodectl.client.endpoints import DEFAULT_PORT, build_target
from nodectl.client.metadata import runtime_interceptor
from nodectl.core.errors import TransportError
from nodectl.core.types import Address

log = logging.getLogger(__name__)

# Plaintext http:// endpoints with basic auth are only accepted in debug builds.
DEBUG_BUILD = False

MAX_MESSAGE_SIZE = 32 * 1024 * 1024
INITIAL_WINDOW_SIZE = 65535 * 32
WRITE_BUFFER_SIZE = 32 * 1024


def dial_options(extra: Sequence[tuple[str, Any]] = ()) -> list[tuple[str, Any]]:
    """Channel options shared by every connection."""
    options: list[tuple[str, Any]] = [
        ("grpc.max_receive_message_length", MAX_MESSAGE_SIZE),
        ("grpc.max_send_message_length", MAX_MESSAGE_SIZE),
        ("grpc.http2.lookahead_bytes", INITIAL_WINDOW_SIZE),
        ("grpc.http2.bdp_probe", 0),
        ("grpc.http2.write_buffer_size", WRITE_BUFFER_SIZE),
    ]
    options.extend(extra)
    return options


def _decode_pem(name: str, value: str) -> bytes | None:
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TransportError(f"failed to decode {name}: {exc}") from exc


def tls_credentials(context: Context, client_cert: bool = True) -> grpc.ChannelCredentials:
    """TLS credentials from the context's base64 PEM material.

    The CA (if any) becomes the trust root; the cert/key pair (if any) is
    presented as the client certificate.
    """
    ca = _decode_pem("CA certificate", context.ca)
    crt = _decode_pem("client certificate", context.crt) if client_cert else None
    key = _decode_pem("client key", context.key) if client_cert else None

    if bool(crt) != bool(key):
        raise TransportError("client certificate and key must be configured together")

    try:
        if ca:
            x509.load_pem_x509_certificates(ca)
        if crt and key:
            x509.load_pem_x509_certificate(crt)
            serialization.load_pem_private_key(key, password=None)
    except ValueError as exc:
        raise TransportError(f"invalid TLS material: {exc}") from exc

    return grpc.ssl_channel_credentials(
        root_certificates=ca, private_key=key, certificate_chain=crt
    )


def channel_credentials(context: Context) -> grpc.ChannelCredentials:
    basic = context.basic_auth
    if basic is not None:
        return grpc.composite_channel_credentials(
            tls_credentials(context, client_cert=False),
            basic_auth_credentials(basic.username, basic.password),
        )
    if context.signature_identity:
        return tls_credentials(context, client_cert=False)
    return tls_credentials(context)


class _RoundRobinCallable:
    """A multicallable bound to one sub-channel per call, in rotation."""

    def __init__(self, pick) -> None:
        self._pick = pick

    def __call__(self, *args, **kwargs):
        return self._pick()(*args, **kwargs)

    def with_call(self, *args, **kwargs):
        return self._pick().with_call(*args, **kwargs)

    def future(self, *args, **kwargs):
        return self._pick().future(*args, **kwargs)


class RoundRobinChannel(grpc.Channel):
    """Spread calls over one sub-channel per resolved address.

    Each sub-channel dials its own ``dns:///`` target, so its TLS server
    name is the address's bare host.
    """

    def __init__(self, channels: Sequence[grpc.Channel], addresses: Sequence[str] = ()) -> None:
        if not channels:
            raise TransportError("no addresses to dial")
        self._channels = list(channels)
        self._addresses = list(addresses)
        self._counter = itertools.count()
        self._lock = threading.Lock()

    @property
    def addresses(self) -> list[str]:
        return list(self._addresses)

    def _next(self) -> grpc.Channel:
        with self._lock:
            idx = next(self._counter) % len(self._channels)
        return self._channels[idx]

    def _bind(self, kind: str, method, request_serializer, response_deserializer, _registered_method):
        def pick():
            factory = getattr(self._next(), kind)
            return factory(method, request_serializer, response_deserializer, _registered_method)

        return _RoundRobinCallable(pick)

    def unary_unary(self, method, request_serializer=None, response_deserializer=None,
                    _registered_method=False):
        return self._bind("unary_unary", method, request_serializer, response_deserializer, _registered_method)

    def unary_stream(self, method, request_serializer=None, response_deserializer=None,
                     _registered_method=False):
        return self._bind("unary_stream", method, request_serializer, response_deserializer, _registered_method)

    def stream_unary(self, method, request_serializer=None, response_deserializer=None,
                     _registered_method=False):
        return self._bind("stream_unary", method, request_serializer, response_deserializer, _registered_method)

    def stream_stream(self, method, request_serializer=None, response_deserializer=None,
                      _registered_method=False):
        return self._bind("stream_stream", method, request_serializer, response_deserializer, _registered_method)

    def subscribe(self, callback, try_to_connect=False):
        for ch in self._channels:
            ch.subscribe(callback, try_to_connect)

    def unsubscribe(self, callback):
        for ch in self._channels:
            ch.unsubscribe(callback)

    def close(self):
        for ch in self._channels:
            ch.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _open(target: str, credentials: grpc.ChannelCredentials | None, options: list) -> grpc.Channel:
    if credentials is None:
        return grpc.insecure_channel(target, options=options)
    return grpc.secure_channel(target, credentials, options=options)


def _address_options(opts: list[tuple[str, Any]], address: Address,
                     credentials: grpc.ChannelCredentials | None) -> list[tuple[str, Any]]:
    """Per-endpoint options: TLS verifies the address's own server name."""
    if credentials is None or not address.server_name:
        return opts
    return opts + [("grpc.ssl_target_name_override", address.server_name)]


def dial(
    context: Context,
    endpoints: Sequence[str],
    *,
    cluster: str = "",
    unix_socket_path: str = "",
    options: Sequence[tuple[str, Any]] = (),
    default_port: int = DEFAULT_PORT,
    keys_dir: Path | None = None,
) -> grpc.Channel:
    """Build the client channel for *context*.

    Raises :class:`TransportError` when credentials cannot be built.
    Connection failures surface later, per call.
    """
    opts = dial_options(options)
    interceptors: list[Any] = [runtime_interceptor(cluster)]

    if unix_socket_path:
        prefix = "unix://" if unix_socket_path.startswith("/") else "unix:"
        target = prefix + unix_socket_path
        log.info("Dialing %s", target)
        raw = grpc.insecure_channel(target, options=opts + [("grpc.enable_http_proxy", 0)])
        return grpc.intercept_channel(raw, *interceptors)

    credentials: grpc.ChannelCredentials | None
    basic = context.basic_auth
    if basic is not None and DEBUG_BUILD and endpoints and all(e.startswith("http://") for e in endpoints):
        log.warning("Sending basic auth over plaintext http (debug build)")
        credentials = None
        interceptors.append(basic_auth_interceptor(basic.username, basic.password))
    else:
        credentials = channel_credentials(context)

    try:
        target = build_target(list(endpoints), default_port)
    except ValueError as exc:
        raise TransportError(str(exc)) from exc

    rr = resolver.lookup(target)
    if rr is None:
        log.info("Dialing %s", target)
        raw = _open(target, credentials, opts + [("grpc.service_config", resolver.ROUND_ROBIN_SERVICE_CONFIG)])
    else:
        resolved = rr.resolve(target)
        sub_opts = opts + [("grpc.service_config", resolved.service_config)]
        addrs = [a.addr for a in resolved.addresses]
        log.info("Dialing %d endpoints round-robin: %s", len(addrs), ", ".join(addrs))
        raw = RoundRobinChannel(
            [_open(f"dns:///{a.addr}", credentials, _address_options(sub_opts, a, credentials))
             for a in resolved.addresses],
            addrs,
        )

    if context.signature_identity and basic is None:
        interceptors.append(SignatureInterceptor(context.signature_identity, raw, keys_dir))

    return grpc.intercept_channel(raw, *interceptors)
