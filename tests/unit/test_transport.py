"""Tests for credentials and channel construction."""

from __future__ import annotations

import grpc
import pytest

from conftest import b64
from nodectl.client import transport
from nodectl.client.config import AuthConfig, BasicAuth, Context, SignatureAuth
from nodectl.client.transport import (
    RoundRobinChannel,
    channel_credentials,
    dial,
    dial_options,
    tls_credentials,
)
from nodectl.core.errors import TransportError


@pytest.fixture()
def opened(monkeypatch):
    """Record every channel the transport opens instead of dialing."""
    calls = []

    def fake_open(target, credentials, options):
        calls.append((target, credentials, dict(options)))
        return grpc.insecure_channel("localhost:1")

    monkeypatch.setattr(transport, "_open", fake_open)
    return calls


class TestDialOptions:
    def test_defaults(self):
        opts = dict(dial_options())
        assert opts["grpc.max_receive_message_length"] == 32 * 1024 * 1024
        assert opts["grpc.max_send_message_length"] == 32 * 1024 * 1024
        assert "grpc.service_config" not in opts

    def test_extra_appended(self):
        assert dial_options([("x", 1)])[-1] == ("x", 1)


class TestTLSCredentials:
    def test_mtls(self, pki):
        ctx = Context(ca=b64(pki["ca"]), crt=b64(pki["crt"]), key=b64(pki["key"]))
        assert isinstance(tls_credentials(ctx), grpc.ChannelCredentials)

    def test_bad_base64(self):
        with pytest.raises(TransportError, match="failed to decode CA certificate"):
            tls_credentials(Context(ca="!!not base64!!"))

    def test_crt_without_key(self, pki):
        with pytest.raises(TransportError, match="together"):
            tls_credentials(Context(crt=b64(pki["crt"])))

    def test_invalid_pem(self):
        with pytest.raises(TransportError, match="invalid TLS material"):
            tls_credentials(Context(ca=b64(b"not a certificate")))

    def test_signature_skips_client_cert(self, pki):
        ctx = Context(
            ca=b64(pki["ca"]),
            crt=b64(pki["crt"]),
            auth=AuthConfig(siderov1=SignatureAuth(identity="alice")),
        )
        # a dangling crt without key is ignored when signing
        assert isinstance(channel_credentials(ctx), grpc.ChannelCredentials)

    def test_basic_auth(self, pki):
        ctx = Context(ca=b64(pki["ca"]), auth=AuthConfig(basic=BasicAuth(username="u", password="p")))
        assert isinstance(channel_credentials(ctx), grpc.ChannelCredentials)


class TestDial:
    def test_single_endpoint(self, pki, opened):
        ctx = Context(ca=b64(pki["ca"]), crt=b64(pki["crt"]), key=b64(pki["key"]))
        channel = dial(ctx, ["10.0.0.1"])
        assert [c[0] for c in opened] == ["dns:///10.0.0.1:50000"]
        assert "round_robin" in opened[0][2]["grpc.service_config"]
        channel.close()

    def test_multiple_endpoints_round_robin(self, pki, opened):
        ctx = Context(ca=b64(pki["ca"]), crt=b64(pki["crt"]), key=b64(pki["key"]))
        channel = dial(ctx, ["10.0.0.1", "10.0.0.2:4000"])
        assert sorted(c[0] for c in opened) == ["dns:///10.0.0.1:50000", "dns:///10.0.0.2:4000"]
        channel.close()

    def test_round_robin_verifies_each_server_name(self, pki, opened):
        ctx = Context(ca=b64(pki["ca"]), crt=b64(pki["crt"]), key=b64(pki["key"]))
        channel = dial(ctx, ["cp-1.example.dev", "cp-2.example.dev:4000"])
        names = {c[0]: c[2]["grpc.ssl_target_name_override"] for c in opened}
        assert names == {
            "dns:///cp-1.example.dev:50000": "cp-1.example.dev",
            "dns:///cp-2.example.dev:4000": "cp-2.example.dev",
        }
        channel.close()

    def test_no_endpoints(self, pki):
        with pytest.raises(TransportError, match="no endpoints"):
            dial(Context(ca=b64(pki["ca"])), [])

    def test_unix_socket_needs_no_credentials(self, opened):
        channel = dial(Context(), [], unix_socket_path="/run/nodectl.sock")
        assert opened == []
        channel.close()

    def test_plain_http_rejected_outside_debug(self, opened):
        ctx = Context(auth=AuthConfig(basic=BasicAuth(username="u", password="p")))
        dial(ctx, ["http://10.0.0.1:80"])
        # still TLS credentials
        assert opened[0][1] is not None

    def test_plain_http_in_debug_build(self, opened, monkeypatch):
        monkeypatch.setattr(transport, "DEBUG_BUILD", True)
        ctx = Context(auth=AuthConfig(basic=BasicAuth(username="u", password="p")))
        dial(ctx, ["http://10.0.0.1:80"])
        assert opened[0][1] is None


class TestRoundRobinChannel:
    def test_rotates(self):
        class Sub:
            def __init__(self, name):
                self.name = name

            def unary_unary(self, method, ser, de, registered):
                return lambda request, **kw: (self.name, request)

        channel = RoundRobinChannel([Sub("a"), Sub("b")], ["a:1", "b:1"])
        call = channel.unary_unary("/m")
        assert [call(i)[0] for i in range(4)] == ["a", "b", "a", "b"]
        assert channel.addresses == ["a:1", "b:1"]

    def test_empty(self):
        with pytest.raises(TransportError):
            RoundRobinChannel([])
