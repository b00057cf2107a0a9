"""Shared fixtures for all test levels."""

from __future__ import annotations

import base64
import datetime
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import grpc
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from nodectl.client import api
from nodectl.client.config import BasicAuth, AuthConfig, Config, Context


# ---------------------------------------------------------------------------
# RPC fakes
# ---------------------------------------------------------------------------

class FakeRpcError(grpc.RpcError):
    """A terminal RPC status, shaped like the errors grpcio raises."""

    def __init__(self, code: grpc.StatusCode, details: str = "") -> None:
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


class FakeStream:
    """A server-stream call: iterates *messages*, then raises *error* if set.

    ``cancel()`` makes the iteration end with a CANCELLED status.  With
    *block* the stream waits for cancellation after the messages.
    """

    def __init__(self, messages: Iterable[Any] = (), error: Exception | None = None,
                 block: bool = False) -> None:
        self._messages = list(messages)
        self._error = error
        self._block = block
        self.cancelled = threading.Event()

    def cancel(self) -> bool:
        self.cancelled.set()
        return True

    def __iter__(self):
        for msg in self._messages:
            if self.cancelled.is_set():
                raise FakeRpcError(grpc.StatusCode.CANCELLED, "Locally cancelled by application!")
            yield msg
        if self._block:
            self.cancelled.wait(10)
            raise FakeRpcError(grpc.StatusCode.CANCELLED, "Locally cancelled by application!")
        if self._error is not None:
            raise self._error


@pytest.fixture()
def fake_stream():
    return FakeStream


def meta(hostname: str = "", error: str = "", code: int = 0) -> api.Metadata:
    status = api.Status(code=code, message=error) if code else None
    return api.Metadata(hostname=hostname, error=error, status=status)


def chunk(data: bytes = b"", hostname: str = "", error: str = "", code: int = 0) -> api.Data:
    metadata = meta(hostname, error, code) if (hostname or error) else None
    return api.Data(bytes=data, metadata=metadata)


# ---------------------------------------------------------------------------
# PKI material
# ---------------------------------------------------------------------------

def _name(common_name: str, org: str = "") -> x509.Name:
    attrs = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if org:
        attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
    return x509.Name(attrs)


def _pem_key(key) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def pki() -> dict[str, bytes]:
    """A CA plus a client certificate carrying the ``os:admin`` role."""
    now = datetime.datetime.now(datetime.timezone.utc)

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("test-ca"))
        .issuer_name(_name("test-ca"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )

    client_key = ec.generate_private_key(ec.SECP256R1())
    client_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("admin", "os:admin"))
        .issuer_name(ca_cert.subject)
        .public_key(client_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(ca_key, hashes.SHA256())
    )

    return {
        "ca": ca_cert.public_bytes(serialization.Encoding.PEM),
        "crt": client_cert.public_bytes(serialization.Encoding.PEM),
        "key": _pem_key(client_key),
    }


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


# ---------------------------------------------------------------------------
# Sample configs
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_config(pki) -> Config:
    """Two contexts; ``prod`` (current) carries mTLS material and default nodes."""
    return Config(
        context="prod",
        contexts={
            "prod": Context(
                endpoints=["10.0.0.2", "10.0.0.3"],
                nodes=["10.0.0.2"],
                ca=b64(pki["ca"]),
                crt=b64(pki["crt"]),
                key=b64(pki["key"]),
            ),
            "lab": Context(
                endpoints=["lab.example.com"],
                auth=AuthConfig(basic=BasicAuth(username="admin", password="secret")),
            ),
        },
    )


@pytest.fixture()
def config_path(tmp_path: Path, sample_config: Config) -> Path:
    path = tmp_path / "config"
    sample_config.save(path)
    return path
