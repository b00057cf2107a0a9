"""Per-call credentials: HTTP basic auth and signed requests.

Signed requests use an Ed25519 key kept under the keys directory as
``<identity>.pem``.  The first call without a key, or a call the server
rejects as UNAUTHENTICATED, triggers enrollment: a fresh key pair is
generated, its public half registered with the auth service, the returned
login URL opened in a browser, and the call retried once the server has
confirmed the key.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import threading
import time
import webbrowser
from collections.abc import Callable
from pathlib import Path

import grpc
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from nodectl.client import api
from nodectl.client.config import default_keys_dir
from nodectl.client.metadata import MetadataInterceptor, append_metadata
from nodectl.core.errors import TransportError

log = logging.getLogger(__name__)

AUTHORIZATION_KEY = "authorization"
SIGNATURE_KEY = "x-nodectl-signature"
TIMESTAMP_KEY = "x-nodectl-timestamp"
SIGNATURE_VERSION = "siderov1"

# Enrollment runs under the key lock; confirmation waits on a human login.
REGISTER_TIMEOUT = 30.0
CONFIRM_TIMEOUT = 300.0


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {token}"


class BasicAuthPlugin(grpc.AuthMetadataPlugin):
    """Emit ``authorization: Basic ...`` on every call (TLS only)."""

    def __init__(self, username: str, password: str) -> None:
        self._header = basic_auth_header(username, password)

    def __call__(self, context, callback) -> None:
        callback(((AUTHORIZATION_KEY, self._header),), None)


def basic_auth_credentials(username: str, password: str) -> grpc.CallCredentials:
    return grpc.metadata_call_credentials(BasicAuthPlugin(username, password), name="basic")


def basic_auth_interceptor(username: str, password: str) -> MetadataInterceptor:
    """Header-injecting variant for plaintext ``http://`` endpoints in debug builds."""
    return MetadataInterceptor([(AUTHORIZATION_KEY, basic_auth_header(username, password))])


# ---------------------------------------------------------------------------
# Signature credentials
# ---------------------------------------------------------------------------

def key_path(identity: str, keys_dir: Path | None = None) -> Path:
    return (keys_dir or default_keys_dir()) / f"{identity}.pem"


def key_id(key: Ed25519PrivateKey) -> str:
    raw = key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )
    return hashlib.sha256(raw).hexdigest()[:16]


def load_key(path: Path) -> Ed25519PrivateKey | None:
    """Load a stored key; None when the file does not exist."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise TransportError(f"failed to read signature key {path}: {exc}") from exc

    try:
        key = serialization.load_pem_private_key(data, password=None)
    except ValueError as exc:
        raise TransportError(f"invalid signature key {path}: {exc}") from exc
    if not isinstance(key, Ed25519PrivateKey):
        raise TransportError(f"signature key {path} is not an Ed25519 key")
    return key


def save_key(path: Path, key: Ed25519PrivateKey) -> None:
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    data = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    log.info("Saved signature key to %s", path)


class SignatureInterceptor(
    grpc.UnaryUnaryClientInterceptor,
    grpc.UnaryStreamClientInterceptor,
    grpc.StreamUnaryClientInterceptor,
    grpc.StreamStreamClientInterceptor,
):
    """Sign every outgoing call with the identity's key, enrolling on demand.

    *channel* is the raw (un-intercepted) channel used for enrollment calls.
    """

    def __init__(
        self,
        identity: str,
        channel: grpc.Channel,
        keys_dir: Path | None = None,
        open_browser: Callable[[str], object] = webbrowser.open,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._identity = identity
        self._channel = channel
        self._path = key_path(identity, keys_dir)
        self._open_browser = open_browser
        self._clock = clock
        self._key: Ed25519PrivateKey | None = None
        self._lock = threading.Lock()

    @property
    def identity(self) -> str:
        return self._identity

    # -- key management ------------------------------------------------------

    def _current_key(self) -> Ed25519PrivateKey:
        with self._lock:
            if self._key is None:
                self._key = load_key(self._path) or self._enroll()
            return self._key

    def _reenroll(self, rejected: Ed25519PrivateKey) -> Ed25519PrivateKey:
        with self._lock:
            # another thread may have enrolled already
            if self._key is rejected:
                self._key = self._enroll()
            return self._key

    def _enroll(self) -> Ed25519PrivateKey:
        key = Ed25519PrivateKey.generate()
        public_pem = key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        log.info("Registering public key %s for %s", key_id(key), self._identity)

        register = api.multicallable(self._channel, api.METHODS["register_public_key"])
        try:
            resp = register(
                api.RegisterPublicKeyRequest(identity=self._identity, public_key=public_pem),
                timeout=REGISTER_TIMEOUT,
            )
        except grpc.RpcError as exc:
            raise TransportError(f"failed to register public key: {exc}") from exc

        if resp.login_url:
            log.warning("Open %s to confirm the public key for %s", resp.login_url, self._identity)
            self._open_browser(resp.login_url)

        confirm = api.multicallable(self._channel, api.METHODS["await_public_key_confirmation"])
        try:
            confirm(
                api.AwaitPublicKeyConfirmationRequest(public_key_id=resp.public_key_id),
                timeout=CONFIRM_TIMEOUT,
            )
        except grpc.RpcError as exc:
            raise TransportError(f"public key was not confirmed: {exc}") from exc

        save_key(self._path, key)
        return key

    # -- signing -------------------------------------------------------------

    def sign(self, method: str, key: Ed25519PrivateKey) -> list[tuple[str, str]]:
        timestamp = str(int(self._clock()))
        payload = f"{method}\n{timestamp}\n{self._identity}".encode()
        signature = base64.b64encode(key.sign(payload)).decode()
        return [
            (TIMESTAMP_KEY, timestamp),
            (SIGNATURE_KEY, f"{SIGNATURE_VERSION} {self._identity} {key_id(key)} {signature}"),
        ]

    def _signed(self, details: grpc.ClientCallDetails, key: Ed25519PrivateKey) -> grpc.ClientCallDetails:
        return append_metadata(details, self.sign(details.method, key))

    def intercept_unary_unary(self, continuation, client_call_details, request):
        key = self._current_key()
        outcome = continuation(self._signed(client_call_details, key), request)
        if outcome.code() != grpc.StatusCode.UNAUTHENTICATED:
            return outcome
        log.info("Call %s rejected as unauthenticated, re-enrolling", client_call_details.method)
        key = self._reenroll(key)
        return continuation(self._signed(client_call_details, key), request)

    def intercept_unary_stream(self, continuation, client_call_details, request):
        return continuation(self._signed(client_call_details, self._current_key()), request)

    def intercept_stream_unary(self, continuation, client_call_details, request_iterator):
        return continuation(self._signed(client_call_details, self._current_key()), request_iterator)

    def intercept_stream_stream(self, continuation, client_call_details, request_iterator):
        return continuation(self._signed(client_call_details, self._current_key()), request_iterator)
