"""Endpoint normalization and dial-target selection.

User-supplied endpoints come in many shapes::

    10.5.0.2                -> 10.5.0.2:50000
    2001:db8::1             -> [2001:db8::1]:50000
    [2001:db8::1]:8080      -> [2001:db8::1]:8080
    https://example.com     -> example.com:443
    grpc://[::1]:111        -> [::1]:111
    grpc://example.com      -> example.com:50000

Normalization never fails: anything it cannot interpret is passed through
so the transport reports a concrete dial error instead.
"""

from __future__ import annotations

import ipaddress
import logging
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

DEFAULT_PORT = 50000
HTTPS_PORT = 443

RESOLVER_SCHEME = "nodectl"


def _is_ipv6(host: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(host), ipaddress.IPv6Address)
    except ValueError:
        return False


def format_address(host: str) -> str:
    """Bracket *host* if it is a bare IPv6 literal."""
    if _is_ipv6(host):
        return f"[{host}]"
    return host


def join_host_port(host: str, port: int | str) -> str:
    return f"{format_address(host)}:{port}"


def split_host_port(address: str) -> tuple[str, str] | None:
    """Split ``host:port``; return None when *address* carries no port."""
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            return None
        rest = address[end + 1:]
        if rest.startswith(":") and rest[1:].isdigit():
            return address[1:end], rest[1:]
        return None

    if address.count(":") != 1:
        # no colon, or a bare IPv6 literal
        return None
    host, port = address.split(":")
    if not port.isdigit():
        return None
    return host, port


def _normalize_url(endpoint: str) -> str:
    try:
        u = urlsplit(endpoint)
        port = u.port
    except ValueError:
        return endpoint

    if not u.scheme or not u.netloc:
        # bare host, host:port, or a scheme with an opaque part
        return endpoint

    host = u.hostname or ""
    if not host:
        return endpoint

    if port is None and u.scheme == "https":
        port = HTTPS_PORT

    if port is not None:
        return join_host_port(host, port)

    return format_address(host)


def normalize_endpoints(endpoints: list[str], default_port: int = DEFAULT_PORT) -> list[str]:
    """Turn user-supplied endpoints into ``host:port`` dial addresses."""
    result: list[str] = []
    for endpoint in endpoints:
        addr = _normalize_url(endpoint.strip())
        if split_host_port(addr) is None and not _has_opaque_scheme(addr):
            host = addr[1:-1] if addr.startswith("[") and addr.endswith("]") else addr
            addr = join_host_port(host, default_port)
        result.append(addr)
    return result


def _has_opaque_scheme(addr: str) -> bool:
    """True for ``scheme:opaque`` forms left untouched by ``_normalize_url``."""
    if split_host_port(addr) is not None or _is_ipv6(addr):
        return False
    try:
        u = urlsplit(addr)
    except ValueError:
        return False
    return bool(u.scheme) and not u.netloc and bool(u.path) and "://" not in addr


def build_target(endpoints: list[str], default_port: int = DEFAULT_PORT) -> str:
    """Choose a gRPC target for *endpoints*.

    A single endpoint dials through the ``dns`` resolver so that A/AAAA
    records can expand it.  Several endpoints are encoded under the
    round-robin resolver scheme (see :mod:`nodectl.client.resolver`).
    """
    addrs = normalize_endpoints(endpoints, default_port)
    if not addrs:
        raise ValueError("no endpoints to dial")

    if len(addrs) == 1:
        return f"dns:///{addrs[0]}"

    return f"{RESOLVER_SCHEME}:///{','.join(addrs)}"
