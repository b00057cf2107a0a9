"""Client-side round-robin resolver for multi-endpoint targets.

A target ``nodectl:///a:50000,b:50000`` resolves to every listed address at
once.  Each address keeps its bare host as TLS server name so certificate
SAN checks still match when a port is attached.  The list is shuffled once
per channel so that single unary calls from short-lived CLI invocations do
not all land on the first endpoint, and the resolved service config selects
the ``round_robin`` load-balancing policy.
"""

from __future__ import annotations

import json
import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Protocol

from nodectl.client.endpoints import RESOLVER_SCHEME, split_host_port
from nodectl.core.types import Address

log = logging.getLogger(__name__)

ROUND_ROBIN_SERVICE_CONFIG = json.dumps(
    {"loadBalancingConfig": [{"round_robin": {}}]}
)


@dataclass
class ResolvedState:
    """Addresses plus the service config pushed to the channel."""

    addresses: list[Address]
    service_config: str = ROUND_ROBIN_SERVICE_CONFIG


class Resolver(Protocol):
    def resolve(self, target: str) -> ResolvedState:
        ...


@dataclass
class RoundRobinResolver:
    """Resolve a comma-delimited endpoint list into shuffled addresses."""

    rng: random.Random = field(default_factory=random.Random)

    def resolve(self, target: str) -> ResolvedState:
        endpoints = parse_target(target)
        addresses = [
            Address(addr=ep, server_name=_server_name(ep)) for ep in endpoints
        ]
        self.rng.shuffle(addresses)
        log.debug("Resolved %s to %s", target, [a.addr for a in addresses])
        return ResolvedState(addresses=addresses)


def _server_name(endpoint: str) -> str:
    parts = split_host_port(endpoint)
    if parts is None:
        return endpoint
    return parts[0]


def parse_target(target: str) -> list[str]:
    """Extract the endpoint list from ``<scheme>:///a,b,c``."""
    _, sep, rest = target.partition(":///")
    if not sep:
        rest = target
    return [ep for ep in rest.split(",") if ep]


# -- registry ----------------------------------------------------------------

_registry: dict[str, type] = {}
_registry_lock = threading.Lock()


def register(scheme: str, resolver_cls: type) -> None:
    """Register a resolver class for *scheme* (idempotent)."""
    with _registry_lock:
        if _registry.get(scheme) is resolver_cls:
            return
        _registry[scheme] = resolver_cls
        log.debug("Registered resolver for scheme %r", scheme)


def get_scheme(target: str) -> str:
    scheme, sep, _ = target.partition(":///")
    return scheme if sep else ""


def lookup(target: str) -> Resolver | None:
    """Return a resolver instance for *target*'s scheme, if one is registered."""
    with _registry_lock:
        resolver_cls = _registry.get(get_scheme(target))
    if resolver_cls is None:
        return None
    return resolver_cls()


register(RESOLVER_SCHEME, RoundRobinResolver)
