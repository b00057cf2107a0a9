"""Core value types for nodectl.

All types are frozen dataclasses — immutable values passed between the
transport, the fan-out layer and the CLI renderers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Address:
    """A dial address plus the TLS server name to verify it against."""

    addr: str
    server_name: str


@dataclass(frozen=True)
class NodeResult:
    """One ``(node, payload, error)`` tuple produced by a fan-out."""

    node: str
    payload: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ServiceInfo:
    """A single service entry together with the metadata of its node."""

    metadata: Any
    service: Any
