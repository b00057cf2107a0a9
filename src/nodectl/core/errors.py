"""Custom exception hierarchy for nodectl."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import grpc

_CODES_BY_NUMBER = {code.value[0]: code for code in grpc.StatusCode}


def status_code_from_number(number: int) -> grpc.StatusCode:
    """Map a numeric RPC status code to ``grpc.StatusCode`` (UNKNOWN if unmapped)."""
    return _CODES_BY_NUMBER.get(number, grpc.StatusCode.UNKNOWN)


class NodectlError(Exception):
    """Base exception for all nodectl errors."""


class ConfigError(NodectlError):
    """Client configuration is missing, malformed, or names an unknown context."""


class TransportError(NodectlError):
    """Failed to build credentials or dial the API endpoints."""


class RPCStatusError(NodectlError):
    """An RPC status decoded from a reply envelope or stream chunk."""

    def __init__(self, code: grpc.StatusCode, details: str) -> None:
        super().__init__(details)
        self.code = code
        self.details = details

    def __str__(self) -> str:
        return f"rpc error: code = {self.code.name} desc = {self.details}"


class NodeError(NodectlError):
    """A single node's failure inside a multi-node reply."""

    def __init__(self, node: str, err: Exception) -> None:
        super().__init__(f"{node}: {err}")
        self.node = node
        self.err = err


class MultiError(NodectlError):
    """Several errors merged into one, preserving their order."""

    def __init__(self, errors: Iterable[Exception] = ()) -> None:
        self.errors: list[Exception] = list(errors)
        super().__init__(self._format())

    def append(self, err: Exception) -> None:
        if isinstance(err, MultiError):
            self.errors.extend(err.errors)
        else:
            self.errors.append(err)
        self.args = (self._format(),)

    def _format(self) -> str:
        if len(self.errors) == 1:
            return f"1 error occurred:\n\t* {self.errors[0]}\n"
        lines = "\n".join(f"\t* {e}" for e in self.errors)
        return f"{len(self.errors)} errors occurred:\n{lines}\n"

    def __iter__(self) -> Iterator[Exception]:
        return iter(self.errors)


class StreamError(RPCStatusError):
    """A server stream terminated with a status other than CANCELLED or DEADLINE_EXCEEDED."""


class SessionError(NodectlError):
    """Interactive session failed or the container exited non-zero."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ArchiveError(NodectlError):
    """Failed to extract a tar.gz stream (carries the offending path)."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class OutputError(NodectlError):
    """Unknown output mode or invalid output expression."""
