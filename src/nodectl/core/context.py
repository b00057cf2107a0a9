"""CallContext — cancellation, deadlines and node targeting for RPC calls.

A context is created once per CLI invocation (see ``nodectl.cli.shell``)
and every derived context is cancelled together with its parent.  The
``nodes`` tuple is sent to the server as ``nodes`` request metadata and
selects which node(s) behind the endpoint execute the call.
"""

from __future__ import annotations

import logging
import threading
import time
import weakref
from collections.abc import Callable, Sequence

log = logging.getLogger(__name__)

NODES_KEY = "nodes"
LEGACY_NODE_KEY = "node"


class CallContext:
    """Cancellable per-call context.

    Children are created with :meth:`with_cancel`, :meth:`with_timeout`,
    :meth:`with_nodes` and :meth:`with_node`.  Cancelling a context cancels
    all of its descendants; cancelling a child never affects the parent.
    Parents track children weakly, so a derived context that is no longer
    referenced is simply dropped.
    """

    def __init__(
        self,
        parent: CallContext | None = None,
        *,
        nodes: Sequence[str] | None = None,
        deadline: float | None = None,
    ) -> None:
        self._parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._children: weakref.WeakSet[CallContext] = weakref.WeakSet()
        self._timer: threading.Timer | None = None

        if nodes is None:
            nodes = parent.nodes if parent is not None else ()
        self._nodes = tuple(nodes)

        parent_deadline = parent.deadline if parent is not None else None
        if deadline is None or (parent_deadline is not None and parent_deadline < deadline):
            deadline = parent_deadline
        self._deadline = deadline

        if parent is not None:
            parent._attach(self)
        if deadline is not None and not self.cancelled:
            remaining = max(0.0, deadline - time.monotonic())
            self._timer = threading.Timer(remaining, self.cancel)
            self._timer.daemon = True
            self._timer.start()

    @classmethod
    def background(cls) -> CallContext:
        """Return a fresh root context that is never cancelled by itself."""
        return cls()

    # -- derivation ----------------------------------------------------------

    def with_cancel(self) -> tuple[CallContext, Callable[[], None]]:
        child = CallContext(self)
        return child, child.cancel

    def with_timeout(self, seconds: float) -> tuple[CallContext, Callable[[], None]]:
        child = CallContext(self, deadline=time.monotonic() + seconds)
        return child, child.cancel

    def with_nodes(self, *nodes: str) -> CallContext:
        """Derive a context targeting *nodes* (replaces any previous targeting)."""
        return CallContext(self, nodes=nodes)

    def with_node(self, node: str) -> CallContext:
        return self.with_nodes(node)

    # -- state ---------------------------------------------------------------

    @property
    def nodes(self) -> tuple[str, ...]:
        return self._nodes

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def time_remaining(self) -> float | None:
        """Seconds left until the deadline, suitable for a gRPC ``timeout=``."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is cancelled; return True if it was."""
        return self._event.wait(timeout)

    def metadata(self) -> list[tuple[str, str]]:
        """Outgoing request metadata carrying the node targeting."""
        return [(NODES_KEY, node) for node in self._nodes]

    # -- cancellation --------------------------------------------------------

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
            children = list(self._children)
            self._children.clear()
            timer, self._timer = self._timer, None

        if timer is not None:
            timer.cancel()
        for child in children:
            child.cancel()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.debug("context done-callback failed", exc_info=True)

    def add_done_callback(self, callback: Callable[[], None]) -> None:
        """Run *callback* once the context is cancelled (immediately if it already is)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_done_callback(self, callback: Callable[[], None]) -> None:
        """Forget *callback* if it has not run yet."""
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def _attach(self, child: CallContext) -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.add(child)
                return
        child.cancel()


def nodes_from_metadata(metadata: Sequence[tuple[str, str | bytes]] | None) -> list[str]:
    """Extract node targeting from request metadata.

    Both the canonical ``nodes`` key and the legacy single ``node`` key are
    accepted; ``nodes`` wins when both are present.
    """
    nodes: list[str] = []
    legacy: list[str] = []
    for key, value in metadata or ():
        if isinstance(value, bytes):
            value = value.decode()
        if key == NODES_KEY:
            nodes.append(value)
        elif key == LEGACY_NODE_KEY:
            legacy.append(value)
    return nodes or legacy
