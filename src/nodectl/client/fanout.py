"""Fan a call out to many nodes and merge the results into one channel.

Each node gets its own thread and a context targeting that node only.
Results arrive as :class:`NodeResult` values on a bounded
:class:`Channel`, which is closed exactly once after every per-node thread
has finished.  One node failing never stops its siblings.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import grpc

from nodectl.client.filter import is_clean_termination
from nodectl.client.stream import stream_error
from nodectl.core.channel import Channel
from nodectl.core.context import CallContext
from nodectl.core.types import NodeResult

log = logging.getLogger(__name__)

UnaryFactory = Callable[[CallContext], Any]
StreamFactory = Callable[[CallContext], Iterable[Any]]


def _run(ctx: CallContext, nodes: Sequence[str], worker: Callable[[CallContext, str, Channel], None],
         capacity: int) -> Channel[NodeResult]:
    out: Channel[NodeResult] = Channel(capacity)
    threads = []
    for node in nodes:
        t = threading.Thread(
            target=worker,
            args=(ctx.with_node(node), node, out),
            name=f"fanout-{node}",
            daemon=True,
        )
        threads.append(t)
        t.start()

    def close_when_done() -> None:
        for t in threads:
            t.join()
        out.close()
        log.debug("fan-out over %d node(s) finished", len(threads))

    threading.Thread(target=close_when_done, name="fanout-close", daemon=True).start()
    return out


def unary_fanout(ctx: CallContext, nodes: Sequence[str], factory: UnaryFactory,
                 capacity: int = 1) -> Channel[NodeResult]:
    """Call ``factory(node_ctx)`` once per node.

    Exactly one ``NodeResult(node, payload)`` or ``NodeResult(node,
    error=exc)`` is produced per node unless *ctx* is cancelled first.
    """

    def worker(node_ctx: CallContext, node: str, out: Channel) -> None:
        try:
            result = NodeResult(node, payload=factory(node_ctx))
        except Exception as exc:
            log.warning("node %s: %s", node, exc)
            result = NodeResult(node, error=exc)
        out.send(ctx, result)

    return _run(ctx, nodes, worker, capacity)


def stream_fanout(ctx: CallContext, nodes: Sequence[str], factory: StreamFactory,
                  capacity: int = 1) -> Channel[NodeResult]:
    """Open ``factory(node_ctx)`` per node and forward every received message.

    A per-node stream ends on EOF, on a clean cancellation, or after one
    ``NodeResult(node, error=...)`` has been sent for a failure.
    """

    def worker(node_ctx: CallContext, node: str, out: Channel) -> None:
        stream = None
        try:
            stream = factory(node_ctx)
            for message in stream:
                if not out.send(ctx, NodeResult(node, payload=message)):
                    break
        except grpc.RpcError as exc:
            if not is_clean_termination(exc):
                out.send(ctx, NodeResult(node, error=stream_error(exc)))
        except Exception as exc:
            log.warning("node %s: %s", node, exc)
            out.send(ctx, NodeResult(node, error=exc))
        finally:
            cancel = getattr(stream, "cancel", None)
            if ctx.cancelled and cancel is not None:
                cancel()

    return _run(ctx, nodes, worker, capacity)
