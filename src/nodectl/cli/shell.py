"""Plumbing every client subcommand goes through.

:func:`with_client` builds the root :class:`CallContext` (cancelled by the
first SIGINT/SIGTERM), opens a :class:`Client` from the global flags,
applies node targeting and runs the action.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from nodectl.client import Client
from nodectl.core.context import CallContext
from nodectl.core.errors import ConfigError

log = logging.getLogger(__name__)

CANCEL_SIGNALS = (signal.SIGINT, signal.SIGTERM)

Action = Callable[[CallContext, Client], Any]


@contextmanager
def signal_context() -> Iterator[CallContext]:
    """Yield a root context cancelled by the first SIGINT/SIGTERM.

    The first signal switches the handlers back to the default action, so
    a second one terminates the process immediately.
    """
    ctx, cancel = CallContext.background().with_cancel()
    if threading.current_thread() is not threading.main_thread():
        yield ctx
        return

    previous: dict[int, Any] = {}

    def handler(signum: int, frame: Any) -> None:
        log.warning("Signal received, aborting, press Ctrl+C once again to abort immediately...")
        for sig in previous:
            signal.signal(sig, signal.SIG_DFL)
        # cancel() takes locks the interrupted frame may hold
        threading.Thread(target=cancel, name="signal-cancel", daemon=True).start()

    for sig in CANCEL_SIGNALS:
        previous[sig] = signal.signal(sig, handler)
    try:
        yield ctx
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old if old is not None else signal.SIG_DFL)


def open_client(args: argparse.Namespace) -> Client:
    """Build a :class:`Client` from the global flags."""
    return Client(
        config_path=args.config or "",
        context_name=args.context or "",
        endpoints=args.endpoints or None,
        cluster=args.cluster or "",
        unix_socket_path=args.unix_socket or "",
    )


def with_client(args: argparse.Namespace, action: Action, *, require_nodes: bool = True) -> Any:
    """Run ``action(ctx, client)`` against the nodes selected by the flags.

    Nodes come from ``--nodes``, falling back to the context's default
    nodes.  Unless *require_nodes* is false (or a unix socket is used) an
    empty node set is an error.
    """
    with signal_context() as ctx, open_client(args) as client:
        nodes = list(args.nodes or client.get_config_context().nodes)
        if nodes:
            ctx = ctx.with_nodes(*nodes)
        elif require_nodes and not args.unix_socket:
            raise ConfigError(
                "nodes are not set for the command: please use `--nodes` flag "
                "or configuration file to set the nodes to run the command against"
            )
        log.debug("running against nodes=%s endpoints=%s", nodes, client.get_endpoints())
        return action(ctx, client)
