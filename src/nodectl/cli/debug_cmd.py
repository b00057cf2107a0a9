"""``nodectl debug``: run an interactive debug container on a node."""

from __future__ import annotations

import argparse
import sys

from nodectl.cli.shell import with_client
from nodectl.client import Client, fail_if_multi_nodes
from nodectl.core.context import CallContext
from nodectl.session import run_container


def cmd_debug(args: argparse.Namespace) -> None:
    def action(ctx: CallContext, client: Client) -> None:
        fail_if_multi_nodes(ctx, "debug")
        run_container(
            ctx,
            client.container_run,
            args.image,
            args.args,
            privileged=not args.unprivileged,
            stdin=sys.stdin.buffer,
            stdout=sys.stdout.buffer,
        )

    with_client(args, action)


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("debug", help="Run an interactive debug container on the node")
    p.add_argument("image", help="Container image to run")
    p.add_argument("--args", nargs=argparse.REMAINDER, default=[],
                   help="Command and arguments for the container (consumes the rest of the line)")
    p.add_argument("--unprivileged", action="store_true", help="Do not run the container privileged")
    p.set_defaults(func=cmd_debug)
