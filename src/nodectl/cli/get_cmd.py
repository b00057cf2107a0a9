"""``nodectl get``: get, list or watch resources."""

from __future__ import annotations

import argparse

from nodectl.cli.shell import with_client
from nodectl.client import Client
from nodectl.core.context import CallContext
from nodectl.output import new_writer
from nodectl.resources import run


def cmd_get(args: argparse.Namespace) -> None:
    # build the writer first so a bad -o fails before dialing
    writer = new_writer(args.output)

    def action(ctx: CallContext, client: Client) -> None:
        run(ctx, client, writer, ctx.nodes, args.type, args.id,
            namespace=args.namespace, watch=args.watch, tail_events=args.tail_events)

    with_client(args, action)


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("get", help="Get a specific resource or list of resources")
    p.add_argument("type", help="Resource type, alias or definition name")
    p.add_argument("id", nargs="?", default="")
    p.add_argument("-o", "--output", default="table",
                   help="Output mode: table, yaml, json or jsonpath={.path}")
    p.add_argument("-w", "--watch", action="store_true", help="Watch the resource state")
    p.add_argument("--namespace", default="", help="Resource namespace (default: the type's default)")
    p.add_argument("--tail-events", type=int, default=0,
                   help="Replay this many past events when watching")
    p.set_defaults(func=cmd_get)
