"""Per-node subcommands: version, read, copy, kubeconfig, logs, dmesg,
service, reboot, shutdown and bootstrap."""

from __future__ import annotations

import argparse
import os
import shutil
import sys
from pathlib import Path
from typing import Any, TextIO

import nodectl
from nodectl.archive import extract_tar_gz
from nodectl.cli.shell import with_client
from nodectl.cli.style import BOLD, RESET, ok
from nodectl.client import Client, fail_if_multi_nodes, read_grpc_stream
from nodectl.client import api
from nodectl.core.context import CallContext
from nodectl.core.errors import NodectlError


def _node(msg: Any, default: str = "") -> str:
    metadata = getattr(msg, "metadata", None)
    if metadata is not None and metadata.hostname:
        return metadata.hostname
    return default


def _check_partial(reply: api.Reply) -> None:
    """Raise the partial per-node failure of an already rendered reply."""
    if reply.node_error is not None:
        raise reply.node_error


class NodeLinePrinter:
    """Write chunk bytes line by line, prefixing ``node:`` when several nodes stream."""

    def __init__(self, prefix: bool, out: TextIO | None = None) -> None:
        self._prefix = prefix
        self._out = out or sys.stdout
        self._partial: dict[str, bytes] = {}

    def __call__(self, chunk: api.Data, node: str) -> None:
        data = self._partial.pop(node, b"") + chunk.bytes
        *lines, rest = data.split(b"\n")
        for line in lines:
            self._emit(node, line)
        if rest:
            self._partial[node] = rest
        self._out.flush()

    def _emit(self, node: str, line: bytes) -> None:
        text = line.decode(errors="replace")
        self._out.write(f"{node}: {text}\n" if self._prefix else f"{text}\n")

    def close(self) -> None:
        for node, rest in self._partial.items():
            self._emit(node, rest)
        self._partial.clear()
        self._out.flush()


# ─── version ─────────────────────────────────────────────────────────────


def cmd_version(args: argparse.Namespace) -> None:
    print("Client:")
    print(f"\tTag:         {nodectl.__version__}")
    if args.client:
        return

    def action(ctx: CallContext, client: Client) -> None:
        reply = client.version(ctx)
        print("Server:")
        for msg in reply.messages:
            node = _node(msg)
            if node:
                print(f"\tNODE:        {node}")
            v = msg.version
            if v is not None:
                print(f"\tTag:         {v.tag}")
                print(f"\tSHA:         {v.sha}")
                print(f"\tBuilt:       {v.built}")
                print(f"\tOS/Arch:     {v.os}/{v.arch}")
            if msg.platform is not None and msg.platform.name:
                print(f"\tPlatform:    {msg.platform.name}")
        _check_partial(reply)

    with_client(args, action)


# ─── files ───────────────────────────────────────────────────────────────


def cmd_read(args: argparse.Namespace) -> None:
    def action(ctx: CallContext, client: Client) -> None:
        fail_if_multi_nodes(ctx, "read")
        with client.read(ctx, args.path) as reader:
            shutil.copyfileobj(reader, sys.stdout.buffer)
        sys.stdout.buffer.flush()

    with_client(args, action)


def cmd_copy(args: argparse.Namespace) -> None:
    def action(ctx: CallContext, client: Client) -> None:
        fail_if_multi_nodes(ctx, "copy")
        with client.copy(ctx, args.source) as reader:
            if args.destination == "-":
                shutil.copyfileobj(reader, sys.stdout.buffer)
                sys.stdout.buffer.flush()
                return
            dest = Path(args.destination).expanduser()
            dest.mkdir(parents=True, exist_ok=True)
            extract_tar_gz(dest, reader)

    with_client(args, action)


def cmd_kubeconfig(args: argparse.Namespace) -> None:
    def action(ctx: CallContext, client: Client) -> None:
        fail_if_multi_nodes(ctx, "kubeconfig")
        data = client.kubeconfig(ctx)
        if args.path == "-":
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()
            return

        path = Path(args.path).expanduser()
        if path.is_dir():
            path = path / "kubeconfig"
        if path.exists() and not args.force:
            raise NodectlError(f"{path} already exists, use --force to overwrite")
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        ok(f"kubeconfig written to {path}")

    with_client(args, action)


# ─── logs ────────────────────────────────────────────────────────────────


def cmd_logs(args: argparse.Namespace) -> None:
    namespace = "k8s" if args.kubernetes else "system"

    def action(ctx: CallContext, client: Client) -> None:
        printer = NodeLinePrinter(prefix=len(ctx.nodes) > 1)
        stream = client.logs(ctx, args.id, namespace=namespace, follow=args.follow, tail_lines=args.tail)
        try:
            read_grpc_stream(stream, printer)
        finally:
            printer.close()

    with_client(args, action)


def cmd_dmesg(args: argparse.Namespace) -> None:
    def action(ctx: CallContext, client: Client) -> None:
        printer = NodeLinePrinter(prefix=len(ctx.nodes) > 1)
        try:
            read_grpc_stream(client.dmesg(ctx, follow=args.follow, tail=args.tail), printer)
        finally:
            printer.close()

    with_client(args, action)


# ─── services ────────────────────────────────────────────────────────────


def _health(svc: api.ServiceState) -> str:
    if svc.health is None or svc.health.unknown:
        return "?"
    return "OK" if svc.health.healthy else "Fail"


def cmd_service(args: argparse.Namespace) -> None:
    def action(ctx: CallContext, client: Client) -> None:
        if not args.id:
            reply = client.service_list(ctx)
            print(f"{BOLD}NODE\tSERVICE\tSTATE\tHEALTH{RESET}")
            for msg in reply.messages:
                for svc in msg.services:
                    print(f"{_node(msg)}\t{svc.id}\t{svc.state}\t{_health(svc)}")
            _check_partial(reply)
            return

        if not args.action or args.action == "status":
            services = client.service_info(ctx, args.id)
            if not services:
                raise NodectlError(f"service {args.id!r} not found")
            for entry in services:
                svc = entry.service
                print(f"NODE     {_node(entry)}")
                print(f"ID       {svc.id}")
                print(f"STATE    {svc.state}")
                print(f"HEALTH   {_health(svc)}")
                if svc.health is not None and svc.health.last_message:
                    print(f"LAST HEALTH MESSAGE   {svc.health.last_message}")
                if svc.events is not None:
                    for ev in svc.events.events:
                        print(f"EVENTS   [{ev.state}]: {ev.msg} ({ev.ts})")
            return

        call = {
            "start": client.service_start,
            "stop": client.service_stop,
            "restart": client.service_restart,
        }[args.action]
        reply = call(ctx, args.id)
        for msg in reply.messages:
            ok(f"{_node(msg) or 'node'}: {msg.resp}")
        _check_partial(reply)

    with_client(args, action)


# ─── lifecycle ───────────────────────────────────────────────────────────


def _acknowledge(reply: api.ActionResponse, what: str) -> None:
    for msg in reply.messages:
        ok(f"{_node(msg) or 'node'}: {what} requested")
    _check_partial(reply)


def cmd_reboot(args: argparse.Namespace) -> None:
    with_client(args, lambda ctx, client: _acknowledge(client.reboot(ctx, mode=args.mode.upper()), "reboot"))


def cmd_shutdown(args: argparse.Namespace) -> None:
    with_client(args, lambda ctx, client: _acknowledge(client.shutdown(ctx, force=args.force), "shutdown"))


def cmd_bootstrap(args: argparse.Namespace) -> None:
    req = api.BootstrapRequest(recover_etcd=args.recover_from_etcd_snapshot,
                               recover_skip_hash_check=args.recover_skip_hash_check)
    with_client(args, lambda ctx, client: _acknowledge(client.bootstrap(ctx, req), "bootstrap"))


# ─── Argparse ────────────────────────────────────────────────────────────


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("version", help="Print client and server versions")
    p.add_argument("--client", action="store_true", help="Print the client version only")
    p.set_defaults(func=cmd_version)

    p = sub.add_parser("read", help="Read a file on the node")
    p.add_argument("path")
    p.set_defaults(func=cmd_read)

    p = sub.add_parser("copy", aliases=["cp"], help="Copy files out of the node")
    p.add_argument("source")
    p.add_argument("destination", help="Local directory, or - to write the tar.gz to stdout")
    p.set_defaults(func=cmd_copy)

    p = sub.add_parser("kubeconfig", help="Download the admin kubeconfig from the node")
    p.add_argument("path", nargs="?", default=".", help="Destination file or directory, - for stdout")
    p.add_argument("-f", "--force", action="store_true", help="Overwrite an existing file")
    p.set_defaults(func=cmd_kubeconfig)

    p = sub.add_parser("logs", help="Retrieve logs for a service")
    p.add_argument("id")
    p.add_argument("-f", "--follow", action="store_true", help="Follow the log output")
    p.add_argument("--tail", type=int, default=-1, help="Lines of log file to display (default: all)")
    p.add_argument("-k", "--kubernetes", action="store_true", help="Use the k8s namespace")
    p.set_defaults(func=cmd_logs)

    p = sub.add_parser("dmesg", help="Retrieve kernel logs")
    p.add_argument("-f", "--follow", action="store_true", help="Follow the kernel log")
    p.add_argument("--tail", action="store_true", help="Only show new messages when following")
    p.set_defaults(func=cmd_dmesg)

    p = sub.add_parser("service", help="List, inspect or control services")
    p.add_argument("id", nargs="?", default="")
    p.add_argument("action", nargs="?", default="", choices=["", "status", "start", "stop", "restart"])
    p.set_defaults(func=cmd_service)

    p = sub.add_parser("reboot", help="Reboot the nodes")
    p.add_argument("-m", "--mode", default="default", choices=["default", "powercycle"])
    p.set_defaults(func=cmd_reboot)

    p = sub.add_parser("shutdown", help="Shut the nodes down")
    p.add_argument("--force", action="store_true", help="Skip the cordon and drain")
    p.set_defaults(func=cmd_shutdown)

    p = sub.add_parser("bootstrap", help="Bootstrap the etcd cluster on the node")
    p.add_argument("--recover-from-etcd-snapshot", action="store_true")
    p.add_argument("--recover-skip-hash-check", action="store_true")
    p.set_defaults(func=cmd_bootstrap)
