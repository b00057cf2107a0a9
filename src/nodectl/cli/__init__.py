"""nodectl command-line interface.

    nodectl -n 10.5.0.2 version
    nodectl -n 10.5.0.2,10.5.0.3 get members -o yaml
    nodectl -n 10.5.0.2 debug alpine --args sh
    nodectl config contexts
"""

from __future__ import annotations

import argparse
import logging
import sys

import grpc

import nodectl
from nodectl.cli import config_cmd, debug_cmd, get_cmd, node_cmd
from nodectl.cli.style import err
from nodectl.client import status_code
from nodectl.client.filter import is_clean_termination
from nodectl.core.errors import MultiError, NodectlError, NodeError

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [nodectl] %(levelname)s %(message)s"


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# ─── Argparse ────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="nodectl",
        description="nodectl: inspect and operate the nodes of a cluster.",
    )
    parser.add_argument("--version", action="version", version=f"nodectl {nodectl.__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase log verbosity (-v info, -vv debug)")
    parser.add_argument("--config", default="", metavar="PATH",
                        help="Client config file (default: $NODECTL_CONFIG or ~/.nodectl/config)")
    parser.add_argument("--context", default="", help="Context to use instead of the current one")
    parser.add_argument("-e", "--endpoints", type=_csv, action="extend", default=None,
                        help="Override the context endpoints (comma separated, repeatable)")
    parser.add_argument("-n", "--nodes", type=_csv, action="extend", default=None,
                        help="Target nodes (comma separated, repeatable)")
    parser.add_argument("--cluster", default="", help="Cluster to connect to through a proxy endpoint")
    parser.add_argument("--unix-socket", default="", metavar="PATH",
                        help="Talk to the node API over a local unix socket")

    sub = parser.add_subparsers(dest="command")
    config_cmd.register(sub)
    node_cmd.register(sub)
    get_cmd.register(sub)
    debug_cmd.register(sub)
    return parser


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)


# ─── Error reporting ─────────────────────────────────────────────────────


def describe(exc: BaseException) -> str:
    if isinstance(exc, grpc.RpcError) and hasattr(exc, "details"):
        return f"rpc error: code = {status_code(exc).name} desc = {exc.details()}"
    if isinstance(exc, NodeError):
        return f"{exc.node}: {describe(exc.err)}"
    return str(exc)


def report_error(exc: BaseException) -> None:
    """Print *exc* to stderr; multi-node errors get a summary line and one row per node."""
    if isinstance(exc, MultiError):
        errors = [e for e in exc if not is_clean_termination(e)]
        err(f"{len(errors)} error(s) occurred:")
        for e in errors:
            print(f"    {describe(e)}", file=sys.stderr)
        return
    err(describe(exc))


def _clean(exc: BaseException) -> bool:
    if isinstance(exc, MultiError):
        return all(is_clean_termination(e) for e in exc)
    return is_clean_termination(exc)


# ─── Main ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    try:
        args.func(args)
    except (NodectlError, grpc.RpcError) as exc:
        if _clean(exc):
            log.debug("command ended by cancellation: %s", exc)
            return 0
        report_error(exc)
        return 1
    return 0


__all__ = ["build_parser", "main"]
