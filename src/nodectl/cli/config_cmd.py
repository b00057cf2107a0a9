"""``nodectl config ...``: manage the client configuration file."""

from __future__ import annotations

import argparse
import base64
import fnmatch
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from cryptography import x509
from cryptography.x509.oid import NameOID

from nodectl.cli.style import info, ok, show_data, warn
from nodectl.client.config import Config, Context
from nodectl.core.errors import ConfigError

MAX_LISTED_NODES = 3


def _load(args: argparse.Namespace) -> Config:
    return Config.open(args.config or "")


def _save(args: argparse.Namespace, cfg: Config) -> None:
    cfg.save(args.config or "")


def _current(cfg: Config, args: argparse.Namespace) -> tuple[str, Context]:
    name = args.context or cfg.context
    return name, cfg.resolve_context(args.context or "")


def _read_b64(path: str, what: str) -> str:
    try:
        return base64.b64encode(Path(path).expanduser().read_bytes()).decode()
    except OSError as exc:
        raise ConfigError(f"failed to read {what} {path}: {exc}") from exc


# ─── Subcommands ─────────────────────────────────────────────────────────


def cmd_endpoint(args: argparse.Namespace) -> None:
    cfg = _load(args)
    name, ctx = _current(cfg, args)
    ctx.endpoints = list(args.endpoints_list)
    _save(args, cfg)
    ok(f"context {name!r}: endpoints set to {', '.join(ctx.endpoints) or '(none)'}")


def cmd_node(args: argparse.Namespace) -> None:
    cfg = _load(args)
    name, ctx = _current(cfg, args)
    ctx.nodes = list(args.nodes_list)
    _save(args, cfg)
    ok(f"context {name!r}: nodes set to {', '.join(ctx.nodes) or '(none)'}")


def cmd_context(args: argparse.Namespace) -> None:
    cfg = _load(args)
    if args.name not in cfg.contexts:
        raise ConfigError(f"context {args.name!r} not found in config")
    cfg.context = args.name
    _save(args, cfg)
    ok(f"current context set to {args.name!r}")


def cmd_add(args: argparse.Namespace) -> None:
    if bool(args.crt) != bool(args.key):
        raise ConfigError("--crt and --key must be given together")

    cfg = _load(args)
    if args.name in cfg.contexts:
        raise ConfigError(f"context {args.name!r} already exists")

    ctx = Context()
    if args.ca:
        ctx.ca = _read_b64(args.ca, "CA certificate")
    if args.crt:
        ctx.crt = _read_b64(args.crt, "client certificate")
        ctx.key = _read_b64(args.key, "client key")

    cfg.contexts[args.name] = ctx
    cfg.context = args.name
    _save(args, cfg)
    ok(f"context {args.name!r} added")


def cmd_remove(args: argparse.Namespace) -> None:
    cfg = _load(args)
    matched = [name for name in cfg.contexts if fnmatch.fnmatchcase(name, args.pattern)]
    if not matched:
        raise ConfigError(f"no contexts matched {args.pattern!r}")

    to_remove = []
    for name in matched:
        if name == cfg.context:
            warn(f"skipping current context {name!r}")
            continue
        to_remove.append(name)
    if not to_remove:
        return

    if args.dry_run:
        for name in to_remove:
            print(f"would remove context {name!r}")
        return

    if not args.noconfirm and not _confirm(f"remove {len(to_remove)} context(s): {', '.join(to_remove)}?"):
        info("aborted")
        return

    for name in to_remove:
        del cfg.contexts[name]
    _save(args, cfg)
    ok(f"removed {len(to_remove)} context(s)")


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ").strip().lower()
    except EOFError:
        return False
    return answer in ("y", "yes")


def cmd_contexts(args: argparse.Namespace) -> None:
    cfg = _load(args)
    rows = [("CURRENT", "NAME", "ENDPOINTS", "NODES")]
    for name in sorted(cfg.contexts):
        ctx = cfg.contexts[name]
        nodes = ctx.nodes[:MAX_LISTED_NODES]
        shown = ",".join(nodes) + (",..." if len(ctx.nodes) > MAX_LISTED_NODES else "")
        rows.append(("*" if name == cfg.context else "", name, ",".join(ctx.endpoints), shown))

    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    for row in rows:
        line = "   ".join(cell.ljust(widths[i]) for i, cell in enumerate(row[:-1]))
        print(f"{line}   {row[-1]}".rstrip())


def cmd_merge(args: argparse.Namespace) -> None:
    cfg = _load(args)
    if not Path(args.source).expanduser().is_file():
        raise ConfigError(f"config to merge {args.source!r} does not exist")
    other = Config.open(args.source)
    renames = cfg.merge(other)
    for rename in renames:
        info(f"renamed context {rename}")
    _save(args, cfg)
    ok(f"merged {len(other.contexts)} context(s) from {args.source}")


def context_info(name: str, ctx: Context) -> dict[str, Any]:
    """Summary of a context, with the client certificate's roles and expiry when present."""
    data: dict[str, Any] = {
        "context": name,
        "nodes": list(ctx.nodes),
        "endpoints": list(ctx.endpoints),
    }
    if ctx.crt:
        cert = _load_cert(ctx.crt)
        expires = cert.not_valid_after_utc
        data["roles"] = [
            attr.value for attr in cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
        ]
        data["certTTL"] = str(expires - datetime.now(timezone.utc)).split(".")[0]
        data["certNotAfter"] = expires.strftime("%Y-%m-%d %H:%M:%S %Z")
    return data


def _load_cert(crt: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(base64.b64decode(crt, validate=True))
    except ValueError as exc:
        raise ConfigError(f"error decoding client certificate: {exc}") from exc


def cmd_info(args: argparse.Namespace) -> None:
    cfg = _load(args)
    name, ctx = _current(cfg, args)
    data = context_info(name, ctx)

    if args.output == "json":
        print(json.dumps(data, indent=2))
        return
    if args.output == "yaml":
        sys.stdout.write(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        return

    rows = [
        ("Current context", data["context"]),
        ("Nodes", ", ".join(data["nodes"]) or "not defined"),
        ("Endpoints", ", ".join(data["endpoints"]) or "not defined"),
    ]
    if "roles" in data:
        rows.append(("Roles", ", ".join(data["roles"]) or "not defined"))
        rows.append(("Certificate expires", f"{data['certTTL']} ({data['certNotAfter']})"))
    width = max(len(label) for label, _ in rows) + 1
    for label, value in rows:
        show_data(label, value, width)


# ─── Argparse ────────────────────────────────────────────────────────────


def register(sub: argparse._SubParsersAction) -> None:
    p_config = sub.add_parser("config", help="Manage the client configuration file")
    config_sub = p_config.add_subparsers(dest="config_command", required=True)

    p = config_sub.add_parser("endpoint", help="Set endpoints for the current context")
    p.add_argument("endpoints_list", nargs="*", metavar="ENDPOINT")
    p.set_defaults(func=cmd_endpoint)

    p = config_sub.add_parser("node", help="Set nodes for the current context")
    p.add_argument("nodes_list", nargs="*", metavar="NODE")
    p.set_defaults(func=cmd_node)

    p = config_sub.add_parser("context", help="Set the current context")
    p.add_argument("name")
    p.set_defaults(func=cmd_context)

    p = config_sub.add_parser("add", help="Add a new context")
    p.add_argument("name")
    p.add_argument("--ca", default="", help="Path to the CA certificate")
    p.add_argument("--crt", default="", help="Path to the client certificate")
    p.add_argument("--key", default="", help="Path to the client key")
    p.set_defaults(func=cmd_add)

    p = config_sub.add_parser("remove", help="Remove contexts matching a glob")
    p.add_argument("pattern")
    p.add_argument("-y", "--noconfirm", action="store_true", help="Do not ask for confirmation")
    p.add_argument("--dry-run", action="store_true", help="Only show what would be removed")
    p.set_defaults(func=cmd_remove)

    p = config_sub.add_parser("contexts", help="List defined contexts")
    p.set_defaults(func=cmd_contexts)

    p = config_sub.add_parser("merge", help="Merge contexts from another client config")
    p.add_argument("source")
    p.set_defaults(func=cmd_merge)

    p = config_sub.add_parser("info", help="Show information about the current context")
    p.add_argument("-o", "--output", default="text", choices=["text", "json", "yaml"])
    p.set_defaults(func=cmd_info)
