"""Terminal colors and message helpers shared by every subcommand."""

from __future__ import annotations

import sys

# ─── ANSI color constants ────────────────────────────────────────────────

BOLD = "\033[1m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
CYAN = "\033[96m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"

# ─── Print helpers ───────────────────────────────────────────────────────


def ok(msg: str) -> None:
    print(f"{GREEN}✓{RESET} {msg}")


def err(msg: str) -> None:
    print(f"{RED}{msg}{RESET}", file=sys.stderr)


def warn(msg: str) -> None:
    print(f"{YELLOW}{msg}{RESET}", file=sys.stderr)


def info(msg: str) -> None:
    print(f"{DIM}{msg}{RESET}", file=sys.stderr)


def show_data(label: str, value: object, width: int = 0) -> None:
    print(f"{CYAN}{(label + ':').ljust(width)}{RESET} {value}")
