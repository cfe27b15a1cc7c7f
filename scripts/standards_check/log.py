"""GitHub Actions annotation helpers.

Everything goes to stderr so stdout stays free for machine-readable output.
"""

from __future__ import annotations

import sys


def notice(message: str) -> None:
    print(f"::notice::{message}", file=sys.stderr)


def warn(message: str) -> None:
    print(f"::warning::{message}", file=sys.stderr)


def error(message: str) -> None:
    print(f"::error::{message}", file=sys.stderr)


def info(message: str) -> None:
    print(message, file=sys.stderr)
