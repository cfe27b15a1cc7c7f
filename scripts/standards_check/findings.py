"""Finding normalization and validation.

The model assigns no stable identifier to a finding, so its title is the only
identity carried between runs. `norm_title` turns it into a comparison key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

MUST_FIX = "must_fix"
OTHER = "other"
PRIORITIES = (MUST_FIX, OTHER)


class MalformedAnalysisError(ValueError):
    """Model output violates the analysis schema; no finding can be trusted."""


@dataclass(frozen=True)
class Finding:
    priority: str
    title: str
    path: str | None = None
    line: int | None = None
    body: str | None = None

    @property
    def key(self) -> str:
        return norm_title(self.title)

    @property
    def blocking(self) -> bool:
        return self.priority == MUST_FIX


@dataclass(frozen=True)
class ThreadRef:
    """A resolved or accepted entry: points back at a previously reported issue."""

    title: str
    path: str | None = None
    line: int | None = None
    reason: str | None = None

    @property
    def key(self) -> str:
        return norm_title(self.title)


def norm_title(value: object) -> str:
    """Lower-case and drop every non-alphanumeric character."""
    return "".join(ch for ch in str(value or "").lower() if ch.isalnum())


def normalize_path(path: object) -> str:
    text = str(path or "").strip()
    if text.startswith(("a/", "b/")):
        text = text[2:]
    if text.startswith("./"):
        text = text[2:]
    return text


def _require_title(value: Any, ctx: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedAnalysisError(f"{ctx}.title: expected non-empty string")
    return value.strip()


def _optional_path(value: Any, ctx: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedAnalysisError(f"{ctx}.path: expected string")
    return normalize_path(value) or None


def _optional_line(value: Any, ctx: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedAnalysisError(f"{ctx}.line: expected integer")
    return value if value > 0 else None


def _optional_text(value: Any, ctx: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedAnalysisError(f"{ctx}: expected string")
    return value.strip() or None


def normalize_priority(value: Any, ctx: str) -> str:
    """Return the canonical priority or raise; never coerce unknown values."""
    if not isinstance(value, str):
        raise MalformedAnalysisError(f"{ctx}.priority: expected one of {', '.join(PRIORITIES)}")
    text = value.strip().lower()
    if text not in PRIORITIES:
        raise MalformedAnalysisError(
            f"{ctx}.priority: invalid value {value!r} (expected one of {', '.join(PRIORITIES)})"
        )
    return text


def normalize_finding(raw: Any, ctx: str = "finding") -> Finding:
    if not isinstance(raw, dict):
        raise MalformedAnalysisError(f"{ctx}: expected object")
    return Finding(
        priority=normalize_priority(raw.get("priority"), ctx),
        title=_require_title(raw.get("title"), ctx),
        path=_optional_path(raw.get("path"), ctx),
        line=_optional_line(raw.get("line"), ctx),
        body=_optional_text(raw.get("body"), f"{ctx}.body"),
    )


def normalize_thread_ref(raw: Any, ctx: str = "entry") -> ThreadRef:
    """Accept a bare title string or an object with title/path/line.

    A priority, when present, must still be valid.
    """
    if isinstance(raw, str):
        return ThreadRef(title=_require_title(raw, ctx))
    if not isinstance(raw, dict):
        raise MalformedAnalysisError(f"{ctx}: expected string or object")
    if raw.get("priority") is not None:
        normalize_priority(raw.get("priority"), ctx)
    reason = raw.get("reason")
    if reason is None:
        reason = raw.get("body")
    return ThreadRef(
        title=_require_title(raw.get("title"), ctx),
        path=_optional_path(raw.get("path"), ctx),
        line=_optional_line(raw.get("line"), ctx),
        reason=_optional_text(reason, f"{ctx}.reason"),
    )


def count_by_priority(findings: list[Finding]) -> dict[str, int]:
    counts = {p: 0 for p in PRIORITIES}
    for f in findings:
        counts[f.priority] += 1
    return counts
