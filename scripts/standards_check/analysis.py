"""Parse the model's structured response into a validated analysis payload.

Two payload variants exist:

- first review: ``findings``
- re-review: ``persisting`` / ``new_findings`` / ``resolved`` /
  ``accepted_explanations``

Both carry ``status``, ``summary`` and optional ``general_notes``. Anything
that does not fit one variant exactly raises MalformedAnalysisError.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Union

from .findings import (
    Finding,
    MalformedAnalysisError,
    ThreadRef,
    normalize_finding,
    normalize_thread_ref,
)

BLOCK_MERGE = "BLOCK_MERGE"
APPROVED = "APPROVED"
STATUSES = (BLOCK_MERGE, APPROVED)

FIRST_REVIEW_KEYS = frozenset({"findings"})
RE_REVIEW_KEYS = frozenset({"persisting", "new_findings", "resolved", "accepted_explanations"})
COMMON_KEYS = frozenset({"status", "summary", "general_notes"})

_JSON_BLOCK_RE = re.compile(r"```(?:json)?[ \t]*\n(.*?)\n[ \t]*```", re.DOTALL)


@dataclass(frozen=True)
class FirstReview:
    status: str
    summary: str
    findings: list[Finding] = field(default_factory=list)
    general_notes: list[str] = field(default_factory=list)

    is_re_review = False


@dataclass(frozen=True)
class ReReview:
    status: str
    summary: str
    persisting: list[Finding] = field(default_factory=list)
    new_findings: list[Finding] = field(default_factory=list)
    resolved: list[ThreadRef] = field(default_factory=list)
    accepted: list[ThreadRef] = field(default_factory=list)
    general_notes: list[str] = field(default_factory=list)

    is_re_review = True


Analysis = Union[FirstReview, ReReview]


def extract_json_block(text: str) -> str:
    """Return the JSON text from a fenced block, or the whole reply when it is bare JSON."""
    match = _JSON_BLOCK_RE.search(text or "")
    if match:
        return match.group(1)
    stripped = (text or "").strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        return stripped
    raise MalformedAnalysisError("no JSON block found in analysis response")


def _list_of(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedAnalysisError(f"{key}: expected array")
    return value


def _notes(data: dict[str, Any]) -> list[str]:
    notes: list[str] = []
    for idx, item in enumerate(_list_of(data, "general_notes")):
        if not isinstance(item, str):
            raise MalformedAnalysisError(f"general_notes[{idx}]: expected string")
        if item.strip():
            notes.append(item.strip())
    return notes


def _status(value: Any) -> str:
    text = str(value or "").strip().upper().replace(" ", "_")
    if text not in STATUSES:
        raise MalformedAnalysisError(f"status: expected one of {', '.join(STATUSES)}, got {value!r}")
    return text


def _summary(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedAnalysisError("summary: expected string")
    return value.strip()


def analysis_from_dict(data: Any, *, re_review: bool = False) -> Analysis:
    """Validate a decoded payload.

    The variant is chosen by which keys are present. A payload with neither
    variant's keys (every array omitted because it was empty) takes the
    variant given by ``re_review``.
    """
    if not isinstance(data, dict):
        raise MalformedAnalysisError("analysis: expected JSON object")

    keys = set(data)
    unknown = keys - FIRST_REVIEW_KEYS - RE_REVIEW_KEYS - COMMON_KEYS
    if unknown:
        raise MalformedAnalysisError(f"analysis: unexpected keys {', '.join(sorted(unknown))}")
    has_first = bool(keys & FIRST_REVIEW_KEYS)
    has_re = bool(keys & RE_REVIEW_KEYS)
    if has_first and has_re:
        raise MalformedAnalysisError("analysis: mixes first-review and re-review schemas")

    status = _status(data.get("status"))
    summary = _summary(data.get("summary"))
    notes = _notes(data)

    if has_re or (not has_first and re_review):
        return ReReview(
            status=status,
            summary=summary,
            persisting=[
                normalize_finding(item, f"persisting[{i}]")
                for i, item in enumerate(_list_of(data, "persisting"))
            ],
            new_findings=[
                normalize_finding(item, f"new_findings[{i}]")
                for i, item in enumerate(_list_of(data, "new_findings"))
            ],
            resolved=[
                normalize_thread_ref(item, f"resolved[{i}]")
                for i, item in enumerate(_list_of(data, "resolved"))
            ],
            accepted=[
                normalize_thread_ref(item, f"accepted_explanations[{i}]")
                for i, item in enumerate(_list_of(data, "accepted_explanations"))
            ],
            general_notes=notes,
        )

    return FirstReview(
        status=status,
        summary=summary,
        findings=[
            normalize_finding(item, f"findings[{i}]") for i, item in enumerate(_list_of(data, "findings"))
        ],
        general_notes=notes,
    )


def parse_analysis(text: str, *, re_review: bool = False) -> Analysis:
    """Parse raw model text. Raises MalformedAnalysisError on any schema violation."""
    block = extract_json_block(text)
    try:
        data = json.loads(block)
    except json.JSONDecodeError as exc:
        raise MalformedAnalysisError(f"could not parse JSON from analysis: {exc}") from exc
    return analysis_from_dict(data, re_review=re_review)


def all_findings(analysis: Analysis) -> list[Finding]:
    if isinstance(analysis, ReReview):
        return [*analysis.persisting, *analysis.new_findings]
    return list(analysis.findings)
