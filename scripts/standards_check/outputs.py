"""Run summary for the calling workflow: GITHUB_OUTPUT values and console lines."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from .findings import MUST_FIX, OTHER
from .reconcile import ReconciliationOutcome


@dataclass(frozen=True)
class RunSummary:
    blocked: bool
    verdict: str
    must_fix_count: int
    other_count: int

    @property
    def issues_found(self) -> int:
        return self.must_fix_count + self.other_count

    @classmethod
    def from_outcome(cls, outcome: ReconciliationOutcome) -> "RunSummary":
        counts = outcome.counts
        return cls(
            blocked=outcome.blocked,
            verdict=outcome.verdict,
            must_fix_count=counts[MUST_FIX],
            other_count=counts[OTHER],
        )

    def as_outputs(self) -> dict[str, str]:
        return {
            "issues-found": str(self.issues_found),
            "must-fix-count": str(self.must_fix_count),
            "other-count": str(self.other_count),
            "blocked": "true" if self.blocked else "false",
            "verdict": self.verdict,
        }


FAILED_OUTPUTS = {
    "issues-found": "-1",
    "must-fix-count": "0",
    "other-count": "0",
    "blocked": "true",
    "verdict": "ERROR",
}


def append_multiline_output(path: Path, key: str, value: str) -> None:
    delimiter = f"STANDARDS_{key.upper().replace('-', '_')}_{uuid4().hex}"
    while delimiter in value:
        delimiter = f"STANDARDS_{key.upper().replace('-', '_')}_{uuid4().hex}"
    with path.open("a", encoding="utf-8") as fh:
        fh.write(f"{key}<<{delimiter}\n")
        fh.write(value)
        if not value.endswith("\n"):
            fh.write("\n")
        fh.write(f"{delimiter}\n")


def write_github_outputs(path: Path, outputs: dict[str, str]) -> None:
    for key, value in outputs.items():
        append_multiline_output(path, key, value)


def console_lines(summary: RunSummary) -> list[str]:
    if not summary.issues_found:
        return ["✅ No issues found - PR meets all quality standards"]
    lines = ["❌ STANDARDS VIOLATIONS FOUND:"]
    if summary.must_fix_count:
        lines.append(f"   🔴 MUST FIX: {summary.must_fix_count} issue(s)")
    if summary.other_count:
        lines.append(f"   🟡 OTHER:    {summary.other_count} issue(s)")
    lines.append(f"   📊 TOTAL:    {summary.issues_found} issue(s)")
    return lines
