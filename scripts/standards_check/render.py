"""Markdown rendering for inline comments, thread replies and the review summary."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .analysis import APPROVED, BLOCK_MERGE
from .findings import MUST_FIX, OTHER, Finding, ThreadRef
from .threads import FINDING_MARKER

if TYPE_CHECKING:
    from .reconcile import ReconciliationOutcome

SUMMARY_MARKER = "<!-- pr-standards-check:summary -->"
NOTES_MARKER = "<!-- pr-standards-check:notes -->"

_PRIORITY_ICON = {MUST_FIX: "🔴", OTHER: "🟡"}
_STATUS_ICON = {BLOCK_MERGE: "🚫", APPROVED: "✅"}


def priority_icon(priority: str | None) -> str:
    return _PRIORITY_ICON.get(str(priority or ""), _PRIORITY_ICON[OTHER])


def clean_title(title: str) -> str:
    """Single line, no bold markers, so the title can be read back out of the comment."""
    return " ".join(str(title or "").replace("**", "").split()) or "Untitled finding"


def _location(path: str | None, line: int | None) -> str:
    if not path:
        return "`PR`"
    if line:
        return f"`{path}:{line}`"
    return f"`{path}`"


def _short_sha(head_sha: str) -> str:
    return head_sha[:7] if head_sha else ""


def footer(model_id: str | None) -> str:
    return (
        f"*🤖 Automated review using AI. Model: {model_id or 'unknown'}. "
        "Human review still required for final approval.*"
    )


def inline_comment_body(finding: Finding) -> str:
    lines = [FINDING_MARKER, f"{priority_icon(finding.priority)} **{clean_title(finding.title)}**"]
    body = (finding.body or "").strip()
    if body:
        lines.extend(["", body])
    return "\n".join(lines) + "\n"


def bump_body(finding: Finding, head_sha: str = "") -> str:
    text = f"⏳ **Still open:** {clean_title(finding.title)}"
    short = _short_sha(head_sha)
    if short:
        text += f"\n\nStill present as of `{short}`."
    return text


def accept_body(ref: ThreadRef) -> str:
    text = f"✅ **Explanation accepted:** {clean_title(ref.title)}"
    if ref.reason:
        text += f"\n\n{ref.reason.strip()}"
    text += "\n\nResolving this thread."
    return text


def _finding_line(finding: Finding, bullet: str = "") -> str:
    return (
        f"{bullet}{priority_icon(finding.priority)} **{clean_title(finding.title)}** "
        f"({_location(finding.path, finding.line)})"
    )


def _ref_line(ref: ThreadRef, fallback_path: str | None = None) -> str:
    location = ref.path or fallback_path
    suffix = f" ({_location(location, ref.line)})" if location else ""
    return f"- {clean_title(ref.title)}{suffix}"


def summary_body(outcome: "ReconciliationOutcome", *, model_id: str | None = None) -> str:
    """Top-level review body. Findings that could not be placed inline are spelled out in full."""
    heading = "# 🔍 PR Standards Check (Re-review)" if outcome.is_re_review else "# 🔍 PR Standards Check"
    if outcome.passed:
        heading = "# ✅ PR Standards Check Passed"
    lines = [SUMMARY_MARKER, heading, ""]

    if outcome.summary:
        lines.extend([outcome.summary, ""])

    if outcome.is_re_review:
        if outcome.persisting:
            lines.append("## ⏳ Still Open")
            lines.append("")
            lines.extend(_finding_line(m.finding) for m in outcome.persisting)
            lines.append("")
        new_items = [*outcome.new, *outcome.unplaceable]
        if new_items:
            lines.append("## 🆕 New Issues")
            lines.append("")
            lines.extend(_finding_line(f) for f in new_items)
            lines.append("")
        # Refs that matched no open thread changed nothing on the PR.
        resolved = [r for r in outcome.resolved if r.thread is not None]
        if resolved:
            lines.append("## ✅ Resolved")
            lines.append("")
            lines.extend(_ref_line(r.ref, r.thread.path) for r in resolved)
            lines.append("")
        accepted = [r for r in outcome.accepted if r.thread is not None]
        if accepted:
            lines.append("## 💬 Explanations Accepted")
            lines.append("")
            lines.extend(_ref_line(r.ref, r.thread.path) for r in accepted)
            lines.append("")
    else:
        reported = [*(m.finding for m in outcome.persisting), *outcome.new, *outcome.unplaceable]
        for label, priority in (("Must Fix", MUST_FIX), ("Other", OTHER)):
            group = [f for f in reported if f.priority == priority]
            if group:
                lines.append(f"## {priority_icon(priority)} {label}")
                lines.append("")
                lines.extend(_finding_line(f, bullet="- ") for f in group)
                lines.append("")

    if outcome.unplaceable:
        lines.append("## ⚠️ Additional Findings (lines not in diff)")
        lines.append("")
        for f in outcome.unplaceable:
            lines.append(
                f"### {priority_icon(f.priority)} {clean_title(f.title)} ({_location(f.path, f.line)})"
            )
            lines.append("")
            lines.append((f.body or f.title).strip())
            lines.append("")

    counts = outcome.counts
    status_icon = _STATUS_ICON.get(outcome.verdict, "❓")
    lines.append(f"**Status:** {status_icon} {outcome.verdict.replace('_', ' ')}")
    lines.append("")
    lines.append(f"Must fix: {counts[MUST_FIX]} · Other: {counts[OTHER]}")
    lines.append("")
    if outcome.new:
        lines.append("> Detailed findings are posted as inline comments on the relevant lines.")
        lines.append("")
    lines.append(footer(model_id))
    return "\n".join(lines)


def notes_body(notes: list[str]) -> str:
    lines = [NOTES_MARKER, "## 📝 PR Notes", ""]
    lines.extend(f"- {note}" for note in notes)
    lines.append("")
    lines.append("*These concern the pull request itself, not a specific line of code.*")
    return "\n".join(lines)


def fallback_body(error: str, *, standards_link: str = ".github/PR_STANDARDS.md") -> str:
    return "\n".join(
        [
            "## PR Standards Check",
            "",
            "⚠️ The automated PR standards check encountered an error and could not complete.",
            "",
            f"Please ensure a human reviewer checks this PR against our [team standards]({standards_link}).",
            "",
            f"Error: {error}",
        ]
    )
