"""Reconciliation of one analysis against the open review threads of a PR.

Each open bot thread moves through at most one transition per run:

    OPEN -> BUMPED     finding still reported; a reply is appended
    OPEN -> RESOLVED   reported fixed; thread resolved
    OPEN -> ACCEPTED   a human reply was judged a valid explanation;
                       acknowledged, then resolved
    OPEN -> OPEN       not mentioned; left untouched

Findings with no matching thread are new. A new finding whose line is not an
anchor in the diff goes to the review summary with its full body instead of
being dropped. The engine performs no I/O: it returns the partitions, the
verdict and an ordered list of effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from . import log
from .analysis import APPROVED, BLOCK_MERGE, Analysis, ReReview
from .config import CheckerConfig
from .diff_anchors import AnchorMap, is_anchor
from .effects import (
    Effect,
    PostInlineComment,
    PostNotes,
    PostSummary,
    RemoveLabel,
    ReplyToThread,
    ResolveThread,
    SetLabel,
)
from .findings import Finding, ThreadRef, count_by_priority
from .matcher import EXACT, PATH, TIERS, TITLE_TIERS, match_tier
from .render import accept_body, bump_body, inline_comment_body, notes_body, summary_body
from .threads import Thread, is_bot

OPEN = "OPEN"
BUMPED = "BUMPED"
RESOLVED = "RESOLVED"
ACCEPTED = "ACCEPTED"


@dataclass(frozen=True)
class ThreadMatch:
    finding: Finding
    thread: Thread
    tier: str


@dataclass(frozen=True)
class RefMatch:
    ref: ThreadRef
    thread: Thread | None = None
    tier: str | None = None


@dataclass
class ReconciliationOutcome:
    is_re_review: bool
    summary: str = ""
    new: list[Finding] = field(default_factory=list)
    unplaceable: list[Finding] = field(default_factory=list)
    persisting: list[ThreadMatch] = field(default_factory=list)
    resolved: list[RefMatch] = field(default_factory=list)
    accepted: list[RefMatch] = field(default_factory=list)
    untouched: list[Thread] = field(default_factory=list)
    transitions: dict[str, str] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)
    effects: list[Effect] = field(default_factory=list)

    @property
    def outstanding(self) -> list[Finding]:
        """Every finding still present this run: new (inline or not) and persisting."""
        return [*self.new, *self.unplaceable, *(m.finding for m in self.persisting)]

    @property
    def counts(self) -> dict[str, int]:
        return count_by_priority(self.outstanding)

    @property
    def blocked(self) -> bool:
        return any(f.blocking for f in self.outstanding)

    @property
    def verdict(self) -> str:
        return BLOCK_MERGE if self.blocked else APPROVED

    @property
    def passed(self) -> bool:
        return not self.outstanding and not self.untouched

    def partition_keys(self) -> dict[str, list[tuple[str, str | None]]]:
        """Stable view of the partitions, for comparing two runs."""
        return {
            "new": [(f.key, f.path) for f in self.new],
            "unplaceable": [(f.key, f.path) for f in self.unplaceable],
            "persisting": [(m.finding.key, m.thread.id) for m in self.persisting],
            "resolved": [(r.ref.key, r.thread.id if r.thread else None) for r in self.resolved],
            "accepted": [(r.ref.key, r.thread.id if r.thread else None) for r in self.accepted],
        }


@dataclass(frozen=True)
class _Candidate:
    key: str
    path: str | None
    tiers: tuple[str, ...]


def assign_threads(
    candidates: Sequence[_Candidate], threads: list[Thread]
) -> list[tuple[Thread, str] | None]:
    """Assign each candidate at most one thread, and each thread at most one candidate.

    Tiers run as global passes: every candidate gets a chance at an exact match
    before any candidate may claim a thread by substring or path. Claimed
    threads are removed from ``threads``.
    """
    result: list[tuple[Thread, str] | None] = [None] * len(candidates)
    for tier in TIERS:
        for idx, cand in enumerate(candidates):
            if result[idx] is not None or tier not in cand.tiers:
                continue
            if tier == PATH and not cand.path:
                continue
            thread = match_tier(tier, cand.key, cand.path, threads)
            if thread is None:
                continue
            result[idx] = (thread, tier)
            threads[:] = [t for t in threads if t.id != thread.id]
    return result


def _ref_tiers(ref: ThreadRef) -> tuple[str, ...]:
    return TIERS if ref.path else TITLE_TIERS


def _already_bumped(thread: Thread, body: str) -> bool:
    last = thread.last_comment
    return last is not None and is_bot(last.author, thread.bot_logins) and last.body.strip() == body.strip()


def reconcile(
    analysis: Analysis,
    anchors: AnchorMap,
    threads: Sequence[Thread],
    config: CheckerConfig,
    *,
    head_sha: str = "",
) -> ReconciliationOutcome:
    """Map this run's findings onto the open threads and plan the effects."""
    outcome = ReconciliationOutcome(
        is_re_review=analysis.is_re_review,
        summary=analysis.summary,
        notes=list(analysis.general_notes),
    )
    available = [t for t in threads if not t.is_resolved]
    open_by_key = {t.key: t for t in reversed(available) if t.key}
    for thread in available:
        outcome.transitions[thread.id] = OPEN

    if isinstance(analysis, ReReview):
        reported = [(f, TIERS) for f in analysis.persisting] + [(f, TITLE_TIERS) for f in analysis.new_findings]
        refs = [(r, True) for r in analysis.accepted] + [(r, False) for r in analysis.resolved]
    else:
        reported = [(f, TITLE_TIERS) for f in analysis.findings]
        refs = []

    # Findings claim threads first: a thread that is still reported is never resolved.
    finding_matches = assign_threads(
        [_Candidate(f.key, f.path, tiers) for f, tiers in reported], available
    )
    new_findings: list[Finding] = []
    persisting_count = len(analysis.persisting) if isinstance(analysis, ReReview) else 0
    for idx, ((finding, _tiers), found) in enumerate(zip(reported, finding_matches)):
        if found is None and finding.key in open_by_key:
            # Same title as a thread another finding already claimed: never a duplicate comment.
            found = (open_by_key[finding.key], EXACT)
        if found is None:
            if idx < persisting_count:
                log.warn(f"No open thread matches persisting finding {finding.title!r}; posting it as new.")
            new_findings.append(finding)
            continue
        thread, tier = found
        outcome.persisting.append(ThreadMatch(finding=finding, thread=thread, tier=tier))
        outcome.transitions[thread.id] = BUMPED

    ref_matches = assign_threads([_Candidate(r.key, r.path, _ref_tiers(r)) for r, _ in refs], available)
    for (ref, accepted), found in zip(refs, ref_matches):
        thread, tier = found if found else (None, None)
        if thread is not None and accepted and not thread.user_replies:
            log.warn(f"Thread for {ref.title!r} has no human reply to accept; leaving it open.")
            thread, tier = None, None
        match = RefMatch(ref=ref, thread=thread, tier=tier)
        if accepted:
            outcome.accepted.append(match)
        else:
            outcome.resolved.append(match)
        if thread is None:
            kind = "accepted explanation" if accepted else "resolved finding"
            log.warn(f"No open thread matches {kind} {ref.title!r}; skipping.")
            continue
        outcome.transitions[thread.id] = ACCEPTED if accepted else RESOLVED

    for finding in new_findings:
        if is_anchor(anchors, finding.path, finding.line):
            outcome.new.append(finding)
        else:
            outcome.unplaceable.append(finding)

    claimed = {tid for tid, state in outcome.transitions.items() if state != OPEN}
    outcome.untouched = [t for t in threads if not t.is_resolved and t.id not in claimed]

    outcome.effects = plan_effects(outcome, config, head_sha=head_sha)
    return outcome


def plan_effects(outcome: ReconciliationOutcome, config: CheckerConfig, *, head_sha: str = "") -> list[Effect]:
    """Order: thread replies and resolutions, then the review, then notes, then the label."""
    effects: list[Effect] = []

    bumped: set[str] = set()
    for m in outcome.persisting:
        body = bump_body(m.finding, head_sha)
        if m.thread.id in bumped or _already_bumped(m.thread, body):
            continue
        bumped.add(m.thread.id)
        effects.append(ReplyToThread(thread_id=m.thread.id, body=body))

    for r in outcome.accepted:
        if r.thread is None:
            continue
        effects.append(ReplyToThread(thread_id=r.thread.id, body=accept_body(r.ref)))
        effects.append(ResolveThread(thread_id=r.thread.id))

    for r in outcome.resolved:
        if r.thread is None:
            continue
        effects.append(ResolveThread(thread_id=r.thread.id))

    for f in outcome.new:
        effects.append(PostInlineComment(path=f.path or "", line=f.line or 0, body=inline_comment_body(f)))

    effects.append(PostSummary(body=summary_body(outcome, model_id=config.model.id)))

    if outcome.notes:
        effects.append(PostNotes(body=notes_body(outcome.notes)))

    if outcome.blocked and config.failure_mode == "label":
        effects.append(
            SetLabel(name=config.label.name, color=config.label.color, description=config.label.description)
        )
    elif not outcome.blocked:
        effects.append(RemoveLabel(name=config.label.name))

    return effects
