"""Declarative remote effects and their executor.

The reconciliation engine only produces a list of these; nothing in it talks
to GitHub. The executor applies them in order, isolating failures so one
rejected reply does not stop the remaining effects.
"""

from __future__ import annotations

import dataclasses
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Protocol, Sequence, Union

from . import log
from .github import CommentPermissionError, GraphQLError, TransientGitHubError


@dataclass(frozen=True)
class ReplyToThread:
    thread_id: str
    body: str


@dataclass(frozen=True)
class ResolveThread:
    thread_id: str


@dataclass(frozen=True)
class PostInlineComment:
    path: str
    line: int
    body: str
    side: str = "RIGHT"


@dataclass(frozen=True)
class PostSummary:
    body: str


@dataclass(frozen=True)
class PostNotes:
    body: str


@dataclass(frozen=True)
class SetLabel:
    name: str
    color: str = "B60205"
    description: str = ""


@dataclass(frozen=True)
class RemoveLabel:
    name: str


Effect = Union[ReplyToThread, ResolveThread, PostInlineComment, PostSummary, PostNotes, SetLabel, RemoveLabel]


class ReviewClient(Protocol):
    """Remote operations the executor needs; see github_reviews.GitHubReviewClient."""

    def create_review(self, body: str, comments: Sequence[PostInlineComment]) -> object: ...

    def reply_to_thread(self, thread_id: str, body: str) -> object: ...

    def resolve_thread(self, thread_id: str) -> object: ...

    def upsert_notes(self, body: str) -> object: ...

    def add_label(self, name: str, color: str, description: str) -> object: ...

    def remove_label(self, name: str) -> object: ...


REMOTE_ERRORS: tuple[type[BaseException], ...] = (
    CommentPermissionError,
    TransientGitHubError,
    GraphQLError,
    subprocess.CalledProcessError,
    OSError,
)


@dataclass
class EffectReport:
    applied: list[Effect] = field(default_factory=list)
    failed: list[tuple[Effect, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def describe(effect: Effect) -> str:
    if isinstance(effect, ReplyToThread):
        return f"reply to thread {effect.thread_id}"
    if isinstance(effect, ResolveThread):
        return f"resolve thread {effect.thread_id}"
    if isinstance(effect, PostInlineComment):
        return f"inline comment on {effect.path}:{effect.line}"
    if isinstance(effect, PostSummary):
        return "review summary"
    if isinstance(effect, PostNotes):
        return "PR notes comment"
    if isinstance(effect, SetLabel):
        return f"add label {effect.name!r}"
    if isinstance(effect, RemoveLabel):
        return f"remove label {effect.name!r}"
    return type(effect).__name__


def apply_effects(effects: Sequence[Effect], client: ReviewClient) -> EffectReport:
    """Apply effects in order.

    Inline comments are buffered and submitted together with the next
    PostSummary as a single review. Inline comments left without a summary
    are submitted in a review with an empty body at the end.
    """
    report = EffectReport()
    pending: list[PostInlineComment] = []

    def run(effect: Effect, action: Callable[[], object], batch: Sequence[Effect] = ()) -> None:
        try:
            action()
        except REMOTE_ERRORS as exc:
            detail = getattr(exc, "stderr", None) or str(exc)
            log.warn(f"Failed to apply {describe(effect)}: {detail}")
            for item in batch or (effect,):
                report.failed.append((item, str(detail)))
            return
        report.applied.extend(batch or (effect,))

    for effect in effects:
        if isinstance(effect, PostInlineComment):
            pending.append(effect)
        elif isinstance(effect, PostSummary):
            comments = list(pending)
            pending.clear()
            run(effect, lambda e=effect, c=comments: client.create_review(e.body, c), (*comments, effect))
        elif isinstance(effect, ReplyToThread):
            run(effect, lambda e=effect: client.reply_to_thread(e.thread_id, e.body))
        elif isinstance(effect, ResolveThread):
            run(effect, lambda e=effect: client.resolve_thread(e.thread_id))
        elif isinstance(effect, PostNotes):
            run(effect, lambda e=effect: client.upsert_notes(e.body))
        elif isinstance(effect, SetLabel):
            run(effect, lambda e=effect: client.add_label(e.name, e.color, e.description))
        elif isinstance(effect, RemoveLabel):
            run(effect, lambda e=effect: client.remove_label(e.name))
        else:
            raise TypeError(f"unknown effect: {effect!r}")

    if pending:
        comments = list(pending)
        run(comments[0], lambda: client.create_review("", comments), comments)

    return report


def effect_to_dict(effect: Effect) -> dict[str, object]:
    """JSON-friendly form, used by --dry-run."""
    data: dict[str, object] = {"type": type(effect).__name__}
    data.update(dataclasses.asdict(effect))
    return data
