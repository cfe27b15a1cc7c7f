"""Thread index: the open, bot-authored review threads on a PR.

All reconciliation state is rebuilt from this snapshot on every run. Threads
started by a human, and threads already resolved, are never touched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from .findings import norm_title, normalize_path

FINDING_MARKER = "<!-- pr-standards-check:finding -->"

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*", re.DOTALL)
_PREFIX_RE = re.compile(r"^(?:still open|explanation accepted)\s*:\s*", re.IGNORECASE)


@dataclass(frozen=True)
class ThreadComment:
    author: str
    body: str
    created_at: str = ""


@dataclass(frozen=True)
class Thread:
    id: str
    path: str
    line: int | None
    original_title: str
    comments: list[ThreadComment] = field(default_factory=list)
    is_resolved: bool = False
    bot_logins: frozenset[str] = frozenset()

    @property
    def key(self) -> str:
        return norm_title(self.original_title)

    @property
    def user_replies(self) -> list[ThreadComment]:
        return [c for c in self.comments[1:] if not is_bot(c.author, self.bot_logins)]

    @property
    def last_comment(self) -> ThreadComment | None:
        return self.comments[-1] if self.comments else None


def normalize_login(login: object) -> str:
    text = str(login or "").strip().lower()
    if text.endswith("[bot]"):
        text = text[: -len("[bot]")]
    return text


def is_bot(login: object, bot_logins: Iterable[str]) -> bool:
    wanted = {normalize_login(b) for b in bot_logins}
    return normalize_login(login) in wanted


def extract_title(body: str) -> str:
    """Pull the finding title out of a bot comment: the first **bold** span."""
    match = _BOLD_RE.search(body or "")
    if not match:
        return ""
    title = " ".join(match.group(1).split())
    return _PREFIX_RE.sub("", title).strip()


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _parse_comments(raw: Any) -> list[ThreadComment]:
    if isinstance(raw, dict):
        raw = raw.get("nodes")
    if not isinstance(raw, list):
        return []
    comments: list[ThreadComment] = []
    for node in raw:
        if not isinstance(node, dict):
            continue
        author = node.get("author")
        login = author.get("login") if isinstance(author, dict) else author
        comments.append(
            ThreadComment(
                author=str(login or ""),
                body=str(node.get("body") or ""),
                created_at=str(node.get("createdAt") or node.get("created_at") or ""),
            )
        )
    return comments


def parse_thread(raw: Any, bot_logins: Iterable[str]) -> Thread | None:
    """Build a Thread from one GraphQL ``reviewThreads`` node.

    Returns None for anything the engine must not reconcile: resolved threads,
    threads opened by a non-bot identity, and malformed nodes.
    """
    if not isinstance(raw, dict):
        return None
    thread_id = raw.get("id")
    if not isinstance(thread_id, str) or not thread_id:
        return None
    if raw.get("isResolved"):
        return None

    comments = _parse_comments(raw.get("comments"))
    if not comments:
        return None
    logins = frozenset(bot_logins)
    first = comments[0]
    if not is_bot(first.author, logins):
        return None

    first_raw = raw.get("comments")
    if isinstance(first_raw, dict):
        first_raw = first_raw.get("nodes")
    first_node = first_raw[0] if isinstance(first_raw, list) and first_raw else {}

    path = raw.get("path") or (first_node.get("path") if isinstance(first_node, dict) else "")
    line = raw.get("line")
    if line is None and isinstance(first_node, dict):
        line = first_node.get("line") or first_node.get("originalLine")

    return Thread(
        id=thread_id,
        path=normalize_path(path),
        line=_as_int(line),
        original_title=extract_title(first.body),
        comments=comments,
        is_resolved=False,
        bot_logins=logins,
    )


def build_thread_index(raw_threads: Iterable[Any], bot_logins: Iterable[str]) -> list[Thread]:
    """Open bot-authored threads, in snapshot order."""
    logins = list(bot_logins)
    index: list[Thread] = []
    for raw in raw_threads:
        thread = parse_thread(raw, logins)
        if thread is not None:
            index.append(thread)
    return index
