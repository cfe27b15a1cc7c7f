"""Fuzzy matching of findings to open review threads.

Titles are re-derived by the model on every run, so there is no exact key.
Tiers are tried in order of specificity, first match wins:

1. exact: normalized thread title == normalized finding title
2. substring: one normalized title contains the other
3. path: first open thread on the same file (only when a path is given)

Within a tier a thread on the same path is preferred over one elsewhere.
"""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from .threads import Thread

EXACT = "exact"
SUBSTRING = "substring"
PATH = "path"
TIERS = (EXACT, SUBSTRING, PATH)
TITLE_TIERS = (EXACT, SUBSTRING)


def _exact(key: str, _path: str | None, thread: Thread) -> bool:
    return bool(key) and thread.key == key


def _substring(key: str, _path: str | None, thread: Thread) -> bool:
    other = thread.key
    if not key or not other:
        return False
    return other in key or key in other


def _same_path(_key: str, path: str | None, thread: Thread) -> bool:
    return bool(path) and thread.path == path


_PREDICATES: dict[str, Callable[[str, str | None, Thread], bool]] = {
    EXACT: _exact,
    SUBSTRING: _substring,
    PATH: _same_path,
}


def match_tier(tier: str, key: str, path: str | None, threads: Iterable[Thread]) -> Thread | None:
    predicate = _PREDICATES[tier]
    candidates = [t for t in threads if predicate(key, path, t)]
    if not candidates:
        return None
    if path:
        for thread in candidates:
            if thread.path == path:
                return thread
    return candidates[0]


def match_thread(
    key: str,
    path: str | None,
    threads: Sequence[Thread],
    *,
    tiers: Sequence[str] = TIERS,
) -> Thread | None:
    """Return the best open thread for a normalized title, or None."""
    found = match_thread_with_tier(key, path, threads, tiers=tiers)
    return found[0] if found else None


def match_thread_with_tier(
    key: str,
    path: str | None,
    threads: Sequence[Thread],
    *,
    tiers: Sequence[str] = TIERS,
) -> tuple[Thread, str] | None:
    for tier in tiers:
        thread = match_tier(tier, key, path, threads)
        if thread is not None:
            return thread, tier
    return None
