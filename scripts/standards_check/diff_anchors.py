"""Unified diff helpers for inline review comments.

GitHub accepts `line` + `side=RIGHT` review comments only on lines that
appear in the diff on the new-file side: additions and unchanged context.
This module computes that set per file from a full `gh pr diff` output.
"""

from __future__ import annotations

import re

_FILE_RE = re.compile(r"^\+\+\+ b/(?P<path>.+?)\s*$")
_HUNK_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@"
)

AnchorMap = dict[str, set[int]]


def _count(value: str | None) -> int:
    return 1 if value is None else int(value)


def resolve_anchors(diff: str | None) -> AnchorMap:
    """Return map: file path -> new-file line numbers that accept inline comments.

    Hunk bodies are consumed by the line counts in their `@@` header, so a
    content line that looks like a header (`+++ b/x`, `diff --git`) is still
    content. Deletions don't advance the new-file line counter and are never
    anchors. Binary and empty diffs yield an empty map.
    """
    anchors: AnchorMap = {}
    current: str | None = None
    new_line = 0
    old_left = 0
    new_left = 0

    # Only "\n" ends a diff line; form feeds and other separators are content.
    for raw in (diff or "").split("\n"):
        if old_left > 0 or new_left > 0:
            if raw.startswith("\\"):
                # "\ No newline at end of file"
                continue
            if raw.startswith("-"):
                old_left -= 1
                continue
            if current is not None:
                anchors[current].add(new_line)
            new_line += 1
            new_left -= 1
            if not raw.startswith("+"):
                # Context; some tools strip the leading space of blank lines.
                old_left -= 1
            continue

        if raw.startswith("diff --git "):
            current = None
            continue

        m = _FILE_RE.match(raw)
        if m:
            current = m.group("path")
            anchors.setdefault(current, set())
            continue

        if raw.startswith("+++ "):
            # "+++ /dev/null": the file is deleted, nothing on the right side.
            current = None
            continue

        m = _HUNK_RE.match(raw)
        if m:
            new_line = int(m.group("new_start"))
            old_left = _count(m.group("old_count"))
            new_left = _count(m.group("new_count"))

    return anchors


def is_anchor(anchors: AnchorMap, path: str | None, line: int | None) -> bool:
    if not path or line is None:
        return False
    return line in anchors.get(path, ())
