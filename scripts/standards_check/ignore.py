"""Path and in-file ignore handling for the analysis context."""

from __future__ import annotations

import re
from typing import Iterable

from .config import ContextConfig, IgnoreConfig


def _pattern_re(pattern: str) -> re.Pattern[str]:
    # `.` is literal, `**` spans directories, `*` stays within one segment.
    parts = pattern.split("**")
    translated = ".*".join(re.escape(part).replace(r"\*", "[^/]*") for part in parts)
    return re.compile(f"^{translated}$")


def should_ignore(path: str, patterns: Iterable[str]) -> bool:
    return any(_pattern_re(p).match(path) for p in patterns)


def should_include_file(path: str, context: ContextConfig, ignore: IgnoreConfig) -> bool:
    """Source file with an allowed extension, outside excluded and ignored paths."""
    if not any(path.endswith(ext) for ext in context.include_extensions):
        return False
    if any(excluded in path for excluded in context.excluded_paths):
        return False
    return not should_ignore(path, ignore.patterns)


def filter_ignored_content(content: str, comment: str) -> tuple[str, list[tuple[int, int | None]]]:
    """Blank out ignored regions of a file.

    ``<comment>-start`` / ``<comment>-end`` bracket a block, a bare
    ``<comment>`` ignores its own line. Ignored lines are replaced with a
    placeholder so line numbers stay stable. Ranges are 1-based and
    inclusive; a block with no end marker has end None.
    """
    start_marker = f"{comment}-start"
    end_marker = f"{comment}-end"
    out: list[str] = []
    ranges: list[tuple[int, int | None]] = []
    open_start: int | None = None

    for idx, line in enumerate(content.split("\n"), start=1):
        placeholder = f"// Line {idx} ignored by standards checker"
        if start_marker in line:
            open_start = idx
            out.append(placeholder)
            continue
        if end_marker in line:
            if open_start is not None:
                ranges.append((open_start, idx))
                open_start = None
            out.append(placeholder)
            continue
        if comment in line:
            ranges.append((idx, idx))
            out.append(placeholder)
            continue
        out.append(placeholder if open_start is not None else line)

    if open_start is not None:
        ranges.append((open_start, None))
    ranges.sort(key=lambda r: r[0])
    return "\n".join(out), ranges


def format_ranges(ranges: Iterable[tuple[int, int | None]]) -> str:
    parts = []
    for start, end in ranges:
        if end is None:
            parts.append(f"{start}-end")
        elif start == end:
            parts.append(str(start))
        else:
            parts.append(f"{start}-{end}")
    return ", ".join(parts)
