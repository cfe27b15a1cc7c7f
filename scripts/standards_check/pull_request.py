"""PR metadata, diff and changed-file contents for the analysis context."""

from __future__ import annotations

import json
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from . import github as gh
from . import log
from .config import CheckerConfig, RelatedRule
from .ignore import filter_ignored_content, should_include_file

PR_FIELDS = "title,body,files,additions,deletions,baseRefName,headRefName,headRefOid"


@dataclass(frozen=True)
class ChangedFileStat:
    path: str
    additions: int = 0
    deletions: int = 0


@dataclass(frozen=True)
class PullRequestDetails:
    number: int
    title: str = ""
    body: str = ""
    base_branch: str = ""
    head_branch: str = ""
    head_sha: str = ""
    additions: int = 0
    deletions: int = 0
    files: list[ChangedFileStat] = field(default_factory=list)


@dataclass(frozen=True)
class ChangedFile:
    path: str
    content: str
    additions: int = 0
    deletions: int = 0
    ignored_ranges: list[tuple[int, int | None]] = field(default_factory=list)


def _int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def details_from_dict(number: int, data: dict) -> PullRequestDetails:
    files: list[ChangedFileStat] = []
    for item in data.get("files") or []:
        if not isinstance(item, dict):
            continue
        path = str(item.get("path") or "").strip()
        if path:
            files.append(ChangedFileStat(path, _int(item.get("additions")), _int(item.get("deletions"))))
    return PullRequestDetails(
        number=number,
        title=str(data.get("title") or ""),
        body=str(data.get("body") or ""),
        base_branch=str(data.get("baseRefName") or ""),
        head_branch=str(data.get("headRefName") or ""),
        head_sha=str(data.get("headRefOid") or ""),
        additions=_int(data.get("additions")),
        deletions=_int(data.get("deletions")),
        files=files,
    )


def fetch_pr_details(repo: str, pr_number: int) -> PullRequestDetails:
    result = gh._run_gh(["pr", "view", str(pr_number), "--repo", repo, "--json", PR_FIELDS])
    data = json.loads(result.stdout or "{}")
    if not isinstance(data, dict):
        raise ValueError(f"unexpected gh pr view output for #{pr_number}")
    return details_from_dict(pr_number, data)


def fetch_pr_diff(repo: str, pr_number: int) -> str:
    return gh._run_gh(["pr", "diff", str(pr_number), "--repo", repo]).stdout or ""


def git_show_head(path: str) -> str:
    result = subprocess.run(
        ["git", "show", f"HEAD:{path}"], capture_output=True, text=True, check=True
    )
    return result.stdout


def read_changed_files(
    files: Iterable[ChangedFileStat],
    config: CheckerConfig,
    read_file: Callable[[str], str] = git_show_head,
) -> dict[str, ChangedFile]:
    """Post-change contents of the reviewable files, ignored regions blanked out."""
    out: dict[str, ChangedFile] = {}
    for stat in files:
        if not should_include_file(stat.path, config.context, config.ignore):
            continue
        try:
            content = read_file(stat.path)
        except (OSError, subprocess.CalledProcessError) as exc:
            # Deleted or unreadable at HEAD.
            log.warn(f"Couldn't read {stat.path}: {getattr(exc, 'stderr', None) or exc}")
            continue
        filtered, ranges = filter_ignored_content(content, config.ignore.comment)
        out[stat.path] = ChangedFile(
            path=stat.path,
            content=filtered,
            additions=stat.additions,
            deletions=stat.deletions,
            ignored_ranges=ranges,
        )
    return out


@dataclass(frozen=True)
class CodeExample:
    directory: str
    path: str
    content: str


@dataclass(frozen=True)
class RepositoryContext:
    """Unchanged repository files that help the model judge the change."""

    related: dict[str, str] = field(default_factory=dict)
    examples: list[CodeExample] = field(default_factory=list)
    tree: list[str] = field(default_factory=list)


def _singular(value: str) -> str:
    return value[:-1] if value.endswith("s") else value


def related_paths(path: str, rules: Iterable[RelatedRule]) -> list[str]:
    out: list[str] = []
    for rule in rules:
        match = re.search(rule.pattern, path)
        if not match:
            continue
        groups = {k: v for k, v in match.groupdict().items() if v is not None}
        groups.update({f"{k}_singular": _singular(v) for k, v in list(groups.items())})
        for template in rule.related:
            try:
                candidate = template.format_map(groups)
            except KeyError:
                # Optional group that did not participate in the match.
                continue
            if candidate not in out:
                out.append(candidate)
    return out


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log.warn(f"Couldn't read {path}: {exc}")
        return None


def read_related_files(
    files: Iterable[ChangedFileStat],
    config: CheckerConfig,
    root: Path = Path("."),
) -> dict[str, str]:
    """Siblings of the changed files (model for a controller and so on) as checked out."""
    files = list(files)
    changed = {f.path for f in files}
    out: dict[str, str] = {}
    for stat in files:
        for rel in related_paths(stat.path, config.context.related_files):
            if rel in out or rel in changed:
                continue
            if not should_include_file(rel, config.context, config.ignore):
                continue
            full = root / rel
            if not full.is_file():
                continue
            content = _read_text(full)
            if content is None:
                continue
            if len(content) >= config.context.max_related_file_chars:
                log.info(f"Skipping related file {rel}: {len(content)} chars")
                continue
            filtered, _ = filter_ignored_content(content, config.ignore.comment)
            out[rel] = filtered
    return out


def _touches(path: str, directory: str) -> bool:
    prefix = directory.strip("/") + "/"
    return path.startswith(prefix) or f"/{prefix}" in path


def read_codebase_patterns(
    files: Iterable[ChangedFileStat],
    config: CheckerConfig,
    root: Path = Path("."),
) -> list[CodeExample]:
    """One existing, unchanged file from each pattern directory the PR touches."""
    changed = {f.path for f in files}
    examples: list[CodeExample] = []
    for directory in config.context.pattern_dirs:
        if not any(_touches(path, directory) for path in changed):
            continue
        base = root / directory
        if not base.is_dir():
            continue
        for entry in sorted(base.iterdir()):
            rel = f"{directory.strip('/')}/{entry.name}"
            if not entry.is_file() or rel in changed:
                continue
            if not should_include_file(rel, config.context, config.ignore):
                continue
            content = _read_text(entry)
            if content is None:
                continue
            filtered, _ = filter_ignored_content(content, config.ignore.comment)
            examples.append(CodeExample(directory=directory, path=rel, content=filtered))
            break
    return examples


def list_directory_structure(config: CheckerConfig, root: Path = Path(".")) -> list[str]:
    entries: list[str] = []
    for directory in config.context.directory_roots:
        base = root / directory
        if not base.is_dir():
            continue
        for path in sorted(base.rglob("*")):
            if not path.is_file():
                continue
            rel = path.relative_to(root).as_posix()
            if should_include_file(rel, config.context, config.ignore):
                entries.append(rel)
                if len(entries) >= config.context.max_tree_entries:
                    return entries
    return entries


def gather_repository_context(
    files: Iterable[ChangedFileStat],
    config: CheckerConfig,
    root: Path = Path("."),
) -> RepositoryContext:
    files = list(files)
    return RepositoryContext(
        related=read_related_files(files, config, root),
        examples=read_codebase_patterns(files, config, root),
        tree=list_directory_structure(config, root),
    )
