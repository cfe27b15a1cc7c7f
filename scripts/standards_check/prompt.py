"""Analysis prompt rendering.

Kept separate from the analyzer call so prompt hardening can be unit-tested.
"""

from __future__ import annotations

import html
import re
from pathlib import Path
from typing import Mapping, Sequence

from .config import CheckerConfig
from .ignore import format_ranges
from .pull_request import ChangedFile, PullRequestDetails, RepositoryContext
from .threads import Thread

TOKEN_RE = re.compile(r"\{\{[A-Z0-9_]+\}\}")
DEFAULT_TEMPLATE = Path(__file__).resolve().parent / "defaults" / "analysis-prompt.md"

FIRST_REVIEW_SCHEMA = """Output your findings as a single JSON code block and nothing else. Use exactly this schema:

```json
{
  "status": "BLOCK_MERGE or APPROVED",
  "summary": "1-2 sentence overall assessment",
  "findings": [
    {
      "priority": "must_fix or other",
      "title": "Short descriptive title (max 8 words)",
      "path": "src/controllers/user.ts",
      "line": 42,
      "body": "Concise explanation. Must-fix findings should include a corrected code snippet in a markdown fenced block."
    }
  ],
  "general_notes": ["Concern about the PR title or description"]
}
```

Rules:
- Output ONLY the JSON code block, no prose before or after
- `path` must exactly match a file path from the Changed Files Summary above
- `line` must be a line number in the NEW version of the file that appears in the diff
- Only report issues on lines that were added or modified in this PR
- Set `status` to `BLOCK_MERGE` if any `must_fix` findings exist
- Omit empty arrays from the output
"""

RE_REVIEW_SCHEMA = """This is a RE-REVIEW. The open review threads from earlier runs are listed above.

Output your findings as a single JSON code block and nothing else. Use exactly this schema:

```json
{
  "status": "BLOCK_MERGE or APPROVED",
  "summary": "1-2 sentence overall assessment",
  "persisting": [
    {"priority": "must_fix or other", "title": "Title of an open thread", "path": "src/file.ts", "line": 42}
  ],
  "new_findings": [
    {
      "priority": "must_fix or other",
      "title": "Short descriptive title (max 8 words)",
      "path": "src/file.ts",
      "line": 42,
      "body": "Concise explanation. Must-fix findings should include a corrected code snippet in a markdown fenced block."
    }
  ],
  "resolved": ["Title of each open thread whose issue has been fixed"],
  "accepted_explanations": [
    {"title": "Title of an open thread", "reason": "Why the author's reply justifies the code"}
  ],
  "general_notes": ["Concern about the PR title or description"]
}
```

Rules:
- Output ONLY the JSON code block, no prose before or after
- `persisting`: ONLY open threads whose issue is STILL PRESENT; reuse the thread title exactly, no body
- `new_findings`: ONLY issues not covered by an open thread, with a full `body`
- `resolved`: open threads whose issue is fixed in this version of the code
- `accepted_explanations`: open threads where a human reply gives a valid reason to keep the code
- An open thread you do not mention stays open
- `path` must exactly match a file path from the Changed Files Summary above
- `line` must be a line number in the NEW version of the file that appears in the diff
- Set `status` to `BLOCK_MERGE` if any `must_fix` issues exist (persisting or new)
- Omit empty arrays from the output
"""


def escape_untrusted(text: str) -> str:
    """Escape &, <, > so PR-author text cannot close the <pr_context> tag."""
    return html.escape(text or "", quote=False)


def truncate(text: str, limit: int, note: str) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... ({note})"


def _changed_files(details: PullRequestDetails) -> str:
    if not details.files:
        return "No files"
    return "\n".join(f"- {f.path} (+{f.additions}/-{f.deletions})" for f in details.files)


def _file_contents_section(files: Mapping[str, ChangedFile], limit: int) -> str:
    if not files:
        return ""
    parts = ["", "## Full File Contents (After Changes)", ""]
    for path, changed in files.items():
        parts.append(f"### {path}")
        if changed.ignored_ranges:
            parts.append(
                f"**Note:** Lines {format_ranges(changed.ignored_ranges)} are marked as ignored "
                "and should not be reviewed."
            )
            parts.append("")
        parts.append("```")
        parts.append(truncate(changed.content, limit, "file truncated"))
        parts.append("```")
        parts.append("")
    return "\n".join(parts)


def _related_files_section(context: RepositoryContext, limit: int) -> str:
    if not context.related:
        return ""
    parts = ["", "## Related Files (For Context)", ""]
    parts.append(
        "These files were not changed in this PR. Use them to check consistency; "
        "do not report issues in them."
    )
    parts.append("")
    for path, content in context.related.items():
        parts.append(f"### {path}")
        parts.append("```")
        parts.append(truncate(content, limit, "file truncated"))
        parts.append("```")
        parts.append("")
    return "\n".join(parts)


def _patterns_section(context: RepositoryContext, limit: int) -> str:
    if not context.examples:
        return ""
    parts = ["", "## Existing Codebase Patterns (For Reference)", ""]
    for example in context.examples:
        parts.append(f"### Example from {example.directory} (`{example.path}`)")
        parts.append("```")
        parts.append(truncate(example.content, limit, "truncated"))
        parts.append("```")
        parts.append("")
    return "\n".join(parts)


def _directory_section(context: RepositoryContext) -> str:
    if not context.tree:
        return ""
    return "\n".join(["", "## Repository Layout", "", "```", *context.tree, "```", ""])


def _open_threads_section(threads: Sequence[Thread]) -> str:
    if not threads:
        return ""
    parts = ["", "## Open Review Threads", ""]
    for thread in threads:
        location = f"{thread.path}:{thread.line}" if thread.line else thread.path
        parts.append(f"- **{thread.original_title or 'Untitled'}** (`{location}`)")
        for reply in thread.user_replies:
            text = " ".join(reply.body.split())
            parts.append(f"  - reply from @{reply.author}: {escape_untrusted(text)}")
    parts.append("")
    return "\n".join(parts)


def _standards_section(standards_text: str | None) -> str:
    if not standards_text or not standards_text.strip():
        return "Review against common team standards for security, performance and code quality."
    return "## Team Standards (authoritative)\n\n" + standards_text.strip()


def render_prompt_text(
    *,
    template_text: str,
    details: PullRequestDetails,
    diff: str,
    files: Mapping[str, ChangedFile],
    threads: Sequence[Thread],
    config: CheckerConfig,
    re_review: bool,
    standards_text: str | None = None,
    repo_context: RepositoryContext | None = None,
) -> str:
    limits = config.context
    repo_context = repo_context or RepositoryContext()
    replacements = {
        "{{STANDARDS_SECTION}}": _standards_section(standards_text),
        "{{PR_TITLE}}": escape_untrusted(details.title),
        "{{PR_BODY}}": escape_untrusted(details.body) or "No description provided",
        "{{BASE_BRANCH}}": escape_untrusted(details.base_branch),
        "{{HEAD_BRANCH}}": escape_untrusted(details.head_branch),
        "{{FILE_COUNT}}": str(len(details.files)),
        "{{ADDITIONS}}": str(details.additions),
        "{{DELETIONS}}": str(details.deletions),
        "{{CHANGED_FILES}}": _changed_files(details),
        "{{DIFF}}": truncate(diff, limits.max_diff_chars, "diff truncated, see full files below"),
        "{{FILE_CONTENTS_SECTION}}": _file_contents_section(files, limits.max_file_chars),
        "{{RELATED_FILES_SECTION}}": _related_files_section(repo_context, limits.max_related_prompt_chars),
        "{{PATTERNS_SECTION}}": _patterns_section(repo_context, limits.max_example_chars),
        "{{DIRECTORY_SECTION}}": _directory_section(repo_context),
        "{{OPEN_THREADS_SECTION}}": _open_threads_section(threads) if re_review else "",
        "{{IGNORE_COMMENT}}": config.ignore.comment,
        "{{OUTPUT_SCHEMA_SECTION}}": RE_REVIEW_SCHEMA if re_review else FIRST_REVIEW_SCHEMA,
    }

    def replace_token(match: re.Match[str]) -> str:
        token = match.group(0)
        return replacements.get(token, token)

    return TOKEN_RE.sub(replace_token, template_text)


def load_template(path: Path | None = None) -> str:
    template_path = path or DEFAULT_TEMPLATE
    try:
        return template_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise OSError(f"unable to read template {template_path}: {exc}") from exc


def load_standards(path: str | None) -> str | None:
    if not path:
        return None
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise OSError(f"unable to read standards file {path}: {exc}") from exc
