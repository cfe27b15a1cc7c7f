"""GitHub access through the gh CLI.

Provides retrying command execution, GraphQL calls, and idempotent PR comment
upsert using HTML markers for identification.
"""
from __future__ import annotations

import json
import random
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import Any


class CommentPermissionError(Exception):
    """Token lacks pull-requests: write permission."""


class TransientGitHubError(Exception):
    """GitHub API returned a transient error (5xx)."""


class GraphQLError(Exception):
    """GraphQL response carried an errors array."""


def _is_transient_error(stderr: str) -> bool:
    """Check if error is a transient GitHub API error (5xx)."""
    transient_codes = ("502", "503", "504")
    lower_stderr = stderr.lower()
    # Handle both gh CLI format "(http 503)" and raw "HTTP 503" formats
    return any(
        f"(http {code})" in lower_stderr or f"http {code}" in lower_stderr
        for code in transient_codes
    )


def _run_gh(
    args: list[str],
    *,
    check: bool = True,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> subprocess.CompletedProcess[str]:
    """Run a gh CLI command with retry logic for transient errors.

    Args:
        args: Arguments to pass to gh CLI
        check: Whether to raise on non-zero exit code
        max_retries: Maximum number of retry attempts for transient errors
        base_delay: Base delay in seconds between retries (uses exponential backoff)

    Returns:
        CompletedProcess result from the gh command

    Raises:
        CommentPermissionError: Token lacks pull-requests: write permission
        TransientGitHubError: GitHub API returned 5xx after all retries
        subprocess.CalledProcessError: Other gh CLI failures
    """
    for attempt in range(max_retries):
        result = subprocess.run(
            ["gh", *args], capture_output=True, text=True, check=False
        )

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").lower()

        # Permission errors are not retried.
        if any(s in stderr for s in ("403", "resource not accessible", "insufficient")):
            raise CommentPermissionError(
                "Unable to update the pull request: token lacks write permission.\n"
                "Add this to your workflow:\n"
                "permissions:\n"
                "  contents: read\n"
                "  pull-requests: write"
            )

        if _is_transient_error(result.stderr or ""):
            if attempt < max_retries - 1:
                # Exponential backoff with jitter: 1s, 2s, 4s + random jitter
                delay = base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                print(
                    f"::warning::GitHub API error (attempt {attempt + 1}/{max_retries}), "
                    f"retrying in {delay:.1f}s...",
                    file=sys.stderr,
                )
                time.sleep(delay)
                continue
            raise TransientGitHubError(
                f"GitHub API returned transient error after {max_retries} attempts: "
                f"{result.stderr}"
            )

        if check:
            raise subprocess.CalledProcessError(
                result.returncode, result.args, result.stdout, result.stderr
            )
        return result

    # The loop must either return or raise.
    raise RuntimeError("_run_gh retry loop exited unexpectedly")


def graphql(query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run a GraphQL query or mutation and return its ``data`` object.

    String variables are passed with -f (raw), everything else with -F so gh
    sends integers and booleans typed.
    """
    args = ["api", "graphql", "-f", f"query={query}"]
    for name, value in (variables or {}).items():
        if value is None:
            continue
        if isinstance(value, str):
            args.extend(["-f", f"{name}={value}"])
        else:
            args.extend(["-F", f"{name}={json.dumps(value)}"])
    result = _run_gh(args)
    try:
        payload = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise GraphQLError(f"invalid GraphQL response: {exc}") from exc
    if not isinstance(payload, dict):
        raise GraphQLError("invalid GraphQL response: expected object")
    errors = payload.get("errors")
    if errors:
        first = errors[0] if isinstance(errors, list) and errors else errors
        message = first.get("message", first) if isinstance(first, dict) else first
        raise GraphQLError(f"GraphQL error: {message}")
    data = payload.get("data")
    return data if isinstance(data, dict) else {}


def fetch_comments(
    repo: str,
    pr_number: int,
    *,
    per_page: int = 100,
    max_pages: int = 20,
    stop_on_marker: str | None = None,
) -> list[dict]:
    """Fetch all issue comments for a PR (paginated).

    If stop_on_marker is given, pagination stops at the first page holding a
    comment that contains it.
    """
    comments: list[dict] = []
    for page in range(1, max_pages + 1):
        endpoint = f"repos/{repo}/issues/{pr_number}/comments?per_page={per_page}&page={page}"
        result = _run_gh(["api", endpoint])
        try:
            payload = json.loads(result.stdout or "[]")
        except json.JSONDecodeError:
            break
        if not isinstance(payload, list) or not payload:
            break
        comments.extend([c for c in payload if isinstance(c, dict)])

        if stop_on_marker is not None:
            for comment in payload:
                if isinstance(comment, dict) and stop_on_marker in str(comment.get("body", "")):
                    return comments

        if len(payload) < per_page:
            break
    return comments


def find_comment_by_marker(comments: list[dict], marker: str) -> int | None:
    """Find the first comment containing the marker, return its numeric ID."""
    for comment in comments:
        body = str(comment.get("body", ""))
        if marker in body:
            comment_id = comment.get("id")
            if isinstance(comment_id, int):
                return comment_id
    return None


def _write_body(body: str) -> str:
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", suffix=".md", delete=False) as handle:
        handle.write(body)
        return handle.name


def post_pr_comment(*, repo: str, pr_number: int, body: str) -> None:
    """Post a new top-level PR comment. The body goes through a file, never argv."""
    body_file = _write_body(body)
    try:
        _run_gh(["api", f"repos/{repo}/issues/{pr_number}/comments", "-F", f"body=@{body_file}"])
    finally:
        Path(body_file).unlink(missing_ok=True)


def upsert_pr_comment(
    *,
    repo: str,
    pr_number: int,
    marker: str,
    body: str,
    comments: list[dict] | None = None,
) -> None:
    """Find existing PR comment by HTML marker, update or create.

    If comments is provided, searches that list instead of fetching from API.

    Raises:
        CommentPermissionError: Token lacks pull-requests: write permission.
        TransientGitHubError: GitHub API returned 5xx after retries.
        subprocess.CalledProcessError: Other gh CLI failures.
    """
    if comments is None:
        comments = fetch_comments(repo, pr_number, stop_on_marker=marker)

    existing_id = find_comment_by_marker(comments, marker)
    body_file = _write_body(body)
    try:
        if existing_id is not None:
            _run_gh([
                "api",
                f"repos/{repo}/issues/comments/{existing_id}",
                "-X", "PATCH",
                "-F", f"body=@{body_file}",
            ])
        else:
            _run_gh([
                "api",
                f"repos/{repo}/issues/{pr_number}/comments",
                "-F", f"body=@{body_file}",
            ])
    finally:
        Path(body_file).unlink(missing_ok=True)
