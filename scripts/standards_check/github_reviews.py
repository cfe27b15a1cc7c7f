"""GitHub PR review utilities.

List reviews, fetch review threads, create a single PR review with inline
comments, reply to and resolve threads, and manage the noncompliant label.
"""

from __future__ import annotations

import json
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from . import github as gh
from . import log
from .effects import PostInlineComment

THREADS_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          path
          line
          comments(first: 100) {
            nodes {
              author { login }
              body
              createdAt
              path
              line
              originalLine
            }
          }
        }
      }
    }
  }
}
"""

REPLY_MUTATION = """
mutation($threadId: ID!, $body: String!) {
  addPullRequestReviewThreadReply(input: {pullRequestReviewThreadId: $threadId, body: $body}) {
    comment { id }
  }
}
"""

RESOLVE_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""


def _split_repo(repo: str) -> tuple[str, str]:
    owner, _, name = repo.partition("/")
    if not owner or not name:
        raise ValueError(f"repo must be owner/name, got {repo!r}")
    return owner, name


def list_pr_reviews(repo: str, pr_number: int) -> list[dict]:
    result = gh._run_gh(["api", f"repos/{repo}/pulls/{pr_number}/reviews?per_page=100"])
    data = json.loads(result.stdout)
    return data if isinstance(data, list) else []


def find_review_id_by_marker(reviews: list[dict], marker: str) -> int | None:
    for review in reviews:
        if not isinstance(review, dict):
            continue
        body = str(review.get("body", "") or "")
        if marker in body:
            rid = review.get("id")
            if isinstance(rid, int):
                return rid
    return None


def has_review_with_marker(repo: str, pr_number: int, marker: str) -> bool:
    return find_review_id_by_marker(list_pr_reviews(repo, pr_number), marker) is not None


def fetch_review_threads(repo: str, pr_number: int, *, max_pages: int = 20) -> list[dict]:
    """All review thread nodes for a PR, resolved ones included."""
    owner, name = _split_repo(repo)
    threads: list[dict] = []
    cursor: str | None = None
    for _ in range(max_pages):
        data = gh.graphql(
            THREADS_QUERY,
            {"owner": owner, "repo": name, "pr": pr_number, "cursor": cursor},
        )
        pr = ((data.get("repository") or {}).get("pullRequest")) or {}
        page = pr.get("reviewThreads") or {}
        nodes = page.get("nodes") or []
        threads.extend(n for n in nodes if isinstance(n, dict))
        info = page.get("pageInfo") or {}
        if not info.get("hasNextPage"):
            break
        cursor = info.get("endCursor")
        if not cursor:
            break
    return threads


def create_pr_review(
    *,
    repo: str,
    pr_number: int,
    commit_id: str,
    body: str,
    comments: Sequence[PostInlineComment],
) -> dict:
    payload: dict[str, object] = {
        "event": "COMMENT",
        "body": body,
    }
    if commit_id:
        payload["commit_id"] = commit_id
    if comments:
        payload["comments"] = [
            {"path": c.path, "line": c.line, "side": c.side, "body": c.body} for c in comments
        ]

    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False) as handle:
        json.dump(payload, handle)
        handle.flush()
        tmp_path = handle.name

    try:
        result = gh._run_gh(
            [
                "api",
                "-X",
                "POST",
                f"repos/{repo}/pulls/{pr_number}/reviews",
                "--input",
                tmp_path,
            ]
        )
    finally:
        Path(tmp_path).unlink(missing_ok=True)
    data = json.loads(result.stdout or "{}")
    return data if isinstance(data, dict) else {}


def reply_to_thread(thread_id: str, body: str) -> dict:
    return gh.graphql(REPLY_MUTATION, {"threadId": thread_id, "body": body})


def resolve_thread(thread_id: str) -> dict:
    return gh.graphql(RESOLVE_MUTATION, {"threadId": thread_id})


def add_label(repo: str, pr_number: int, name: str, *, color: str, description: str) -> None:
    """Add a label to the PR, creating it on the repo first if needed."""
    gh._run_gh(
        [
            "label", "create", name,
            "--repo", repo,
            "--color", color,
            "--description", description,
            "--force",
        ]
    )
    gh._run_gh(["pr", "edit", str(pr_number), "--repo", repo, "--add-label", name])


def remove_label(repo: str, pr_number: int, name: str) -> bool:
    """Remove the label if present. Returns False when it was not there."""
    result = gh._run_gh(
        ["pr", "edit", str(pr_number), "--repo", repo, "--remove-label", name],
        check=False,
    )
    return result.returncode == 0


@dataclass(frozen=True)
class GitHubReviewClient:
    """Binds the review operations to one PR for the effect executor."""

    repo: str
    pr_number: int
    commit_id: str = ""
    notes_marker: str = ""

    def create_review(self, body: str, comments: Sequence[PostInlineComment]) -> dict:
        try:
            return create_pr_review(
                repo=self.repo,
                pr_number=self.pr_number,
                commit_id=self.commit_id,
                body=body,
                comments=comments,
            )
        except subprocess.CalledProcessError as exc:
            if not comments:
                raise
            # One unplaceable comment makes GitHub reject the whole review.
            log.warn(f"Review with inline comments failed ({exc.stderr or exc}); retrying without them.")
            fallback = body + "\n\n" + "\n\n".join(f"**`{c.path}:{c.line}`**\n\n{c.body}" for c in comments)
            return create_pr_review(
                repo=self.repo,
                pr_number=self.pr_number,
                commit_id=self.commit_id,
                body=fallback,
                comments=[],
            )

    def reply_to_thread(self, thread_id: str, body: str) -> dict:
        return reply_to_thread(thread_id, body)

    def resolve_thread(self, thread_id: str) -> dict:
        return resolve_thread(thread_id)

    def upsert_notes(self, body: str) -> None:
        gh.upsert_pr_comment(repo=self.repo, pr_number=self.pr_number, marker=self.notes_marker, body=body)

    def add_label(self, name: str, color: str, description: str) -> None:
        add_label(self.repo, self.pr_number, name, color=color, description=description)
        log.info(f"🏷️  Added {name!r} label to PR #{self.pr_number}")

    def remove_label(self, name: str) -> None:
        if remove_label(self.repo, self.pr_number, name):
            log.info(f"🏷️  Removed {name!r} label from PR #{self.pr_number}")
