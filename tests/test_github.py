"""Tests for standards_check.github: gh execution, GraphQL and comment upsert."""
from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from standards_check.github import (
    CommentPermissionError,
    GraphQLError,
    TransientGitHubError,
    find_comment_by_marker,
    graphql,
    post_pr_comment,
    upsert_pr_comment,
)


def _ok(args, stdout=""):
    return subprocess.CompletedProcess(args=args, returncode=0, stdout=stdout, stderr="")


class TestFindCommentByMarker:
    def test_finds_matching_comment(self):
        comments = [
            {"id": 100, "body": "unrelated comment"},
            {"id": 200, "body": "<!-- pr-standards-check:notes -->\nNotes"},
        ]
        assert find_comment_by_marker(comments, "<!-- pr-standards-check:notes -->") == 200

    def test_returns_none_when_no_match(self):
        assert find_comment_by_marker([{"id": 1, "body": "x"}], "<!-- m -->") is None
        assert find_comment_by_marker([], "<!-- m -->") is None

    def test_skips_non_integer_ids(self):
        assert find_comment_by_marker([{"id": "IC_abc", "body": "<!-- m -->"}], "<!-- m -->") is None


class TestUpsertPrComment:
    def test_creates_comment_when_none_exists(self, monkeypatch):
        calls = []
        bodies = []

        def mock_run_gh(args, **kwargs):
            calls.append(args)
            bodies.append(Path(args[3].removeprefix("body=@")).read_text(encoding="utf-8"))
            return _ok(args)

        import standards_check.github as mod

        monkeypatch.setattr(mod, "_run_gh", mock_run_gh)

        upsert_pr_comment(repo="owner/repo", pr_number=42, marker="<!-- m -->", body="Body", comments=[])

        assert len(calls) == 1
        assert calls[0][:3] == ["api", "repos/owner/repo/issues/42/comments", "-F"]
        assert bodies == ["Body"]
        assert not Path(calls[0][3].removeprefix("body=@")).exists()

    def test_updates_existing_comment(self, monkeypatch):
        calls = []

        def mock_run_gh(args, **kwargs):
            calls.append(args)
            return _ok(args)

        import standards_check.github as mod

        monkeypatch.setattr(mod, "_run_gh", mock_run_gh)

        upsert_pr_comment(
            repo="owner/repo",
            pr_number=42,
            marker="<!-- m -->",
            body="New",
            comments=[{"id": 555, "body": "<!-- m -->\nOld"}],
        )
        assert calls[0][:4] == ["api", "repos/owner/repo/issues/comments/555", "-X", "PATCH"]

    def test_fetches_comments_when_not_provided(self, monkeypatch):
        calls = []

        def mock_run_gh(args, **kwargs):
            calls.append(args)
            if "per_page=100" in args[1]:
                return _ok(args, '[{"id": 999, "body": "<!-- m -->\\nContent"}]')
            return _ok(args)

        import standards_check.github as mod

        monkeypatch.setattr(mod, "_run_gh", mock_run_gh)

        upsert_pr_comment(repo="owner/repo", pr_number=42, marker="<!-- m -->", body="Body")
        assert len(calls) == 2
        assert calls[1][1] == "repos/owner/repo/issues/comments/999"

    def test_permission_denied_raises(self, monkeypatch):
        def mock_run_gh(args, **kwargs):
            raise CommentPermissionError("no permission")

        import standards_check.github as mod

        monkeypatch.setattr(mod, "_run_gh", mock_run_gh)

        with pytest.raises(CommentPermissionError):
            upsert_pr_comment(repo="owner/repo", pr_number=42, marker="<!-- m -->", body="x", comments=[])


def test_post_pr_comment_always_creates(monkeypatch):
    calls = []

    def mock_run_gh(args, **kwargs):
        calls.append(args)
        return _ok(args)

    import standards_check.github as mod

    monkeypatch.setattr(mod, "_run_gh", mock_run_gh)
    post_pr_comment(repo="owner/repo", pr_number=7, body="Error")
    assert calls[0][1] == "repos/owner/repo/issues/7/comments"


def test_post_pr_comment_removes_body_file_even_on_failure(monkeypatch):
    paths = []

    def mock_run_gh(args, **kwargs):
        paths.append(Path(args[3].removeprefix("body=@")))
        assert paths[-1].read_text(encoding="utf-8") == "Error"
        raise subprocess.CalledProcessError(1, args, "", "boom")

    import standards_check.github as mod

    monkeypatch.setattr(mod, "_run_gh", mock_run_gh)
    with pytest.raises(subprocess.CalledProcessError):
        post_pr_comment(repo="owner/repo", pr_number=7, body="Error")
    assert len(paths) == 1
    assert not paths[0].exists()


class TestGraphQL:
    def test_passes_typed_variables(self, monkeypatch):
        calls = []

        def mock_run_gh(args, **kwargs):
            calls.append(args)
            return _ok(args, json.dumps({"data": {"ok": True}}))

        import standards_check.github as mod

        monkeypatch.setattr(mod, "_run_gh", mock_run_gh)

        data = graphql("query { x }", {"owner": "o", "pr": 5, "cursor": None})
        assert data == {"ok": True}
        args = calls[0]
        assert args[:4] == ["api", "graphql", "-f", "query=query { x }"]
        assert ["-f", "owner=o"] == args[4:6]
        assert ["-F", "pr=5"] == args[6:8]
        assert not any("cursor" in a for a in args)

    def test_errors_array_raises(self, monkeypatch):
        def mock_run_gh(args, **kwargs):
            return _ok(args, json.dumps({"errors": [{"message": "Could not resolve to a node"}]}))

        import standards_check.github as mod

        monkeypatch.setattr(mod, "_run_gh", mock_run_gh)

        with pytest.raises(GraphQLError, match="Could not resolve"):
            graphql("mutation { x }")

    def test_invalid_json_raises(self, monkeypatch):
        import standards_check.github as mod

        monkeypatch.setattr(mod, "_run_gh", lambda args, **kwargs: _ok(args, "<html>"))
        with pytest.raises(GraphQLError, match="invalid GraphQL response"):
            graphql("query { x }")


class TestRunGhErrorHandling:
    def test_403_raises_permission_error(self, monkeypatch):
        def mock_subprocess_run(args, **kwargs):
            return subprocess.CompletedProcess(
                args=args, returncode=1, stdout="", stderr="HTTP 403: Resource not accessible by integration"
            )

        import standards_check.github as mod

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)

        with pytest.raises(CommentPermissionError, match="pull-requests: write"):
            mod._run_gh(["api", "repos/x/y/issues/1/comments"])

    def test_other_errors_raise_called_process_error(self, monkeypatch):
        def mock_subprocess_run(args, **kwargs):
            return subprocess.CompletedProcess(args=args, returncode=1, stdout="", stderr="rate limit exceeded")

        import standards_check.github as mod

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)

        with pytest.raises(subprocess.CalledProcessError):
            mod._run_gh(["api", "repos/x/y/issues/1/comments"])

    def test_check_false_returns_result(self, monkeypatch):
        def mock_subprocess_run(args, **kwargs):
            return subprocess.CompletedProcess(args=args, returncode=1, stdout="", stderr="not found")

        import standards_check.github as mod

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)

        assert mod._run_gh(["pr", "edit"], check=False).returncode == 1

    def test_transient_error_retries_then_succeeds(self, monkeypatch):
        attempts = []

        def mock_subprocess_run(args, **kwargs):
            attempts.append(args)
            if len(attempts) < 3:
                return subprocess.CompletedProcess(args=args, returncode=1, stdout="", stderr="HTTP 502: Bad Gateway")
            return subprocess.CompletedProcess(args=args, returncode=0, stdout="ok", stderr="")

        import standards_check.github as mod

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)
        monkeypatch.setattr(mod.time, "sleep", lambda _s: None)

        assert mod._run_gh(["api", "x"]).stdout == "ok"
        assert len(attempts) == 3

    def test_transient_error_exhausts_retries(self, monkeypatch):
        def mock_subprocess_run(args, **kwargs):
            return subprocess.CompletedProcess(
                args=args, returncode=1, stdout="", stderr="gh: Service Unavailable (HTTP 503)"
            )

        import standards_check.github as mod

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)
        monkeypatch.setattr(mod.time, "sleep", lambda _s: None)

        with pytest.raises(TransientGitHubError, match="after 3 attempts"):
            mod._run_gh(["api", "x"])
