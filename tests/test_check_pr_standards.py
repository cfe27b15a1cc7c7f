"""End-to-end tests for check-pr-standards.py with GitHub calls stubbed out."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import check_pr_standards as cli
from conftest import raw_thread

from standards_check.pull_request import ChangedFileStat, PullRequestDetails, RepositoryContext

DIFF = "\n".join(
    [
        "diff --git a/src/app.ts b/src/app.ts",
        "--- a/src/app.ts",
        "+++ b/src/app.ts",
        "@@ -0,0 +1,12 @@",
        *[f"+line {n}" for n in range(1, 13)],
    ]
)


class RecordingClient:
    instances: list["RecordingClient"] = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.calls: list[tuple] = []
        RecordingClient.instances.append(self)

    def create_review(self, body, comments):
        self.calls.append(("create_review", body, list(comments)))

    def reply_to_thread(self, thread_id, body):
        self.calls.append(("reply_to_thread", thread_id, body))

    def resolve_thread(self, thread_id):
        self.calls.append(("resolve_thread", thread_id))

    def upsert_notes(self, body):
        self.calls.append(("upsert_notes", body))

    def add_label(self, name, color, description):
        self.calls.append(("add_label", name))

    def remove_label(self, name):
        self.calls.append(("remove_label", name))


@pytest.fixture
def github(monkeypatch):
    """Stub every remote call the script makes; returns a dict to tweak per test."""
    for var in ("FAILURE_MODE", "NONCOMPLIANT_LABEL", "MODEL_ID", "MAX_TOKENS", "STANDARDS_FILE", "ANALYZER_COMMAND"):
        monkeypatch.delenv(var, raising=False)
    state: dict = {"threads": [], "has_summary": False, "posted": []}
    RecordingClient.instances = []

    details = PullRequestDetails(
        number=42,
        title="Add login",
        head_sha="0123456789abcdef",
        files=[ChangedFileStat("src/app.ts", 12, 0)],
    )
    monkeypatch.setattr(cli, "fetch_pr_details", lambda repo, pr: details)
    monkeypatch.setattr(cli, "fetch_pr_diff", lambda repo, pr: DIFF)
    monkeypatch.setattr(cli, "fetch_review_threads", lambda repo, pr: state["threads"])
    monkeypatch.setattr(cli, "has_review_with_marker", lambda repo, pr, marker: state["has_summary"])
    monkeypatch.setattr(cli, "read_changed_files", lambda files, config: {})
    monkeypatch.setattr(cli, "gather_repository_context", lambda files, config: RepositoryContext())
    monkeypatch.setattr(cli, "post_pr_comment", lambda **kw: state["posted"].append(kw))
    monkeypatch.setattr(cli, "GitHubReviewClient", RecordingClient)
    return state


def _analysis_file(tmp_path: Path, payload: dict) -> str:
    path = tmp_path / "analysis.md"
    path.write_text("```json\n" + json.dumps(payload) + "\n```\n", encoding="utf-8")
    return str(path)


def _outputs(path: Path) -> dict[str, str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    out = {}
    for i, line in enumerate(lines):
        if "<<" in line:
            out[line.split("<<", 1)[0]] = lines[i + 1]
    return out


def _run(tmp_path: Path, analysis: str, *extra: str) -> tuple[int, dict[str, str]]:
    out_path = tmp_path / "github_output"
    code = cli.main(
        ["--repo", "owner/repo", "--pr", "42", "--analysis-file", analysis, "--github-output", str(out_path), *extra]
    )
    return code, _outputs(out_path) if out_path.exists() else {}


def test_must_fix_blocks_and_fails(github, tmp_path):
    analysis = _analysis_file(
        tmp_path,
        {
            "status": "BLOCK_MERGE",
            "summary": "Blocker found.",
            "findings": [{"priority": "must_fix", "title": "Missing auth", "path": "src/app.ts", "line": 3, "body": "x"}],
        },
    )
    code, outputs = _run(tmp_path, analysis)

    assert code == 1
    assert outputs["issues-found"] == "1"
    assert outputs["blocked"] == "true"
    assert outputs["verdict"] == "BLOCK_MERGE"
    client = RecordingClient.instances[0]
    assert client.kwargs["commit_id"] == "0123456789abcdef"
    name, body, comments = client.calls[0]
    assert name == "create_review"
    assert "Blocker found." in body
    assert [(c.path, c.line) for c in comments] == [("src/app.ts", 3)]


def test_label_mode_passes_and_labels(github, tmp_path, monkeypatch):
    monkeypatch.setenv("FAILURE_MODE", "label")
    analysis = _analysis_file(
        tmp_path,
        {"status": "BLOCK_MERGE", "findings": [{"priority": "must_fix", "title": "Missing auth", "path": "src/app.ts", "line": 3}]},
    )
    code, _ = _run(tmp_path, analysis)
    assert code == 0
    assert RecordingClient.instances[0].calls[-1] == ("add_label", "Noncompliant")


def test_approved_removes_label(github, tmp_path):
    analysis = _analysis_file(tmp_path, {"status": "APPROVED", "summary": "Clean."})
    code, outputs = _run(tmp_path, analysis)
    assert code == 0
    assert outputs["issues-found"] == "0"
    assert outputs["verdict"] == "APPROVED"
    assert RecordingClient.instances[0].calls[-1] == ("remove_label", "Noncompliant")


def test_re_review_bumps_existing_thread(github, tmp_path):
    github["threads"] = [raw_thread("T1", "Missing auth", "src/app.ts", 3)]
    analysis = _analysis_file(
        tmp_path,
        {"status": "BLOCK_MERGE", "persisting": [{"priority": "must_fix", "title": "Missing auth", "path": "src/app.ts", "line": 3}]},
    )
    code, _ = _run(tmp_path, analysis)

    assert code == 1
    calls = RecordingClient.instances[0].calls
    assert calls[0][0:2] == ("reply_to_thread", "T1")
    assert "`0123456`" in calls[0][2]
    assert calls[1][0] == "create_review"
    assert calls[1][2] == []


def test_previous_summary_marks_re_review(github, tmp_path, monkeypatch):
    github["has_summary"] = True
    hints = []
    real_parse = cli.parse_analysis

    def spy(text, *, re_review=False):
        hints.append(re_review)
        return real_parse(text, re_review=re_review)

    monkeypatch.setattr(cli, "parse_analysis", spy)
    analysis = _analysis_file(tmp_path, {"status": "APPROVED"})
    code, _ = _run(tmp_path, analysis)
    assert code == 0
    assert hints == [True]
    assert "Passed" in RecordingClient.instances[0].calls[0][1]


def test_status_disagreement_is_warned(github, tmp_path, capsys):
    analysis = _analysis_file(
        tmp_path,
        {"status": "BLOCK_MERGE", "findings": [{"priority": "other", "title": "Naming", "path": "src/app.ts", "line": 2}]},
    )
    code, outputs = _run(tmp_path, analysis)
    assert code == 0
    assert outputs["verdict"] == "APPROVED"
    assert "Model status BLOCK_MERGE disagrees" in capsys.readouterr().err


def test_malformed_analysis_posts_fallback(github, tmp_path, capsys):
    analysis = _analysis_file(
        tmp_path, {"status": "BLOCK_MERGE", "findings": [{"priority": "urgent", "title": "x"}]}
    )
    code, outputs = _run(tmp_path, analysis)

    assert code == 1
    assert outputs["issues-found"] == "-1"
    assert outputs["verdict"] == "ERROR"
    assert RecordingClient.instances == []
    assert len(github["posted"]) == 1
    assert "could not complete" in github["posted"][0]["body"]
    assert "::error::Error during PR standards check" in capsys.readouterr().err


def test_fetch_failure_is_fatal(github, tmp_path, monkeypatch):
    def boom(repo, pr):
        raise OSError("gh not found")

    monkeypatch.setattr(cli, "fetch_pr_diff", boom)
    analysis = _analysis_file(tmp_path, {"status": "APPROVED"})
    code, outputs = _run(tmp_path, analysis)
    assert code == 1
    assert outputs["issues-found"] == "-1"
    assert "gh not found" in github["posted"][0]["body"]


def test_dry_run_prints_effects_and_changes_nothing(github, tmp_path, capsys):
    analysis = _analysis_file(
        tmp_path,
        {"status": "BLOCK_MERGE", "findings": [{"priority": "must_fix", "title": "Missing auth", "path": "src/app.ts", "line": 99}]},
    )
    code, _ = _run(tmp_path, analysis, "--dry-run")

    assert code == 1
    assert RecordingClient.instances == []
    printed = json.loads(capsys.readouterr().out)
    assert printed["verdict"] == "BLOCK_MERGE"
    assert printed["partitions"]["unplaceable"] == [["missingauth", "src/app.ts"]]
    assert [e["type"] for e in printed["effects"]] == ["PostSummary"]


def test_prompt_output_written(github, tmp_path):
    prompt_path = tmp_path / "prompt.md"
    analysis = _analysis_file(tmp_path, {"status": "APPROVED"})
    _run(tmp_path, analysis, "--prompt-output", str(prompt_path))
    text = prompt_path.read_text(encoding="utf-8")
    assert "<pr_context>" in text
    assert "**Title:** Add login" in text


def test_missing_repo_or_pr(monkeypatch):
    monkeypatch.delenv("GITHUB_REPOSITORY", raising=False)
    monkeypatch.delenv("PR_NUMBER", raising=False)
    assert cli.main(["--pr", "1"]) == 2
    assert cli.main(["--repo", "owner/repo"]) == 2


def test_invalid_config(tmp_path, capsys):
    bad = tmp_path / "config.yml"
    bad.write_text("failure_mode: explode\n", encoding="utf-8")
    assert cli.main(["--repo", "owner/repo", "--pr", "1", "--config", str(bad)]) == 2
    assert "::error::Invalid configuration" in capsys.readouterr().err


def test_repository_context_reaches_prompt(github, tmp_path, monkeypatch):
    repo_context = RepositoryContext(related={"src/models/app.ts": "export class App {}"}, tree=["src/app.ts"])
    monkeypatch.setattr(cli, "gather_repository_context", lambda files, config: repo_context)
    prompt_path = tmp_path / "prompt.md"
    analysis = _analysis_file(tmp_path, {"status": "APPROVED"})
    _run(tmp_path, analysis, "--prompt-output", str(prompt_path))
    text = prompt_path.read_text(encoding="utf-8")
    assert "## Related Files (For Context)" in text
    assert "export class App {}" in text
    assert "## Repository Layout" in text
