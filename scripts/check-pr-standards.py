#!/usr/bin/env python3
"""Check a pull request against team standards and reconcile the review threads.

Pipeline: fetch PR data and the open bot threads -> run the analyzer (or read
a saved response) -> reconcile findings against the threads -> apply the
planned effects -> report the verdict to the workflow.

Failures before reconciliation are fatal and leave a single fallback notice
on the PR. Failures while applying effects are logged per effect and do not
change the verdict.
"""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from pathlib import Path

from standards_check import log
from standards_check.analysis import Analysis, parse_analysis
from standards_check.analyzer import AnalyzerError, run_analyzer
from standards_check.config import CheckerConfig, ConfigError, apply_env_overrides, load_config
from standards_check.diff_anchors import resolve_anchors
from standards_check.effects import apply_effects, effect_to_dict
from standards_check.findings import MalformedAnalysisError
from standards_check.github import (
    CommentPermissionError,
    GraphQLError,
    TransientGitHubError,
    post_pr_comment,
)
from standards_check.github_reviews import GitHubReviewClient, fetch_review_threads, has_review_with_marker
from standards_check.outputs import FAILED_OUTPUTS, RunSummary, console_lines, write_github_outputs
from standards_check.prompt import load_standards, load_template, render_prompt_text
from standards_check.pull_request import (
    fetch_pr_details,
    fetch_pr_diff,
    gather_repository_context,
    read_changed_files,
)
from standards_check.reconcile import ReconciliationOutcome, reconcile
from standards_check.render import NOTES_MARKER, SUMMARY_MARKER, fallback_body
from standards_check.threads import build_thread_index

FATAL_ERRORS: tuple[type[BaseException], ...] = (
    MalformedAnalysisError,
    AnalyzerError,
    CommentPermissionError,
    TransientGitHubError,
    GraphQLError,
    subprocess.CalledProcessError,
    OSError,
    ValueError,
)


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Check a PR against team standards.")
    p.add_argument("--repo", default=os.environ.get("GITHUB_REPOSITORY", ""), help="owner/repo")
    p.add_argument("--pr", type=int, default=int(os.environ.get("PR_NUMBER") or 0), help="PR number")
    p.add_argument("--config", default="", help="Path to config YAML (default: packaged defaults/config.yml)")
    p.add_argument("--analysis-file", default="", help="Use a saved model response instead of the analyzer")
    p.add_argument("--prompt-output", default="", help="Also write the rendered prompt here")
    p.add_argument(
        "--github-output",
        default=os.environ.get("GITHUB_OUTPUT", ""),
        help="Path to GITHUB_OUTPUT file (default: env GITHUB_OUTPUT)",
    )
    p.add_argument("--dry-run", action="store_true", help="Print planned effects as JSON; change nothing")
    return p.parse_args(argv)


def load_checker_config(path: str) -> CheckerConfig:
    config = load_config(Path(path) if path else None)
    return apply_env_overrides(config, os.environ)


def obtain_analysis_text(args: argparse.Namespace, prompt: str, config: CheckerConfig) -> str:
    if args.prompt_output:
        Path(args.prompt_output).write_text(prompt, encoding="utf-8")
    if args.analysis_file:
        return Path(args.analysis_file).read_text(encoding="utf-8")
    log.info(f"🤖 Analyzing PR with {config.model.id or 'the configured analyzer'}...")
    return run_analyzer(prompt, config)


def gather(args: argparse.Namespace, config: CheckerConfig) -> tuple[Analysis, str, list, str]:
    """Everything before reconciliation. Any exception here is fatal to the run."""
    log.info("📥 Fetching PR details...")
    details = fetch_pr_details(args.repo, args.pr)
    log.info("📥 Fetching PR diff...")
    diff = fetch_pr_diff(args.repo, args.pr)
    log.info("🧵 Fetching review threads...")
    threads = build_thread_index(fetch_review_threads(args.repo, args.pr), config.bot_logins)
    re_review = bool(threads) or has_review_with_marker(args.repo, args.pr, SUMMARY_MARKER)
    if re_review:
        log.info(f"ℹ️  Re-review: {len(threads)} open thread(s) from earlier runs")

    log.info("📄 Fetching changed file contents...")
    files = read_changed_files(details.files, config)
    log.info(f"  ✓ Retrieved {len(files)} file(s)")

    log.info("🔗 Gathering related files and codebase patterns...")
    repo_context = gather_repository_context(details.files, config)
    log.info(
        f"  ✓ {len(repo_context.related)} related file(s), {len(repo_context.examples)} pattern example(s)"
    )

    prompt = render_prompt_text(
        template_text=load_template(),
        details=details,
        diff=diff,
        files=files,
        threads=threads,
        config=config,
        re_review=re_review,
        standards_text=load_standards(config.standards_file),
        repo_context=repo_context,
    )
    analysis = parse_analysis(obtain_analysis_text(args, prompt, config), re_review=re_review)
    return analysis, diff, threads, details.head_sha


def post_fallback_notice(args: argparse.Namespace, error: str) -> None:
    if args.dry_run:
        return
    try:
        post_pr_comment(repo=args.repo, pr_number=args.pr, body=fallback_body(error))
    except (CommentPermissionError, TransientGitHubError, subprocess.CalledProcessError, OSError) as exc:
        log.warn(f"Failed to post error comment: {exc}")


def print_dry_run(outcome: ReconciliationOutcome) -> None:
    print(
        json.dumps(
            {
                "verdict": outcome.verdict,
                "partitions": outcome.partition_keys(),
                "transitions": outcome.transitions,
                "effects": [effect_to_dict(e) for e in outcome.effects],
            },
            indent=2,
            ensure_ascii=False,
        )
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if not args.repo or args.pr <= 0:
        log.error("--repo and --pr (or GITHUB_REPOSITORY and PR_NUMBER) are required")
        return 2

    try:
        config = load_checker_config(args.config)
    except ConfigError as exc:
        log.error(f"Invalid configuration: {exc}")
        return 2

    log.info(f"🔍 Checking PR #{args.pr} against team standards...")
    try:
        analysis, diff, threads, head_sha = gather(args, config)
    except FATAL_ERRORS as exc:
        detail = getattr(exc, "stderr", None) or str(exc)
        log.error(f"Error during PR standards check: {detail}")
        post_fallback_notice(args, str(detail))
        if args.github_output:
            write_github_outputs(Path(args.github_output), FAILED_OUTPUTS)
        return 1

    outcome = reconcile(analysis, resolve_anchors(diff), threads, config, head_sha=head_sha)
    if analysis.status != outcome.verdict:
        log.warn(f"Model status {analysis.status} disagrees with findings; using {outcome.verdict}.")
    log.info(
        f"  ✓ {len(outcome.new)} inline, {len(outcome.unplaceable)} in summary, "
        f"{len(outcome.persisting)} persisting, {len(outcome.resolved)} resolved, "
        f"{len(outcome.accepted)} accepted"
    )

    if args.dry_run:
        print_dry_run(outcome)
    else:
        log.info("💬 Applying review effects...")
        client = GitHubReviewClient(
            repo=args.repo, pr_number=args.pr, commit_id=head_sha, notes_marker=NOTES_MARKER
        )
        report = apply_effects(outcome.effects, client)
        if report.failed:
            log.warn(f"{len(report.failed)} of {len(outcome.effects)} effect(s) failed; see warnings above.")

    summary = RunSummary.from_outcome(outcome)
    if args.github_output:
        write_github_outputs(Path(args.github_output), summary.as_outputs())
    for line in console_lines(summary):
        log.info(line)

    if summary.blocked and config.failure_mode == "fail":
        log.error("PR does not meet quality standards - must-fix issues have to be resolved")
        return 1
    if summary.blocked:
        log.notice("Pipeline continues (failure-mode: label)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
