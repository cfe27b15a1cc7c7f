"""Import helpers and shared fixtures."""
import importlib.util
import sys
from pathlib import Path

import pytest

SCRIPTS_DIR = Path(__file__).parent.parent / "scripts"

# Add scripts/ to sys.path so check-pr-standards.py can import standards_check.
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

from standards_check.config import CheckerConfig  # noqa: E402
from standards_check.threads import FINDING_MARKER, Thread, ThreadComment  # noqa: E402

BOT = "github-actions[bot]"


def _import_script(name: str, filename: str):
    """Import a script file as a module using importlib."""
    spec = importlib.util.spec_from_file_location(name, SCRIPTS_DIR / filename)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


check_pr_standards = _import_script("check_pr_standards", "check-pr-standards.py")


def make_thread(
    thread_id: str,
    title: str,
    path: str = "src/app.ts",
    line: int | None = 10,
    *,
    replies: list[tuple[str, str]] | None = None,
    priority_icon: str = "🔴",
) -> Thread:
    comments = [ThreadComment(BOT, f"{FINDING_MARKER}\n{priority_icon} **{title}**\n\nDetails.")]
    comments.extend(ThreadComment(author, body) for author, body in replies or [])
    return Thread(
        id=thread_id,
        path=path,
        line=line,
        original_title=title,
        comments=comments,
        bot_logins=frozenset(CheckerConfig().bot_logins),
    )


def raw_thread(
    thread_id: str,
    title: str,
    path: str = "src/app.ts",
    line: int | None = 10,
    *,
    author: str = BOT,
    resolved: bool = False,
    replies: list[tuple[str, str]] | None = None,
) -> dict:
    """A reviewThreads node as returned by the GraphQL API."""
    nodes = [{"author": {"login": author}, "body": f"{FINDING_MARKER}\n🔴 **{title}**\n\nDetails.", "path": path}]
    nodes.extend({"author": {"login": a}, "body": b} for a, b in replies or [])
    return {
        "id": thread_id,
        "isResolved": resolved,
        "path": path,
        "line": line,
        "comments": {"nodes": nodes},
    }


@pytest.fixture
def config() -> CheckerConfig:
    return CheckerConfig()


@pytest.fixture
def label_config() -> CheckerConfig:
    return CheckerConfig(failure_mode="label")
