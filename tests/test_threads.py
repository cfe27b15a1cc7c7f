from conftest import BOT, raw_thread

from standards_check.threads import (
    build_thread_index,
    extract_title,
    is_bot,
    normalize_login,
    parse_thread,
)

BOTS = ("github-actions", "github-actions[bot]")


class TestExtractTitle:
    def test_first_bold_span(self):
        body = "<!-- marker -->\n🔴 **SQL Injection Risk**\n\nUse **parameters**."
        assert extract_title(body) == "SQL Injection Risk"

    def test_reply_prefixes_are_stripped(self):
        assert extract_title("⏳ **Still open: Missing auth**") == "Missing auth"
        assert extract_title("✅ **Explanation accepted: Console log**") == "Console log"

    def test_no_bold(self):
        assert extract_title("plain text") == ""
        assert extract_title("") == ""


def test_login_normalization():
    assert normalize_login("GitHub-Actions[bot]") == "github-actions"
    assert is_bot("github-actions[bot]", ["github-actions"])
    assert not is_bot("octocat", BOTS)


class TestParseThread:
    def test_bot_thread(self):
        thread = parse_thread(raw_thread("T1", "Missing auth", "b/api.ts", 12), BOTS)
        assert thread is not None
        assert thread.id == "T1"
        assert thread.path == "api.ts"
        assert thread.line == 12
        assert thread.original_title == "Missing auth"
        assert thread.key == "missingauth"

    def test_resolved_thread_skipped(self):
        assert parse_thread(raw_thread("T1", "x", resolved=True), BOTS) is None

    def test_human_thread_skipped(self):
        assert parse_thread(raw_thread("T1", "x", author="octocat"), BOTS) is None

    def test_malformed_nodes_skipped(self):
        assert parse_thread({"isResolved": False}, BOTS) is None
        assert parse_thread({"id": "T1", "comments": {"nodes": []}}, BOTS) is None
        assert parse_thread("T1", BOTS) is None

    def test_outdated_thread_falls_back_to_original_line(self):
        raw = raw_thread("T1", "x", line=None)
        raw["comments"]["nodes"][0]["originalLine"] = 33
        assert parse_thread(raw, BOTS).line == 33

    def test_user_replies_exclude_bot_comments(self):
        raw = raw_thread(
            "T1",
            "x",
            replies=[("octocat", "This is intentional."), (BOT, "⏳ **Still open:** x")],
        )
        thread = parse_thread(raw, BOTS)
        assert [c.author for c in thread.user_replies] == ["octocat"]
        assert thread.last_comment.author == BOT


def test_build_thread_index_keeps_order_and_filters():
    raws = [
        raw_thread("T1", "a"),
        raw_thread("T2", "b", resolved=True),
        raw_thread("T3", "c", author="octocat"),
        raw_thread("T4", "d"),
    ]
    assert [t.id for t in build_thread_index(raws, BOTS)] == ["T1", "T4"]
