"""Tests for Claude Code chat collection."""

import json
from datetime import timedelta

from commit_story import chat_collector
from commit_story.chat_collector import ChatCollector, chat_timestamp, extract_text, group_by_session, parse_record
from commit_story.models import MessageRole

from conftest import BASE_TIME, chat_record, write_chat


class TestExtractText:
    """Tests for extract_text."""

    def test_plain_string(self):
        assert extract_text("  hello  ") == ("hello", ())

    def test_typed_items(self):
        """Text items are joined; tool uses contribute names; results are dropped."""
        content = [
            {"type": "text", "text": "Running tests"},
            {"type": "tool_use", "name": "Bash", "input": {"command": "pytest"}},
            {"type": "tool_result", "content": "3 passed"},
            {"type": "text", "text": "All green"},
        ]
        text, tools = extract_text(content)
        assert text == "Running tests\nAll green"
        assert tools == ("Bash",)

    def test_unexpected_shape(self):
        assert extract_text(None) == ("", ())


class TestParseRecord:
    """Tests for parse_record."""

    def test_user_message(self, temp_project):
        msg = parse_record(chat_record("user", "Fix the login bug please", BASE_TIME, temp_project))
        assert msg.role == MessageRole.USER
        assert msg.text == "Fix the login bug please"
        assert msg.timestamp == BASE_TIME
        assert msg.session_id == "session-1"

    def test_skips_non_chat_records(self, temp_project):
        """Summaries and meta records are not chat."""
        record = chat_record("user", "x", BASE_TIME, temp_project)
        assert parse_record({**record, "type": "summary"}) is None
        assert parse_record({**record, "isMeta": True}) is None

    def test_skips_bad_timestamp(self, temp_project):
        record = chat_record("user", "hello there", BASE_TIME, temp_project)
        assert parse_record({**record, "timestamp": "yesterday"}) is None
        assert chat_timestamp({**record, "timestamp": "yesterday"}) is None
        assert chat_timestamp(record) == BASE_TIME

    def test_redacts_text(self, temp_project):
        """Secrets never leave the collector."""
        msg = parse_record(chat_record("user", "my email is a.b@example.com", BASE_TIME, temp_project))
        assert "a.b@example.com" not in msg.text


class TestGroupBySession:
    """Tests for group_by_session."""

    def test_groups_and_orders(self, temp_project):
        """Sessions are ordered by their first message."""
        records = [
            chat_record("user", "second session", BASE_TIME + timedelta(minutes=5), temp_project, "b"),
            chat_record("user", "first session", BASE_TIME, temp_project, "a"),
            chat_record("assistant", "reply", BASE_TIME + timedelta(minutes=1), temp_project, "a"),
        ]
        sessions = group_by_session([parse_record(r) for r in records])
        assert [s.session_id for s in sessions] == ["a", "b"]
        assert sessions[0].message_count == 2
        assert sessions[0].start_time == BASE_TIME


class TestChatCollector:
    """Tests for ChatCollector.collect."""

    def test_collects_window_for_repo(self, config):
        """Only messages for this repo inside the window are returned."""
        repo = config.repo_path
        write_chat(config, [
            chat_record("user", "before the window", BASE_TIME - timedelta(hours=3), repo),
            chat_record("user", "inside the window", BASE_TIME - timedelta(minutes=10), repo),
            chat_record("user", "other project", BASE_TIME - timedelta(minutes=5), repo.parent / "other"),
            chat_record("user", "after the commit", BASE_TIME + timedelta(minutes=1), repo),
        ])
        sessions = ChatCollector(config).collect(BASE_TIME - timedelta(hours=1), BASE_TIME)
        texts = [m.text for s in sessions for m in s.messages]
        assert texts == ["inside the window"]

    def test_window_is_inclusive(self, config):
        """Messages exactly on the boundaries are included."""
        repo = config.repo_path
        start = BASE_TIME - timedelta(hours=1)
        write_chat(config, [
            chat_record("user", "at start", start, repo),
            chat_record("user", "at end", BASE_TIME, repo),
        ])
        sessions = ChatCollector(config).collect(start, BASE_TIME)
        assert sum(s.message_count for s in sessions) == 2

    def test_no_start_uses_24_hours(self, config):
        """First commit looks back one day."""
        repo = config.repo_path
        write_chat(config, [
            chat_record("user", "yesterday morning", BASE_TIME - timedelta(hours=23), repo),
            chat_record("user", "two days ago", BASE_TIME - timedelta(hours=48), repo),
        ])
        sessions = ChatCollector(config).collect(None, BASE_TIME)
        texts = [m.text for s in sessions for m in s.messages]
        assert texts == ["yesterday morning"]

    def test_malformed_lines_skipped(self, config):
        """Broken JSON lines do not stop collection."""
        path = write_chat(config, [chat_record("user", "valid message", BASE_TIME, config.repo_path)])
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n")
            f.write(json.dumps(["not", "a", "dict"]) + "\n")
        sessions = ChatCollector(config).collect(BASE_TIME - timedelta(hours=1), BASE_TIME)
        assert sum(s.message_count for s in sessions) == 1

    def test_redacts_only_kept_messages(self, config, monkeypatch):
        """Records from other projects or outside the window are never redacted."""
        repo = config.repo_path
        write_chat(config, [
            chat_record("user", f"old note {i}", BASE_TIME - timedelta(days=30), repo.parent / "other")
            for i in range(50)
        ] + [
            chat_record("user", "stale for this repo", BASE_TIME - timedelta(days=30), repo),
            chat_record("user", "kept message", BASE_TIME - timedelta(minutes=5), repo),
        ])
        redacted = []

        def counting(text):
            redacted.append(text)
            return text

        monkeypatch.setattr(chat_collector, "redact_sensitive_data", counting)
        sessions = ChatCollector(config).collect(BASE_TIME - timedelta(hours=1), BASE_TIME)

        assert redacted == ["kept message"]
        assert sum(s.message_count for s in sessions) == 1

    def test_each_cwd_resolved_once(self, config, monkeypatch):
        repo = config.repo_path
        write_chat(config, [
            chat_record("user", f"note {i}", BASE_TIME - timedelta(minutes=i + 1), repo.parent / "other")
            for i in range(20)
        ] + [chat_record("user", "mine", BASE_TIME - timedelta(minutes=1), repo)])
        seen = []
        original = chat_collector._same_path

        def counting(cwd, resolved):
            seen.append(cwd)
            return original(cwd, resolved)

        monkeypatch.setattr(chat_collector, "_same_path", counting)
        ChatCollector(config).collect(BASE_TIME - timedelta(hours=1), BASE_TIME)

        assert sorted(seen) == sorted([str(repo.parent / "other"), str(repo)])

    def test_missing_projects_dir(self, config):
        """No Claude directory means no messages, not an error."""
        assert ChatCollector(config).collect(None, BASE_TIME) == []


class TestDetectCurrentSession:
    """Tests for detect_current_session."""

    def test_most_recent_session(self, config):
        repo = config.repo_path
        write_chat(config, [
            chat_record("user", "older", BASE_TIME - timedelta(seconds=20), repo, "old-session"),
            chat_record("user", "newest", BASE_TIME - timedelta(seconds=2), repo, "live-session"),
        ])
        assert ChatCollector(config).detect_current_session(now=BASE_TIME) == "live-session"

    def test_nothing_recent(self, config):
        write_chat(config, [chat_record("user", "stale", BASE_TIME - timedelta(minutes=5), config.repo_path)])
        assert ChatCollector(config).detect_current_session(now=BASE_TIME) is None
