"""Property-based tests.

Uses hypothesis to verify algorithmic properties hold for many inputs.
"""

import re
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from hypothesis import given, settings, strategies as st

from commit_story.config import CommitStoryConfig
from commit_story.context import apply_token_budget, estimate_tokens
from commit_story.journal import JournalManager, format_time_label, resolve_timezone
from commit_story.models import ChatMessage, MessageRole, error_marker, has_error_marker

ZONES = ["UTC", "America/New_York", "America/Los_Angeles", "Europe/Berlin", "Asia/Tokyo", "Asia/Kolkata"]
LABEL = re.compile(r"^\d{1,2}:\d{2}:\d{2} (AM|PM) \S+$")

utc_datetimes = st.datetimes(
    min_value=datetime(2020, 1, 1),
    max_value=datetime(2035, 12, 31),
    timezones=st.just(timezone.utc),
)


def make_temp_manager(zone):
    """Create a fresh manager with temp directory for each hypothesis example."""
    tmpdir = Path(tempfile.mkdtemp())
    return JournalManager(CommitStoryConfig(repo_path=tmpdir, timezone=zone)), tmpdir


class TestErrorMarkerProperties:
    """Property-based tests for section failure markers."""

    @given(reason=st.text(max_size=200))
    def test_marker_always_detected(self, reason):
        """Any failure reason yields a detectable marker."""
        marker = error_marker(reason)
        assert has_error_marker(marker)
        assert marker.startswith("[Section generation failed: ")
        assert marker.endswith("]")
        assert marker.count("]") == 1

    @given(text=st.text(alphabet=st.characters(blacklist_characters="["), max_size=200))
    def test_plain_text_not_flagged(self, text):
        assert not has_error_marker(text)


class TestTokenEstimateProperties:
    """Property-based tests for estimate_tokens."""

    @given(text=st.text(max_size=500))
    def test_four_chars_per_token(self, text):
        tokens = estimate_tokens(text)
        assert tokens * 4 >= len(text)
        assert tokens * 4 < len(text) + 4


chat_messages = st.lists(
    st.tuples(st.sampled_from(["user", "assistant"]), st.text(min_size=1, max_size=3000)),
    max_size=12,
)


def to_messages(pairs):
    base = datetime(2026, 1, 15, tzinfo=timezone.utc)
    return [
        ChatMessage(role=MessageRole(role), text=text, timestamp=base + timedelta(seconds=i))
        for i, (role, text) in enumerate(pairs)
    ]


class TestTokenBudgetProperties:
    """Property-based tests for apply_token_budget."""

    @given(pairs=chat_messages, diff=st.text(max_size=8000), max_tokens=st.integers(min_value=5, max_value=3000))
    @settings(max_examples=60)
    def test_result_fits_budget(self, pairs, diff, max_tokens):
        """The reduced context always fits."""
        result = apply_token_budget(diff, to_messages(pairs), max_tokens)
        total = estimate_tokens(result.diff) + sum(estimate_tokens(m.text) for m in result.messages)
        assert total <= max_tokens

    @given(pairs=chat_messages, diff=st.text(max_size=8000), max_tokens=st.integers(min_value=5, max_value=3000))
    @settings(max_examples=60)
    def test_user_messages_outlast_assistant(self, pairs, diff, max_tokens):
        """User messages are only dropped once no assistant messages remain."""
        result = apply_token_budget(diff, to_messages(pairs), max_tokens)
        if result.user_dropped:
            assert all(m.is_user for m in result.messages)

    @given(pairs=chat_messages, max_tokens=st.integers(min_value=5, max_value=3000))
    @settings(max_examples=60)
    def test_order_preserved(self, pairs, max_tokens):
        """Kept messages stay in chronological order."""
        result = apply_token_budget("", to_messages(pairs), max_tokens)
        stamps = [m.timestamp for m in result.messages]
        assert stamps == sorted(stamps)

    @given(pairs=chat_messages, diff=st.text(max_size=500))
    def test_no_reduction_when_under_budget(self, pairs, diff):
        messages = to_messages(pairs)
        needed = estimate_tokens(diff) + sum(estimate_tokens(m.text) for m in messages)
        result = apply_token_budget(diff, messages, needed)
        assert result.reduced is False
        assert result.messages == messages


class TestTimeLabelProperties:
    """Property-based tests for header time labels."""

    @given(dt=utc_datetimes, zone=st.sampled_from(ZONES))
    def test_label_format(self, dt, zone):
        assert LABEL.match(format_time_label(dt, resolve_timezone(zone)))

    @given(dt=utc_datetimes)
    def test_legacy_label_round_trip(self, dt):
        """A UTC header label read back on its own date gives the same instant."""
        manager, tmpdir = make_temp_manager("UTC")
        try:
            label = format_time_label(dt, manager.tz)
            parsed = manager._legacy_timestamp(dt.date(), label)
            assert parsed == dt.replace(microsecond=0)
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)


class TestReflectionDiscoveryProperties:
    """Reflections are found by UTC window regardless of timezone."""

    @given(
        written=utc_datetimes,
        writer_zone=st.sampled_from(ZONES),
        reader_zone=st.sampled_from(ZONES),
        before=st.integers(min_value=1, max_value=36 * 60),
        after=st.integers(min_value=0, max_value=36 * 60),
    )
    @settings(max_examples=40, deadline=None)
    def test_found_inside_window(self, written, writer_zone, reader_zone, before, after):
        writer, tmpdir = make_temp_manager(writer_zone)
        try:
            writer.add_reflection("window note", written)
            reader = JournalManager(CommitStoryConfig(repo_path=tmpdir, timezone=reader_zone))

            start = written - timedelta(minutes=before)
            end = written + timedelta(minutes=after)
            found = reader.discover_reflections(start, end)
            assert [r.text for r in found] == ["window note"]

            assert reader.discover_reflections(start - timedelta(hours=2), written - timedelta(seconds=1)) == []
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)
