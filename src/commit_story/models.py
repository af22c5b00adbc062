"""Data models for commits, chat messages, reflections, and journal entries."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

ERROR_MARKER_PREFIX = "[Section generation failed:"
ERROR_MARKER_PATTERN = re.compile(r"\[Section generation failed: [^\]]*\]")
ENTRY_SEPARATOR = "═══════════════════════════════════════"


class ContentOrigin(Enum):
    """Provenance of a piece of diff content."""
    EXTERNAL = "external"    # Developer's own code and docs
    GENERATED = "generated"  # Journal entries written by this tool
    MANUAL = "manual"        # Reflections and context captures
    IGNORED = "ignored"      # Matched by .commitstoryignore


class MessageRole(Enum):
    """Author of a chat message."""
    USER = "user"
    ASSISTANT = "assistant"


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Normalize a datetime to UTC. Naive values are assumed to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 in UTC."""
    return to_utc(dt).isoformat(timespec="milliseconds")


def parse_timestamp(s: str) -> datetime:
    """Parse an ISO 8601 timestamp string into an aware UTC datetime.

    Accepts the trailing ``Z`` that Claude Code session logs use.
    """
    s = s.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(s))


def error_marker(reason: str) -> str:
    """Inline marker written in place of a section that failed to generate."""
    reason = " ".join(str(reason).split()).replace("]", ")")
    return f"{ERROR_MARKER_PREFIX} {reason or 'unknown error'}]"


def has_error_marker(text: Optional[str]) -> bool:
    return bool(text) and ERROR_MARKER_PATTERN.search(text) is not None


@dataclass(frozen=True)
class CommitRef:
    """Minimal reference to a commit: hash and time."""
    hash: str
    timestamp: datetime


@dataclass(frozen=True)
class Commit:
    """A commit read from git. Immutable once collected."""
    hash: str
    message: str
    author_name: str
    timestamp: datetime
    diff: str
    parent_hashes: tuple[str, ...] = ()
    previous: Optional[CommitRef] = None

    @property
    def short_hash(self) -> str:
        return self.hash[:8]

    @property
    def subject(self) -> str:
        """First line of the commit message."""
        return self.message.split("\n", 1)[0].strip()

    @property
    def is_merge(self) -> bool:
        return len(self.parent_hashes) >= 2


@dataclass(frozen=True)
class FileDiff:
    """Diff text for a single file, tagged with its provenance."""
    path: str
    text: str
    origin: ContentOrigin = ContentOrigin.EXTERNAL


@dataclass(frozen=True)
class ChatMessage:
    """A message from a Claude Code session log."""
    role: MessageRole
    text: str
    timestamp: datetime
    session_id: Optional[str] = None
    cwd: Optional[str] = None
    tool_names: tuple[str, ...] = ()

    @property
    def is_user(self) -> bool:
        return self.role == MessageRole.USER

    def to_dict(self) -> dict:
        """Shape sent to the LLM."""
        return {
            "type": self.role.value,
            "content": self.text,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class ChatSession:
    """Chat messages that share a session id, in chronological order."""
    session_id: Optional[str]
    messages: list[ChatMessage] = field(default_factory=list)

    @property
    def start_time(self) -> Optional[datetime]:
        return self.messages[0].timestamp if self.messages else None

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass
class ChatMetadata:
    """Counts describing the chat portion of a commit context."""
    total_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    user_messages_over_twenty_chars: int = 0
    session_count: int = 0

    @classmethod
    def from_sessions(cls, sessions: list[ChatSession]) -> "ChatMetadata":
        meta = cls(session_count=len(sessions))
        for session in sessions:
            for msg in session.messages:
                meta.total_messages += 1
                if msg.is_user:
                    meta.user_messages += 1
                    if len(msg.text) >= 20:
                        meta.user_messages_over_twenty_chars += 1
                else:
                    meta.assistant_messages += 1
        return meta


@dataclass(frozen=True)
class Reflection:
    """A developer-authored note captured outside the commit flow."""
    text: str
    timestamp: datetime
    timezone: str = "UTC"
    time_label: Optional[str] = None  # Header label as rendered in the file


@dataclass(frozen=True)
class ContextCapture:
    """An AI-authored working-memory snapshot."""
    text: str
    timestamp: datetime
    timezone: str = "UTC"
    session_id: Optional[str] = None
    time_label: Optional[str] = None


@dataclass
class JournalSections:
    """Generated content for one journal entry."""
    summary: str
    dialogue: str
    technical_decisions: str
    commit_details: str

    def failed_sections(self) -> list[str]:
        """Names of sections that carry an inline error marker."""
        failed = []
        for name in ("summary", "dialogue", "technical_decisions"):
            if has_error_marker(getattr(self, name)):
                failed.append(name)
        return failed


@dataclass
class JournalEntry:
    """A journal entry as read back from a daily entries file."""
    commit_hash: str
    short_hash: str
    subject: str
    timestamp: Optional[datetime]
    time_label: str
    body: str

    @property
    def has_errors(self) -> bool:
        return has_error_marker(self.body)
