"""Journal file management.

Layout under ``<repo>/journal/``::

    entries/YYYY-MM/YYYY-MM-DD.md       generated, one block per commit
    reflections/YYYY-MM/YYYY-MM-DD.md   developer notes, append-only
    context/YYYY-MM/YYYY-MM-DD.md       AI context captures, append-only

Every block starts with a ``## <local time>`` header, carries a
``**Timestamp**`` line in UTC, and ends with a separator line. Window
comparisons always use the UTC timestamp; the local-time header is for
readers only.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import telemetry
from .config import CommitStoryConfig
from .errors import JournalWriteError
from .locking import append_text, atomic_write_text, file_lock
from .models import (
    ENTRY_SEPARATOR,
    Commit,
    ContextCapture,
    JournalEntry,
    JournalSections,
    Reflection,
    format_timestamp,
    parse_timestamp,
    to_utc,
    utc_now,
)

MAX_REFLECTION_CHARS = 10_000
MAX_CONTEXT_CHARS = 50_000
DEFAULT_REFLECTION_WINDOW = timedelta(hours=24)

_ENTRY_HEADER = re.compile(r"^## (?P<label>.+?) - Commit: (?P<short>[0-9a-f]+) - (?P<subject>.*)$", re.MULTILINE)
_COMMIT_LINE = re.compile(r"^\*\*Commit\*\*:\s*([0-9a-f]+)\s*$", re.MULTILINE)
_TIMESTAMP_LINE = re.compile(r"^\*\*Timestamp\*\*:\s*(.+?)\s*$")
_NOTE_HEADER = re.compile(r"^## (?P<label>.+?)(?: - Session: (?P<session>\S+))?\s*$")
_LEGACY_TIME = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2}) (AM|PM)\b")


def resolve_timezone(name: str) -> tzinfo:
    """ZoneInfo for an IANA name, falling back to the system local zone."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return datetime.now().astimezone().tzinfo


def format_time_label(dt: datetime, tz: tzinfo) -> str:
    """Render ``9:36:37 PM EDT`` style header labels."""
    local = to_utc(dt).astimezone(tz)
    hour = local.hour % 12 or 12
    return f"{hour}:{local:%M:%S} {local:%p} {local.tzname()}"


def _as_datetime(value: Union[str, datetime, None]) -> datetime:
    if value is None:
        return utc_now()
    if isinstance(value, datetime):
        return to_utc(value)
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise ValueError(
            f"Invalid timestamp format: {value!r}. Use ISO 8601 (e.g. \"2025-09-22T10:30:00Z\")"
        ) from e


def _validate_text(text: str, limit: int, what: str) -> str:
    if not isinstance(text, str):
        raise ValueError(f"{what} text must be a string")
    text = text.strip()
    if not text:
        raise ValueError(f"{what} text cannot be empty")
    if len(text) > limit:
        raise ValueError(f"{what} too long: maximum {limit:,} characters allowed")
    return text


@dataclass
class SaveResult:
    """Outcome of writing a journal entry."""
    path: Path
    created: bool           # False when the commit already had an entry
    replaced: bool = False


class JournalManager:
    """Reads and writes the journal tree for one repository."""

    def __init__(self, config: CommitStoryConfig):
        self.config = config
        self.tz = resolve_timezone(config.timezone)
        self.log = telemetry.narrative_logger("journal.manager")

    # ========== Paths ==========

    def _day_path(self, kind: str, day: date) -> Path:
        return self.config.get_journal_path() / kind / f"{day:%Y-%m}" / f"{day:%Y-%m-%d}.md"

    def local_date(self, when: datetime) -> date:
        return to_utc(when).astimezone(self.tz).date()

    def entry_path(self, when: datetime) -> Path:
        """Entries file for the day of ``when`` in the configured timezone."""
        return self._day_path("entries", self.local_date(when))

    def reflection_path(self, when: datetime) -> Path:
        return self._day_path("reflections", self.local_date(when))

    def context_path(self, when: datetime) -> Path:
        return self._day_path("context", self.local_date(when))

    def _days_around(self, start: datetime, end: datetime) -> list[date]:
        """Calendar days that can hold notes written between start and end.

        Pads one day each side because a note's file is named by the local
        date of whatever timezone the writer was in.
        """
        first = to_utc(start).date() - timedelta(days=1)
        last = to_utc(end).date() + timedelta(days=1)
        return [first + timedelta(days=i) for i in range((last - first).days + 1)]

    # ========== Entries ==========

    def format_entry(
        self,
        commit: Commit,
        sections: JournalSections,
        reflections: Optional[list[Reflection]] = None,
    ) -> str:
        """Render the markdown block for one commit."""
        short = commit.short_hash
        lines = [
            "",
            "",
            f"## {format_time_label(commit.timestamp, self.tz)} - Commit: {short} - {commit.subject}",
            "",
            f"**Commit**: {commit.hash}",
            f"**Timestamp**: {format_timestamp(commit.timestamp)}",
            "",
            f"### Summary - {short}",
            "",
            sections.summary,
            "",
            f"### Development Dialogue - {short}",
            "",
            sections.dialogue,
            "",
            f"### Technical Decisions - {short}",
            "",
            sections.technical_decisions,
            "",
        ]

        if reflections:
            lines.extend([f"### Developer Reflections - {short}", ""])
            for reflection in reflections:
                label = reflection.time_label or format_time_label(reflection.timestamp, self.tz)
                lines.extend([f"**{label}**", "", reflection.text, ""])

        lines.extend([
            f"### Commit Details - {short}",
            "",
            sections.commit_details,
            "",
            ENTRY_SEPARATOR,
            "",
            "",
        ])
        return "\n".join(lines)

    def _split_blocks(self, content: str) -> list[str]:
        return [b for b in content.split(ENTRY_SEPARATOR) if b.strip()]

    def _find_entry_block(self, content: str, commit_hash: str) -> Optional[str]:
        for block in self._split_blocks(content):
            match = _COMMIT_LINE.search(block)
            if match and match.group(1) == commit_hash:
                return block
        return None

    def find_entry_file(self, commit_hash: str, when: datetime) -> Optional[Path]:
        """Entries file that already holds this commit, if any.

        Checks neighbouring days too, since the configured timezone may have
        changed since the entry was written.
        """
        for day in self._days_around(when, when):
            path = self._day_path("entries", day)
            if path.exists() and self._find_entry_block(path.read_text(encoding="utf-8"), commit_hash):
                return path
        return None

    def has_entry(self, commit_hash: str, when: datetime) -> bool:
        return self.find_entry_file(commit_hash, when) is not None

    def save_entry(
        self,
        commit: Commit,
        sections: JournalSections,
        reflections: Optional[list[Reflection]] = None,
        replace_existing: bool = False,
    ) -> SaveResult:
        """Append an entry to the commit's daily file.

        An existing entry for the same commit is left alone unless
        ``replace_existing`` is set, which rewrites that block in place.

        Raises:
            JournalWriteError: If the file cannot be written.
        """
        started = time.monotonic()
        with telemetry.span(f"{telemetry.NAMESPACE}.journal.save", {
            f"{telemetry.NAMESPACE}.commit.hash": commit.hash,
            f"{telemetry.NAMESPACE}.commit.message": commit.subject,
        }) as current:
            self.log.start(f"Saving journal entry for commit {commit.short_hash}")
            formatted = self.format_entry(commit, sections, reflections)

            existing = self.find_entry_file(commit.hash, commit.timestamp)
            if existing is not None and not replace_existing:
                self.log.decision(f"Entry for {commit.short_hash} already exists in {existing.name}")
                return SaveResult(path=existing, created=False)

            path = existing or self.entry_path(commit.timestamp)
            try:
                # Check again under the lock; a concurrent run may have written it
                with file_lock(path):
                    content = path.read_text(encoding="utf-8") if path.exists() else ""
                    block = self._find_entry_block(content, commit.hash)
                    if block is not None and not replace_existing:
                        self.log.decision(f"Entry for {commit.short_hash} already exists in {path.name}")
                        return SaveResult(path=path, created=False)
                    if block is not None:
                        new_block = formatted.replace(ENTRY_SEPARATOR, "").rstrip() + "\n\n"
                        atomic_write_text(path, content.replace(block, new_block, 1))
                    else:
                        append_text(path, formatted)
            except OSError as e:
                raise JournalWriteError(f"Cannot write journal entry: {e}") from e

            if block is not None:
                self.log.complete(f"Replaced entry for {commit.short_hash} in {path.name}")
                return SaveResult(path=path, created=False, replaced=True)

            duration_ms = int((time.monotonic() - started) * 1000)
            telemetry.set_attributes(current, {
                f"{telemetry.NAMESPACE}.journal.file_path": str(path),
                f"{telemetry.NAMESPACE}.journal.entry_size": len(formatted),
                f"{telemetry.NAMESPACE}.journal.write_duration_ms": duration_ms,
            })
            telemetry.gauge(f"{telemetry.NAMESPACE}.journal.entry_size", len(formatted))
            telemetry.histogram(f"{telemetry.NAMESPACE}.journal.write_duration_ms", duration_ms)
            telemetry.counter(f"{telemetry.NAMESPACE}.journal.entries_saved")
            self.log.complete(f"Journal entry saved to {path.name}")
            return SaveResult(path=path, created=True)

    def replace_entry(
        self,
        commit: Commit,
        sections: JournalSections,
        reflections: Optional[list[Reflection]] = None,
    ) -> SaveResult:
        """Rewrite an existing entry in place, or append it if there is none."""
        return self.save_entry(commit, sections, reflections, replace_existing=True)

    def _parse_entry_block(self, block: str) -> Optional[JournalEntry]:
        header = _ENTRY_HEADER.search(block)
        commit_line = _COMMIT_LINE.search(block)
        if header is None or commit_line is None:
            return None

        timestamp = None
        for line in block.splitlines():
            match = _TIMESTAMP_LINE.match(line)
            if match:
                try:
                    timestamp = parse_timestamp(match.group(1))
                except ValueError:
                    pass
                break

        return JournalEntry(
            commit_hash=commit_line.group(1),
            short_hash=header.group("short"),
            subject=header.group("subject"),
            timestamp=timestamp,
            time_label=header.group("label"),
            body=block.strip(),
        )

    def read_entries(self, day: Optional[Union[str, date]] = None) -> list[JournalEntry]:
        """Entries for one day (``YYYY-MM-DD``) or for the whole journal."""
        if day is not None:
            if isinstance(day, str):
                day = date.fromisoformat(day)
            files = [self._day_path("entries", day)]
        else:
            files = sorted(self.config.get_entries_path().glob("*/*.md"))

        entries = []
        for path in files:
            if not path.exists():
                continue
            for block in self._split_blocks(path.read_text(encoding="utf-8")):
                entry = self._parse_entry_block(block)
                if entry is not None:
                    entries.append(entry)
        return entries

    def entries_with_errors(self) -> list[JournalEntry]:
        """Entries containing a section generation failure marker."""
        return [e for e in self.read_entries() if e.has_errors]

    # ========== Reflections and context captures ==========

    def _note_block(self, header: str, timestamp: datetime, text: str) -> str:
        return "\n".join([
            header,
            f"**Timestamp**: {format_timestamp(timestamp)}",
            "",
            text,
            "",
            ENTRY_SEPARATOR,
            "",
            "",
        ])

    def add_reflection(self, text: str, timestamp: Union[str, datetime, None] = None) -> tuple[Reflection, Path]:
        """Append a developer reflection to its day file.

        Raises:
            ValueError: If text is empty or too long, or timestamp is invalid.
        """
        text = _validate_text(text, MAX_REFLECTION_CHARS, "Reflection")
        when = _as_datetime(timestamp)
        label = format_time_label(when, self.tz)
        path = self.reflection_path(when)

        with telemetry.span(f"{telemetry.NAMESPACE}.journal.add_reflection", {
            f"{telemetry.NAMESPACE}.reflection.length": len(text),
        }):
            with file_lock(path):
                created = append_text(path, self._note_block(f"## {label}", when, text))
            telemetry.counter(f"{telemetry.NAMESPACE}.reflections.added", 1, {"file_created": created})

        self.log.complete(f"Reflection saved to {path.name}")
        reflection = Reflection(text=text, timestamp=when, timezone=self.config.timezone, time_label=label)
        return reflection, path

    def capture_context(
        self,
        text: str,
        session_id: Optional[str] = None,
        timestamp: Union[str, datetime, None] = None,
    ) -> tuple[ContextCapture, Path]:
        """Append an AI context capture to its day file.

        Raises:
            ValueError: If text is empty or too long, or timestamp is invalid.
        """
        text = _validate_text(text, MAX_CONTEXT_CHARS, "Context")
        when = _as_datetime(timestamp)
        label = format_time_label(when, self.tz)
        header = f"## {label}" + (f" - Session: {session_id}" if session_id else "")
        path = self.context_path(when)

        with telemetry.span(f"{telemetry.NAMESPACE}.journal.capture_context", {
            f"{telemetry.NAMESPACE}.context.length": len(text),
            f"{telemetry.NAMESPACE}.context.session_detected": session_id is not None,
        }):
            with file_lock(path):
                created = append_text(path, self._note_block(header, when, text))
            telemetry.counter(f"{telemetry.NAMESPACE}.context.captured", 1, {"file_created": created})

        capture = ContextCapture(
            text=text, timestamp=when, timezone=self.config.timezone,
            session_id=session_id, time_label=label,
        )
        return capture, path

    def _legacy_timestamp(self, day: date, label: str) -> Optional[datetime]:
        """Interpret an old ``h:mm:ss AM/PM TZ`` header on the file's date.

        Only used for notes written before the UTC timestamp line existed.
        """
        match = _LEGACY_TIME.match(label)
        if not match:
            return None
        hour, minute, second = int(match.group(1)), int(match.group(2)), int(match.group(3))
        if match.group(4) == "PM" and hour != 12:
            hour += 12
        elif match.group(4) == "AM" and hour == 12:
            hour = 0
        local = datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=self.tz)
        return to_utc(local)

    def _parse_notes(self, path: Path, day: date) -> list[tuple[datetime, str, Optional[str], str]]:
        """Parse a reflections or context file into (utc, label, session, text)."""
        notes = []
        for block in self._split_blocks(path.read_text(encoding="utf-8")):
            lines = block.strip("\n").splitlines()
            while lines and not lines[0].strip():
                lines.pop(0)
            if not lines:
                continue
            header = _NOTE_HEADER.match(lines[0])
            if header is None:
                continue

            body = lines[1:]
            timestamp = None
            if body:
                ts_match = _TIMESTAMP_LINE.match(body[0])
                if ts_match:
                    try:
                        timestamp = parse_timestamp(ts_match.group(1))
                    except ValueError:
                        timestamp = None
                    body = body[1:]
            if timestamp is None:
                timestamp = self._legacy_timestamp(day, header.group("label"))
            if timestamp is None:
                continue

            text = "\n".join(body).strip()
            if text:
                notes.append((timestamp, header.group("label"), header.group("session"), text))
        return notes

    def _discover(self, kind: str, start: Optional[datetime], end: datetime):
        end = to_utc(end)
        start = to_utc(start) if start is not None else end - DEFAULT_REFLECTION_WINDOW
        found = []
        for day in self._days_around(start, end):
            path = self._day_path(kind, day)
            if not path.exists():
                continue
            for note in self._parse_notes(path, day):
                if start <= note[0] <= end:
                    found.append(note)
        found.sort(key=lambda n: n[0])
        return found

    def discover_reflections(self, start: Optional[datetime], end: datetime) -> list[Reflection]:
        """Reflections whose UTC timestamp falls within ``[start, end]``.

        ``start`` of None means 24 hours before ``end`` (first commit).
        """
        return [
            Reflection(text=text, timestamp=ts, timezone=self.config.timezone, time_label=label)
            for ts, label, _session, text in self._discover("reflections", start, end)
        ]

    def discover_context_captures(self, start: Optional[datetime], end: datetime) -> list[ContextCapture]:
        """Context captures whose UTC timestamp falls within ``[start, end]``."""
        return [
            ContextCapture(
                text=text, timestamp=ts, timezone=self.config.timezone,
                session_id=session, time_label=label,
            )
            for ts, label, session, text in self._discover("context", start, end)
        ]
