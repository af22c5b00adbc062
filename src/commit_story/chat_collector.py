"""Claude Code chat history collection.

Claude Code writes one JSONL file per session under
``~/.claude/projects/<encoded-project>/``. Each line is a record with
``type``, ``message``, ``timestamp`` (UTC, ``Z`` suffix), ``sessionId`` and
``cwd``. This module finds the records for one repository and one commit
window and groups them by session.
"""

from __future__ import annotations

import json
import os
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from . import telemetry
from .config import CommitStoryConfig
from .models import ChatMessage, ChatSession, MessageRole, parse_timestamp, to_utc, utc_now
from .redaction import redact_sensitive_data

DEFAULT_WINDOW = timedelta(hours=24)
SESSION_DETECTION_SECONDS = 30


def _normalize_path(path: str) -> str:
    return os.path.normcase(os.path.normpath(path))


def _same_path(a: str, resolved: Path) -> bool:
    """Whether ``a`` names the already-resolved directory ``resolved``."""
    if _normalize_path(a) == _normalize_path(str(resolved)):
        return True
    try:
        return Path(a).resolve() == resolved
    except OSError:
        return False


def extract_text(content: Any) -> tuple[str, tuple[str, ...]]:
    """Flatten a message's content into text and tool-use names.

    Content is either a plain string or a list of typed items. Only ``text``
    items contribute text; ``tool_use`` items contribute their names; tool
    results and thinking blocks are dropped.
    """
    if isinstance(content, str):
        return content.strip(), ()
    if not isinstance(content, list):
        return "", ()

    texts = []
    tools = []
    for item in content:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "text" and isinstance(item.get("text"), str):
            texts.append(item["text"].strip())
        elif item.get("type") == "tool_use" and item.get("name"):
            tools.append(str(item["name"]))
    return "\n".join(t for t in texts if t), tuple(tools)


def chat_timestamp(record: dict[str, Any]) -> Optional[datetime]:
    """Timestamp of a user or assistant record, or None if it is not chat."""
    if record.get("type") not in ("user", "assistant") or record.get("isMeta"):
        return None
    raw_ts = record.get("timestamp")
    if not isinstance(raw_ts, str):
        return None
    try:
        return parse_timestamp(raw_ts)
    except ValueError:
        return None


def parse_record(record: dict[str, Any]) -> Optional[ChatMessage]:
    """Convert one JSONL record into a ChatMessage, or None if it is not chat."""
    timestamp = chat_timestamp(record)
    if timestamp is None:
        return None

    message = record.get("message") or {}
    content = message.get("content") if isinstance(message, dict) else message
    text, tool_names = extract_text(content)
    if not text and not tool_names:
        return None

    return ChatMessage(
        role=MessageRole(record["type"]),
        text=redact_sensitive_data(text),
        timestamp=timestamp,
        session_id=record.get("sessionId"),
        cwd=record.get("cwd"),
        tool_names=tool_names,
    )


def group_by_session(messages: list[ChatMessage]) -> list[ChatSession]:
    """Group chronologically sorted messages by session, ordered by first message."""
    sessions: dict[Optional[str], ChatSession] = {}
    for msg in sorted(messages, key=lambda m: m.timestamp):
        if msg.session_id not in sessions:
            sessions[msg.session_id] = ChatSession(session_id=msg.session_id)
        sessions[msg.session_id].messages.append(msg)
    return list(sessions.values())


class ChatCollector:
    """Collects chat messages for the repository in ``config.repo_path``."""

    def __init__(self, config: CommitStoryConfig):
        self.config = config
        self.log = telemetry.narrative_logger("claude.collect_messages")
        self._repo_path = config.repo_path.resolve()
        self._cwd_matches: dict[str, bool] = {}

    def find_session_files(self) -> list[Path]:
        """All JSONL files across Claude project directories."""
        projects_dir = self.config.claude_projects_dir
        with telemetry.span(f"{telemetry.NAMESPACE}.collectors.file_discovery", {
            f"{telemetry.NAMESPACE}.collector.projects_dir": str(projects_dir),
        }) as current:
            if not projects_dir.is_dir():
                self.log.decision(f"Claude projects directory not found: {projects_dir}")
                return []

            files = []
            checked = 0
            for project_dir in sorted(projects_dir.iterdir()):
                if not project_dir.is_dir():
                    continue
                checked += 1
                try:
                    files.extend(sorted(project_dir.glob("*.jsonl")))
                except OSError:
                    continue

            telemetry.set_attributes(current, {
                f"{telemetry.NAMESPACE}.collector.projects_checked": checked,
                f"{telemetry.NAMESPACE}.collector.files_found": len(files),
            })
            telemetry.gauge(f"{telemetry.NAMESPACE}.collector.files_found", len(files))
            return files

    def _is_repo_cwd(self, cwd: Any) -> bool:
        """Whether a record's cwd is this repository, cached per distinct cwd."""
        if not isinstance(cwd, str) or not cwd:
            return False
        if cwd not in self._cwd_matches:
            self._cwd_matches[cwd] = _same_path(cwd, self._repo_path)
        return self._cwd_matches[cwd]

    def _read_records(self, path: Path):
        """Yield parsed JSON records, skipping malformed lines."""
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(record, dict):
                    yield record

    def collect(self, start: Optional[datetime], end: datetime) -> list[ChatSession]:
        """Messages for this repository within ``[start, end]``, grouped by session.

        Args:
            start: Previous commit time, or None to use 24 hours before end
            end: Commit time

        Returns:
            Sessions ordered by their first message; empty if none match.
        """
        end = to_utc(end)
        start = to_utc(start) if start is not None else end - DEFAULT_WINDOW

        with telemetry.span(f"{telemetry.NAMESPACE}.collectors.claude", {
            f"{telemetry.NAMESPACE}.collector.repo_path": str(self.config.repo_path),
            f"{telemetry.NAMESPACE}.collector.time_window_start": start.isoformat(),
            f"{telemetry.NAMESPACE}.collector.time_window_end": end.isoformat(),
        }) as current:
            minutes = round((end - start).total_seconds() / 60)
            self.log.start(f"Collecting Claude messages for {minutes}-minute commit window")

            files = self.find_session_files()
            messages = []
            processed = skipped = wrong_project = outside_window = 0

            for path in files:
                try:
                    for record in self._read_records(path):
                        timestamp = chat_timestamp(record)
                        if timestamp is None:
                            continue
                        if not self._is_repo_cwd(record.get("cwd")):
                            wrong_project += 1
                            continue
                        if not start <= timestamp <= end:
                            outside_window += 1
                            continue
                        # Redaction runs only on messages that are kept
                        msg = parse_record(record)
                        if msg is not None:
                            messages.append(msg)
                    processed += 1
                except OSError:
                    skipped += 1

            sessions = group_by_session(messages)

            self.log.progress(
                f"Processed {processed} files ({skipped} skipped); filtered out "
                f"{wrong_project} messages (wrong project) and {outside_window} (outside window)"
            )
            self.log.complete(f"Collected {len(messages)} messages in {len(sessions)} sessions")

            stats = {
                f"{telemetry.NAMESPACE}.collector.files_processed": processed,
                f"{telemetry.NAMESPACE}.collector.files_skipped": skipped,
                f"{telemetry.NAMESPACE}.collector.messages_collected": len(messages),
                f"{telemetry.NAMESPACE}.collector.sessions": len(sessions),
            }
            telemetry.set_attributes(current, stats)
            for name, value in stats.items():
                telemetry.gauge(name, value)

            return sessions

    def detect_current_session(
        self,
        now: Optional[datetime] = None,
        window_seconds: int = SESSION_DETECTION_SECONDS,
    ) -> Optional[str]:
        """Session id of the most recent message in the last few seconds.

        Used by the context-capture tool, which runs inside a live session.
        """
        now = to_utc(now) if now is not None else utc_now()
        earliest = now - timedelta(seconds=window_seconds)
        started = time.monotonic()

        with telemetry.span(f"{telemetry.NAMESPACE}.mcp.session_id_detection") as current:
            latest: Optional[ChatMessage] = None
            for path in self.find_session_files():
                try:
                    for record in self._read_records(path):
                        if not record.get("sessionId"):
                            continue
                        timestamp = chat_timestamp(record)
                        if timestamp is None or not earliest <= timestamp <= now:
                            continue
                        msg = parse_record(record)
                        if msg is None:
                            continue
                        if latest is None or msg.timestamp > latest.timestamp:
                            latest = msg
                except OSError:
                    continue

            session_id = latest.session_id if latest else None
            telemetry.set_attributes(current, {
                f"{telemetry.NAMESPACE}.session.found": session_id is not None,
                f"{telemetry.NAMESPACE}.session.detection_duration_ms": int((time.monotonic() - started) * 1000),
            })
            return session_id
