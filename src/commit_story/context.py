"""Context integration: one commit's diff, chat, and notes, fitted to a budget.

The integrator pairs a commit with the chat messages, reflections, and
context captures from the window since the previous commit, then hands each
section generator an explicit input record holding only what it needs.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath
from typing import Optional

from . import telemetry
from .chat_collector import ChatCollector
from .config import CommitStoryConfig
from .git_collector import GitCollector
from .journal import JournalManager
from .models import (
    ChatMessage,
    ChatMetadata,
    ChatSession,
    Commit,
    ContentOrigin,
    ContextCapture,
    FileDiff,
    Reflection,
    format_timestamp,
)

CHARS_PER_TOKEN = 4
MAX_MESSAGE_CHARS = 2000
TRUNCATION_MARKER = "[...]"
DIFF_TRUNCATED_NOTE = "[diff truncated]"
SUBSTANTIAL_MESSAGE_CHARS = 20
MAX_DIALOGUE_QUOTES = 8

_DOC_SUFFIXES = (".md", ".txt")
_DOC_NAMES = ("README", "CHANGELOG")
_ACKNOWLEDGEMENT = re.compile(
    r"^(ok(ay)?|sure|thanks?( you)?|got it|done|great|perfect|yes|no|sounds good|will do)\W*$",
    re.IGNORECASE,
)
_WORD = re.compile(r"[A-Za-z][A-Za-z0-9_-]{3,}")


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0


# ========== Commit content analysis ==========

def is_documentation_file(path: str) -> bool:
    return path.endswith(_DOC_SUFFIXES) or any(name in path for name in _DOC_NAMES)


@dataclass
class CommitContentAnalysis:
    """Changed files split into documentation and functional code."""
    changed_files: list[str] = field(default_factory=list)
    doc_files: list[str] = field(default_factory=list)
    functional_files: list[str] = field(default_factory=list)

    @property
    def has_functional_code(self) -> bool:
        return len(self.functional_files) > 0

    @property
    def has_only_docs(self) -> bool:
        return len(self.changed_files) > 0 and not self.functional_files


def analyze_commit_content(file_diffs: list[FileDiff]) -> CommitContentAnalysis:
    """Categorize changed files as documentation (.md, .txt, README, CHANGELOG) or code."""
    with telemetry.span(f"{telemetry.NAMESPACE}.utils.commit_content_analyzer") as current:
        analysis = CommitContentAnalysis()
        for diff in file_diffs:
            analysis.changed_files.append(diff.path)
            if is_documentation_file(diff.path):
                analysis.doc_files.append(diff.path)
            else:
                analysis.functional_files.append(diff.path)

        telemetry.set_attributes(current, {
            f"{telemetry.NAMESPACE}.files.total": len(analysis.changed_files),
            f"{telemetry.NAMESPACE}.files.documentation": len(analysis.doc_files),
            f"{telemetry.NAMESPACE}.files.functional": len(analysis.functional_files),
            f"{telemetry.NAMESPACE}.files.has_functional_code": analysis.has_functional_code,
            f"{telemetry.NAMESPACE}.files.only_documentation": analysis.has_only_docs,
        })
        return analysis


# ========== Token budget ==========

def truncate_message(msg: ChatMessage, limit: int = MAX_MESSAGE_CHARS) -> ChatMessage:
    if len(msg.text) <= limit:
        return msg
    return replace(msg, text=msg.text[:limit].rstrip() + f" {TRUNCATION_MARKER}")


def relevance_keywords(commit: Commit, file_diffs: list[FileDiff]) -> set[str]:
    """Lowercased file names and commit-message words used to score messages."""
    keywords = set()
    for diff in file_diffs:
        name = PurePosixPath(diff.path).name.lower()
        keywords.add(name)
        stem = name.rsplit(".", 1)[0]
        if len(stem) >= 4:
            keywords.add(stem)
    keywords.update(w.lower() for w in _WORD.findall(commit.message))
    return keywords


def relevance_score(msg: ChatMessage, keywords: set[str]) -> int:
    """Higher means more worth keeping. Short acknowledgements score zero."""
    text = msg.text.strip()
    if len(text) < SUBSTANTIAL_MESSAGE_CHARS or _ACKNOWLEDGEMENT.match(text):
        return 0
    lowered = text.lower()
    return 1 + sum(1 for k in keywords if k in lowered)


@dataclass
class BudgetResult:
    """Diff and chat after fitting to the token budget."""
    diff: str
    messages: list[ChatMessage]
    messages_truncated: int = 0
    assistant_dropped: int = 0
    user_dropped: int = 0
    diff_truncated: bool = False

    @property
    def reduced(self) -> bool:
        return bool(self.messages_truncated or self.assistant_dropped or self.user_dropped or self.diff_truncated)


def apply_token_budget(
    diff: str,
    messages: list[ChatMessage],
    max_tokens: int,
    keywords: Optional[set[str]] = None,
    fixed_tokens: int = 0,
) -> BudgetResult:
    """Shrink diff and chat until their estimated size fits ``max_tokens``.

    Reductions are applied in order, stopping as soon as the total fits:
    truncate long chat messages, drop assistant messages by ascending
    relevance, truncate the diff, and finally drop user messages.

    Args:
        diff: External diff text
        messages: Chat messages in chronological order
        max_tokens: Budget for diff, chat, and fixed content together
        keywords: Terms that make a message more relevant
        fixed_tokens: Tokens already spent on content that is never cut
            (reflections, context captures)
    """
    keywords = keywords or set()
    result = BudgetResult(diff=diff, messages=list(messages))

    def chat_tokens() -> int:
        return sum(estimate_tokens(m.text) for m in result.messages)

    def total() -> int:
        return fixed_tokens + estimate_tokens(result.diff) + chat_tokens()

    if total() <= max_tokens:
        return result

    truncated = [truncate_message(m) for m in result.messages]
    result.messages_truncated = sum(1 for a, b in zip(result.messages, truncated) if a is not b)
    result.messages = truncated
    if total() <= max_tokens:
        return result

    def drop_lowest(is_user: bool) -> int:
        # Lowest score first; among equals, the oldest goes first
        candidates = sorted(
            (i for i, m in enumerate(result.messages) if m.is_user == is_user),
            key=lambda i: (relevance_score(result.messages[i], keywords), i),
        )
        dropped = set()
        excess = total() - max_tokens
        for i in candidates:
            if excess <= 0:
                break
            dropped.add(i)
            excess -= estimate_tokens(result.messages[i].text)
        result.messages = [m for i, m in enumerate(result.messages) if i not in dropped]
        return len(dropped)

    result.assistant_dropped = drop_lowest(is_user=False)
    if total() <= max_tokens:
        return result

    if result.diff:
        remaining = max_tokens - fixed_tokens - chat_tokens() - estimate_tokens(DIFF_TRUNCATED_NOTE) - 1
        keep_chars = max(remaining, 0) * CHARS_PER_TOKEN
        result.diff = result.diff[:keep_chars].rstrip("\n") + "\n" + DIFF_TRUNCATED_NOTE
        result.diff_truncated = True
        if total() <= max_tokens:
            return result

    result.user_dropped = drop_lowest(is_user=True)
    return result


# ========== Context and generator inputs ==========

@dataclass
class CommitContext:
    """Everything collected for one commit."""
    commit: Commit
    file_diffs: list[FileDiff]
    sessions: list[ChatSession]
    reflections: list[Reflection] = field(default_factory=list)
    context_captures: list[ContextCapture] = field(default_factory=list)
    metadata: ChatMetadata = field(default_factory=ChatMetadata)
    # Budgeted views used to build prompts
    prompt_diff: str = ""
    prompt_messages: list[ChatMessage] = field(default_factory=list)

    def external_diffs(self) -> list[FileDiff]:
        return [d for d in self.file_diffs if d.origin == ContentOrigin.EXTERNAL]

    def external_diff(self) -> str:
        """Diff text of the developer's own files only."""
        return "".join(d.text for d in self.external_diffs())

    def chat_messages(self) -> list[ChatMessage]:
        messages = [m for s in self.sessions for m in s.messages]
        return sorted(messages, key=lambda m: m.timestamp)

    @property
    def has_chat(self) -> bool:
        return self.metadata.total_messages > 0

    @property
    def has_substantial_chat(self) -> bool:
        return self.metadata.user_messages_over_twenty_chars > 0


@dataclass(frozen=True)
class SummaryInput:
    commit_message: str
    diff: str
    chat: tuple[dict, ...]
    reflections: tuple[str, ...]
    context_captures: tuple[str, ...]
    has_functional_code: bool
    has_substantial_chat: bool


@dataclass(frozen=True)
class DialogueInput:
    summary: Optional[str]   # None when the summary failed; extraction runs unguided
    chat: tuple[dict, ...]
    max_quotes: int


@dataclass(frozen=True)
class TechnicalDecisionsInput:
    commit_message: str
    diff: str
    chat: tuple[dict, ...]
    has_substantial_chat: bool


def _note_text(note) -> str:
    return f"[{format_timestamp(note.timestamp)}] {note.text}"


def summary_input(context: CommitContext) -> SummaryInput:
    analysis = analyze_commit_content(context.external_diffs())
    return SummaryInput(
        commit_message=context.commit.message,
        diff=context.prompt_diff,
        chat=tuple(m.to_dict() for m in context.prompt_messages),
        reflections=tuple(_note_text(r) for r in context.reflections),
        context_captures=tuple(_note_text(c) for c in context.context_captures),
        has_functional_code=analysis.has_functional_code,
        has_substantial_chat=context.has_substantial_chat,
    )


def dialogue_input(context: CommitContext, summary: Optional[str]) -> DialogueInput:
    return DialogueInput(
        summary=summary,
        chat=tuple(m.to_dict() for m in context.prompt_messages),
        max_quotes=min(context.metadata.user_messages_over_twenty_chars, MAX_DIALOGUE_QUOTES),
    )


def technical_decisions_input(context: CommitContext) -> TechnicalDecisionsInput:
    return TechnicalDecisionsInput(
        commit_message=context.commit.message,
        diff=context.prompt_diff,
        chat=tuple(m.to_dict() for m in context.prompt_messages),
        has_substantial_chat=context.has_substantial_chat,
    )


class ContextIntegrator:
    """Gathers commit, chat, and notes for one commit."""

    def __init__(
        self,
        config: CommitStoryConfig,
        git: Optional[GitCollector] = None,
        chat: Optional[ChatCollector] = None,
        journal: Optional[JournalManager] = None,
    ):
        self.config = config
        self.git = git or GitCollector(config)
        self.chat = chat or ChatCollector(config)
        self.journal = journal or JournalManager(config)
        self.log = telemetry.narrative_logger("context.gather")

    def gather(self, ref: str = "HEAD", commit: Optional[Commit] = None) -> CommitContext:
        """Collect and budget everything needed to write the entry for ``ref``.

        ``commit`` skips re-reading a commit the caller already collected.

        Raises:
            NotFoundError: If the commit cannot be read.
        """
        with telemetry.span(f"{telemetry.NAMESPACE}.context.gather", {
            f"{telemetry.NAMESPACE}.commit.ref": ref,
        }) as current:
            self.log.start(f"Gathering context for {ref}")
            if commit is None:
                commit = self.git.get_commit(ref)
            start = commit.previous.timestamp if commit.previous else None

            file_diffs = self.git.split_diff(commit)
            sessions = self.chat.collect(start, commit.timestamp)
            reflections = self.journal.discover_reflections(start, commit.timestamp)
            captures = self.journal.discover_context_captures(start, commit.timestamp)

            context = CommitContext(
                commit=commit,
                file_diffs=file_diffs,
                sessions=sessions,
                reflections=reflections,
                context_captures=captures,
                metadata=ChatMetadata.from_sessions(sessions),
            )

            excluded = [d.path for d in file_diffs if d.origin != ContentOrigin.EXTERNAL]
            if excluded:
                self.log.decision(f"Excluded {len(excluded)} journal or ignored files from the diff")

            fixed = sum(estimate_tokens(n.text) for n in reflections) + sum(estimate_tokens(c.text) for c in captures)
            budget = apply_token_budget(
                context.external_diff(),
                context.chat_messages(),
                self.config.max_context_tokens,
                keywords=relevance_keywords(commit, context.external_diffs()),
                fixed_tokens=fixed,
            )
            context.prompt_diff = budget.diff
            context.prompt_messages = budget.messages
            if budget.reduced:
                self.log.decision(
                    f"Context over budget: truncated {budget.messages_truncated} messages, dropped "
                    f"{budget.assistant_dropped} assistant and {budget.user_dropped} user messages, "
                    f"diff truncated: {budget.diff_truncated}"
                )

            attrs = {
                f"{telemetry.NAMESPACE}.commit.hash": commit.hash,
                f"{telemetry.NAMESPACE}.chat.total_messages": context.metadata.total_messages,
                f"{telemetry.NAMESPACE}.chat.user_messages": context.metadata.user_messages,
                f"{telemetry.NAMESPACE}.chat.assistant_messages": context.metadata.assistant_messages,
                f"{telemetry.NAMESPACE}.chat.user_messages_over_twenty": context.metadata.user_messages_over_twenty_chars,
                f"{telemetry.NAMESPACE}.chat.sessions": context.metadata.session_count,
                f"{telemetry.NAMESPACE}.context.reflections": len(reflections),
                f"{telemetry.NAMESPACE}.context.captures": len(captures),
                f"{telemetry.NAMESPACE}.context.files_excluded": len(excluded),
                f"{telemetry.NAMESPACE}.context.estimated_tokens": estimate_tokens(budget.diff)
                + sum(estimate_tokens(m.text) for m in budget.messages) + fixed,
                f"{telemetry.NAMESPACE}.context.budget_applied": budget.reduced,
            }
            telemetry.set_attributes(current, attrs)
            for name, value in attrs.items():
                if isinstance(value, int) and not isinstance(value, bool):
                    telemetry.gauge(name, value)

            self.log.complete(
                f"Context ready: {context.metadata.total_messages} messages, "
                f"{len(reflections)} reflections, {len(captures)} context captures"
            )
            return context
