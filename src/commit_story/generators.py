"""Section generators for journal entries.

Summary, Development Dialogue, and Technical Decisions are written by the
LLM; Commit Details is built directly from git data. Each generator is a
stateless coroutine that receives an explicit input record. A failure in one
section becomes an inline marker and never stops the others.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Optional, Protocol

import openai
from openai import AsyncOpenAI

from . import telemetry
from .config import CommitStoryConfig
from .context import (
    CommitContext,
    DialogueInput,
    SummaryInput,
    TechnicalDecisionsInput,
    dialogue_input,
    summary_input,
    technical_decisions_input,
)
from .errors import GenerationError, MissingApiKeyError
from .models import Commit, FileDiff, JournalSections, error_marker
from .prompts import (
    DIALOGUE_PROMPT,
    DIALOGUE_UNGUIDED_NOTE,
    TECHNICAL_DECISIONS_PROMPT,
    all_guidelines,
    summary_prompt,
)

DEFAULT_TEMPERATURE = 0.7
NO_DIALOGUE = "No significant dialogue found for this development session"
NO_TECHNICAL_DECISIONS = "No significant technical decisions documented for this development session"

log = telemetry.narrative_logger("journal.generate_entry")


class CompletionClient(Protocol):
    async def complete(self, system: str, user: str) -> str: ...


class LLMClient:
    """Thin wrapper over ``AsyncOpenAI`` with a per-call timeout."""

    def __init__(self, config: CommitStoryConfig, client: Optional[AsyncOpenAI] = None):
        if client is None:
            if not config.openai_api_key:
                raise MissingApiKeyError("OPENAI_API_KEY not configured")
            client = AsyncOpenAI(api_key=config.openai_api_key)
        self._client = client
        self.model = config.model
        self.timeout = config.generator_timeout
        self.temperature = DEFAULT_TEMPERATURE

    async def complete(self, system: str, user: str, max_tokens: Optional[int] = None) -> str:
        """Run one chat completion and return its stripped text.

        Raises:
            GenerationError: On timeout or any API error.
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.temperature,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationError(f"timed out after {self.timeout:g}s") from e
        except openai.OpenAIError as e:
            raise GenerationError(f"API error: {e}") from e

        if not response.choices:
            raise GenerationError("API error: response had no choices")
        content = response.choices[0].message.content or ""
        return content.strip()

    async def check_connectivity(self) -> None:
        """One-token request to fail fast on a bad key or network.

        Raises:
            GenerationError: If the API cannot be reached.
        """
        with telemetry.span(f"{telemetry.NAMESPACE}.connectivity_test"):
            await self.complete("Reply with one word.", "test", max_tokens=1)


def _as_json(data: dict) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


# ========== Generators ==========

async def generate_summary(llm: CompletionClient, data: SummaryInput) -> str:
    """Narrative summary of the session."""
    system = "\n\n".join([
        "AVAILABLE DATA:\n"
        "- git: the code changes (unified diff) and commit message\n"
        "- chat: developer conversations with the AI assistant during this session\n"
        "- reflections: notes the developer wrote during the session\n"
        "- context_captures: working notes the AI assistant saved during the session",
        summary_prompt(data.has_functional_code, data.has_substantial_chat),
        all_guidelines(),
    ])
    payload = {
        "git": {"message": data.commit_message, "diff": data.diff},
        "chat": list(data.chat),
        "reflections": list(data.reflections),
        "context_captures": list(data.context_captures),
    }
    return await llm.complete(system, f"Generate a summary for this development session:\n\n{_as_json(payload)}")


def clean_dialogue(text: str) -> str:
    """Undo escaped quotes and literal newlines the model sometimes emits."""
    return text.replace('\\"', '"').replace("\\n", "\n")


async def generate_dialogue(llm: CompletionClient, data: DialogueInput) -> str:
    """Verbatim quotes from the chat, guided by the summary when there is one."""
    if data.max_quotes == 0:
        return NO_DIALOGUE

    if data.summary is not None:
        intro = (
            "You have access to:\n"
            "1. A summary of this development session (your guide to what matters)\n"
            "2. chat: developer conversations with the AI assistant"
        )
    else:
        intro = f"You have access to chat: developer conversations with the AI assistant.\n{DIALOGUE_UNGUIDED_NOTE}"

    system = "\n\n".join([intro, DIALOGUE_PROMPT, all_guidelines()])
    payload: dict[str, Any] = {"chat": list(data.chat), "maxQuotes": data.max_quotes}
    if data.summary is not None:
        payload = {"summary": data.summary, **payload}

    dialogue = await llm.complete(
        system, f"Extract supporting dialogue for this development session:\n\n{_as_json(payload)}"
    )
    return clean_dialogue(dialogue)


async def generate_technical_decisions(llm: CompletionClient, data: TechnicalDecisionsInput) -> str:
    """Decisions found in the chat, marked implemented or discussed only."""
    if not data.has_substantial_chat:
        return NO_TECHNICAL_DECISIONS

    system = "\n\n".join([
        "AVAILABLE DATA:\n"
        "- git: the code changes (unified diff) and commit message\n"
        "- chat: developer conversations with the AI assistant during this session",
        TECHNICAL_DECISIONS_PROMPT,
        all_guidelines(),
    ])
    payload = {
        "git": {"message": data.commit_message, "diff": data.diff},
        "chat": list(data.chat),
    }
    return await llm.complete(system, f"Here is the development session data:\n\n{_as_json(payload)}")


def count_changed_lines(diff: str) -> int:
    """Added plus removed lines, excluding ``+++``/``---`` headers."""
    count = 0
    for line in diff.splitlines():
        if (line.startswith("+") and not line.startswith("+++")) or (
            line.startswith("-") and not line.startswith("---")
        ):
            count += 1
    return count


def build_commit_details(commit: Commit, file_diffs: list[FileDiff]) -> str:
    """Programmatic Commit Details section."""
    parts = []
    if file_diffs:
        parts.append("**Files Changed**:\n" + "\n".join(f"- {d.path}" for d in file_diffs) + "\n")

    lines_changed = count_changed_lines("".join(d.text for d in file_diffs))
    if lines_changed > 0:
        parts.append(f"**Lines Changed**: ~{lines_changed} lines")

    parts.append(f'**Message**: "{commit.subject}"')
    return "\n".join(parts).strip()


# ========== Orchestration ==========

async def _run_section(name: str, coro) -> tuple[str, bool]:
    """Await one generator, converting failures to an inline marker.

    Returns:
        (content, succeeded)
    """
    started = time.monotonic()
    with telemetry.span(f"{telemetry.NAMESPACE}.generators.{name}") as current:
        try:
            content = await coro
            ok = True
        except (GenerationError, asyncio.TimeoutError, openai.OpenAIError) as e:
            reason = str(e) or type(e).__name__
            log.error(f"{name} generation failed: {reason}", error=e, section=name)
            telemetry.add_event(current, "section_failed", {"section": name, "reason": reason})
            telemetry.counter(f"{telemetry.NAMESPACE}.generators.failures", 1, {"section": name})
            content = error_marker(reason)
            ok = False

        duration_ms = int((time.monotonic() - started) * 1000)
        telemetry.set_attributes(current, {
            f"{telemetry.NAMESPACE}.section.name": name,
            f"{telemetry.NAMESPACE}.section.length": len(content),
            f"{telemetry.NAMESPACE}.section.succeeded": ok,
            f"{telemetry.NAMESPACE}.section.duration_ms": duration_ms,
        })
        telemetry.histogram(f"{telemetry.NAMESPACE}.generators.duration_ms", duration_ms, {"section": name})
        return content, ok


async def generate_sections(llm: CompletionClient, context: CommitContext) -> JournalSections:
    """Generate all four sections, one LLM section at a time.

    Dialogue uses the summary as its guide; if the summary failed, dialogue
    runs unguided rather than being skipped.
    """
    with telemetry.span(f"{telemetry.NAMESPACE}.journal.generate_entry", {
        f"{telemetry.NAMESPACE}.commit.hash": context.commit.hash,
        f"{telemetry.NAMESPACE}.chat.total_messages": context.metadata.total_messages,
    }) as current:
        log.start("Generating journal sections")
        commit_details = build_commit_details(context.commit, context.file_diffs)

        summary, summary_ok = await _run_section("summary", generate_summary(llm, summary_input(context)))
        if not summary_ok:
            log.decision("Summary failed, extracting dialogue without a guide")

        dialogue, _ = await _run_section(
            "dialogue",
            generate_dialogue(llm, dialogue_input(context, summary if summary_ok else None)),
        )
        technical_decisions, _ = await _run_section(
            "technical_decisions",
            generate_technical_decisions(llm, technical_decisions_input(context)),
        )

        sections = JournalSections(
            summary=summary,
            dialogue=dialogue,
            technical_decisions=technical_decisions,
            commit_details=commit_details,
        )

        failed = sections.failed_sections()
        lengths = {
            f"{telemetry.NAMESPACE}.sections.summary_length": len(summary),
            f"{telemetry.NAMESPACE}.sections.dialogue_length": len(dialogue),
            f"{telemetry.NAMESPACE}.sections.technical_decisions_length": len(technical_decisions),
            f"{telemetry.NAMESPACE}.sections.commit_details_length": len(commit_details),
        }
        telemetry.set_attributes(current, {
            **lengths,
            f"{telemetry.NAMESPACE}.sections.failed_count": len(failed),
        })
        for name, value in lengths.items():
            telemetry.gauge(name, value)

        if failed:
            log.warning(f"Generated sections with failures: {', '.join(failed)}")
        else:
            log.complete("All sections generated")
        return sections
