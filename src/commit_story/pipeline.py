"""End-to-end journal generation for one commit."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from . import telemetry
from .config import CommitStoryConfig
from .context import ContextIntegrator
from .errors import MissingApiKeyError, NoChatDataError
from .generators import CompletionClient, LLMClient, generate_sections
from .git_collector import GitCollector
from .journal import JournalManager
from .models import JournalSections


class PipelineStatus(Enum):
    """How a pipeline run ended."""
    SAVED = "saved"
    DRY_RUN = "dry_run"
    SKIPPED_JOURNAL_ONLY = "skipped_journal_only"
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_EXISTS = "skipped_exists"


@dataclass
class PipelineResult:
    status: PipelineStatus
    file_path: Optional[Path] = None
    sections: Optional[JournalSections] = None
    message: str = ""
    entry_text: Optional[str] = None   # Rendered entry, set for dry runs

    @property
    def skipped(self) -> bool:
        return self.status.value.startswith("skipped")


async def run_pipeline(
    config: CommitStoryConfig,
    ref: str = "HEAD",
    dry_run: bool = False,
    llm: Optional[CompletionClient] = None,
    replace_existing: bool = False,
    skip_existing: bool = False,
) -> PipelineResult:
    """Generate and save the journal entry for ``ref``.

    Args:
        config: Repository configuration
        ref: Commit to journal
        dry_run: Render the entry without writing anything
        llm: Completion client; a real ``LLMClient`` is created when omitted
        replace_existing: Rewrite an existing entry for this commit in place
        skip_existing: Return early if the commit already has an entry

    Raises:
        NotFoundError: If the commit cannot be read.
        NoChatDataError: If no chat messages fall in the commit window.
        MissingApiKeyError: If no API key is configured.
        GenerationError: If the connectivity check fails.
        JournalWriteError: If the entry cannot be saved.
    """
    log = telemetry.narrative_logger("main")
    with telemetry.span(f"{telemetry.NAMESPACE}.main", {
        f"{telemetry.NAMESPACE}.repository.path": str(config.repo_path),
        f"{telemetry.NAMESPACE}.commit.ref": ref,
        f"{telemetry.NAMESPACE}.journal.dry_run": dry_run,
    }) as current:
        if not config.enabled:
            log.decision("Journal generation disabled in config")
            return PipelineResult(PipelineStatus.SKIPPED_DISABLED, message="Journal generation is disabled")

        git = GitCollector(config)
        journal = JournalManager(config)

        if git.is_journal_only_commit(ref):
            log.decision(f"Commit {ref} only touches journal entries, skipping")
            telemetry.add_event(current, "journal_only_commit_skipped")
            return PipelineResult(
                PipelineStatus.SKIPPED_JOURNAL_ONLY,
                message="Commit only contains journal entries",
            )

        commit = git.get_commit(ref)
        if skip_existing:
            existing = journal.find_entry_file(commit.hash, commit.timestamp)
            if existing is not None:
                log.decision(f"Entry for {commit.short_hash} already exists")
                return PipelineResult(
                    PipelineStatus.SKIPPED_EXISTS, file_path=existing,
                    message=f"Entry for {commit.short_hash} already exists",
                )

        integrator = ContextIntegrator(config, git=git, journal=journal)
        log.start(f"Starting context collection for commit {ref}")
        context = integrator.gather(ref, commit=commit)

        if not context.has_chat:
            telemetry.add_event(current, "no-chat-data-found", {
                f"{telemetry.NAMESPACE}.commit.hash": commit.hash,
            })
            log.error("No chat data found for this repository and time window")
            raise NoChatDataError(
                f"No chat data found for commit {commit.short_hash} in {config.repo_path}"
            )

        log.progress(f"Found {context.metadata.total_messages} chat messages")

        if llm is None:
            if not config.openai_api_key:
                raise MissingApiKeyError("OPENAI_API_KEY not configured")
            client = LLMClient(config)
            await client.check_connectivity()
            llm = client

        sections = await generate_sections(llm, context)

        if dry_run:
            entry_text = journal.format_entry(commit, sections, context.reflections)
            log.complete("Dry run complete, entry not saved")
            return PipelineResult(
                PipelineStatus.DRY_RUN, sections=sections, entry_text=entry_text,
                message="Dry run: entry generated but not saved",
            )

        saved = journal.save_entry(commit, sections, context.reflections, replace_existing=replace_existing)
        if not saved.created and not saved.replaced:
            return PipelineResult(
                PipelineStatus.SKIPPED_EXISTS, file_path=saved.path, sections=sections,
                message=f"Entry for {commit.short_hash} already exists",
            )

        telemetry.set_attributes(current, {
            f"{telemetry.NAMESPACE}.journal.file_path": str(saved.path),
            f"{telemetry.NAMESPACE}.journal.completed": True,
        })
        telemetry.gauge(f"{telemetry.NAMESPACE}.journal.completed", 1)
        log.complete(f"Journal saved to: {saved.path}")
        return PipelineResult(
            PipelineStatus.SAVED, file_path=saved.path, sections=sections,
            message=f"Journal saved to {saved.path}",
        )
