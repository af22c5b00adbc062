"""Generate journal entries for a range of past commits."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from . import telemetry
from .config import CommitStoryConfig
from .errors import NoChatDataError
from .generators import CompletionClient, LLMClient
from .git_collector import GitCollector
from .journal import JournalManager
from .pipeline import PipelineResult, PipelineStatus, run_pipeline


@dataclass
class BackfillReport:
    """Per-commit outcomes of a backfill run, as lists of commit hashes."""
    saved: list[str] = field(default_factory=list)
    regenerated: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    journal_only: list[str] = field(default_factory=list)
    no_chat: list[str] = field(default_factory=list)
    dry_run: list[str] = field(default_factory=list)
    results: dict[str, PipelineResult] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return (
            len(self.saved) + len(self.regenerated) + len(self.existing)
            + len(self.journal_only) + len(self.no_chat) + len(self.dry_run)
        )

    def to_dict(self) -> dict:
        return {
            "saved": len(self.saved),
            "regenerated": len(self.regenerated),
            "existing": len(self.existing),
            "journal_only": len(self.journal_only),
            "no_chat": len(self.no_chat),
            "dry_run": len(self.dry_run),
        }


async def backfill(
    config: CommitStoryConfig,
    range_spec: str,
    regenerate_failed: bool = False,
    dry_run: bool = False,
    llm: Optional[CompletionClient] = None,
) -> BackfillReport:
    """Run the pipeline for each commit in ``range_spec``, oldest first.

    Commits that already have an entry are skipped, so running twice never
    duplicates entries. With ``regenerate_failed``, entries containing a
    section failure marker are regenerated in place. Commits without chat
    data are recorded and skipped.

    Raises:
        NotFoundError: If the range cannot be resolved.
        MissingApiKeyError: If a commit needs generation and no key is set.
    """
    log = telemetry.narrative_logger("backfill")
    git = GitCollector(config)
    journal = JournalManager(config)
    report = BackfillReport()

    with telemetry.span(f"{telemetry.NAMESPACE}.backfill", {
        f"{telemetry.NAMESPACE}.backfill.range": range_spec,
        f"{telemetry.NAMESPACE}.backfill.regenerate_failed": regenerate_failed,
    }) as current:
        if not config.enabled:
            log.decision("Journal generation disabled in config")
            return report

        commits = git.list_commits(range_spec)
        log.start(f"Backfilling {len(commits)} commits in {range_spec}")

        failed_hashes: set[str] = set()
        if regenerate_failed:
            failed_hashes = {e.commit_hash for e in journal.entries_with_errors()}
            log.decision(f"{len(failed_hashes)} existing entries have failed sections")

        if llm is None and config.openai_api_key:
            llm = LLMClient(config)

        for commit_hash in commits:
            regenerate = commit_hash in failed_hashes
            try:
                result = await run_pipeline(
                    config,
                    commit_hash,
                    dry_run=dry_run,
                    llm=llm,
                    replace_existing=regenerate,
                    skip_existing=not regenerate,
                )
            except NoChatDataError as e:
                log.warning(str(e))
                report.no_chat.append(commit_hash)
                continue

            report.results[commit_hash] = result
            if result.status == PipelineStatus.SAVED:
                (report.regenerated if regenerate else report.saved).append(commit_hash)
            elif result.status == PipelineStatus.SKIPPED_EXISTS:
                report.existing.append(commit_hash)
            elif result.status == PipelineStatus.SKIPPED_JOURNAL_ONLY:
                report.journal_only.append(commit_hash)
            elif result.status == PipelineStatus.DRY_RUN:
                report.dry_run.append(commit_hash)

        telemetry.set_attributes(current, {
            f"{telemetry.NAMESPACE}.backfill.{key}": value for key, value in report.to_dict().items()
        })
        log.complete(
            f"Backfill done: {len(report.saved)} saved, {len(report.regenerated)} regenerated, "
            f"{len(report.existing)} already present, {len(report.no_chat)} without chat"
        )
        return report
