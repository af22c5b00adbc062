"""Command-line interface: the post-commit entry point and maintenance commands."""

from __future__ import annotations

import argparse
import asyncio
import stat
import sys
from pathlib import Path
from typing import Optional

from . import __version__, telemetry
from .backfill import backfill
from .config import CommitStoryConfig, load_config, write_default_config
from .errors import CommitStoryError, NoChatDataError
from .git_collector import GitCollector
from .journal import JournalManager
from .pipeline import PipelineStatus, run_pipeline

COMMANDS = ("run", "backfill", "install-hook", "uninstall-hook", "add-reflection")
HOOK_MARKER = "# commit-story post-commit hook"
GITIGNORE_COMMENT = "# Journal entries (private by default - remove this line to make journals public)"

HOOK_TEMPLATE = """#!/bin/sh
{marker}
# Runs in the background unless debug is enabled in commit-story.config.json

if [ -f commit-story.config.json ] && grep -q '"debug"[[:space:]]*:[[:space:]]*true' commit-story.config.json; then
    "{python}" -m commit_story HEAD
else
    ("{python}" -m commit_story HEAD > /dev/null 2>&1 &)
fi
"""


# ========== Hook management ==========

def _hooks_dir(config: CommitStoryConfig) -> Path:
    git_dir = Path(GitCollector(config)._git("rev-parse", "--git-dir").strip())
    if not git_dir.is_absolute():
        git_dir = config.repo_path / git_dir
    return git_dir / "hooks"


def ensure_gitignore(repo_path: Path, journal_dir: str = "journal") -> bool:
    """Add the journal directory to .gitignore. Returns True if it was added."""
    gitignore = repo_path / ".gitignore"
    entry = f"{journal_dir.strip('/')}/"
    if gitignore.exists():
        content = gitignore.read_text(encoding="utf-8")
        if any(line.strip() == entry for line in content.splitlines()):
            return False
        prefix = "" if content.endswith("\n") or not content else "\n"
        gitignore.write_text(f"{content}{prefix}\n{GITIGNORE_COMMENT}\n{entry}\n", encoding="utf-8")
    else:
        gitignore.write_text(f"{GITIGNORE_COMMENT}\n{entry}\n", encoding="utf-8")
    return True


def install_hook(config: CommitStoryConfig, force: bool = False) -> Path:
    """Install the post-commit hook, default config, and .gitignore entry.

    Raises:
        NotFoundError: If repo_path is not a git repository.
        FileExistsError: If a different post-commit hook exists and force is False.
    """
    hook_path = _hooks_dir(config) / "post-commit"
    if hook_path.exists() and not force:
        existing = hook_path.read_text(encoding="utf-8", errors="replace")
        if HOOK_MARKER not in existing:
            raise FileExistsError(f"A post-commit hook already exists at {hook_path}")

    hook_path.parent.mkdir(parents=True, exist_ok=True)
    hook_path.write_text(HOOK_TEMPLATE.format(marker=HOOK_MARKER, python=sys.executable), encoding="utf-8")
    mode = hook_path.stat().st_mode
    hook_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    write_default_config(config.repo_path)
    ensure_gitignore(config.repo_path, config.journal_dir)
    return hook_path


def uninstall_hook(config: CommitStoryConfig) -> Optional[Path]:
    """Remove the post-commit hook if this tool installed it.

    Returns:
        Path removed, or None if there was nothing to remove.
    """
    hook_path = _hooks_dir(config) / "post-commit"
    if not hook_path.exists():
        return None
    if HOOK_MARKER not in hook_path.read_text(encoding="utf-8", errors="replace"):
        return None
    hook_path.unlink()
    return hook_path


# ========== Commands ==========

def cmd_run(args: argparse.Namespace, config: CommitStoryConfig) -> int:
    result = asyncio.run(run_pipeline(config, args.ref, dry_run=args.dry_run))
    if result.status == PipelineStatus.DRY_RUN:
        print("--- DRY RUN: generated journal entry (not saved) ---")
        print(result.entry_text)
        print("--- end of generated entry ---")
    elif config.debug or result.status == PipelineStatus.SAVED:
        print(result.message)
    return 0


def cmd_backfill(args: argparse.Namespace, config: CommitStoryConfig) -> int:
    report = asyncio.run(backfill(
        config, args.range, regenerate_failed=args.regenerate_failed, dry_run=args.dry_run,
    ))
    for commit_hash in report.no_chat:
        print(f"  {commit_hash[:8]}: no chat data, skipped")
    if args.dry_run:
        for commit_hash in report.dry_run:
            print(f"--- DRY RUN: {commit_hash[:8]} ---")
            print(report.results[commit_hash].entry_text)
    counts = report.to_dict()
    print(", ".join(f"{name.replace('_', ' ')}: {count}" for name, count in counts.items()))
    return 0


def cmd_install_hook(args: argparse.Namespace, config: CommitStoryConfig) -> int:
    try:
        hook_path = install_hook(config, force=args.force)
    except FileExistsError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Use --force to overwrite it.", file=sys.stderr)
        return 1
    print(f"Installed post-commit hook at {hook_path}")
    print("Next: put OPENAI_API_KEY in .env and make a commit.")
    return 0


def cmd_uninstall_hook(args: argparse.Namespace, config: CommitStoryConfig) -> int:
    removed = uninstall_hook(config)
    if removed:
        print(f"Removed {removed}")
    else:
        print("No commit-story post-commit hook found.")
    return 0


def cmd_add_reflection(args: argparse.Namespace, config: CommitStoryConfig) -> int:
    try:
        _reflection, path = JournalManager(config).add_reflection(" ".join(args.text))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Reflection added to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo",
        "-r",
        type=Path,
        default=Path.cwd(),
        help="Repository root directory (default: current directory)",
    )
    common.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in repository root)",
    )

    parser = argparse.ArgumentParser(
        prog="commit-story",
        description="Commit Story - journal entries written from your commits and AI chat sessions",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", parents=[common], help="Generate the entry for a commit (default)")
    run.add_argument("ref", nargs="?", default="HEAD", help="Commit to journal (default: HEAD)")
    run.add_argument(
        "--dry-run",
        "--test",
        dest="dry_run",
        action="store_true",
        help="Print the generated entry instead of saving it",
    )
    run.set_defaults(func=cmd_run)

    bf = sub.add_parser("backfill", parents=[common], help="Generate entries for a range of commits")
    bf.add_argument("range", help="Commit range, e.g. main~10..main")
    bf.add_argument(
        "--regenerate-failed",
        action="store_true",
        help="Regenerate existing entries that contain failed sections",
    )
    bf.add_argument("--dry-run", action="store_true", help="Print entries instead of saving them")
    bf.set_defaults(func=cmd_backfill)

    ih = sub.add_parser("install-hook", parents=[common], help="Install the post-commit hook")
    ih.add_argument("--force", action="store_true", help="Overwrite an existing post-commit hook")
    ih.set_defaults(func=cmd_install_hook)

    uh = sub.add_parser("uninstall-hook", parents=[common], help="Remove the post-commit hook")
    uh.set_defaults(func=cmd_uninstall_hook)

    ar = sub.add_parser("add-reflection", parents=[common], help="Add a developer reflection")
    ar.add_argument("text", nargs="+", help="Reflection text")
    ar.set_defaults(func=cmd_add_reflection)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point. Returns the process exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)
    # Bare invocation and `commit-story <ref>` both mean `run`
    if not argv or (argv[0] not in COMMANDS and argv[0] not in ("-h", "--help", "--version")):
        argv.insert(0, "run")

    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.repo, args.config)
    except CommitStoryError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    telemetry.configure_logging(config)
    telemetry.setup_telemetry(config)
    try:
        return args.func(args, config)
    except NoChatDataError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except CommitStoryError as e:
        print(f"Error generating journal entry: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1
    finally:
        telemetry.shutdown_telemetry()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
