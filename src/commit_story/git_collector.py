"""Git commit data collection.

Reads commit metadata and diffs by shelling out to ``git`` and tags each
file's diff with its provenance so the journal never feeds on itself.
"""

from __future__ import annotations

import fnmatch
import re
import subprocess
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

from . import telemetry
from .config import CommitStoryConfig
from .errors import NotFoundError
from .models import Commit, CommitRef, ContentOrigin, FileDiff
from .redaction import redact

GIT_TIMEOUT = 30
_FIELD_SEP = "\x1f"
_DIFF_START = re.compile(r"^diff --git ", re.MULTILINE)
_HEADER_PREFIX = "diff --git "


def _to_datetime(epoch: str) -> datetime:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc)


def unquote_path(path: str) -> str:
    """Undo git's C-style quoting of a path (``"caf\\303\\251.py"``)."""
    path = path.rstrip("\t")
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    raw = path[1:-1].encode("utf-8").decode("unicode_escape")
    return raw.encode("latin-1").decode("utf-8", errors="replace")


def _strip_side(path: str) -> str:
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def _header_path(header: str) -> str:
    """Path from a ``diff --git`` line when there are no ---/+++ lines."""
    rest = header[len(_HEADER_PREFIX):]
    if rest.endswith('"'):
        return _strip_side(unquote_path(rest[rest.rfind(' "') + 1:]))
    # "a/X b/X" for anything that is not a rename
    length = (len(rest) - 5) // 2
    candidate = rest[2:2 + length]
    if rest == f"a/{candidate} b/{candidate}":
        return candidate
    return _strip_side(rest.split(" b/", 1)[0])


def diff_chunk_path(chunk: str) -> str:
    """Repo-relative path of the file a single-file diff chunk touches.

    The ``+++``/``---`` lines are used when present since the header line is
    ambiguous for paths containing `` b/``. Binary and mode-only changes fall
    back to the rename lines or the header.
    """
    lines = chunk.split("\n")
    old = new = renamed = None
    for line in lines[1:]:
        if line.startswith("@@"):
            break
        if line.startswith("+++ "):
            new = unquote_path(line[4:])
        elif line.startswith("--- "):
            old = unquote_path(line[4:])
        elif line.startswith(("rename to ", "copy to ")):
            renamed = unquote_path(line.split(" to ", 1)[1])
    if new and new != "/dev/null":
        return _strip_side(new)
    if old and old != "/dev/null":
        return _strip_side(old)
    if renamed:
        return renamed
    return _header_path(lines[0])


def _pattern_matches(path: str, name: str, pattern: str) -> bool:
    pattern = pattern.lstrip("/")
    if pattern.endswith("/"):
        prefix = pattern.rstrip("/")
        return path.startswith(prefix + "/") or f"/{prefix}/" in f"/{path}"
    if fnmatch.fnmatch(path, pattern) or path.startswith(pattern + "/"):
        return True
    return "/" not in pattern and fnmatch.fnmatch(name, pattern)


def matches_ignore_pattern(path: str, patterns: tuple[str, ...]) -> bool:
    """Match a repo-relative path against git-ignore-style globs.

    A trailing ``/`` matches everything under that directory; patterns
    without a slash also match the file's base name. A leading ``!``
    re-includes a path, and the last matching pattern wins.
    """
    name = PurePosixPath(path).name
    ignored = False
    for pattern in patterns:
        negated = pattern.startswith("!")
        if _pattern_matches(path, name, pattern[1:] if negated else pattern):
            ignored = not negated
    return ignored


def classify_path(path: str, config: CommitStoryConfig) -> ContentOrigin:
    """Assign a provenance tag to a changed file."""
    journal = config.journal_dir.strip("/")
    if path.startswith(f"{journal}/entries/"):
        return ContentOrigin.GENERATED
    if path.startswith(f"{journal}/reflections/") or path.startswith(f"{journal}/context/"):
        return ContentOrigin.MANUAL
    if matches_ignore_pattern(path, config.ignore_patterns):
        return ContentOrigin.IGNORED
    return ContentOrigin.EXTERNAL


def split_diff(diff: str, config: CommitStoryConfig) -> list[FileDiff]:
    """Split a unified diff into per-file chunks tagged by origin."""
    if not diff:
        return []

    starts = [match.start() for match in _DIFF_START.finditer(diff)]
    chunks = []
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(diff)
        text = diff[start:end].rstrip("\n") + "\n"
        path = diff_chunk_path(text)
        chunks.append(FileDiff(
            path=path,
            text=text,
            origin=classify_path(path, config),
        ))
    return chunks


class GitCollector:
    """Reads commits from the repository in ``config.repo_path``."""

    def __init__(self, config: CommitStoryConfig):
        self.config = config

    def _git(self, *args: str) -> str:
        """Run a git command and return stdout.

        Raises:
            NotFoundError: If git fails (no repository, unknown ref).
        """
        try:
            result = subprocess.run(
                ["git", "-c", "core.quotePath=false", *args],
                cwd=self.config.repo_path,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=GIT_TIMEOUT,
            )
        except FileNotFoundError as e:
            raise NotFoundError(f"Cannot run git in {self.config.repo_path}: {e}") from e
        if result.returncode != 0:
            raise NotFoundError(result.stderr.strip() or f"git {args[0]} failed")
        return result.stdout

    def get_commit(self, ref: str = "HEAD") -> Commit:
        """Collect metadata and diff for a commit.

        Raises:
            NotFoundError: If the repository or ref does not exist.
        """
        with telemetry.span(f"{telemetry.NAMESPACE}.collectors.git", {
            f"{telemetry.NAMESPACE}.collector.commit_ref": ref,
        }) as current:
            fmt = _FIELD_SEP.join(["%H", "%an", "%at", "%P", "%B"])
            output = self._git("show", "--no-patch", f"--format=format:{fmt}", ref, "--")
            parts = output.split(_FIELD_SEP, 4)
            if len(parts) < 5:
                raise NotFoundError(f"Unexpected git output for {ref}")

            commit_hash, author_name, epoch, parents, body = parts
            diff_result = redact(self._git("diff-tree", "-p", "--root", "--no-commit-id", commit_hash))
            message_result = redact(body.strip())

            commit = Commit(
                hash=commit_hash.strip(),
                message=message_result.text,
                author_name=author_name,
                timestamp=_to_datetime(epoch),
                diff=diff_result.text,
                parent_hashes=tuple(parents.split()),
                previous=self.get_previous_commit(commit_hash),
            )

            telemetry.set_attributes(current, {
                f"{telemetry.NAMESPACE}.commit.hash": commit.hash,
                f"{telemetry.NAMESPACE}.commit.message": commit.subject,
                f"{telemetry.NAMESPACE}.collector.diff_size_chars": len(commit.diff),
                f"{telemetry.NAMESPACE}.collector.diff_size_lines": commit.diff.count("\n"),
                f"{telemetry.NAMESPACE}.collector.message_redacted": message_result.total > 0,
            })
            return commit

    def get_previous_commit(self, ref: str = "HEAD") -> Optional[CommitRef]:
        """Hash and time of the first parent, or None for a root commit."""
        try:
            output = self._git("log", "-1", f"--format=%H{_FIELD_SEP}%at", f"{ref}~1", "--").strip()
        except NotFoundError:
            return None
        if not output:
            return None
        commit_hash, epoch = output.split(_FIELD_SEP)
        return CommitRef(hash=commit_hash, timestamp=_to_datetime(epoch))

    def changed_files(self, ref: str = "HEAD") -> list[str]:
        output = self._git("diff-tree", "--no-commit-id", "--name-only", "-r", "--root", ref)
        return [unquote_path(line) for line in output.splitlines() if line.strip()]

    def is_journal_only_commit(self, ref: str = "HEAD") -> bool:
        """True when every changed file is a generated journal entry.

        Commits touching reflections or context captures still count as real
        work and return False.
        """
        files = self.changed_files(ref)
        if not files:
            return False
        return all(classify_path(f, self.config) == ContentOrigin.GENERATED for f in files)

    def list_commits(self, range_spec: str) -> list[str]:
        """Commit hashes in a range, oldest first."""
        output = self._git("rev-list", "--reverse", range_spec, "--")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def split_diff(self, commit: Commit) -> list[FileDiff]:
        return split_diff(commit.diff, self.config)
