"""Shared pytest fixtures for commit-story tests."""

import asyncio
import json
import os
import subprocess
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from commit_story.config import CommitStoryConfig
from commit_story.errors import GenerationError
from commit_story.journal import JournalManager

# Fixed commit times keep day files and chat windows deterministic
BASE_TIME = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def git(repo: Path, *args: str, when: datetime = None) -> str:
    """Run git in a test repository."""
    env = dict(os.environ)
    env.update({
        "GIT_AUTHOR_NAME": "Test Developer",
        "GIT_AUTHOR_EMAIL": "dev@example.com",
        "GIT_COMMITTER_NAME": "Test Developer",
        "GIT_COMMITTER_EMAIL": "dev@example.com",
    })
    if when is not None:
        stamp = when.isoformat()
        env["GIT_AUTHOR_DATE"] = stamp
        env["GIT_COMMITTER_DATE"] = stamp
    result = subprocess.run(
        ["git", *args], cwd=repo, env=env, capture_output=True, text=True, check=True,
    )
    return result.stdout


def commit_files(repo: Path, files: dict, message: str, when: datetime) -> str:
    """Write files, commit them at a fixed time, and return the commit hash."""
    for rel_path, content in files.items():
        path = repo / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        git(repo, "add", "-f", rel_path)
    git(repo, "commit", "-q", "-m", message, when=when)
    return git(repo, "rev-parse", "HEAD").strip()


def chat_record(role: str, text: str, when: datetime, cwd: Path, session_id: str = "session-1") -> dict:
    """A Claude Code JSONL record."""
    return {
        "type": role,
        "message": {"role": role, "content": text},
        "timestamp": when.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "sessionId": session_id,
        "cwd": str(cwd),
    }


def write_chat(config: CommitStoryConfig, records: list, name: str = "session-1") -> Path:
    """Write records as a session log under the configured projects dir."""
    project_dir = config.claude_projects_dir / ("-" + str(config.repo_path).strip("/").replace("/", "-"))
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / f"{name}.jsonl"
    with open(path, "a", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
    return path


class FakeLLM:
    """Completion client returning canned text per section.

    Sections named in ``fail`` raise GenerationError; sections named in
    ``slow`` sleep for ``delay`` seconds first.
    """

    SUMMARY = "Added the parser module and wired it into the CLI."
    DIALOGUE = '> **Human:** \\"Let\'s keep the parser separate from the CLI.\\"'
    DECISIONS = "- **DECISION: Separate parser module** (Implemented)\n  - Easier to test"

    def __init__(self, fail=(), slow=(), delay=0.0):
        self.fail = set(fail)
        self.slow = set(slow)
        self.delay = delay
        self.calls = []

    @staticmethod
    def section_for(user: str) -> str:
        if user.startswith("Generate a summary"):
            return "summary"
        if user.startswith("Extract supporting dialogue"):
            return "dialogue"
        return "technical_decisions"

    async def complete(self, system: str, user: str) -> str:
        section = self.section_for(user)
        self.calls.append((section, system, user))
        if section in self.slow:
            await asyncio.sleep(self.delay)
        if section in self.fail:
            raise GenerationError(f"{section} timed out after 60s")
        return {
            "summary": self.SUMMARY,
            "dialogue": self.DIALOGUE,
            "technical_decisions": self.DECISIONS,
        }[section]


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def git_repo(temp_project):
    """An initialised git repository with one root commit."""
    repo = temp_project / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "config", "commit.gpgsign", "false")
    commit_files(repo, {"README.md": "# Demo\n"}, "Initial commit", BASE_TIME - timedelta(hours=2))
    return repo


@pytest.fixture
def config(git_repo, temp_project):
    """Create a test configuration."""
    return CommitStoryConfig(
        repo_path=git_repo,
        timezone="UTC",
        claude_projects_dir=temp_project / "claude" / "projects",
        openai_api_key=None,
        generator_timeout=5.0,
    )


@pytest.fixture
def manager(config):
    """Create a test journal manager."""
    return JournalManager(config)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def feature_commit(config):
    """A code commit after the root commit, with chat in between."""
    repo = config.repo_path
    write_chat(config, [
        chat_record("user", "Can we split the parser out of the CLI module?", BASE_TIME - timedelta(minutes=50), repo),
        chat_record("assistant", "Yes, I'll move parsing into parser.py.", BASE_TIME - timedelta(minutes=49), repo),
        chat_record("user", "ok", BASE_TIME - timedelta(minutes=48), repo),
    ])
    return commit_files(
        repo,
        {"src/parser.py": "def parse(text):\n    return text.split()\n"},
        "Add parser module",
        BASE_TIME - timedelta(minutes=30),
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate tests from the developer's environment.

    Setting before deleting makes monkeypatch restore the original state even
    when load_dotenv adds the variable during a test.
    """
    for name in ("OPENAI_API_KEY", "COMMIT_STORY_DEBUG", "COMMIT_STORY_DEV"):
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
