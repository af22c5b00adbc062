"""Tests for the command-line interface."""

import json
import os

import pytest

import commit_story.pipeline as pipeline_module
from commit_story.cli import HOOK_MARKER, ensure_gitignore, main

from conftest import BASE_TIME, FakeLLM, commit_files, git


class FakeClient(FakeLLM):
    """Replaces LLMClient so the CLI path runs without network access."""

    def __init__(self, config):
        super().__init__()
        self.connectivity_checked = False

    async def check_connectivity(self):
        self.connectivity_checked = True


@pytest.fixture
def repo(config):
    """Repository with a config file pointing chat collection at the test logs."""
    (config.repo_path / "commit-story.config.json").write_text(json.dumps({
        "timezone": "UTC",
        "claude_projects_dir": str(config.claude_projects_dir),
    }))
    return config.repo_path


def hook_path(repo):
    return repo / ".git" / "hooks" / "post-commit"


class TestInstallHook:
    """Tests for install-hook and uninstall-hook."""

    def test_installs_hook(self, repo):
        assert main(["install-hook", "--repo", str(repo)]) == 0

        hook = hook_path(repo)
        content = hook.read_text()
        assert HOOK_MARKER in content
        assert "-m commit_story HEAD" in content
        assert os.access(hook, os.X_OK)
        assert "journal/" in (repo / ".gitignore").read_text().splitlines()

    def test_writes_default_config(self, config):
        main(["install-hook", "--repo", str(config.repo_path)])
        data = json.loads((config.repo_path / "commit-story.config.json").read_text())
        assert data["enabled"] is True

    def test_reinstall_own_hook(self, repo):
        assert main(["install-hook", "--repo", str(repo)]) == 0
        assert main(["install-hook", "--repo", str(repo)]) == 0
        assert (repo / ".gitignore").read_text().count("journal/") == 1

    def test_refuses_foreign_hook(self, repo, capsys):
        hook = hook_path(repo)
        hook.parent.mkdir(parents=True, exist_ok=True)
        hook.write_text("#!/bin/sh\necho custom\n")

        assert main(["install-hook", "--repo", str(repo)]) == 1
        assert "already exists" in capsys.readouterr().err
        assert "echo custom" in hook.read_text()

        assert main(["install-hook", "--repo", str(repo), "--force"]) == 0
        assert HOOK_MARKER in hook.read_text()

    def test_uninstall(self, repo):
        main(["install-hook", "--repo", str(repo)])
        assert main(["uninstall-hook", "--repo", str(repo)]) == 0
        assert not hook_path(repo).exists()

    def test_uninstall_keeps_foreign_hook(self, repo):
        hook = hook_path(repo)
        hook.parent.mkdir(parents=True, exist_ok=True)
        hook.write_text("#!/bin/sh\necho custom\n")
        assert main(["uninstall-hook", "--repo", str(repo)]) == 0
        assert hook.exists()


class TestEnsureGitignore:
    """Tests for ensure_gitignore."""

    def test_appends_once(self, temp_project):
        (temp_project / ".gitignore").write_text("node_modules/")
        assert ensure_gitignore(temp_project) is True
        assert ensure_gitignore(temp_project) is False
        lines = (temp_project / ".gitignore").read_text().splitlines()
        assert lines[0] == "node_modules/"
        assert lines.count("journal/") == 1


class TestAddReflectionCommand:
    """Tests for add-reflection."""

    def test_adds_reflection(self, repo, capsys):
        assert main(["add-reflection", "--repo", str(repo), "Caching", "was", "premature"]) == 0
        assert "Reflection added" in capsys.readouterr().out
        files = list((repo / "journal" / "reflections").glob("*/*.md"))
        assert len(files) == 1
        assert "Caching was premature" in files[0].read_text()

    def test_rejects_blank(self, repo):
        assert main(["add-reflection", "--repo", str(repo), "   "]) == 1


class TestRunCommand:
    """Tests for the default run command."""

    def test_no_chat_exits_with_error(self, repo, capsys):
        """A commit without chat fails loudly and writes nothing."""
        commit_files(repo, {"a.py": "a = 1\n"}, "Add a", BASE_TIME)
        assert main(["--repo", str(repo)]) == 1
        assert "No chat data" in capsys.readouterr().err
        assert not (repo / "journal" / "entries").exists()

    def test_journal_only_commit_exits_cleanly(self, repo):
        commit_files(repo, {"journal/entries/2026-01/2026-01-15.md": "entry\n"}, "Journal", BASE_TIME)
        assert main(["run", "--repo", str(repo)]) == 0

    def test_missing_api_key(self, repo, feature_commit, capsys):
        assert main(["--repo", str(repo)]) == 1
        assert "OPENAI_API_KEY" in capsys.readouterr().err

    def test_saves_entry(self, repo, feature_commit, monkeypatch, capsys):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(pipeline_module, "LLMClient", FakeClient)

        assert main(["HEAD", "--repo", str(repo)]) == 0
        assert "Journal saved" in capsys.readouterr().out
        entry = repo / "journal" / "entries" / "2026-01" / "2026-01-15.md"
        assert f"**Commit**: {feature_commit}" in entry.read_text()

    def test_dry_run_prints_entry(self, repo, feature_commit, monkeypatch, capsys):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(pipeline_module, "LLMClient", FakeClient)

        assert main(["run", "--dry-run", "--repo", str(repo)]) == 0
        out = capsys.readouterr().out
        assert "DRY RUN" in out
        assert FakeLLM.SUMMARY in out
        assert not (repo / "journal" / "entries").exists()

    def test_unknown_ref(self, repo, capsys):
        assert main(["does-not-exist", "--repo", str(repo)]) == 1


class TestBackfillCommand:
    """Tests for the backfill command."""

    def test_reports_counts(self, repo, feature_commit, monkeypatch, capsys):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr("commit_story.backfill.LLMClient", FakeClient)

        assert main(["backfill", "HEAD", "--repo", str(repo)]) == 0
        out = capsys.readouterr().out
        assert "saved: 1" in out
        assert "no chat: 1" in out
        root = git(repo, "rev-list", "--max-parents=0", "HEAD").strip()
        assert f"{root[:8]}: no chat data" in out
