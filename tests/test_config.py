"""Tests for configuration loading."""

import json

import pytest

from commit_story.config import (
    CommitStoryConfig,
    DEFAULT_MODEL,
    dict_to_config,
    find_config_file,
    load_config,
    load_ignore_patterns,
    write_default_config,
)
from commit_story.errors import ConfigError


class TestFindConfigFile:
    """Tests for find_config_file."""

    def test_finds_json_config_first(self, temp_project):
        """JSON config wins over TOML."""
        (temp_project / "commit-story.config.json").write_text("{}")
        (temp_project / "commit-story.config.toml").write_text("")

        found = find_config_file(temp_project)
        assert found.name == "commit-story.config.json"

    def test_finds_dotfile_config(self, temp_project):
        """Dotfile TOML config is found."""
        (temp_project / ".commit-story.toml").write_text("")

        found = find_config_file(temp_project)
        assert found.name == ".commit-story.toml"

    def test_returns_none_if_no_config(self, temp_project):
        """Returns None if no config file found."""
        assert find_config_file(temp_project) is None


class TestDictToConfig:
    """Tests for dict_to_config."""

    def test_ignores_comment_keys(self, temp_project):
        """Keys starting with underscore are comments."""
        config = dict_to_config({"_instructions": "hi", "debug": True}, temp_project)
        assert config.debug is True
        assert config.enabled is True

    def test_nested_toml_table(self, temp_project):
        """Values may live under a [commit-story] table."""
        config = dict_to_config({"commit-story": {"model": "gpt-4o", "timezone": "Europe/Paris"}}, temp_project)
        assert config.model == "gpt-4o"
        assert config.timezone == "Europe/Paris"

    def test_rejects_non_bool_flag(self, temp_project):
        """Boolean flags must be real booleans."""
        with pytest.raises(ConfigError, match="enabled"):
            dict_to_config({"enabled": "yes"}, temp_project)

    def test_rejects_non_positive_timeout(self, temp_project):
        """Numeric settings must be positive."""
        with pytest.raises(ConfigError, match="generator_timeout"):
            dict_to_config({"generator_timeout": 0}, temp_project)

    def test_unknown_keys_ignored(self, temp_project):
        """Unknown keys do not fail loading."""
        config = dict_to_config({"something_else": 1}, temp_project)
        assert config.model == DEFAULT_MODEL


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, temp_project):
        """Missing config file yields defaults."""
        config = load_config(temp_project)
        assert config.repo_path == temp_project
        assert config.enabled is True
        assert config.dev is False
        assert config.journal_dir == "journal"

    def test_loads_json_file(self, temp_project):
        """JSON file values are applied."""
        (temp_project / "commit-story.config.json").write_text(json.dumps({"enabled": False, "dev": True}))
        config = load_config(temp_project)
        assert config.enabled is False
        assert config.dev is True

    def test_loads_toml_file(self, temp_project):
        """TOML file values are applied."""
        (temp_project / ".commit-story.toml").write_text('model = "gpt-4o"\nmax_context_tokens = 5000\n')
        config = load_config(temp_project)
        assert config.model == "gpt-4o"
        assert config.max_context_tokens == 5000

    def test_invalid_json_raises_config_error(self, temp_project):
        """Malformed JSON is reported as ConfigError."""
        (temp_project / "commit-story.config.json").write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(temp_project)

    def test_env_overrides_file(self, temp_project, monkeypatch):
        """Environment flags override the file."""
        (temp_project / "commit-story.config.json").write_text(json.dumps({"debug": False}))
        monkeypatch.setenv("COMMIT_STORY_DEBUG", "true")
        config = load_config(temp_project)
        assert config.debug is True

    def test_api_key_from_dotenv(self, temp_project):
        """OPENAI_API_KEY is read from the repository's .env file."""
        (temp_project / ".env").write_text("OPENAI_API_KEY=from-dotenv\n")
        config = load_config(temp_project)
        assert config.openai_api_key == "from-dotenv"

    def test_explicit_config_path(self, temp_project):
        """An explicit path bypasses discovery."""
        custom = temp_project / "custom.json"
        custom.write_text(json.dumps({"journal_dir": "notes"}))
        config = load_config(temp_project, custom)
        assert config.get_entries_path() == temp_project / "notes" / "entries"


class TestIgnorePatterns:
    """Tests for .commitstoryignore parsing."""

    def test_skips_comments_and_blanks(self, temp_project):
        """Comments and blank lines are not patterns."""
        (temp_project / ".commitstoryignore").write_text("# generated\n\n*.lock\ndist/\n")
        assert load_ignore_patterns(temp_project) == ("*.lock", "dist/")

    def test_missing_file(self, temp_project):
        """No ignore file means no patterns."""
        assert load_ignore_patterns(temp_project) == ()

    def test_patterns_reach_config(self, temp_project):
        """load_config carries the patterns."""
        (temp_project / ".commitstoryignore").write_text("package-lock.json\n")
        assert load_config(temp_project).ignore_patterns == ("package-lock.json",)


class TestWriteDefaultConfig:
    """Tests for write_default_config."""

    def test_writes_file(self, temp_project):
        """Default config is written as JSON with help comments."""
        path = write_default_config(temp_project)
        data = json.loads(path.read_text())
        assert data["enabled"] is True
        assert data["debug"] is False
        assert "_instructions" in data

    def test_does_not_overwrite(self, temp_project):
        """Existing config is kept unless forced."""
        (temp_project / "commit-story.config.json").write_text('{"enabled": false}')
        assert write_default_config(temp_project) is None
        assert json.loads((temp_project / "commit-story.config.json").read_text()) == {"enabled": False}

    def test_written_file_loads(self, temp_project):
        """The default file round-trips through load_config."""
        write_default_config(temp_project)
        config = load_config(temp_project)
        assert isinstance(config, CommitStoryConfig)
        assert config.enabled is True


class TestConfigPaths:
    """Tests for path helpers."""

    def test_journal_paths(self, temp_project):
        config = CommitStoryConfig(repo_path=temp_project)
        assert config.get_journal_path() == temp_project / "journal"
        assert config.get_reflections_path() == temp_project / "journal" / "reflections"
        assert config.get_context_path() == temp_project / "journal" / "context"

    def test_with_overrides_returns_copy(self, temp_project):
        """with_overrides leaves the original untouched."""
        config = CommitStoryConfig(repo_path=temp_project)
        changed = config.with_overrides(debug=True)
        assert changed.debug is True
        assert config.debug is False
