"""Configuration loading for Commit Story.

Configuration is read once per run and passed explicitly to every component
as an immutable ``CommitStoryConfig``. Supported sources, in order:

1. ``commit-story.config.json`` - the file written by ``install-hook``
2. ``commit-story.config.toml`` or ``.commit-story.toml``
3. Environment overrides (``COMMIT_STORY_DEBUG``, ``COMMIT_STORY_DEV``)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from .errors import ConfigError

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Python <3.11
    except ImportError:  # pragma: no cover
        tomllib = None


CONFIG_FILE_NAMES = [
    "commit-story.config.json",
    "commit-story.config.toml",
    ".commit-story.toml",
]
IGNORE_FILE_NAME = ".commitstoryignore"

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_GENERATOR_TIMEOUT = 60.0
DEFAULT_MAX_CONTEXT_TOKENS = 100_000
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318"

# Default config written by install-hook. Keys starting with "_" are comments.
DEFAULT_CONFIG_FILE = {
    "_instructions": "Commit Story configuration. Put OPENAI_API_KEY in a .env file.",
    "debug": False,
    "_debug_help": "Set to true to run journal generation in the foreground with progress output.",
    "enabled": True,
    "_enabled_help": "Set to false to disable journal generation while keeping the hook installed.",
    "dev": False,
    "_dev_help": "Set to true to export traces, metrics and logs to an OTLP collector.",
}

_BOOL_KEYS = {"enabled", "dev", "debug"}
_STR_KEYS = {"journal_dir", "timezone", "model", "otlp_endpoint", "service_name", "claude_projects_dir"}
_NUMBER_KEYS = {"generator_timeout": float, "max_context_tokens": int}


def local_timezone_name() -> str:
    """Best-effort IANA name of the system timezone."""
    tz_env = os.environ.get("TZ")
    if tz_env:
        return tz_env
    localtime = Path("/etc/localtime")
    try:
        target = str(localtime.resolve())
        if "zoneinfo/" in target:
            return target.split("zoneinfo/", 1)[1]
    except OSError:
        pass
    return datetime.now().astimezone().tzname() or "UTC"


@dataclass(frozen=True)
class CommitStoryConfig:
    """Configuration for one repository's journal."""

    repo_path: Path = field(default_factory=Path.cwd)

    # Behaviour flags
    enabled: bool = True
    dev: bool = False      # Export telemetry to the OTLP collector
    debug: bool = False    # Show progress on the console

    # Journal layout (relative to repo_path)
    journal_dir: str = "journal"
    timezone: str = field(default_factory=local_timezone_name)

    # Generation
    model: str = DEFAULT_MODEL
    generator_timeout: float = DEFAULT_GENERATOR_TIMEOUT
    max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS
    openai_api_key: Optional[str] = None

    # Chat sources
    claude_projects_dir: Path = field(default_factory=lambda: Path.home() / ".claude" / "projects")

    # Telemetry
    otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT
    service_name: str = "commit-story"

    # Patterns from .commitstoryignore
    ignore_patterns: tuple[str, ...] = ()

    def get_journal_path(self) -> Path:
        return self.repo_path / self.journal_dir

    def get_entries_path(self) -> Path:
        return self.get_journal_path() / "entries"

    def get_reflections_path(self) -> Path:
        return self.get_journal_path() / "reflections"

    def get_context_path(self) -> Path:
        return self.get_journal_path() / "context"

    def with_overrides(self, **changes: Any) -> "CommitStoryConfig":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    if tomllib is None:
        raise ImportError("tomli required for TOML config: pip install tomli")
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_ignore_patterns(repo_path: Path) -> tuple[str, ...]:
    """Read git-ignore-style patterns from .commitstoryignore.

    Blank lines and ``#`` comments are skipped.
    """
    ignore_file = repo_path / IGNORE_FILE_NAME
    if not ignore_file.exists():
        return ()

    patterns = []
    for line in ignore_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line)
    return tuple(patterns)


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def dict_to_config(data: dict[str, Any], repo_path: Path) -> CommitStoryConfig:
    """Convert a parsed config file into a CommitStoryConfig.

    Keys starting with ``_`` are treated as comments; unknown keys are ignored.

    Raises:
        ConfigError: If a known key has the wrong type.
    """
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain an object at the top level")

    # TOML files may nest everything under a [commit-story] table
    if "commit-story" in data and isinstance(data["commit-story"], dict):
        data = data["commit-story"]

    values: dict[str, Any] = {}

    for key, value in data.items():
        if key.startswith("_"):
            continue

        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ConfigError(f"'{key}' must be true or false, got {value!r}")
            values[key] = value

        elif key in _STR_KEYS:
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"'{key}' must be a non-empty string, got {value!r}")
            values[key] = Path(value).expanduser() if key == "claude_projects_dir" else value

        elif key in _NUMBER_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"'{key}' must be a positive number, got {value!r}")
            values[key] = _NUMBER_KEYS[key](value)

    return CommitStoryConfig(repo_path=repo_path, **values)


def find_config_file(repo_path: Path) -> Optional[Path]:
    """Find configuration file in the repository root.

    Search order:
    1. commit-story.config.json
    2. commit-story.config.toml
    3. .commit-story.toml
    """
    for name in CONFIG_FILE_NAMES:
        path = repo_path / name
        if path.exists():
            return path

    return None


def load_config(repo_path: Path, config_path: Optional[Path] = None) -> CommitStoryConfig:
    """Load configuration for a repository.

    Also loads ``.env`` from the repository root so OPENAI_API_KEY can live
    there, and applies environment overrides.

    Args:
        repo_path: Root directory of the git repository
        config_path: Optional explicit path to config file

    Returns:
        CommitStoryConfig instance

    Raises:
        ConfigError: If the file cannot be parsed or has invalid values.
    """
    repo_path = Path(repo_path).resolve()

    env_file = repo_path / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=False)

    if config_path is None:
        config_path = find_config_file(repo_path)

    if config_path is None:
        config = CommitStoryConfig(repo_path=repo_path)
    else:
        suffix = config_path.suffix.lower()
        try:
            if suffix == ".json":
                config_dict = load_json_config(config_path)
            elif suffix == ".toml":
                config_dict = load_toml_config(config_path)
            else:
                raise ConfigError(f"Unsupported config file type: {suffix}")
        except (OSError, ValueError) as e:
            # json.JSONDecodeError and tomllib.TOMLDecodeError are ValueErrors
            raise ConfigError(f"Cannot read {config_path.name}: {e}") from e
        config = dict_to_config(config_dict, repo_path)

    overrides: dict[str, Any] = {
        "ignore_patterns": load_ignore_patterns(repo_path),
        "openai_api_key": os.environ.get("OPENAI_API_KEY") or None,
    }
    debug = _env_flag("COMMIT_STORY_DEBUG")
    if debug is not None:
        overrides["debug"] = debug
    dev = _env_flag("COMMIT_STORY_DEV")
    if dev is not None:
        overrides["dev"] = dev

    return config.with_overrides(**overrides)


def write_default_config(repo_path: Path, force: bool = False) -> Optional[Path]:
    """Write commit-story.config.json with defaults.

    Returns:
        Path written, or None if a config already existed and force is False.
    """
    path = repo_path / CONFIG_FILE_NAMES[0]
    if path.exists() and not force:
        return None
    path.write_text(json.dumps(DEFAULT_CONFIG_FILE, indent=2) + "\n", encoding="utf-8")
    return path
