"""Exception hierarchy for Commit Story."""


class CommitStoryError(Exception):
    """Base exception for journal generation."""
    pass


class ConfigError(CommitStoryError):
    """Raised when the configuration file is invalid."""
    pass


class NotFoundError(CommitStoryError):
    """Raised when a repository or commit reference cannot be found."""
    pass


class NoChatDataError(CommitStoryError):
    """Raised when no chat messages exist for the commit window."""
    pass


class MissingApiKeyError(CommitStoryError):
    """Raised when OPENAI_API_KEY is not configured."""
    pass


class GenerationError(CommitStoryError):
    """Raised when an LLM call fails or times out."""
    pass


class JournalWriteError(CommitStoryError):
    """Raised when a journal file cannot be written."""
    pass
