"""Commit Story - development journal entries from git commits and chat history."""

__version__ = "1.0.0"
