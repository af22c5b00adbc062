"""File locking helpers for journal, reflection, and context files.

The post-commit hook and the MCP server can write to the same day file, so
every write takes a portalocker lock on a sidecar ``.lock`` file.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import portalocker

LOCK_TIMEOUT = 10.0


@contextmanager
def file_lock(path: Path, timeout: float = LOCK_TIMEOUT) -> Generator[None, None, None]:
    """Hold an exclusive lock for ``path`` via ``<path>.lock``.

    Raises:
        portalocker.LockException: If lock cannot be acquired
    """
    lock_path = path.with_suffix(path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if not lock_path.exists():
        lock_path.touch()

    with portalocker.Lock(lock_path, timeout=timeout):
        yield


def append_text(path: Path, text: str) -> bool:
    """Append text to a file, creating parent directories as needed.

    Caller is expected to hold ``file_lock(path)``.

    Returns:
        True if the file was created by this call.
    """
    created = not path.exists()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(text)
    return created


def atomic_write_text(path: Path, text: str) -> None:
    """Replace a file's contents atomically.

    Writes to ``<path>.tmp`` and renames over the target.
    """
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
