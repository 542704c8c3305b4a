"""File locking for publishing rendered artifacts."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import portalocker


@contextmanager
def file_lock(path: Path, timeout: float = 10.0) -> Generator[None, None, None]:
    """Acquire an exclusive lock on a file.

    Creates a .lock file alongside the target file.

    Args:
        path: File to lock
        timeout: Seconds to wait for lock

    Raises:
        portalocker.LockException: If lock cannot be acquired
    """
    lock_path = path.with_name(f".{path.name}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if not lock_path.exists():
        lock_path.touch()

    with portalocker.Lock(lock_path, timeout=timeout):
        yield


def publish_file(tmp_path: Path, target: Path, timeout: float = 10.0) -> Path:
    """Move a finished temp file over ``target`` atomically, under a lock.

    Concurrent publishers of the same target serialize on the lock; the
    last one wins and readers never see a half-written file.

    Returns:
        The target path
    """
    with file_lock(target, timeout=timeout):
        os.replace(tmp_path, target)
    return target


def discard_file(path: Path) -> bool:
    """Remove a partial artifact if it exists.

    Returns:
        True if a file was removed
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
