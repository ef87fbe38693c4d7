"""
Single-instance guard for commands that mutate the storage tree.

Two processes moving files under the same storage root would race on the
rename engine and the watch folder, so `src/main.py` holds an exclusive,
non-blocking lock file for the lifetime of the command.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO


class InstanceLockError(RuntimeError):
    """Raised when another instance already holds the storage lock."""

    def __init__(self, lock_path: Path, holder: Optional[str] = None) -> None:
        self.lock_path = lock_path
        self.holder = holder
        message = f"Storage lock is held: {lock_path}"
        if holder:
            message = f"{message} ({holder})"
        super().__init__(message)


@dataclass
class InstanceLock:
    """Open lock file handle; the lock lives as long as the handle."""

    handle: TextIO
    path: Path

    def release(self) -> None:
        if self.handle.closed:
            return
        self.handle.seek(0)
        self.handle.truncate()
        self.handle.close()

    def __enter__(self) -> "InstanceLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def _lock_file(handle: TextIO) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def describe_lock_holder(lock_path: Path) -> Optional[str]:
    """Summarize the pid/command written by the current holder, if readable."""
    try:
        content = lock_path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not content:
        return None
    return ", ".join(line for line in content.splitlines() if line)


def acquire_instance_lock(lock_path: Path, command: Optional[str] = None) -> InstanceLock:
    """Acquire a non-blocking instance lock or raise InstanceLockError."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    try:
        _lock_file(handle)
    except OSError as exc:
        handle.close()
        raise InstanceLockError(lock_path, describe_lock_holder(lock_path)) from exc

    handle.seek(0)
    handle.truncate()
    handle.write(
        "\n".join(
            [
                f"pid={os.getpid()}",
                f"started={datetime.now().isoformat(timespec='seconds')}",
                f"command={command or ' '.join(sys.argv)}",
            ]
        )
    )
    handle.flush()
    return InstanceLock(handle=handle, path=lock_path)
