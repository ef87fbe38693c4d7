"""
Filesystem primitives for the receipt storage tree.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional


class StorageRootError(RuntimeError):
    """Raised when the storage root cannot be created or written to."""


class MoveResult(str, Enum):
    MOVED = "moved"
    SAME_PATH = "same_path"
    SOURCE_MISSING = "source_missing"
    DESTINATION_EXISTS = "destination_exists"


def same_path(first: Path, second: Path) -> bool:
    return os.path.normcase(os.path.abspath(first)) == os.path.normcase(os.path.abspath(second))


class FileStorage:
    """Read, write and move files below a single storage root."""

    def __init__(
        self,
        root: Path,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.root = Path(root)
        self.logger = logger or logging.getLogger("receipt_vault")
        self.movement_logger = movement_logger or logging.getLogger("receipt_vault.movement")

    def ensure_root(self) -> Path:
        """Create the storage root and verify it is writable."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=self.root, prefix=".write_check_"):
                pass
        except OSError as exc:
            raise StorageRootError(f"Storage root is not usable: {self.root} ({exc})") from exc
        return self.root

    def exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def read(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def write(self, path: Path, data: bytes) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def delete(self, path: Path) -> bool:
        """Delete a file; a missing file is reported as False, not an error."""
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError:
            self.movement_logger.info("Delete skipped, file missing: %s", path)
            return False
        self.movement_logger.info("Deleted: %s", path)
        return True

    def copy(self, source: Path, destination: Path) -> Path:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
        self.movement_logger.info("Copied: %s -> %s", source, destination)
        return destination

    def move(self, source: Path, destination: Path) -> MoveResult:
        """Move a file without ever overwriting an existing destination."""
        source = Path(source)
        destination = Path(destination)
        if same_path(source, destination):
            return MoveResult.SAME_PATH
        if not source.exists():
            self.movement_logger.warning("Move skipped, source missing: %s", source)
            return MoveResult.SOURCE_MISSING
        if destination.exists():
            self.movement_logger.warning("Move skipped, destination exists: %s -> %s", source, destination)
            return MoveResult.DESTINATION_EXISTS
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.rename(source, destination)
        except OSError:
            # Cross-device moves fall back to copy and delete.
            self._copy_then_delete(source, destination)
        self.movement_logger.info("Moved: %s -> %s", source, destination)
        return MoveResult.MOVED

    def _copy_then_delete(self, source: Path, destination: Path) -> None:
        """Copy through a hidden partial file so a failed copy never occupies `destination`."""
        partial = destination.with_name(f".{destination.name}.part")
        try:
            shutil.copy2(source, partial)
            os.replace(partial, destination)
        except OSError:
            _discard(partial)
            self.movement_logger.error("Copy fallback failed: %s -> %s", source, destination)
            raise
        source.unlink()

    def remove_empty_dirs(self, start: Path, stop: Optional[Path] = None) -> bool:
        """Remove `start` and its empty parents up to (not including) `stop`."""
        stop = Path(stop) if stop is not None else self.root
        current = Path(start)
        removed = False
        while not same_path(current, stop) and _is_within(current, stop):
            try:
                current.rmdir()
            except OSError:
                break
            self.movement_logger.info("Removed empty directory: %s", current)
            removed = True
            current = current.parent
        return removed


def _is_within(path: Path, root: Path) -> bool:
    try:
        Path(os.path.abspath(path)).relative_to(os.path.abspath(root))
    except ValueError:
        return False
    return True


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def file_size(path: Path) -> Optional[int]:
    try:
        return Path(path).stat().st_size
    except OSError:
        return None
