"""
Create, update, read and delete stored receipt files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional

from config import AppConfig
from database import DatabaseManager, Record, StoredFile
from naming import PathResolver
from optimization import ImageOptimizationError, ImageOptimizer, OptimizationOutcome

from .operations import FileStorage, MoveResult, file_size

if TYPE_CHECKING:
    from renaming import RecordRenameResult, RenameEngine


@dataclass(frozen=True)
class RecordUpdate:
    record: Record
    rename: Optional["RecordRenameResult"] = None


class ReceiptFileService:
    """Upload path and record-change hook for receipt files."""

    def __init__(
        self,
        config: AppConfig,
        db_manager: DatabaseManager,
        resolver: PathResolver,
        storage: FileStorage,
        rename_engine: "RenameEngine",
        optimizer: Optional[ImageOptimizer] = None,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.db_manager = db_manager
        self.resolver = resolver
        self.storage = storage
        self.rename_engine = rename_engine
        self.optimizer = optimizer
        self.logger = logger or logging.getLogger("receipt_vault")
        self.movement_logger = movement_logger or logging.getLogger("receipt_vault.movement")
        self.optimize_on_upload = bool(config.get("optimization", "enabled_on_upload", default=True))
        self._root_checked = False

    def store_file(
        self,
        record: Record,
        staged_path: Path,
        original_filename: Optional[str] = None,
        order: Optional[int] = None,
        operation_id: Optional[str] = None,
    ) -> StoredFile:
        """Place a staged file at its canonical location and register it."""
        if not self._root_checked:
            self.storage.ensure_root()
            self._root_checked = True
        staged_path = Path(staged_path)
        original_filename = original_filename or staged_path.name
        if order is None:
            existing = [stored.order for stored in self.db_manager.list_files_of(record.id)]
            order = max(existing) + 1 if existing else 0

        source, optimized = self._optimize_staged(staged_path)
        ext = source.suffix or Path(original_filename).suffix
        directory = self.resolver.ensure_directory(self.resolver.directory_for_record(record))
        filename = self.resolver.filename_for(record, order, ext)
        destination = directory / filename
        size = file_size(source)

        try:
            move_result = self.storage.move(source, destination)
            if move_result is MoveResult.DESTINATION_EXISTS:
                raise FileExistsError(f"Destination already exists: {destination}")
            if move_result is MoveResult.SOURCE_MISSING:
                raise FileNotFoundError(f"Staged file missing: {source}")
        finally:
            # Leftover optimized output in the staging folder.
            if source != staged_path and source.exists():
                source.unlink()
        if source != staged_path and staged_path.exists():
            staged_path.unlink()

        stored = self.db_manager.insert_file(record.id, filename, original_filename, order)
        if optimized:
            self.db_manager.mark_optimized(stored.id)
        self.db_manager.record_file_operation(
            operation_id,
            action="store",
            source_path=str(staged_path),
            destination_path=str(destination),
            status="completed",
            size=size,
        )
        return self.db_manager.get_file(stored.id)

    def _optimize_staged(self, staged_path: Path) -> tuple[Path, bool]:
        if not self.optimize_on_upload or self.optimizer is None or not self.optimizer.is_image(staged_path):
            return staged_path, False
        try:
            result = self.optimizer.optimize(staged_path, self.optimizer.output_path_for(staged_path))
        except ImageOptimizationError as exc:
            self.logger.warning("Inline optimization failed, storing original: %s (%s)", staged_path, exc)
            return staged_path, False
        if result.outcome is OptimizationOutcome.OPTIMIZED:
            return result.output, True
        return staged_path, True

    def create_record_with_files(
        self,
        files: Iterable[tuple[Path, str]],
        owner: str,
        date: str,
        vendor: str = "",
        amount: float = 0.0,
        category: str = "",
        tags: Iterable[str] = (),
        operation_id: Optional[str] = None,
    ) -> tuple[Record, list[StoredFile]]:
        """Create a record and store each `(staged_path, original_filename)` in order."""
        record = self.db_manager.create_record(
            owner=owner, date=date, vendor=vendor, amount=amount, category=category, tags=tags
        )
        stored = []
        for order, (staged_path, original_filename) in enumerate(files):
            stored.append(self.store_file(record, staged_path, original_filename, order, operation_id))
        return record, stored

    def apply_record_change(
        self,
        previous: Record,
        current: Record,
        operation_id: Optional[str] = None,
    ) -> Optional["RecordRenameResult"]:
        """Re-resolve a record's files when a filename-relevant field changed."""
        if previous.naming_key() == current.naming_key():
            return None
        return self.rename_engine.rename_record(current, previous=previous, operation_id=operation_id)

    def update_record(self, record_id: int, **changes: Any) -> Optional[RecordUpdate]:
        previous = self.db_manager.get_record(record_id)
        if previous is None:
            return None
        current = self.db_manager.update_record(record_id, **changes)
        return RecordUpdate(record=current, rename=self.apply_record_change(previous, current))

    def locate(self, stored_file: StoredFile) -> Optional[Path]:
        """Return the on-disk path of a stored file, checking the legacy layout too."""
        record = self.db_manager.get_record(stored_file.record_id)
        if record is None:
            return None
        candidates = [
            self.resolver.path_for(record, stored_file),
            self.resolver.legacy_directory_for(record.id) / stored_file.filename,
        ]
        for candidate in candidates:
            if self.storage.exists(candidate):
                return candidate
        return None

    def read_file(self, file_id: int) -> bytes:
        stored_file = self.db_manager.get_file(file_id)
        if stored_file is None:
            raise FileNotFoundError(f"Unknown file id: {file_id}")
        path = self.locate(stored_file)
        if path is None:
            raise FileNotFoundError(f"File {file_id} is missing on disk: {stored_file.filename}")
        return self.storage.read(path)

    def delete_file(self, file_id: int) -> bool:
        """Delete one file and its row; returns False when the physical file was already gone."""
        stored_file = self.db_manager.get_file(file_id)
        if stored_file is None:
            return False
        path = self.locate(stored_file)
        deleted = False
        if path is not None:
            deleted = self.storage.delete(path)
            self.storage.remove_empty_dirs(path.parent, self.resolver.root)
        self.db_manager.delete_file(file_id)
        return deleted

    def delete_record(self, record_id: int) -> int:
        """Delete a record with all of its files; returns the number of files removed from disk."""
        deleted = 0
        for stored_file in self.db_manager.list_files_of(record_id):
            if self.delete_file(stored_file.id):
                deleted += 1
        self.db_manager.delete_record(record_id)
        return deleted
