"""
Keep on-disk locations of receipt files in sync with record metadata.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from database import DatabaseManager, Record, StoredFile
from naming import PathResolver, file_extension, validate_pattern
from storage.operations import FileStorage, MoveResult, file_size, same_path
from utils import ResourceMonitor


class RenameOutcome(str, Enum):
    UNCHANGED = "unchanged"
    RENAME_ONLY = "rename_only"
    RELOCATE = "relocate"
    MISSING_SOURCE = "missing_source"
    DESTINATION_COLLISION = "destination_collision"
    FAILED = "failed"


@dataclass(frozen=True)
class FileRename:
    """Filename change applied to one stored file."""

    file_id: int
    old_filename: str
    new_filename: str
    outcome: RenameOutcome

    def as_dict(self) -> dict:
        return {"file_id": self.file_id, "old_filename": self.old_filename, "new_filename": self.new_filename}


@dataclass
class RecordRenameResult:
    record_id: int
    updates: list[FileRename] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    outcomes: dict[int, RenameOutcome] = field(default_factory=dict)

    @property
    def renamed(self) -> int:
        return len(self.updates)


@dataclass
class BulkRenameStats:
    """Summary of a rename pass over every record."""

    total_records: int = 0
    total_files: int = 0
    renamed: int = 0
    errors: list[dict] = field(default_factory=list)


class RenameEngine:
    """Rename and relocate a record's files after metadata or pattern changes."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        resolver: PathResolver,
        storage: FileStorage,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
        monitor: Optional[ResourceMonitor] = None,
    ) -> None:
        self.db_manager = db_manager
        self.resolver = resolver
        self.storage = storage
        self.logger = logger or logging.getLogger("receipt_vault")
        self.movement_logger = movement_logger or logging.getLogger("receipt_vault.movement")
        self.monitor = monitor

    def rename_record(
        self,
        record: Record,
        files: Optional[list[StoredFile]] = None,
        previous: Optional[Record] = None,
        pattern: Optional[str] = None,
        operation_id: Optional[str] = None,
    ) -> RecordRenameResult:
        """Move every file of `record` to the location its current metadata resolves to."""
        if files is None:
            files = self.db_manager.list_files_of(record.id)
        if pattern is None:
            pattern = self.resolver.current_pattern()
        result = RecordRenameResult(record_id=record.id)
        old_dir = self.resolver.directory_for_record(previous or record)
        new_dir = self.resolver.directory_for_record(record)

        for stored_file in files:
            try:
                outcome = self._rename_file(record, stored_file, old_dir, new_dir, pattern, operation_id, result)
            except (OSError, ValueError) as exc:
                outcome = RenameOutcome.FAILED
                result.errors.append(
                    {
                        "record_id": record.id,
                        "file_id": stored_file.id,
                        "filename": stored_file.filename,
                        "error": str(exc),
                    }
                )
                self.movement_logger.error("Rename failed for file %s (%s): %s", stored_file.id, stored_file.filename, exc)
                self.db_manager.record_file_operation(
                    operation_id,
                    action="rename",
                    source_path=str(old_dir / stored_file.filename),
                    destination_path=None,
                    status="failed",
                    error_message=str(exc),
                )
            result.outcomes[stored_file.id] = outcome

        if not same_path(old_dir, new_dir):
            self.storage.remove_empty_dirs(old_dir, self.resolver.root)
        self.storage.remove_empty_dirs(self.resolver.legacy_directory_for(record.id), self.resolver.root)
        return result

    def _rename_file(
        self,
        record: Record,
        stored_file: StoredFile,
        old_dir: Path,
        new_dir: Path,
        pattern: str,
        operation_id: Optional[str],
        result: RecordRenameResult,
    ) -> RenameOutcome:
        new_filename = self.resolver.filename_for(
            record, stored_file.order, file_extension(stored_file), pattern
        )
        new_path = new_dir / new_filename
        old_path = old_dir / stored_file.filename
        if same_path(old_path, new_path):
            return RenameOutcome.UNCHANGED

        source = self._locate_source(record, stored_file, old_dir, new_dir)
        if source is None:
            self.movement_logger.warning(
                "Source missing for file %s of record %s: %s", stored_file.id, record.id, old_path
            )
            return self._apply_update(stored_file, new_filename, RenameOutcome.MISSING_SOURCE, result)

        size = file_size(source)
        move_result = self.storage.move(source, new_path)
        if move_result is MoveResult.SAME_PATH:
            if stored_file.filename == new_filename:
                return RenameOutcome.UNCHANGED
            return self._apply_update(stored_file, new_filename, RenameOutcome.RENAME_ONLY, result)
        if move_result is MoveResult.SOURCE_MISSING:
            return self._apply_update(stored_file, new_filename, RenameOutcome.MISSING_SOURCE, result)
        if move_result is MoveResult.DESTINATION_EXISTS:
            result.errors.append(
                {
                    "record_id": record.id,
                    "file_id": stored_file.id,
                    "filename": stored_file.filename,
                    "error": f"Destination already exists: {new_path}",
                }
            )
            self.db_manager.record_file_operation(
                operation_id,
                action="rename",
                source_path=str(source),
                destination_path=str(new_path),
                status="skipped",
                error_message="destination_exists",
            )
            return RenameOutcome.DESTINATION_COLLISION

        outcome = RenameOutcome.RENAME_ONLY if same_path(source.parent, new_dir) else RenameOutcome.RELOCATE
        self.db_manager.record_file_operation(
            operation_id,
            action="rename" if outcome is RenameOutcome.RENAME_ONLY else "relocate",
            source_path=str(source),
            destination_path=str(new_path),
            status="completed",
            size=size,
        )
        return self._apply_update(stored_file, new_filename, outcome, result)

    def _locate_source(
        self, record: Record, stored_file: StoredFile, old_dir: Path, new_dir: Path
    ) -> Optional[Path]:
        candidates = [
            old_dir / stored_file.filename,
            new_dir / stored_file.filename,
            self.resolver.legacy_directory_for(record.id) / stored_file.filename,
        ]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def _apply_update(
        self,
        stored_file: StoredFile,
        new_filename: str,
        outcome: RenameOutcome,
        result: RecordRenameResult,
    ) -> RenameOutcome:
        self.db_manager.set_filename(stored_file.id, new_filename)
        result.updates.append(
            FileRename(
                file_id=stored_file.id,
                old_filename=stored_file.filename,
                new_filename=new_filename,
                outcome=outcome,
            )
        )
        return outcome

    def rename_all(self, pattern: Optional[str] = None, operation_id: Optional[str] = None) -> BulkRenameStats:
        """Re-resolve every file of every record with the given or stored pattern."""
        if pattern is not None:
            validate_pattern(pattern)
        else:
            pattern = self.resolver.current_pattern()
        stats = BulkRenameStats()

        for record in self.db_manager.list_records():
            if self.monitor is not None:
                self.monitor.throttle()
            files = self.db_manager.list_files_of(record.id)
            stats.total_records += 1
            stats.total_files += len(files)
            if not files:
                continue
            try:
                result = self.rename_record(record, files, pattern=pattern, operation_id=operation_id)
            except Exception as exc:
                self.logger.exception("Rename failed for record %s", record.id)
                stats.errors.append({"record_id": record.id, "error": str(exc)})
                continue
            stats.renamed += result.renamed
            stats.errors.extend(result.errors)

        self.logger.info(
            "Rename pass completed. Records=%s Files=%s Renamed=%s Errors=%s",
            stats.total_records,
            stats.total_files,
            stats.renamed,
            len(stats.errors),
        )
        return stats
