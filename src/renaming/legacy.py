"""
Migration from the legacy `{root}/{record_id}/` layout to owner/date directories.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from database import DatabaseManager
from naming import PathResolver
from storage.operations import FileStorage, MoveResult, file_size
from utils import ResourceMonitor

from .engine import RenameEngine


@dataclass
class LegacyMigrationStats:
    directories_scanned: int = 0
    migrated: int = 0
    skipped: int = 0
    directories_removed: int = 0
    renamed: int = 0
    errors: list[dict] = field(default_factory=list)


def is_legacy_directory(path: Path) -> bool:
    """Numeric directory name with no subdirectories."""
    if not path.is_dir() or not path.name.isdigit():
        return False
    return not any(child.is_dir() for child in path.iterdir())


class LegacyLayoutMigrator:
    """Move files out of per-record-id directories into the owner/date layout.

    With a rename engine, each migrated record is renamed afterwards so its
    files follow the current naming pattern; without one, run `rename_all`.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        resolver: PathResolver,
        storage: FileStorage,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
        monitor: Optional[ResourceMonitor] = None,
        rename_engine: Optional[RenameEngine] = None,
    ) -> None:
        self.db_manager = db_manager
        self.resolver = resolver
        self.storage = storage
        self.rename_engine = rename_engine
        self.logger = logger or logging.getLogger("receipt_vault")
        self.movement_logger = movement_logger or logging.getLogger("receipt_vault.movement")
        self.monitor = monitor

    def legacy_directories(self) -> list[Path]:
        root = self.resolver.root
        if not root.exists():
            return []
        return sorted(
            (path for path in root.iterdir() if is_legacy_directory(path)),
            key=lambda path: int(path.name),
        )

    def migrate(self, operation_id: Optional[str] = None) -> LegacyMigrationStats:
        stats = LegacyMigrationStats()
        for legacy_dir in self.legacy_directories():
            stats.directories_scanned += 1
            if self.monitor is not None:
                self.monitor.throttle()
            try:
                self._migrate_directory(legacy_dir, operation_id, stats)
            except OSError as exc:
                stats.errors.append({"path": str(legacy_dir), "error": str(exc)})
                self.logger.error("Legacy migration failed for %s: %s", legacy_dir, exc)

        self.logger.info(
            "Legacy migration completed. Directories=%s Migrated=%s Renamed=%s Skipped=%s Removed=%s Errors=%s",
            stats.directories_scanned,
            stats.migrated,
            stats.renamed,
            stats.skipped,
            stats.directories_removed,
            len(stats.errors),
        )
        return stats

    def _migrate_directory(self, legacy_dir: Path, operation_id: Optional[str], stats: LegacyMigrationStats) -> None:
        record_id = int(legacy_dir.name)
        record = self.db_manager.get_record(record_id)
        if record is None:
            stats.errors.append({"record_id": record_id, "path": str(legacy_dir), "error": "Unknown record id"})
            self.logger.warning("Legacy directory %s has no matching record", legacy_dir)
            return

        known = {stored.filename for stored in self.db_manager.list_files_of(record_id)}
        target_dir = self.resolver.directory_for_record(record)
        migrated_before = stats.migrated
        for path in sorted(legacy_dir.iterdir()):
            if not path.is_file():
                continue
            if path.name not in known:
                stats.skipped += 1
                self.logger.warning("Leaving untracked file in legacy directory: %s", path)
                continue
            destination = target_dir / path.name
            size = file_size(path)
            try:
                move_result = self.storage.move(path, destination)
            except OSError as exc:
                stats.errors.append({"record_id": record_id, "path": str(path), "error": str(exc)})
                self.movement_logger.error("Legacy move failed: %s -> %s (%s)", path, destination, exc)
                self.db_manager.record_file_operation(
                    operation_id,
                    action="migrate",
                    source_path=str(path),
                    destination_path=str(destination),
                    status="failed",
                    error_message=str(exc),
                )
                continue
            if move_result is MoveResult.DESTINATION_EXISTS:
                stats.errors.append(
                    {"record_id": record_id, "path": str(path), "error": f"Destination already exists: {destination}"}
                )
                continue
            if move_result is MoveResult.MOVED:
                stats.migrated += 1
                self.db_manager.record_file_operation(
                    operation_id,
                    action="migrate",
                    source_path=str(path),
                    destination_path=str(destination),
                    status="completed",
                    size=size,
                )

        if not any(legacy_dir.iterdir()):
            legacy_dir.rmdir()
            stats.directories_removed += 1
            self.movement_logger.info("Removed legacy directory: %s", legacy_dir)

        if self.rename_engine is not None and stats.migrated > migrated_before:
            result = self.rename_engine.rename_record(record, operation_id=operation_id)
            stats.renamed += result.renamed
            stats.errors.extend(result.errors)
