"""
Ingest receipts dropped into the watch folder.

Every supported file at the top of the watch folder becomes one record, and
every immediate subdirectory becomes one record holding its supported files.
Originals are moved to `processed/<timestamp>/` once stored.
"""

from __future__ import annotations

import logging
import shutil
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from config import AppConfig, ensure_directories
from database import DatabaseManager, Record
from storage import FileStorage, ReceiptFileService

DEFAULT_WATCH_EXTENSIONS = [".jpg", ".jpeg", ".png", ".webp", ".pdf"]
PROCESSED_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"


@dataclass
class ScanState:
    last_scan_at: Optional[datetime] = None
    next_scan_at: Optional[datetime] = None
    is_scanning: bool = False

    def as_dict(self) -> dict:
        return {
            "last_scan_at": self.last_scan_at.isoformat() if self.last_scan_at else None,
            "next_scan_at": self.next_scan_at.isoformat() if self.next_scan_at else None,
            "is_scanning": self.is_scanning,
        }


@dataclass
class ScanStats:
    """Summary of one watch folder scan."""

    ran: bool = True
    records_created: int = 0
    files_stored: int = 0
    skipped: int = 0
    empty_records: int = 0
    record_ids: list[int] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)


class WatchFolderService:
    """Single-flight scanner turning watch folder entries into records."""

    def __init__(
        self,
        config: AppConfig,
        db_manager: DatabaseManager,
        file_service: ReceiptFileService,
        storage: FileStorage,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.db_manager = db_manager
        self.file_service = file_service
        self.storage = storage
        self.logger = logger or logging.getLogger("receipt_vault")
        self.movement_logger = movement_logger or logging.getLogger("receipt_vault.movement")

        self.watch_folder = config.resolve_path("paths", "watch_folder", default="data/watch")
        self.staging_folder = config.resolve_path("paths", "upload_staging", default="data/uploads")
        self.processed_name = str(config.get("watch", "processed_folder", default="processed"))
        self.processed_folder = self.watch_folder / self.processed_name
        self.marker_tag = str(config.get("watch", "marker_tag", default="WATCH_FOLDER"))
        self.supported_extensions = config.get_extensions(
            "watch", "supported_extensions", default=DEFAULT_WATCH_EXTENSIONS
        )
        self.default_owner = str(config.get("watch", "default_owner", default="") or "")
        self.default_category = str(config.get("watch", "default_category", default="") or "")

        self.state = ScanState()
        self._scan_lock = threading.Lock()
        self._marker_tag_name: Optional[str] = None

    def is_supported(self, path: Path) -> bool:
        return path.suffix.lower() in self.supported_extensions

    def status(self) -> ScanState:
        return ScanState(
            last_scan_at=self.state.last_scan_at,
            next_scan_at=self.state.next_scan_at,
            is_scanning=self.state.is_scanning,
        )

    def scan(self, operation_id: Optional[str] = None) -> ScanStats:
        """Process the watch folder once; returns `ran=False` if a scan is already running."""
        if not self._scan_lock.acquire(blocking=False):
            self.logger.info("Watch folder scan already in progress, skipping")
            return ScanStats(ran=False)
        self.state.is_scanning = True
        stats = ScanStats()
        try:
            ensure_directories([self.watch_folder, self.processed_folder, self.staging_folder])
            root_files: list[Path] = []
            directories: list[Path] = []
            for entry in sorted(self.watch_folder.iterdir()):
                if entry.name == self.processed_name or entry.name.startswith("."):
                    continue
                if entry.is_file():
                    if self.is_supported(entry):
                        root_files.append(entry)
                    else:
                        stats.skipped += 1
                        self.logger.info("Skipping unsupported file: %s", entry.name)
                elif entry.is_dir():
                    directories.append(entry)

            for path in root_files:
                self._process_item([path], path.name, None, stats, operation_id)

            for directory in directories:
                try:
                    files = []
                    for entry in sorted(directory.iterdir()):
                        if not entry.is_file() or entry.name.startswith("."):
                            continue
                        if self.is_supported(entry):
                            files.append(entry)
                        else:
                            stats.skipped += 1
                            self.logger.info("Skipping unsupported file: %s", entry)
                    if files:
                        self._process_item(files, directory.name, directory.name, stats, operation_id)
                    self.storage.remove_empty_dirs(directory, self.watch_folder)
                except OSError as exc:
                    stats.errors.append({"path": str(directory), "error": str(exc)})
                    self.logger.error("Failed to process watch directory %s: %s", directory, exc)

            self.state.last_scan_at = datetime.now()
            self.logger.info(
                "Watch folder scan completed. Records=%s Empty=%s Files=%s Skipped=%s Errors=%s",
                stats.records_created,
                stats.empty_records,
                stats.files_stored,
                stats.skipped,
                len(stats.errors),
            )
        finally:
            self.state.is_scanning = False
            self._scan_lock.release()
        return stats

    def _marker(self) -> str:
        if self._marker_tag_name is None:
            self._marker_tag_name = self.db_manager.get_or_create_tag(self.marker_tag).name
        return self._marker_tag_name

    def _process_item(
        self,
        files: list[Path],
        source_name: str,
        directory_name: Optional[str],
        stats: ScanStats,
        operation_id: Optional[str],
    ) -> None:
        try:
            record = self.db_manager.create_record(
                owner=self.default_owner,
                date=datetime.now().date().isoformat(),
                vendor="",
                amount=0.0,
                category=self.default_category,
                tags=[self._marker()],
            )
        except Exception as exc:
            stats.errors.append({"path": source_name, "error": str(exc)})
            self.logger.exception("Failed to create record for %s", source_name)
            return

        stats.records_created += 1
        stats.record_ids.append(record.id)
        stored_before = stats.files_stored
        for order, path in enumerate(files):
            self._store_one(record, path, order, stats, operation_id)
        if stats.files_stored == stored_before:
            stats.empty_records += 1
            self.logger.warning("Record %s from %s has no stored files", record.id, source_name)

        target = self.processed_folder / datetime.now().strftime(PROCESSED_TIMESTAMP_FORMAT)
        if directory_name:
            target = target / directory_name
        for path in files:
            if not path.exists():
                continue
            try:
                destination = self._resolve_conflict(target / path.name)
                self.storage.move(path, destination)
            except OSError as exc:
                stats.errors.append({"path": str(path), "error": f"Failed to move to processed: {exc}"})
                self.movement_logger.error("Failed to move %s to processed folder: %s", path, exc)
        self.logger.info("Created record %s from %s file(s) in %s", record.id, len(files), source_name)

    def _store_one(
        self,
        record: Record,
        path: Path,
        order: int,
        stats: ScanStats,
        operation_id: Optional[str],
    ) -> None:
        staged = self.staging_folder / f"watch-{uuid.uuid4().hex[:12]}-{order}-{path.name}"
        try:
            shutil.copy2(path, staged)
            self.file_service.store_file(record, staged, path.name, order, operation_id)
            stats.files_stored += 1
        except Exception as exc:
            stats.errors.append({"record_id": record.id, "path": str(path), "error": str(exc)})
            self.logger.error("Failed to store watch file %s for record %s: %s", path, record.id, exc)
        finally:
            if staged.exists():
                staged.unlink()

    def _resolve_conflict(self, destination: Path) -> Path:
        if not destination.exists():
            return destination
        stem = destination.stem
        suffix = destination.suffix
        parent = destination.parent
        counter = 1
        while True:
            candidate = parent / f"{stem}__{counter}{suffix}"
            if not candidate.exists():
                return candidate
            counter += 1

    def count_processed_files(self) -> int:
        if not self.processed_folder.exists():
            return 0
        return sum(1 for path in self.processed_folder.rglob("*") if path.is_file())

    def clear_processed(self) -> int:
        """Delete everything under the processed folder; returns the number of files removed."""
        with self._scan_lock:
            removed = self.count_processed_files()
            if not self.processed_folder.exists():
                return 0
            for entry in self.processed_folder.iterdir():
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            self.movement_logger.info("Cleared processed folder %s (%s files)", self.processed_folder, removed)
        return removed
