import errno
import os
from pathlib import Path

import pytest

from config import AppConfig
from database import DatabaseManager
from naming import PathResolver
from renaming import RenameEngine
from storage import FileStorage, ReceiptFileService
from watch import WatchFolderService, WatchScheduler


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "metadata": root / "receipt_vault.sqlite",
        "state": root / "state.sqlite",
    }


def build_service(tmp_path: Path) -> tuple[DatabaseManager, WatchFolderService]:
    config = AppConfig.from_dict(
        {
            "paths": {
                "storage_root": "receipts",
                "watch_folder": "watch",
                "upload_staging": "uploads",
            },
            "watch": {"marker_tag": "WATCH_FOLDER", "default_owner": "Inbox"},
        },
        root_dir=tmp_path,
    )
    db_manager = DatabaseManager(build_db_paths(tmp_path))
    db_manager.initialize()
    root = tmp_path / "receipts"
    storage = FileStorage(root)
    resolver = PathResolver(root, pattern_source=db_manager, lookup=db_manager)
    file_service = ReceiptFileService(
        config, db_manager, resolver, storage, RenameEngine(db_manager, resolver, storage)
    )
    return db_manager, WatchFolderService(config, db_manager, file_service, storage)


def test_scan_creates_one_record_per_item(tmp_path: Path) -> None:
    db_manager, service = build_service(tmp_path)
    watch = tmp_path / "watch"
    (watch / "trip").mkdir(parents=True)
    (watch / "lunch.jpg").write_bytes(b"jpeg-bytes")
    (watch / "notes.txt").write_text("ignore me", encoding="utf-8")
    (watch / "trip" / "hotel.png").write_bytes(b"png-bytes")
    (watch / "trip" / "taxi.pdf").write_bytes(b"%PDF-1.4")

    stats = service.scan()

    assert stats.ran is True
    assert stats.records_created == 2
    assert stats.files_stored == 3
    assert stats.skipped == 1
    assert stats.errors == []
    records = db_manager.list_records(tag="WATCH_FOLDER")
    assert [record.id for record in records] == stats.record_ids
    assert all(record.owner == "Inbox" for record in records)
    assert [len(db_manager.list_files_of(record.id)) for record in records] == [1, 2]
    assert service.count_processed_files() == 3
    assert not (watch / "lunch.jpg").exists()
    assert not (watch / "trip").exists()
    assert (watch / "notes.txt").exists()

    assert service.scan().records_created == 0
    assert service.clear_processed() == 3
    assert service.count_processed_files() == 0


def test_scan_is_single_flight(tmp_path: Path) -> None:
    _, service = build_service(tmp_path)
    (tmp_path / "watch").mkdir()
    (tmp_path / "watch" / "receipt.pdf").write_bytes(b"%PDF-1.4")

    service._scan_lock.acquire()
    try:
        stats = service.scan()
    finally:
        service._scan_lock.release()

    assert stats.ran is False
    assert stats.records_created == 0
    assert (tmp_path / "watch" / "receipt.pdf").exists()
    assert service.status().is_scanning is False


def test_scheduler_scans_immediately_and_stops(tmp_path: Path) -> None:
    _, service = build_service(tmp_path)
    (tmp_path / "watch").mkdir()
    (tmp_path / "watch" / "receipt.pdf").write_bytes(b"%PDF-1.4")
    scheduler = WatchScheduler(service, interval_minutes=60)

    scheduler.start()
    try:
        for _ in range(100):
            if service.status().next_scan_at is not None:
                break
            scheduler.wait(0.05)
        assert scheduler.running is True
        assert service.status().next_scan_at is not None
    finally:
        scheduler.stop(timeout=5)

    assert scheduler.running is False
    assert service.status().last_scan_at is not None
    assert service.status().next_scan_at is None
    assert service.count_processed_files() == 1


def test_scan_moves_across_devices(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_manager, service = build_service(tmp_path)
    watch = tmp_path / "watch"
    (watch / "trip").mkdir(parents=True)
    (watch / "lunch.jpg").write_bytes(b"jpeg-bytes")
    (watch / "trip" / "hotel.png").write_bytes(b"png-bytes")

    def cross_device(source, destination):
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(os, "rename", cross_device)
    stats = service.scan()

    assert stats.errors == []
    assert stats.files_stored == 2
    assert service.count_processed_files() == 2
    assert not (watch / "lunch.jpg").exists()
    assert not (watch / "trip").exists()
    processed = sorted(path.name for path in service.processed_folder.rglob("*") if path.is_file())
    assert processed == ["hotel.png", "lunch.jpg"]


def test_items_without_stored_files_are_counted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _, service = build_service(tmp_path)
    (tmp_path / "watch").mkdir()
    (tmp_path / "watch" / "receipt.pdf").write_bytes(b"%PDF-1.4")

    def refuse(*args, **kwargs):
        raise OSError("disk unavailable")

    monkeypatch.setattr(service.file_service, "store_file", refuse)
    stats = service.scan()

    assert stats.records_created == 1
    assert stats.files_stored == 0
    assert stats.empty_records == 1
    assert len(stats.errors) == 1
