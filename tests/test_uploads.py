from pathlib import Path

import pytest
from PIL import Image

from config import AppConfig
from database import DatabaseManager
from naming import PathResolver
from optimization import ImageOptimizer
from renaming import RenameEngine
from storage import FileStorage, ReceiptFileService


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "metadata": root / "receipt_vault.sqlite",
        "state": root / "state.sqlite",
    }


def build_service(tmp_path: Path, with_optimizer: bool = False) -> tuple[DatabaseManager, PathResolver, ReceiptFileService]:
    config = AppConfig.from_dict(
        {"optimization": {"enabled_on_upload": True, "min_size_bytes": 0, "max_dimension_px": 800}},
        root_dir=tmp_path,
    )
    db_manager = DatabaseManager(build_db_paths(tmp_path))
    db_manager.initialize()
    root = tmp_path / "receipts"
    storage = FileStorage(root)
    resolver = PathResolver(root, pattern_source=db_manager, lookup=db_manager)
    optimizer = ImageOptimizer(config) if with_optimizer else None
    service = ReceiptFileService(
        config,
        db_manager,
        resolver,
        storage,
        RenameEngine(db_manager, resolver, storage),
        optimizer=optimizer,
    )
    return db_manager, resolver, service


def stage(tmp_path: Path, name: str, payload: bytes) -> Path:
    staging = tmp_path / "uploads"
    staging.mkdir(exist_ok=True)
    path = staging / name
    path.write_bytes(payload)
    return path


def test_store_file_places_file_at_canonical_path(tmp_path: Path) -> None:
    db_manager, resolver, service = build_service(tmp_path)
    record = db_manager.create_record(
        owner="John Doe", date="2024-01-15", vendor="Test Clinic", amount=100.5, category="Medical"
    )

    first = service.store_file(record, stage(tmp_path, "upload-1", b"first"), "scan.PDF")
    second = service.store_file(record, stage(tmp_path, "upload-2.jpg", b"second"), "photo.jpg")

    directory = resolver.directory_for_record(record)
    assert first.order == 0
    assert second.order == 1
    assert first.filename == f"2024-01-15_john-doe_test-clinic_100-50_medical_0[{record.id}-0].pdf"
    assert second.filename.endswith(f"[{record.id}-1].jpg")
    assert (directory / first.filename).read_bytes() == b"first"
    assert not (tmp_path / "uploads" / "upload-1").exists()
    assert first.original_filename == "scan.PDF"
    assert first.is_optimized is False


def test_update_record_relocates_files(tmp_path: Path) -> None:
    db_manager, resolver, service = build_service(tmp_path)
    record, stored = service.create_record_with_files(
        [(stage(tmp_path, "a.pdf", b"a"), "a.pdf"), (stage(tmp_path, "b.pdf", b"b"), "b.pdf")],
        owner="John Doe",
        date="2024-01-15",
        vendor="Clinic",
        amount=20,
    )
    old_directory = resolver.directory_for_record(record)

    update = service.update_record(record.id, owner="Jane Roe", amount=25)

    assert update is not None
    assert update.rename is not None
    assert update.rename.errors == []
    new_directory = resolver.directory_for_record(update.record)
    assert new_directory != old_directory
    for item in db_manager.list_files_of(record.id):
        assert "jane-roe" in item.filename
        assert (new_directory / item.filename).exists()
    assert not old_directory.exists()
    assert service.read_file(stored[1].id) == b"b"

    unchanged = service.update_record(record.id, category="")
    assert unchanged.rename is None
    assert service.update_record(9999, owner="Nobody") is None


def test_read_and_delete(tmp_path: Path) -> None:
    db_manager, resolver, service = build_service(tmp_path)
    record, stored = service.create_record_with_files(
        [(stage(tmp_path, "a.pdf", b"a"), "a.pdf"), (stage(tmp_path, "b.pdf", b"b"), "b.pdf")],
        owner="John Doe",
        date="2024-01-15",
    )
    directory = resolver.directory_for_record(record)

    assert service.read_file(stored[0].id) == b"a"
    (directory / stored[1].filename).unlink()
    with pytest.raises(FileNotFoundError):
        service.read_file(stored[1].id)

    assert service.delete_file(stored[1].id) is False
    assert db_manager.get_file(stored[1].id) is None
    assert service.delete_record(record.id) == 1
    assert db_manager.get_record(record.id) is None
    assert not directory.exists()


def test_inline_optimization_and_fallback(tmp_path: Path) -> None:
    db_manager, resolver, service = build_service(tmp_path, with_optimizer=True)
    record = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Clinic")
    staged = tmp_path / "uploads" / "photo.png"
    staged.parent.mkdir(parents=True)
    Image.new("RGB", (1600, 1200), (30, 120, 200)).save(staged, format="PNG")

    optimized = service.store_file(record, staged, "photo.png")
    broken = service.store_file(record, stage(tmp_path, "broken.jpg", b"not an image"), "broken.jpg")

    directory = resolver.directory_for_record(record)
    assert optimized.filename.endswith(".webp")
    assert optimized.is_optimized is True
    assert not staged.exists()
    assert not staged.with_suffix(".webp").exists()
    with Image.open(directory / optimized.filename) as image:
        assert image.size == (800, 600)
    assert broken.filename.endswith(".jpg")
    assert broken.is_optimized is False
    assert (directory / broken.filename).read_bytes() == b"not an image"


def test_failed_store_removes_optimized_output(tmp_path: Path) -> None:
    db_manager, resolver, service = build_service(tmp_path, with_optimizer=True)
    record = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Clinic")
    directory = resolver.ensure_directory(resolver.directory_for_record(record))
    blocker = directory / resolver.filename_for(record, 0, ".webp")
    blocker.write_bytes(b"already here")
    staged = tmp_path / "uploads" / "photo.png"
    staged.parent.mkdir(parents=True)
    Image.new("RGB", (1600, 1200), (30, 120, 200)).save(staged, format="PNG")

    with pytest.raises(FileExistsError):
        service.store_file(record, staged, "photo.png", order=0)

    assert not staged.with_suffix(".webp").exists()
    assert staged.exists()
    assert blocker.read_bytes() == b"already here"
    assert db_manager.list_files_of(record.id) == []
