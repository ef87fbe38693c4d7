from datetime import date
from pathlib import Path

from database import DatabaseManager, Record, StoredFile
from naming import PathResolver
from renaming import RenameEngine, RenameOutcome
from storage import FileStorage


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "metadata": root / "receipt_vault.sqlite",
        "state": root / "state.sqlite",
    }


def build_engine(tmp_path: Path) -> tuple[DatabaseManager, PathResolver, RenameEngine]:
    db_manager = DatabaseManager(build_db_paths(tmp_path))
    db_manager.initialize()
    root = tmp_path / "receipts"
    resolver = PathResolver(root, pattern_source=db_manager, lookup=db_manager)
    engine = RenameEngine(db_manager, resolver, FileStorage(root))
    return db_manager, resolver, engine


def place_file(db_manager: DatabaseManager, resolver: PathResolver, record: Record, order: int = 0) -> StoredFile:
    filename = resolver.filename_for(record, order, ".pdf")
    directory = resolver.ensure_directory(resolver.directory_for_record(record))
    (directory / filename).write_bytes(b"%PDF-1.4 receipt")
    return db_manager.insert_file(record.id, filename, "scan.pdf", order)


def test_owner_change_relocates_file(tmp_path: Path) -> None:
    db_manager, resolver, engine = build_engine(tmp_path)
    db_manager.set_pattern("{date}_{vendor}_{index}")
    previous = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Test Clinic", amount=10)
    stored = place_file(db_manager, resolver, previous)
    old_dir = resolver.directory_for_record(previous)

    current = db_manager.update_record(previous.id, owner="Jane Roe")
    result = engine.rename_record(current, previous=previous)

    new_path = resolver.directory_for_record(current) / stored.filename
    assert result.errors == []
    assert result.outcomes[stored.id] is RenameOutcome.RELOCATE
    assert new_path.read_bytes() == b"%PDF-1.4 receipt"
    assert not old_dir.exists() or not any(old_dir.iterdir())
    assert db_manager.get_file(stored.id).filename == stored.filename


def test_missing_source_still_updates_filename(tmp_path: Path) -> None:
    db_manager, resolver, engine = build_engine(tmp_path)
    previous = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Old Vendor", amount=5)
    stored = place_file(db_manager, resolver, previous)
    (resolver.directory_for_record(previous) / stored.filename).unlink()

    current = db_manager.update_record(previous.id, vendor="New Vendor")
    result = engine.rename_record(current, previous=previous)

    assert result.errors == []
    assert result.outcomes[stored.id] is RenameOutcome.MISSING_SOURCE
    assert len(result.updates) == 1
    assert "new-vendor" in result.updates[0].new_filename
    assert result.updates[0].new_filename.endswith(f"[{current.id}-0].pdf")
    assert db_manager.get_file(stored.id).filename == result.updates[0].new_filename


def test_vendor_change_renames_in_place(tmp_path: Path) -> None:
    db_manager, resolver, engine = build_engine(tmp_path)
    previous = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Old Vendor", amount=5)
    stored = place_file(db_manager, resolver, previous)

    current = db_manager.update_record(previous.id, vendor="New Vendor")
    result = engine.rename_record(current, previous=previous)

    directory = resolver.directory_for_record(current)
    new_filename = db_manager.get_file(stored.id).filename
    assert result.outcomes[stored.id] is RenameOutcome.RENAME_ONLY
    assert (directory / new_filename).exists()
    assert not (directory / stored.filename).exists()


def test_collision_leaves_file_and_metadata_untouched(tmp_path: Path) -> None:
    db_manager, resolver, engine = build_engine(tmp_path)
    previous = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Old Vendor", amount=5)
    stored = place_file(db_manager, resolver, previous)
    current = db_manager.update_record(previous.id, vendor="New Vendor")
    blocker = resolver.directory_for_record(current) / resolver.filename_for(current, 0, ".pdf")
    blocker.write_bytes(b"someone else")

    result = engine.rename_record(current, previous=previous)

    assert result.outcomes[stored.id] is RenameOutcome.DESTINATION_COLLISION
    assert len(result.errors) == 1
    assert db_manager.get_file(stored.id).filename == stored.filename
    assert (resolver.directory_for_record(current) / stored.filename).exists()
    assert blocker.read_bytes() == b"someone else"


def test_rename_all_is_idempotent_and_follows_pattern(tmp_path: Path) -> None:
    db_manager, resolver, engine = build_engine(tmp_path)
    first = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Clinic", amount=100.5)
    second = db_manager.create_record(owner="Jane Roe", date="2024-03-02", vendor="Pharmacy", amount=7)
    place_file(db_manager, resolver, first, 0)
    place_file(db_manager, resolver, first, 1)
    place_file(db_manager, resolver, second, 0)

    unchanged = engine.rename_all()
    assert unchanged.total_records == 2
    assert unchanged.total_files == 3
    assert unchanged.renamed == 0
    assert unchanged.errors == []

    db_manager.set_pattern("{vendor}_{index}")
    stats = engine.rename_all()
    assert stats.renamed == 3
    assert stats.errors == []
    assert (resolver.directory_for_record(first) / "clinic_1[1-1].pdf").exists()
    assert engine.rename_all().renamed == 0


def test_rename_all_finds_files_in_legacy_directory(tmp_path: Path) -> None:
    db_manager, resolver, engine = build_engine(tmp_path)
    record = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Clinic", amount=1)
    legacy_dir = resolver.legacy_directory_for(record.id)
    legacy_dir.mkdir(parents=True)
    (legacy_dir / "upload.pdf").write_bytes(b"legacy")
    stored = db_manager.insert_file(record.id, "upload.pdf", "upload.pdf", 0)

    stats = engine.rename_all()

    new_filename = db_manager.get_file(stored.id).filename
    assert stats.renamed == 1
    assert (resolver.directory_for_record(record) / new_filename).read_bytes() == b"legacy"
    assert not legacy_dir.exists()


def test_unusable_date_keeps_file_inside_storage_root(tmp_path: Path) -> None:
    db_manager, resolver, engine = build_engine(tmp_path)
    previous = db_manager.create_record(owner="John", date="2024-01-15", vendor="V", amount=1)
    stored = place_file(db_manager, resolver, previous)

    current = db_manager.update_record(previous.id, date="../../../../../outside")
    result = engine.rename_record(current, previous=previous)

    new_filename = db_manager.get_file(stored.id).filename
    assert result.errors == []
    assert "/" not in new_filename
    assert new_filename.startswith(date.today().isoformat())
    new_path = resolver.directory_for_record(current) / new_filename
    assert new_path.read_bytes() == b"%PDF-1.4 receipt"
    assert new_path.resolve().is_relative_to(resolver.root.resolve())
    assert not any(tmp_path.glob("outside*"))
