import json
import sqlite3
from pathlib import Path

import pytest

from database import PATTERN_SETTING, DatabaseManager
from naming import DEFAULT_PATTERN, PatternValidationError


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "metadata": root / "receipt_vault.sqlite",
        "state": root / "state.sqlite",
    }


def test_database_records_files_and_operations(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    record = manager.create_record(
        owner="John Doe",
        date="2024-01-15",
        vendor="Test Clinic",
        amount=100.5,
        category="doctor-visit",
        tags=["Tax", "Family", "Tax"],
    )
    assert record.id > 0
    assert record.tags == ("Tax", "Family")

    stored = manager.insert_file(record.id, "scan.pdf", "scan.pdf", 0)
    assert stored.is_optimized is False
    assert [item.id for item in manager.list_unoptimized_files()] == [stored.id]

    manager.mark_optimized(stored.id)
    optimized = manager.get_file(stored.id)
    assert optimized.is_optimized is True
    assert optimized.optimized_at is not None
    assert manager.list_unoptimized_files() == []

    manager.reset_optimized(stored.id)
    assert manager.get_file(stored.id).optimized_at is None

    manager.set_filename(stored.id, "renamed.pdf")
    assert manager.list_files_of(record.id)[0].filename == "renamed.pdf"

    operation_id = manager.start_operation("rename_all")
    manager.record_file_operation(operation_id, "rename", "a", "b", "completed", size=3)
    manager.complete_operation(operation_id, details=json.dumps({"renamed": 1}))

    operations = manager.list_recent_operations()
    assert operations[0]["status"] == "completed"
    assert json.loads(operations[0]["details"]) == {"renamed": 1}
    assert manager.list_file_operations(operation_id=operation_id)[0]["destination_path"] == "b"
    manager.close()


def test_update_and_delete_record(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()
    record = manager.create_record(owner="Jane", date="2024-02-01", tags=["A"])
    manager.insert_file(record.id, "one.pdf", "one.pdf", 0)

    updated = manager.update_record(record.id, owner="Janet", tags=["B", "A"])
    assert updated.owner == "Janet"
    assert updated.tags == ("B", "A")
    assert [tag.name for tag in manager.list_tags()] == ["A", "B"]
    assert [item.id for item in manager.list_records(tag="B")] == [record.id]
    assert manager.update_record(9999, owner="Nobody") is None
    with pytest.raises(ValueError):
        manager.update_record(record.id, colour="red")

    manager.delete_record(record.id)
    assert manager.get_record(record.id) is None
    assert manager.list_all_files() == []
    manager.close()


def test_pattern_setting_is_validated_and_cached(tmp_path: Path) -> None:
    db_paths = build_db_paths(tmp_path)
    manager = DatabaseManager(db_paths)
    manager.initialize()

    assert manager.get_pattern() == DEFAULT_PATTERN

    manager.set_pattern("{date}_{vendor}_{index}")
    assert manager.get_pattern() == "{date}_{vendor}_{index}"

    with pytest.raises(PatternValidationError):
        manager.set_pattern("{date}_{ext}")
    assert manager.get_pattern() == "{date}_{vendor}_{index}"

    conn = sqlite3.connect(db_paths["metadata"])
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (PATTERN_SETTING,)).fetchone()
    conn.close()
    assert json.loads(row[0]) == "{date}_{vendor}_{index}"
    manager.close()
