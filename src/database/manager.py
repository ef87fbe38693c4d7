"""
SQLite access layer for receipt metadata, stored files and operation state.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from naming.template import DEFAULT_PATTERN, validate_pattern

from .schema import create_databases

PATTERN_SETTING = "filenamePattern"
RECORD_FIELDS = ("owner", "date", "vendor", "amount", "category")


@dataclass(frozen=True)
class Record:
    """A receipt metadata row with its ordered tag names."""

    id: int
    owner: str
    date: str
    vendor: str
    amount: float
    category: str
    tags: tuple[str, ...] = ()

    def naming_key(self) -> tuple:
        """Fields that influence the on-disk location and filename."""
        return (self.owner, self.date, self.vendor, self.amount, self.category, self.tags)


@dataclass(frozen=True)
class StoredFile:
    """One physical file attached to a record."""

    id: int
    record_id: int
    filename: str
    original_filename: str
    order: int
    is_optimized: bool = False
    optimized_at: Optional[str] = None


@dataclass(frozen=True)
class Tag:
    id: int
    name: str


class DatabaseManager:
    """Manage SQLite connections and the metadata contract used by the engine."""

    def __init__(self, db_paths: Dict[str, Path], default_pattern: str = DEFAULT_PATTERN) -> None:
        self.db_paths = db_paths
        self.default_pattern = default_pattern
        self._metadata_conn: Optional[sqlite3.Connection] = None
        self._state_conn: Optional[sqlite3.Connection] = None
        self._pattern_cache: Optional[str] = None

    def initialize(self) -> None:
        """Create database files and tables."""
        create_databases(self.db_paths)

    def connect(self) -> None:
        """Open database connections if they are not already open."""
        if self._metadata_conn is None:
            self._metadata_conn = sqlite3.connect(self.db_paths["metadata"], check_same_thread=False)
            self._metadata_conn.execute("PRAGMA journal_mode=WAL;")
        if self._state_conn is None:
            self._state_conn = sqlite3.connect(self.db_paths["state"], check_same_thread=False)
            self._state_conn.execute("PRAGMA journal_mode=WAL;")

    def close(self) -> None:
        """Close any open database connections."""
        if self._metadata_conn is not None:
            self._metadata_conn.close()
            self._metadata_conn = None
        if self._state_conn is not None:
            self._state_conn.close()
            self._state_conn = None

    # Records

    def get_record(self, record_id: int) -> Optional[Record]:
        self.connect()
        row = self._metadata_conn.execute(
            "SELECT id, owner, date, vendor, amount, category FROM receipts WHERE id = ?",
            (int(record_id),),
        ).fetchone()
        if row is None:
            return None
        return self._record_from_row(row)

    def list_records(self, tag: Optional[str] = None) -> list[Record]:
        """List records ordered by id, optionally only those carrying a tag."""
        self.connect()
        if tag is None:
            cursor = self._metadata_conn.execute(
                "SELECT id, owner, date, vendor, amount, category FROM receipts ORDER BY id"
            )
        else:
            cursor = self._metadata_conn.execute(
                """
                SELECT r.id, r.owner, r.date, r.vendor, r.amount, r.category
                FROM receipts r
                JOIN receipt_tags rt ON rt.receipt_id = r.id
                JOIN tags t ON t.id = rt.tag_id
                WHERE t.name = ?
                ORDER BY r.id
                """,
                (tag,),
            )
        return [self._record_from_row(row) for row in cursor.fetchall()]

    def create_record(
        self,
        owner: str,
        date: str,
        vendor: str = "",
        amount: float = 0.0,
        category: str = "",
        tags: Iterable[str] = (),
    ) -> Record:
        """Insert a record with its tags and return it."""
        self.connect()
        now = datetime.utcnow().isoformat()
        cursor = self._metadata_conn.execute(
            """
            INSERT INTO receipts (owner, date, vendor, amount, category, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (owner, date, vendor, float(amount or 0), category, now, now),
        )
        record_id = int(cursor.lastrowid)
        self._replace_tags(record_id, tags)
        self._metadata_conn.commit()
        return self.get_record(record_id)

    def update_record(self, record_id: int, **changes: Any) -> Optional[Record]:
        """Update record fields and/or tags; returns the updated record or None if missing."""
        unknown = set(changes) - set(RECORD_FIELDS) - {"tags"}
        if unknown:
            raise ValueError(f"Unknown record fields: {', '.join(sorted(unknown))}")
        self.connect()
        if self.get_record(record_id) is None:
            return None
        fields = {key: value for key, value in changes.items() if key in RECORD_FIELDS}
        if "amount" in fields:
            fields["amount"] = float(fields["amount"] or 0)
        if fields:
            assignments = ", ".join(f"{key} = ?" for key in fields)
            self._metadata_conn.execute(
                f"UPDATE receipts SET {assignments}, updated_at = ? WHERE id = ?",
                (*fields.values(), datetime.utcnow().isoformat(), int(record_id)),
            )
        if "tags" in changes:
            self._replace_tags(int(record_id), changes["tags"] or ())
        self._metadata_conn.commit()
        return self.get_record(record_id)

    def delete_record(self, record_id: int) -> None:
        """Delete a record together with its file rows and tag links."""
        self.connect()
        self._metadata_conn.execute("DELETE FROM receipt_files WHERE receipt_id = ?", (int(record_id),))
        self._metadata_conn.execute("DELETE FROM receipt_tags WHERE receipt_id = ?", (int(record_id),))
        self._metadata_conn.execute("DELETE FROM receipts WHERE id = ?", (int(record_id),))
        self._metadata_conn.commit()

    # Tags

    def list_tags(self) -> list[Tag]:
        self.connect()
        cursor = self._metadata_conn.execute("SELECT id, name FROM tags ORDER BY name")
        return [Tag(id=int(row[0]), name=str(row[1])) for row in cursor.fetchall()]

    def get_or_create_tag(self, name: str) -> Tag:
        self.connect()
        self._metadata_conn.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (name,))
        self._metadata_conn.commit()
        row = self._metadata_conn.execute("SELECT id, name FROM tags WHERE name = ?", (name,)).fetchone()
        return Tag(id=int(row[0]), name=str(row[1]))

    def _replace_tags(self, record_id: int, tags: Iterable[str]) -> None:
        self._metadata_conn.execute("DELETE FROM receipt_tags WHERE receipt_id = ?", (record_id,))
        seen: set[str] = set()
        position = 0
        for name in tags:
            name = str(name).strip()
            if not name or name in seen:
                continue
            seen.add(name)
            self._metadata_conn.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (name,))
            tag_id = self._metadata_conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()[0]
            self._metadata_conn.execute(
                "INSERT INTO receipt_tags (receipt_id, tag_id, position) VALUES (?, ?, ?)",
                (record_id, int(tag_id), position),
            )
            position += 1

    def _record_tags(self, record_id: int) -> tuple[str, ...]:
        cursor = self._metadata_conn.execute(
            """
            SELECT t.name FROM receipt_tags rt
            JOIN tags t ON t.id = rt.tag_id
            WHERE rt.receipt_id = ?
            ORDER BY rt.position, t.name
            """,
            (record_id,),
        )
        return tuple(str(row[0]) for row in cursor.fetchall())

    def _record_from_row(self, row: tuple) -> Record:
        record_id = int(row[0])
        return Record(
            id=record_id,
            owner=str(row[1]) if row[1] is not None else "",
            date=str(row[2]) if row[2] is not None else "",
            vendor=str(row[3]) if row[3] is not None else "",
            amount=float(row[4]) if row[4] is not None else 0.0,
            category=str(row[5]) if row[5] is not None else "",
            tags=self._record_tags(record_id),
        )

    # Files

    def list_files_of(self, record_id: int) -> list[StoredFile]:
        """Return a record's files in display order."""
        self.connect()
        cursor = self._metadata_conn.execute(
            f"{_FILE_COLUMNS} WHERE receipt_id = ? ORDER BY file_order, id",
            (int(record_id),),
        )
        return [_file_from_row(row) for row in cursor.fetchall()]

    def get_file(self, file_id: int) -> Optional[StoredFile]:
        self.connect()
        row = self._metadata_conn.execute(f"{_FILE_COLUMNS} WHERE id = ?", (int(file_id),)).fetchone()
        return _file_from_row(row) if row else None

    def insert_file(self, record_id: int, filename: str, original_filename: str, order: int) -> StoredFile:
        self.connect()
        cursor = self._metadata_conn.execute(
            """
            INSERT INTO receipt_files (receipt_id, filename, original_filename, file_order, created_at, is_optimized)
            VALUES (?, ?, ?, ?, ?, 0)
            """,
            (int(record_id), filename, original_filename, int(order), datetime.utcnow().isoformat()),
        )
        self._metadata_conn.commit()
        return self.get_file(int(cursor.lastrowid))

    def set_filename(self, file_id: int, filename: str) -> None:
        self.connect()
        self._metadata_conn.execute(
            "UPDATE receipt_files SET filename = ? WHERE id = ?",
            (filename, int(file_id)),
        )
        self._metadata_conn.commit()

    def delete_file(self, file_id: int) -> None:
        self.connect()
        self._metadata_conn.execute("DELETE FROM receipt_files WHERE id = ?", (int(file_id),))
        self._metadata_conn.commit()

    def mark_optimized(self, file_id: int) -> None:
        self.connect()
        self._metadata_conn.execute(
            "UPDATE receipt_files SET is_optimized = 1, optimized_at = ? WHERE id = ?",
            (datetime.utcnow().isoformat(), int(file_id)),
        )
        self._metadata_conn.commit()

    def reset_optimized(self, file_id: int) -> None:
        self.connect()
        self._metadata_conn.execute(
            "UPDATE receipt_files SET is_optimized = 0, optimized_at = NULL WHERE id = ?",
            (int(file_id),),
        )
        self._metadata_conn.commit()

    def list_unoptimized_files(self) -> list[StoredFile]:
        self.connect()
        cursor = self._metadata_conn.execute(
            f"{_FILE_COLUMNS} WHERE is_optimized = 0 OR is_optimized IS NULL ORDER BY receipt_id, file_order, id"
        )
        return [_file_from_row(row) for row in cursor.fetchall()]

    def list_all_files(self) -> list[StoredFile]:
        self.connect()
        cursor = self._metadata_conn.execute(f"{_FILE_COLUMNS} ORDER BY receipt_id, file_order, id")
        return [_file_from_row(row) for row in cursor.fetchall()]

    def count_files(self) -> int:
        self.connect()
        row = self._metadata_conn.execute("SELECT COUNT(*) FROM receipt_files").fetchone()
        return int(row[0]) if row else 0

    # Settings

    def get_pattern(self) -> str:
        """Return the active filename pattern, cached until the next set_pattern."""
        if self._pattern_cache is not None:
            return self._pattern_cache
        self.connect()
        row = self._metadata_conn.execute(
            "SELECT value FROM settings WHERE key = ?",
            (PATTERN_SETTING,),
        ).fetchone()
        pattern = self.default_pattern
        if row and row[0]:
            try:
                stored = json.loads(row[0])
            except ValueError:
                stored = None
            if isinstance(stored, str) and stored:
                pattern = stored
        self._pattern_cache = pattern
        return pattern

    def set_pattern(self, pattern: str) -> None:
        """Validate and persist a new filename pattern."""
        validate_pattern(pattern)
        self.connect()
        self._metadata_conn.execute(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (PATTERN_SETTING, json.dumps(pattern), datetime.utcnow().isoformat()),
        )
        self._metadata_conn.commit()
        self._pattern_cache = None

    # Operations

    def start_operation(self, operation_type: str, details: Optional[str] = None) -> str:
        """Insert an operation record and return the generated operation ID."""
        self.connect()
        operation_id = (
            f"{operation_type}_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        )
        self._state_conn.execute(
            """
            INSERT INTO operations (
                operation_id, operation_type, status, started_at, details
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (operation_id, operation_type, "in_progress", datetime.utcnow().isoformat(), details),
        )
        self._state_conn.commit()
        return operation_id

    def complete_operation(self, operation_id: str, status: str = "completed", details: Optional[str] = None) -> None:
        """Mark an operation as completed or failed."""
        self.connect()
        if details is not None:
            self._state_conn.execute(
                "UPDATE operations SET details = ? WHERE operation_id = ?",
                (details, operation_id),
            )
        self._state_conn.execute(
            """
            UPDATE operations
            SET status = ?, finished_at = ?
            WHERE operation_id = ?
            """,
            (status, datetime.utcnow().isoformat(), operation_id),
        )
        self._state_conn.commit()

    def list_recent_operations(self, limit: int = 20) -> list[dict]:
        """List recent operations sorted by start time."""
        self.connect()
        cursor = self._state_conn.execute(
            """
            SELECT operation_id, operation_type, status, started_at, finished_at, details
            FROM operations
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [
            {
                "operation_id": str(row[0]) if row[0] else "",
                "operation_type": str(row[1]) if row[1] else "",
                "status": str(row[2]) if row[2] else "",
                "started_at": str(row[3]) if row[3] else "",
                "finished_at": str(row[4]) if row[4] else "",
                "details": str(row[5]) if row[5] else "",
            }
            for row in cursor.fetchall()
        ]

    def record_file_operation(
        self,
        operation_id: Optional[str],
        action: str,
        source_path: str,
        destination_path: Optional[str],
        status: str,
        size: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Record a physical file operation for auditing."""
        self.connect()
        self._state_conn.execute(
            """
            INSERT INTO file_operations (
                operation_id,
                action,
                source_path,
                destination_path,
                status,
                size,
                created_at,
                error_message
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                operation_id,
                action,
                source_path,
                destination_path,
                status,
                size,
                datetime.utcnow().isoformat(),
                error_message,
            ),
        )
        self._state_conn.commit()

    def list_file_operations(
        self, operation_id: Optional[str] = None, status: Optional[str] = None, limit: Optional[int] = None
    ) -> list[dict]:
        """List file operations, optionally filtered by operation ID or status."""
        self.connect()
        query = """
            SELECT id, operation_id, action, source_path, destination_path, status, size, created_at,
                   error_message
            FROM file_operations
        """
        params: list = []
        clauses: list[str] = []
        if operation_id:
            clauses.append("operation_id = ?")
            params.append(operation_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        cursor = self._state_conn.execute(query, tuple(params))
        return [
            {
                "id": int(row[0]),
                "operation_id": str(row[1]) if row[1] else "",
                "action": str(row[2]) if row[2] else "",
                "source_path": str(row[3]) if row[3] else "",
                "destination_path": str(row[4]) if row[4] else "",
                "status": str(row[5]) if row[5] else "",
                "size": int(row[6]) if row[6] is not None else None,
                "created_at": str(row[7]) if row[7] else "",
                "error_message": str(row[8]) if row[8] else "",
            }
            for row in cursor.fetchall()
        ]


_FILE_COLUMNS = (
    "SELECT id, receipt_id, filename, original_filename, file_order, is_optimized, optimized_at "
    "FROM receipt_files"
)


def _file_from_row(row: tuple) -> StoredFile:
    return StoredFile(
        id=int(row[0]),
        record_id=int(row[1]),
        filename=str(row[2]) if row[2] else "",
        original_filename=str(row[3]) if row[3] else "",
        order=int(row[4]) if row[4] is not None else 0,
        is_optimized=bool(row[5]),
        optimized_at=str(row[6]) if row[6] else None,
    )
