"""
Database schema definitions for the receipt storage engine.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Dict


def create_databases(db_paths: Dict[str, Path]) -> None:
    """Create all SQLite databases and their tables."""
    create_metadata_db(db_paths["metadata"])
    create_state_db(db_paths["state"])


def create_metadata_db(db_path: Path) -> None:
    """Create the receipt metadata database and its tables."""
    conn = _connect(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS receipts (
            id INTEGER PRIMARY KEY,
            owner TEXT,
            date TEXT,
            vendor TEXT,
            amount REAL,
            category TEXT,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY,
            name TEXT UNIQUE
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS receipt_tags (
            receipt_id INTEGER,
            tag_id INTEGER,
            position INTEGER,
            FOREIGN KEY (receipt_id) REFERENCES receipts (id),
            FOREIGN KEY (tag_id) REFERENCES tags (id),
            UNIQUE (receipt_id, tag_id)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS receipt_files (
            id INTEGER PRIMARY KEY,
            receipt_id INTEGER,
            filename TEXT,
            original_filename TEXT,
            file_order INTEGER,
            created_at TIMESTAMP,
            FOREIGN KEY (receipt_id) REFERENCES receipts (id)
        )
        """
    )
    _ensure_column(conn, "receipt_files", "is_optimized", "BOOLEAN DEFAULT 0")
    _ensure_column(conn, "receipt_files", "optimized_at", "TIMESTAMP")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TIMESTAMP
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_receipt_files_receipt ON receipt_files(receipt_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_receipt_files_optimized ON receipt_files(is_optimized)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_receipt_tags_receipt ON receipt_tags(receipt_id)")
    conn.commit()
    conn.close()


def create_state_db(db_path: Path) -> None:
    """Create the state database for operations and file movements."""
    conn = _connect(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS operations (
            id INTEGER PRIMARY KEY,
            operation_id TEXT UNIQUE,
            operation_type TEXT,
            status TEXT,
            started_at TIMESTAMP,
            finished_at TIMESTAMP,
            details TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS file_operations (
            id INTEGER PRIMARY KEY,
            operation_id TEXT,
            action TEXT,
            source_path TEXT,
            destination_path TEXT,
            status TEXT,
            size INTEGER,
            created_at TIMESTAMP,
            error_message TEXT
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_file_operations_operation ON file_operations(operation_id)")
    conn.commit()
    conn.close()


def _connect(db_path: Path) -> sqlite3.Connection:
    """Create a SQLite connection with WAL enabled."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    """Ensure a column exists on a SQLite table."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    existing = {row[1] for row in cursor.fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
