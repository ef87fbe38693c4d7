"""
Resolve canonical directories and filenames for stored receipt files.
"""

from __future__ import annotations

import logging
import os
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol

from .sanitizer import UNKNOWN_TOKEN, sanitize
from .template import DEFAULT_PATTERN, parse_date_value, render

if TYPE_CHECKING:
    from database.manager import Record, StoredFile

_SEPARATORS = {"/", "\\", os.sep} | ({os.altsep} if os.altsep else set())


class RecordLookup(Protocol):
    def get_record(self, record_id: int) -> Optional["Record"]:
        ...


class PatternSource(Protocol):
    def get_pattern(self) -> str:
        ...


def collision_suffix(record_id: int, index: int) -> str:
    return f"[{record_id}-{index}]"


def normalize_extension(ext: str) -> str:
    ext = (ext or "").strip()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext.lower()


def file_extension(stored_file: "StoredFile") -> str:
    """Extension of the current on-disk name, else of the user-supplied name."""
    suffix = Path(stored_file.filename or "").suffix
    if not suffix:
        suffix = Path(stored_file.original_filename or "").suffix
    return normalize_extension(suffix)


class PathResolver:
    """Map records to `{root}/{owner}/{YYYY}/{MM}/{DD}/{filename}` locations."""

    def __init__(
        self,
        root: Path,
        pattern_source: Optional[PatternSource] = None,
        lookup: Optional[RecordLookup] = None,
        default_pattern: str = DEFAULT_PATTERN,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.root = Path(root)
        self.pattern_source = pattern_source
        self.lookup = lookup
        self.default_pattern = default_pattern
        self.logger = logger or logging.getLogger("receipt_vault")

    def parse_date(self, value: Any) -> date:
        """Parse a record date, falling back to today when it is unusable."""
        parsed = parse_date_value(value)
        if parsed is not None:
            return parsed
        self.logger.warning("Invalid record date %r; using current date", value)
        return date.today()

    def directory_for(self, owner: Any, record_date: Any) -> Path:
        parsed = self.parse_date(record_date)
        return (
            self.root
            / sanitize(owner)
            / f"{parsed.year:04d}"
            / f"{parsed.month:02d}"
            / f"{parsed.day:02d}"
        )

    def directory_for_record(self, record: "Record") -> Path:
        return self.directory_for(record.owner, record.date)

    def directory_for_record_id(self, record_id: int) -> Path:
        """Resolve through the record lookup; unknown records land under `unknown/<today>`."""
        record = self.lookup.get_record(record_id) if self.lookup is not None else None
        if record is None:
            self.logger.warning("Record %s not found; using fallback directory", record_id)
            return self.directory_for(UNKNOWN_TOKEN, date.today())
        return self.directory_for_record(record)

    def legacy_directory_for(self, record_id: int) -> Path:
        return self.root / str(record_id)

    def ensure_directory(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def current_pattern(self) -> str:
        if self.pattern_source is not None:
            pattern = self.pattern_source.get_pattern()
            if pattern:
                return pattern
        return self.default_pattern

    def filename_for(self, record: "Record", index: int, ext: str, pattern: Optional[str] = None) -> str:
        """Render the filename for a record's file, including collision suffix and extension."""
        record_date = self.parse_date(record.date)
        base = render(pattern or self.current_pattern(), record, index, record_date=record_date)
        filename = f"{base}{collision_suffix(record.id, index)}{normalize_extension(ext)}"
        if any(separator in filename for separator in _SEPARATORS):
            raise ValueError(f"Rendered filename is not a plain name: {filename!r}")
        return filename

    def path_for(self, record: "Record", stored_file: "StoredFile") -> Path:
        return self.directory_for_record(record) / stored_file.filename
