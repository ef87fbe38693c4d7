"""
Recover lost file rows by matching files on disk to the records they belong to.
"""

from __future__ import annotations

import logging
import os
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from database import DatabaseManager, Record
from naming import PathResolver
from utils import ResourceMonitor

_SUFFIX_PATTERN = re.compile(r"\[(\d+)-(\d+)\]")
_YEAR = re.compile(r"^\d{4}$")
_DAY_OR_MONTH = re.compile(r"^\d{2}$")


@dataclass
class RecoveryStats:
    directories_scanned: int = 0
    recovered: int = 0
    ambiguous: int = 0
    unmatched: int = 0
    unresolved: list[dict] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)


def parse_suffix(filename: str) -> Optional[tuple[int, int]]:
    """Return (record_id, index) from an embedded `[recordId-index]` suffix."""
    matches = _SUFFIX_PATTERN.findall(filename)
    if not matches:
        return None
    record_id, index = matches[-1]
    return int(record_id), int(index)


def _is_date_directory(relative: Path) -> bool:
    parts = relative.parts
    return (
        len(parts) == 4
        and bool(_YEAR.match(parts[1]))
        and bool(_DAY_OR_MONTH.match(parts[2]))
        and bool(_DAY_OR_MONTH.match(parts[3]))
    )


class AssociationRecovery:
    """Re-insert metadata rows for orphaned files in owner/date directories."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        resolver: PathResolver,
        logger: Optional[logging.Logger] = None,
        monitor: Optional[ResourceMonitor] = None,
    ) -> None:
        self.db_manager = db_manager
        self.resolver = resolver
        self.logger = logger or logging.getLogger("receipt_vault")
        self.monitor = monitor

    def recover(self) -> RecoveryStats:
        stats = RecoveryStats()
        root = self.resolver.root
        if not root.exists():
            return stats

        candidates: dict[str, list[Record]] = defaultdict(list)
        known: set[str] = set()
        used_orders: dict[int, set[int]] = defaultdict(set)
        for record in self.db_manager.list_records():
            directory = self.resolver.directory_for_record(record)
            candidates[_key(directory)].append(record)
            for stored in self.db_manager.list_files_of(record.id):
                known.add(_key(directory / stored.filename))
                used_orders[record.id].add(stored.order)

        for dirpath, _dirnames, filenames in os.walk(root, topdown=False):
            directory = Path(dirpath)
            if not _is_date_directory(directory.relative_to(root)):
                continue
            stats.directories_scanned += 1
            if self.monitor is not None:
                self.monitor.throttle()
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                path = directory / filename
                if _key(path) in known:
                    continue
                try:
                    self._recover_file(path, candidates.get(_key(directory), []), used_orders, stats)
                except Exception as exc:
                    stats.errors.append({"path": str(path), "error": str(exc)})
                    self.logger.error("Association recovery failed for %s: %s", path, exc)

        self.logger.info(
            "Association recovery completed. Directories=%s Recovered=%s Ambiguous=%s Unmatched=%s Errors=%s",
            stats.directories_scanned,
            stats.recovered,
            stats.ambiguous,
            stats.unmatched,
            len(stats.errors),
        )
        return stats

    def _recover_file(
        self,
        path: Path,
        records: list[Record],
        used_orders: dict[int, set[int]],
        stats: RecoveryStats,
    ) -> None:
        parsed = parse_suffix(path.name)
        record: Optional[Record] = None
        index: Optional[int] = None
        if parsed is not None:
            record = next((candidate for candidate in records if candidate.id == parsed[0]), None)
            index = parsed[1]
        elif len(records) == 1:
            record = records[0]
        elif len(records) > 1:
            stats.ambiguous += 1
            stats.unresolved.append({"path": str(path), "reason": "ambiguous", "candidates": [r.id for r in records]})
            self.logger.warning("Ambiguous orphan file %s (%s candidates)", path, len(records))
            return

        if record is None:
            stats.unmatched += 1
            stats.unresolved.append({"path": str(path), "reason": "unmatched"})
            self.logger.warning("No record matches orphan file %s", path)
            return

        orders = used_orders[record.id]
        if index is None or index in orders:
            index = max(orders) + 1 if orders else 0
        self.db_manager.insert_file(record.id, path.name, path.name, index)
        orders.add(index)
        stats.recovered += 1
        self.logger.info("Recovered file %s for record %s (order %s)", path.name, record.id, index)


def _key(path: Path) -> str:
    return os.path.normcase(os.path.abspath(path))
