"""
Rename, legacy-layout migration and association recovery for stored files.
"""

from .engine import BulkRenameStats, FileRename, RecordRenameResult, RenameEngine, RenameOutcome
from .legacy import LegacyLayoutMigrator, LegacyMigrationStats, is_legacy_directory
from .recovery import AssociationRecovery, RecoveryStats, parse_suffix

__all__ = [
    "BulkRenameStats",
    "FileRename",
    "RecordRenameResult",
    "RenameEngine",
    "RenameOutcome",
    "LegacyLayoutMigrator",
    "LegacyMigrationStats",
    "is_legacy_directory",
    "AssociationRecovery",
    "RecoveryStats",
    "parse_suffix",
]
