"""
Database package for schema creation and persistence helpers.
"""

from .manager import PATTERN_SETTING, DatabaseManager, Record, StoredFile, Tag
from .schema import create_databases

__all__ = [
    "DatabaseManager",
    "PATTERN_SETTING",
    "Record",
    "StoredFile",
    "Tag",
    "create_databases",
]
