"""
Folder-watch ingestion of receipts.
"""

from .scheduler import WatchScheduler
from .service import ScanState, ScanStats, WatchFolderService

__all__ = ["WatchScheduler", "ScanState", "ScanStats", "WatchFolderService"]
