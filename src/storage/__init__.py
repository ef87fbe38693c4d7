"""
Storage primitives and the receipt file upload/update path.
"""

from .operations import FileStorage, MoveResult, StorageRootError
from .uploads import ReceiptFileService, RecordUpdate

__all__ = [
    "FileStorage",
    "MoveResult",
    "StorageRootError",
    "ReceiptFileService",
    "RecordUpdate",
]
