"""
Record store implementations for LoopFlow.

Provides abstract base and concrete implementations for record storage.

Available backends:
- SQLiteRecordStore: Local SQLite file with FTS5 full-text search
"""

from loopflow.core.storage.base import BulkInsertResult, Record, RecordStore
from loopflow.core.storage.factory import RecordStoreFactory
from loopflow.core.storage.sqlite_store import SQLiteRecordStore

__all__ = [
    "RecordStore",
    "Record",
    "BulkInsertResult",
    "SQLiteRecordStore",
    "RecordStoreFactory",
]
