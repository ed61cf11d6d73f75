"""
misslog - a personal log of missed exam questions.

Record the topic, concept and rule behind each miss, then review which
tags keep coming up.
"""

from .api import MissLog, parse_snapshot
from .backend import MemorySlotStorage, SqliteSlotStorage
from .errors import MissLogError, SnapshotImportError
from .types import WHY_OPTIONS, ImportStats, MissEntry, MutationResult

__version__ = "0.1.0"
__all__ = [
    "MissLog",
    "MissEntry",
    "MutationResult",
    "ImportStats",
    "MemorySlotStorage",
    "SqliteSlotStorage",
    "MissLogError",
    "SnapshotImportError",
    "WHY_OPTIONS",
    "parse_snapshot",
]
