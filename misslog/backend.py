"""
Slot storage backends and their factory.

The local backend keeps a small key-value table in SQLite
(``misslog.db`` in the store directory). The memory backend keeps values
in a dict and is used for tests and ``backend = "memory"`` configs.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import StoreConfig
from .protocol import SlotStorageProtocol

logger = logging.getLogger(__name__)


class SqliteSlotStorage:
    """
    SQLite-backed key-value slots.

    Each save commits immediately, so a mutation is on disk before the
    store returns to its caller.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS slots (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def load(self, key: str) -> Optional[str]:
        try:
            row = self._conn.execute(
                "SELECT value FROM slots WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Could not read slot %s from %s: %s", key, self._db_path, e)
            return None
        return row[0] if row else None

    def save(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute("""
            INSERT INTO slots (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
        """, (key, value, now))
        self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()


class MemorySlotStorage:
    """In-memory slots. Values live only as long as the object."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.values: dict[str, str] = dict(initial or {})
        self.save_calls = 0

    def load(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def save(self, key: str, value: str) -> None:
        self.save_calls += 1
        self.values[key] = value

    def close(self) -> None:
        pass


def create_storage(config: StoreConfig) -> SlotStorageProtocol:
    """
    Create the slot storage named by ``config.backend``.

    Raises:
        ValueError: For an unknown backend name
    """
    if config.backend == "sqlite":
        return SqliteSlotStorage(config.database_path)
    if config.backend == "memory":
        return MemorySlotStorage()
    raise ValueError(
        f"Unknown backend: {config.backend!r}. Available: ['sqlite', 'memory']"
    )
