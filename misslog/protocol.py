"""
Protocol definitions for the miss log's persistence backend.

The store persists its whole collection as one JSON document in a named
slot. Anything with ``load``/``save``/``close`` can serve as the slot:
- SqliteSlotStorage (durable, local file)
- MemorySlotStorage (in-process, for tests and dry runs)
"""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class SlotStorageProtocol(Protocol):
    """Key-value slot storage holding serialized snapshots."""

    def load(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the slot is empty or unreadable."""
        ...

    def save(self, key: str, value: str) -> None:
        """Durably replace the slot's value."""
        ...

    def close(self) -> None: ...
