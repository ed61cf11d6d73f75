"""
Core API for the miss log.

MissLog holds the ordered collection of miss entries, derives the
filtered and aggregate views, and mirrors every mutation to a slot
storage backend.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Union

from .backend import create_storage
from .config import DEFAULT_STORAGE_KEY, StoreConfig, get_store_path, load_or_create_config
from .errors import SnapshotImportError
from .logging_config import configure_ops_log, remove_ops_log
from .protocol import SlotStorageProtocol
from .types import (
    DEFAULT_WHY,
    WHY_OPTIONS,
    ImportStats,
    MissEntry,
    MutationResult,
    coerce_record,
    collation_key,
    date_to_timestamp,
    hydrate_record,
    new_id,
    normalize_tag,
    normalize_tags,
    validate_fields,
)

logger = logging.getLogger(__name__)

EXPORT_FILENAME_PREFIX = "misslog"

TagsInput = Union[str, Iterable[str], None]
DateInput = Union[str, date, None]


def parse_snapshot(text: str) -> list:
    """
    Parse exported JSON text into a list of raw records.

    Raises:
        SnapshotImportError: If the text is not JSON or not a JSON array
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise SnapshotImportError(f"Not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise SnapshotImportError(
            f"Expected a JSON array of entries, got {type(data).__name__}"
        )
    return data


class MissLog:
    """
    Miss log store - the authoritative collection of missed questions.

    Entries are always kept newest first. Each successful mutation is
    written through to the storage slot before returning.

    Example:
        ml = MissLog(MemorySlotStorage())
        ml.add("Renal", "Type IV RTA", "Hyperkalemia + NAGMA = hypoaldosteronism",
               tags="renal, acid-base")
        ml.weak_tag_ranking(5)
    """

    def __init__(
        self,
        storage: Optional[SlotStorageProtocol] = None,
        *,
        config: Optional[StoreConfig] = None,
        store_path: Optional[Union[str, Path]] = None,
        key: Optional[str] = None,
    ) -> None:
        """
        Open a miss log and hydrate it from storage.

        Args:
            storage: Injected slot storage. When omitted, one is created
                from the config.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            store_path: Store directory when no config is given.
                Defaults to MISSLOG_STORE_PATH or ~/.misslog.
            key: Slot key override (default: from config).
        """
        if config is None and storage is None:
            config = load_or_create_config(get_store_path(store_path))
        self._config = config

        if storage is None:
            storage = create_storage(config)
        self._storage = storage
        self._key = key or (config.key if config is not None else DEFAULT_STORAGE_KEY)

        self._ops_log_handler = None
        if config is not None and config.backend != "memory":
            self._ops_log_handler = configure_ops_log(config.path)

        self._entries: list[MissEntry] = self._hydrate()

    @property
    def config(self) -> Optional[StoreConfig]:
        return self._config

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _hydrate(self) -> list[MissEntry]:
        """Load the collection from storage, dropping invalid records."""
        raw = self._storage.load(self._key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Stored entries are not valid JSON, starting empty: %s", e)
            return []
        if not isinstance(data, list):
            logger.warning("Stored entries are not a list (%s), starting empty",
                           type(data).__name__)
            return []

        entries = []
        for record in data:
            entry = hydrate_record(record)
            if entry is None:
                logger.warning("Discarding invalid stored record: %.200r", record)
                continue
            entries.append(entry)
        logger.debug("Hydrated %d entries from %s", len(entries), self._key)
        return _sort_recent(entries)

    def _commit(self, entries: list[MissEntry]) -> None:
        """Save entries to the slot, then adopt them. A failed save changes nothing."""
        self._storage.save(
            self._key, json.dumps([e.to_dict() for e in entries], ensure_ascii=False)
        )
        self._entries = entries

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def _build_entry(
        self,
        id: str,
        created_at: str,
        topic: str,
        concept: str,
        rule: str,
        why_missed: str,
        why_notes: str,
        tags: TagsInput,
    ) -> MutationResult:
        errors = validate_fields(topic, concept, rule, why_missed)
        if errors:
            return MutationResult(ok=False, errors=errors)
        entry = MissEntry(
            id=id,
            created_at=created_at,
            topic=topic.strip(),
            concept=concept.strip(),
            rule=rule.strip(),
            why_missed=why_missed,
            why_notes=(why_notes or "").strip(),
            tags=normalize_tags(tags),
        )
        return MutationResult(ok=True, entry=entry)

    def add(
        self,
        topic: str,
        concept: str,
        rule: str,
        *,
        why_missed: str = DEFAULT_WHY,
        why_notes: str = "",
        tags: TagsInput = None,
        date: DateInput = None,
    ) -> MutationResult:
        """
        Log a new miss.

        Args:
            topic: Subject area, e.g. "Renal"
            concept: The specific concept tested
            rule: The takeaway to remember
            why_missed: One of WHY_OPTIONS
            why_notes: Optional detail on what happened
            tags: Comma-separated text or a sequence of tags
            date: Day of the miss (YYYY-MM-DD or date); default today

        Returns:
            MutationResult; ``ok`` is False (with ``errors``) and the
            collection is unchanged when a required field is empty.
        """
        try:
            created_at = date_to_timestamp(date if date is not None else datetime.now().date())
        except ValueError:
            return MutationResult(ok=False, errors=[f"date must be YYYY-MM-DD (got {date!r})"])

        result = self._build_entry(
            new_id(), created_at, topic, concept, rule, why_missed, why_notes, tags,
        )
        if not result.ok:
            logger.debug("Rejected add: %s", "; ".join(result.errors))
            return result

        self._commit(_sort_recent([result.entry, *self._entries]))
        logger.info("Added %s (%s / %s)", result.entry.id, result.entry.topic, result.entry.concept)
        return result

    def update(
        self,
        id: str,
        *,
        topic: Optional[str] = None,
        concept: Optional[str] = None,
        rule: Optional[str] = None,
        why_missed: Optional[str] = None,
        why_notes: Optional[str] = None,
        tags: TagsInput = None,
        date: DateInput = None,
    ) -> MutationResult:
        """
        Replace the entry with this id by an edited copy.

        Fields left as None keep their current values; the id never changes.
        Passing ``date`` resets ``created_at`` to that day, otherwise the
        existing timestamp is kept at full precision.

        Returns:
            MutationResult with ``not_found=True`` if no entry has this id.
        """
        index = self._index_of(id)
        if index is None:
            return MutationResult(ok=False, not_found=True, errors=[f"Not found: {id}"])
        current = self._entries[index]

        created_at = current.created_at
        if date is not None:
            try:
                created_at = date_to_timestamp(date)
            except ValueError:
                return MutationResult(ok=False, errors=[f"date must be YYYY-MM-DD (got {date!r})"])

        result = self._build_entry(
            current.id,
            created_at,
            topic if topic is not None else current.topic,
            concept if concept is not None else current.concept,
            rule if rule is not None else current.rule,
            why_missed if why_missed is not None else current.why_missed,
            why_notes if why_notes is not None else current.why_notes,
            tags if tags is not None else current.tags,
        )
        if not result.ok:
            logger.debug("Rejected update of %s: %s", id, "; ".join(result.errors))
            return result

        entries = list(self._entries)
        entries[index] = result.entry
        self._commit(_sort_recent(entries))
        logger.info("Updated %s", id)
        return result

    def delete(self, id: str) -> bool:
        """Remove the entry with this id. Returns False (and changes nothing) if absent."""
        index = self._index_of(id)
        if index is None:
            return False
        self._commit(self._entries[:index] + self._entries[index + 1:])
        logger.info("Deleted %s", id)
        return True

    def clear(self) -> int:
        """Remove every entry. Returns the number removed.

        Unconditional: callers confirm intent before calling.
        """
        removed = len(self._entries)
        self._commit([])
        logger.info("Cleared %d entries", removed)
        return removed

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    def _index_of(self, id: str) -> Optional[int]:
        for i, entry in enumerate(self._entries):
            if entry.id == id:
                return i
        return None

    def get(self, id: str) -> Optional[MissEntry]:
        index = self._index_of(id)
        return self._entries[index] if index is not None else None

    def list(self) -> list[MissEntry]:
        """All entries, newest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def filter(
        self,
        *,
        topic: Optional[str] = None,
        tag: Optional[str] = None,
        why_missed: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[MissEntry]:
        """
        Entries matching every supplied criterion, newest first.

        Empty or None criteria impose no constraint.

        Args:
            topic: Exact topic match
            tag: Tag membership (normalized to lowercase first)
            why_missed: Exact reason match
            search: Case-insensitive substring of topic, concept, rule and tags
        """
        tag = normalize_tag(tag) if tag else ""
        query = (search or "").strip().lower()

        results = []
        for entry in self._entries:
            if topic and entry.topic != topic:
                continue
            if tag and tag not in entry.tags:
                continue
            if why_missed and entry.why_missed != why_missed:
                continue
            if query and query not in entry.search_text:
                continue
            results.append(entry)
        return results

    def topics_in_use(self) -> list[str]:
        """Distinct non-empty topics, sorted case-insensitively."""
        topics = {entry.topic.strip() for entry in self._entries}
        topics.discard("")
        return sorted(topics, key=collation_key)

    def tags_in_use(self) -> list[str]:
        """Distinct tags, sorted."""
        tags = {tag for entry in self._entries for tag in entry.tags}
        tags.discard("")
        return sorted(tags, key=collation_key)

    def weak_tag_ranking(self, limit: int = 10) -> list[tuple[str, int]]:
        """
        Most frequent tags as (tag, count) pairs.

        A tag counts once per entry that carries it. Sorted by count
        descending, then tag ascending.
        """
        if limit <= 0:
            return []
        counts: Counter[str] = Counter()
        for entry in self._entries:
            counts.update(set(entry.tags))
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], collation_key(kv[0])))
        return ranked[:limit]

    def stats(self) -> dict[str, Any]:
        """Summary counts for the whole collection."""
        by_reason = {why: 0 for why in WHY_OPTIONS}
        for entry in self._entries:
            by_reason[entry.why_missed] = by_reason.get(entry.why_missed, 0) + 1
        return {
            "total": len(self._entries),
            "by_reason": by_reason,
            "topics": len(self.topics_in_use()),
            "tags": len(self.tags_in_use()),
        }

    # -------------------------------------------------------------------------
    # Snapshot Export / Import
    # -------------------------------------------------------------------------

    def export_snapshot(self) -> list[dict[str, Any]]:
        """The full collection as plain records, newest first."""
        return [entry.to_dict() for entry in self._entries]

    def export_json(self) -> str:
        """Pretty-printed JSON array of all entries."""
        return json.dumps(self.export_snapshot(), indent=2, ensure_ascii=False)

    @staticmethod
    def export_filename(today: Optional[date] = None) -> str:
        """Default export file name, e.g. ``misslog-2026-01-15.json``."""
        today = today or datetime.now().date()
        return f"{EXPORT_FILENAME_PREFIX}-{today.isoformat()}.json"

    def import_snapshot(self, records: Any) -> ImportStats:
        """
        Replace the whole collection with coerced imported records.

        Records missing topic, concept or rule are dropped. The swap is
        all-or-nothing: a malformed snapshot changes nothing.

        Raises:
            SnapshotImportError: If records is not a list of objects
        """
        if isinstance(records, (str, bytes)) or not isinstance(records, Sequence):
            raise SnapshotImportError(
                f"Expected a list of entries, got {type(records).__name__}"
            )
        for i, record in enumerate(records):
            if not isinstance(record, Mapping):
                raise SnapshotImportError(
                    f"Entry {i} is not an object (got {type(record).__name__})"
                )

        imported = []
        for record in records:
            entry = coerce_record(record)
            if entry is not None:
                imported.append(entry)

        stats = ImportStats(imported=len(imported), dropped=len(records) - len(imported))
        self._commit(_sort_recent(imported))
        logger.info("Imported %d entries (%d dropped)", stats.imported, stats.dropped)
        return stats

    def import_json(self, text: str) -> ImportStats:
        """Parse exported JSON text and import it (see import_snapshot)."""
        return self.import_snapshot(parse_snapshot(text))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release storage and the operations log handler."""
        remove_ops_log(self._ops_log_handler)
        self._ops_log_handler = None
        self._storage.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _sort_recent(entries: list[MissEntry]) -> list[MissEntry]:
    """Newest first. Stable, so equal timestamps keep their current order."""
    return sorted(entries, key=lambda e: e.created, reverse=True)
