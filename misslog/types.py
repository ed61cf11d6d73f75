"""
Data types for the miss log.
"""

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Optional, Union


# Reasons a question was missed, in display order
WHY_OPTIONS = (
    "knowledge gap",
    "misread",
    "changed answer",
    "time pressure",
    "calculation",
    "other",
)

DEFAULT_WHY = "knowledge gap"

# Imported records with a missing or unknown reason land here
FALLBACK_WHY = "other"

# Fields that must be non-empty after trimming
REQUIRED_FIELDS = ("topic", "concept", "rule")


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as the canonical stored form: YYYY-MM-DDTHH:MM:SS.mmmZ (UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now() -> str:
    """Current UTC timestamp in canonical format."""
    return format_timestamp(datetime.now(timezone.utc))


def parse_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical format as well as plain ISO dates and offsets.
    Naive values are taken as UTC.
    """
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_valid_timestamp(ts: Any) -> bool:
    if not isinstance(ts, str) or not ts.strip():
        return False
    try:
        parse_timestamp(ts)
    except (ValueError, OverflowError):
        return False
    return True


def date_to_timestamp(day: Union[str, date]) -> str:
    """Convert a calendar day (YYYY-MM-DD or date) to local midnight, stored as UTC.

    Raises:
        ValueError: If the string is not a valid YYYY-MM-DD date
    """
    if isinstance(day, datetime):
        return format_timestamp(day.astimezone())
    if isinstance(day, str):
        day = date.fromisoformat(day.strip())
    local_midnight = datetime.combine(day, time()).astimezone()
    return format_timestamp(local_midnight)


def local_date(utc_iso: str) -> str:
    """Convert a stored UTC timestamp to a local-timezone date string (YYYY-MM-DD).

    Used for short-form display dates. Returns empty string for empty input.
    """
    if not utc_iso:
        return ""
    try:
        return parse_timestamp(utc_iso).astimezone().strftime("%Y-%m-%d")
    except (ValueError, OverflowError):
        return utc_iso[:10]


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_tag(tag: Any) -> str:
    return str(tag).strip().lower()


def parse_tags(tags_text: str) -> list[str]:
    """Split comma-separated tag text into trimmed, lowercased, non-empty tags.

    Input order is kept and duplicates are not removed.
    """
    return [t for t in (normalize_tag(part) for part in tags_text.split(",")) if t]


def normalize_tags(tags: Union[str, Iterable[Any], None]) -> list[str]:
    """Normalize tags given either as comma-separated text or as a sequence.

    Sequence elements may themselves contain commas (``["a, b", "c"]``).
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        return parse_tags(tags)
    result: list[str] = []
    for tag in tags:
        result.extend(parse_tags(str(tag)))
    return result


def collation_key(value: str) -> tuple[str, str]:
    """Sort key for human-facing ordering: case-insensitive, then exact."""
    return (value.casefold(), value)


@dataclass
class MissEntry:
    """
    One logged miss: the question's topic and concept, why it was missed,
    and the rule to remember next time.
    """
    id: str
    created_at: str
    topic: str
    concept: str
    rule: str
    why_missed: str = DEFAULT_WHY
    why_notes: str = ""
    tags: list[str] = field(default_factory=list)

    @property
    def created(self) -> datetime:
        """``created_at`` as an aware UTC datetime."""
        return parse_timestamp(self.created_at)

    @property
    def search_text(self) -> str:
        """Lowercased text matched by free-text search."""
        return " ".join([self.topic, self.concept, self.rule, " ".join(self.tags)]).lower()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stored/exported record shape (camelCase keys)."""
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "topic": self.topic,
            "concept": self.concept,
            "whyMissed": self.why_missed,
            "whyNotes": self.why_notes,
            "rule": self.rule,
            "tags": list(self.tags),
        }


@dataclass
class MutationResult:
    """Outcome of add/update. ``ok`` is False when nothing was changed."""
    ok: bool
    entry: Optional[MissEntry] = None
    errors: list[str] = field(default_factory=list)
    not_found: bool = False

    def __bool__(self) -> bool:
        return self.ok


@dataclass
class ImportStats:
    """Counts from a snapshot import."""
    imported: int = 0
    dropped: int = 0


def validate_fields(topic: str, concept: str, rule: str, why_missed: str) -> list[str]:
    """Return a list of validation messages (empty if the fields are acceptable)."""
    errors = []
    for name, value in (("topic", topic), ("concept", concept), ("rule", rule)):
        if not value.strip():
            errors.append(f"{name} is required")
    if why_missed not in WHY_OPTIONS:
        errors.append(
            f"why_missed must be one of: {', '.join(WHY_OPTIONS)} (got {why_missed!r})"
        )
    return errors


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def hydrate_record(raw: Any) -> Optional[MissEntry]:
    """Rebuild an entry from persisted data, or None if it is structurally invalid.

    Persisted records must carry string ``id``, ``createdAt``, ``topic``,
    ``concept``, ``whyMissed`` and ``rule`` fields and a ``tags`` list.
    """
    if not isinstance(raw, Mapping):
        return None
    for key in ("id", "createdAt", "topic", "concept", "whyMissed", "rule"):
        if not isinstance(raw.get(key), str):
            return None
    if not isinstance(raw.get("tags"), list):
        return None
    if not raw["id"] or not is_valid_timestamp(raw["createdAt"]):
        return None

    entry = MissEntry(
        id=raw["id"],
        created_at=raw["createdAt"],
        topic=raw["topic"].strip(),
        concept=raw["concept"].strip(),
        rule=raw["rule"].strip(),
        why_missed=raw["whyMissed"] if raw["whyMissed"] in WHY_OPTIONS else FALLBACK_WHY,
        why_notes=_text(raw.get("whyNotes")),
        tags=normalize_tags(raw["tags"]),
    )
    if not (entry.topic and entry.concept and entry.rule):
        return None
    return entry


def coerce_record(raw: Mapping) -> Optional[MissEntry]:
    """Leniently coerce an imported record, or None if required text is missing.

    A missing id gets a fresh one, a missing or unparsable ``createdAt``
    becomes now, and an unknown ``whyMissed`` becomes "other". Tags are
    normalized as in ``add``, so elements holding commas are split.
    """
    raw_id = raw.get("id")
    created_at = raw.get("createdAt")
    why = raw.get("whyMissed")
    tags = raw.get("tags")

    entry = MissEntry(
        id=raw_id if isinstance(raw_id, str) and raw_id else new_id(),
        created_at=created_at if is_valid_timestamp(created_at) else utc_now(),
        topic=_text(raw.get("topic")),
        concept=_text(raw.get("concept")),
        rule=_text(raw.get("rule")),
        why_missed=why if why in WHY_OPTIONS else FALLBACK_WHY,
        why_notes=_text(raw.get("whyNotes")),
        tags=normalize_tags(tags) if isinstance(tags, list) else [],
    )
    if not (entry.topic and entry.concept and entry.rule):
        return None
    return entry
