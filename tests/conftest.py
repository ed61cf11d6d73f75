"""
Shared pytest fixtures for misslog tests.

Provides an in-memory slot storage so store tests never touch disk.
"""

import json

import pytest

from misslog.api import MissLog
from misslog.backend import MemorySlotStorage
from misslog.config import DEFAULT_STORAGE_KEY


def make_record(id, topic="Renal", concept="Type IV RTA", rule="Think hypoaldosteronism",
                why="knowledge gap", tags=None, created_at="2026-01-01T00:00:00.000Z",
                why_notes=""):
    """Build a stored/exported record dict."""
    return {
        "id": id,
        "createdAt": created_at,
        "topic": topic,
        "concept": concept,
        "whyMissed": why,
        "whyNotes": why_notes,
        "rule": rule,
        "tags": list(tags or []),
    }


def stored(records) -> MemorySlotStorage:
    """Memory storage pre-loaded with records under the default key."""
    return MemorySlotStorage({DEFAULT_STORAGE_KEY: json.dumps(records)})


@pytest.fixture
def storage():
    return MemorySlotStorage()


@pytest.fixture
def ml(storage):
    """Empty miss log over in-memory storage."""
    return MissLog(storage)


@pytest.fixture
def seeded(storage):
    """Miss log with four entries on distinct days."""
    ml = MissLog(storage)
    ml.add("Renal", "Type IV RTA", "Hyperkalemia + NAGMA = hypoaldosteronism",
           tags="renal, acid-base, raas", date="2026-01-03")
    ml.add("Cardio", "Fixed split S2", "Fixed splitting = ASD",
           why_missed="misread", tags="cardio, murmurs", date="2026-01-05")
    ml.add("Renal", "Nephrotic syndrome", "Minimal change in kids",
           why_missed="changed answer", tags="renal", date="2026-01-01")
    ml.add("Pharm", "Digoxin toxicity", "Hyperkalemia predicts mortality",
           why_missed="time pressure", tags="pharm, cardio", date="2026-01-04")
    return ml
