"""Tests for MissLog write operations and ordering."""

import sqlite3
from datetime import date

import pytest

from misslog.api import MissLog
from misslog.backend import MemorySlotStorage
from misslog.types import local_date, parse_timestamp


class TestAdd:

    def test_add_returns_entry(self, ml):
        result = ml.add("  Renal ", " Type IV RTA ", " Think RAAS ", tags="Renal, ACID-base ,, ")
        assert result.ok
        entry = result.entry
        assert entry.topic == "Renal"
        assert entry.concept == "Type IV RTA"
        assert entry.rule == "Think RAAS"
        assert entry.tags == ["renal", "acid-base"]
        assert entry.why_missed == "knowledge gap"
        assert entry.why_notes == ""
        assert ml.list() == [entry]

    def test_add_assigns_unique_ids(self, ml):
        a = ml.add("A", "a", "rule a").entry
        b = ml.add("B", "b", "rule b").entry
        assert a.id and b.id
        assert a.id != b.id

    def test_add_keeps_tag_duplicates(self, ml):
        entry = ml.add("A", "a", "r", tags="x, y, x").entry
        assert entry.tags == ["x", "y", "x"]

    def test_add_accepts_tag_list(self, ml):
        entry = ml.add("A", "a", "r", tags=["Renal, raas", " Cardio "]).entry
        assert entry.tags == ["renal", "raas", "cardio"]

    def test_add_date_is_local_midnight(self, ml):
        entry = ml.add("A", "a", "r", date="2026-02-14").entry
        assert local_date(entry.created_at) == "2026-02-14"
        assert entry.created_at.endswith("Z")

    def test_add_accepts_date_object(self, ml):
        entry = ml.add("A", "a", "r", date=date(2025, 12, 31)).entry
        assert local_date(entry.created_at) == "2025-12-31"

    def test_add_defaults_to_today(self, ml):
        entry = ml.add("A", "a", "r").entry
        assert local_date(entry.created_at) == date.today().isoformat()

    @pytest.mark.parametrize("field", ["topic", "concept", "rule"])
    def test_add_rejects_blank_required_field(self, seeded, storage, field):
        before = seeded.list()
        saves = storage.save_calls
        values = {"topic": "T", "concept": "C", "rule": "R", field: "   "}
        result = seeded.add(values["topic"], values["concept"], values["rule"])
        assert not result.ok
        assert result.entry is None
        assert f"{field} is required" in result.errors
        assert seeded.list() == before
        assert storage.save_calls == saves

    def test_add_rejects_unknown_reason(self, ml):
        result = ml.add("T", "C", "R", why_missed="bad luck")
        assert not result.ok
        assert len(ml) == 0

    def test_add_rejects_bad_date(self, ml):
        result = ml.add("T", "C", "R", date="15/01/2026")
        assert not result.ok
        assert "YYYY-MM-DD" in result.errors[0]
        assert len(ml) == 0

    def test_result_is_truthy_only_on_success(self, ml):
        assert ml.add("T", "C", "R")
        assert not ml.add("", "C", "R")


class TestOrdering:

    def test_list_is_newest_first(self, seeded):
        dates = [e.created for e in seeded.list()]
        assert dates == sorted(dates, reverse=True)
        assert [e.concept for e in seeded.list()] == [
            "Fixed split S2", "Digoxin toxicity", "Type IV RTA", "Nephrotic syndrome",
        ]

    def test_same_day_newest_add_first(self, ml):
        first = ml.add("A", "first", "r", date="2026-01-01").entry
        second = ml.add("A", "second", "r", date="2026-01-01").entry
        assert [e.id for e in ml.list()] == [second.id, first.id]

    def test_list_returns_copy(self, seeded):
        entries = seeded.list()
        entries.clear()
        assert len(seeded.list()) == 4


class TestUpdate:

    def test_update_preserves_id_and_count(self, seeded):
        target = seeded.filter(search="digoxin")[0]
        result = seeded.update(target.id, rule="K+ > 5 is ominous", tags="pharm, toxicology")
        assert result.ok
        assert result.entry.id == target.id
        assert len(seeded) == 4
        updated = seeded.get(target.id)
        assert updated.rule == "K+ > 5 is ominous"
        assert updated.tags == ["pharm", "toxicology"]
        # Untouched fields carry over
        assert updated.topic == "Pharm"
        assert updated.why_missed == "time pressure"
        assert updated.created_at == target.created_at

    def test_update_date_resorts(self, seeded):
        oldest = seeded.list()[-1]
        seeded.update(oldest.id, date="2026-02-01")
        assert seeded.list()[0].id == oldest.id
        assert local_date(seeded.list()[0].created_at) == "2026-02-01"

    def test_update_unknown_id(self, seeded, storage):
        saves = storage.save_calls
        result = seeded.update("missing", topic="X")
        assert not result.ok
        assert result.not_found
        assert len(seeded) == 4
        assert storage.save_calls == saves

    def test_update_rejects_blanking_required_field(self, seeded):
        target = seeded.list()[0]
        result = seeded.update(target.id, concept="  ")
        assert not result.ok
        assert not result.not_found
        assert seeded.get(target.id).concept == target.concept

    def test_update_can_clear_tags(self, seeded):
        target = seeded.list()[0]
        seeded.update(target.id, tags=[])
        assert seeded.get(target.id).tags == []


class TestDelete:

    def test_delete_removes_entry(self, seeded):
        target = seeded.list()[1]
        assert seeded.delete(target.id) is True
        assert seeded.get(target.id) is None
        assert len(seeded) == 3

    def test_delete_missing_is_noop(self, seeded, storage):
        saves = storage.save_calls
        assert seeded.delete("nope") is False
        assert len(seeded) == 4
        assert storage.save_calls == saves


class TestClear:

    def test_clear_empties(self, seeded):
        assert seeded.clear() == 4
        assert seeded.list() == []

    def test_clear_persists(self, seeded, storage):
        seeded.clear()
        assert MissLog(storage).list() == []


class TestPersistOnMutation:

    def test_every_mutation_saves(self, ml, storage):
        entry = ml.add("A", "a", "r").entry
        assert storage.save_calls == 1
        ml.update(entry.id, rule="r2")
        assert storage.save_calls == 2
        ml.delete(entry.id)
        assert storage.save_calls == 3
        ml.import_snapshot([])
        assert storage.save_calls == 4
        ml.clear()
        assert storage.save_calls == 5

    def test_reopen_sees_changes(self, seeded, storage):
        reopened = MissLog(storage)
        assert [e.id for e in reopened.list()] == [e.id for e in seeded.list()]
        assert parse_timestamp(reopened.list()[0].created_at) == seeded.list()[0].created


class ReadOnlySlotStorage(MemorySlotStorage):
    """Memory slots whose saves fail once ``read_only`` is set."""

    read_only = False

    def save(self, key: str, value: str) -> None:
        if self.read_only:
            raise sqlite3.OperationalError("attempt to write a readonly database")
        super().save(key, value)


class TestFailedSave:

    @pytest.fixture
    def failing(self):
        storage = ReadOnlySlotStorage()
        ml = MissLog(storage)
        entry = ml.add("Renal", "RTA", "rule", tags="renal", date="2026-01-01").entry
        storage.read_only = True
        return ml, storage, entry

    def test_clear_keeps_entries(self, failing):
        ml, storage, entry = failing
        with pytest.raises(sqlite3.OperationalError):
            ml.clear()
        assert [e.id for e in ml.list()] == [entry.id]
        assert len(MissLog(storage)) == 1

    def test_add_keeps_collection(self, failing):
        ml, _, entry = failing
        with pytest.raises(sqlite3.OperationalError):
            ml.add("Cardio", "S2", "rule")
        assert [e.id for e in ml.list()] == [entry.id]

    def test_update_keeps_entry(self, failing):
        ml, _, entry = failing
        with pytest.raises(sqlite3.OperationalError):
            ml.update(entry.id, rule="changed")
        assert ml.get(entry.id) == entry

    def test_delete_keeps_entry(self, failing):
        ml, _, entry = failing
        with pytest.raises(sqlite3.OperationalError):
            ml.delete(entry.id)
        assert ml.get(entry.id) == entry

    def test_import_keeps_collection(self, failing):
        ml, _, entry = failing
        with pytest.raises(sqlite3.OperationalError):
            ml.import_snapshot([])
        assert [e.id for e in ml.list()] == [entry.id]
