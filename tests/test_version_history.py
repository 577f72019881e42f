from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tripsync.core.errors import IdentifierInvalid, VersionNotFound
from tripsync.domain.models import Flight, Trip
from tripsync.providers.sqlite_store import SqliteStore
from tripsync.versions.history import VersionHistoryManager


class _Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


def _manager(tmp_path: Path, default_note: str = "Auto-save") -> VersionHistoryManager:
    store = SqliteStore(str(tmp_path / "remote.db"), log_func=lambda *_: None)
    return VersionHistoryManager(store, default_note, log_func=lambda *_: None, clock=_Clock())


def test_blank_note_uses_default(tmp_path: Path):
    manager = _manager(tmp_path)
    version = manager.save_version(Trip(id="T1", title="Rome"), "   ")
    assert version.note == "Auto-save"
    assert version.trip_title == "Rome"


def test_versions_are_listed_newest_first(tmp_path: Path):
    manager = _manager(tmp_path)
    trip = Trip(id="T1", title="Rome")
    first = manager.save_version(trip, "one")
    second = manager.save_version(trip, "two")
    manager.save_version(Trip(id="T2", title="Oslo"), "other trip")

    listed = manager.list_versions("T1")

    assert [v.id for v in listed] == [second.id, first.id]


def test_saved_version_is_immutable_snapshot(tmp_path: Path):
    manager = _manager(tmp_path)
    trip = Trip(id="T1", title="Rome", budget=10)
    version = manager.save_version(trip, "before edit")

    trip.budget = 999

    stored = manager.get_version(version.id)
    assert version.data.budget == 10
    assert stored.data.budget == 10


def test_find_versions_matches_note_title_and_id(tmp_path: Path):
    manager = _manager(tmp_path)
    manager.save_version(Trip(id="T1", title="Rome"), "added flights")
    manager.save_version(Trip(id="T2", title="Paris weekend"), "budget")

    assert [v.trip_id for v in manager.find_versions("FLIGHTS")] == ["T1"]
    assert [v.trip_id for v in manager.find_versions("paris")] == ["T2"]
    assert [v.trip_id for v in manager.find_versions("t2")] == ["T2"]
    assert manager.find_versions("   ") == []
    assert manager.find_versions("100%") == []


def test_restore_same_trip(tmp_path: Path):
    manager = _manager(tmp_path)
    version = manager.save_version(Trip(id="T1", title="Rome", budget=10), "")

    result = manager.restore_by_id(version.id, "T1")

    assert result.cross_trip is False
    assert result.trip.id == "T1"
    assert result.trip.budget == 10


def test_cross_trip_restore_keeps_target_id(tmp_path: Path):
    manager = _manager(tmp_path)
    source = Trip(id="T1", title="Rome", flights=[Flight(id="f1", flight_number="AZ1"), Flight(id="f2", flight_number="AZ2")])
    version = manager.save_version(source, "added flights")

    result = manager.restore_by_id(version.id, "T2")

    assert result.cross_trip is True
    assert result.source_trip_id == "T1"
    assert result.trip.id == "T2"
    assert [f.flight_number for f in result.trip.flights] == ["AZ1", "AZ2"]
    assert version.data.id == "T1"


def test_restore_unknown_version(tmp_path: Path):
    manager = _manager(tmp_path)
    with pytest.raises(VersionNotFound):
        manager.restore_by_id("missing", "T1")


def test_restore_requires_target(tmp_path: Path):
    manager = _manager(tmp_path)
    version = manager.save_version(Trip(id="T1"), "")
    with pytest.raises(IdentifierInvalid):
        manager.restore(version, " ")


def test_restore_rejects_malformed_version(tmp_path: Path):
    manager = _manager(tmp_path)
    with pytest.raises(VersionNotFound):
        manager.restore({"id": "x"}, "T1")


def test_restore_reverts_later_flight_change(tmp_path: Path):
    manager = _manager(tmp_path)
    trip = Trip(id="A", title="Lisbon", budget=300, flights=[Flight(id="f1", flight_number="TP1")])
    version = manager.save_version(trip, "before flight change")

    edited = trip.model_copy(deep=True, update={"title": "Lisbon + Porto", "budget": 450})
    edited.flights = [Flight(id="f9", flight_number="FR9")]

    result = manager.restore_by_id(version.id, edited.id)

    assert [f.flight_number for f in result.trip.flights] == ["TP1"]
    assert result.trip.title == "Lisbon"
    assert result.trip.budget == 300
    assert result.cross_trip is False
