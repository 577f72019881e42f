import pytest

from tripsync.domain.models import ConflictItem, Resolution
from tripsync.sync.resolution import ResolutionCollector


def _conflict(trip_id: str, field: str) -> ConflictItem:
    return ConflictItem(trip_id=trip_id, trip_title=f"Trip {trip_id}", field=field, local_value="1", remote_value="2")


def _collector() -> ResolutionCollector:
    return ResolutionCollector(
        [_conflict("A", "budget"), _conflict("A", "title"), _conflict("B", "dates")]
    )


def test_every_conflicting_trip_defaults_to_local():
    collector = _collector()
    assert collector.trip_ids() == ["A", "B"]
    assert collector.resolution_map() == {"A": Resolution.LOCAL, "B": Resolution.LOCAL}


def test_choose_accepts_enum_or_string():
    collector = _collector()
    collector.choose("A", "remote")
    collector.choose("B", Resolution.REMOTE)
    assert collector.choice("A") is Resolution.REMOTE
    assert collector.choice("B") is Resolution.REMOTE


def test_choose_unknown_trip_raises():
    collector = _collector()
    with pytest.raises(ValueError, match="unknown_conflict_trip"):
        collector.choose("Z", Resolution.REMOTE)


def test_choose_all():
    collector = _collector()
    collector.choose_all("remote")
    assert set(collector.resolution_map().values()) == {Resolution.REMOTE}


def test_apply_returns_ignored_ids():
    collector = _collector()
    ignored = collector.apply({"A": "remote", "Z": "remote"})
    assert ignored == ["Z"]
    assert collector.choice("A") is Resolution.REMOTE
    assert collector.choice("B") is Resolution.LOCAL


def test_grouped_keeps_field_level_detail():
    collector = _collector()
    collector.choose("B", "remote")
    groups = collector.grouped()
    assert [g["trip_id"] for g in groups] == ["A", "B"]
    assert [c.field for c in groups[0]["conflicts"]] == ["budget", "title"]
    assert groups[1]["choice"] == "remote"
