import pytest

from tripsync.domain.migrations import migrate_dataset, parse_trip
from tripsync.domain.models import CURRENT_SCHEMA_VERSION, Dataset


def test_legacy_blob_is_upgraded():
    raw = {
        "trips": [
            {
                "id": 17,
                "title": "Tokyo",
                "budget": "1,200",
                "itinerary": {"2026-04-01": [{"title": "Shrine"}, "junk"]},
                "photos": None,
                "expenses": [{"label": "Sushi", "amount": "30"}],
            }
        ],
        "userProfile": None,
        "customEvents": [{"id": 5, "name": "Call"}],
    }

    ds = migrate_dataset(raw)

    assert ds.schema_version == CURRENT_SCHEMA_VERSION
    trip = ds.trips[0]
    assert trip.id == "17"
    assert trip.budget == 1200.0
    assert trip.photos == []
    assert trip.expenses[0].amount == 30.0
    items = trip.itinerary["2026-04-01"]
    assert len(items) == 1
    assert items[0].id == "17-2026-04-01-0"
    assert ds.events[0].id == "5"


def test_unknown_keys_survive_round_trip():
    raw = {"schemaVersion": 1, "trips": [{"id": "A", "tripNotes": "keep me"}], "extraTop": 1}

    ds = migrate_dataset(raw)
    payload = ds.to_payload()

    assert payload["trips"][0]["tripNotes"] == "keep me"
    assert payload["extraTop"] == 1
    assert payload["userProfile"] == {"name": "", "nationality": "", "currency": "", "pfp": ""}


def test_none_is_empty_dataset():
    assert migrate_dataset(None) == Dataset()


def test_non_object_is_rejected():
    with pytest.raises(ValueError, match="dataset_not_object"):
        migrate_dataset([1, 2])


def test_future_schema_is_rejected():
    with pytest.raises(ValueError, match="unsupported_schema_version"):
        migrate_dataset({"schemaVersion": CURRENT_SCHEMA_VERSION + 1})


def test_duplicate_trip_ids_are_rejected():
    with pytest.raises(ValueError, match="duplicate_trip_id"):
        migrate_dataset({"schemaVersion": 1, "trips": [{"id": "A"}, {"id": "A"}]})


def test_parse_trip_rejects_missing_id():
    with pytest.raises(ValueError, match="trip_invalid"):
        parse_trip({"title": "no id"})
    with pytest.raises(ValueError, match="trip_not_object"):
        parse_trip("nope")
