import pytest

from tripsync.core.errors import IdentifierInvalid
from tripsync.domain.models import Dataset
from tripsync.sync.sync_id import (
    GENERATED_LENGTH,
    SYNC_ID_RE,
    check_sync_id_change,
    generate_sync_id,
    validate_sync_id,
)


class _Store:
    def __init__(self, existing: dict[str, Dataset] | None = None):
        self.existing = existing or {}
        self.fetched: list[str] = []

    def fetch(self, sync_id: str):
        self.fetched.append(sync_id)
        return self.existing.get(sync_id)


def test_validate_normalizes_case_and_whitespace():
    assert validate_sync_id("  trip-2026 ") == "TRIP-2026"


def test_validate_rejects_short_ids():
    with pytest.raises(IdentifierInvalid, match="sync_id_too_short"):
        validate_sync_id("AB")


def test_validate_rejects_bad_characters():
    with pytest.raises(IdentifierInvalid, match="sync_id_invalid_characters"):
        validate_sync_id("ABC DEF")
    with pytest.raises(IdentifierInvalid):
        validate_sync_id("ÄBCD")


def test_validate_honors_configured_min_length():
    assert validate_sync_id("AB", min_length=2) == "AB"


def test_generated_ids_are_valid():
    for _ in range(20):
        value = generate_sync_id()
        assert len(value) == GENERATED_LENGTH
        assert SYNC_ID_RE.match(value)


def test_change_to_unused_id():
    store = _Store()
    check = check_sync_id_change(store, "newid", "OLDID")
    assert check.sync_id == "NEWID"
    assert check.in_use is False
    assert check.unchanged is False
    assert store.fetched == ["NEWID"]


def test_change_to_id_with_existing_backup_is_flagged():
    store = _Store({"TAKEN": Dataset()})
    check = check_sync_id_change(store, "taken", "MINE")
    assert check.in_use is True


def test_unchanged_id_skips_lookup():
    store = _Store()
    check = check_sync_id_change(store, "mine", "MINE")
    assert check.unchanged is True
    assert store.fetched == []


def test_invalid_id_fails_before_lookup():
    store = _Store()
    with pytest.raises(IdentifierInvalid):
        check_sync_id_change(store, "AB", "MINE")
    assert store.fetched == []
