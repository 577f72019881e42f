"""Schema upgrades for stored datasets.

Schema 0 is the untyped blob written by early web client releases: no
`schemaVersion`, nulls where lists are expected, numbers stored as strings and
itinerary items without ids.
"""

from __future__ import annotations

from typing import Any, Callable

from pydantic import ValidationError

from tripsync.domain.models import CURRENT_SCHEMA_VERSION, Dataset, Trip


def _as_float(value: object) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        raw = value.strip().replace(",", "")
        if not raw:
            return 0.0
        try:
            return float(raw)
        except ValueError:
            return 0.0
    return 0.0


def _dict_list(value: object) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def upgrade_trip_payload(raw: dict[str, Any]) -> dict[str, Any]:
    """Normalize one schema-0 trip. Safe to apply to current-schema trips."""
    trip = dict(raw)
    trip_id = trip.get("id")
    if trip_id is not None and not isinstance(trip_id, str):
        trip["id"] = str(trip_id)
        trip_id = trip["id"]

    if "budget" in trip:
        trip["budget"] = _as_float(trip.get("budget"))

    itinerary_raw = trip.get("itinerary")
    itinerary: dict[str, list[dict]] = {}
    if isinstance(itinerary_raw, dict):
        for day, items in itinerary_raw.items():
            day_items = []
            for index, item in enumerate(_dict_list(items)):
                fixed = dict(item)
                if not fixed.get("id"):
                    fixed["id"] = f"{trip_id}-{day}-{index}"
                for key in ("estimatedExpense", "actualExpense"):
                    if key in fixed:
                        fixed[key] = _as_float(fixed.get(key))
                day_items.append(fixed)
            itinerary[str(day)] = day_items
    trip["itinerary"] = itinerary

    for key in ("photos", "expenses", "flights"):
        trip[key] = _dict_list(trip.get(key))
    for expense in trip["expenses"]:
        if "amount" in expense:
            expense["amount"] = _as_float(expense.get("amount"))
    return trip


def _migrate_v0_to_v1(raw: dict[str, Any]) -> dict[str, Any]:
    out = dict(raw)
    out["trips"] = [upgrade_trip_payload(t) for t in _dict_list(out.get("trips"))]
    profile = out.get("userProfile")
    out["userProfile"] = profile if isinstance(profile, dict) else {}
    events = []
    for event in _dict_list(out.get("customEvents")):
        if event.get("id") is not None and not isinstance(event.get("id"), str):
            event = {**event, "id": str(event["id"])}
        events.append(event)
    out["customEvents"] = events
    out["schemaVersion"] = 1
    return out


# source version -> (target version, step)
MIGRATIONS: dict[int, tuple[int, Callable[[dict[str, Any]], dict[str, Any]]]] = {
    0: (1, _migrate_v0_to_v1),
}


def detect_schema_version(raw: dict[str, Any]) -> int:
    value = raw.get("schemaVersion", raw.get("schema_version", 0))
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def migrate_payload(raw: dict[str, Any]) -> dict[str, Any]:
    version = detect_schema_version(raw)
    if version > CURRENT_SCHEMA_VERSION:
        raise ValueError(f"unsupported_schema_version: {version}")

    data = dict(raw)
    while version < CURRENT_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"no_migration_from_schema: {version}")
        version, func = step
        data = func(data)
    return data


def migrate_dataset(raw: object) -> Dataset:
    """Upgrade a stored blob to the current schema and validate it."""
    if raw is None:
        return Dataset()
    if isinstance(raw, Dataset):
        return raw
    if not isinstance(raw, dict):
        raise ValueError("dataset_not_object")
    return Dataset.model_validate(migrate_payload(raw))


def parse_trip(raw: object) -> Trip:
    if not isinstance(raw, dict):
        raise ValueError("trip_not_object")
    try:
        return Trip.model_validate(upgrade_trip_payload(raw))
    except ValidationError as e:
        raise ValueError(f"trip_invalid: {e.error_count()} errors") from e
