"""Field-level comparison of the trips present on both sides of a sync."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Callable

from pydantic import BaseModel, Field

from tripsync.domain.models import ConflictItem, Dataset, Trip


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def _digest(value: Any) -> str:
    return hashlib.sha256(_canonical(value).encode("utf-8")).hexdigest()[:12]


def _fmt_number(value: float) -> str:
    return format(value, ".15g")


def _dates(trip: Trip) -> str:
    return f"{trip.start_date or '?'} to {trip.end_date or '?'}"


def _itinerary_digest(trip: Trip) -> str:
    days = {day: [item.to_payload() for item in items] for day, items in trip.itinerary.items()}
    count = sum(len(items) for items in days.values())
    if not count:
        return "no items"
    return f"{count} items over {len(days)} days #{_digest(days)}"


def _expense_digest(trip: Trip) -> str:
    if not trip.expenses:
        return "no expenses"
    total = sum(e.amount for e in trip.expenses)
    payload = [e.to_payload() for e in trip.expenses]
    return f"{len(trip.expenses)} expenses, total {_fmt_number(total)} #{_digest(payload)}"


def _flight_digest(trip: Trip) -> str:
    if not trip.flights:
        return "no flights"
    numbers = ", ".join(f.flight_number or "?" for f in trip.flights)
    payload = [f.to_payload() for f in trip.flights]
    return f"{len(trip.flights)} flights ({numbers}) #{_digest(payload)}"


def _media_digest(trip: Trip) -> str:
    if not trip.photos:
        return "no photos"
    favorites = sum(1 for p in trip.photos if p.is_favorite)
    payload = [p.to_payload() for p in trip.photos]
    return f"{len(trip.photos)} photos ({favorites} favorites) #{_digest(payload)}"


# Everything a user edits on a trip. Display-only state (cover image, pinned
# flag, computed status) is not compared.
COMPARABLE_FIELDS: tuple[tuple[str, Callable[[Trip], str]], ...] = (
    ("title", lambda t: t.title),
    ("location", lambda t: t.location),
    ("dates", _dates),
    ("budget", lambda t: _fmt_number(t.budget)),
    ("currency", lambda t: t.currency),
    ("description", lambda t: t.description),
    ("itinerary", _itinerary_digest),
    ("expenses", _expense_digest),
    ("flights", _flight_digest),
    ("media", _media_digest),
)


class DiffReport(BaseModel):
    conflicts: list[ConflictItem] = Field(default_factory=list)
    remote_dataset: Dataset
    remote_found: bool = True
    local_only: list[str] = Field(default_factory=list)
    remote_only: list[str] = Field(default_factory=list)
    shared: list[str] = Field(default_factory=list)

    def conflicting_trip_ids(self) -> list[str]:
        return conflicting_trip_ids(self.conflicts)


def conflicting_trip_ids(conflicts: list[ConflictItem]) -> list[str]:
    seen: dict[str, None] = {}
    for c in conflicts:
        seen.setdefault(c.trip_id, None)
    return list(seen)


def _differs(field: str, local: Trip, remote: Trip, local_value: str, remote_value: str) -> bool:
    # Display strings round; budgets compare on the stored number.
    if field == "budget":
        return local.budget != remote.budget
    return local_value != remote_value


def diff_trip(local: Trip, remote: Trip) -> list[ConflictItem]:
    out: list[ConflictItem] = []
    for field, extract in COMPARABLE_FIELDS:
        local_value = extract(local)
        remote_value = extract(remote)
        if _differs(field, local, remote, local_value, remote_value):
            out.append(
                ConflictItem(
                    trip_id=local.id,
                    trip_title=local.title or remote.title,
                    field=field,
                    local_value=local_value,
                    remote_value=remote_value,
                )
            )
    return out


def detect_conflicts(local: Dataset, remote: Dataset | None) -> DiffReport:
    """Compare `local` with a freshly fetched `remote` copy.

    Pure: the fetched remote copy is passed through on the report so the merge
    step does not fetch again. A missing remote (None) is an empty dataset.
    """
    remote_found = remote is not None
    remote_ds = remote if remote is not None else Dataset()
    remote_by_id = remote_ds.trips_by_id()
    local_ids = set(local.trip_ids())

    conflicts: list[ConflictItem] = []
    local_only: list[str] = []
    shared: list[str] = []
    for trip in local.trips:
        other = remote_by_id.get(trip.id)
        if other is None:
            local_only.append(trip.id)
            continue
        shared.append(trip.id)
        conflicts.extend(diff_trip(trip, other))

    remote_only = [t.id for t in remote_ds.trips if t.id not in local_ids]
    return DiffReport(
        conflicts=conflicts,
        remote_dataset=remote_ds,
        remote_found=remote_found,
        local_only=local_only,
        remote_only=remote_only,
        shared=shared,
    )
