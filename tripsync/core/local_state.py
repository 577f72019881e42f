from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from tripsync.domain.migrations import migrate_dataset
from tripsync.domain.models import Dataset, Trip


def load_local_dataset(path: str) -> Dataset:
    p = Path(path)
    if not p.exists():
        return Dataset()
    raw = json.loads(p.read_text(encoding="utf-8") or "null")
    return migrate_dataset(raw)


def save_local_dataset(path: str, dataset: Dataset) -> None:
    """Write via a temp file in the same directory, then replace."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{p.name}.", dir=str(p.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            json.dump(dataset.to_payload(), fp, ensure_ascii=False, indent=2)
        os.replace(tmp_path, p)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def replace_trip(dataset: Dataset, trip: Trip) -> Dataset:
    """Return a copy of `dataset` with `trip` in its slot (appended if new)."""
    trips = [t.model_copy(deep=True) for t in dataset.trips]
    for index, existing in enumerate(trips):
        if existing.id == trip.id:
            trips[index] = trip.model_copy(deep=True)
            break
    else:
        trips.append(trip.model_copy(deep=True))
    return dataset.model_copy(update={"trips": trips})


def rebase_local_edits(merged: Dataset, snapshot: Dataset, current: Dataset) -> Dataset:
    """Lay a merge result over the data file as it is now.

    `snapshot` is the local side the merge was computed from. Trips edited in
    `current` since then keep the newer local copy, and trips added since then
    are kept. Profile and events come from `current`.
    """
    before = snapshot.trips_by_id()
    now = current.trips_by_id()
    trips: list[Trip] = []
    for trip in merged.trips:
        latest = now.get(trip.id)
        original = before.get(trip.id)
        if latest is not None and original is not None and latest != original:
            trips.append(latest.model_copy(deep=True))
        else:
            trips.append(trip.model_copy(deep=True))
    merged_ids = set(merged.trip_ids())
    trips.extend(t.model_copy(deep=True) for t in current.trips if t.id not in merged_ids)
    return current.model_copy(update={"trips": trips}, deep=True)
