from __future__ import annotations

from tripsync.core.logging_setup import default_log_func
from tripsync.domain.models import CURRENT_SCHEMA_VERSION, Dataset, Resolution, ResolutionMap
from tripsync.providers.base import BackupStore


def merge_datasets(local: Dataset, remote: Dataset, resolutions: ResolutionMap | None = None) -> Dataset:
    """Union of both trip sets; shared trips follow `resolutions`, default local.

    Profile and loose events are always taken from `local`.
    """
    resolutions = resolutions or {}
    remote_by_id = remote.trips_by_id()
    local_ids = set(local.trip_ids())

    trips = []
    for trip in local.trips:
        remote_trip = remote_by_id.get(trip.id)
        side = Resolution(resolutions.get(trip.id, Resolution.LOCAL))
        chosen = remote_trip if remote_trip is not None and side is Resolution.REMOTE else trip
        trips.append(chosen.model_copy(deep=True))
    for trip in remote.trips:
        if trip.id not in local_ids:
            trips.append(trip.model_copy(deep=True))

    return Dataset(
        schema_version=CURRENT_SCHEMA_VERSION,
        trips=trips,
        profile=local.profile.model_copy(deep=True),
        events=[e.model_copy(deep=True) for e in local.events],
    )


class MergeEngine:
    def __init__(self, store: BackupStore, log_func=default_log_func):
        self.store = store
        self.log_func = log_func

    def merge(self, local: Dataset, remote: Dataset, resolutions: ResolutionMap | None = None) -> Dataset:
        return merge_datasets(local, remote, resolutions)

    def commit(self, sync_id: str, merged: Dataset) -> Dataset:
        """Write `merged` and hand back the very same value; no read-back."""
        self.store.write(sync_id, merged)
        self.log_func("INFO", "sync", "merged_dataset_written", f"sync_id={sync_id} trips={len(merged.trips)}")
        return merged
