"""Remote backup store contract.

Consistency model
-----------------
* One JSON blob per sync identifier. `write` replaces the whole blob: the last
  writer wins. There is no distributed lock; two devices syncing at the same
  moment can overwrite each other's blob. This is accepted, not handled.
* A store that can detect a stale write raises `WriteConflict`; callers treat
  it as `RemoteUnavailable` and re-run the sync from `fetch`.
* Trip versions are an append-only list keyed by trip id. Appends are
  independent of blob writes and need no mutual exclusion with a sync.
* Any transport/backend failure raises `RemoteUnavailable`. Stores never retry.
"""

from __future__ import annotations

from typing import Protocol

from tripsync.domain.models import Dataset, TripVersion


class BackupStore(Protocol):
    def fetch(self, sync_id: str) -> Dataset | None:
        """Return the stored dataset, or None when nothing is stored under `sync_id`."""
        ...

    def write(self, sync_id: str, dataset: Dataset) -> None:
        """Replace the blob stored under `sync_id` (last writer wins)."""
        ...

    def append_version(self, trip_id: str, version: TripVersion) -> None:
        ...

    def list_versions(self, trip_id: str) -> list[TripVersion]:
        ...

    def search_versions(self, query: str) -> list[TripVersion]:
        ...

    def get_version(self, version_id: str) -> TripVersion | None:
        ...
