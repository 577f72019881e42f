"""Per-trip snapshots: save, list, search and restore.

Independent of the sync flow; appends go straight to the backup store and do
not take the sync in-flight guard.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel

from tripsync.core.errors import IdentifierInvalid, VersionNotFound
from tripsync.core.logging_setup import default_log_func
from tripsync.domain.models import Trip, TripVersion
from tripsync.providers.base import BackupStore

DEFAULT_VERSION_NOTE = "Auto-save"


class RestoreResult(BaseModel):
    trip: Trip
    version_id: str
    source_trip_id: str
    target_trip_id: str
    # The snapshot belongs to another trip; the caller must warn before
    # overwriting the target with it.
    cross_trip: bool


def _newest_first(versions: list[TripVersion]) -> list[TripVersion]:
    return sorted(versions, key=lambda v: v.timestamp, reverse=True)


class VersionHistoryManager:
    def __init__(self, store: BackupStore, default_note: str = DEFAULT_VERSION_NOTE, log_func=default_log_func, clock=None):
        self.store = store
        self.default_note = default_note or DEFAULT_VERSION_NOTE
        self.log_func = log_func
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _log(self, level: str, message: str, detail: dict):
        self.log_func(level, "versions", message, json.dumps(detail, ensure_ascii=False))

    def save_version(self, trip: Trip, note: str = "") -> TripVersion:
        version = TripVersion(
            id=uuid.uuid4().hex,
            trip_id=trip.id,
            trip_title=trip.title,
            timestamp=self._clock(),
            note=(note or "").strip() or self.default_note,
            data=trip.model_copy(deep=True),
        )
        self.store.append_version(trip.id, version)
        self._log("INFO", "version_saved", {"id": version.id, "trip_id": trip.id, "note": version.note})
        return version

    def list_versions(self, trip_id: str) -> list[TripVersion]:
        return _newest_first(self.store.list_versions(trip_id))

    def find_versions(self, query: str) -> list[TripVersion]:
        """Search every trip's versions by note, trip title or trip id."""
        needle = (query or "").strip()
        if not needle:
            return []
        return _newest_first(self.store.search_versions(needle))

    def get_version(self, version_id: str) -> TripVersion:
        version = self.store.get_version(version_id) if version_id else None
        if version is None:
            raise VersionNotFound(version_id or "(empty)")
        return version

    def restore(self, version: TripVersion, target_trip_id: str) -> RestoreResult:
        if not isinstance(version, TripVersion):
            raise VersionNotFound("version_malformed")
        target = (target_trip_id or "").strip()
        if not target:
            raise IdentifierInvalid("restore_target_missing")

        restored = version.data.model_copy(deep=True, update={"id": target})
        result = RestoreResult(
            trip=restored,
            version_id=version.id,
            source_trip_id=version.data.id,
            target_trip_id=target,
            cross_trip=version.data.id != target,
        )
        self._log(
            "WARNING" if result.cross_trip else "INFO",
            "version_restored",
            {"version_id": version.id, "source_trip_id": version.data.id, "target_trip_id": target},
        )
        return result

    def restore_by_id(self, version_id: str, target_trip_id: str) -> RestoreResult:
        return self.restore(self.get_version(version_id), target_trip_id)
