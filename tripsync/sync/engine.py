"""Caller-facing sync flow: fetch, diff, (human resolution), merge, write.

Local state is never touched here. The caller replaces its local dataset only
with the `merged` value carried by a `NoConflicts` or `Merged` outcome, which is
exactly the value that was written to the backup store.
"""

from __future__ import annotations

import json
import secrets
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from tripsync.core.errors import ResolutionNotFound, SyncInProgress, TripSyncError
from tripsync.core.logging_setup import default_log_func
from tripsync.domain.models import Dataset, Resolution
from tripsync.providers.base import BackupStore
from tripsync.sync.differ import DiffReport, detect_conflicts
from tripsync.sync.merge import MergeEngine
from tripsync.sync.outcomes import ConflictsFound, Failed, Merged, MergeOutcome, NoConflicts, SyncOutcome
from tripsync.sync.resolution import ResolutionCollector
from tripsync.sync.sync_id import DEFAULT_MIN_LENGTH, validate_sync_id


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class PendingResolution:
    """A sync paused at the human resolution step."""

    def __init__(self, handle: str, sync_id: str, local: Dataset, report: DiffReport, summary: dict):
        self.handle = handle
        self.sync_id = sync_id
        self.local = local
        self.report = report
        self.collector = ResolutionCollector(report.conflicts)
        self.summary = summary
        self.created_at = now_iso()


class SyncEngine:
    def __init__(self, store: BackupStore, log_func=default_log_func, min_sync_id_length: int = DEFAULT_MIN_LENGTH):
        self.store = store
        self.log_func = log_func
        self.min_sync_id_length = min_sync_id_length
        self.merger = MergeEngine(store, log_func)

        self._lock = threading.Lock()
        self._inflight: set[str] = set()
        self._pending: dict[str, PendingResolution] = {}

    def _log(self, level: str, message: str, detail: dict | None = None):
        self.log_func(level, "sync", message, json.dumps(detail, ensure_ascii=False) if detail else None)

    @contextmanager
    def _in_flight(self, sync_id: str):
        # Held only around store I/O; a paused resolution does not block.
        with self._lock:
            if sync_id in self._inflight:
                raise SyncInProgress(sync_id)
            self._inflight.add(sync_id)
        try:
            yield
        finally:
            with self._lock:
                self._inflight.discard(sync_id)

    def is_busy(self, sync_id: str) -> bool:
        with self._lock:
            return sync_id in self._inflight

    def pending(self, handle: str) -> PendingResolution | None:
        with self._lock:
            return self._pending.get(handle)

    def pending_handles(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def _drop_pending_for(self, sync_id: str) -> None:
        with self._lock:
            stale = [h for h, p in self._pending.items() if p.sync_id == sync_id]
            for handle in stale:
                self._pending.pop(handle, None)
        for handle in stale:
            self._log("INFO", "pending_resolution_superseded", {"handle": handle, "sync_id": sync_id})

    def _new_summary(self, run_type: str, sync_id: str) -> dict:
        return {
            "run_type": run_type,
            "sync_id": sync_id,
            "status": "running",
            "started_at": now_iso(),
            "finished_at": None,
            "remote_found": None,
            "local_total": 0,
            "remote_total": 0,
            "merged_total": 0,
            "local_only": 0,
            "remote_only": 0,
            "shared": 0,
            "conflicts": 0,
            "conflicting_trips": 0,
            "resolved_local": 0,
            "resolved_remote": 0,
            "errors": 0,
        }

    def _failed(self, summary: dict, error: Exception) -> Failed:
        code = getattr(error, "code", "sync_failed")
        summary.update(status="failed", finished_at=now_iso(), errors=int(summary.get("errors", 0)) + 1)
        summary["error_code"] = code
        summary["fatal_error"] = str(error)
        self._log("ERROR", "sync_failed", summary)
        return Failed(code=code, reason=str(error), summary=summary)

    def request_sync(self, sync_id: str, local: Dataset, run_type: str = "manual") -> SyncOutcome:
        summary = self._new_summary(run_type, sync_id)
        try:
            sync_id = validate_sync_id(sync_id, self.min_sync_id_length)
        except TripSyncError as e:
            return self._failed(summary, e)
        summary["sync_id"] = sync_id

        # Snapshot the caller's dataset: edits made while we wait on the store
        # belong to the next sync.
        local_snapshot = local.model_copy(deep=True)
        try:
            with self._in_flight(sync_id):
                self._drop_pending_for(sync_id)
                remote = self.store.fetch(sync_id)
                report = detect_conflicts(local_snapshot, remote)
                summary.update(
                    remote_found=report.remote_found,
                    local_total=len(local_snapshot.trips),
                    remote_total=len(report.remote_dataset.trips),
                    local_only=len(report.local_only),
                    remote_only=len(report.remote_only),
                    shared=len(report.shared),
                    conflicts=len(report.conflicts),
                    conflicting_trips=len(report.conflicting_trip_ids()),
                )

                if report.conflicts:
                    handle = secrets.token_hex(8)
                    summary["status"] = "conflicts_found"
                    summary["handle"] = handle
                    with self._lock:
                        self._pending[handle] = PendingResolution(handle, sync_id, local_snapshot, report, summary)
                    self._log("INFO", "sync_conflicts_found", {"sync_id": sync_id, "handle": handle, "trips": report.conflicting_trip_ids()})
                    return ConflictsFound(handle=handle, conflicts=report.conflicts, summary=dict(summary))

                merged = self.merger.merge(local_snapshot, report.remote_dataset, {})
                self.merger.commit(sync_id, merged)
        except TripSyncError as e:
            return self._failed(summary, e)
        except Exception as e:
            self.log_func("ERROR", "sync", "sync_unexpected_error", repr(e))
            return self._failed(summary, e)

        summary.update(status="success", finished_at=now_iso(), merged_total=len(merged.trips))
        self._log("INFO", "sync_success", summary)
        return NoConflicts(merged=merged, summary=summary)

    def resolve_and_merge(self, handle: str, resolution_map: dict[str, Resolution | str] | None = None) -> MergeOutcome:
        pending = self.pending(handle)
        if pending is None:
            summary = self._new_summary("resolution", "")
            return self._failed(summary, ResolutionNotFound(handle))

        summary = dict(pending.summary)
        summary["run_type"] = f"{summary.get('run_type', 'manual')}_resolved"
        try:
            with self._in_flight(pending.sync_id):
                try:
                    ignored = pending.collector.apply(resolution_map or {})
                except ValueError as e:
                    raise TripSyncError(str(e), code="resolution_invalid") from e
                if ignored:
                    self._log("WARNING", "resolution_ignored_unknown_trips", {"handle": handle, "trip_ids": ignored})
                choices = pending.collector.resolution_map()
                merged = self.merger.merge(pending.local, pending.report.remote_dataset, choices)
                try:
                    self.merger.commit(pending.sync_id, merged)
                finally:
                    # A failed write invalidates the fetched remote copy; the
                    # next attempt starts again from fetch.
                    with self._lock:
                        self._pending.pop(handle, None)
        except TripSyncError as e:
            return self._failed(summary, e)
        except Exception as e:
            self.log_func("ERROR", "sync", "sync_unexpected_error", repr(e))
            return self._failed(summary, e)

        summary.update(
            status="success",
            finished_at=now_iso(),
            merged_total=len(merged.trips),
            resolved_local=sum(1 for side in choices.values() if side is Resolution.LOCAL),
            resolved_remote=sum(1 for side in choices.values() if side is Resolution.REMOTE),
        )
        summary.pop("handle", None)
        self._log("INFO", "sync_success", summary)
        return Merged(merged=merged, summary=summary)

    def cancel(self, handle: str) -> bool:
        """Discard a paused sync. Nothing local or remote changes."""
        with self._lock:
            pending = self._pending.pop(handle, None)
        if pending is None:
            return False
        self._log("INFO", "sync_cancelled", {"handle": handle, "sync_id": pending.sync_id})
        return True
