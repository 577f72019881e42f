from __future__ import annotations


class TripSyncError(RuntimeError):
    """Base error. `code` is a stable snake_case key shown to callers."""

    code = "tripsync_error"

    def __init__(self, detail: str = "", *, code: str | None = None):
        if code:
            self.code = code
        self.detail = detail
        super().__init__(f"{self.code}: {detail}" if detail else self.code)


class RemoteUnavailable(TripSyncError):
    code = "remote_unavailable"


class WriteConflict(RemoteUnavailable):
    # The store rejected a stale write. Handled exactly like RemoteUnavailable:
    # the user re-runs the whole sync from fetch.
    code = "write_conflict"


class IdentifierInvalid(TripSyncError):
    code = "identifier_invalid"


class VersionNotFound(TripSyncError):
    code = "version_not_found"


class SyncInProgress(TripSyncError):
    code = "sync_busy"


class ResolutionNotFound(TripSyncError):
    code = "resolution_not_found"
