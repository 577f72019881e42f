from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from datetime import timezone

from pydantic import ValidationError

from tripsync.core.errors import RemoteUnavailable
from tripsync.core.logging_setup import default_log_func
from tripsync.core.usage import UsageCounter
from tripsync.domain.migrations import migrate_dataset, parse_trip
from tripsync.domain.models import Dataset, TripVersion

from .db import get_conn, init_db


def _like_pattern(query: str) -> str:
    escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SqliteStore:
    """Backup store on a sqlite3 file. Same contract as the hosted store."""

    def __init__(self, db_path: str, counter: UsageCounter | None = None, log_func=default_log_func):
        self.db_path = db_path
        self.counter = counter or UsageCounter("sqlite")
        self.log_func = log_func
        init_db(db_path)

    def _log(self, level: str, message: str, detail: str | None = None):
        self.log_func(level, "store", message, detail)

    def _db(self):
        return get_conn(self.db_path)

    def _row_to_version(self, row) -> TripVersion | None:
        try:
            return TripVersion(
                id=row["id"],
                trip_id=row["trip_id"],
                trip_title=row["trip_title"] or "",
                timestamp=row["created_at"],
                note=row["note"] or "",
                data=parse_trip(json.loads(row["data"])),
            )
        except (ValueError, ValidationError) as e:
            self._log("WARNING", "version_row_skipped", json.dumps({"id": row["id"], "error": str(e)}, ensure_ascii=False))
            return None

    def _versions(self, rows) -> list[TripVersion]:
        out = []
        for row in rows:
            version = self._row_to_version(row)
            if version is not None:
                out.append(version)
        return out

    def fetch(self, sync_id: str) -> Dataset | None:
        self.counter.incr("fetch")
        try:
            with closing(self._db()) as conn:
                row = conn.execute("SELECT data FROM backups WHERE sync_id=?", (sync_id,)).fetchone()
        except sqlite3.Error as e:
            raise RemoteUnavailable(f"fetch_failed: {e}") from e
        if not row:
            return None
        try:
            return migrate_dataset(json.loads(row["data"]))
        except (ValueError, ValidationError) as e:
            raise RemoteUnavailable(f"remote_dataset_invalid: {e}") from e

    def write(self, sync_id: str, dataset: Dataset) -> None:
        self.counter.incr("write")
        payload = json.dumps(dataset.to_payload(), ensure_ascii=False)
        try:
            with closing(self._db()) as conn:
                conn.execute(
                    """
                    INSERT INTO backups(sync_id, data, revision, updated_at) VALUES (?, ?, 1, CURRENT_TIMESTAMP)
                    ON CONFLICT(sync_id) DO UPDATE
                       SET data=excluded.data, revision=backups.revision + 1, updated_at=CURRENT_TIMESTAMP
                    """,
                    (sync_id, payload),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise RemoteUnavailable(f"write_failed: {e}") from e

    def append_version(self, trip_id: str, version: TripVersion) -> None:
        self.counter.incr("append_version")
        created_at = version.timestamp.astimezone(timezone.utc).isoformat()
        try:
            with closing(self._db()) as conn:
                conn.execute(
                    "INSERT INTO trip_versions(id, trip_id, trip_title, note, created_at, data) VALUES (?,?,?,?,?,?)",
                    (
                        version.id,
                        trip_id,
                        version.trip_title,
                        version.note,
                        created_at,
                        json.dumps(version.data.to_payload(), ensure_ascii=False),
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise RemoteUnavailable(f"append_version_failed: {e}") from e

    def list_versions(self, trip_id: str) -> list[TripVersion]:
        self.counter.incr("list_versions")
        try:
            with closing(self._db()) as conn:
                rows = conn.execute(
                    "SELECT * FROM trip_versions WHERE trip_id=? ORDER BY created_at DESC",
                    (trip_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise RemoteUnavailable(f"list_versions_failed: {e}") from e
        return self._versions(rows)

    def search_versions(self, query: str) -> list[TripVersion]:
        self.counter.incr("search_versions")
        pattern = _like_pattern(query)
        try:
            with closing(self._db()) as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM trip_versions
                     WHERE lower(note) LIKE ? ESCAPE '\\'
                        OR lower(trip_title) LIKE ? ESCAPE '\\'
                        OR lower(trip_id) LIKE ? ESCAPE '\\'
                     ORDER BY created_at DESC
                     LIMIT 200
                    """,
                    (pattern, pattern, pattern),
                ).fetchall()
        except sqlite3.Error as e:
            raise RemoteUnavailable(f"search_versions_failed: {e}") from e
        return self._versions(rows)

    def get_version(self, version_id: str) -> TripVersion | None:
        self.counter.incr("get_version")
        try:
            with closing(self._db()) as conn:
                row = conn.execute("SELECT * FROM trip_versions WHERE id=?", (version_id,)).fetchone()
        except sqlite3.Error as e:
            raise RemoteUnavailable(f"get_version_failed: {e}") from e
        if not row:
            return None
        return self._row_to_version(row)

    def summary(self) -> dict:
        with closing(self._db()) as conn:
            backups = conn.execute("SELECT COUNT(1) FROM backups").fetchone()[0]
            versions = conn.execute("SELECT COUNT(1) FROM trip_versions").fetchone()[0]
        return {"backend": "sqlite", "path": self.db_path, "backups": backups, "trip_versions": versions}
