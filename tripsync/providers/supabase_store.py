from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any

import requests
from pydantic import ValidationError

from tripsync.core.errors import RemoteUnavailable, WriteConflict
from tripsync.core.logging_setup import default_log_func
from tripsync.core.usage import UsageCounter
from tripsync.domain.migrations import migrate_dataset, parse_trip
from tripsync.domain.models import Dataset, TripVersion

BACKUPS_TABLE = "backups"
VERSIONS_TABLE = "trip_versions"

# Characters with meaning inside a PostgREST `or=(...)` filter.
_FILTER_UNSAFE_RE = re.compile(r"[,()*\"\\]")


def _ilike_needle(query: str) -> str:
    # LIKE wildcards match literally, as in the sqlite store.
    needle = _FILTER_UNSAFE_RE.sub(" ", query or "").strip()
    return needle.replace("%", "\\%").replace("_", "\\_")


class SupabaseStore:
    """Backup store on Supabase tables through the PostgREST HTTP API.

    Tables:
      backups(sync_id text primary key, data jsonb, updated_at timestamptz)
      trip_versions(id text primary key, trip_id text, trip_title text,
                    note text, created_at timestamptz, data jsonb)
    """

    def __init__(
        self,
        url: str,
        key: str,
        timeout: int = 30,
        counter: UsageCounter | None = None,
        log_func=default_log_func,
    ):
        self.url = (url or "").rstrip("/")
        self.key = key or ""
        self.timeout = timeout
        self.counter = counter or UsageCounter("supabase")
        self.log_func = log_func

    @property
    def base(self) -> str:
        return f"{self.url}/rest/v1"

    def _log(self, level: str, message: str, detail: str | None = None):
        self.log_func(level, "store", message, detail)

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        if not self.url or not self.key:
            raise RemoteUnavailable("supabase_not_configured")
        headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _call(self, op: str, func, url: str, **kwargs) -> requests.Response:
        self.counter.incr(op)
        try:
            res = func(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RemoteUnavailable(f"{op}_failed: {e}") from e
        if res.status_code == 409:
            raise WriteConflict(f"{op}_rejected: {(res.text or '')[:200]}")
        if res.status_code >= 400:
            raise RemoteUnavailable(f"{op}_failed_status_{res.status_code}: {(res.text or '')[:200]}")
        return res

    def _rows(self, op: str, res: requests.Response) -> list[dict[str, Any]]:
        try:
            body = res.json()
        except ValueError as e:
            raise RemoteUnavailable(f"{op}_invalid_response") from e
        if not isinstance(body, list):
            raise RemoteUnavailable(f"{op}_invalid_response")
        return [row for row in body if isinstance(row, dict)]

    def _row_to_version(self, row: dict[str, Any]) -> TripVersion | None:
        try:
            return TripVersion(
                id=str(row.get("id") or ""),
                trip_id=str(row.get("trip_id") or ""),
                trip_title=row.get("trip_title") or "",
                timestamp=row.get("created_at"),
                note=row.get("note") or "",
                data=parse_trip(row.get("data")),
            )
        except (ValueError, ValidationError) as e:
            self._log("WARNING", "version_row_skipped", json.dumps({"id": row.get("id"), "error": str(e)}, ensure_ascii=False))
            return None

    def _versions(self, rows: list[dict[str, Any]]) -> list[TripVersion]:
        out = []
        for row in rows:
            version = self._row_to_version(row)
            if version is not None:
                out.append(version)
        return out

    def fetch(self, sync_id: str) -> Dataset | None:
        res = self._call(
            "fetch",
            requests.get,
            f"{self.base}/{BACKUPS_TABLE}",
            params={"sync_id": f"eq.{sync_id}", "select": "data"},
            headers=self._headers(),
        )
        rows = self._rows("fetch", res)
        if not rows:
            return None
        try:
            return migrate_dataset(rows[0].get("data"))
        except (ValueError, ValidationError) as e:
            raise RemoteUnavailable(f"remote_dataset_invalid: {e}") from e

    def write(self, sync_id: str, dataset: Dataset) -> None:
        self._call(
            "write",
            requests.post,
            f"{self.base}/{BACKUPS_TABLE}",
            params={"on_conflict": "sync_id"},
            json={
                "sync_id": sync_id,
                "data": dataset.to_payload(),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            headers=self._headers(prefer="resolution=merge-duplicates,return=minimal"),
        )

    def append_version(self, trip_id: str, version: TripVersion) -> None:
        self._call(
            "append_version",
            requests.post,
            f"{self.base}/{VERSIONS_TABLE}",
            json={
                "id": version.id,
                "trip_id": trip_id,
                "trip_title": version.trip_title,
                "note": version.note,
                "created_at": version.timestamp.astimezone(timezone.utc).isoformat(),
                "data": version.data.to_payload(),
            },
            headers=self._headers(prefer="return=minimal"),
        )

    def list_versions(self, trip_id: str) -> list[TripVersion]:
        res = self._call(
            "list_versions",
            requests.get,
            f"{self.base}/{VERSIONS_TABLE}",
            params={"trip_id": f"eq.{trip_id}", "select": "*", "order": "created_at.desc"},
            headers=self._headers(),
        )
        return self._versions(self._rows("list_versions", res))

    def search_versions(self, query: str) -> list[TripVersion]:
        needle = _ilike_needle(query)
        if not needle:
            return []
        pattern = f"*{needle}*"
        res = self._call(
            "search_versions",
            requests.get,
            f"{self.base}/{VERSIONS_TABLE}",
            params={
                "or": f"(note.ilike.{pattern},trip_title.ilike.{pattern},trip_id.ilike.{pattern})",
                "select": "*",
                "order": "created_at.desc",
                "limit": "200",
            },
            headers=self._headers(),
        )
        return self._versions(self._rows("search_versions", res))

    def get_version(self, version_id: str) -> TripVersion | None:
        res = self._call(
            "get_version",
            requests.get,
            f"{self.base}/{VERSIONS_TABLE}",
            params={"id": f"eq.{version_id}", "select": "*"},
            headers=self._headers(),
        )
        rows = self._rows("get_version", res)
        if not rows:
            return None
        return self._row_to_version(rows[0])

    def summary(self) -> dict:
        return {"backend": "supabase", "url": self.url, "key_configured": bool(self.key)}
