from datetime import datetime, timezone

import pytest
import requests

from tripsync.core.errors import RemoteUnavailable, WriteConflict
from tripsync.core.usage import UsageCounter
from tripsync.domain.models import Dataset, Trip, TripVersion
from tripsync.providers import supabase_store
from tripsync.providers.supabase_store import SupabaseStore


class _FakeResponse:
    def __init__(self, status_code: int = 200, body=None, text: str = ""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _Recorder:
    def __init__(self, response: _FakeResponse | Exception):
        self.response = response
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _store(counter: UsageCounter | None = None) -> SupabaseStore:
    return SupabaseStore("https://demo.supabase.co/", "anon-key", timeout=5, counter=counter, log_func=lambda *_: None)


def test_fetch_reads_backup_row(monkeypatch):
    get = _Recorder(_FakeResponse(body=[{"data": {"trips": [{"id": "A", "budget": "12"}]}}]))
    monkeypatch.setattr(supabase_store.requests, "get", get)

    ds = _store().fetch("MINE")

    assert ds.trips[0].budget == 12.0
    url, kwargs = get.calls[0]
    assert url == "https://demo.supabase.co/rest/v1/backups"
    assert kwargs["params"] == {"sync_id": "eq.MINE", "select": "data"}
    assert kwargs["headers"]["apikey"] == "anon-key"
    assert kwargs["timeout"] == 5


def test_fetch_without_row_returns_none(monkeypatch):
    monkeypatch.setattr(supabase_store.requests, "get", _Recorder(_FakeResponse(body=[])))
    assert _store().fetch("MINE") is None


def test_network_error_is_remote_unavailable(monkeypatch):
    monkeypatch.setattr(supabase_store.requests, "get", _Recorder(requests.ConnectionError("offline")))
    with pytest.raises(RemoteUnavailable, match="fetch_failed"):
        _store().fetch("MINE")


def test_error_status_is_remote_unavailable(monkeypatch):
    monkeypatch.setattr(supabase_store.requests, "get", _Recorder(_FakeResponse(status_code=500, text="boom")))
    with pytest.raises(RemoteUnavailable, match="fetch_failed_status_500"):
        _store().fetch("MINE")


def test_unconfigured_store_fails_without_request(monkeypatch):
    get = _Recorder(_FakeResponse(body=[]))
    monkeypatch.setattr(supabase_store.requests, "get", get)
    store = SupabaseStore("", "", log_func=lambda *_: None)
    with pytest.raises(RemoteUnavailable, match="supabase_not_configured"):
        store.fetch("MINE")
    assert get.calls == []


def test_write_upserts_blob(monkeypatch):
    post = _Recorder(_FakeResponse(status_code=201))
    monkeypatch.setattr(supabase_store.requests, "post", post)
    counter = UsageCounter("supabase")

    _store(counter).write("MINE", Dataset(trips=[Trip(id="A")]))

    url, kwargs = post.calls[0]
    assert url.endswith("/rest/v1/backups")
    assert kwargs["params"] == {"on_conflict": "sync_id"}
    assert kwargs["headers"]["Prefer"] == "resolution=merge-duplicates,return=minimal"
    assert kwargs["json"]["sync_id"] == "MINE"
    assert kwargs["json"]["data"]["trips"][0]["id"] == "A"
    assert counter.get("write") == 1


def test_write_conflict_status(monkeypatch):
    monkeypatch.setattr(supabase_store.requests, "post", _Recorder(_FakeResponse(status_code=409, text="stale")))
    with pytest.raises(WriteConflict):
        _store().write("MINE", Dataset())


def test_append_version_payload(monkeypatch):
    post = _Recorder(_FakeResponse(status_code=201))
    monkeypatch.setattr(supabase_store.requests, "post", post)
    version = TripVersion(
        id="v1",
        trip_id="T1",
        trip_title="Rome",
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
        note="Auto-save",
        data=Trip(id="T1", title="Rome"),
    )

    _store().append_version("T1", version)

    url, kwargs = post.calls[0]
    assert url.endswith("/rest/v1/trip_versions")
    assert kwargs["json"]["id"] == "v1"
    assert kwargs["json"]["created_at"] == "2026-01-01T00:00:00+00:00"
    assert kwargs["json"]["data"]["title"] == "Rome"


def test_search_versions_builds_or_filter_and_skips_bad_rows(monkeypatch):
    rows = [
        {"id": "v2", "trip_id": "T1", "trip_title": "Rome", "note": "flights", "created_at": "2026-01-02T00:00:00+00:00", "data": {"id": "T1"}},
        {"id": "v1", "trip_id": "T1", "trip_title": "Rome", "note": "flights", "created_at": "2026-01-01T00:00:00+00:00", "data": None},
    ]
    get = _Recorder(_FakeResponse(body=rows))
    monkeypatch.setattr(supabase_store.requests, "get", get)

    found = _store().search_versions("fli,ghts()")

    assert [v.id for v in found] == ["v2"]
    params = get.calls[0][1]["params"]
    assert params["or"] == "(note.ilike.*fli ghts*,trip_title.ilike.*fli ghts*,trip_id.ilike.*fli ghts*)"
    assert params["order"] == "created_at.desc"


def test_search_versions_matches_like_wildcards_literally(monkeypatch):
    get = _Recorder(_FakeResponse(body=[]))
    monkeypatch.setattr(supabase_store.requests, "get", get)

    assert _store().search_versions("100%_off") == []

    params = get.calls[0][1]["params"]
    assert params["or"].startswith("(note.ilike.*100\\%\\_off*,")


def test_get_version_missing(monkeypatch):
    monkeypatch.setattr(supabase_store.requests, "get", _Recorder(_FakeResponse(body=[])))
    assert _store().get_version("nope") is None
