from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tripsync.core.config import LAST_SYNC_PATH, SYNC_HISTORY_PATH, load_config, save_config
from tripsync.core.errors import TripSyncError
from tripsync.core.local_state import load_local_dataset, rebase_local_edits, replace_trip, save_local_dataset
from tripsync.core.log_tail import build_log_tail_payload
from tripsync.core.logging_setup import default_log_func
from tripsync.core.run_history import load_latest_sync_summary, read_sync_history, record_sync_summary
from tripsync.core.usage import UsageCounter
from tripsync.domain.migrations import migrate_dataset
from tripsync.domain.models import Dataset
from tripsync.providers import build_store
from tripsync.sync.engine import SyncEngine
from tripsync.sync.outcomes import ConflictsFound, Failed
from tripsync.sync.sync_id import check_sync_id_change, generate_sync_id
from tripsync.versions.history import VersionHistoryManager

router = APIRouter(prefix="/api")

_HTTP_STATUS = {
    "identifier_invalid": 400,
    "resolution_invalid": 400,
    "invalid_dataset": 400,
    "trip_not_found": 404,
    "version_not_found": 404,
    "resolution_not_found": 404,
    "sync_busy": 409,
    "remote_unavailable": 502,
    "write_conflict": 502,
    "supabase_not_configured": 502,
    "remote_dataset_invalid": 502,
}

# Pending resolutions live in the engine, so the engine must outlive a request.
_SERVICES_LOCK = threading.Lock()
_services: dict[str, Any] = {}
# handle -> (local data file to update once the merge lands, local side the
# merge was computed from). A None file means the caller holds the dataset.
_handle_targets: dict[str, tuple[str | None, Dataset]] = {}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _get_services() -> dict[str, Any]:
    with _SERVICES_LOCK:
        if not _services:
            cfg = load_config()
            counter = UsageCounter(cfg.remote.backend)
            store = build_store(cfg, counter=counter, log_func=default_log_func)
            _services.update(
                counter=counter,
                store=store,
                engine=SyncEngine(store, default_log_func, cfg.sync.sync_id_min_length),
                history=VersionHistoryManager(store, cfg.sync.default_version_note, default_log_func),
            )
        return _services


def reset_services() -> None:
    with _SERVICES_LOCK:
        _services.clear()
        _handle_targets.clear()


def _http_error(code: str, detail: str) -> HTTPException:
    return HTTPException(status_code=_HTTP_STATUS.get(code, 500), detail={"code": code, "error": detail})


def _raise_for(error: TripSyncError):
    raise _http_error(error.code, str(error))


def _raise_for_failed(outcome: Failed):
    raise _http_error(outcome.code, outcome.reason)


def _build_readiness_payload() -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "data_parent_ready": False,
        "log_parent_ready": False,
        "remote_configured": False,
    }
    warnings: list[str] = []
    errors: list[str] = []

    cfg = None
    try:
        cfg = load_config()
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        for key, target in (("data_parent_ready", cfg.sync.data_file), ("log_parent_ready", cfg.logging.file)):
            try:
                Path(target).parent.mkdir(parents=True, exist_ok=True)
                checks[key] = True
            except OSError as e:
                errors.append(f"{key.replace('_ready', '')}_unavailable: {e}")

        if cfg.remote.backend == "supabase":
            checks["remote_configured"] = bool(cfg.remote.supabase_url and cfg.remote.supabase_key)
            if not checks["remote_configured"]:
                warnings.append("supabase_not_configured")
        else:
            checks["remote_configured"] = True
        if not cfg.sync.sync_id:
            warnings.append("sync_id_unset")

    ok = checks["config_load"] and checks["data_parent_ready"] and checks["log_parent_ready"]
    return {
        "ok": ok,
        "checked_at": _now_iso(),
        "checks": checks,
        "warnings": warnings,
        "errors": errors,
    }


def _finish_sync(outcome, target: str | None, snapshot: Dataset | None = None) -> dict:
    record_sync_summary(outcome.summary)
    if isinstance(outcome, Failed):
        _raise_for_failed(outcome)
    if target:
        merged = outcome.merged
        if snapshot is not None:
            merged = rebase_local_edits(merged, snapshot, load_local_dataset(target))
        save_local_dataset(target, merged)
    return outcome.model_dump(by_alias=True, mode="json")


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": _now_iso(),
    }


@router.get("/readyz")
def readyz():
    payload = _build_readiness_payload()
    return JSONResponse(status_code=200 if payload["ok"] else 503, content=payload)


@router.get("/config")
def get_config():
    cfg = load_config()
    dumped = cfg.model_dump()
    dumped["remote"]["supabase_key"] = "***" if cfg.remote.supabase_key else ""
    return dumped


@router.get("/sync-id")
def get_sync_id():
    cfg = load_config()
    if not cfg.sync.sync_id:
        cfg.sync.sync_id = generate_sync_id()
        save_config(cfg)
    return {"sync_id": cfg.sync.sync_id, "min_length": cfg.sync.sync_id_min_length}


@router.post("/sync-id")
def set_sync_id(payload: dict):
    """Switch identifiers. An identifier that already has data needs `confirm`."""
    cfg = load_config()
    services = _get_services()
    try:
        check = check_sync_id_change(
            services["store"],
            str(payload.get("sync_id", "")),
            cfg.sync.sync_id,
            cfg.sync.sync_id_min_length,
        )
    except TripSyncError as e:
        _raise_for(e)

    if check.unchanged:
        return {"ok": True, "changed": False, "sync_id": check.sync_id}
    if check.in_use and not payload.get("confirm"):
        return JSONResponse(
            status_code=409,
            content={
                "ok": False,
                "code": "sync_id_in_use",
                "sync_id": check.sync_id,
                "warning": "This ID already has cloud data. Syncing under it will merge into and overwrite that data.",
            },
        )

    cfg.sync.sync_id = check.sync_id
    save_config(cfg)
    return {"ok": True, "changed": True, "sync_id": check.sync_id, "previous": check.current, "in_use": check.in_use}


@router.post("/sync")
def start_sync(payload: dict | None = None):
    """Start a sync. With `dataset` in the body the caller keeps its own local
    state; otherwise the configured data file is read and, on success, replaced."""
    payload = payload or {}
    cfg = load_config()
    services = _get_services()

    sync_id = str(payload.get("sync_id") or cfg.sync.sync_id or "")
    if not sync_id:
        sync_id = generate_sync_id()
        cfg.sync.sync_id = sync_id
        save_config(cfg)

    target: str | None = cfg.sync.data_file
    if "dataset" in payload:
        target = None
        try:
            local = migrate_dataset(payload["dataset"])
        except (ValueError, ValidationError) as e:
            raise _http_error("invalid_dataset", str(e))
    else:
        local = load_local_dataset(cfg.sync.data_file)

    outcome = services["engine"].request_sync(sync_id, local, run_type="manual_web")
    if isinstance(outcome, ConflictsFound):
        record_sync_summary(outcome.summary)
        with _SERVICES_LOCK:
            _handle_targets[outcome.handle] = (target, local)
        return outcome.model_dump(by_alias=True, mode="json")
    return _finish_sync(outcome, target)


@router.get("/sync/{handle}")
def get_pending(handle: str):
    pending = _get_services()["engine"].pending(handle)
    if pending is None:
        raise _http_error("resolution_not_found", handle)
    return {
        "handle": handle,
        "sync_id": pending.sync_id,
        "created_at": pending.created_at,
        "trips": [
            {
                "trip_id": group["trip_id"],
                "trip_title": group["trip_title"],
                "choice": group["choice"],
                "conflicts": [c.to_payload() for c in group["conflicts"]],
            }
            for group in pending.collector.grouped()
        ],
    }


@router.post("/sync/{handle}/resolve")
def resolve_sync(handle: str, payload: dict | None = None):
    """Body: {"resolutions": {trip_id: "local"|"remote"}}. Unlisted trips keep local."""
    payload = payload or {}
    resolutions = payload.get("resolutions") or {}
    if not isinstance(resolutions, dict):
        raise _http_error("resolution_invalid", "resolutions_not_object")

    with _SERVICES_LOCK:
        target, snapshot = _handle_targets.get(handle, (None, None))
    outcome = _get_services()["engine"].resolve_and_merge(handle, resolutions)
    if not (isinstance(outcome, Failed) and outcome.code == "sync_busy"):
        with _SERVICES_LOCK:
            _handle_targets.pop(handle, None)
    return _finish_sync(outcome, target, snapshot)


@router.post("/sync/{handle}/cancel")
def cancel_sync(handle: str):
    with _SERVICES_LOCK:
        _handle_targets.pop(handle, None)
    if not _get_services()["engine"].cancel(handle):
        raise _http_error("resolution_not_found", handle)
    return {"ok": True, "cancelled": handle}


@router.get("/trips/{trip_id}/versions")
def list_trip_versions(trip_id: str):
    try:
        versions = _get_services()["history"].list_versions(trip_id)
    except TripSyncError as e:
        _raise_for(e)
    return {"trip_id": trip_id, "count": len(versions), "items": [v.to_payload() for v in versions]}


@router.post("/trips/{trip_id}/versions")
def save_trip_version(trip_id: str, payload: dict | None = None):
    payload = payload or {}
    cfg = load_config()
    trip = load_local_dataset(cfg.sync.data_file).get_trip(trip_id)
    if trip is None:
        raise _http_error("trip_not_found", trip_id)
    try:
        version = _get_services()["history"].save_version(trip, str(payload.get("note") or ""))
    except TripSyncError as e:
        _raise_for(e)
    return {"ok": True, "version": version.to_payload()}


@router.get("/versions/search")
def search_versions(q: str = ""):
    try:
        versions = _get_services()["history"].find_versions(q)
    except TripSyncError as e:
        _raise_for(e)
    return {"query": q, "count": len(versions), "items": [v.to_payload() for v in versions]}


@router.post("/trips/{trip_id}/restore")
def restore_trip(trip_id: str, payload: dict):
    """Body: {"version_id": ..., "confirm": bool}. Restoring another trip's
    version needs `confirm`."""
    version_id = str(payload.get("version_id") or "")
    try:
        result = _get_services()["history"].restore_by_id(version_id, trip_id)
    except TripSyncError as e:
        _raise_for(e)

    if result.cross_trip and not payload.get("confirm"):
        return JSONResponse(
            status_code=409,
            content={
                "ok": False,
                "code": "cross_trip_restore",
                "source_trip_id": result.source_trip_id,
                "target_trip_id": result.target_trip_id,
                "warning": f"This version is from a different trip. Restoring will overwrite {trip_id} with data from '{result.trip.title}'.",
            },
        )

    cfg = load_config()
    local = load_local_dataset(cfg.sync.data_file)
    save_local_dataset(cfg.sync.data_file, replace_trip(local, result.trip))
    return {
        "ok": True,
        "version_id": result.version_id,
        "trip_id": result.target_trip_id,
        "cross_trip": result.cross_trip,
        "trip": result.trip.to_payload(),
    }


@router.get("/logs")
def get_logs(
    n: int = 200,
    level: str | None = None,
    module: str | None = None,
    contains: str | None = None,
    sync_id: str | None = None,
    trip_id: str | None = None,
):
    cfg = load_config()
    payload = build_log_tail_payload(
        cfg.logging.file,
        n=n,
        level=level,
        module=module,
        contains=contains,
        sync_id=sync_id,
        trip_id=trip_id,
    )
    return payload


@router.get("/history")
def get_history(limit: int = 50):
    limit_sanitized = min(max(_as_int(limit, 50), 1), 500)
    items = read_sync_history(limit=limit_sanitized)
    return {
        "path": str(SYNC_HISTORY_PATH),
        "limit": limit_sanitized,
        "count": len(items),
        "items": items,
    }


@router.get("/status/last-sync")
def last_sync_status():
    summary, source, parse_error = load_latest_sync_summary()
    out: dict[str, Any] = {
        "exists": LAST_SYNC_PATH.exists(),
        "path": str(LAST_SYNC_PATH),
        "summary": summary,
        "summary_source": source,
    }
    if parse_error:
        out["error"] = parse_error
    return out


@router.get("/status/usage")
def usage_status():
    services = _get_services()
    engine = services["engine"]
    return {
        "ok": True,
        "checked_at": _now_iso(),
        "usage": services["counter"].snapshot(),
        "pending_resolutions": len(engine.pending_handles()),
    }
