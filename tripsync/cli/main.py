from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from tripsync.core.config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    load_config,
    save_config,
)
from tripsync.core.errors import TripSyncError
from tripsync.core.local_state import load_local_dataset, rebase_local_edits, replace_trip, save_local_dataset
from tripsync.core.log_tail import build_log_tail_payload
from tripsync.core.logging_setup import default_log_func
from tripsync.core.run_history import load_latest_sync_summary, read_sync_history, record_sync_summary
from tripsync.core.usage import UsageCounter
from tripsync.domain.migrations import migrate_dataset
from tripsync.domain.models import Resolution, TripVersion
from tripsync.providers import build_store
from tripsync.sync.engine import SyncEngine
from tripsync.sync.outcomes import ConflictsFound, Failed
from tripsync.sync.resolution import ResolutionCollector
from tripsync.sync.sync_id import check_sync_id_change, generate_sync_id, validate_sync_id
from tripsync.versions.history import VersionHistoryManager

app = typer.Typer(add_completion=False)
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _fail(error: Exception, code: str | None = None) -> None:
    _print_json({"ok": False, "code": code or getattr(error, "code", "error"), "error": str(error)})
    raise typer.Exit(2)


def _build_services():
    cfg = load_config()
    store = build_store(cfg, counter=UsageCounter(cfg.remote.backend), log_func=default_log_func)
    engine = SyncEngine(store, default_log_func, cfg.sync.sync_id_min_length)
    history = VersionHistoryManager(store, cfg.sync.default_version_note, default_log_func)
    return cfg, store, engine, history


def _ensure_sync_id(cfg: AppConfig) -> str:
    if not cfg.sync.sync_id:
        cfg.sync.sync_id = generate_sync_id()
        save_config(cfg)
    return cfg.sync.sync_id


def _render_conflicts(collector: ResolutionCollector) -> None:
    for group in collector.grouped():
        table = Table(title=f"{group['trip_title'] or group['trip_id']} ({len(group['conflicts'])} conflicts)")
        table.add_column("Field")
        table.add_column("Yours")
        table.add_column("Cloud")
        for c in group["conflicts"]:
            table.add_row(c.field, c.local_value, c.remote_value)
        console.print(table)


def _prompt_resolutions(collector: ResolutionCollector) -> dict[str, Resolution] | None:
    """Ask keep-local / use-remote per trip. None means the user cancelled."""
    for group in collector.grouped():
        label = group["trip_title"] or group["trip_id"]
        while True:
            answer = typer.prompt(f"{label}: keep [l]ocal, use [r]emote, or [c]ancel sync", default="l").strip().lower()
            if answer in ("l", "local"):
                collector.choose(group["trip_id"], Resolution.LOCAL)
                break
            if answer in ("r", "remote"):
                collector.choose(group["trip_id"], Resolution.REMOTE)
                break
            if answer in ("c", "cancel"):
                return None
    return collector.resolution_map()


def _versions_table(title: str, versions: list[TripVersion]) -> Table:
    table = Table(title=title)
    table.add_column("Version")
    table.add_column("Saved at")
    table.add_column("Trip")
    table.add_column("Title")
    table.add_column("Note")
    for v in versions:
        table.add_row(v.id, v.timestamp.isoformat(timespec="seconds"), v.trip_id, v.trip_title, v.note)
    return table


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml."""
    cfg = load_config(path)
    dumped = cfg.model_dump()
    if dumped["remote"].get("supabase_key"):
        dumped["remote"]["supabase_key"] = "***"
    _print_json(dumped)


@app.command("config-validate")
def config_validate(
    path: Path = DEFAULT_CONFIG_PATH,
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and runtime prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "sync_id_valid": False,
            "remote_configured": False,
            "data_file_parent_ready": False,
            "log_parent_ready": False,
            "web_port_valid": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except (ValidationError, ValueError, OSError) as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        _print_json(out)
        if strict:
            raise typer.Exit(2)
        return

    if cfg.sync.sync_id:
        try:
            validate_sync_id(cfg.sync.sync_id, cfg.sync.sync_id_min_length)
            out["checks"]["sync_id_valid"] = True
        except TripSyncError as e:
            out["errors"].append(str(e))
    else:
        out["warnings"].append("sync_id_unset: one is generated on first sync")

    if cfg.remote.backend == "supabase":
        out["checks"]["remote_configured"] = bool(cfg.remote.supabase_url and cfg.remote.supabase_key)
        if not out["checks"]["remote_configured"]:
            out["errors"].append("supabase_not_configured: supabase_url/supabase_key missing")
    else:
        out["checks"]["remote_configured"] = True
        out["warnings"].append(f"remote_backend_sqlite: {cfg.remote.sqlite_path}")

    for key, target in (("data_file_parent_ready", cfg.sync.data_file), ("log_parent_ready", cfg.logging.file)):
        try:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
            out["checks"][key] = True
        except OSError as e:
            out["errors"].append(f"{key.replace('_ready', '')}_unavailable: {e}")

    port = int(cfg.web_port)
    out["checks"]["web_port_valid"] = 1 <= port <= 65535
    if not out["checks"]["web_port_valid"]:
        out["errors"].append(f"web_port_out_of_range: {port}")

    out["ok"] = len(out["errors"]) == 0
    _print_json(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command()
def status():
    """Show sync identifier, local data and last sync summary."""
    cfg, store, _engine, _history = _build_services()
    local = load_local_dataset(cfg.sync.data_file)
    last, source, _err = load_latest_sync_summary()

    table = Table(title="tripsync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("sync_id", cfg.sync.sync_id or "(unset)")
    table.add_row("data_file", cfg.sync.data_file)
    table.add_row("local_trips", str(len(local.trips)))
    table.add_row("local_events", str(len(local.events)))
    table.add_row("remote", json.dumps(store.summary(), ensure_ascii=False))
    table.add_row("last_sync", f"{(last or {}).get('status', '-')} at {(last or {}).get('finished_at', '-')} ({source})")
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command("sync-id-show")
def sync_id_show():
    """Print the active sync identifier, generating one if unset."""
    cfg = load_config()
    print(_ensure_sync_id(cfg))


@app.command("sync-id-set")
def sync_id_set(
    new_id: str = typer.Argument(..., help="New sync identifier (A-Z, 0-9, '-')."),
    yes: bool = typer.Option(False, "--yes", help="Do not ask when the identifier already has data."),
):
    """Switch to another sync identifier."""
    cfg, store, _engine, _history = _build_services()
    try:
        check = check_sync_id_change(store, new_id, cfg.sync.sync_id, cfg.sync.sync_id_min_length)
    except TripSyncError as e:
        _fail(e)
        return

    if check.unchanged:
        _print_json({"ok": True, "sync_id": check.sync_id, "changed": False})
        return
    if check.in_use and not yes:
        console.print(
            f"[bold red]WARNING: ID ALREADY IN USE[/bold red]\n"
            f"The ID {check.sync_id} already has cloud data. Syncing under it will merge into and overwrite that data."
        )
        if not typer.confirm("Only proceed if this is YOUR ID. Switch?", default=False):
            raise typer.Exit(1)

    cfg.sync.sync_id = check.sync_id
    save_config(cfg)
    _print_json({"ok": True, "sync_id": check.sync_id, "previous": check.current, "in_use": check.in_use, "changed": True})


@app.command()
def sync(
    prefer: Resolution | None = typer.Option(None, "--prefer", help="Resolve every conflicting trip without prompting."),
):
    """Sync local data with the backup store, resolving conflicts per trip."""
    cfg, _store, engine, _history = _build_services()
    sync_id = _ensure_sync_id(cfg)
    local = load_local_dataset(cfg.sync.data_file)

    outcome = engine.request_sync(sync_id, local, run_type="manual_cli")
    if isinstance(outcome, ConflictsFound):
        record_sync_summary(outcome.summary)
        pending = engine.pending(outcome.handle)
        _render_conflicts(pending.collector)
        if prefer is not None:
            pending.collector.choose_all(prefer)
            choices = pending.collector.resolution_map()
        else:
            choices = _prompt_resolutions(pending.collector)
        if choices is None:
            engine.cancel(outcome.handle)
            _print_json({"ok": False, "cancelled": True, "sync_id": sync_id})
            raise typer.Exit(1)
        outcome = engine.resolve_and_merge(outcome.handle, choices)

    record_sync_summary(outcome.summary)
    if isinstance(outcome, Failed):
        _print_json({"ok": False, "code": outcome.code, "error": outcome.reason, "summary": outcome.summary})
        raise typer.Exit(2)

    # The prompt may have waited; keep trips edited in the file meanwhile.
    current = load_local_dataset(cfg.sync.data_file)
    save_local_dataset(cfg.sync.data_file, rebase_local_edits(outcome.merged, local, current))
    _print_json({"ok": True, "kind": outcome.kind, "summary": outcome.summary})


@app.command("cloud-restore")
def cloud_restore(
    sync_id: str = typer.Argument(..., help="Identifier whose backup replaces local data."),
    yes: bool = typer.Option(False, "--yes", help="Do not ask before overwriting local data."),
):
    """Load a backup by identifier, overwrite local data and adopt the identifier."""
    cfg, store, _engine, _history = _build_services()
    try:
        target = validate_sync_id(sync_id, cfg.sync.sync_id_min_length)
        dataset = store.fetch(target)
    except TripSyncError as e:
        _fail(e)
        return
    if dataset is None:
        _print_json({"ok": False, "code": "backup_not_found", "sync_id": target})
        raise typer.Exit(2)

    if not yes and not typer.confirm(
        f"Found backup for ID {target} ({len(dataset.trips)} trips). Overwrite local data and link to this ID?",
        default=False,
    ):
        raise typer.Exit(1)

    save_local_dataset(cfg.sync.data_file, dataset)
    cfg.sync.sync_id = target
    save_config(cfg)
    _print_json({"ok": True, "sync_id": target, "trips": len(dataset.trips)})


@app.command("export")
def export_data(path: Path = typer.Argument(Path("tripsync_backup.json"))):
    """Write local data to a JSON file."""
    cfg = load_config()
    dataset = load_local_dataset(cfg.sync.data_file)
    path.write_text(json.dumps(dataset.to_payload(), ensure_ascii=False, indent=2), encoding="utf-8")
    _print_json({"ok": True, "path": str(path), "trips": len(dataset.trips)})


@app.command("import")
def import_data(
    path: Path = typer.Argument(..., exists=True, dir_okay=False),
    yes: bool = typer.Option(False, "--yes", help="Do not ask before overwriting local data."),
):
    """Replace local data with a JSON export (older formats are upgraded)."""
    cfg = load_config()
    try:
        dataset = migrate_dataset(json.loads(path.read_text(encoding="utf-8")))
    except (ValueError, ValidationError) as e:
        _fail(e, code="invalid_file_format")
        return
    if not yes and not typer.confirm("Overwrite current data with this file?", default=False):
        raise typer.Exit(1)
    save_local_dataset(cfg.sync.data_file, dataset)
    _print_json({"ok": True, "path": str(path), "trips": len(dataset.trips)})


@app.command("versions-save")
def versions_save(
    trip_id: str = typer.Argument(...),
    note: str = typer.Option("", "--note", help="What changed; defaults to the configured placeholder."),
):
    """Snapshot one trip to the version history."""
    cfg, _store, _engine, history = _build_services()
    trip = load_local_dataset(cfg.sync.data_file).get_trip(trip_id)
    if trip is None:
        _print_json({"ok": False, "code": "trip_not_found", "trip_id": trip_id})
        raise typer.Exit(2)
    try:
        version = history.save_version(trip, note)
    except TripSyncError as e:
        _fail(e)
        return
    _print_json({"ok": True, "version_id": version.id, "trip_id": version.trip_id, "note": version.note})


@app.command("versions-list")
def versions_list(trip_id: str = typer.Argument(...)):
    """List a trip's versions, newest first."""
    _cfg, _store, _engine, history = _build_services()
    try:
        versions = history.list_versions(trip_id)
    except TripSyncError as e:
        _fail(e)
        return
    console.print(_versions_table(f"versions of {trip_id}", versions))


@app.command("versions-search")
def versions_search(query: str = typer.Argument(...)):
    """Search versions of every trip by note, title or trip id."""
    _cfg, _store, _engine, history = _build_services()
    try:
        versions = history.find_versions(query)
    except TripSyncError as e:
        _fail(e)
        return
    console.print(_versions_table(f"versions matching '{query}'", versions))


@app.command("versions-restore")
def versions_restore(
    version_id: str = typer.Argument(...),
    into: str = typer.Option(..., "--into", help="Trip id whose content is replaced."),
    yes: bool = typer.Option(False, "--yes", help="Do not ask before overwriting."),
):
    """Restore a saved version into a trip of the local data."""
    cfg, _store, _engine, history = _build_services()
    try:
        result = history.restore_by_id(version_id, into)
    except TripSyncError as e:
        _fail(e)
        return

    if not yes:
        if result.cross_trip:
            prompt = (
                f"This version is from a different trip ({result.source_trip_id}). Restoring will OVERWRITE "
                f"trip {result.target_trip_id} with data from '{result.trip.title}'. Continue?"
            )
        else:
            prompt = f"Restore version {result.version_id} into {result.target_trip_id}? Current unsaved changes will be lost."
        if not typer.confirm(prompt, default=False):
            raise typer.Exit(1)

    local = load_local_dataset(cfg.sync.data_file)
    save_local_dataset(cfg.sync.data_file, replace_trip(local, result.trip))
    _print_json({"ok": True, "version_id": result.version_id, "trip_id": result.target_trip_id, "cross_trip": result.cross_trip})


@app.command("logs-tail")
def logs_tail(
    n: int = typer.Option(200, "--n", min=1),
    level: str | None = typer.Option(None, "--level", help="Filter by log level (e.g. INFO)."),
    module: str | None = typer.Option(None, "--module", help="Filter by logger name (sync, versions, store)."),
    grep: str | None = typer.Option(None, "--grep", help="Only lines whose message contains this text."),
    sync_id: str | None = typer.Option(None, "--sync-id", help="Only events for this sync identifier."),
    trip_id: str | None = typer.Option(None, "--trip-id", help="Only events that mention this trip."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """Tail service log file."""
    cfg = load_config()
    payload = build_log_tail_payload(
        cfg.logging.file, n=n, level=level, module=module, contains=grep, sync_id=sync_id, trip_id=trip_id
    )
    if json_output:
        _print_json(payload)
        return
    print(payload.get("tail", ""))


@app.command("history")
def history_cmd(limit: int = typer.Option(20, "--limit", min=1)):
    """Show recent sync attempts."""
    table = Table(title="sync history")
    for column in ("finished_at", "run_type", "sync_id", "status", "merged", "conflicts", "error"):
        table.add_column(column)
    for item in read_sync_history(limit=limit):
        table.add_row(
            str(item.get("finished_at") or "-"),
            str(item.get("run_type") or "-"),
            str(item.get("sync_id") or "-"),
            str(item.get("status") or "-"),
            str(item.get("merged_total", "-")),
            str(item.get("conflicts", "-")),
            str(item.get("error_code") or ""),
        )
    console.print(table)


@app.command()
def serve():
    """Run the HTTP API."""
    from tripsync.web.main import main as web_main

    web_main()


def main():
    app()


if __name__ == "__main__":
    main()
