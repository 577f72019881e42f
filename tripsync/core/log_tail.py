from __future__ import annotations

import json
import re
from pathlib import Path


LOG_LINE_RE = re.compile(
    r"^(?P<ts>\S+\s+\S+)\s+\[(?P<level>[A-Z]+)\]\s+\[(?P<module>[^\]]+)\]\s*(?P<message>.*)$"
)
# Plain-text detail such as "sync_id=ABCD trips=3".
_KV_RE = re.compile(r"(\w+)=(\S+)")


def _tail_lines(path: str, n: int = 200) -> list[str]:
    p = Path(path)
    if not p.exists():
        return []
    lines = p.read_text(encoding="utf-8", errors="replace").splitlines()
    return lines[-n:]


def _split_event(message: str) -> tuple[str, dict]:
    """`sync_conflicts_found {"sync_id": ...}` -> ("sync_conflicts_found", {...})."""
    event, _, rest = message.partition(" ")
    rest = rest.strip()
    if not rest:
        return event, {}
    try:
        detail = json.loads(rest)
    except ValueError:
        return event, dict(_KV_RE.findall(rest))
    return event, detail if isinstance(detail, dict) else {}


def _parse_line(line: str) -> dict:
    match = LOG_LINE_RE.match(line)
    if not match:
        return {"raw": line, "ts": "", "level": "", "module": "", "message": line, "event": "", "detail": {}}
    parsed = match.groupdict()
    message = parsed.get("message", "")
    event, detail = _split_event(message)
    return {
        "raw": line,
        "ts": parsed.get("ts", ""),
        "level": parsed.get("level", ""),
        "module": parsed.get("module", ""),
        "message": message,
        "event": event,
        "detail": detail,
    }


def _trip_ids(detail: dict) -> set[str]:
    ids = {str(detail["trip_id"])} if detail.get("trip_id") else set()
    for key in ("trips", "trip_ids"):
        value = detail.get(key)
        if isinstance(value, list):
            ids.update(str(v) for v in value)
    return ids


def build_log_tail_payload(
    path: str,
    n: int = 200,
    level: str | None = None,
    module: str | None = None,
    contains: str | None = None,
    sync_id: str | None = None,
    trip_id: str | None = None,
) -> dict:
    """Tail the service log and filter it.

    `module` matches the logger name written by `setup_logging` (`sync`,
    `versions`, `store`). `sync_id` and `trip_id` match the structured detail
    the sync engine and version history attach to their events, so one sync or
    one trip can be followed across runs.
    """
    level_wanted = (level or "").strip().upper() or None
    module_wanted = (module or "").strip().lower() or None
    needle = (contains or "").strip().lower() or None
    sync_wanted = (sync_id or "").strip().upper() or None
    trip_wanted = (trip_id or "").strip() or None

    parsed_lines: list[dict] = []
    for line in _tail_lines(path, n=n):
        item = _parse_line(line)
        if level_wanted and item["level"].upper() != level_wanted:
            continue
        if module_wanted and item["module"].strip().lower() != module_wanted:
            continue
        if needle and needle not in item["message"].lower():
            continue
        if sync_wanted and str(item["detail"].get("sync_id", "")).upper() != sync_wanted:
            continue
        if trip_wanted and trip_wanted not in _trip_ids(item["detail"]):
            continue
        parsed_lines.append(item)

    return {
        "path": path,
        "n": n,
        "level": level_wanted,
        "module": module_wanted,
        "contains": needle,
        "sync_id": sync_wanted,
        "trip_id": trip_wanted,
        "count": len(parsed_lines),
        "tail": "\n".join(item["raw"] for item in parsed_lines),
        "items": parsed_lines,
    }
