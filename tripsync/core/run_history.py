from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from tripsync.core.config import LAST_SYNC_PATH, SYNC_HISTORY_PATH


def record_sync_summary(
    summary: dict,
    last_path: Path = LAST_SYNC_PATH,
    history_path: Path = SYNC_HISTORY_PATH,
) -> None:
    """Persist one sync attempt as the latest summary and append it to history."""
    last_path.parent.mkdir(parents=True, exist_ok=True)
    last_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    history_path.parent.mkdir(parents=True, exist_ok=True)
    with history_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def read_sync_history(limit: int = 50, history_path: Path = SYNC_HISTORY_PATH) -> list[dict]:
    if limit <= 0:
        return []
    if not history_path.exists():
        return []

    lines = history_path.read_text(encoding="utf-8", errors="replace").splitlines()
    out: list[dict] = []
    for line in reversed(lines):
        if len(out) >= limit:
            break
        raw = line.strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = {"raw": raw, "parse_error": True}
        if isinstance(payload, dict):
            out.append(payload)
    return out


def load_latest_sync_summary(
    last_path: Path = LAST_SYNC_PATH,
    history_path: Path = SYNC_HISTORY_PATH,
) -> tuple[dict[str, Any] | None, str, str | None]:
    """
    Return latest sync summary with source:
    - last_sync: runtime/last_sync.json
    - history_fallback: runtime/sync_history.jsonl latest item
    - none: no summary available
    """
    parse_error: str | None = None
    if last_path.exists():
        try:
            payload = json.loads(last_path.read_text(encoding="utf-8"))
            if isinstance(payload, dict):
                return payload, "last_sync", None
            parse_error = "last_sync_not_object"
        except json.JSONDecodeError as e:
            parse_error = str(e)

    items = read_sync_history(limit=1, history_path=history_path)
    if items:
        return items[0], "history_fallback", parse_error
    return None, "none", parse_error
