from __future__ import annotations

import threading


class UsageCounter:
    """Explicitly scoped call tally, injected into whichever collaborator counts.

    One instance per store/client; nothing here is process-global.
    """

    def __init__(self, scope: str):
        self.scope = scope
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}

    def incr(self, key: str, amount: int = 1) -> int:
        with self._lock:
            value = self._counts.get(key, 0) + amount
            self._counts[key] = value
            return value

    def get(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            counts = dict(self._counts)
        return {"scope": self.scope, "total": sum(counts.values()), "counts": counts}

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
