from tripsync.core.config import AppConfig
from tripsync.core.logging_setup import default_log_func
from tripsync.core.usage import UsageCounter

from .base import BackupStore
from .sqlite_store import SqliteStore
from .supabase_store import SupabaseStore


def build_store(cfg: AppConfig, counter: UsageCounter | None = None, log_func=default_log_func) -> BackupStore:
    remote = cfg.remote
    if remote.backend == "supabase":
        return SupabaseStore(
            url=remote.supabase_url,
            key=remote.supabase_key,
            timeout=int(remote.timeout_sec),
            counter=counter or UsageCounter("supabase"),
            log_func=log_func,
        )
    return SqliteStore(remote.sqlite_path, counter=counter or UsageCounter("sqlite"), log_func=log_func)


__all__ = ["BackupStore", "SqliteStore", "SupabaseStore", "build_store"]
