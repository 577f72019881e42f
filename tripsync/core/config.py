from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

PROJECT_ROOT = Path(os.environ.get("TRIPSYNC_HOME", "~/.tripsync")).expanduser()
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"
LAST_SYNC_PATH = RUNTIME_DIR / "last_sync.json"
SYNC_HISTORY_PATH = RUNTIME_DIR / "sync_history.jsonl"


def _expand_path(value: str) -> str:
    return str(Path(value).expanduser()) if value else value


class RemoteConfig(BaseModel):
    # - supabase: hosted PostgREST tables (`backups`, `trip_versions`)
    # - sqlite: same contract on a local database file
    backend: Literal["supabase", "sqlite"] = "sqlite"
    supabase_url: str = ""
    supabase_key: str = ""
    timeout_sec: int = Field(default=30, ge=1, le=600)
    sqlite_path: str = str(RUNTIME_DIR / "remote.db")

    @field_validator("sqlite_path")
    @classmethod
    def expand_sqlite_path(cls, value: str) -> str:
        return _expand_path(value)


class SyncConfig(BaseModel):
    # Empty means "generate one on first use".
    sync_id: str = ""
    sync_id_min_length: int = Field(default=4, ge=1, le=64)
    data_file: str = str(RUNTIME_DIR / "data.json")
    default_version_note: str = "Auto-save"

    @field_validator("data_file")
    @classmethod
    def expand_data_file(cls, value: str) -> str:
        return _expand_path(value)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "service.log")

    @field_validator("file")
    @classmethod
    def expand_log_file(cls, value: str) -> str:
        return _expand_path(value)


class AppConfig(BaseModel):
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Web API
    web_bind_host: str = "127.0.0.1"
    web_port: int = 8765


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.sync.data_file).parent.mkdir(parents=True, exist_ok=True)
    if cfg.remote.backend == "sqlite":
        Path(cfg.remote.sqlite_path).parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
