from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from tripsync.core.config import AppConfig
from tripsync.web import api as api_module


def _build_client() -> TestClient:
    app = FastAPI()
    app.include_router(api_module.router)
    return TestClient(app)


def test_healthz_returns_alive():
    client = _build_client()
    resp = client.get("/api/healthz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["status"] == "alive"
    assert "checked_at" in payload


def test_readyz_returns_200_when_checks_pass(monkeypatch, tmp_path: Path):
    cfg = AppConfig()
    cfg.sync.data_file = str(tmp_path / "runtime" / "data.json")
    cfg.logging.file = str(tmp_path / "runtime" / "service.log")

    monkeypatch.setattr(api_module, "load_config", lambda: cfg)

    client = _build_client()
    resp = client.get("/api/readyz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["checks"]["config_load"] is True
    assert payload["checks"]["data_parent_ready"] is True
    assert payload["checks"]["log_parent_ready"] is True
    assert payload["checks"]["remote_configured"] is True
    assert "sync_id_unset" in payload["warnings"]
    assert payload["errors"] == []


def test_readyz_warns_when_supabase_unconfigured(monkeypatch, tmp_path: Path):
    cfg = AppConfig()
    cfg.remote.backend = "supabase"
    cfg.sync.data_file = str(tmp_path / "data.json")
    cfg.logging.file = str(tmp_path / "service.log")
    monkeypatch.setattr(api_module, "load_config", lambda: cfg)

    payload = _build_client().get("/api/readyz").json()

    assert payload["ok"] is True
    assert payload["checks"]["remote_configured"] is False
    assert "supabase_not_configured" in payload["warnings"]


def test_readyz_returns_503_when_config_load_fails(monkeypatch):
    def _raise_load_config():
        raise RuntimeError("boom")

    monkeypatch.setattr(api_module, "load_config", _raise_load_config)

    client = _build_client()
    resp = client.get("/api/readyz")
    assert resp.status_code == 503
    payload = resp.json()
    assert payload["ok"] is False
    assert payload["checks"]["config_load"] is False
    assert any("config_load_failed" in err for err in payload["errors"])
