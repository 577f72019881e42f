from pathlib import Path

from tripsync.core import config as config_module


def test_load_config_creates_from_template(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    runtime_dir = tmp_path / "runtime"
    template.write_text(
        "\n".join(
            [
                "remote:",
                "  backend: supabase",
                "  supabase_url: https://demo.supabase.co",
                "  supabase_key: tpl_key",
                "sync:",
                "  sync_id: TPL-ID",
                f"  data_file: {runtime_dir / 'data.json'}",
                "logging:",
                f"  file: {runtime_dir / 'service.log'}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.remote.backend == "supabase"
    assert cfg.remote.supabase_key == "tpl_key"
    assert cfg.sync.sync_id == "TPL-ID"


def test_load_config_creates_defaults_when_template_missing(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", tmp_path / "missing-template.yaml")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.remote.backend == "sqlite"
    assert cfg.sync.default_version_note == "Auto-save"
    assert cfg.sync.sync_id_min_length == 4


def test_load_config_falls_back_when_template_invalid(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    template.write_text("remote: [invalid\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.remote.backend == "sqlite"


def test_save_config_round_trips(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)
    cfg = config_module.AppConfig()
    cfg.sync.sync_id = "ROUND-1"

    config_module.save_config(cfg, target)

    assert config_module.load_config(target).sync.sync_id == "ROUND-1"
