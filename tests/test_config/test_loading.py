import os
from pathlib import Path

import buddy_agent.config as config_module
from buddy_agent.config import Config


def test_defaults_match_backend_and_loop_constants():
    cfg = Config()

    assert cfg.backend.base_url == "https://api.aibuddy.life"
    assert cfg.backend.model == "claude-opus-4-20250514"
    assert cfg.backend.max_tokens == 8192
    assert cfg.agent.max_iterations == 50
    assert cfg.context.max_tokens == 40000
    assert cfg.context.chars_per_token == 3.5
    assert cfg.tools.command_timeout == 60.0


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("agent:\n  max_iterations: 5\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text(
        (
            "agent:\n"
            "  max_iterations: 12\n"
            "context:\n"
            "  max_tokens: 20000\n"
            "workspace:\n"
            "  path: project\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.agent.max_iterations == 12
    assert cfg.context.max_tokens == 20000
    assert cfg.resolved_workspace_path(tmp_path) == os.path.join(str(tmp_path), "project")


def test_load_falls_back_to_home_config(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    home_cfg = tmp_path / "home" / "config.yaml"
    home_cfg.parent.mkdir()
    home_cfg.write_text("tools:\n  command_timeout: 15\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.tools.command_timeout == 15.0


def test_missing_config_file_yields_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    cfg = Config.load()

    assert cfg.agent.max_iterations == 50
    assert cfg.resolved_workspace_path() is None


def test_env_overrides_nested_values(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    monkeypatch.setenv("BUDDY_BACKEND__MODEL", "claude-sonnet-test")
    monkeypatch.setenv("BUDDY_WORKSPACE__PATH", "/srv/project/../project")

    cfg = Config.load()

    assert cfg.backend.model == "claude-sonnet-test"
    assert cfg.resolved_workspace_path() == "/srv/project"


def test_save_round_trips_through_yaml(tmp_path: Path):
    cfg = Config()
    cfg.agent.max_iterations = 7
    cfg.workspace.path = "/srv/app"
    target = tmp_path / "saved" / "config.yaml"

    cfg.save(target)
    loaded = Config.from_yaml(target)

    assert loaded.agent.max_iterations == 7
    assert loaded.workspace.path == "/srv/app"
