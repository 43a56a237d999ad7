from __future__ import annotations

import json
from pathlib import Path

import pytest

from mcsplit import config as config_module
from mcsplit.config import CatalogSource, ConfigError, load_config


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ROOT", "MC_VERSION", "LOADER_VERSION", "TARGET_DIR", "CURSEFORGE_API_KEY", "HTTP_TIMEOUT"):
        monkeypatch.delenv(f"MCSPLIT_{name}", raising=False)
    monkeypatch.setattr(config_module, "USER_CONFIG_PATH", tmp_path / "user" / "config.json")
    monkeypatch.setattr(config_module, "USER_CONFIG_DIR", tmp_path / "user")


def _write(root: Path, data: dict) -> None:
    root.mkdir(parents=True, exist_ok=True)
    (root / ".mcsplit.json").write_text(json.dumps(data))


def test_file_config_is_loaded(tmp_path: Path) -> None:
    root = tmp_path / "workspace"
    _write(
        root,
        {
            "mc_version": "1.21.1",
            "loader_version": "0.16.9",
            "secondary_dir": "polly",
            "mods": [
                {"id": "P7dR8mSH", "name": "Fabric API"},
                {"id": "1234", "name": "Collective", "source": "curseforge"},
            ],
        },
    )
    cfg = load_config(root=root)
    assert cfg.mc_version == "1.21.1"
    assert cfg.target_dir == root.resolve()
    assert cfg.instances_dir == root.resolve() / "instances"
    assert cfg.secondary_dir == (root / "polly").resolve()
    assert cfg.mods[1].source is CatalogSource.CURSEFORGE
    assert cfg.required_mods == ["Controllable", "Splitscreen Support"]
    assert cfg.transports == ["urllib", "curl", "wget"]


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "workspace"
    _write(root, {"mc_version": "1.20.4", "loader_version": "0.15.0", "http_timeout": 30})
    monkeypatch.setenv("MCSPLIT_MC_VERSION", "1.21.1")
    monkeypatch.setenv("MCSPLIT_HTTP_TIMEOUT", "10")
    cfg = load_config(root=root)
    assert cfg.mc_version == "1.21.1"
    assert cfg.loader_version == "0.15.0"
    assert cfg.http_timeout == 10


def test_explicit_overrides_win(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "workspace"
    _write(root, {"mc_version": "1.20.4", "loader_version": "0.15.0"})
    monkeypatch.setenv("MCSPLIT_MC_VERSION", "1.21.0")
    cfg = load_config(root=root, mc_version="1.21.1", loader_version="0.16.9")
    assert (cfg.mc_version, cfg.loader_version) == ("1.21.1", "0.16.9")


def test_missing_versions_are_fatal(tmp_path: Path) -> None:
    root = tmp_path / "workspace"
    _write(root, {"loader_version": "0.16.9"})
    with pytest.raises(ConfigError, match="mc_version"):
        load_config(root=root)
    _write(root, {"mc_version": "1.21.1"})
    with pytest.raises(ConfigError, match="loader_version"):
        load_config(root=root)


def test_invalid_json_is_a_config_error(tmp_path: Path) -> None:
    root = tmp_path / "workspace"
    root.mkdir()
    (root / ".mcsplit.json").write_text("{")
    with pytest.raises(ConfigError):
        load_config(root=root)


def test_user_default_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "workspace"
    _write(root, {"mc_version": "1.21.1", "loader_version": "0.16.9"})
    config_module.save_user_config(config_module.UserConfig(workspace_root=root))
    monkeypatch.chdir(tmp_path)
    assert load_config().root == root.resolve()
