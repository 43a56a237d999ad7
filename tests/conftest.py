from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from mcsplit.catalog import TransportError
from mcsplit.config import ModSelection, SplitConfig


class FakeTransport:
    """In-memory transport: ``pages`` answer get(), ``files`` answer download()."""

    name = "fake"

    def __init__(self, pages: Optional[Dict[str, bytes]] = None, files: Optional[Dict[str, bytes]] = None):
        self.pages = pages or {}
        self.files = files or {}
        self.calls: List[str] = []

    def available(self) -> bool:
        return True

    def get(self, url: str, timeout: float, headers: Optional[Dict[str, str]] = None) -> bytes:
        self.calls.append(url)
        if url not in self.pages:
            raise TransportError(f"HTTP 404 error fetching {url}")
        return self.pages[url]

    def download(self, url: str, dest: Path, timeout: float, headers: Optional[Dict[str, str]] = None) -> None:
        self.calls.append(url)
        if url not in self.files:
            raise TransportError(f"Failed to download {url}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.files[url])


def modrinth_url(project_id: str) -> str:
    return f"https://api.modrinth.com/v2/project/{project_id}/version"


def listing(*versions: dict) -> bytes:
    return json.dumps(list(versions)).encode("utf-8")


def version(game_versions: List[str], url: str, loaders: Optional[List[str]] = None) -> dict:
    return {
        "game_versions": game_versions,
        "loaders": loaders if loaders is not None else ["fabric"],
        "files": [{"url": url, "filename": url.rsplit("/", 1)[-1], "primary": True}],
    }


def make_config(tmp_path: Path, mods: Optional[List[ModSelection]] = None, **overrides) -> SplitConfig:
    values = dict(
        root=tmp_path / "prism",
        mc_version="1.21.1",
        loader_version="0.16.9",
        lwjgl_version="3.3.3",
        loader="fabric",
        target_dir=tmp_path / "prism",
        secondary_dir=tmp_path / "polly",
        instance_prefix="latestUpdate",
        instance_group="Splitscreen",
        launcher_executable=None,
        required_mods=["Controllable", "Splitscreen Support"],
        mods=mods or [],
        api_user_agent="mcsplit/test",
        curseforge_api_key=None,
        http_timeout=15.0,
        download_timeout=30.0,
        transports=["urllib"],
        resolve_workers=1,
    )
    values.update(overrides)
    return SplitConfig(**values)


@pytest.fixture
def config(tmp_path: Path) -> SplitConfig:
    return make_config(tmp_path)


def make_instance(root: Path, name: str, *, mc_version: str = "1.20.4", options: Optional[str] = None) -> Path:
    instance_dir = root / name
    (instance_dir / ".minecraft" / "mods").mkdir(parents=True)
    (instance_dir / "instance.cfg").write_text(f"InstanceType=OneSix\nname={name}\nIntendedVersion={mc_version}\n")
    (instance_dir / ".minecraft" / "mods" / "Stale_Mod.jar").write_bytes(b"stale")
    if options is not None:
        (instance_dir / ".minecraft" / "options.txt").write_text(options)
    return instance_dir
