from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import SplitConfig
from .instances import InstanceSlot
from .manifest import ManifestError, write_instance_cfg, write_manifest

logger = logging.getLogger(__name__)

LAUNCHER_COMMAND = "prismlauncher"
APPIMAGE_NAME = "PrismLauncher.AppImage"


class LauncherError(RuntimeError):
    pass


class ToolUnavailable(LauncherError):
    """Raised when the launcher executable is missing or not executable."""


class CreationFailed(LauncherError):
    """Raised when neither the launcher nor manual creation produced an instance."""


def find_executable(cfg: SplitConfig) -> Path:
    candidates: List[Path] = []
    if cfg.launcher_executable is not None:
        candidates.append(cfg.launcher_executable)
    else:
        on_path = shutil.which(LAUNCHER_COMMAND)
        if on_path:
            candidates.append(Path(on_path))
        candidates.append(cfg.target_dir / APPIMAGE_NAME)

    for candidate in candidates:
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate
    raise ToolUnavailable("PrismLauncher executable not available")


def _run(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        list(cmd),
        text=True,
        capture_output=True,
        check=False,
    )


def creation_arguments(cfg: SplitConfig, name: str) -> List[List[str]]:
    """Descending parameter sets: with loader, without loader, minimal."""

    base = ["--name", name, "--mc-version", cfg.mc_version]
    grouped = base + ["--group", cfg.instance_group]
    return [
        grouped + ["--loader", cfg.loader],
        grouped,
        base,
    ]


@dataclass
class CreationStrategy:
    label: str
    attempt: Callable[[], bool]


class LauncherCli:
    """Thin wrapper around ``<launcher> --cli create-instance``."""

    def __init__(self, executable: Path, runner: Callable[[Sequence[str]], subprocess.CompletedProcess[str]] = _run):
        self.executable = executable
        self._runner = runner

    def create_instance(self, args: Sequence[str]) -> bool:
        cmd = [str(self.executable), "--cli", "create-instance", *args]
        try:
            result = self._runner(cmd)
        except OSError as exc:
            logger.debug("Launcher invocation failed: %s", exc)
            return False
        if result.returncode != 0:
            stderr = (result.stderr or "").strip() or (result.stdout or "").strip()
            logger.debug("create-instance %s exited %s: %s", " ".join(args), result.returncode, stderr)
            return False
        return True


def create_manually(cfg: SplitConfig, slot: InstanceSlot) -> bool:
    instance_dir = slot.instance_dir
    try:
        slot.minecraft_dir.mkdir(parents=True, exist_ok=True)
        write_instance_cfg(instance_dir, slot.display_name, cfg.mc_version)
        write_manifest(instance_dir, cfg.mc_version, cfg.loader_version, cfg.lwjgl_version)
    except (OSError, ManifestError) as exc:
        raise CreationFailed(f"{slot.name}: manual creation failed: {exc}") from exc
    return True


def creation_strategies(cfg: SplitConfig, slot: InstanceSlot, cli: Optional[LauncherCli]) -> List[CreationStrategy]:
    strategies: List[CreationStrategy] = []
    if cli is not None:
        labels = ("with Fabric loader", "without specific loader", "with minimal parameters")
        for label, args in zip(labels, creation_arguments(cfg, slot.name)):
            strategies.append(CreationStrategy(label=label, attempt=lambda args=args: cli.create_instance(args)))
    strategies.append(CreationStrategy(label="manually", attempt=lambda: create_manually(cfg, slot)))
    return strategies


def create_instance(cfg: SplitConfig, slot: InstanceSlot, cli: Optional[LauncherCli]) -> str:
    """Try each creation strategy in order and return the label of the one that worked."""

    if cli is None:
        logger.info("%s: launcher not available, using manual creation", slot.name)
    for strategy in creation_strategies(cfg, slot, cli):
        if strategy.attempt():
            logger.info("%s: created %s", slot.name, strategy.label)
            return strategy.label
        logger.debug("%s: creation %s did not succeed", slot.name, strategy.label)
    raise CreationFailed(f"{slot.name}: every creation attempt failed")


def load_cli(cfg: SplitConfig) -> Optional[LauncherCli]:
    try:
        return LauncherCli(find_executable(cfg))
    except ToolUnavailable as exc:
        logger.info("%s; instances will be created manually", exc)
        return None
