from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .config import SplitConfig
from .manifest import INSTANCE_CFG_FILENAME

logger = logging.getLogger(__name__)

SLOT_COUNT = 4
CANONICAL_SLOT = 1
MINECRAFT_DIRNAME = ".minecraft"


class MigrationError(RuntimeError):
    """Raised when an instance cannot be copied from the secondary root."""


class SlotState(str, Enum):
    ABSENT = "absent"
    EXISTING_FRESH = "existing-fresh"
    EXISTING_FOR_UPDATE = "existing-for-update"


class RootKind(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class InstanceSlot:
    index: int
    name: str
    root: Path
    state: SlotState
    migrated: bool = False

    @property
    def instance_dir(self) -> Path:
        return self.root / self.name

    @property
    def minecraft_dir(self) -> Path:
        return self.instance_dir / MINECRAFT_DIRNAME

    @property
    def mods_dir(self) -> Path:
        return self.minecraft_dir / "mods"

    @property
    def is_canonical(self) -> bool:
        return self.index == CANONICAL_SLOT

    @property
    def display_name(self) -> str:
        return f"Player {self.index}"


@dataclass(frozen=True)
class Sighting:
    """Where a slot's directory was found, if anywhere."""

    kind: Optional[RootKind]
    path: Optional[Path]


def slot_name(prefix: str, index: int) -> str:
    return f"{prefix}-{index}"


def slot_names(prefix: str) -> List[str]:
    return [slot_name(prefix, index) for index in range(1, SLOT_COUNT + 1)]


def find_slot(name: str, roots: Dict[RootKind, Path]) -> Sighting:
    for kind in (RootKind.PRIMARY, RootKind.SECONDARY):
        root = roots.get(kind)
        if root is None:
            continue
        candidate = root / name
        if candidate.is_dir():
            return Sighting(kind=kind, path=candidate)
    return Sighting(kind=None, path=None)


def classify(instance_dir: Path) -> SlotState:
    if not instance_dir.is_dir():
        return SlotState.ABSENT
    # A directory without instance.cfg is a half-finished creation, not an install to update.
    if not (instance_dir / INSTANCE_CFG_FILENAME).exists():
        return SlotState.EXISTING_FRESH
    return SlotState.EXISTING_FOR_UPDATE


def migrate_slot(source: Path, primary_root: Path) -> Path:
    """Copy an instance tree into the primary root once; an existing copy is left as is."""

    destination = primary_root / source.name
    if destination.exists():
        return destination
    try:
        primary_root.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, destination, symlinks=True)
    except (OSError, shutil.Error) as exc:
        shutil.rmtree(destination, ignore_errors=True)
        raise MigrationError(f"Failed to copy {source} to {primary_root}: {exc}") from exc
    return destination


def locate(cfg: SplitConfig, *, migrate: bool = True) -> Dict[int, InstanceSlot]:
    """Discover each slot's state, copying secondary-only instances into the primary root.

    With ``migrate=False`` nothing is copied and secondary-only slots keep their
    secondary root, which is what read-only status views want.
    """

    primary_root = cfg.instances_dir
    roots = {RootKind.PRIMARY: primary_root, RootKind.SECONDARY: cfg.secondary_instances_dir}
    slots: Dict[int, InstanceSlot] = {}

    for index, name in enumerate(slot_names(cfg.instance_prefix), start=1):
        sighting = find_slot(name, roots)
        root = primary_root
        migrated = False

        if sighting.kind is RootKind.SECONDARY and sighting.path is not None:
            if not migrate:
                root = sighting.path.parent
            else:
                logger.info("Found %s in %s; copying it into %s", name, sighting.path.parent, primary_root)
                try:
                    migrate_slot(sighting.path, primary_root)
                    migrated = True
                except MigrationError as exc:
                    logger.error("%s: migration failed, treating the slot as absent: %s", name, exc)
                    slots[index] = InstanceSlot(index=index, name=name, root=primary_root, state=SlotState.ABSENT)
                    continue

        state = classify(root / name)
        slots[index] = InstanceSlot(index=index, name=name, root=root, state=state, migrated=migrated)

    existing = sum(1 for slot in slots.values() if slot.state is not SlotState.ABSENT)
    if existing:
        logger.info("Update mode: found %d existing instance(s)", existing)
    else:
        logger.info("Fresh install: no existing instances found")
    return slots
