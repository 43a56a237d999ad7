from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

PACK_FILENAME = "mmc-pack.json"
INSTANCE_CFG_FILENAME = "instance.cfg"
SUPPORTED_FORMAT_VERSION = 1

LWJGL_UID = "org.lwjgl3"
MINECRAFT_UID = "net.minecraft"
INTERMEDIARY_UID = "net.fabricmc.intermediary"
FABRIC_LOADER_UID = "net.fabricmc.fabric-loader"


class ManifestError(RuntimeError):
    """Raised when an instance manifest cannot be read or written."""


class _PackModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComponentRequirement(_PackModel):
    equals: Optional[str] = None
    suggests: Optional[str] = None
    uid: str


class ComponentEntry(_PackModel):
    cached_name: Optional[str] = None
    cached_requires: Optional[List[ComponentRequirement]] = None
    cached_version: Optional[str] = None
    cached_volatile: Optional[bool] = None
    dependency_only: Optional[bool] = None
    important: Optional[bool] = None
    uid: str
    version: str

    @property
    def requires(self) -> List[ComponentRequirement]:
        return self.cached_requires or []


class ComponentManifest(_PackModel):
    components: List[ComponentEntry] = Field(default_factory=list)
    format_version: int = SUPPORTED_FORMAT_VERSION

    @model_validator(mode="after")
    def _requires_point_backward(self) -> "ComponentManifest":
        seen: set[str] = set()
        for component in self.components:
            for requirement in component.requires:
                if requirement.uid not in seen:
                    raise ValueError(
                        f"Component '{component.uid}' requires '{requirement.uid}' which is not listed before it"
                    )
            seen.add(component.uid)
        return self

    @property
    def uids(self) -> List[str]:
        return [component.uid for component in self.components]

    def find(self, uid: str) -> Optional[ComponentEntry]:
        for component in self.components:
            if component.uid == uid:
                return component
        return None

    def has_loader(self) -> bool:
        return self.find(FABRIC_LOADER_UID) is not None


def build_manifest(mc_version: str, loader_version: str, lwjgl_version: str) -> ComponentManifest:
    """Build the LWJGL -> Minecraft -> Intermediary -> Fabric Loader stack."""

    return ComponentManifest(
        components=[
            ComponentEntry(
                cached_name="LWJGL 3",
                cached_version=lwjgl_version,
                cached_volatile=True,
                dependency_only=True,
                uid=LWJGL_UID,
                version=lwjgl_version,
            ),
            ComponentEntry(
                cached_name="Minecraft",
                cached_requires=[ComponentRequirement(suggests=lwjgl_version, uid=LWJGL_UID)],
                cached_version=mc_version,
                important=True,
                uid=MINECRAFT_UID,
                version=mc_version,
            ),
            ComponentEntry(
                cached_name="Intermediary Mappings",
                cached_requires=[ComponentRequirement(equals=mc_version, uid=MINECRAFT_UID)],
                cached_version=mc_version,
                cached_volatile=True,
                dependency_only=True,
                uid=INTERMEDIARY_UID,
                version=mc_version,
            ),
            ComponentEntry(
                cached_name="Fabric Loader",
                cached_requires=[ComponentRequirement(uid=INTERMEDIARY_UID)],
                cached_version=loader_version,
                uid=FABRIC_LOADER_UID,
                version=loader_version,
            ),
        ]
    )


def manifest_path(instance_dir: Path) -> Path:
    return instance_dir / PACK_FILENAME


def load_manifest(instance_dir: Path) -> ComponentManifest:
    path = manifest_path(instance_dir)
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path}")
    try:
        data = json.loads(path.read_text())
        return ComponentManifest.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ManifestError(f"Invalid manifest {path}: {exc}") from exc


def save_manifest(instance_dir: Path, manifest: ComponentManifest) -> Path:
    path = manifest_path(instance_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(manifest.model_dump_json(indent=4, by_alias=True, exclude_none=True) + "\n")
    return path


def _references_loader(instance_dir: Path) -> bool:
    try:
        return load_manifest(instance_dir).has_loader()
    except ManifestError:
        return False


def write_manifest(
    instance_dir: Path,
    mc_version: str,
    loader_version: str,
    lwjgl_version: str,
    *,
    force: bool = False,
) -> bool:
    """Write the component stack for an instance.

    Without ``force`` an existing manifest that already lists the Fabric loader
    is left alone. Returns True when the file was (re)written.
    """

    if not force and _references_loader(instance_dir):
        logger.debug("Manifest at %s already lists the Fabric loader; leaving it untouched", instance_dir)
        return False

    manifest = build_manifest(mc_version, loader_version, lwjgl_version)
    try:
        save_manifest(instance_dir, manifest)
    except OSError as exc:
        raise ManifestError(f"Failed to write {manifest_path(instance_dir)}: {exc}") from exc
    logger.info("Wrote component stack for Minecraft %s with Fabric %s", mc_version, loader_version)
    return True


def render_instance_cfg(display_name: str, mc_version: str) -> str:
    lines = [
        "InstanceType=OneSix",
        "iconKey=default",
        f"name={display_name}",
        "OverrideCommands=false",
        "OverrideConsole=false",
        "OverrideGameTime=false",
        "OverrideJavaArgs=false",
        "OverrideJavaLocation=false",
        "OverrideMCLaunchMethod=false",
        "OverrideMemory=false",
        "OverrideNativeWorkarounds=false",
        "OverrideWindow=false",
        f"IntendedVersion={mc_version}",
    ]
    return "\n".join(lines) + "\n"


def write_instance_cfg(instance_dir: Path, display_name: str, mc_version: str) -> Path:
    path = instance_dir / INSTANCE_CFG_FILENAME
    try:
        path.write_text(render_instance_cfg(display_name, mc_version))
    except OSError as exc:
        raise ManifestError(f"Failed to write {path}: {exc}") from exc
    return path


_INTENDED_VERSION = re.compile(r"^IntendedVersion=.*$", re.MULTILINE)


def set_intended_version(instance_dir: Path, mc_version: str) -> bool:
    """Point ``IntendedVersion`` at ``mc_version``; returns False when there is no instance.cfg."""

    path = instance_dir / INSTANCE_CFG_FILENAME
    if not path.exists():
        return False
    text = path.read_text()
    replacement = f"IntendedVersion={mc_version}"
    if _INTENDED_VERSION.search(text):
        text = _INTENDED_VERSION.sub(lambda _match: replacement, text)
    else:
        if text and not text.endswith("\n"):
            text += "\n"
        text += replacement + "\n"
    path.write_text(text)
    return True
