from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .catalog import ModUrlResolver, Transport, select_transport
from .config import SplitConfig
from .instances import CANONICAL_SLOT, MINECRAFT_DIRNAME, InstanceSlot, SlotState, locate, slot_name
from .launcher import CreationFailed, LauncherCli, LauncherError, create_instance, load_cli
from .manifest import ManifestError, set_intended_version, write_manifest
from .mods import InstallError, MissingModsReport, ModInstaller, ModRequest, build_requests, mirror_mods
from .options import apply_audio_settings, backup_options, restore_options

logger = logging.getLogger(__name__)


class SlotStatus(str, Enum):
    DONE = "done"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class SlotResult:
    index: int
    name: str
    entry_state: SlotState
    status: SlotStatus = SlotStatus.FAILED
    stage: Optional[str] = None
    created_by: Optional[str] = None
    preserved_options: bool = False
    error: Optional[str] = None


@dataclass
class ProvisionReport:
    slots: List[SlotResult] = field(default_factory=list)
    missing: MissingModsReport = field(default_factory=MissingModsReport)

    @property
    def failed_slots(self) -> List[SlotResult]:
        return [slot for slot in self.slots if slot.status is not SlotStatus.DONE]

    @property
    def ok(self) -> bool:
        return not self.failed_slots and not self.missing.required()


@dataclass
class ProvisionContext:
    """Everything a run needs, built once before the slot loop."""

    cfg: SplitConfig
    requests: List[ModRequest]
    report: MissingModsReport
    installer: ModInstaller
    cli: Optional[LauncherCli] = None

    @classmethod
    def from_config(
        cls,
        cfg: SplitConfig,
        *,
        transport: Optional[Transport] = None,
        resolver: Optional[ModUrlResolver] = None,
        cli: Optional[LauncherCli] = None,
        detect_launcher: bool = True,
    ) -> "ProvisionContext":
        transport = transport or select_transport(cfg.transports)
        resolver = resolver or ModUrlResolver.from_config(cfg, transport)
        report = MissingModsReport()
        installer = ModInstaller(
            resolver,
            transport,
            report,
            mc_version=cfg.mc_version,
            download_timeout=cfg.download_timeout,
            user_agent=cfg.api_user_agent,
            workers=cfg.resolve_workers,
        )
        if cli is None and detect_launcher:
            cli = load_cli(cfg)
        return cls(
            cfg=cfg,
            requests=build_requests(cfg.mods, cfg.required_mods),
            report=report,
            installer=installer,
            cli=cli,
        )

    @property
    def canonical_mods_dir(self) -> Path:
        return self.cfg.instances_dir / slot_name(self.cfg.instance_prefix, CANONICAL_SLOT) / MINECRAFT_DIRNAME / "mods"


class Provisioner:
    def __init__(self, context: ProvisionContext):
        self.context = context
        self.cfg = context.cfg

    def run(self) -> ProvisionReport:
        logger.info(
            "Creating instances for Minecraft %s with Fabric %s", self.cfg.mc_version, self.cfg.loader_version
        )
        try:
            self.cfg.instances_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Cannot create %s: %s", self.cfg.instances_dir, exc)
        slots = locate(self.cfg)
        report = ProvisionReport(missing=self.context.report)
        # Slot 1 goes first so its mod directory is complete before the others mirror it.
        for index in sorted(slots):
            report.slots.append(self.provision_slot(slots[index]))
        return report

    def _prepare_update(self, slot: InstanceSlot) -> bool:
        logger.info(
            "%s: updating to Minecraft %s with Fabric %s", slot.name, self.cfg.mc_version, self.cfg.loader_version
        )
        if slot.mods_dir.exists():
            shutil.rmtree(slot.mods_dir)
            logger.info("%s: cleared old mods", slot.name)
        slot.minecraft_dir.mkdir(parents=True, exist_ok=True)
        had_options = backup_options(slot.minecraft_dir) is not None
        set_intended_version(slot.instance_dir, self.cfg.mc_version)
        write_manifest(
            slot.instance_dir,
            self.cfg.mc_version,
            self.cfg.loader_version,
            self.cfg.lwjgl_version,
            force=True,
        )
        return had_options

    def _create(self, slot: InstanceSlot) -> str:
        # A leftover directory would collide with the launcher's own naming.
        cli = self.context.cli if slot.state is SlotState.ABSENT else None
        created_by = create_instance(self.cfg, slot, cli)
        if not slot.instance_dir.is_dir():
            raise CreationFailed(f"Instance directory not found after creation: {slot.instance_dir}")
        write_manifest(slot.instance_dir, self.cfg.mc_version, self.cfg.loader_version, self.cfg.lwjgl_version)
        return created_by

    def _install_mods(self, slot: InstanceSlot) -> None:
        if slot.is_canonical:
            logger.info("%s: downloading mods", slot.name)
            self.context.installer.install(slot.mods_dir, self.context.requests)
            return
        logger.info("%s: copying mods from instance 1", slot.name)
        copied = mirror_mods(self.context.canonical_mods_dir, slot.mods_dir)
        logger.info("%s: copied %d mod file(s)", slot.name, len(copied))

    def provision_slot(self, slot: InstanceSlot) -> SlotResult:
        result = SlotResult(index=slot.index, name=slot.name, entry_state=slot.state)
        updating = slot.state is SlotState.EXISTING_FOR_UPDATE
        stage = "update" if updating else "create"
        mods_error: Optional[str] = None
        try:
            if updating:
                result.preserved_options = self._prepare_update(slot) or slot.migrated
            else:
                result.created_by = self._create(slot)
                result.preserved_options = slot.migrated

            stage = "mods"
            try:
                slot.mods_dir.mkdir(parents=True, exist_ok=True)
                self._install_mods(slot)
            except (InstallError, OSError) as exc:
                mods_error = str(exc)
                logger.error("%s: mod step failed: %s", slot.name, exc)

            if updating:
                restore_options(slot.minecraft_dir)

            stage = "settings"
            apply_audio_settings(slot.minecraft_dir, slot.index, preserve=result.preserved_options)
        except (LauncherError, ManifestError, OSError) as exc:
            result.stage = stage
            result.error = str(exc)
            result.status = SlotStatus.FAILED
            logger.error("%s: %s stage failed, skipping this instance: %s", slot.name, stage, exc)
            return result
        finally:
            if updating:
                restore_options(slot.minecraft_dir)

        if mods_error:
            result.stage = "mods"
            result.error = mods_error
            result.status = SlotStatus.DEGRADED
        else:
            result.status = SlotStatus.DONE
            logger.info("%s: instance ready", slot.name)
        return result


def provision(cfg: SplitConfig, **kwargs) -> ProvisionReport:
    return Provisioner(ProvisionContext.from_config(cfg, **kwargs)).run()
