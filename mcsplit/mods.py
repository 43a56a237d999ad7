from __future__ import annotations

import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .catalog import ModUrlResolver, ResolutionOutcome, Transport, TransportError
from .config import CatalogSource, ModSelection

logger = logging.getLogger(__name__)

MOD_SUFFIX = ".jar"


class InstallError(RuntimeError):
    """Raised when a slot's mod directory cannot be populated."""


class DownloadFailed(InstallError):
    pass


class MirrorSourceMissing(InstallError):
    pass


class MissingReason(str, Enum):
    UNRESOLVED = "unresolved"
    DOWNLOAD_FAILED = "download-failed"


@dataclass
class ModRequest:
    catalog_id: str
    display_name: str
    source: CatalogSource
    required: bool = False
    resolved_url: Optional[str] = None
    resolution: Optional[ResolutionOutcome] = None

    @property
    def filename(self) -> str:
        return mod_filename(self.display_name)

    def needs_resolution(self) -> bool:
        return self.resolution is None and not self.resolved_url


@dataclass(frozen=True)
class MissingMod:
    name: str
    required: bool
    reason: MissingReason


@dataclass
class MissingModsReport:
    """Encounter-ordered record of mods that ended the run without a file."""

    entries: List[MissingMod] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, request: ModRequest, reason: MissingReason) -> None:
        with self._lock:
            if any(entry.name == request.display_name for entry in self.entries):
                return
            self.entries.append(MissingMod(name=request.display_name, required=request.required, reason=reason))

    def __len__(self) -> int:
        return len(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)

    def __contains__(self, name: object) -> bool:
        return any(entry.name == name for entry in self.entries)

    @property
    def names(self) -> List[str]:
        return [entry.name for entry in self.entries]

    def required(self) -> List[MissingMod]:
        return [entry for entry in self.entries if entry.required]

    def optional(self) -> List[MissingMod]:
        return [entry for entry in self.entries if not entry.required]


def mod_filename(display_name: str) -> str:
    return display_name.replace(" ", "_") + MOD_SUFFIX


def _usable_url(url: Optional[str]) -> Optional[str]:
    if not url or url.strip() in ("", "null"):
        return None
    return url.strip()


def is_required(display_name: str, required_prefixes: Iterable[str]) -> bool:
    return any(display_name.startswith(prefix) for prefix in required_prefixes)


def build_requests(selections: Sequence[ModSelection], required_prefixes: Sequence[str]) -> List[ModRequest]:
    """Collapse the selection to one request per catalog entry, in first-seen order."""

    first_seen: Dict[Tuple[str, str], int] = {}
    for position, selection in enumerate(selections):
        first_seen.setdefault((selection.source.value, selection.id), position)

    requests: List[ModRequest] = []
    for position in sorted(first_seen.values()):
        selection = selections[position]
        requests.append(
            ModRequest(
                catalog_id=selection.id,
                display_name=selection.name,
                source=selection.source,
                required=is_required(selection.name, required_prefixes),
                resolved_url=_usable_url(selection.url),
            )
        )
    return requests


class ModInstaller:
    def __init__(
        self,
        resolver: ModUrlResolver,
        transport: Transport,
        report: MissingModsReport,
        *,
        mc_version: str,
        download_timeout: float = 120.0,
        user_agent: str = "mcsplit/dev",
        workers: int = 1,
    ):
        self.resolver = resolver
        self.transport = transport
        self.report = report
        self.mc_version = mc_version
        self.download_timeout = download_timeout
        self.user_agent = user_agent
        self.workers = max(1, workers)

    def _resolve_one(self, request: ModRequest) -> None:
        logger.info("Resolving download URL for dependency: %s", request.display_name)
        outcome = self.resolver.resolve(request.catalog_id, request.source, self.mc_version)
        request.resolution = outcome
        if outcome.resolved:
            request.resolved_url = outcome.url
            logger.debug("%s resolved via %s tier: %s", request.display_name, outcome.tier, outcome.url)

    def resolve_all(self, requests: Sequence[ModRequest]) -> None:
        """Fill ``resolved_url`` for requests that came without one. Each request is resolved at most once."""

        pending = [request for request in requests if request.needs_resolution()]
        if not pending:
            return
        if self.workers == 1 or len(pending) == 1:
            for request in pending:
                self._resolve_one(request)
            return
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            list(pool.map(self._resolve_one, pending))

    def _report_unresolved(self, request: ModRequest) -> None:
        if request.required:
            logger.error(
                "CRITICAL: required mod '%s' could not be resolved for Minecraft %s; "
                "continuing, install it manually later",
                request.display_name,
                self.mc_version,
            )
        else:
            logger.warning(
                "Optional dependency '%s' has no build for Minecraft %s; continuing without it",
                request.display_name,
                self.mc_version,
            )
        self.report.add(request, MissingReason.UNRESOLVED)

    def download(self, request: ModRequest, mods_dir: Path) -> Path:
        if not request.resolved_url:
            raise DownloadFailed(f"No download URL for {request.display_name}")
        dest = mods_dir / request.filename
        try:
            self.transport.download(
                request.resolved_url,
                dest,
                self.download_timeout,
                headers={"User-Agent": self.user_agent},
            )
        except TransportError as exc:
            raise DownloadFailed(f"Failed to download {request.display_name}: {exc}") from exc
        return dest

    def install(self, mods_dir: Path, requests: Sequence[ModRequest]) -> MissingModsReport:
        """Resolve and download every request into the canonical slot's mod directory."""

        mods_dir.mkdir(parents=True, exist_ok=True)
        self.resolve_all(requests)
        for request in requests:
            if not request.resolved_url:
                self._report_unresolved(request)
                continue
            try:
                self.download(request, mods_dir)
            except DownloadFailed as exc:
                logger.warning("%s", exc)
                self.report.add(request, MissingReason.DOWNLOAD_FAILED)
                continue
            logger.info("Downloaded %s", request.display_name)
        return self.report


def mirror_mods(source_dir: Path, mods_dir: Path) -> List[Path]:
    """Copy the canonical slot's mods into another slot's mod directory."""

    if not source_dir.is_dir():
        raise MirrorSourceMissing(f"Could not find mods directory from instance 1: {source_dir}")
    mods_dir.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copytree(source_dir, mods_dir, dirs_exist_ok=True)
    except (OSError, shutil.Error) as exc:
        raise InstallError(f"Failed to copy mods from {source_dir}: {exc}") from exc
    return sorted(path for path in mods_dir.iterdir() if path.is_file())
