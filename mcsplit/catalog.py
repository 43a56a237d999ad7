from __future__ import annotations

import http.client
import json
import logging
import re
import shutil
import subprocess
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import quote, urlencode

from pydantic import BaseModel, Field, ValidationError

from .config import CatalogSource, SplitConfig

logger = logging.getLogger(__name__)


class CatalogError(RuntimeError):
    """Raised when a remote catalog cannot answer a query."""


class TransportError(CatalogError):
    """Raised when a URL could not be fetched."""


class CatalogUnreachable(CatalogError):
    pass


class CatalogEmpty(CatalogError):
    pass


class CatalogMalformed(CatalogError):
    pass


class Transport(Protocol):
    name: str

    def available(self) -> bool:  # pragma: no cover - protocol
        ...

    def get(self, url: str, timeout: float, headers: Optional[Dict[str, str]] = None) -> bytes:  # pragma: no cover - protocol
        ...

    def download(
        self, url: str, dest: Path, timeout: float, headers: Optional[Dict[str, str]] = None
    ) -> None:  # pragma: no cover - protocol
        ...


class UrllibTransport:
    name = "urllib"
    # Raw spaces are escaped; reserved characters and existing escapes pass through.
    URL_SAFE = ":/?#[]@!$&'()*+,;=%~"

    def available(self) -> bool:
        return True

    def _request(self, url: str, headers: Optional[Dict[str, str]]) -> urllib.request.Request:
        request = urllib.request.Request(quote(url, safe=self.URL_SAFE))
        if headers:
            for key, value in headers.items():
                if value is not None:
                    request.add_header(key, value)
        return request

    def get(self, url: str, timeout: float, headers: Optional[Dict[str, str]] = None) -> bytes:
        try:
            with urllib.request.urlopen(self._request(url, headers), timeout=timeout) as response:
                return response.read()
        except urllib.error.HTTPError as exc:  # pragma: no cover - network dependent
            raise TransportError(f"HTTP {exc.code} error fetching {url}: {exc.reason}") from exc
        except (urllib.error.URLError, http.client.HTTPException, ValueError, OSError) as exc:
            raise TransportError(f"Network error fetching {url}: {exc}") from exc

    def download(self, url: str, dest: Path, timeout: float, headers: Optional[Dict[str, str]] = None) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            with urllib.request.urlopen(self._request(url, headers), timeout=timeout) as response, dest.open("wb") as handle:
                shutil.copyfileobj(response, handle)
        except (urllib.error.URLError, http.client.HTTPException, ValueError, OSError) as exc:
            dest.unlink(missing_ok=True)
            raise TransportError(f"Failed to download {url}: {exc}") from exc


class CommandTransport:
    """Fetch through ``curl`` or ``wget`` when they are installed."""

    def __init__(self, program: str):
        if program not in ("curl", "wget"):
            raise ValueError(f"Unsupported transport command '{program}'")
        self.name = program
        self.program = program

    def available(self) -> bool:
        return shutil.which(self.program) is not None

    def _command(self, url: str, output: str, timeout: float, headers: Optional[Dict[str, str]]) -> List[str]:
        seconds = str(int(timeout))
        header_args: List[str] = []
        for key, value in (headers or {}).items():
            if value is not None:
                header_args += ["--header", f"{key}: {value}"]
        if self.program == "curl":
            return ["curl", "-sSfL", "-m", seconds, *header_args, "-o", output, url]
        return ["wget", "-q", f"--timeout={seconds}", *header_args, "-O", output, url]

    def _run(self, cmd: List[str], url: str, timeout: float) -> subprocess.CompletedProcess[bytes]:
        try:
            result = subprocess.run(cmd, capture_output=True, check=False, timeout=timeout + 5)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise TransportError(f"{self.program} could not fetch {url}: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="ignore").strip()
            raise TransportError(f"{self.program} exited {result.returncode} fetching {url}: {stderr}")
        return result

    def get(self, url: str, timeout: float, headers: Optional[Dict[str, str]] = None) -> bytes:
        result = self._run(self._command(url, "-", timeout, headers), url, timeout)
        return result.stdout

    def download(self, url: str, dest: Path, timeout: float, headers: Optional[Dict[str, str]] = None) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._run(self._command(url, str(dest), timeout, headers), url, timeout)
        except TransportError:
            dest.unlink(missing_ok=True)
            raise


def build_transport(name: str) -> Transport:
    if name == "urllib":
        return UrllibTransport()
    return CommandTransport(name)


def select_transport(preferences: Sequence[str]) -> Transport:
    """Return the first available transport; each fetch is attempted once on it."""

    for name in preferences:
        try:
            transport = build_transport(name)
        except ValueError:
            logger.warning("Ignoring unknown transport '%s'", name)
            continue
        if transport.available():
            return transport
    raise TransportError(f"None of the configured transports are available: {', '.join(preferences)}")


class VersionFile(BaseModel):
    url: Optional[str] = None
    filename: Optional[str] = None
    primary: bool = False


class CatalogVersion(BaseModel):
    game_versions: List[str] = Field(default_factory=list)
    loaders: List[str] = Field(default_factory=list)
    files: List[VersionFile] = Field(default_factory=list)

    @property
    def download_url(self) -> Optional[str]:
        if not self.files:
            return None
        url = self.files[0].url
        if not url or url == "null":
            return None
        return url


@dataclass(frozen=True)
class MatchTier:
    name: str
    game_version: Optional[str]

    def select(self, listing: Sequence[CatalogVersion], loader: str) -> Optional[str]:
        for version in listing:
            if loader not in version.loaders:
                continue
            if self.game_version is not None and self.game_version not in version.game_versions:
                continue
            url = version.download_url
            if url:
                return url
        return None


@dataclass(frozen=True)
class ResolutionOutcome:
    url: Optional[str] = None
    tier: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.url is not None

    @classmethod
    def unresolved(cls) -> "ResolutionOutcome":
        return cls()


_MAJOR_MINOR = re.compile(r"^(\d+)\.(\d+)")
_PATCH = re.compile(r"^\d+\.\d+\.(\d+)")


def cascade_tiers(target_version: str) -> List[MatchTier]:
    """Exact, major.minor, ``X.Y.x``, one patch back, then any version."""

    tiers = [MatchTier("exact", target_version)]
    major_minor = _MAJOR_MINOR.match(target_version)
    if major_minor:
        base = f"{major_minor.group(1)}.{major_minor.group(2)}"
        tiers.append(MatchTier("major-minor", base))
        tiers.append(MatchTier("wildcard", f"{base}.x"))
        patch = _PATCH.match(target_version)
        if patch and int(patch.group(1)) > 0:
            tiers.append(MatchTier("previous-patch", f"{base}.{int(patch.group(1)) - 1}"))
    tiers.append(MatchTier("any-version", None))
    return tiers


def parse_listing(payload: bytes) -> List[CatalogVersion]:
    if not payload or not payload.strip():
        raise CatalogEmpty("Catalog returned an empty response")
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CatalogMalformed(f"Catalog returned invalid JSON: {exc}") from exc
    if isinstance(data, dict) and "error" in data:
        raise CatalogMalformed(f"Catalog returned an error: {data.get('description') or data['error']}")
    if not isinstance(data, list):
        raise CatalogMalformed("Catalog response is not a version list")
    if not data:
        raise CatalogEmpty("Catalog has no versions for this project")
    listing: List[CatalogVersion] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            listing.append(CatalogVersion.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed catalog entry: %r", item)
    return listing


def match_listing(listing: Sequence[CatalogVersion], target_version: str, loader: str) -> ResolutionOutcome:
    for tier in cascade_tiers(target_version):
        url = tier.select(listing, loader)
        logger.debug("  tier %s (%s): %s", tier.name, tier.game_version or "*", url or "(empty)")
        if url:
            return ResolutionOutcome(url=url, tier=tier.name)
    return ResolutionOutcome.unresolved()


class ModrinthCatalog:
    API_BASE = "https://api.modrinth.com/v2"

    def __init__(self, transport: Transport, *, timeout: float = 15.0, user_agent: str = "mcsplit/dev"):
        self.transport = transport
        self.timeout = timeout
        self.user_agent = user_agent

    def _headers(self) -> Dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": "application/json"}

    def fetch_versions(self, project_id: str) -> List[CatalogVersion]:
        url = f"{self.API_BASE}/project/{quote(project_id, safe='')}/version"
        try:
            payload = self.transport.get(url, self.timeout, headers=self._headers())
        except TransportError as exc:
            raise CatalogUnreachable(str(exc)) from exc
        return parse_listing(payload)

    def resolve(self, project_id: str, target_version: str, loader: str) -> ResolutionOutcome:
        try:
            listing = self.fetch_versions(project_id)
        except CatalogError as exc:
            logger.debug("Modrinth lookup for %s failed: %s", project_id, exc)
            return ResolutionOutcome.unresolved()
        return match_listing(listing, target_version, loader)


class CurseForgeCatalog:
    API_BASE = "https://api.curseforge.com/v1"
    LOADER_TYPES = {
        "forge": 1,
        "cauldron": 2,
        "liteloader": 3,
        "fabric": 4,
        "quilt": 5,
        "neoforge": 6,
    }

    def __init__(
        self,
        transport: Transport,
        *,
        api_key: Optional[str],
        timeout: float = 15.0,
        user_agent: str = "mcsplit/dev",
    ):
        self.transport = transport
        self.api_key = api_key
        self.timeout = timeout
        self.user_agent = user_agent

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }

    def _list_files(self, mod_id: str, mc_version: str, loader: str) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"gameVersion": mc_version, "pageSize": 50}
        loader_type = self.LOADER_TYPES.get(loader.lower(), 0)
        if loader_type:
            params["modLoaderType"] = loader_type
        url = f"{self.API_BASE}/mods/{quote(str(mod_id), safe='')}/files?{urlencode(params)}"
        try:
            payload = self.transport.get(url, self.timeout, headers=self._headers())
        except TransportError as exc:
            raise CatalogUnreachable(str(exc)) from exc
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CatalogMalformed(f"CurseForge returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise CatalogMalformed("CurseForge response is not an object")
        files = data.get("data") or []
        if not files:
            raise CatalogEmpty(f"No CurseForge files for {mod_id} on {mc_version}")
        return files

    def lookup(self, mod_id: str, mc_version: str, loader: str) -> Optional[str]:
        if not self.api_key:
            logger.warning("CurseForge API key missing; cannot resolve CurseForge mod %s", mod_id)
            return None
        try:
            files = self._list_files(mod_id, mc_version, loader)
        except CatalogError as exc:
            logger.debug("CurseForge lookup for %s failed: %s", mod_id, exc)
            return None

        for release_type in (1, 2, 3):  # 1=release,2=beta,3=alpha
            for file in files:
                if file.get("releaseType") == release_type and file.get("downloadUrl"):
                    return file["downloadUrl"]
        for file in files:
            if file.get("downloadUrl"):
                return file["downloadUrl"]
        return None


class ModUrlResolver:
    """Resolve a catalog identifier to a single download URL, or nothing."""

    def __init__(self, modrinth: ModrinthCatalog, curseforge: CurseForgeCatalog, *, loader: str = "fabric"):
        self.modrinth = modrinth
        self.curseforge = curseforge
        self.loader = loader

    @classmethod
    def from_config(cls, cfg: SplitConfig, transport: Transport) -> "ModUrlResolver":
        modrinth = ModrinthCatalog(transport, timeout=cfg.http_timeout, user_agent=cfg.api_user_agent)
        curseforge = CurseForgeCatalog(
            transport,
            api_key=cfg.curseforge_api_key,
            timeout=cfg.http_timeout,
            user_agent=cfg.api_user_agent,
        )
        return cls(modrinth, curseforge, loader=cfg.loader)

    def resolve(self, catalog_id: str, catalog: CatalogSource, target_version: str) -> ResolutionOutcome:
        if catalog is CatalogSource.CURSEFORGE:
            url = self.curseforge.lookup(catalog_id, target_version, self.loader)
            return ResolutionOutcome(url=url, tier="lookup") if url else ResolutionOutcome.unresolved()
        return self.modrinth.resolve(catalog_id, target_version, self.loader)
