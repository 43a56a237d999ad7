from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_FILENAME = ".mcsplit.json"
DEFAULT_ENV_FILENAME = ".env"
DEFAULT_SECONDARY_DIR = Path.home() / ".local" / "share" / "PollyMC"
DEFAULT_INSTANCE_PREFIX = "latestUpdate"
DEFAULT_INSTANCE_GROUP = "Splitscreen"
DEFAULT_LOADER = "fabric"
DEFAULT_LWJGL_VERSION = "3.3.3"
DEFAULT_REQUIRED_MODS = ["Controllable", "Splitscreen Support"]
DEFAULT_TRANSPORTS = ["urllib", "curl", "wget"]

USER_CONFIG_DIR = Path.home() / ".config" / "mcsplit"
USER_CONFIG_FILENAME = "config.json"
USER_CONFIG_PATH = USER_CONFIG_DIR / USER_CONFIG_FILENAME


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class CatalogSource(str, Enum):
    MODRINTH = "modrinth"
    CURSEFORGE = "curseforge"


class ModSelection(BaseModel):
    id: str
    name: str
    source: CatalogSource = CatalogSource.MODRINTH
    url: Optional[str] = None


class FileConfig(BaseModel):
    mc_version: Optional[str] = None
    loader_version: Optional[str] = None
    lwjgl_version: str = DEFAULT_LWJGL_VERSION
    loader: str = DEFAULT_LOADER
    target_dir: Optional[Path] = None
    secondary_dir: Optional[Path] = None
    instance_prefix: str = DEFAULT_INSTANCE_PREFIX
    instance_group: str = DEFAULT_INSTANCE_GROUP
    launcher_executable: Optional[Path] = None
    required_mods: List[str] = Field(default_factory=lambda: list(DEFAULT_REQUIRED_MODS))
    mods: List[ModSelection] = Field(default_factory=list)
    api_user_agent: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    http_timeout: float = 15.0
    download_timeout: float = 120.0
    transports: List[str] = Field(default_factory=lambda: list(DEFAULT_TRANSPORTS))
    resolve_workers: int = 1


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MCSPLIT_", extra="ignore")

    root: Optional[Path] = None
    mc_version: Optional[str] = None
    loader_version: Optional[str] = None
    lwjgl_version: Optional[str] = None
    target_dir: Optional[Path] = None
    secondary_dir: Optional[Path] = None
    launcher_executable: Optional[Path] = None
    api_user_agent: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    http_timeout: Optional[float] = None
    resolve_workers: Optional[int] = None


class SplitConfig(BaseModel):
    root: Path
    mc_version: Optional[str] = None
    loader_version: Optional[str] = None
    lwjgl_version: str
    loader: str
    target_dir: Path
    secondary_dir: Path
    instance_prefix: str
    instance_group: str
    launcher_executable: Optional[Path] = None
    required_mods: List[str]
    mods: List[ModSelection]
    api_user_agent: str
    curseforge_api_key: Optional[str] = None
    http_timeout: float
    download_timeout: float
    transports: List[str]
    resolve_workers: int = 1

    @property
    def instances_dir(self) -> Path:
        return self.target_dir / "instances"

    @property
    def secondary_instances_dir(self) -> Path:
        return self.secondary_dir / "instances"


class UserConfig(BaseModel):
    workspace_root: Optional[Path] = None


def _coerce_path(base: Path, value: Path | str) -> Path:
    path = value if isinstance(value, Path) else Path(value)
    path = path.expanduser()
    return path if path.is_absolute() else (base / path).resolve()


def load_user_config() -> UserConfig:
    if not USER_CONFIG_PATH.exists():
        return UserConfig()
    try:
        data = json.loads(USER_CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:  # pragma: no cover - config errors are user-facing
        raise ConfigError(f"Invalid JSON in {USER_CONFIG_PATH}: {exc}") from exc
    return UserConfig(**data)


def save_user_config(cfg: UserConfig) -> Path:
    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    USER_CONFIG_PATH.write_text(cfg.model_dump_json(indent=2))
    return USER_CONFIG_PATH


def _resolve_initial_root(root: Path | None, user_cfg: UserConfig) -> Path:
    if root is not None:
        return Path(root).expanduser().resolve()

    cwd = Path.cwd().resolve()
    if (cwd / DEFAULT_CONFIG_FILENAME).exists():
        return cwd

    if user_cfg.workspace_root is not None:
        return Path(user_cfg.workspace_root).expanduser().resolve()

    return cwd


def _load_file_config(path: Path) -> FileConfig:
    if not path.exists():
        # Environment variables alone are enough to run.
        return FileConfig()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    try:
        return FileConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc


def load_config(
    root: Path | None = None,
    *,
    mc_version: Optional[str] = None,
    loader_version: Optional[str] = None,
    require_versions: bool = True,
) -> SplitConfig:
    """Load configuration from CLI overrides + env + .mcsplit.json.

    Read-only views pass ``require_versions=False``; provisioning needs both versions.
    """

    user_cfg = load_user_config()
    workspace_root = _resolve_initial_root(root, user_cfg)
    env_file = workspace_root / DEFAULT_ENV_FILENAME
    env_settings = EnvSettings(
        _env_file=env_file if env_file.exists() else None,
    )

    if env_settings.root:
        workspace_root = _coerce_path(workspace_root, env_settings.root)

    file_cfg = _load_file_config(workspace_root / DEFAULT_CONFIG_FILENAME)

    resolved_mc_version = mc_version or env_settings.mc_version or file_cfg.mc_version
    if require_versions and not resolved_mc_version:
        raise ConfigError(
            f"mc_version is not set. Add it to {DEFAULT_CONFIG_FILENAME}, set MCSPLIT_MC_VERSION or pass --mc-version."
        )
    resolved_loader_version = loader_version or env_settings.loader_version or file_cfg.loader_version
    if require_versions and not resolved_loader_version:
        raise ConfigError(
            f"loader_version is not set. Add it to {DEFAULT_CONFIG_FILENAME}, set MCSPLIT_LOADER_VERSION or pass --loader-version."
        )

    target_dir = env_settings.target_dir or file_cfg.target_dir or workspace_root
    secondary_dir = env_settings.secondary_dir or file_cfg.secondary_dir or DEFAULT_SECONDARY_DIR
    launcher_executable = env_settings.launcher_executable or file_cfg.launcher_executable

    return SplitConfig(
        root=workspace_root,
        mc_version=resolved_mc_version,
        loader_version=resolved_loader_version,
        lwjgl_version=env_settings.lwjgl_version or file_cfg.lwjgl_version,
        loader=file_cfg.loader,
        target_dir=_coerce_path(workspace_root, target_dir),
        secondary_dir=_coerce_path(workspace_root, secondary_dir),
        instance_prefix=file_cfg.instance_prefix,
        instance_group=file_cfg.instance_group,
        launcher_executable=_coerce_path(workspace_root, launcher_executable) if launcher_executable else None,
        required_mods=file_cfg.required_mods,
        mods=file_cfg.mods,
        api_user_agent=env_settings.api_user_agent or file_cfg.api_user_agent or "mcsplit/dev",
        curseforge_api_key=env_settings.curseforge_api_key or file_cfg.curseforge_api_key,
        http_timeout=env_settings.http_timeout or file_cfg.http_timeout,
        download_timeout=file_cfg.download_timeout,
        transports=file_cfg.transports,
        resolve_workers=max(1, env_settings.resolve_workers or file_cfg.resolve_workers),
    )
