from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import config as config_module
from . import instances as instances_module
from . import logs as logs_module
from . import provision as provision_module
from .catalog import ModUrlResolver, TransportError, select_transport
from .config import (
    DEFAULT_CONFIG_FILENAME,
    CatalogSource,
    ConfigError,
    SplitConfig,
    load_config,
    load_user_config,
    save_user_config,
)
from .provision import ProvisionReport, SlotStatus

app = typer.Typer(help="Minecraft split-screen instance provisioner (mcsplit)")
user_config_app = typer.Typer(help="Manage user-level defaults")

app.add_typer(user_config_app, name="config")

_rich_console = Console()
_rich_err_console = Console(stderr=True)


def _fail(message: str, code: int = 1) -> None:
    typer.secho(message, err=True, fg="red")
    raise typer.Exit(code=code)


def _load_or_exit(
    root: Path | None = None,
    *,
    mc_version: Optional[str] = None,
    loader_version: Optional[str] = None,
    require_versions: bool = True,
) -> SplitConfig:
    try:
        return load_config(
            root=root,
            mc_version=mc_version,
            loader_version=loader_version,
            require_versions=require_versions,
        )
    except ConfigError as exc:
        _fail(str(exc), code=2)


def _root(ctx: typer.Context) -> Optional[Path]:
    if ctx.obj is None:
        ctx.obj = {}
    return ctx.obj.get("root")


def _load_user_config_or_exit():
    try:
        return load_user_config()
    except ConfigError as exc:
        _fail(str(exc), code=2)


@user_config_app.command("show")
def user_config_show():
    """Display the user-level defaults stored under ~/.config."""
    cfg = _load_user_config_or_exit()
    table = Table(title="User config", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Workspace root", str(cfg.workspace_root) if cfg.workspace_root else "(not set)")
    table.add_row("File", str(config_module.USER_CONFIG_PATH))
    _rich_console.print(table)


@user_config_app.command("set-root")
def user_config_set_root(
    path: Path = typer.Argument(..., help="Path to the launcher data directory (contains .mcsplit.json)"),
):
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        _fail(f"{resolved} does not exist.")
    if not resolved.is_dir():
        _fail(f"{resolved} is not a directory.")
    config_file = resolved / DEFAULT_CONFIG_FILENAME
    if not config_file.exists():
        typer.secho(
            f"Warning: {config_file} does not exist yet. Commands need MCSPLIT_* variables until it's created.",
            fg="yellow",
        )
    cfg = _load_user_config_or_exit()
    cfg.workspace_root = resolved
    save_user_config(cfg)
    typer.secho(f"Default workspace root set to {resolved}", fg="green")
    typer.secho(f"Saved to {config_module.USER_CONFIG_PATH}", fg="cyan")


@user_config_app.command("clear-root")
def user_config_clear_root():
    cfg = _load_user_config_or_exit()
    cfg.workspace_root = None
    save_user_config(cfg)
    typer.secho("Cleared stored workspace root.", fg="yellow")


@app.callback()
def main(
    ctx: typer.Context,
    root: Path = typer.Option(None, "--root", help="Optional explicit workspace root directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output, including resolver tiers"),
):
    ctx.obj = ctx.obj or {}
    ctx.obj["root"] = root
    logs_module.configure_logging(verbose=verbose, console=_rich_err_console)


_STATE_STYLES = {
    instances_module.SlotState.ABSENT: "bright_black",
    instances_module.SlotState.EXISTING_FRESH: "yellow",
    instances_module.SlotState.EXISTING_FOR_UPDATE: "cyan",
}

_STATUS_STYLES = {
    SlotStatus.DONE: "green",
    SlotStatus.DEGRADED: "yellow",
    SlotStatus.FAILED: "red",
}


def _print_report(report: ProvisionReport) -> None:
    table = Table(title="Instances", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Slot", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Found as")
    table.add_column("Result")
    table.add_column("Options")
    table.add_column("Detail")
    for slot in report.slots:
        detail = slot.error or slot.created_by or "-"
        if slot.stage:
            detail = f"[{slot.stage}] {detail}"
        table.add_row(
            str(slot.index),
            slot.name,
            Text(slot.entry_state.value, style=_STATE_STYLES.get(slot.entry_state, "white")),
            Text(slot.status.value, style=_STATUS_STYLES.get(slot.status, "white")),
            "preserved" if slot.preserved_options else "default",
            detail,
        )
    _rich_console.print(table)

    if not report.missing:
        typer.secho("All selected mods were installed.", fg="green")
        return

    missing_table = Table(title="Missing mods", box=box.MINIMAL)
    missing_table.add_column("Mod")
    missing_table.add_column("Kind")
    missing_table.add_column("Reason")
    for entry in report.missing.entries:
        kind = Text("required", style="bold red") if entry.required else Text("optional", style="yellow")
        missing_table.add_row(entry.name, kind, entry.reason.value)
    _rich_console.print(missing_table)
    if report.missing.required():
        typer.secho(
            "Required split-screen mods are missing; install them manually before playing.",
            err=True,
            fg="red",
        )


@app.command("provision")
def provision_command(
    ctx: typer.Context,
    mc_version: str = typer.Option(None, "--mc-version", help="Target Minecraft version"),
    loader_version: str = typer.Option(None, "--loader-version", help="Target Fabric loader version"),
    strict: bool = typer.Option(False, "--strict", help="Exit 1 when a slot failed or a required mod is missing"),
):
    """Create or update the four split-screen instances."""
    cfg = _load_or_exit(_root(ctx), mc_version=mc_version, loader_version=loader_version)
    try:
        report = provision_module.provision(cfg)
    except TransportError as exc:
        _fail(str(exc))
    _print_report(report)
    if strict and not report.ok:
        raise typer.Exit(code=1)


@app.command("instances")
def instances_command(ctx: typer.Context):
    """Show where each instance slot was found, without changing anything."""
    cfg = _load_or_exit(_root(ctx), require_versions=False)
    slots = instances_module.locate(cfg, migrate=False)
    table = Table(title="Instance slots", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Slot", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("State")
    table.add_column("Location", style="dim")
    for index in sorted(slots):
        slot = slots[index]
        table.add_row(
            str(index),
            slot.name,
            Text(slot.state.value, style=_STATE_STYLES.get(slot.state, "white")),
            str(slot.instance_dir),
        )
    _rich_console.print(table)


@app.command("resolve")
def resolve_command(
    ctx: typer.Context,
    catalog_id: str = typer.Argument(..., help="Modrinth project ID/slug or CurseForge mod ID"),
    source: CatalogSource = typer.Option(CatalogSource.MODRINTH, "--source", case_sensitive=False),
    mc_version: str = typer.Option(None, "--mc-version", help="Minecraft version override"),
):
    """Resolve one mod to the download URL a provisioning run would use."""
    cfg = _load_or_exit(_root(ctx), mc_version=mc_version)
    try:
        transport = select_transport(cfg.transports)
    except TransportError as exc:
        _fail(str(exc))
    resolver = ModUrlResolver.from_config(cfg, transport)
    outcome = resolver.resolve(catalog_id, source, cfg.mc_version)
    if not outcome.resolved:
        _fail(f"No {cfg.loader} build of {catalog_id} found for Minecraft {cfg.mc_version}.")
    typer.secho(f"{outcome.url}", fg="green")
    typer.secho(f"matched on: {outcome.tier}", fg="bright_black")
