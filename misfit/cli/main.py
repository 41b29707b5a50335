"""Main CLI application for Misfit."""

import logging
import os
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from misfit import __version__
from misfit.config.parser import load_manifest, load_settings
from misfit.config.schemas import EngineSettings, InstallManifest
from misfit.core.backup import BackupManager, default_backup_root, restore_for_app
from misfit.core.builder import build_distributable, inspect_build_target
from misfit.core.installer import install_from
from misfit.core.locator import (
    get_app_mode,
    resolve_manifest_info,
    resolve_payload_root,
    scan_folders,
)
from misfit.errors import MisfitError
from misfit.utils.paths import backup_namespace, normalize_relative
from misfit.utils.platform import get_documents_directory, get_home_directory

# Create the main Typer app
app = typer.Typer(
    name="misfit",
    help="Manifest-driven installer with recoverable backups",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

# Set up logger for the misfit package
logger = logging.getLogger("misfit")


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2+=DEBUG
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]\u2713[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]\u26a0[/yellow] {message}")


def print_log_line(message: str) -> None:
    """Log sink printing engine progress lines."""
    console.print(f"  {message}", highlight=False)


def get_settings(ctx: typer.Context, backup_root: Path | None = None) -> EngineSettings:
    """Get the settings loaded by the callback, applying a backup root override."""
    settings: EngineSettings = ctx.obj
    if backup_root is not None:
        settings = settings.model_copy(update={"backup_root": backup_root.resolve()})
    return settings


def get_manifest(path: Path) -> InstallManifest:
    """Load a manifest, exiting with an error message on failure."""
    try:
        return load_manifest(path)
    except MisfitError as e:
        print_error(str(e))
        raise typer.Exit(1) from e


def manifest_search_paths(settings: EngineSettings) -> list[Path]:
    """Folders searched for a bundled manifest."""
    if settings.manifest_search_paths:
        return list(settings.manifest_search_paths)
    return [Path.cwd(), Path(sys.argv[0]).resolve().parent]


def locate_payload_root(manifest: InstallManifest, bases: list[Path]) -> Path:
    """Find the folder a bundled manifest's payloadDir lives in.

    Searches the given bases, then the documents and home folders. Falls
    back to the first base when the payload folder is not found.
    """
    search = [*bases, get_documents_directory(), Path(get_home_directory())]
    found = resolve_payload_root(manifest.payload_dir, search)
    if found is None:
        return bases[0]
    depth = len(normalize_relative(manifest.payload_dir).parts)
    logger.debug("Found payload folder %s", found)
    return found.parents[depth - 1]


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug)",
        ),
    ] = 0,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Settings file (defaults to $MISFIT_CONFIG or ./misfit.yaml)",
        ),
    ] = None,
) -> None:
    """Misfit - manifest-driven installer with recoverable backups."""
    setup_logging(verbose)
    try:
        ctx.obj = load_settings(config)
    except MisfitError as e:
        print_error(str(e))
        raise typer.Exit(1) from e


@app.command()
def version() -> None:
    """Show the Misfit version."""
    console.print(f"misfit {__version__}")


@app.command()
def show(
    manifest_path: Annotated[
        Path,
        typer.Argument(help="Path to install.manifest.json"),
    ],
) -> None:
    """Show a manifest and its install steps."""
    manifest = get_manifest(manifest_path)

    console.print(f"[bold]{manifest.app_name}[/bold] {manifest.version}")
    console.print(f"  Publisher: {manifest.publisher}")
    console.print(f"  Description: {manifest.description}")
    console.print(f"  Targets: {', '.join(manifest.targets) or '-'}")
    console.print(f"  Payload: {manifest.payload_dir}")
    if manifest.is_advanced:
        console.print("  [yellow]Advanced mode[/yellow]")
    console.print()

    table = Table(title="Install steps")
    table.add_column("#", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Details")
    for index, step in enumerate(manifest.install_steps, start=1):
        details = step.model_dump(by_alias=True, exclude={"type"}, exclude_none=True)
        table.add_row(str(index), step.type, ", ".join(f"{k}={v!r}" for k, v in details.items()))
    console.print(table)


@app.command()
def install(
    ctx: typer.Context,
    manifest_path: Annotated[
        Path | None,
        typer.Argument(help="Path to install.manifest.json (searched for when omitted)"),
    ] = None,
    payload_root: Annotated[
        Path | None,
        typer.Option(
            "--payload-root",
            "-P",
            help="Folder the manifest's payloadDir is relative to",
        ),
    ] = None,
    backup_root: Annotated[
        Path | None,
        typer.Option(
            "--backup-root",
            "-b",
            help="Folder holding backup namespaces",
        ),
    ] = None,
) -> None:
    """Run a manifest's install steps.

    Files that patch, JSON and base64 steps modify are backed up first.
    Use 'misfit restore' to undo an install.
    """
    settings = get_settings(ctx, backup_root)

    project_root: Path | None = None
    if manifest_path is None:
        located = resolve_manifest_info(manifest_search_paths(settings))
        if located is None:
            print_error("Manifest not found")
            raise typer.Exit(1)
        manifest_path, project_root = located

    manifest = get_manifest(manifest_path)
    manifest_dir = manifest_path.resolve().parent

    if payload_root is None and project_root is not None:
        payload_root = locate_payload_root(manifest, [project_root, *manifest_search_paths(settings)])
    elif payload_root is None and manifest_dir.name.lower() == "manifests":
        # a built project keeps its payloads beside the manifests folder
        payload_root = manifest_dir.parent

    console.print(f"Installing {manifest.app_name} {manifest.version}...")
    try:
        result = install_from(
            manifest,
            manifest_dir,
            payload_root=payload_root.resolve() if payload_root else None,
            settings=settings,
            log=print_log_line,
        )
    except MisfitError as e:
        print_error(str(e))
        raise typer.Exit(1) from e

    print_success(f"Installed {result.app_name} ({result.steps_run} step(s))")
    if result.backup_dir is not None:
        console.print(f"  Backup: {result.backup_dir}")


@app.command()
def restore(
    ctx: typer.Context,
    app_name: Annotated[
        str | None,
        typer.Option(
            "--app-name",
            "-a",
            help="Application whose latest backup to restore",
        ),
    ] = None,
    backup_root: Annotated[
        Path | None,
        typer.Option(
            "--backup-root",
            "-b",
            help="Folder holding backup namespaces",
        ),
    ] = None,
) -> None:
    """Restore the most recent backup."""
    settings = get_settings(ctx, backup_root)
    try:
        restored_from = restore_for_app(app_name, settings, log=print_log_line)
    except MisfitError as e:
        print_error(str(e))
        raise typer.Exit(1) from e
    print_success(f"Restored from {restored_from}")


@app.command()
def backups(
    ctx: typer.Context,
    app_name: Annotated[
        str | None,
        typer.Option(
            "--app-name",
            "-a",
            help="Application whose backups to list",
        ),
    ] = None,
    backup_root: Annotated[
        Path | None,
        typer.Option(
            "--backup-root",
            "-b",
            help="Folder holding backup namespaces",
        ),
    ] = None,
) -> None:
    """List backups, oldest first."""
    settings = get_settings(ctx, backup_root)
    root = default_backup_root(settings)
    if app_name is not None:
        root = root / backup_namespace(app_name)

    found = BackupManager(root).list_backups()
    if not found:
        console.print(f"No backups in {root}")
        return

    table = Table(title=str(root))
    table.add_column("Backup", style="cyan")
    table.add_column("Entries", justify="right")
    for info in found:
        entries = str(info.entry_count) if info.complete else "[red]incomplete[/red]"
        table.add_row(info.name, entries)
    console.print(table)


def _parse_payload_option(value: str) -> tuple[str, str]:
    if "=" not in value:
        print_error(f"Payload must be SRC=DEST: {value}")
        raise typer.Exit(1)
    src, dest = value.split("=", 1)
    return src, dest


@app.command()
def build(
    ctx: typer.Context,
    manifest_path: Annotated[
        Path,
        typer.Argument(help="Path to install.manifest.json"),
    ],
    name: Annotated[
        str,
        typer.Option(
            "--name",
            "-n",
            help="Output folder name (absolute path allowed in advanced mode)",
        ),
    ],
    payload: Annotated[
        list[str] | None,
        typer.Option(
            "--payload",
            "-p",
            help="Payload to bundle as SRC=DEST (DEST relative to payloadDir); repeatable",
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Overwrite an absolute output folder without a .misfit-studio marker",
        ),
    ] = False,
    launcher: Annotated[
        Path | None,
        typer.Option(
            "--launcher",
            "-l",
            help="Program copied into the output and named after the project",
        ),
    ] = None,
) -> None:
    """Build a distributable folder from a manifest and its payloads."""
    settings = get_settings(ctx)
    manifest = get_manifest(manifest_path)
    payload_files = [_parse_payload_option(p) for p in payload or []]

    try:
        output = build_distributable(
            manifest,
            payload_files,
            name,
            settings=settings,
            force_overwrite=force,
            launcher=launcher,
            log=print_log_line,
        )
    except MisfitError as e:
        print_error(str(e))
        raise typer.Exit(1) from e
    print_success(f"Built {output}")


@app.command()
def inspect(
    ctx: typer.Context,
    manifest_path: Annotated[
        Path,
        typer.Argument(help="Path to install.manifest.json"),
    ],
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Output folder name"),
    ],
) -> None:
    """Show where a build would be written."""
    settings = get_settings(ctx)
    manifest = get_manifest(manifest_path)
    try:
        info = inspect_build_target(manifest, name, settings)
    except MisfitError as e:
        print_error(str(e))
        raise typer.Exit(1) from e

    console.print(f"Path: {info.path}")
    console.print(f"  Exists: {info.exists}")
    console.print(f"  Has marker: {info.has_marker}")
    console.print(f"  Absolute: {info.is_absolute}")
    if info.exists and info.is_absolute and not info.has_marker:
        print_warning("Existing folder has no .misfit-studio marker; build needs --force")


@app.command()
def scan(
    root: Annotated[
        Path,
        typer.Argument(help="Folder whose subfolders to list"),
    ],
) -> None:
    """List the subfolders of a folder, sorted by name."""
    try:
        entries = scan_folders(root)
    except MisfitError as e:
        print_error(str(e))
        raise typer.Exit(1) from e

    if not entries:
        console.print(f"No folders in {root}")
        return

    for entry in entries:
        console.print(f"{entry.name}  {entry.path}", highlight=False, markup=False)


@app.command()
def mode(ctx: typer.Context) -> None:
    """Show whether this launch runs as installer or studio."""
    settings = get_settings(ctx)
    console.print(get_app_mode(sys.argv[1:], os.environ, manifest_search_paths(settings)))


if __name__ == "__main__":
    app()
