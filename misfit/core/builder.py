"""Distributable builder.

Lays out a folder that the installer can run from:

    dist/<project>/
        <project><launcher suffix>     (optional launcher copy)
        manifests/install.manifest.json
        <payloadDir>/...               (payload files)

In advanced mode the project name may be an absolute folder. Such a folder
is only replaced when it carries a .misfit-studio marker (or when forced),
so an arbitrary directory is never wiped by mistake.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from misfit.config.parser import save_manifest
from misfit.config.schemas import EngineSettings, InstallManifest
from misfit.core.steps import copy_payload
from misfit.errors import MisfitIOError, NotFound, PathViolation
from misfit.utils.filesystem import ensure_directory, is_writable_directory, remove_directory
from misfit.utils.paths import normalize_relative, validate_project_name
from misfit.utils.platform import get_documents_directory

logger = logging.getLogger("misfit.builder")

OUTPUT_MARKER = ".misfit-studio"
OUTPUT_MARKER_TEXT = "Misfit Studio output"
MANIFEST_RELPATH = Path("manifests") / "install.manifest.json"
PAYLOAD_SEARCH_DEPTH = 4

LogSink = Callable[[str], None]


@dataclass
class BuildTargetInfo:
    """Where a build would be written and what is already there."""

    path: Path
    exists: bool
    has_marker: bool
    is_absolute: bool


def resolve_dist_base(settings: EngineSettings | None = None) -> Path:
    """Get a writable folder to build distributables in.

    Uses the configured dist root, else ./dist, else
    <Documents>/MisfitStudio/dist.

    Raises:
        MisfitIOError: If no candidate folder is writable
    """
    if settings is not None and settings.dist_root is not None:
        candidates = [settings.dist_root]
    else:
        candidates = [
            Path.cwd() / "dist",
            get_documents_directory() / "MisfitStudio" / "dist",
        ]

    for candidate in candidates:
        try:
            ensure_directory(candidate)
        except OSError as e:
            logger.debug("Cannot create dist folder %s: %s", candidate, e)
            continue
        if is_writable_directory(candidate):
            return candidate
        logger.debug("Dist folder not writable: %s", candidate)

    raise MisfitIOError(f"No writable dist folder found (tried {candidates[-1]})", candidates[-1])


def resolve_output_root(
    manifest: InstallManifest,
    project_name: str,
    settings: EngineSettings | None = None,
) -> tuple[Path, str, bool]:
    """Work out the output folder for a build.

    Returns:
        (output root, project folder name, whether the root is an absolute path)

    Raises:
        PathViolation: If the project name is not allowed
    """
    if manifest.is_advanced and Path(project_name).is_absolute():
        root = Path(project_name)
        if not root.name:
            raise PathViolation("Absolute output path must include a folder name", project_name)
        return root, root.name, True

    dist_base = resolve_dist_base(settings)
    name = validate_project_name(project_name)
    return dist_base / name, name, False


def inspect_build_target(
    manifest: InstallManifest,
    project_name: str,
    settings: EngineSettings | None = None,
) -> BuildTargetInfo:
    """Describe the output folder a build would use."""
    root, _name, is_absolute = resolve_output_root(manifest, project_name, settings)
    return BuildTargetInfo(
        path=root,
        exists=root.exists(),
        has_marker=(root / OUTPUT_MARKER).exists(),
        is_absolute=is_absolute,
    )


def resolve_payload_source(src: str, start: Path | None = None) -> Path:
    """Find a payload source on disk.

    Absolute paths are returned as is. Relative paths are tried against the
    start folder (default cwd) and up to four of its parents; the first match
    wins. When nothing matches the path is returned unchanged.
    """
    candidate = Path(src)
    if candidate.is_absolute():
        return candidate

    base = (start or Path.cwd()).resolve()
    bases = [base, *list(base.parents)[:PAYLOAD_SEARCH_DEPTH]]
    for b in bases:
        joined = b / src
        if joined.exists():
            return joined
    return candidate


def build_distributable(
    manifest: InstallManifest,
    payload_files: list[tuple[str, str]],
    project_name: str,
    settings: EngineSettings | None = None,
    force_overwrite: bool = False,
    launcher: Path | None = None,
    log: LogSink | None = None,
) -> Path:
    """Build a distributable folder for a manifest.

    Args:
        manifest: Manifest to bundle
        payload_files: (source path, destination relative to payloadDir) pairs
        project_name: Output folder name, or an absolute folder in advanced mode
        settings: Engine settings providing the dist root
        force_overwrite: Replace an absolute output folder without a marker
        launcher: Optional program copied into the output as <project_name>
        log: Optional sink receiving one line per file operation

    Returns:
        The output folder

    Raises:
        PathViolation: If a name or destination is not allowed, or an
            unmarked absolute output exists and force_overwrite is False
        NotFound: If a payload source or the launcher does not exist
        MisfitIOError: If writing fails
    """

    def emit(message: str) -> None:
        logger.info(message)
        if log is not None:
            log(message)

    payload_rel = normalize_relative(manifest.payload_dir, allow_current=True)
    payload_targets = [
        (src, normalize_relative(relative_dest, allow_current=False))
        for src, relative_dest in payload_files
    ]
    dist_root, name, is_absolute = resolve_output_root(manifest, project_name, settings)
    marker = dist_root / OUTPUT_MARKER

    try:
        if dist_root.exists():
            if is_absolute and not marker.exists() and not force_overwrite:
                raise PathViolation(
                    f"Refusing to overwrite folder without {OUTPUT_MARKER} marker. "
                    f"Create the folder and add {OUTPUT_MARKER} to confirm",
                    str(dist_root),
                )
            emit(f"Removing previous output {dist_root}")
            remove_directory(dist_root)
        ensure_directory(dist_root)
        if is_absolute:
            marker.write_text(OUTPUT_MARKER_TEXT, encoding="utf-8")

        if launcher is not None:
            if not launcher.is_file():
                raise NotFound(f"Launcher not found: {launcher}", launcher)
            dest_launcher = dist_root / f"{name}{launcher.suffix}"
            emit(f"Copying launcher {launcher} to {dest_launcher}")
            shutil.copy2(launcher, dest_launcher)

        manifest_path = dist_root / MANIFEST_RELPATH
        emit(f"Writing manifest {manifest_path}")
        save_manifest(manifest_path, manifest)

        payloads_dir = ensure_directory(dist_root / payload_rel)
        for src, dest_rel in payload_targets:
            src_path = resolve_payload_source(src)
            dest_path = payloads_dir / dest_rel
            if not src_path.exists():
                raise NotFound(f"Payload source not found: {src_path}", src_path)
            emit(f"Copying payload {src_path} to {dest_path}")
            copy_payload(src_path, dest_path)
    except OSError as e:
        raise MisfitIOError(f"Failed to build {dist_root}: {e}", dist_root) from e

    emit(f"Project built successfully at: {dist_root}")
    return dist_root
