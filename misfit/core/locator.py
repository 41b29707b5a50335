"""Locating bundled manifests and payload folders."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Sequence

from misfit.errors import MisfitIOError, NotFound, PathViolation
from misfit.utils.paths import normalize_relative

logger = logging.getLogger("misfit.locator")

AppMode = Literal["installer", "studio"]

MANIFEST_CANDIDATES = (
    Path("manifests") / "install.manifest.json",
    Path("install.manifest.json"),
)

SKIPPED_DIRECTORIES = frozenset(
    {
        "node_modules",
        ".git",
        "target",
        "dist",
        ".cache",
        "appdata",
        "windows",
        "program files",
        "program files (x86)",
    }
)


@dataclass
class FolderEntry:
    """A subfolder found by scan_folders."""

    name: str
    path: Path


def resolve_manifest_info(search_paths: Sequence[Path]) -> tuple[Path, Path] | None:
    """Find a bundled install manifest.

    Each base is checked for manifests/install.manifest.json, then
    install.manifest.json.

    Args:
        search_paths: Base folders in priority order

    Returns:
        (manifest path, project root) or None when no manifest exists
    """
    for base in search_paths:
        for candidate in MANIFEST_CANDIDATES:
            manifest_path = base / candidate
            if manifest_path.is_file():
                logger.debug("Found manifest at %s", manifest_path)
                return manifest_path, base
    return None


def find_payload_dir(base: Path, payload_dir: Path, depth: int) -> Path | None:
    """Search base and its subfolders (up to depth levels) for payload_dir."""
    candidate = base / payload_dir
    if candidate.exists():
        return candidate
    if depth == 0:
        return None

    try:
        entries = sorted(base.iterdir())
    except OSError:
        return None

    for entry in entries:
        if not entry.is_dir() or entry.name.lower() in SKIPPED_DIRECTORIES:
            continue
        found = find_payload_dir(entry, payload_dir, depth - 1)
        if found is not None:
            return found
    return None


def resolve_payload_root(
    payload_dir: str, bases: Sequence[Path], depth: int = 3
) -> Path | None:
    """Locate a payload folder near any of the given bases.

    Duplicate bases (compared case-insensitively) are searched once. A
    payloadDir of "." never matches.

    Returns:
        The payload folder, or None if it is not found or not a valid path
    """
    try:
        payload_rel = normalize_relative(payload_dir, allow_current=True)
    except PathViolation:
        return None
    if payload_rel == Path("."):
        return None

    seen: set[str] = set()
    for base in bases:
        key = str(base).lower()
        if key in seen:
            continue
        seen.add(key)
        found = find_payload_dir(base, payload_rel, depth)
        if found is not None:
            return found
    return None


def get_app_mode(
    argv: Sequence[str],
    environ: Mapping[str, str],
    search_paths: Sequence[Path],
) -> AppMode:
    """Decide whether to run as an installer or as the authoring studio.

    Command-line flags win over environment variables, which win over the
    presence of a bundled manifest.
    """
    for arg in argv:
        if arg.lower() == "--studio":
            return "studio"
        if arg.lower() == "--installer":
            return "installer"

    mode = environ.get("MISFIT_MODE", "").lower()
    if mode in ("studio", "installer"):
        return mode  # type: ignore[return-value]

    if environ.get("MISFIT_STUDIO", "").lower() in ("1", "true"):
        return "studio"

    return "installer" if resolve_manifest_info(search_paths) is not None else "studio"


def scan_folders(root: Path) -> list[FolderEntry]:
    """List the immediate subfolders of root, sorted case-insensitively by name.

    Files are ignored.

    Raises:
        NotFound: If root does not exist or is not a folder
        MisfitIOError: If the folder cannot be listed
    """
    if not root.exists():
        raise NotFound(f"Folder not found: {root}", root)
    if not root.is_dir():
        raise NotFound(f"Selected path is not a folder: {root}", root)

    try:
        entries = [FolderEntry(entry.name, entry) for entry in root.iterdir() if entry.is_dir()]
    except OSError as e:
        raise MisfitIOError(f"Failed to read folder {root}: {e}", root) from e
    return sorted(entries, key=lambda entry: entry.name.lower())
