"""Configuration file parsing utilities."""

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from misfit.config.schemas import EngineSettings, InstallManifest
from misfit.errors import MisfitIOError, NotFound, ParseError

BOM = "\ufeff"
EXCERPT_LENGTH = 50

SETTINGS_FILE = "misfit.yaml"
SETTINGS_ENV = "MISFIT_CONFIG"
BACKUP_ROOT_ENV = "MISFIT_BACKUP_ROOT"
DIST_ROOT_ENV = "MISFIT_DIST_ROOT"


def _read_text(path: Path) -> str:
    if not path.exists():
        raise NotFound(f"File not found: {path}", path)
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise MisfitIOError(f"Cannot read {path}: {e}", path) from e


def load_json(path: Path) -> Any:
    """Load and parse a JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        Parsed JSON value

    Raises:
        NotFound: If the file does not exist
        MisfitIOError: If the file cannot be read
        ParseError: If the content is not valid JSON
    """
    content = _read_text(path)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in {path}: {e}", path) from e


def save_json(path: Path, data: Any, indent: int = 2) -> None:
    """Save data to a JSON file.

    Args:
        path: Path to write to
        data: Data to serialize
        indent: JSON indentation level
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False)
        f.write("\n")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        NotFound: If the file does not exist
        ParseError: If the file cannot be parsed or is not a mapping
    """
    content = _read_text(path)
    try:
        result = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML in {path}: {e}", path) from e
    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ParseError(f"YAML file must contain a mapping: {path}", path)
    return result


def load_manifest(path: Path) -> InstallManifest:
    """Load an install manifest.

    The file is read as UTF-8 and a leading byte-order mark is ignored.

    Args:
        path: Path to the manifest JSON file

    Returns:
        Parsed InstallManifest

    Raises:
        NotFound: If the file does not exist
        MisfitIOError: If the file cannot be read
        ParseError: If the document is not valid JSON or does not match the schema
    """
    content = _read_text(path).removeprefix(BOM)
    excerpt = content[:EXCERPT_LENGTH]
    try:
        return InstallManifest.model_validate_json(content)
    except ValidationError as e:
        raise ParseError(
            f"Failed to parse manifest {path}: {e}. Content snippet: {excerpt}...",
            path,
            excerpt,
        ) from e


def manifest_to_dict(manifest: InstallManifest) -> dict[str, Any]:
    """Serialize a manifest to its camelCase JSON form."""
    return manifest.model_dump(mode="json", by_alias=True, exclude_none=True)


def save_manifest(path: Path, manifest: InstallManifest) -> None:
    """Save an install manifest as pretty-printed JSON.

    Args:
        path: Path to write to
        manifest: Manifest to save
    """
    save_json(path, manifest_to_dict(manifest))


def load_settings(path: Path | None = None) -> EngineSettings:
    """Load engine settings.

    Lookup order: the explicit path, $MISFIT_CONFIG, ./misfit.yaml. When no
    file is found the defaults are used. $MISFIT_BACKUP_ROOT and
    $MISFIT_DIST_ROOT override the corresponding file values.

    Args:
        path: Optional explicit settings file

    Returns:
        Parsed EngineSettings

    Raises:
        NotFound: If an explicitly requested file does not exist
        ParseError: If the file is invalid
    """
    data: dict[str, Any] = {}
    if path is None and os.environ.get(SETTINGS_ENV):
        path = Path(os.environ[SETTINGS_ENV])
    if path is None and Path(SETTINGS_FILE).is_file():
        path = Path(SETTINGS_FILE)
    if path is not None:
        data = load_yaml(path)

    if os.environ.get(BACKUP_ROOT_ENV):
        data["backup_root"] = os.environ[BACKUP_ROOT_ENV]
    if os.environ.get(DIST_ROOT_ENV):
        data["dist_root"] = os.environ[DIST_ROOT_ENV]

    try:
        return EngineSettings.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Invalid settings: {e}", path) from e
