"""Shared fixtures for Misfit tests."""

import json
import shutil
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from misfit.config.schemas import EngineSettings, InstallManifest
from misfit.utils.paths import StaticEnvironment


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="misfit_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def static_env(temp_dir: Path) -> StaticEnvironment:
    """Deterministic environment with a fake home directory."""
    home = temp_dir / "home"
    home.mkdir()
    return StaticEnvironment(home_dir=str(home), variables={"APP_DIR": "appdir"})


@pytest.fixture
def settings(temp_dir: Path) -> EngineSettings:
    """Engine settings pointing backups and builds into the temp directory."""
    return EngineSettings(backup_root=temp_dir / "backups", dist_root=temp_dir / "dist")


@pytest.fixture
def sample_manifest_data() -> dict[str, Any]:
    """Manifest document with one copy step and one JSON step."""
    return {
        "appName": "Sample App",
        "version": "1.0.0",
        "publisher": "Misfit",
        "description": "A sample manifest",
        "targets": ["windows", "linux"],
        "payloadDir": "payloads",
        "installSteps": [
            {"type": "copy", "src": "hello.txt", "dest": "out/hello.txt"},
            {"type": "setJsonValue", "file": "config.json", "keyPath": "a.b", "value": 42},
        ],
    }


@pytest.fixture
def sample_manifest(sample_manifest_data: dict[str, Any]) -> InstallManifest:
    """Parsed sample manifest."""
    return InstallManifest.model_validate(sample_manifest_data)


@pytest.fixture
def install_tree(temp_dir: Path) -> Path:
    """Target tree with a payload folder containing hello.txt."""
    root = temp_dir / "target"
    payloads = root / "payloads"
    payloads.mkdir(parents=True)
    (payloads / "hello.txt").write_bytes(b"hello\r\nworld\n")
    return root


@pytest.fixture
def write_manifest() -> Callable[[Path, dict[str, Any]], Path]:
    """Write a manifest document to a folder and return its path."""

    def _write(folder: Path, data: dict[str, Any]) -> Path:
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / "install.manifest.json"
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return _write
