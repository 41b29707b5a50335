"""Tests for misfit.config.parser module."""

import json
from pathlib import Path
from typing import Any

import pytest

from misfit.config.parser import (
    BACKUP_ROOT_ENV,
    DIST_ROOT_ENV,
    SETTINGS_ENV,
    load_json,
    load_manifest,
    load_settings,
    load_yaml,
    manifest_to_dict,
    save_json,
    save_manifest,
)
from misfit.errors import NotFound, ParseError


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
    """Isolate settings lookup from the developer's environment."""
    for name in (SETTINGS_ENV, BACKUP_ROOT_ENV, DIST_ROOT_ENV):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(temp_dir)


class TestLoadManifest:
    """Tests for load_manifest function."""

    def test_loads_valid_manifest(self, temp_dir: Path, sample_manifest_data: dict[str, Any], write_manifest):
        """A valid document parses into a manifest."""
        path = write_manifest(temp_dir, sample_manifest_data)
        manifest = load_manifest(path)
        assert manifest.app_name == "Sample App"
        assert manifest.install_steps[0].type == "copy"

    def test_ignores_byte_order_mark(self, temp_dir: Path, sample_manifest_data: dict[str, Any]):
        """A UTF-8 BOM at the start of the file is skipped."""
        path = temp_dir / "bom.json"
        path.write_bytes(b"\xef\xbb\xbf" + json.dumps(sample_manifest_data).encode("utf-8"))
        assert load_manifest(path).app_name == "Sample App"

    def test_missing_file(self, temp_dir: Path):
        """A missing manifest raises NotFound."""
        with pytest.raises(NotFound):
            load_manifest(temp_dir / "missing.json")

    def test_invalid_json_includes_excerpt(self, temp_dir: Path):
        """Malformed JSON reports the path and a content excerpt."""
        path = temp_dir / "broken.json"
        text = '{"appName": "Broken", ' + "x" * 100
        path.write_text(text, encoding="utf-8")

        with pytest.raises(ParseError) as exc_info:
            load_manifest(path)

        assert exc_info.value.path == path
        assert exc_info.value.excerpt == text[:50]
        assert "Content snippet" in str(exc_info.value)

    def test_schema_mismatch(self, temp_dir: Path, sample_manifest_data: dict[str, Any], write_manifest):
        """A structurally valid document with the wrong shape fails to parse."""
        del sample_manifest_data["appName"]
        path = write_manifest(temp_dir, sample_manifest_data)
        with pytest.raises(ParseError, match="Failed to parse manifest"):
            load_manifest(path)


class TestSaveManifest:
    """Tests for save_manifest and manifest_to_dict."""

    def test_writes_camel_case_without_nulls(self, temp_dir: Path, sample_manifest):
        """Saved manifests use camelCase and omit unset optional fields."""
        path = temp_dir / "out" / "install.manifest.json"
        save_manifest(path, sample_manifest)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["appName"] == "Sample App"
        assert data["payloadDir"] == "payloads"
        assert "advancedMode" not in data
        assert load_manifest(path) == sample_manifest

    def test_manifest_to_dict(self, sample_manifest):
        """Step variants keep their type tag."""
        data = manifest_to_dict(sample_manifest)
        assert [s["type"] for s in data["installSteps"]] == ["copy", "setJsonValue"]


class TestJsonFiles:
    """Tests for load_json and save_json."""

    def test_save_pretty_prints(self, temp_dir: Path):
        """Output is indented with a trailing newline and keeps unicode."""
        path = temp_dir / "data.json"
        save_json(path, {"name": "café", "n": [1, 2]})

        text = path.read_text(encoding="utf-8")
        assert text.endswith("}\n")
        assert '  "name": "café"' in text
        assert load_json(path) == {"name": "café", "n": [1, 2]}

    def test_load_invalid(self, temp_dir: Path):
        """Invalid JSON raises ParseError."""
        path = temp_dir / "bad.json"
        path.write_text("{nope", encoding="utf-8")
        with pytest.raises(ParseError, match="Invalid JSON"):
            load_json(path)


class TestLoadYaml:
    """Tests for load_yaml function."""

    def test_empty_file(self, temp_dir: Path):
        """An empty file is an empty mapping."""
        path = temp_dir / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_non_mapping(self, temp_dir: Path):
        """A list at the top level is rejected."""
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ParseError, match="mapping"):
            load_yaml(path)

    def test_invalid_yaml(self, temp_dir: Path):
        """Malformed YAML raises ParseError."""
        path = temp_dir / "bad.yaml"
        path.write_text("key: [unclosed\n")
        with pytest.raises(ParseError, match="Invalid YAML"):
            load_yaml(path)


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_defaults_without_file(self):
        """No settings file means defaults."""
        settings = load_settings()
        assert settings.backup_root is None
        assert settings.dist_root is None

    def test_explicit_file(self, temp_dir: Path):
        """An explicit file is loaded."""
        path = temp_dir / "custom.yaml"
        path.write_text(f"backup_root: {temp_dir / 'b'}\nmanifest_search_paths:\n  - {temp_dir}\n")
        settings = load_settings(path)
        assert settings.backup_root == temp_dir / "b"
        assert settings.manifest_search_paths == [temp_dir]

    def test_explicit_missing_file(self, temp_dir: Path):
        """An explicitly requested file must exist."""
        with pytest.raises(NotFound):
            load_settings(temp_dir / "missing.yaml")

    def test_env_pointer(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch):
        """$MISFIT_CONFIG names the settings file."""
        path = temp_dir / "env.yaml"
        path.write_text(f"dist_root: {temp_dir / 'd'}\n")
        monkeypatch.setenv(SETTINGS_ENV, str(path))
        assert load_settings().dist_root == temp_dir / "d"

    def test_cwd_file(self, temp_dir: Path):
        """./misfit.yaml is picked up."""
        (temp_dir / "misfit.yaml").write_text(f"backup_root: {temp_dir / 'cwd'}\n")
        assert load_settings().backup_root == temp_dir / "cwd"

    def test_env_overrides_file(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch):
        """Root overrides from the environment win over file values."""
        path = temp_dir / "s.yaml"
        path.write_text(f"backup_root: {temp_dir / 'file'}\n")
        monkeypatch.setenv(BACKUP_ROOT_ENV, str(temp_dir / "env"))
        assert load_settings(path).backup_root == temp_dir / "env"

    def test_unknown_key(self, temp_dir: Path):
        """Unknown keys are reported as a parse error."""
        path = temp_dir / "s.yaml"
        path.write_text("bakup_root: /tmp\n")
        with pytest.raises(ParseError, match="Invalid settings"):
            load_settings(path)
