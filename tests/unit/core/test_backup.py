"""Tests for misfit.core.backup module."""

import json
import re
from pathlib import Path

import pytest

from misfit.config.schemas import EngineSettings
from misfit.core.backup import (
    RESTORE_MAP_FILE,
    BackupManager,
    default_backup_root,
    restore_for_app,
)
from misfit.errors import NoBackupsFound, ParseError, RestoreMapMissing
from misfit.utils.paths import backup_relative_path


def _make_backup(root: Path, name: str, entries: dict[str, str] | None) -> Path:
    """Create a backup directory by hand, optionally with a restore map."""
    backup_dir = root / name
    backup_dir.mkdir(parents=True)
    if entries is not None:
        (backup_dir / RESTORE_MAP_FILE).write_text(json.dumps(entries), encoding="utf-8")
    return backup_dir


class TestSnapshot:
    """Tests for BackupManager.snapshot."""

    def test_mirrors_files_and_writes_map(self, temp_dir: Path):
        """Each file is mirrored under abs/ and indexed in the restore map."""
        target = temp_dir / "app" / "config.json"
        target.parent.mkdir()
        target.write_text('{"a": 1}', encoding="utf-8")

        backup_dir = BackupManager(temp_dir / "backups").snapshot([target])

        assert re.fullmatch(r"backup_\d{8}_\d{6}", backup_dir.name)
        rel = backup_relative_path(target)
        assert (backup_dir / rel).read_text(encoding="utf-8") == '{"a": 1}'

        restore_map = json.loads((backup_dir / RESTORE_MAP_FILE).read_text(encoding="utf-8"))
        assert restore_map == {rel.as_posix(): str(target.resolve())}

    def test_skips_missing_paths(self, temp_dir: Path):
        """Paths that do not exist yet are not recorded."""
        backup_dir = BackupManager(temp_dir / "backups").snapshot([temp_dir / "missing.json"])
        restore_map = json.loads((backup_dir / RESTORE_MAP_FILE).read_text(encoding="utf-8"))
        assert restore_map == {}

    def test_backs_up_directories(self, temp_dir: Path):
        """Directories are mirrored recursively."""
        folder = temp_dir / "folder"
        (folder / "sub").mkdir(parents=True)
        (folder / "sub" / "f.txt").write_text("f")

        backup_dir = BackupManager(temp_dir / "backups").snapshot([folder])
        assert (backup_dir / backup_relative_path(folder) / "sub" / "f.txt").read_text() == "f"

    def test_log_sink_receives_lines(self, temp_dir: Path):
        """One line per backed-up file is sent to the sink."""
        target = temp_dir / "f.txt"
        target.write_text("x")
        lines: list[str] = []

        BackupManager(temp_dir / "backups", log=lines.append).snapshot([target])
        assert lines == [f"Backed up {target}"]


class TestListAndLatest:
    """Tests for list_backups and latest_backup."""

    def test_latest_is_lexicographically_greatest(self, temp_dir: Path):
        """Timestamps sort lexicographically, so the greatest name wins."""
        root = temp_dir / "backups"
        _make_backup(root, "backup_20240101_120000", {})
        newest = _make_backup(root, "backup_20250101_000000", {})
        _make_backup(root, "backup_20241231_235959", {})
        (root / "not_a_backup").mkdir()

        assert BackupManager(root).latest_backup() == newest

    def test_latest_without_root(self, temp_dir: Path):
        """A missing root raises NoBackupsFound."""
        with pytest.raises(NoBackupsFound):
            BackupManager(temp_dir / "missing").latest_backup()

    def test_latest_with_empty_root(self, temp_dir: Path):
        """An empty root raises NoBackupsFound."""
        (temp_dir / "empty").mkdir()
        with pytest.raises(NoBackupsFound):
            BackupManager(temp_dir / "empty").latest_backup()

    def test_list_marks_incomplete(self, temp_dir: Path):
        """Backups without a restore map are listed as incomplete."""
        root = temp_dir / "backups"
        _make_backup(root, "backup_20240101_000000", {"abs/a": "/a", "abs/b": "/b"})
        _make_backup(root, "backup_20240102_000000", None)

        found = BackupManager(root).list_backups()

        assert [b.name for b in found] == ["backup_20240101_000000", "backup_20240102_000000"]
        assert found[0].entry_count == 2 and found[0].complete
        assert found[1].entry_count is None and not found[1].complete

    def test_list_missing_root(self, temp_dir: Path):
        """A missing root lists nothing."""
        assert BackupManager(temp_dir / "missing").list_backups() == []


class TestRestoreLatest:
    """Tests for BackupManager.restore_latest."""

    def test_restores_modified_file(self, temp_dir: Path):
        """A file changed after the snapshot is put back byte for byte."""
        target = temp_dir / "settings.json"
        target.write_bytes(b'{"a": 1}\r\n')
        manager = BackupManager(temp_dir / "backups")
        backup_dir = manager.snapshot([target])

        target.write_text("changed")
        assert manager.restore_latest() == backup_dir
        assert target.read_bytes() == b'{"a": 1}\r\n'

    def test_recreates_deleted_file(self, temp_dir: Path):
        """A file deleted after the snapshot is recreated."""
        target = temp_dir / "deep" / "f.txt"
        target.parent.mkdir()
        target.write_text("orig")
        manager = BackupManager(temp_dir / "backups")
        manager.snapshot([target])

        target.unlink()
        target.parent.rmdir()
        manager.restore_latest()
        assert target.read_text() == "orig"

    def test_skips_missing_mirror_entries(self, temp_dir: Path):
        """Map entries without a mirrored copy are skipped."""
        root = temp_dir / "backups"
        destination = temp_dir / "never.txt"
        _make_backup(root, "backup_20240101_000000", {"abs/nothing/here": str(destination)})

        BackupManager(root).restore_latest()
        assert not destination.exists()

    def test_missing_restore_map(self, temp_dir: Path):
        """The latest backup must have a restore map, even if older ones do."""
        root = temp_dir / "backups"
        _make_backup(root, "backup_20240101_000000", {})
        _make_backup(root, "backup_20240102_000000", None)

        with pytest.raises(RestoreMapMissing):
            BackupManager(root).restore_latest()

    def test_malformed_restore_map(self, temp_dir: Path):
        """A restore map that is not an object of strings is rejected."""
        root = temp_dir / "backups"
        backup_dir = _make_backup(root, "backup_20240101_000000", None)
        (backup_dir / RESTORE_MAP_FILE).write_text('{"abs/a": 1}', encoding="utf-8")

        with pytest.raises(ParseError):
            BackupManager(root).restore_latest()


class TestDefaultBackupRoot:
    """Tests for default_backup_root function."""

    def test_uses_settings(self, settings: EngineSettings, temp_dir: Path):
        """A configured backup root wins."""
        assert default_backup_root(settings) == temp_dir / "backups"

    def test_falls_back_to_documents(self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path):
        """Without settings the root lives under the documents folder."""
        monkeypatch.setattr("misfit.core.backup.get_documents_directory", lambda: temp_dir)
        assert default_backup_root() == temp_dir / "MisfitBackups"


class TestRestoreForApp:
    """Tests for restore_for_app function."""

    def test_restores_from_app_namespace(self, temp_dir: Path, settings: EngineSettings):
        """The app's own namespace is used when it has backups."""
        target = temp_dir / "f.txt"
        target.write_text("orig")
        backup_dir = BackupManager(temp_dir / "backups" / "My_App").snapshot([target])
        target.write_text("changed")
        lines: list[str] = []

        assert restore_for_app("My App", settings, log=lines.append) == backup_dir
        assert target.read_text() == "orig"
        assert lines[0] == f"Attempting restore from {temp_dir / 'backups' / 'My_App'}"
        assert lines[-1] == f"Restored successfully from {backup_dir}"

    def test_falls_back_to_shared_root(self, temp_dir: Path, settings: EngineSettings):
        """Without app backups the shared root is tried."""
        target = temp_dir / "f.txt"
        target.write_text("orig")
        backup_dir = BackupManager(temp_dir / "backups").snapshot([target])
        target.write_text("changed")
        lines: list[str] = []

        assert restore_for_app("Other", settings, log=lines.append) == backup_dir
        assert target.read_text() == "orig"
        assert any("falling back" in line for line in lines)

    def test_no_backups_anywhere(self, settings: EngineSettings):
        """With nothing to restore the error propagates."""
        with pytest.raises(NoBackupsFound):
            restore_for_app("App", settings)

    def test_without_app_name_uses_root(self, temp_dir: Path, settings: EngineSettings):
        """No app name means the shared root only."""
        with pytest.raises(NoBackupsFound):
            restore_for_app(None, settings)
