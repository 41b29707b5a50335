"""Backup and restore of files touched by an install.

A backup is a directory named backup_<YYYYMMDD_HHMMSS> inside a backup root
(usually one namespace folder per application). It holds a mirror of every
backed-up path under abs/... plus a restore_map.json index that maps each
mirror path back to the original absolute path:

    <root>/backup_20250101_120000/
        abs/home/me/.config/app/settings.json
        restore_map.json

The index is written after all copies, so a backup without one is
incomplete. Backups are never pruned here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from misfit.config.parser import load_json, save_json
from misfit.config.schemas import EngineSettings
from misfit.errors import MisfitError, MisfitIOError, NoBackupsFound, ParseError, RestoreMapMissing
from misfit.utils.filesystem import copy_file, copy_tree
from misfit.utils.paths import backup_namespace, backup_relative_path
from misfit.utils.platform import get_documents_directory

logger = logging.getLogger("misfit.backup")

BACKUP_PREFIX = "backup_"
RESTORE_MAP_FILE = "restore_map.json"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
DEFAULT_BACKUP_DIRNAME = "MisfitBackups"

LogSink = Callable[[str], None]


@dataclass
class BackupInfo:
    """A backup directory found under a backup root."""

    name: str
    path: Path
    entry_count: int | None  # None when restore_map.json is missing or unreadable

    @property
    def complete(self) -> bool:
        return self.entry_count is not None


def default_backup_root(settings: EngineSettings | None = None) -> Path:
    """Get the root folder holding all backup namespaces."""
    if settings is not None and settings.backup_root is not None:
        return settings.backup_root
    return get_documents_directory() / DEFAULT_BACKUP_DIRNAME


def _copy_entry(src: Path, dest: Path) -> None:
    if src.is_dir():
        copy_tree(src, dest)
    else:
        copy_file(src, dest)


class BackupManager:
    """Creates and restores backups under a single backup root."""

    def __init__(self, backup_root: Path, log: LogSink | None = None) -> None:
        """Initialize the backup manager.

        Args:
            backup_root: Folder backup_* directories are created in
            log: Optional sink receiving one line per file operation
        """
        self.backup_root = backup_root
        self._log = log

    def _emit(self, message: str) -> None:
        logger.info(message)
        if self._log is not None:
            self._log(message)

    def snapshot(self, paths: Iterable[Path]) -> Path:
        """Back up a set of absolute paths.

        Paths that do not exist are skipped.

        Args:
            paths: Files or directories to back up

        Returns:
            The new backup directory

        Raises:
            MisfitIOError: If the backup directory or a copy cannot be written
        """
        timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
        backup_dir = self.backup_root / f"{BACKUP_PREFIX}{timestamp}"
        restore_map: dict[str, str] = {}

        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
            for path in paths:
                if not path.exists():
                    logger.debug("Skipping backup of missing path %s", path)
                    continue
                rel_path = backup_relative_path(path)
                _copy_entry(path, backup_dir / rel_path)
                restore_map[rel_path.as_posix()] = str(path.resolve())
                self._emit(f"Backed up {path}")

            save_json(backup_dir / RESTORE_MAP_FILE, restore_map)
        except OSError as e:
            raise MisfitIOError(f"Failed to create backup in {backup_dir}: {e}", backup_dir) from e

        return backup_dir

    def list_backups(self) -> list[BackupInfo]:
        """List backups under the root, oldest first."""
        if not self.backup_root.is_dir():
            return []

        backups: list[BackupInfo] = []
        for entry in sorted(self.backup_root.iterdir()):
            if not entry.is_dir() or not entry.name.startswith(BACKUP_PREFIX):
                continue
            entry_count: int | None = None
            try:
                restore_map = load_json(entry / RESTORE_MAP_FILE)
                if isinstance(restore_map, dict):
                    entry_count = len(restore_map)
            except MisfitError:
                pass
            backups.append(BackupInfo(name=entry.name, path=entry, entry_count=entry_count))
        return backups

    def latest_backup(self) -> Path:
        """Get the most recent backup directory.

        Raises:
            NoBackupsFound: If the root is missing or holds no backups
        """
        if not self.backup_root.is_dir():
            raise NoBackupsFound(f"Backup root not found: {self.backup_root}", self.backup_root)
        candidates = sorted(
            entry
            for entry in self.backup_root.iterdir()
            if entry.is_dir() and entry.name.startswith(BACKUP_PREFIX)
        )
        if not candidates:
            raise NoBackupsFound(f"No backups found in {self.backup_root}", self.backup_root)
        return candidates[-1]

    def restore_latest(self) -> Path:
        """Restore every entry of the most recent backup.

        Entries whose mirrored copy is missing are skipped.

        Returns:
            The backup directory restored from

        Raises:
            NoBackupsFound: If there is no backup
            RestoreMapMissing: If the latest backup has no restore map
            ParseError: If the restore map is malformed
            MisfitIOError: If a file cannot be restored
        """
        latest = self.latest_backup()
        map_path = latest / RESTORE_MAP_FILE
        if not map_path.exists():
            raise RestoreMapMissing(f"Restore map not found in latest backup {latest}", map_path)

        restore_map = load_json(map_path)
        if not isinstance(restore_map, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in restore_map.items()
        ):
            raise ParseError(f"Restore map must be an object of strings: {map_path}", map_path)

        for rel_path, original in restore_map.items():
            src = latest / rel_path
            if not src.exists():
                logger.debug("Mirrored entry missing, skipping %s", src)
                continue
            dest = Path(original)
            try:
                _copy_entry(src, dest)
            except OSError as e:
                raise MisfitIOError(f"Failed to restore {dest}: {e}", dest) from e
            self._emit(f"Restored {dest}")

        return latest


def restore_for_app(
    app_name: str | None = None,
    settings: EngineSettings | None = None,
    log: LogSink | None = None,
) -> Path:
    """Restore the latest backup for an application.

    With an app name the app's namespace is tried first, falling back to the
    shared backup root when that fails.

    Args:
        app_name: Application name from the manifest
        settings: Engine settings providing the backup root
        log: Optional sink for progress lines

    Returns:
        The backup directory restored from
    """
    root = default_backup_root(settings)
    if app_name is None:
        target = root
    else:
        target = root / backup_namespace(app_name)

    def emit(message: str) -> None:
        logger.info(message)
        if log is not None:
            log(message)

    emit(f"Attempting restore from {target}")
    try:
        restored_from = BackupManager(target, log).restore_latest()
    except MisfitError:
        if target == root:
            raise
        emit(f"No app-specific backups found, falling back to {root}")
        restored_from = BackupManager(root, log).restore_latest()

    emit(f"Restored successfully from {restored_from}")
    return restored_from
