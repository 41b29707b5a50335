"""Installation orchestrator.

The Installer runs a manifest against the filesystem:

    NOT_STARTED -> PAYLOAD_RESOLVED -> BACKED_UP -> EXECUTING -> COMPLETED
                                                              \\-> FAILED

Every step path is resolved and validated before anything is written, then
all files that PatchBlock, SetJsonValue and Base64Embed steps will mutate are
backed up in one snapshot. Steps run strictly in manifest order and the first
failure aborts the run. There is no automatic rollback; restoring the
snapshot is a separate operation (see misfit.core.backup).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from misfit.config.schemas import (
    MUTATING_STEP_TYPES,
    Base64EmbedStep,
    CopyStep,
    EngineSettings,
    InstallManifest,
    InstallStep,
    PatchBlockStep,
    RunCommandStep,
    SetJsonValueStep,
)
from misfit.core import steps
from misfit.core.backup import BackupManager, default_backup_root
from misfit.errors import MisfitIOError, ParseError, PayloadMissing
from misfit.utils.filesystem import read_text_file
from misfit.utils.paths import (
    EnvironmentProvider,
    backup_namespace,
    normalize_relative,
    resolve_target,
)

logger = logging.getLogger("misfit.installer")

LogSink = Callable[[str], None]


class InstallState(str, Enum):
    """Lifecycle of a single install run."""

    NOT_STARTED = "not_started"
    PAYLOAD_RESOLVED = "payload_resolved"
    BACKED_UP = "backed_up"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PlannedStep:
    """A manifest step with every path resolved."""

    index: int
    step: InstallStep
    target: Path | None = None  # file or destination the step writes
    source: Path | None = None  # payload file the step reads

    def require_target(self) -> Path:
        """Get the resolved target, which every file-writing step has."""
        if self.target is None:
            raise ParseError(f"Step {self.index} ({self.step.type}) has no target path")
        return self.target

    def require_source(self) -> Path:
        """Get the resolved payload source."""
        if self.source is None:
            raise ParseError(f"Step {self.index} ({self.step.type}) has no source path")
        return self.source


@dataclass
class InstallResult:
    """Result of a completed installation."""

    app_name: str
    steps_run: int
    backup_dir: Path | None = None
    log: list[str] = field(default_factory=list)


class Installer:
    """Executes an install manifest.

    Targets are resolved against the manifest directory; payload sources
    against the payload directory under payload_root.
    """

    def __init__(
        self,
        manifest: InstallManifest,
        manifest_dir: Path,
        payload_root: Path | None = None,
        backup_root: Path | None = None,
        settings: EngineSettings | None = None,
        env: EnvironmentProvider | None = None,
        log: LogSink | None = None,
    ):
        """Initialize the installer.

        Args:
            manifest: The install plan
            manifest_dir: Directory containing the manifest file
            payload_root: Folder the manifest's payloadDir is relative to
                (defaults to manifest_dir)
            backup_root: Namespace folder for this app's backups (defaults to
                the app namespace under the configured backup root)
            settings: Engine settings
            env: Environment provider used for variable expansion
            log: Optional sink receiving one line per file operation
        """
        self.manifest = manifest
        self.manifest_dir = manifest_dir
        self.payload_root = payload_root if payload_root is not None else manifest_dir
        self.backup_root = backup_root or (
            default_backup_root(settings) / backup_namespace(manifest.app_name)
        )
        self.env = env
        self.state = InstallState.NOT_STARTED
        self.step_index: int | None = None
        self.payload_dir: Path | None = None
        self._log = log
        self._lines: list[str] = []

    def _record(self, message: str) -> None:
        self._lines.append(message)
        if self._log is not None:
            self._log(message)

    def _emit(self, message: str) -> None:
        logger.info(message)
        self._record(message)

    def _transition(self, state: InstallState) -> None:
        logger.debug("Install state %s -> %s", self.state.value, state.value)
        self.state = state

    def install(self) -> InstallResult:
        """Run the whole manifest.

        Returns:
            InstallResult describing the completed run

        Raises:
            MisfitError: The first error encountered, unchanged
        """
        try:
            self.payload_dir = self.resolve_payload()
            self._transition(InstallState.PAYLOAD_RESOLVED)

            planned = self.plan()
            backup_dir = self.backup(planned)
            self._transition(InstallState.BACKED_UP)

            self._transition(InstallState.EXECUTING)
            for planned_step in planned:
                self.step_index = planned_step.index
                self._execute(planned_step)
        except Exception:
            self._transition(InstallState.FAILED)
            raise

        self._transition(InstallState.COMPLETED)
        self._emit("Installation complete!")
        return InstallResult(
            app_name=self.manifest.app_name,
            steps_run=len(planned),
            backup_dir=backup_dir,
            log=list(self._lines),
        )

    def resolve_payload(self) -> Path:
        """Resolve the payload directory.

        Raises:
            PathViolation: If payloadDir escapes the payload root
            PayloadMissing: If the directory does not exist
        """
        payload_rel = normalize_relative(self.manifest.payload_dir, allow_current=True)
        payload_dir = self.payload_root / payload_rel
        if not payload_dir.exists():
            raise PayloadMissing(f"Payload directory not found: {payload_dir}", payload_dir)
        return payload_dir

    def _payload_path(self, path_str: str) -> Path:
        if self.payload_dir is None:
            self.payload_dir = self.resolve_payload()
        return self.payload_dir / normalize_relative(path_str, allow_current=False)

    def _target_path(self, path_str: str) -> Path:
        return resolve_target(
            self.manifest_dir,
            path_str,
            env=self.env,
        )

    def plan(self) -> list[PlannedStep]:
        """Resolve and validate every step path without touching the filesystem.

        Raises:
            PathViolation: If any step path is not allowed
            ParseError: If a PatchBlock step has no contentFile
        """
        planned: list[PlannedStep] = []
        for index, step in enumerate(self.manifest.install_steps):
            if isinstance(step, CopyStep):
                planned.append(
                    PlannedStep(
                        index,
                        step,
                        target=self._target_path(step.dest),
                        source=self._payload_path(step.src),
                    )
                )
            elif isinstance(step, PatchBlockStep):
                if not step.content_file:
                    raise ParseError(f"PatchBlock step {index} requires contentFile")
                planned.append(
                    PlannedStep(
                        index,
                        step,
                        target=self._target_path(step.file),
                        source=self._payload_path(step.content_file),
                    )
                )
            elif isinstance(step, SetJsonValueStep):
                planned.append(PlannedStep(index, step, target=self._target_path(step.file)))
            elif isinstance(step, Base64EmbedStep):
                planned.append(
                    PlannedStep(
                        index,
                        step,
                        target=self._target_path(step.file),
                        source=self._payload_path(step.input_file),
                    )
                )
            else:
                planned.append(PlannedStep(index, step))
        return planned

    @staticmethod
    def backup_targets(planned: list[PlannedStep]) -> list[Path]:
        """Get the sorted, deduplicated files that steps will mutate in place."""
        return sorted(
            {
                p.target
                for p in planned
                if p.target is not None and isinstance(p.step, MUTATING_STEP_TYPES)
            }
        )

    def backup(self, planned: list[PlannedStep]) -> Path | None:
        """Snapshot every file the plan will mutate.

        Returns:
            The backup directory, or None when no step mutates a file
        """
        targets = self.backup_targets(planned)
        if not targets:
            logger.debug("No files to back up")
            return None

        backup_dir = BackupManager(self.backup_root, log=self._record).snapshot(targets)
        self._emit(f"Backup created at {backup_dir}")
        return backup_dir

    def _execute(self, planned: PlannedStep) -> None:
        step = planned.step

        if isinstance(step, CopyStep):
            target, source = planned.require_target(), planned.require_source()
            self._emit(f"Copying {source} to {target}")
            steps.copy_payload(source, target)

        elif isinstance(step, PatchBlockStep):
            target, source = planned.require_target(), planned.require_source()
            self._emit(f"Patching {target}")
            try:
                content = read_text_file(source)
            except (OSError, UnicodeDecodeError) as e:
                raise MisfitIOError(f"Failed to read patch content {source}: {e}", source) from e
            content = steps.apply_replacements(content, step.replacements)
            steps.patch_file(
                target,
                step.start_marker,
                step.end_marker,
                content,
                strip_markers=self.manifest.is_advanced,
            )

        elif isinstance(step, SetJsonValueStep):
            target = planned.require_target()
            self._emit(f"Updating JSON {target} key {step.key_path}")
            steps.set_json_value(target, step.key_path, step.value)

        elif isinstance(step, RunCommandStep):
            self._emit(f"Running command: {step.command} {step.args}")
            steps.run_command(step.command, step.args)

        elif isinstance(step, Base64EmbedStep):
            target, source = planned.require_target(), planned.require_source()
            self._emit(f"Embedding base64 into {target}")
            steps.base64_embed(target, step.placeholder, source)


def install_from(
    manifest: InstallManifest,
    manifest_dir: Path,
    payload_root: Path | None = None,
    settings: EngineSettings | None = None,
    backup_root: Path | None = None,
    env: EnvironmentProvider | None = None,
    log: LogSink | None = None,
) -> InstallResult:
    """Install a manifest. See Installer for the arguments."""
    installer = Installer(
        manifest,
        manifest_dir,
        payload_root=payload_root,
        backup_root=backup_root,
        settings=settings,
        env=env,
        log=log,
    )
    return installer.install()
