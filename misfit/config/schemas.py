"""Pydantic schemas for Misfit configuration files.

This module defines the data models for:
- install.manifest.json (the install plan)
- misfit.yaml (engine settings)
"""

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Install Steps
# =============================================================================


class _Step(BaseModel):
    """Common configuration for install step variants."""

    model_config = ConfigDict(populate_by_name=True)


class CopyStep(_Step):
    """Copy a payload file or directory to a destination.

    - src: Path relative to the payload directory
    - dest: Path relative to the manifest directory
    """

    type: Literal["copy"] = "copy"
    src: str
    dest: str


class PatchBlockStep(_Step):
    """Replace the text between two markers in an existing file."""

    type: Literal["patchBlock"] = "patchBlock"
    file: str
    start_marker: str = Field(alias="startMarker")
    end_marker: str = Field(alias="endMarker")
    content_file: str | None = Field(default=None, alias="contentFile")
    replacements: dict[str, str] | None = None  # literal substring -> replacement


class SetJsonValueStep(_Step):
    """Set a value at a dotted key path inside a JSON document."""

    type: Literal["setJsonValue"] = "setJsonValue"
    file: str
    key_path: str = Field(alias="keyPath")
    value: Any


class RunCommandStep(_Step):
    """Run an external command with verbatim arguments."""

    type: Literal["runCommand"] = "runCommand"
    command: str
    args: list[str] = Field(default_factory=list)


class Base64EmbedStep(_Step):
    """Embed a payload file as base64 wherever a placeholder appears."""

    type: Literal["base64Embed"] = "base64Embed"
    file: str
    placeholder: str
    input_file: str = Field(alias="inputFile")


InstallStep = Annotated[
    CopyStep | PatchBlockStep | SetJsonValueStep | RunCommandStep | Base64EmbedStep,
    Field(discriminator="type"),
]

# Steps whose target file is mutated in place and therefore backed up
MUTATING_STEP_TYPES = (PatchBlockStep, SetJsonValueStep, Base64EmbedStep)


# =============================================================================
# Install Manifest (install.manifest.json)
# =============================================================================


class InstallManifest(BaseModel):
    """Install manifest schema.

    Field names are camelCase in the JSON document.
    """

    model_config = ConfigDict(populate_by_name=True)

    app_name: str = Field(alias="appName")
    version: str
    publisher: str
    description: str
    logo_path: str | None = Field(default=None, alias="logoPath")
    advanced_mode: bool | None = Field(default=None, alias="advancedMode")
    targets: list[str]
    payload_dir: str = Field(alias="payloadDir")
    install_steps: list[InstallStep] = Field(alias="installSteps")

    @property
    def is_advanced(self) -> bool:
        """Whether advanced mode is enabled (absent means disabled)."""
        return bool(self.advanced_mode)


# =============================================================================
# Engine Settings (misfit.yaml)
# =============================================================================


class EngineSettings(BaseModel):
    """Engine settings schema.

    Unset roots fall back to locations under the user's documents folder.
    """

    model_config = ConfigDict(extra="forbid")

    backup_root: Path | None = None
    dist_root: Path | None = None
    manifest_search_paths: list[Path] = Field(default_factory=list)
