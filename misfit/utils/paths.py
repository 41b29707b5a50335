"""Path normalization, sandboxing and variable expansion.

Every path declared in a manifest passes through this module before the
engine touches the filesystem. Relative paths are validated so that no step
can reference anything outside its declared base:

    normalize_relative("assets/../../etc")  -> PathViolation
    resolve_against_base(base, "~/x")        -> <home>/x
    sanitize_component_name("C:")            -> "C_"

Environment lookups go through an EnvironmentProvider so callers (and tests)
can supply deterministic values instead of the process environment.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from misfit.errors import PathViolation
from misfit.utils.platform import get_home_directory

_SEPARATORS = re.compile(r"[\\/]+")
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")
_BARE_VARIABLE = re.compile(r"[A-Za-z0-9_]+")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

DEFAULT_NAMESPACE = "default"


class EnvironmentProvider(Protocol):
    """Source of the home directory and environment variables."""

    def home(self) -> str | None: ...

    def get(self, name: str) -> str | None: ...


class OsEnvironment:
    """Environment provider backed by the current process."""

    def home(self) -> str | None:
        for name in ("USERPROFILE", "HOME"):
            value = os.environ.get(name)
            if value:
                return value
        return get_home_directory()

    def get(self, name: str) -> str | None:
        return os.environ.get(name)


@dataclass
class StaticEnvironment:
    """Environment provider with fixed values."""

    home_dir: str | None = None
    variables: dict[str, str] = field(default_factory=dict)

    def home(self) -> str | None:
        return self.home_dir

    def get(self, name: str) -> str | None:
        return self.variables.get(name)


def normalize_relative(path_str: str, allow_current: bool = False) -> Path:
    """Normalize a manifest-declared relative path.

    Both forward and back slashes separate components. Empty and "."
    components are dropped.

    Args:
        path_str: Path as written in the manifest
        allow_current: If True, an empty or "." path normalizes to "."

    Returns:
        The normalized relative path

    Raises:
        PathViolation: If the path is rooted, carries a drive, contains a
            ".." component, or is empty while allow_current is False
    """
    trimmed = path_str.strip()
    if trimmed.startswith(("/", "\\")) or _DRIVE_PREFIX.match(trimmed) or Path(trimmed).is_absolute():
        raise PathViolation("Path must be relative", path_str)

    parts: list[str] = []
    for part in _SEPARATORS.split(trimmed):
        if part in ("", "."):
            continue
        if part == "..":
            raise PathViolation("Path cannot contain '..'", path_str)
        parts.append(part)

    if not parts:
        if allow_current:
            return Path(".")
        raise PathViolation("Path cannot be empty or '.'", path_str)
    return Path(*parts)


def expand_env_vars(value: str, env: EnvironmentProvider | None = None) -> str:
    """Expand ~, %NAME%, ${NAME} and $NAME references.

    A leading "~" is only expanded when it is the whole string or is followed
    by a separator. Undefined variables are left verbatim.

    Args:
        value: String to expand
        env: Environment provider (defaults to the process environment)

    Returns:
        The expanded string
    """
    env = env or OsEnvironment()
    output: list[str] = []
    length = len(value)
    i = 0

    if value.startswith("~") and (length == 1 or value[1] in "/\\"):
        home = env.home()
        if home is not None:
            output.append(home)
            i = 1

    while i < length:
        ch = value[i]

        if ch == "%":
            end = value.find("%", i + 1)
            if end > i + 1:
                name = value[i + 1 : end]
                resolved = env.get(name)
                output.append(resolved if resolved is not None else f"%{name}%")
                i = end + 1
                continue

        elif ch == "$":
            if value.startswith("{", i + 1):
                end = value.find("}", i + 2)
                if end > i + 2:
                    name = value[i + 2 : end]
                    resolved = env.get(name)
                    output.append(resolved if resolved is not None else f"${{{name}}}")
                    i = end + 1
                    continue
            else:
                match = _BARE_VARIABLE.match(value, i + 1)
                if match:
                    name = match.group(0)
                    resolved = env.get(name)
                    output.append(resolved if resolved is not None else f"${name}")
                    i = match.end()
                    continue

        output.append(ch)
        i += 1

    return "".join(output)


def resolve_against_base(
    base: Path, path_str: str, env: EnvironmentProvider | None = None
) -> Path:
    """Expand variables in a path and anchor it on a base directory.

    Args:
        base: Directory relative paths are joined onto
        path_str: Path possibly containing variable references
        env: Environment provider

    Returns:
        The expanded path unchanged if absolute, otherwise base / path
    """
    candidate = Path(expand_env_vars(path_str, env))
    if candidate.is_absolute():
        return candidate
    return base / candidate


def resolve_target(
    base: Path,
    path_str: str,
    env: EnvironmentProvider | None = None,
) -> Path:
    """Resolve a step target path with sandboxing.

    The path as written must be relative and free of "..". Variables are
    then expanded; a result that is absolute (such as %APPDATA%\\app or
    ~/app) is used as is, and a relative result is joined onto base.

    Args:
        base: Directory relative targets are resolved against
        path_str: Target path from the manifest
        env: Environment provider

    Returns:
        Absolute or base-anchored target path

    Raises:
        PathViolation: If the written path is rooted or contains "..", or
            the expanded path is relative and escapes the base
    """
    normalize_relative(path_str, allow_current=False)
    expanded = expand_env_vars(path_str, env)
    if Path(expanded).is_absolute():
        return Path(expanded)
    return base / normalize_relative(expanded, allow_current=False)


def sanitize_component_name(value: str) -> str:
    """Make a string safe to use as a single path component.

    Every character outside [A-Za-z0-9._-] becomes "_".

    Returns:
        Non-empty sanitized name
    """
    return _UNSAFE_CHARS.sub("_", value) or "_"


def backup_namespace(app_name: str) -> str:
    """Derive the backup namespace folder for an application name."""
    trimmed = app_name.strip()
    if not trimmed:
        return DEFAULT_NAMESPACE
    return sanitize_component_name(trimmed)


def backup_relative_path(path: Path) -> PurePosixPath:
    """Map an absolute path onto its mirror location inside a backup.

    "/home/me/app.json" becomes "abs/home/me/app.json" and
    "C:\\Users\\me\\app.json" becomes "abs/C_/Users/me/app.json".

    Args:
        path: Path to mirror (canonicalized when possible)

    Returns:
        Relative POSIX path rooted at "abs"
    """
    try:
        abs_path = path.resolve()
    except OSError:
        abs_path = Path(os.path.abspath(path))

    parts = ["abs"]
    if abs_path.drive:
        parts.append(sanitize_component_name(abs_path.drive))
    for part in abs_path.parts:
        if part == abs_path.anchor or part in (".", ".."):
            continue
        parts.append(part)
    return PurePosixPath(*parts)


def validate_project_name(name: str) -> str:
    """Validate a distributable project name.

    Args:
        name: Project name as supplied by the caller

    Returns:
        The trimmed single-folder name

    Raises:
        PathViolation: If the name is empty, "." or "..", rooted, or has
            more than one component
    """
    trimmed = name.strip()
    if not trimmed:
        raise PathViolation("Project name cannot be empty", name)
    if trimmed in (".", ".."):
        raise PathViolation("Project name cannot be '.' or '..'", name)
    if trimmed.startswith(("/", "\\")) or _DRIVE_PREFIX.match(trimmed):
        raise PathViolation("Project name must be a relative name", name)
    if _SEPARATORS.search(trimmed):
        raise PathViolation("Project name must be a single folder name", name)
    return trimmed
