"""Error types raised by the Misfit installation engine.

Every step primitive, resolver function and backup operation raises one of
these instead of failing silently. The installer never recovers from them; it
aborts and re-raises the first one it sees, so each error carries enough
context (path, marker, key segment) to diagnose a failed install.
"""

from pathlib import Path


class MisfitError(Exception):
    """Base class for all engine errors."""


class ParseError(MisfitError):
    """A manifest, JSON document or key path could not be parsed."""

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        excerpt: str | None = None,
    ):
        self.path = path
        self.excerpt = excerpt
        super().__init__(message)


class PathViolation(MisfitError):
    """A path escaped its base or was absolute where a relative one was required."""

    def __init__(self, message: str, path: str):
        self.path = path
        super().__init__(f"{message}: {path!r}")


class NotFound(MisfitError):
    """A required file, directory or backup does not exist."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


class PayloadMissing(NotFound):
    """The manifest's payload directory does not exist."""


class NoBackupsFound(NotFound):
    """No backup_* directory exists under a backup root."""


class RestoreMapMissing(NotFound):
    """The latest backup has no restore_map.json."""


class MarkerNotFound(MisfitError):
    """A PatchBlock start or end marker is absent from the target file."""

    def __init__(self, marker: str, which: str, path: Path | None = None):
        self.marker = marker
        self.which = which
        self.path = path
        location = f" in {path}" if path is not None else ""
        super().__init__(f"{which.capitalize()} marker not found{location}: {marker!r}")


class NotAnObject(MisfitError):
    """A JSON key path walk reached a value that is not an object."""

    def __init__(self, segment: str, key_path: str, path: Path | None = None):
        self.segment = segment
        self.key_path = key_path
        self.path = path
        super().__init__(
            f"Cannot set {key_path!r}: value at segment {segment!r} is not an object"
        )


class CommandFailed(MisfitError):
    """A RunCommand step could not be spawned or exited unsuccessfully."""

    def __init__(self, message: str, command: str, returncode: int | None = None):
        self.command = command
        self.returncode = returncode
        super().__init__(message)


class MisfitIOError(MisfitError):
    """An underlying read, write or copy failed."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)
