"""Install step primitives.

Each function performs one stateless operation on already-resolved paths and
raises a typed MisfitError on failure. Path resolution and sandboxing happen
in the installer before any of these run.
"""

import base64
import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from misfit.config.parser import save_json
from misfit.errors import (
    CommandFailed,
    MarkerNotFound,
    MisfitIOError,
    NotAnObject,
    NotFound,
    ParseError,
)
from misfit.utils.filesystem import copy_file, copy_tree, read_text_file, write_text_file
from misfit.utils.markers import replace_between_markers

logger = logging.getLogger("misfit.steps")


def copy_payload(src: Path, dest: Path) -> None:
    """Copy a payload file or directory.

    A directory's entries are merged into dest; a file is copied to dest.

    Args:
        src: Source file or directory
        dest: Destination path

    Raises:
        NotFound: If src does not exist
        MisfitIOError: If copying fails
    """
    if not src.exists():
        raise NotFound(f"Payload source not found: {src}", src)
    try:
        if src.is_dir():
            copy_tree(src, dest)
        else:
            copy_file(src, dest)
    except OSError as e:
        raise MisfitIOError(f"Failed to copy {src} to {dest}: {e}", src) from e


def apply_replacements(content: str, replacements: dict[str, str] | None) -> str:
    """Apply literal substring replacements to content."""
    for old, new in (replacements or {}).items():
        content = content.replace(old, new)
    return content


def patch_file(
    target: Path,
    start_marker: str,
    end_marker: str,
    content: str,
    strip_markers: bool = False,
) -> None:
    """Replace the block between two markers in a file.

    Args:
        target: File to patch
        start_marker: Marker opening the block
        end_marker: Marker closing the block
        content: Replacement text
        strip_markers: Remove the markers themselves from the result

    Raises:
        MarkerNotFound: If either marker is missing
        MisfitIOError: If the file cannot be read or written
    """
    try:
        file_content = read_text_file(target)
    except (OSError, UnicodeDecodeError) as e:
        raise MisfitIOError(f"Failed to read target file for patching {target}: {e}", target) from e

    try:
        new_content = replace_between_markers(
            file_content, start_marker, end_marker, content, strip_markers
        )
    except MarkerNotFound as e:
        raise MarkerNotFound(e.marker, e.which, target) from e

    try:
        write_text_file(target, new_content)
    except OSError as e:
        raise MisfitIOError(f"Failed to write patched file {target}: {e}", target) from e


def split_key_path(key_path: str) -> list[str]:
    """Split a dotted key path into segments.

    A backslash escapes the next character, so "a\\.b" is the single segment
    "a.b". Examples:

        "a.b.c"  -> ["a", "b", "c"]
        "a\\.b.c" -> ["a.b", "c"]
        "a.b\\x"  -> ["a", "bx"]

    Raises:
        ParseError: If the path is empty, has an empty segment, ends in an
            escaped dot, or ends in a dangling backslash
    """
    trimmed = key_path.strip()
    if not trimmed:
        raise ParseError("Key path cannot be empty")

    parts: list[str] = []
    current: list[str] = []
    escaped = False
    ended_in_escaped_dot = False

    for ch in trimmed:
        ended_in_escaped_dot = False
        if escaped:
            current.append(ch)
            escaped = False
            ended_in_escaped_dot = ch == "."
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == ".":
            if not current:
                raise ParseError(f"Key path contains an empty segment: {key_path!r}")
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)

    if escaped or ended_in_escaped_dot:
        raise ParseError(f"Key path ends with an escape sequence: {key_path!r}")
    if not current:
        raise ParseError(f"Key path contains an empty segment: {key_path!r}")
    parts.append("".join(current))
    return parts


def set_json_value(target: Path, key_path: str, value: Any) -> None:
    """Set a value at a key path inside a JSON file.

    Missing intermediate objects are created. A missing file starts as {}.

    Args:
        target: JSON file to update
        key_path: Dotted key path (backslash escapes literal dots)
        value: Any JSON-serializable value

    Raises:
        ParseError: If the file or key path cannot be parsed
        NotAnObject: If the walk reaches a value that is not an object
        MisfitIOError: If the file cannot be read or written
    """
    segments = split_key_path(key_path)

    document: Any = {}
    if target.exists():
        try:
            document = json.loads(read_text_file(target))
        except (OSError, UnicodeDecodeError) as e:
            raise MisfitIOError(f"Failed to read JSON file {target}: {e}", target) from e
        except json.JSONDecodeError as e:
            raise ParseError(f"Failed to parse JSON {target}: {e}", target) from e

    current = document
    for segment in segments[:-1]:
        if not isinstance(current, dict):
            raise NotAnObject(segment, key_path, target)
        if segment not in current:
            current[segment] = {}
        current = current[segment]

    if not isinstance(current, dict):
        raise NotAnObject(segments[-1], key_path, target)
    current[segments[-1]] = value

    try:
        save_json(target, document)
    except OSError as e:
        raise MisfitIOError(f"Failed to write JSON file {target}: {e}", target) from e


def run_command(command: str, args: list[str]) -> None:
    """Run an external command and wait for it.

    Output is inherited from the current process, not captured.

    Args:
        command: Program to run
        args: Arguments passed verbatim

    Raises:
        CommandFailed: If the process cannot be spawned or exits non-zero
    """
    argv = [command, *args]
    logger.debug("Running %s", argv)
    try:
        result = subprocess.run(argv, check=False)
    except OSError as e:
        raise CommandFailed(f"Failed to execute command {command}: {e}", command) from e

    if result.returncode != 0:
        raise CommandFailed(
            f"Command {command} exited with status {result.returncode}",
            command,
            result.returncode,
        )


def base64_embed(target: Path, placeholder: str, input_file: Path) -> None:
    """Replace every placeholder in target with the base64 of input_file.

    Args:
        target: Text file containing the placeholder
        placeholder: Literal placeholder string
        input_file: File whose bytes are embedded

    Raises:
        MisfitIOError: If either file cannot be read, or target cannot be written
    """
    try:
        encoded = base64.b64encode(input_file.read_bytes()).decode("ascii")
    except OSError as e:
        raise MisfitIOError(
            f"Failed to read input file for embedding {input_file}: {e}", input_file
        ) from e

    try:
        target_content = read_text_file(target)
    except (OSError, UnicodeDecodeError) as e:
        raise MisfitIOError(
            f"Failed to read target file for embedding {target}: {e}", target
        ) from e

    try:
        write_text_file(target, target_content.replace(placeholder, encoded))
    except OSError as e:
        raise MisfitIOError(f"Failed to write {target}: {e}", target) from e
