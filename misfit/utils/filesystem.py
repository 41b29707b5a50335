"""Filesystem utilities for Misfit."""

import shutil
from pathlib import Path


def ensure_directory(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The directory path
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def copy_file(src: Path, dest: Path) -> Path:
    """Copy a single file, creating the destination's parent directory.

    Args:
        src: Source file path
        dest: Destination file path

    Returns:
        Path to the copied file
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)
    return dest


def copy_tree(src: Path, dest: Path) -> list[Path]:
    """Copy a directory's contents into dest, merging with what is there.

    Walks the tree with an explicit stack rather than recursion. Anything
    that is not a directory is copied as a plain file, so symlinks are
    followed and unsupported entry types fail.

    Args:
        src: Source directory
        dest: Destination directory (created if missing)

    Returns:
        Paths of every file written
    """
    written: list[Path] = []
    stack = [(src, dest)]
    while stack:
        source_dir, dest_dir = stack.pop()
        dest_dir.mkdir(parents=True, exist_ok=True)
        for entry in sorted(source_dir.iterdir()):
            target = dest_dir / entry.name
            if entry.is_dir():
                stack.append((entry, target))
            else:
                shutil.copyfile(entry, target)
                written.append(target)
    return written


def remove_directory(path: Path) -> bool:
    """Remove a directory and its contents.

    Args:
        path: Directory path to remove

    Returns:
        True if the directory was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


def read_text_file(path: Path) -> str:
    """Read a UTF-8 text file without translating newlines.

    Args:
        path: Path to the file

    Returns:
        File contents as a string
    """
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def write_text_file(path: Path, content: str) -> None:
    """Write content to a UTF-8 text file.

    Newlines are written exactly as given.

    Args:
        path: Path to the file
        content: Content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def is_writable_directory(path: Path) -> bool:
    """Check that a file can be created inside a directory.

    Args:
        path: Directory to check

    Returns:
        True if a scratch file could be created and removed
    """
    scratch = path / f".misfit_write_test_{id(path)}"
    try:
        with open(scratch, "x", encoding="utf-8"):
            pass
    except OSError:
        return False
    scratch.unlink(missing_ok=True)
    return True
