"""Platform directory utilities."""

import os
from pathlib import Path


def get_home_directory() -> str:
    """Get the user's home directory.

    Returns:
        Path to the home directory
    """
    return os.path.expanduser("~")


def get_documents_directory() -> Path:
    """Get the user's documents directory.

    Falls back to the home directory when no Documents folder exists.

    Returns:
        Path to the documents directory
    """
    home = Path(get_home_directory())
    documents = home / "Documents"
    if documents.is_dir():
        return documents
    return home
