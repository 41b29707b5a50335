"""Misfit - manifest-driven installer with recoverable backups."""

__version__ = "0.1.0"
