"""
Shared utility helpers.

This module keeps the "sharp edges" (errors, validation and path checks) in
one place so the rest of the code can stay focused on image/PDF work.
"""

from __future__ import annotations

import os
from pathlib import Path


class UserError(Exception):
    """Raised for user-facing problems that should show a clear message."""


class ParseError(UserError):
    """A filename carries no recognizable page range."""


class ImageIOError(UserError):
    """A source image could not be read or a crop could not be written."""


class AssemblyError(UserError):
    """The output PDF could not be built or written."""


class PreconditionError(UserError):
    """A directory the run depends on could not be created or claimed."""


class ExtractionError(UserError):
    """An archive could not be extracted."""


class RunCancelled(UserError):
    """The run was interrupted between files."""


def normalize_path(value: str) -> Path:
    """
    Convert user input to a Path.

    We do not resolve() here because we want to preserve relative paths in
    manifests and error messages.
    """

    return Path(value).expanduser()


def ensure_file_exists(path: Path, label: str) -> Path:
    """Validate that a path exists and is a file."""

    if not path.exists():
        raise UserError(f"{label} not found: {path}")
    if not path.is_file():
        raise UserError(f"{label} is not a file: {path}")
    return path


def ensure_dir_exists(path: Path, label: str) -> Path:
    """Validate that a path exists and is a directory."""

    if not path.exists() or not path.is_dir():
        raise UserError(f"{label} not found: {path}")
    return path


def ensure_dir(path: Path) -> None:
    """
    Create a directory if needed.

    Failing here means nothing downstream can write, so it is a precondition
    error rather than a per-file one.
    """

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PreconditionError(f"Cannot create directory {path}: {exc}") from exc


def ensure_dir_path(path: Path, label: str) -> None:
    """Ensure a path is either a directory or does not exist yet."""

    if path.exists() and not path.is_dir():
        raise UserError(f"{label} is not a directory: {path}")


def ensure_file_path(path: Path, label: str) -> None:
    """Ensure a path is a file path (not an existing directory)."""

    if path.exists() and path.is_dir():
        raise UserError(f"{label} is a directory, not a file: {path}")


def validate_positive_int(value: int, label: str) -> int:
    """Common validation for options like --dpi or --workers."""

    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise UserError(f"{label} must be a positive integer.")
    return value


def strip_whitespace(name: str) -> str:
    """Drop every whitespace character from a file name."""

    return "".join(name.split())


def title_to_filename(title: str, fallback: str = "output") -> str:
    """Reduce a free-text title to a single file name component."""

    name = title
    for separator in {"/", "\\", os.sep, os.altsep} - {None}:
        name = name.replace(separator, "_")
    name = name.strip().strip(".").strip()
    return name or fallback
