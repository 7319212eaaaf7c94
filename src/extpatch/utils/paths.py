"""Relative path validation and root-confined joins."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Pattern

from ..errors import PathSafetyError

_DRIVE_PATTERN: Pattern[str] = re.compile(r"^[A-Za-z]:")


def to_posix_path(value: str) -> str:
    """Normalise Windows separators to forward slashes."""
    return value.replace("\\", "/")


def ensure_safe_rel_path(rel_path: str) -> str:
    """Validate ``rel_path`` and return its POSIX form.

    Rejects empty paths, ``.``, null bytes, absolute and drive-prefixed paths,
    ``..`` segments, and empty segments. Nothing is stripped or repaired.
    """
    if not isinstance(rel_path, str):
        raise PathSafetyError(f"Path must be a string: {rel_path!r}")
    posix_path = to_posix_path(rel_path)
    if "\0" in posix_path:
        raise PathSafetyError(f"Invalid path contains null byte: {rel_path!r}")
    if not posix_path or posix_path == ".":
        raise PathSafetyError("Empty paths are not allowed")
    if posix_path.startswith("/"):
        raise PathSafetyError(f"Absolute paths are not allowed: {rel_path}")
    if _DRIVE_PATTERN.match(posix_path):
        raise PathSafetyError(f"Drive paths are not allowed: {rel_path}")
    for segment in posix_path.split("/"):
        if not segment:
            raise PathSafetyError(f"Invalid path segment in: {rel_path}")
        if segment == "..":
            raise PathSafetyError(f"Path traversal is not allowed: {rel_path}")
    return posix_path


def safe_join(root: Path | str, rel_path: str) -> Path:
    """Join ``rel_path`` under ``root`` and confirm the result stays inside it.

    Parent directories are resolved before the containment check, so a
    symlinked directory pointing elsewhere is caught. The final component is
    left unresolved and a symlink there stays visible to ``lstat``.
    """
    posix_path = ensure_safe_rel_path(rel_path)
    root_resolved = Path(root).resolve()
    parts = posix_path.split("/")
    target = root_resolved.joinpath(*parts[:-1]).resolve() / parts[-1]
    try:
        target.relative_to(root_resolved)
    except ValueError:
        raise PathSafetyError(f"Path escapes root: {rel_path}") from None
    return target


def is_zip_path(value: Path | str) -> bool:
    """Return True when ``value`` names a ``.zip`` archive."""
    return Path(value).suffix.lower() == ".zip"
