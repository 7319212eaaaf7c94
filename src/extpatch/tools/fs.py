"""Filesystem helpers: tree enumeration, streamed copies, and scratch directories."""

from __future__ import annotations

import json
import logging
import os
import shutil
import stat
import tempfile
from contextlib import contextmanager
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Iterator, Sequence

from ..errors import InputError, PathSafetyError
from ..utils.paths import ensure_safe_rel_path, safe_join

__all__ = [
    "DEFAULT_IGNORE_PATTERNS",
    "assert_directory",
    "copy_file_stream",
    "copy_tree",
    "is_ignored",
    "list_all_files",
    "list_files",
    "prune_empty_parents",
    "read_json_file",
    "temporary_directory",
    "write_json_file",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git/**",
    "node_modules/**",
    "dist/**",
    "build/**",
    "*.map",
    "**/*.map",
    ".DS_Store",
    "Thumbs.db",
)


def is_ignored(rel_path: str, patterns: Sequence[str], *, directory: bool = False) -> bool:
    """Return True when ``rel_path`` matches any ignore glob.

    Directories are tested with a trailing slash so ``.git/**`` prunes ``.git``.
    """
    candidate = f"{rel_path}/" if directory else rel_path
    return any(fnmatchcase(candidate, pattern) for pattern in patterns)


def assert_directory(path: Path | str, label: str) -> Path:
    """Return ``path`` resolved, raising :class:`InputError` unless it is a directory."""
    resolved = Path(path).resolve()
    if not resolved.is_dir():
        raise InputError(f"{label} is not a directory: {resolved}")
    return resolved


def _reject_backslash(name: str, rel_path: str) -> None:
    # Bundle paths use "/" only; a literal backslash would not round-trip.
    if "\\" in name:
        raise PathSafetyError(f"Backslash in file name is not allowed: {rel_path}")


def list_files(root: Path | str, ignore: Sequence[str] = ()) -> list[str]:
    """List regular files under ``root`` as sorted POSIX relative paths.

    Symlinks are never followed; meeting one outside the ignore globs raises
    :class:`PathSafetyError`. Other special files are skipped.
    """
    root_path = Path(root).resolve()
    files: list[str] = []
    for current, dirnames, filenames in os.walk(root_path, followlinks=False):
        current_path = Path(current)
        base = current_path.relative_to(root_path).as_posix()
        prefix = "" if base == "." else f"{base}/"

        kept_dirs: list[str] = []
        for name in sorted(dirnames):
            rel_dir = f"{prefix}{name}"
            if is_ignored(rel_dir, ignore, directory=True):
                continue
            _reject_backslash(name, rel_dir)
            if (current_path / name).is_symlink():
                raise PathSafetyError(f"Symlinks are not allowed: {rel_dir}")
            kept_dirs.append(name)
        dirnames[:] = kept_dirs

        for name in filenames:
            rel_path = f"{prefix}{name}"
            if is_ignored(rel_path, ignore):
                continue
            _reject_backslash(name, rel_path)
            ensure_safe_rel_path(rel_path)
            mode = (current_path / name).lstat().st_mode
            if stat.S_ISLNK(mode):
                raise PathSafetyError(f"Symlinks are not allowed: {rel_path}")
            if not stat.S_ISREG(mode):
                LOGGER.debug("Skipping special file %s", rel_path)
                continue
            files.append(rel_path)
    files.sort()
    return files


def list_all_files(root: Path | str) -> list[str]:
    return list_files(root, ())


def copy_file_stream(source: Path | str, destination: Path | str) -> None:
    """Copy file bytes, creating parent directories as needed."""
    destination_path = Path(destination)
    destination_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination_path)


def copy_tree(source: Path | str, destination: Path | str) -> list[str]:
    """Copy every regular file of ``source`` into ``destination`` byte for byte."""
    destination_path = Path(destination)
    destination_path.mkdir(parents=True, exist_ok=True)
    files = list_all_files(source)
    for rel_path in files:
        copy_file_stream(safe_join(source, rel_path), safe_join(destination_path, rel_path))
    return files


def prune_empty_parents(path: Path, stop: Path) -> None:
    """Remove empty directories from ``path.parent`` upward, never touching ``stop``."""
    stop_resolved = stop.resolve()
    current = path.parent
    while current.resolve() != stop_resolved:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent


@contextmanager
def temporary_directory(prefix: str) -> Iterator[Path]:
    """Yield a private scratch directory that is removed on every exit path."""
    path = Path(tempfile.mkdtemp(prefix=prefix)).resolve()
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def read_json_file(path: Path | str) -> Any:
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def write_json_file(path: Path | str, data: Any) -> None:
    """Write ``data`` as indented JSON with a trailing newline."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    target.write_text(payload, encoding="utf-8")
