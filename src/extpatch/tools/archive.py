"""Deterministic zip packing and guarded unpacking.

Packed archives are reproducible: entries are written in sorted order with a
fixed timestamp and fixed permissions, so packing identical trees twice yields
identical bytes. Unpacking validates every entry name before touching disk and
refuses symlink entries and duplicate names.
"""

from __future__ import annotations

import os
import shutil
import stat
import uuid
import zipfile
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from ..errors import ArchiveError, PathSafetyError
from ..utils.paths import ensure_safe_rel_path, safe_join, to_posix_path
from .fs import list_all_files

__all__ = [
    "ARCHIVE_EPOCH",
    "Compression",
    "pack_directory",
    "unpack_archive",
]

Compression = Literal["deflated", "stored"]

ARCHIVE_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)
_ZIP_DATE_TIME = (2000, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644
_COMPRESSION_METHODS = {
    "deflated": zipfile.ZIP_DEFLATED,
    "stored": zipfile.ZIP_STORED,
}


def pack_directory(
    source_dir: Path | str,
    out_zip: Path | str,
    *,
    compression: Compression = "deflated",
) -> Path:
    """Pack every regular file under ``source_dir`` into ``out_zip``.

    The archive is written to a temporary sibling and renamed into place so a
    failure never leaves a truncated archive under the requested name.
    """
    method = _COMPRESSION_METHODS.get(compression)
    if method is None:
        raise ArchiveError(f"Unsupported compression: {compression}")
    source = Path(source_dir).resolve()
    target = Path(out_zip).resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_target = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")

    try:
        with zipfile.ZipFile(temp_target, "w", compression=method) as archive:
            for rel_path in list_all_files(source):
                info = zipfile.ZipInfo(filename=rel_path, date_time=_ZIP_DATE_TIME)
                info.compress_type = method
                info.create_system = 3
                info.external_attr = (stat.S_IFREG | _FILE_MODE) << 16
                with safe_join(source, rel_path).open("rb") as reader, archive.open(info, "w") as writer:
                    shutil.copyfileobj(reader, writer)
        os.replace(temp_target, target)
    finally:
        if temp_target.exists():
            temp_target.unlink()
    return target


def _entry_is_symlink(info: zipfile.ZipInfo) -> bool:
    mode = (info.external_attr >> 16) & 0xFFFF
    return info.create_system == 3 and stat.S_ISLNK(mode)


def unpack_archive(zip_path: Path | str, out_dir: Path | str) -> Path:
    """Extract ``zip_path`` into ``out_dir`` after validating each entry."""
    source = Path(zip_path)
    destination = Path(out_dir)
    destination.mkdir(parents=True, exist_ok=True)
    try:
        archive = zipfile.ZipFile(source, "r")
    except (OSError, zipfile.BadZipFile) as error:
        raise ArchiveError(f"Unable to open zip: {source}: {error}") from error

    seen: set[str] = set()
    with archive:
        for info in archive.infolist():
            entry_name = to_posix_path(info.filename)
            if entry_name.endswith("/"):
                rel_dir = ensure_safe_rel_path(entry_name[:-1])
                safe_join(destination, rel_dir).mkdir(parents=True, exist_ok=True)
                continue
            rel_path = ensure_safe_rel_path(entry_name)
            if _entry_is_symlink(info):
                raise PathSafetyError(f"Symlink entries are not allowed: {rel_path}")
            if rel_path in seen:
                raise ArchiveError(f"Duplicate archive entry: {rel_path}")
            seen.add(rel_path)
            target = safe_join(destination, rel_path)
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                with archive.open(info, "r") as reader, target.open("wb") as writer:
                    shutil.copyfileobj(reader, writer)
            except (zipfile.BadZipFile, zlib.error) as error:
                raise ArchiveError(f"Corrupt archive entry {rel_path}: {error}") from error
    return destination
