"""Filesystem, archive, and telemetry helpers shared by the patch protocol."""

from .archive import ARCHIVE_EPOCH, pack_directory, unpack_archive
from .fs import DEFAULT_IGNORE_PATTERNS, list_all_files, list_files, temporary_directory
from .telemetry import TELEMETRY_LOGGER, emit_event

__all__ = [
    "ARCHIVE_EPOCH",
    "DEFAULT_IGNORE_PATTERNS",
    "TELEMETRY_LOGGER",
    "emit_event",
    "list_all_files",
    "list_files",
    "pack_directory",
    "temporary_directory",
    "unpack_archive",
]
