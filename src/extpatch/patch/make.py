"""Build a patch bundle from an original and a modified tree."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, FrozenSet, Mapping, Sequence

from ..tools.archive import ARCHIVE_EPOCH, Compression, pack_directory
from ..tools.fs import DEFAULT_IGNORE_PATTERNS, assert_directory, list_files, temporary_directory, write_json_file
from ..tools.telemetry import emit_event
from ..utils.paths import safe_join
from .diff import diff_trees, hash_tree
from .payload import PayloadStore
from .schema import PATCH_MANIFEST, PATCHSET_VERSION, PatchBundle, PatchTarget
from .validate import load_descriptor

__all__ = ["MakeResult", "build_target", "make_patch"]

LOGGER = logging.getLogger(__name__)

_TARGET_FIELD_TYPES: Mapping[str, type] = {
    "manifest_version": int,
    "version": str,
    "name": str,
}


@dataclass(slots=True)
class MakeResult:
    """Artifacts produced by :func:`make_patch`."""

    bundle_path: Path
    bundle: PatchBundle
    payloads: FrozenSet[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "bundle_path": self.bundle_path.as_posix(),
            "ops": self.bundle.op_counts(),
            "fingerprints": len(self.bundle.fingerprints),
            "payloads": sorted(self.payloads),
        }


def build_target(descriptor: Mapping[str, Any]) -> PatchTarget | None:
    """Copy the recognised descriptor fields into a bundle target.

    Fields with an unexpected JSON type are left out rather than recorded,
    so they are never checked at apply time.
    """
    fields: dict[str, Any] = {}
    for field_name, expected_type in _TARGET_FIELD_TYPES.items():
        if field_name not in descriptor:
            continue
        value = descriptor[field_name]
        if isinstance(value, bool) or not isinstance(value, expected_type):
            LOGGER.warning("Ignoring descriptor field %s with unexpected value %r", field_name, value)
            continue
        fields[field_name] = value
    if not fields:
        return None
    return PatchTarget(**fields)


def _format_created_at(created_at: datetime | str | None) -> str:
    if created_at is None:
        return ARCHIVE_EPOCH.isoformat()
    if isinstance(created_at, datetime):
        return created_at.isoformat()
    return created_at


def make_patch(
    original_dir: Path | str,
    modified_dir: Path | str,
    out_file: Path | str,
    *,
    ignore: Sequence[str] = DEFAULT_IGNORE_PATTERNS,
    created_at: datetime | str | None = None,
    compression: Compression = "deflated",
) -> MakeResult:
    """Diff two trees and write the resulting bundle archive to ``out_file``.

    With the default ``created_at`` the bundle bytes depend only on the two
    trees, so running ``make_patch`` twice yields identical archives.
    """
    original = assert_directory(original_dir, "Original")
    modified = assert_directory(modified_dir, "Modified")
    out_path = Path(out_file).resolve()

    descriptor = load_descriptor(original)
    original_hashes = hash_tree(original, list_files(original, ignore))
    modified_hashes = hash_tree(modified, list_files(modified, ignore))
    LOGGER.debug(
        "Comparing %d original file(s) with %d modified file(s)",
        len(original_hashes),
        len(modified_hashes),
    )

    with temporary_directory("extpatch-patch-") as bundle_root:
        store = PayloadStore(bundle_root)

        def stage(rel_path: str, digest: str) -> str:
            return store.stage(safe_join(modified, rel_path), digest)

        diff = diff_trees(original_hashes, modified_hashes, stage)
        bundle = PatchBundle(
            patchset_version=PATCHSET_VERSION,
            created_at=_format_created_at(created_at),
            target=build_target(descriptor),
            fingerprints=diff.fingerprints,
            ops=diff.ops,
        )
        write_json_file(bundle_root / PATCH_MANIFEST, bundle.to_manifest())
        pack_directory(bundle_root, out_path, compression=compression)
        payloads = store.staged

    emit_event(
        "patch_make_completed",
        bundle=out_path,
        ops=bundle.op_counts(),
        fingerprints=len(bundle.fingerprints),
        payloads=len(payloads),
    )
    return MakeResult(bundle_path=out_path, bundle=bundle, payloads=payloads)
