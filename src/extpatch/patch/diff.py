"""Derive the minimal op list that turns one tree's file set into another's."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Set, Tuple

from ..errors import CompatibilityError, InputError
from ..utils.hashing import hash_file
from ..utils.paths import safe_join
from .schema import DESCRIPTOR_FILE, AddOp, DeleteOp, PatchOp, ReplaceOp, op_sort_key

__all__ = ["DiffResult", "StageCallback", "diff_trees", "hash_tree"]

# Receives (relative path in the modified tree, content hash), returns the payload reference.
StageCallback = Callable[[str, str], str]


@dataclass(slots=True)
class DiffResult:
    """Sorted ops plus the fingerprints apply depends on."""

    ops: Tuple[PatchOp, ...]
    fingerprints: Dict[str, str]


def hash_tree(root: Path | str, files: Iterable[str]) -> Dict[str, str]:
    """Map each relative path in ``files`` to the streamed hash of its content."""
    return {rel_path: hash_file(safe_join(root, rel_path)) for rel_path in files}


def _parent_dirs(paths: Iterable[str]) -> Set[str]:
    parents: Set[str] = set()
    for rel_path in paths:
        parts = rel_path.split("/")[:-1]
        for index in range(1, len(parts) + 1):
            parents.add("/".join(parts[:index]))
    return parents


def _check_file_dir_conflicts(original: Mapping[str, str], modified: Mapping[str, str]) -> None:
    conflicts = (original.keys() & _parent_dirs(modified)) | (modified.keys() & _parent_dirs(original))
    if conflicts:
        raise InputError(
            "Paths are a file in one tree and a directory in the other: " + ", ".join(sorted(conflicts)),
            details={"paths": sorted(conflicts)},
        )


def diff_trees(
    original: Mapping[str, str],
    modified: Mapping[str, str],
    stage: StageCallback,
    *,
    descriptor: str = DESCRIPTOR_FILE,
) -> DiffResult:
    """Compare two path->hash maps and emit delete/replace/add ops.

    Deleted paths and the "from" side of replaced paths are fingerprinted, as
    is ``descriptor`` whether or not it changed. Staging happens in sorted
    path order so repeated runs touch the payload store identically.
    """
    if descriptor not in original:
        raise CompatibilityError(f"{descriptor} not found in original directory")
    _check_file_dir_conflicts(original, modified)

    fingerprints: Dict[str, str] = {descriptor: original[descriptor]}
    ops: list[PatchOp] = []

    for rel_path in sorted(original.keys() - modified.keys()):
        fingerprints[rel_path] = original[rel_path]
        ops.append(DeleteOp(path=rel_path))

    for rel_path in sorted(original.keys() & modified.keys()):
        before = original[rel_path]
        after = modified[rel_path]
        if before == after:
            continue
        fingerprints[rel_path] = before
        ops.append(
            ReplaceOp(
                path=rel_path,
                payload_path=stage(rel_path, after),
                from_sha256=before,
                to_sha256=after,
            )
        )

    for rel_path in sorted(modified.keys() - original.keys()):
        digest = modified[rel_path]
        ops.append(AddOp(path=rel_path, payload_path=stage(rel_path, digest), sha256=digest))

    ops.sort(key=op_sort_key)
    return DiffResult(ops=tuple(ops), fingerprints=dict(sorted(fingerprints.items())))
