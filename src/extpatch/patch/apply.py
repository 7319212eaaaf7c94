"""Replay a bundle's ops against a disposable working copy of an input tree.

The applier is a small state machine::

    NOT_VALIDATED -> VALIDATED -> APPLYING -> DONE
                                          \\-> FAILED

Ops only ever run inside a scratch copy of the input. The copy is committed to
the requested destination (directory or zip archive) once every op succeeds;
any failure discards it, leaving both the input and the destination untouched.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Tuple

from ..errors import (
    ApplyStateError,
    FingerprintError,
    OpPreconditionError,
    OutputError,
    PatchError,
    PayloadError,
)
from ..tools.archive import Compression, pack_directory
from ..tools.fs import assert_directory, copy_file_stream, copy_tree, list_all_files, prune_empty_parents, temporary_directory
from ..tools.telemetry import emit_event
from ..utils.hashing import hash_file
from ..utils.paths import is_zip_path, safe_join
from .schema import AddOp, DeleteOp, PatchOp, ReplaceOp
from .validate import LoadedBundle, ValidationReport, load_patch_bundle, prepare_input_source, validate_target_and_fingerprints

__all__ = [
    "ApplyResult",
    "ApplyState",
    "PatchApplier",
    "TreeComparison",
    "apply_patch",
    "compare_trees",
]

LOGGER = logging.getLogger(__name__)


class ApplyState(str, Enum):
    """Lifecycle states of a :class:`PatchApplier`."""

    NOT_VALIDATED = "not_validated"
    VALIDATED = "validated"
    APPLYING = "applying"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class TreeComparison:
    """Differences between an applied tree and an expected tree."""

    missing: Tuple[str, ...] = ()
    unexpected: Tuple[str, ...] = ()
    differing: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not (self.missing or self.unexpected or self.differing)

    def describe(self) -> str:
        if self.ok:
            return "Output matches the expected tree."
        parts: list[str] = []
        if self.missing:
            parts.append(f"missing: {', '.join(self.missing)}")
        if self.unexpected:
            parts.append(f"unexpected: {', '.join(self.unexpected)}")
        if self.differing:
            parts.append(f"differs: {', '.join(self.differing)}")
        return "Directory comparison failed: " + "; ".join(parts)


@dataclass(slots=True)
class ApplyResult:
    """Outcome of a successful apply."""

    output: Path
    applied: Tuple[PatchOp, ...]
    validation: ValidationReport
    comparison: TreeComparison | None = None

    @property
    def check_passed(self) -> bool:
        return self.comparison is None or self.comparison.ok


def _require_regular_file(path: Path, rel_path: str, action: str) -> None:
    try:
        mode = path.lstat().st_mode
    except FileNotFoundError:
        raise OpPreconditionError(f"{action} target missing: {rel_path}", details={"path": rel_path}) from None
    if not stat.S_ISREG(mode):
        raise OpPreconditionError(f"{action} target is not a file: {rel_path}", details={"path": rel_path})


class PatchApplier:
    """Drive one bundle through validation and op replay."""

    def __init__(self, loaded: LoadedBundle) -> None:
        self.loaded = loaded
        self._state = ApplyState.NOT_VALIDATED

    @property
    def state(self) -> ApplyState:
        return self._state

    def validate(self, input_dir: Path | str) -> ValidationReport:
        """Check preconditions against the source input; required before :meth:`run`."""
        if self._state is not ApplyState.NOT_VALIDATED:
            raise ApplyStateError(f"Cannot validate from state {self._state.value}")
        report = validate_target_and_fingerprints(self.loaded.bundle, input_dir)
        self._state = ApplyState.VALIDATED
        return report

    def run(self, work_dir: Path | str) -> Tuple[PatchOp, ...]:
        """Apply every op in bundle order inside ``work_dir``.

        The first failing op moves the applier to ``FAILED`` and aborts the
        rest; the caller owns discarding ``work_dir``.
        """
        if self._state is not ApplyState.VALIDATED:
            raise ApplyStateError(f"Cannot apply ops from state {self._state.value}")
        root = Path(work_dir).resolve()
        self._state = ApplyState.APPLYING
        applied: list[PatchOp] = []
        try:
            for op in self.loaded.bundle.ops:
                self._apply_op(op, root)
                applied.append(op)
        except Exception:
            self._state = ApplyState.FAILED
            raise
        self._state = ApplyState.DONE
        return tuple(applied)

    def _apply_op(self, op: PatchOp, root: Path) -> None:
        if isinstance(op, DeleteOp):
            self._apply_delete(op, root)
        elif isinstance(op, AddOp):
            self._apply_add(op, root)
        elif isinstance(op, ReplaceOp):
            self._apply_replace(op, root)
        else:  # pragma: no cover - the op union is closed
            raise PatchError(f"Unknown op type: {type(op).__name__}")

    def _apply_delete(self, op: DeleteOp, root: Path) -> None:
        target = safe_join(root, op.path)
        _require_regular_file(target, op.path, "Delete")
        target.unlink()
        prune_empty_parents(target, root)
        LOGGER.debug("Deleted %s", op.path)

    def _apply_add(self, op: AddOp, root: Path) -> None:
        target = safe_join(root, op.path)
        if os.path.lexists(target):
            raise OpPreconditionError(f"Add target already exists: {op.path}", details={"path": op.path})
        payload = self.loaded.payload_file(op.payload_path, op.path)
        try:
            copy_file_stream(payload, target)
        except (FileExistsError, NotADirectoryError) as error:
            raise OpPreconditionError(
                f"Add target parent is not a directory: {op.path}", details={"path": op.path}
            ) from error
        actual = hash_file(target)
        if actual != op.sha256:
            raise PayloadError(
                f"Added file hash mismatch for {op.path}: expected {op.sha256}, got {actual}",
                details={"path": op.path, "expected": op.sha256, "actual": actual},
            )
        LOGGER.debug("Added %s", op.path)

    def _apply_replace(self, op: ReplaceOp, root: Path) -> None:
        target = safe_join(root, op.path)
        _require_regular_file(target, op.path, "Replace")
        current = hash_file(target)
        if current != op.from_sha256:
            raise FingerprintError(
                f"Replace source hash mismatch for {op.path}: expected {op.from_sha256}, got {current}",
                details={"path": op.path, "expected": op.from_sha256, "actual": current},
            )
        payload = self.loaded.payload_file(op.payload_path, op.path)
        copy_file_stream(payload, target)
        actual = hash_file(target)
        if actual != op.to_sha256:
            raise PayloadError(
                f"Replaced file hash mismatch for {op.path}: expected {op.to_sha256}, got {actual}",
                details={"path": op.path, "expected": op.to_sha256, "actual": actual},
            )
        LOGGER.debug("Replaced %s", op.path)


def compare_trees(expected_dir: Path | str, actual_dir: Path | str) -> TreeComparison:
    """Compare file sets and per-file hashes of two trees."""
    expected_files = set(list_all_files(expected_dir))
    actual_files = set(list_all_files(actual_dir))
    differing = [
        rel_path
        for rel_path in sorted(expected_files & actual_files)
        if hash_file(safe_join(expected_dir, rel_path)) != hash_file(safe_join(actual_dir, rel_path))
    ]
    return TreeComparison(
        missing=tuple(sorted(expected_files - actual_files)),
        unexpected=tuple(sorted(actual_files - expected_files)),
        differing=tuple(differing),
    )


def _ensure_output_available(output: Path, *, as_archive: bool) -> None:
    if as_archive:
        if output.exists() and not output.is_file():
            raise OutputError(f"Output path is not a file: {output}")
        return
    if not output.exists():
        return
    if not output.is_dir():
        raise OutputError(f"Output path is not a directory: {output}")
    if any(output.iterdir()):
        raise OutputError(f"Output directory is not empty: {output}")


def _materialise_directory(work_dir: Path, output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    staging = output.parent / f".{output.name}.{uuid.uuid4().hex}.tmp"
    try:
        shutil.move(str(work_dir), str(staging))
        if output.exists():
            output.rmdir()
        os.replace(staging, output)
    except OSError as error:
        shutil.rmtree(staging, ignore_errors=True)
        raise OutputError(f"Unable to write output directory {output}: {error}") from error


def apply_patch(
    patch_zip: Path | str,
    input_path: Path | str,
    output: Path | str,
    *,
    check_against: Path | str | None = None,
    compression: Compression = "deflated",
) -> ApplyResult:
    """Validate ``input_path`` against the bundle, apply it, and write ``output``.

    ``output`` ending in ``.zip`` is packed as an archive; anything else is a
    directory that must be absent or empty. ``check_against`` names a tree the
    result is compared with after the apply; mismatches are reported in the
    result rather than raised.
    """
    patch_path = Path(patch_zip).resolve()
    output_path = Path(output).resolve()
    as_archive = is_zip_path(output_path)
    _ensure_output_available(output_path, as_archive=as_archive)
    check_dir = assert_directory(check_against, "Check-against") if check_against is not None else None

    with temporary_directory("extpatch-apply-") as scratch:
        loaded = load_patch_bundle(patch_path, scratch)
        input_dir = prepare_input_source(input_path, scratch)
        applier = PatchApplier(loaded)
        work_dir = scratch / "work"
        try:
            report = applier.validate(input_dir)
            copy_tree(input_dir, work_dir)
            applied = applier.run(work_dir)
        except PatchError as error:
            emit_event(
                "patch_apply_failed",
                patch=patch_path,
                state=applier.state.value,
                error=type(error).__name__,
                message=str(error),
            )
            raise

        comparison = compare_trees(check_dir, work_dir) if check_dir is not None else None
        if as_archive:
            pack_directory(work_dir, output_path, compression=compression)
        else:
            _materialise_directory(work_dir, output_path)

    emit_event(
        "patch_apply_completed",
        patch=patch_path,
        output=output_path,
        ops=loaded.bundle.op_counts(),
    )
    if comparison is not None and not comparison.ok:
        LOGGER.warning(comparison.describe())
        emit_event(
            "patch_check_mismatch",
            output=output_path,
            missing=comparison.missing,
            unexpected=comparison.unexpected,
            differing=comparison.differing,
        )
    return ApplyResult(output=output_path, applied=applied, validation=report, comparison=comparison)
