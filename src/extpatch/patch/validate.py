"""Bundle loading and read-only precondition checks against an input tree."""

from __future__ import annotations

import json
import logging
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from ..errors import CompatibilityError, FingerprintError, InputError, PatchError, PayloadError, ShapeError
from ..tools.archive import unpack_archive
from ..tools.fs import read_json_file
from ..tools.telemetry import emit_event
from ..utils.hashing import hash_file
from ..utils.paths import is_zip_path, safe_join
from .schema import DESCRIPTOR_FILE, PATCH_MANIFEST, PatchBundle, PatchTarget

__all__ = [
    "LoadedBundle",
    "ValidationReport",
    "check_fingerprints",
    "check_target",
    "load_descriptor",
    "load_patch_bundle",
    "prepare_input_source",
    "validate_target_and_fingerprints",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class LoadedBundle:
    """A validated bundle together with the directory holding its payloads."""

    bundle: PatchBundle
    root: Path

    def payload_file(self, ref: str, op_path: str) -> Path:
        """Resolve ``ref`` inside the bundle, requiring a regular file."""
        path = safe_join(self.root, ref)
        try:
            mode = path.lstat().st_mode
        except FileNotFoundError:
            raise PayloadError(f"Missing payload for {op_path}: {ref}") from None
        if not stat.S_ISREG(mode):
            raise PayloadError(f"Payload is not a file: {ref}")
        return path


@dataclass(slots=True)
class ValidationReport:
    """Outcome of a successful validation pass."""

    descriptor: Mapping[str, Any]
    fingerprints: Tuple[str, ...]


def load_patch_bundle(patch_zip: Path | str, scratch: Path) -> LoadedBundle:
    """Unpack ``patch_zip`` under ``scratch`` and validate its ``patch.json``."""
    patch_dir = scratch / "patch"
    unpack_archive(patch_zip, patch_dir)
    manifest_path = patch_dir / PATCH_MANIFEST
    if not manifest_path.is_file():
        raise ShapeError(f"Invalid patch bundle: {PATCH_MANIFEST} not found in {patch_zip}")
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as error:
        raise ShapeError(f"Invalid patch.json: {error}") from error
    bundle = PatchBundle.from_json(text)
    LOGGER.debug("Loaded bundle with %d op(s) from %s", len(bundle.ops), patch_zip)
    return LoadedBundle(bundle=bundle, root=patch_dir)


def prepare_input_source(input_path: Path | str, scratch: Path) -> Path:
    """Return a directory holding the input tree, unpacking zip inputs first."""
    resolved = Path(input_path).resolve()
    if is_zip_path(resolved):
        if not resolved.is_file():
            raise InputError(f"Input archive not found: {resolved}")
        return unpack_archive(resolved, scratch / "input")
    if not resolved.is_dir():
        raise InputError(f"Input is not a directory: {resolved}")
    return resolved


def load_descriptor(root: Path | str) -> Dict[str, Any]:
    """Read the tree's ``manifest.json`` as a JSON object."""
    manifest_path = safe_join(root, DESCRIPTOR_FILE)
    try:
        data = read_json_file(manifest_path)
    except FileNotFoundError:
        raise CompatibilityError(f"{DESCRIPTOR_FILE} is missing") from None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
        raise CompatibilityError(f"{DESCRIPTOR_FILE} is missing or invalid: {error}") from error
    if not isinstance(data, dict):
        raise CompatibilityError(f"{DESCRIPTOR_FILE} must contain a JSON object")
    return data


def _values_match(expected: Any, actual: Any) -> bool:
    if isinstance(expected, bool) != isinstance(actual, bool):
        return False
    return expected == actual


def check_target(target: PatchTarget | None, descriptor: Mapping[str, Any]) -> None:
    """Compare each recognised target field with the input descriptor."""
    if target is None:
        return
    for field_name, expected in target.checked_fields().items():
        if field_name not in descriptor:
            raise CompatibilityError(
                f"{field_name} mismatch: expected {expected}, got missing",
                details={"field": field_name, "expected": expected, "actual": None},
            )
        actual = descriptor[field_name]
        if not _values_match(expected, actual):
            raise CompatibilityError(
                f"{field_name} mismatch: expected {expected}, got {actual}",
                details={"field": field_name, "expected": expected, "actual": actual},
            )


def check_fingerprints(fingerprints: Mapping[str, str], root: Path | str) -> Tuple[str, ...]:
    """Require every fingerprinted path to be a regular file with the recorded hash."""
    checked: list[str] = []
    for rel_path, expected in fingerprints.items():
        path = safe_join(root, rel_path)
        try:
            mode = path.lstat().st_mode
        except FileNotFoundError:
            raise FingerprintError(
                f"Missing required file for fingerprint: {rel_path} (expected {expected}, got missing)",
                details={"path": rel_path, "expected": expected, "actual": None},
            ) from None
        if stat.S_ISLNK(mode):
            raise FingerprintError(f"Symlink not allowed in input: {rel_path}", details={"path": rel_path})
        if not stat.S_ISREG(mode):
            raise FingerprintError(f"Fingerprint target is not a file: {rel_path}", details={"path": rel_path})
        actual = hash_file(path)
        if actual != expected:
            raise FingerprintError(
                f"Fingerprint mismatch for {rel_path}: expected {expected}, got {actual}",
                details={"path": rel_path, "expected": expected, "actual": actual},
            )
        checked.append(rel_path)
    return tuple(checked)


def validate_target_and_fingerprints(bundle: PatchBundle, input_dir: Path | str) -> ValidationReport:
    """Run the full read-only precondition pass; nothing on disk is modified."""
    try:
        descriptor = load_descriptor(input_dir)
        check_target(bundle.target, descriptor)
        checked = check_fingerprints(bundle.fingerprints, input_dir)
    except PatchError as error:
        emit_event(
            "patch_validation_failed",
            input=Path(input_dir),
            error=type(error).__name__,
            message=str(error),
        )
        raise
    emit_event("patch_validated", input=Path(input_dir), fingerprints=len(checked))
    return ValidationReport(descriptor=descriptor, fingerprints=checked)
