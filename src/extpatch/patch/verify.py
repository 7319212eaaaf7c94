"""Check whether a bundle would apply cleanly without touching any tree."""

from __future__ import annotations

from pathlib import Path

from ..tools.fs import temporary_directory
from .validate import ValidationReport, load_patch_bundle, prepare_input_source, validate_target_and_fingerprints

__all__ = ["verify_patch"]


def verify_patch(patch_zip: Path | str, input_path: Path | str) -> ValidationReport:
    """Validate ``input_path`` (directory or zip) against the bundle preconditions."""
    with temporary_directory("extpatch-verify-") as scratch:
        loaded = load_patch_bundle(Path(patch_zip).resolve(), scratch)
        input_dir = prepare_input_source(input_path, scratch)
        return validate_target_and_fingerprints(loaded.bundle, input_dir)
