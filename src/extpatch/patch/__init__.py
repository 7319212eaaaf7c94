"""Patch protocol: bundle model, diffing, validation, and apply."""

from ..errors import (
    ApplyStateError,
    CompatibilityError,
    FingerprintError,
    OpPreconditionError,
    PatchError,
    PathSafetyError,
    PayloadError,
    ShapeError,
)
from .apply import ApplyResult, ApplyState, PatchApplier, TreeComparison, apply_patch, compare_trees
from .diff import DiffResult, diff_trees, hash_tree
from .make import MakeResult, make_patch
from .payload import PayloadStore
from .schema import AddOp, DeleteOp, PatchBundle, PatchOp, PatchTarget, ReplaceOp
from .validate import LoadedBundle, ValidationReport, load_patch_bundle, validate_target_and_fingerprints
from .verify import verify_patch

__all__ = [
    "AddOp",
    "ApplyResult",
    "ApplyState",
    "ApplyStateError",
    "CompatibilityError",
    "DeleteOp",
    "DiffResult",
    "FingerprintError",
    "LoadedBundle",
    "MakeResult",
    "OpPreconditionError",
    "PatchApplier",
    "PatchBundle",
    "PatchError",
    "PatchOp",
    "PatchTarget",
    "PathSafetyError",
    "PayloadError",
    "PayloadStore",
    "ReplaceOp",
    "ShapeError",
    "TreeComparison",
    "ValidationReport",
    "apply_patch",
    "compare_trees",
    "diff_trees",
    "hash_tree",
    "load_patch_bundle",
    "make_patch",
    "validate_target_and_fingerprints",
    "verify_patch",
]
