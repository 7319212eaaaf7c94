"""Error taxonomy raised while building, loading, validating, or applying bundles."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "ApplyStateError",
    "ArchiveError",
    "CompatibilityError",
    "ConfigError",
    "FingerprintError",
    "InputError",
    "OpPreconditionError",
    "OutputError",
    "PatchError",
    "PathSafetyError",
    "PayloadError",
    "ShapeError",
]


class PatchError(RuntimeError):
    """Base class for every failure surfaced by the patch protocol."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class PathSafetyError(PatchError):
    """Raised for unsafe relative paths, traversal attempts, or symlinks."""


class ShapeError(PatchError):
    """Raised when a bundle manifest is malformed."""


class CompatibilityError(PatchError):
    """Raised when the input descriptor does not match the bundle target."""


class FingerprintError(PatchError):
    """Raised when a fingerprinted path is missing, the wrong kind, or drifted."""


class PayloadError(PatchError):
    """Raised when a payload blob is missing, malformed, or copies incorrectly."""


class OpPreconditionError(PatchError):
    """Raised when an op target is missing, the wrong kind, or already present."""


class ApplyStateError(PatchError):
    """Raised when the applier is driven through an illegal state transition."""


class ArchiveError(PatchError):
    """Raised when a zip container cannot be read or contains invalid entries."""


class InputError(PatchError):
    """Raised when an input path is neither a directory nor a zip archive."""


class OutputError(PatchError):
    """Raised when the requested destination cannot receive the patched tree."""


class ConfigError(PatchError):
    """Raised when the settings file cannot be read or fails validation."""
