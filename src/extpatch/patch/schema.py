"""Typed records serialised into a bundle's ``patch.json``."""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)

from ..errors import ShapeError
from ..utils.paths import ensure_safe_rel_path

PATCHSET_VERSION = 1
DESCRIPTOR_FILE = "manifest.json"
PATCH_MANIFEST = "patch.json"
PAYLOAD_DIR = "payload"

Sha256Hex = Annotated[StrictStr, StringConstraints(pattern=r"^[0-9a-f]{64}$")]


def payload_ref(digest: str) -> str:
    """Return the bundle-relative location of the blob addressed by ``digest``."""
    return f"{PAYLOAD_DIR}/{digest}"


class BundleRecord(BaseModel):
    """Base Pydantic model for immutable bundle records."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class PatchTarget(BundleRecord):
    """Descriptor fields an input tree must match before a bundle applies.

    ``name`` is informational. Unrecognised keys are dropped on load.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    manifest_version: Optional[StrictInt] = None
    version: Optional[StrictStr] = None
    name: Optional[StrictStr] = None

    def checked_fields(self) -> Dict[str, Any]:
        """Return the recognised fields that take part in compatibility checks."""
        fields: Dict[str, Any] = {}
        if self.manifest_version is not None:
            fields["manifest_version"] = self.manifest_version
        if self.version is not None:
            fields["version"] = self.version
        return fields

    def is_empty(self) -> bool:
        return self.manifest_version is None and self.version is None and self.name is None


class _OpRecord(BundleRecord):
    @field_validator("path", "payload_path", check_fields=False)
    @classmethod
    def _check_safe_path(cls, value: str) -> str:
        ensure_safe_rel_path(value)
        return value


class DeleteOp(_OpRecord):
    """Remove a file whose content is pinned by the bundle fingerprints."""

    type: Literal["delete"] = "delete"
    path: StrictStr


class AddOp(_OpRecord):
    """Create a file that must not already exist."""

    type: Literal["add"] = "add"
    path: StrictStr
    payload_path: StrictStr = Field(alias="payloadPath")
    sha256: Sha256Hex

    @model_validator(mode="after")
    def _check_payload_ref(self) -> "AddOp":
        if self.payload_path != payload_ref(self.sha256):
            raise ShapeError(
                f"Payload reference for {self.path} does not match its hash: {self.payload_path}"
            )
        return self


class ReplaceOp(_OpRecord):
    """Overwrite a file whose current content hashes to ``from_sha256``."""

    type: Literal["replace"] = "replace"
    path: StrictStr
    payload_path: StrictStr = Field(alias="payloadPath")
    from_sha256: Sha256Hex = Field(alias="fromSha256")
    to_sha256: Sha256Hex = Field(alias="toSha256")

    @model_validator(mode="after")
    def _check_payload_ref(self) -> "ReplaceOp":
        if self.payload_path != payload_ref(self.to_sha256):
            raise ShapeError(
                f"Payload reference for {self.path} does not match its hash: {self.payload_path}"
            )
        return self


PatchOp = Annotated[Union[DeleteOp, AddOp, ReplaceOp], Field(discriminator="type")]


def op_sort_key(op: DeleteOp | AddOp | ReplaceOp) -> Tuple[str, str]:
    return (op.path, op.type)


class PatchBundle(BundleRecord):
    """Complete description of a patch: preconditions plus ordered ops."""

    patchset_version: StrictInt = Field(default=PATCHSET_VERSION, alias="patchsetVersion")
    created_at: StrictStr = Field(alias="createdAt")
    target: Optional[PatchTarget] = None
    fingerprints: Dict[StrictStr, Sha256Hex]
    ops: Tuple[PatchOp, ...] = ()

    @model_validator(mode="after")
    def _check_invariants(self) -> "PatchBundle":
        if self.patchset_version != PATCHSET_VERSION:
            raise ShapeError(f"Unsupported patchsetVersion: {self.patchset_version}")
        for rel_path in self.fingerprints:
            ensure_safe_rel_path(rel_path)
        if DESCRIPTOR_FILE not in self.fingerprints:
            raise ShapeError(f"Invalid patch.json: fingerprints must include {DESCRIPTOR_FILE}")
        seen: set[str] = set()
        for op in self.ops:
            if op.path in seen:
                raise ShapeError(f"Invalid patch.json: multiple ops target {op.path}")
            seen.add(op.path)
            self._check_op_fingerprint(op)
        return self

    def _check_op_fingerprint(self, op: "DeleteOp | AddOp | ReplaceOp") -> None:
        # Deleted paths and the "from" side of replaced paths must be fingerprinted.
        if isinstance(op, DeleteOp) and op.path not in self.fingerprints:
            raise ShapeError(f"Invalid patch.json: delete of {op.path} has no fingerprint")
        if isinstance(op, ReplaceOp):
            pinned = self.fingerprints.get(op.path)
            if pinned is None:
                raise ShapeError(f"Invalid patch.json: replace of {op.path} has no fingerprint")
            if pinned != op.from_sha256:
                raise ShapeError(
                    f"Invalid patch.json: fingerprint for {op.path} does not match fromSha256"
                )

    @classmethod
    def from_manifest(cls, data: Any) -> "PatchBundle":
        """Validate a decoded ``patch.json`` payload."""
        if not isinstance(data, dict):
            raise ShapeError("Invalid patch.json: expected object")
        try:
            return cls.model_validate(data)
        except ValidationError as error:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}"
                for item in error.errors(include_url=False)
            )
            raise ShapeError(
                f"Invalid patch.json: {problems}",
                details={"errors": [dict(item, ctx=None) for item in error.errors(include_url=False)]},
            ) from error

    @classmethod
    def from_json(cls, text: str) -> "PatchBundle":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as error:
            raise ShapeError(f"Invalid patch.json: {error}") from error
        return cls.from_manifest(data)

    def to_manifest(self) -> Dict[str, Any]:
        """Return the JSON-ready manifest with fingerprints in sorted order."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        data["fingerprints"] = dict(sorted(self.fingerprints.items()))
        if self.target is None or self.target.is_empty():
            data.pop("target", None)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_manifest(), indent=2, ensure_ascii=False) + "\n"

    def payload_refs(self) -> Tuple[str, ...]:
        """Return the distinct payload references used by the ops, sorted."""
        refs = {op.payload_path for op in self.ops if not isinstance(op, DeleteOp)}
        return tuple(sorted(refs))

    def op_counts(self) -> Dict[str, int]:
        counts = {"delete": 0, "add": 0, "replace": 0}
        for op in self.ops:
            counts[op.type] += 1
        return counts
