from __future__ import annotations

import json
from typing import Any, Dict

import pytest
from pydantic import ValidationError

from extpatch.errors import PathSafetyError, ShapeError
from extpatch.patch.schema import AddOp, DeleteOp, PatchBundle, PatchTarget, ReplaceOp

H1 = "1" * 64
H2 = "2" * 64


def _manifest(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "patchsetVersion": 1,
        "createdAt": "2000-01-01T00:00:00+00:00",
        "target": {"manifest_version": 3, "version": "1.0.0", "name": "Sample"},
        "fingerprints": {"script.js": H1, "manifest.json": H2, "assets/old.txt": H2},
        "ops": [
            {"type": "delete", "path": "assets/old.txt"},
            {"type": "add", "path": "assets/new.txt", "payloadPath": f"payload/{H1}", "sha256": H1},
            {
                "type": "replace",
                "path": "script.js",
                "payloadPath": f"payload/{H2}",
                "fromSha256": H1,
                "toSha256": H2,
            },
        ],
    }
    data.update(overrides)
    return data


def test_from_manifest_builds_typed_ops() -> None:
    bundle = PatchBundle.from_manifest(_manifest())

    assert isinstance(bundle.ops[0], DeleteOp)
    assert isinstance(bundle.ops[1], AddOp)
    assert isinstance(bundle.ops[2], ReplaceOp)
    assert bundle.target == PatchTarget(manifest_version=3, version="1.0.0", name="Sample")
    assert bundle.op_counts() == {"delete": 1, "add": 1, "replace": 1}
    assert bundle.payload_refs() == (f"payload/{H1}", f"payload/{H2}")


def test_to_manifest_uses_wire_names_and_sorted_fingerprints() -> None:
    bundle = PatchBundle.from_manifest(_manifest())

    data = bundle.to_manifest()

    assert list(data["fingerprints"]) == ["assets/old.txt", "manifest.json", "script.js"]
    assert data["ops"][2] == {
        "type": "replace",
        "path": "script.js",
        "payloadPath": f"payload/{H2}",
        "fromSha256": H1,
        "toSha256": H2,
    }
    assert PatchBundle.from_json(bundle.to_json()) == bundle


def test_to_manifest_omits_empty_target() -> None:
    bundle = PatchBundle.from_manifest(_manifest(target={}))

    assert "target" not in bundle.to_manifest()


def test_target_ignores_unknown_fields() -> None:
    bundle = PatchBundle.from_manifest(_manifest(target={"version": "1.0.0", "channel": "beta"}))

    assert bundle.target is not None
    assert bundle.target.checked_fields() == {"version": "1.0.0"}


@pytest.mark.parametrize(
    "overrides",
    [
        {"patchsetVersion": 2},
        {"patchsetVersion": "1"},
        {"createdAt": 5},
        {"fingerprints": {"script.js": H1}},
        {"fingerprints": {"manifest.json": "ABC"}},
        {"ops": [{"type": "rename", "path": "a.txt"}]},
        {"ops": [{"type": "delete"}]},
        {"ops": [{"type": "add", "path": "a.txt", "payloadPath": f"payload/{H1}", "sha256": H1, "fromSha256": H1}]},
        {"ops": [{"type": "add", "path": "a.txt", "payloadPath": f"payload/{H2}", "sha256": H1}]},
        {"ops": [{"type": "delete", "path": "a.txt"}, {"type": "delete", "path": "a.txt"}]},
        {"ops": [{"type": "delete", "path": "unpinned.txt"}]},
        {"fingerprints": {"manifest.json": H2, "assets/old.txt": H2}},
        {"fingerprints": {"manifest.json": H2, "assets/old.txt": H2, "script.js": H2}},
        {"extra": True},
    ],
)
def test_from_manifest_rejects_malformed_shapes(overrides: Dict[str, Any]) -> None:
    with pytest.raises(ShapeError):
        PatchBundle.from_manifest(_manifest(**overrides))


def test_from_manifest_rejects_missing_fingerprints() -> None:
    data = _manifest()
    del data["fingerprints"]

    with pytest.raises(ShapeError, match="fingerprints"):
        PatchBundle.from_manifest(data)


@pytest.mark.parametrize(
    "overrides",
    [
        {"ops": [{"type": "delete", "path": "../outside.txt"}]},
        {"ops": [{"type": "delete", "path": "/etc/passwd"}]},
        {"fingerprints": {"manifest.json": H2, "../outside.txt": H1}},
        {"ops": [{"type": "add", "path": "a.txt", "payloadPath": "../payload/x", "sha256": H1}]},
    ],
)
def test_from_manifest_rejects_unsafe_paths(overrides: Dict[str, Any]) -> None:
    with pytest.raises(PathSafetyError):
        PatchBundle.from_manifest(_manifest(**overrides))


def test_from_json_rejects_invalid_documents() -> None:
    with pytest.raises(ShapeError):
        PatchBundle.from_json("{not json")
    with pytest.raises(ShapeError):
        PatchBundle.from_json(json.dumps(["not", "an", "object"]))


def test_bundle_is_immutable() -> None:
    bundle = PatchBundle.from_manifest(_manifest())

    with pytest.raises(ValidationError):
        bundle.created_at = "later"  # type: ignore[misc]
