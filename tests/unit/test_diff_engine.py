from __future__ import annotations

import pytest

from extpatch.errors import CompatibilityError, InputError
from extpatch.patch.diff import diff_trees
from extpatch.patch.schema import AddOp, DeleteOp, ReplaceOp, payload_ref

H_MANIFEST = "a" * 64
H_SCRIPT_OLD = "b" * 64
H_SCRIPT_NEW = "c" * 64
H_OLD = "d" * 64
H_NEW = "e" * 64


def _recording_stage(calls: list[tuple[str, str]]):
    def stage(rel_path: str, digest: str) -> str:
        calls.append((rel_path, digest))
        return payload_ref(digest)

    return stage


def test_diff_trees_emits_delete_replace_and_add() -> None:
    original = {"manifest.json": H_MANIFEST, "script.js": H_SCRIPT_OLD, "assets/old.txt": H_OLD}
    modified = {"manifest.json": H_MANIFEST, "script.js": H_SCRIPT_NEW, "assets/new.txt": H_NEW}
    calls: list[tuple[str, str]] = []

    result = diff_trees(original, modified, _recording_stage(calls))

    assert result.ops == (
        AddOp(path="assets/new.txt", payload_path=payload_ref(H_NEW), sha256=H_NEW),
        DeleteOp(path="assets/old.txt"),
        ReplaceOp(
            path="script.js",
            payload_path=payload_ref(H_SCRIPT_NEW),
            from_sha256=H_SCRIPT_OLD,
            to_sha256=H_SCRIPT_NEW,
        ),
    )
    assert result.fingerprints == {
        "assets/old.txt": H_OLD,
        "manifest.json": H_MANIFEST,
        "script.js": H_SCRIPT_OLD,
    }
    assert list(result.fingerprints) == sorted(result.fingerprints)
    assert sorted(calls) == [("assets/new.txt", H_NEW), ("script.js", H_SCRIPT_NEW)]


def test_diff_trees_identical_inputs_produce_no_ops() -> None:
    tree = {"manifest.json": H_MANIFEST, "script.js": H_SCRIPT_OLD}
    calls: list[tuple[str, str]] = []

    result = diff_trees(tree, dict(tree), _recording_stage(calls))

    assert result.ops == ()
    assert result.fingerprints == {"manifest.json": H_MANIFEST}
    assert calls == []


def test_diff_trees_fingerprints_changed_descriptor() -> None:
    original = {"manifest.json": H_MANIFEST}
    modified = {"manifest.json": H_NEW}

    result = diff_trees(original, modified, _recording_stage([]))

    assert [op.type for op in result.ops] == ["replace"]
    assert result.fingerprints == {"manifest.json": H_MANIFEST}


def test_diff_trees_sorts_ops_by_code_point_path() -> None:
    original = {"manifest.json": H_MANIFEST, "b.txt": H_OLD, "B.txt": H_OLD}
    modified = {"manifest.json": H_MANIFEST, "a.txt": H_NEW, "Z.txt": H_NEW}

    result = diff_trees(original, modified, _recording_stage([]))

    assert [op.path for op in result.ops] == ["B.txt", "Z.txt", "a.txt", "b.txt"]


def test_diff_trees_requires_descriptor_in_original() -> None:
    with pytest.raises(CompatibilityError):
        diff_trees({"script.js": H_SCRIPT_OLD}, {"script.js": H_SCRIPT_NEW}, _recording_stage([]))


@pytest.mark.parametrize(
    ("original", "modified"),
    [
        ({"manifest.json": H_MANIFEST, "lib/x.js": H_OLD}, {"manifest.json": H_MANIFEST, "lib": H_NEW}),
        ({"manifest.json": H_MANIFEST, "lib": H_OLD}, {"manifest.json": H_MANIFEST, "lib/deep/x.js": H_NEW}),
    ],
)
def test_diff_trees_rejects_file_directory_conflicts(original, modified) -> None:
    calls: list[tuple[str, str]] = []

    with pytest.raises(InputError, match="lib") as excinfo:
        diff_trees(original, modified, _recording_stage(calls))

    assert excinfo.value.details == {"paths": ["lib"]}
    assert calls == []
