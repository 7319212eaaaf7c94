from __future__ import annotations

import os
from pathlib import Path

import pytest

from extpatch.errors import PathSafetyError
from extpatch.utils.paths import ensure_safe_rel_path, is_zip_path, safe_join, to_posix_path


@pytest.mark.parametrize(
    "value",
    [
        "",
        ".",
        "/etc/passwd",
        "\\windows\\system32",
        "C:/Windows",
        "c:relative",
        "../escape.txt",
        "assets/../../escape.txt",
        "assets//double.txt",
        "assets/",
        "bad\0name.txt",
    ],
)
def test_ensure_safe_rel_path_rejects_unsafe_values(value: str) -> None:
    with pytest.raises(PathSafetyError):
        ensure_safe_rel_path(value)


def test_ensure_safe_rel_path_normalises_backslashes() -> None:
    assert ensure_safe_rel_path("assets\\icons\\logo.png") == "assets/icons/logo.png"
    assert ensure_safe_rel_path("manifest.json") == "manifest.json"
    assert ensure_safe_rel_path("dir/..hidden") == "dir/..hidden"


def test_ensure_safe_rel_path_rejects_non_strings() -> None:
    with pytest.raises(PathSafetyError):
        ensure_safe_rel_path(42)  # type: ignore[arg-type]


def test_safe_join_stays_inside_root(tmp_path: Path) -> None:
    joined = safe_join(tmp_path, "assets/new.txt")

    assert joined == tmp_path.resolve() / "assets" / "new.txt"


def test_safe_join_rejects_symlinked_parent_escaping_root(tmp_path: Path) -> None:
    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    os.symlink(outside, root / "link", target_is_directory=True)

    with pytest.raises(PathSafetyError, match="escapes root"):
        safe_join(root, "link/secret.txt")


def test_safe_join_keeps_final_symlink_visible(tmp_path: Path) -> None:
    (tmp_path / "real.txt").write_text("data", encoding="utf-8")
    os.symlink(tmp_path / "real.txt", tmp_path / "alias.txt")

    joined = safe_join(tmp_path, "alias.txt")

    assert joined.name == "alias.txt"
    assert joined.is_symlink()


def test_path_helpers() -> None:
    assert to_posix_path("a\\b\\c.txt") == "a/b/c.txt"
    assert is_zip_path("bundle.ZIP")
    assert is_zip_path(Path("out/result.zip"))
    assert not is_zip_path("out/result")
