from __future__ import annotations

import json
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

SAMPLE_MANIFEST = {"manifest_version": 3, "version": "1.0.0", "name": "Sample"}


def write_tree(root: Path, files: Mapping[str, str | bytes]) -> Path:
    """Materialise ``files`` (relative path -> content) under ``root``."""
    root.mkdir(parents=True, exist_ok=True)
    for rel_path, content in files.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")
    return root


def snapshot_tree(root: Path) -> Dict[str, bytes]:
    """Return every regular file under ``root`` keyed by POSIX relative path."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file() and not path.is_symlink()
    }


@dataclass(slots=True)
class SampleTrees:
    """Original/modified extension trees shared by the patch tests."""

    root: Path
    original: Path
    modified: Path

    @property
    def bundle(self) -> Path:
        return self.root / "patch.zip"

    def run_cli(self, *args: str) -> subprocess.CompletedProcess[str]:
        """Invoke ``python -m extpatch.cli`` with the provided arguments."""

        env = os.environ.copy()
        pythonpath = str(SRC)
        if env.get("PYTHONPATH"):
            pythonpath = os.pathsep.join([pythonpath, env["PYTHONPATH"]])
        env["PYTHONPATH"] = pythonpath
        env.pop("SOURCE_DATE_EPOCH", None)

        command = [sys.executable, "-m", "extpatch.cli", *args]
        return subprocess.run(  # noqa: S603 - command constructed from known values
            command,
            cwd=self.root,
            env=env,
            capture_output=True,
            text=True,
            check=False,
        )


@pytest.fixture()
def sample_trees(tmp_path: Path) -> SampleTrees:
    """Create the original and modified trees of a tiny extension."""

    manifest = json.dumps(SAMPLE_MANIFEST, indent=2) + "\n"
    original = write_tree(
        tmp_path / "original",
        {
            "manifest.json": manifest,
            "script.js": "console.log('original');",
            "assets/old.txt": "old",
        },
    )
    modified = write_tree(
        tmp_path / "modified",
        {
            "manifest.json": manifest,
            "script.js": "console.log('modified');",
            "assets/new.txt": "new",
        },
    )
    return SampleTrees(root=tmp_path, original=original, modified=modified)


@pytest.fixture()
def tree_writer() -> Callable[[Path, Mapping[str, str | bytes]], Path]:
    return write_tree


@pytest.fixture()
def tree_snapshot() -> Callable[[Path], Dict[str, bytes]]:
    return snapshot_tree
