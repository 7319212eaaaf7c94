"""Content-addressed staging area for changed file bytes."""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import FrozenSet

from ..errors import PayloadError
from ..utils.hashing import copy_and_hash, is_sha256_hex
from ..utils.paths import safe_join
from .schema import PAYLOAD_DIR, payload_ref

LOGGER = logging.getLogger(__name__)


class PayloadStore:
    """Blob store keyed by SHA-256 with insert-if-absent semantics.

    Blobs live at ``<bundle_root>/payload/<digest>``. Each blob is streamed to
    a temporary name and renamed into place, so a crash never leaves a partial
    blob under its final name.
    """

    def __init__(self, bundle_root: Path | str) -> None:
        self.bundle_root = Path(bundle_root).resolve()
        self.payload_dir = self.bundle_root / PAYLOAD_DIR
        self.payload_dir.mkdir(parents=True, exist_ok=True)
        self._staged: set[str] = set()

    @property
    def staged(self) -> FrozenSet[str]:
        return frozenset(self._staged)

    def blob_path(self, digest: str) -> Path:
        return safe_join(self.bundle_root, payload_ref(digest))

    def stage(self, source: Path | str, digest: str) -> str:
        """Store ``source`` under ``digest`` and return its payload reference."""
        if not is_sha256_hex(digest):
            raise PayloadError(f"Invalid payload hash: {digest!r}")
        ref = payload_ref(digest)
        final_path = self.blob_path(digest)
        if digest in self._staged or final_path.is_file():
            self._staged.add(digest)
            return ref

        temp_path = self.payload_dir / f".tmp-{uuid.uuid4().hex}"
        try:
            try:
                actual = copy_and_hash(source, temp_path)
            except OSError as error:
                raise PayloadError(f"Unable to stage payload from {source}: {error}") from error
            if actual != digest:
                raise PayloadError(
                    f"Payload source changed while staging {source}: expected {digest}, got {actual}"
                )
            if final_path.exists():
                LOGGER.debug("Payload %s appeared during staging; keeping existing blob", digest)
            else:
                try:
                    os.rename(temp_path, final_path)
                except OSError:
                    if not final_path.is_file():
                        raise
                    LOGGER.debug("Payload %s was staged concurrently; keeping existing blob", digest)
        finally:
            if temp_path.exists():
                temp_path.unlink()

        self._staged.add(digest)
        return ref
