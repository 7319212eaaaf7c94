"""Streaming SHA-256 helpers."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import BinaryIO, Pattern

CHUNK_SIZE = 1024 * 1024
SHA256_HEX_PATTERN: Pattern[str] = re.compile(r"^[0-9a-f]{64}$")


def hash_stream(stream: BinaryIO) -> str:
    """Return the lowercase hex SHA-256 of everything left in ``stream``."""
    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
        digest.update(chunk)
    return digest.hexdigest()


def hash_file(path: Path | str) -> str:
    """Hash ``path`` without buffering the whole file."""
    with Path(path).open("rb") as handle:
        return hash_stream(handle)


def copy_and_hash(source: Path | str, destination: Path | str) -> str:
    """Copy ``source`` to ``destination`` and return the digest of the bytes written."""
    digest = hashlib.sha256()
    with Path(source).open("rb") as reader, Path(destination).open("wb") as writer:
        for chunk in iter(lambda: reader.read(CHUNK_SIZE), b""):
            digest.update(chunk)
            writer.write(chunk)
    return digest.hexdigest()


def is_sha256_hex(value: object) -> bool:
    return isinstance(value, str) and SHA256_HEX_PATTERN.match(value) is not None
