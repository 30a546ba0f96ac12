"""
formula-test-bot — hashing utilities

File: src/formula_test_bot/utils/hashing.py

Purpose
- Provide SHA-256 helpers for binary artifacts and package definition files.

Functional requirements
- Files are hashed in bounded chunks so multi-gigabyte bottles stay cheap on memory.
- Digest comparison accepts mixed-case hex input.
"""

from __future__ import annotations

import hashlib
import os
import string
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

PathLike = str | os.PathLike[str]

_SHA256_HEX_LENGTH = 64
_FILE_READ_CHUNK_BYTES = 1024 * 1024
_HEX_DIGITS = set(string.hexdigits)

__all__ = [
    "checksum_map",
    "is_sha256_hex",
    "sha256_bytes",
    "sha256_file",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def is_sha256_hex(value: str) -> bool:
    """Return ``True`` if ``value`` looks like a SHA-256 hex digest."""

    return len(value) == _SHA256_HEX_LENGTH and set(value).issubset(_HEX_DIGITS)


def checksum_map(paths: Mapping[str, Path]) -> dict[str, str]:
    """
    Hash a set of named files into a deterministic ``name -> sha256`` mapping.

    Missing files map to an empty digest so a later comparison against a
    recorded mapping reports them as changed.
    """

    result: dict[str, str] = {}
    for name, path in sorted(paths.items()):
        try:
            result[name] = sha256_file(path)
        except FileNotFoundError:
            result[name] = ""
    return result
