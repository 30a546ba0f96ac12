"""Utility exports for filesystem, hashing, and text helpers."""

from formula_test_bot.utils.fs import atomic_write, is_within, move_into, safe_delete
from formula_test_bot.utils.hashing import checksum_map, is_sha256_hex, sha256_bytes, sha256_file
from formula_test_bot.utils.text import (
    normalize_output,
    sanitize_xml,
    truncate_output,
    truncate_tail,
)

__all__ = [
    "atomic_write",
    "checksum_map",
    "is_sha256_hex",
    "is_within",
    "move_into",
    "normalize_output",
    "safe_delete",
    "sanitize_xml",
    "sha256_bytes",
    "sha256_file",
    "truncate_output",
    "truncate_tail",
]
