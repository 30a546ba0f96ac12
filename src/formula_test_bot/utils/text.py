"""Text helpers for command output: decoding, truncation and XML-safe sanitizing."""

from __future__ import annotations

import re
from typing import Final

TRUNCATED_PREFIX: Final[str] = "truncated output:\n"

_ERROR_LINE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^.*\b(error|Error|ERROR|fatal|FAILED|failed)\b.*$",
    re.MULTILINE,
)
# Characters outside the XML 1.0 Char production.
_INVALID_XML_CHARS: Final[re.Pattern[str]] = re.compile(
    "[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]"
)
_XML_REPLACEMENT: Final[str] = "\ufffd"


def normalize_output(data: bytes) -> str:
    """Decode raw process output as UTF-8, replacing invalid byte sequences."""

    return data.decode("utf-8", errors="replace")


def truncate_tail(text: str, max_bytes: int) -> str:
    """Keep the last ``max_bytes`` (UTF-8) of ``text``."""

    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[-max_bytes:].decode("utf-8", errors="ignore")


def truncate_output(text: str, max_bytes: int) -> str:
    """
    Bound ``text`` to roughly ``max_bytes`` UTF-8 bytes.

    When an error-looking line exists, the kept window starts a little before
    the first such line; otherwise the tail of the output is kept. Truncated
    results are prefixed with ``truncated output:``.
    """

    if max_bytes <= 0:
        raise ValueError("max_bytes must be > 0")
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text

    match = _ERROR_LINE_PATTERN.search(text)
    if match is None:
        window = encoded[-max_bytes:]
    else:
        error_offset = len(text[: match.start()].encode("utf-8"))
        start = max(0, error_offset - max_bytes // 4)
        end = min(len(encoded), start + max_bytes)
        start = max(0, end - max_bytes)
        window = encoded[start:end]
    return TRUNCATED_PREFIX + window.decode("utf-8", errors="ignore")


def sanitize_xml(text: str) -> str:
    """Replace characters that are not allowed in XML 1.0 documents."""

    return _INVALID_XML_CHARS.sub(_XML_REPLACEMENT, text)


__all__ = [
    "TRUNCATED_PREFIX",
    "normalize_output",
    "sanitize_xml",
    "truncate_output",
    "truncate_tail",
]
