"""
formula-test-bot — test suite for command output text helpers.

File: tests/unit/utils/test_text_helpers.py

Purpose
- Validate decoding, truncation windows and XML sanitizing of captured output.
"""

from __future__ import annotations

import pytest

from formula_test_bot.utils.text import (
    TRUNCATED_PREFIX,
    normalize_output,
    sanitize_xml,
    truncate_output,
    truncate_tail,
)


def test_invalid_bytes_are_replaced() -> None:
    assert normalize_output(b"\xffok") == "\ufffdok"


def test_short_output_is_untouched() -> None:
    assert truncate_output("all good\n", 100) == "all good\n"
    assert truncate_tail("all good\n", 100) == "all good\n"


def test_truncation_keeps_the_tail_without_errors() -> None:
    assert truncate_output("x" * 100 + "tail", 10) == TRUNCATED_PREFIX + "x" * 6 + "tail"


def test_truncation_keeps_the_first_error_in_view() -> None:
    text = "a" * 100 + "\nerror: boom\n" + "b" * 100

    result = truncate_output(text, 40)

    assert result.startswith(TRUNCATED_PREFIX)
    assert "error: boom" in result
    assert len(result.removeprefix(TRUNCATED_PREFIX).encode("utf-8")) == 40


def test_tail_truncation_drops_partial_characters() -> None:
    assert truncate_tail("é" * 5, 3) == "é"


def test_truncation_rejects_non_positive_limits() -> None:
    with pytest.raises(ValueError, match="max_bytes"):
        truncate_output("text", 0)


def test_xml_sanitizing_keeps_tabs_and_newlines() -> None:
    assert sanitize_xml("a\x00b\tc\nd\x1b") == "a\ufffdb\tc\nd\ufffd"
