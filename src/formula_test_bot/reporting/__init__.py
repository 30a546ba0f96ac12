"""Run outputs: JUnit XML and the plain-text summary files."""

from formula_test_bot.reporting.junit import build_junit, write_junit
from formula_test_bot.reporting.outputs import (
    skipped_or_failed_filename,
    steps_summary,
    write_chunks,
    write_skipped_or_failed,
    write_steps_output,
)

__all__ = [
    "build_junit",
    "skipped_or_failed_filename",
    "steps_summary",
    "write_chunks",
    "write_junit",
    "write_skipped_or_failed",
    "write_steps_output",
]
