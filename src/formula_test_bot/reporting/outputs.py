"""
formula-test-bot — plain-text run outputs

File: src/formula_test_bot/reporting/outputs.py

Purpose
- Write the summary and hand-off files other CI jobs read:
  ``steps_output.txt``, ``skipped_or_failed_formulae-<tag>.txt``,
  ``bottle_output.txt`` and ``linkage_output.txt``.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from formula_test_bot.constants import SKIPPED_OR_FAILED_PREFIX, STEPS_OUTPUT_FILENAME
from formula_test_bot.utils.fs import atomic_write

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from formula_test_bot.execution.report import Report


def steps_summary(reports: Sequence[Report]) -> str:
    """Ignored and failed steps, or ``All steps passed!``."""

    ignored = [step for report in reports for step in report.ignored_steps]
    failed = [step for report in reports for step in report.failed_steps]

    lines: list[str] = []
    if ignored:
        lines.append(f"Warning: {len(ignored)} failed steps ignored!")
        lines.extend(step.command_trimmed() for step in ignored)
    if failed:
        if lines:
            lines.append("")
        lines.append(f"Error: {len(failed)} failed steps!")
        lines.extend(step.command_trimmed() for step in failed)
    if not lines:
        return "All steps passed!"
    return "\n".join(lines)


def write_steps_output(workdir: Path, reports: Sequence[Report]) -> Path:
    path = Path(workdir) / STEPS_OUTPUT_FILENAME
    atomic_write(path, steps_summary(reports) + "\n")
    return path


def skipped_or_failed_filename(tag: str) -> str:
    return f"{SKIPPED_OR_FAILED_PREFIX}-{tag}.txt"


def write_skipped_or_failed(workdir: Path, tag: str, names: Iterable[str]) -> Path:
    path = Path(workdir) / skipped_or_failed_filename(tag)
    atomic_write(path, ",".join(names))
    return path


def write_chunks(path: Path, chunks: Iterable[str]) -> Path:
    """Join captured outputs, one per block, into ``path``."""

    text = "\n".join(chunk.rstrip("\n") for chunk in chunks if chunk)
    atomic_write(path, f"{text}\n" if text else "")
    return path


__all__ = [
    "skipped_or_failed_filename",
    "steps_summary",
    "write_chunks",
    "write_skipped_or_failed",
    "write_steps_output",
]
