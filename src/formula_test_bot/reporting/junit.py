"""
formula-test-bot — JUnit XML report

File: src/formula_test_bot/reporting/junit.py

Purpose
- Serialize every phase report into one JUnit document for CI test dashboards.

Functional requirements
- One ``<testsuite name="test-bot.<tag>">`` per report, with ``tests``,
  ``failures`` and ``skipped`` counts and the first step's start timestamp.
- One ``<testcase>`` per selected step (name, status, time, timestamp).
- Failed steps carry ``<failure message="failed: <command>">`` with the
  captured output; ignored steps carry ``<skipped>``; passed steps with output
  carry ``<system-out>``.
- Output is stripped of characters XML cannot hold and capped in size.
- Filters match the start of the short command (``audit``, ``test``); an empty
  filter list selects every step.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from formula_test_bot.constants import MAX_STEP_OUTPUT_BYTES
from formula_test_bot.utils.fs import atomic_write
from formula_test_bot.utils.text import sanitize_xml, truncate_output

if TYPE_CHECKING:
    from collections.abc import Sequence

    from formula_test_bot.execution.report import Report
    from formula_test_bot.execution.step import Step


def _timestamp(value: datetime | None) -> str:
    return (value or datetime.now(UTC)).isoformat(timespec="seconds")


def _selected(step: Step, filters: Sequence[str]) -> bool:
    if not filters:
        return True
    short = step.command_short()
    return any(short.startswith(prefix) for prefix in filters)


def _payload(step: Step, max_output_bytes: int) -> str:
    return sanitize_xml(truncate_output(step.output or "", max_output_bytes))


def build_junit(
    reports: Sequence[Report],
    *,
    tag: str,
    filters: Sequence[str] = (),
    max_output_bytes: int = MAX_STEP_OUTPUT_BYTES,
) -> ET.ElementTree:
    """Build the JUnit element tree for ``reports``."""

    root = ET.Element("testsuites")
    for report in reports:
        steps = [step for step in report.steps if _selected(step, filters)]
        suite = ET.SubElement(root, "testsuite")
        suite.set("name", f"test-bot.{tag}")
        suite.set("tests", str(len(steps)))
        suite.set("failures", str(sum(1 for step in steps if step.failed)))
        suite.set("skipped", str(sum(1 for step in steps if step.ignored)))
        first = report.steps[0].start_time if report.steps else None
        suite.set("timestamp", _timestamp(first))

        for step in steps:
            case = ET.SubElement(suite, "testcase")
            case.set("name", sanitize_xml(step.command_short()))
            case.set("status", step.status.value)
            case.set("time", f"{step.time:.3f}")
            case.set("timestamp", _timestamp(step.start_time))

            if step.failed:
                failure = ET.SubElement(case, "failure")
                failure.set("message", sanitize_xml(f"{step.status.value}: {' '.join(step.command)}"))
                failure.text = _payload(step, max_output_bytes)
            elif step.ignored:
                skipped = ET.SubElement(case, "skipped")
                skipped.set("message", sanitize_xml(f"{step.status.value}: {' '.join(step.command)}"))
                skipped.text = _payload(step, max_output_bytes)
            elif step.output:
                system_out = ET.SubElement(case, "system-out")
                system_out.text = _payload(step, max_output_bytes)

    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ")
    return tree


def write_junit(
    path: Path,
    reports: Sequence[Report],
    *,
    tag: str,
    filters: Sequence[str] = (),
    max_output_bytes: int = MAX_STEP_OUTPUT_BYTES,
) -> Path:
    """Write the JUnit document for ``reports`` to ``path``, replacing any previous file."""

    tree = build_junit(reports, tag=tag, filters=filters, max_output_bytes=max_output_bytes)
    document = ET.tostring(tree.getroot(), encoding="unicode", xml_declaration=False)
    atomic_write(path, '<?xml version="1.0" encoding="UTF-8"?>\n' + document + "\n")
    return Path(path)


__all__ = ["build_junit", "write_junit"]
