"""
formula-test-bot — GitHub Actions workflow commands

File: src/formula_test_bot/observability/github_actions.py

Purpose
- Emit CI-native grouping markers and file/line annotations, and export
  outputs for later workflow steps.

Functional requirements
- Everything is a no-op unless ``GITHUB_ACTIONS`` is set in the captured environment.
- Message data and property values are escaped per the workflow-command format.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import StrEnum
from pathlib import Path
from typing import TextIO


class AnnotationLevel(StrEnum):
    """Workflow-command annotation severities."""

    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"


def escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def escape_property(value: str) -> str:
    return escape_data(value).replace(":", "%3A").replace(",", "%2C")


def format_annotation(
    level: AnnotationLevel | str,
    message: str,
    *,
    file: str | None = None,
    line: int | None = None,
    title: str | None = None,
) -> str:
    """Render a ``::level file=..,line=..,title=..::message`` workflow command."""

    properties: list[str] = []
    if file is not None:
        properties.append(f"file={escape_property(file)}")
        if line is not None:
            properties.append(f"line={line}")
    if title is not None:
        properties.append(f"title={escape_property(title)}")
    rendered_properties = f" {','.join(properties)}" if properties else ""
    return f"::{AnnotationLevel(level)}{rendered_properties}::{escape_data(message)}"


class GitHubActions:
    """Workflow-command channel bound to a captured environment snapshot."""

    def __init__(self, environ: Mapping[str, str], *, stream: TextIO | None = None) -> None:
        self._environ = dict(environ)
        self._stream = stream

    @property
    def enabled(self) -> bool:
        return bool(self._environ.get("GITHUB_ACTIONS"))

    @property
    def output_path(self) -> Path | None:
        raw = self._environ.get("GITHUB_OUTPUT", "").strip()
        return Path(raw) if raw else None

    def _write(self, line: str) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(line + "\n")
        stream.flush()

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        """Wrap output in a collapsible log group when running on GitHub Actions."""

        if not self.enabled:
            yield
            return
        self._write(f"::group::{escape_data(title)}")
        try:
            yield
        finally:
            self._write("::endgroup::")

    def annotate(
        self,
        level: AnnotationLevel | str,
        message: str,
        *,
        file: str | None = None,
        line: int | None = None,
        title: str | None = None,
    ) -> bool:
        """Emit an annotation; returns ``False`` when not running on GitHub Actions."""

        if not self.enabled:
            return False
        self._write(format_annotation(level, message, file=file, line=line, title=title))
        return True

    def set_outputs(self, outputs: Mapping[str, str]) -> bool:
        """Append ``key=value`` lines to the ``GITHUB_OUTPUT`` file when configured."""

        path = self.output_path
        if path is None:
            return False
        with path.open("a", encoding="utf-8") as handle:
            for key, value in outputs.items():
                handle.write(f"{key}={value}\n")
        return True


__all__ = [
    "AnnotationLevel",
    "GitHubActions",
    "escape_data",
    "escape_property",
    "format_annotation",
]
