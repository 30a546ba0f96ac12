"""Output rendering for the test bot console.

File: src/formula_test_bot/ui/render.py

Purpose
- Provide a thin rendering layer for headlines, step commands, skip/failure
  notices and raw command output, using ``rich`` for colour.
- Respect NO_COLOR environment variable and --no-color CLI flag.

Functional requirements
- Command lines and command output are printed verbatim (no markup parsing).
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from rich.console import Console
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Sequence


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    return not os.environ.get("NO_COLOR", "")


class ConsoleRenderer:
    """Console output renderer used by steps and phases."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        console: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self.console = console or Console(
            highlight=False,
            no_color=not _color_allowed(no_color),
            soft_wrap=True,
        )

    def headline(self, text: str, *, color: str = "blue") -> None:
        """Print an ``==>`` headline."""

        line = Text()
        line.append("==> ", style=f"bold {color}")
        line.append(text, style="bold")
        self.console.print(line)

    def command(self, text: str) -> None:
        """Print the command a step is about to run."""

        self.headline(text, color="blue")

    def info(self, text: str) -> None:
        self.console.print(Text(text))

    def warning(self, text: str) -> None:
        line = Text()
        line.append("Warning: ", style="bold yellow")
        line.append(text)
        self.console.print(line)

    def error(self, text: str) -> None:
        line = Text()
        line.append("Error: ", style="bold red")
        line.append(text)
        self.console.print(line)

    def skipped(self, name: str, reason: str) -> None:
        line = Text()
        line.append("SKIPPED ", style="bold yellow")
        line.append(f"{name}: {reason}")
        self.console.print(line)

    def failed(self, name: str, reason: str) -> None:
        line = Text()
        line.append("FAILED ", style="bold red")
        line.append(f"{name}: {reason}")
        self.console.print(line)

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        """Print a bulleted list."""

        for entry in entries:
            self.console.print(Text(f"  {prefix}{entry}"))

    def output(self, text: str) -> None:
        """Print raw command output."""

        if text:
            self.console.out(text.rstrip("\n"), highlight=False)

    def raw(self, data: bytes) -> None:
        """Stream raw process output bytes as they arrive."""

        self.console.file.write(data.decode("utf-8", errors="replace"))
        self.console.file.flush()


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> ConsoleRenderer:
    """Create a console renderer with the given settings."""

    return ConsoleRenderer(no_color=no_color, verbose=verbose)


__all__ = ["ConsoleRenderer", "create_renderer"]
