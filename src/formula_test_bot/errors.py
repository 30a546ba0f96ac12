"""
formula-test-bot — shared error hierarchy

File: src/formula_test_bot/errors.py

Purpose
- Define the exception types that cross module boundaries so the CLI boundary
  can map them onto deterministic exit codes.

Functional requirements
- Recoverable conditions (missing tap, no usable compiler) carry enough context
  for a single bounded recovery attempt.
- ``FailFastExit`` terminates the run as soon as a step fails when requested.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from formula_test_bot.execution.step import Step


class TestBotError(RuntimeError):
    """Base error for test bot failures."""

    __test__ = False


class UsageError(TestBotError):
    """Raised when the invocation or detected change set cannot be tested."""


class FailFastExit(TestBotError):
    """Raised after a failed step when the run was started with ``--fail-fast``."""

    def __init__(self, step: Step) -> None:
        self.step = step
        super().__init__(f"{step.command_trimmed()} failed; stopping (--fail-fast)")


class PackageDefinitionError(TestBotError):
    """Raised when a package definition file cannot be parsed."""


class PackageNotFoundError(TestBotError):
    """Raised when a package name cannot be resolved in any installed tap."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No available formula with the name {name!r}")


class TapNotInstalledError(PackageNotFoundError):
    """Raised when a tap-qualified package name refers to a tap that is not installed."""

    def __init__(self, name: str, tap: str) -> None:
        self.tap = tap
        super().__init__(name)
        self.args = (f"No available formula {name!r}: tap {tap} is not installed",)


class CompilerSelectionError(TestBotError):
    """Raised when every available compiler is excluded by a package definition."""

    def __init__(self, package: str, excluded: tuple[str, ...]) -> None:
        self.package = package
        self.excluded = excluded
        rendered = ", ".join(excluded) or "none"
        super().__init__(f"{package} cannot be built with any available compiler (excluded: {rendered})")


__all__ = [
    "CompilerSelectionError",
    "FailFastExit",
    "PackageDefinitionError",
    "PackageNotFoundError",
    "TapNotInstalledError",
    "TestBotError",
    "UsageError",
]
