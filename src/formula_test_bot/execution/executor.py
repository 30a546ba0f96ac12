"""
formula-test-bot — command execution contract

File: src/formula_test_bot/execution/executor.py

Purpose
- Define the portable command invocation contract used by steps and
  read-only package-manager/git queries, and the local subprocess executor.

Functional requirements
- stdout and stderr are merged into a single captured stream, as a human
  would see them in a terminal.
- When streaming is requested, output is forwarded live while still captured.
- A command that cannot be started (missing executable, permissions) yields a
  result with ``exit_code=None`` and an ``error`` message instead of raising.
- Environment overrides can unset variables by mapping them to ``None``.
"""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

OutputSink = Callable[[bytes], None]


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Portable command invocation contract."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str | None] = field(default_factory=dict)
    stream_output: bool = False

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSpec.argv must not be empty")

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        for key, value in self.env.items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        return env


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Command execution outcome with merged output."""

    argv: tuple[str, ...]
    exit_code: int | None
    output: bytes
    duration_ms: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.exit_code == 0

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable command execution interface."""

    def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor:
    """Local subprocess executor that merges stderr into stdout."""

    def __init__(self, *, sink: OutputSink | None = None) -> None:
        self._sink = sink

    def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        try:
            process = subprocess.Popen(
                spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                output=b"",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        chunks: list[bytes] = []
        stdout = process.stdout
        assert stdout is not None
        with stdout:
            for chunk in iter(stdout.readline, b""):
                chunks.append(chunk)
                if spec.stream_output and self._sink is not None:
                    self._sink(chunk)
        exit_code = process.wait()

        return CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            output=b"".join(chunks),
            duration_ms=_elapsed_ms(started_ns),
        )


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "OutputSink",
]
