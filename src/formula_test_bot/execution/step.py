"""
formula-test-bot — a single recorded command

File: src/formula_test_bot/execution/step.py

Purpose
- Run one external command, capture its merged output, and record its status
  and timing for the summary file and the JUnit report.

Functional requirements
- Status moves from ``running`` to exactly one terminal state, exactly once.
- Dry-run mode prints the command and marks the step passed with no output.
- A failure with ``ignore_failures`` becomes ``ignored``: it never counts as a
  failure and never triggers fail-fast.
- ``git`` commands must target a repository explicitly (``-C <path>`` or ``clone``).
- Failed and ignored steps with named packages emit GitHub Actions annotations
  pointing at the package definition line for the command verb.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from contextlib import nullcontext
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Final

from formula_test_bot.errors import FailFastExit
from formula_test_bot.execution.executor import CommandSpec
from formula_test_bot.observability.github_actions import AnnotationLevel
from formula_test_bot.utils.text import normalize_output, truncate_tail

if TYPE_CHECKING:
    from formula_test_bot.context import TestContext


class StepStatus(StrEnum):
    """Lifecycle states of a step."""

    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    IGNORED = "ignored"


TERMINAL_STATUSES: Final[frozenset[StepStatus]] = frozenset(
    {StepStatus.PASSED, StepStatus.FAILED, StepStatus.IGNORED}
)
_SHORT_COMMAND_NOISE: Final[frozenset[str]] = frozenset(
    {"-C", "--force", "--retry", "--verbose", "--json"}
)
_ALWAYS_TRIMMED_PREFIXES: Final[tuple[str, ...]] = ("/usr/bin/",)


class Step:
    """One external command invocation and its outcome."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str | None] | None = None,
        named_args: Sequence[str] = (),
        ignore_failures: bool = False,
        verbose: bool = False,
        repository: Path | None = None,
        display_prefixes: Iterable[str] = (),
        noise_tokens: Iterable[str] = (),
    ) -> None:
        if not command:
            raise ValueError("a step needs a command")
        self.command: tuple[str, ...] = tuple(str(part) for part in command)
        if self.command[0] == "git" and (
            len(self.command) < 2 or self.command[1] not in {"-C", "clone"}
        ):
            raise ValueError("git should always be called with -C or clone")

        self.env: dict[str, str | None] = dict(env or {})
        self.named_args: tuple[str, ...] = tuple(named_args)
        self.ignore_failures = ignore_failures
        self.verbose = verbose
        self.repository = repository
        self._display_prefixes = tuple(
            prefix.rstrip("/") + "/" for prefix in display_prefixes if prefix
        )
        self._noise_tokens = frozenset(noise_tokens) | _SHORT_COMMAND_NOISE

        self.status = StepStatus.RUNNING
        self.output: str | None = None
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None

    def __repr__(self) -> str:
        return f"Step({self.command_trimmed()!r}, status={self.status.value})"

    @property
    def name(self) -> str:
        """Command verb used as the JUnit test name (``install``, ``test``, ...)."""

        if len(self.command) > 1:
            return self.command[1].replace("-", "")
        return Path(self.command[0]).name

    @property
    def passed(self) -> bool:
        return self.status is StepStatus.PASSED

    @property
    def failed(self) -> bool:
        return self.status is StepStatus.FAILED

    @property
    def ignored(self) -> bool:
        return self.status is StepStatus.IGNORED

    @property
    def time(self) -> float:
        """Elapsed seconds; zero until the step has finished."""

        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def command_trimmed(self) -> str:
        """Command for display, without ``--exclude`` arguments and long install prefixes."""

        text = " ".join(part for part in self.command if not part.startswith("--exclude"))
        for prefix in (*self._display_prefixes, *_ALWAYS_TRIMMED_PREFIXES):
            text = text.replace(prefix, "")
        return text

    def command_short(self) -> str:
        """Command with the executable, repository paths and noisy flags removed."""

        text = " ".join(part for part in self.command if part not in self._noise_tokens)
        for prefix in self._display_prefixes:
            text = text.replace(prefix, "")
        return text

    def run(self, context: TestContext) -> Step:
        """Execute the command (or only announce it in dry-run mode)."""

        if self.status is not StepStatus.RUNNING:
            raise RuntimeError(f"step already finished: {self!r}")

        context.renderer.command(self.command_trimmed())
        self.start_time = datetime.now(UTC)

        if context.options.dry_run:
            self._finish(StepStatus.PASSED)
            return self

        streaming = self.verbose or context.options.verbose
        spec = CommandSpec(
            argv=self.command,
            cwd=str(context.workdir),
            env={**context.env, **self.env},
            stream_output=streaming,
        )
        group = context.actions.group(self.command_trimmed()) if streaming else nullcontext()
        with group:
            result = context.executor.run(spec)

        output = normalize_output(result.output)
        if result.error is not None:
            output = f"{output}{result.error}\n"
        self.output = output
        if result.success:
            status = StepStatus.PASSED
        elif self.ignore_failures:
            status = StepStatus.IGNORED
        else:
            status = StepStatus.FAILED
        self._finish(status)

        self._render_result(context, streamed=streaming)
        self._annotate(context)

        if self.failed and context.options.fail_fast:
            raise FailFastExit(self)
        return self

    def finish_without_running(
        self,
        status: StepStatus,
        output: str,
        context: TestContext,
    ) -> Step:
        """Record an outcome decided by the bot itself, such as a failed artifact check."""

        if self.status is not StepStatus.RUNNING:
            raise RuntimeError(f"step already finished: {self!r}")
        context.renderer.command(self.command_trimmed())
        self.start_time = datetime.now(UTC)
        self.output = output
        self._finish(status)
        self._render_result(context, streamed=False)
        if self.failed and context.options.fail_fast:
            raise FailFastExit(self)
        return self

    def _finish(self, status: StepStatus) -> None:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"not a terminal status: {status}")
        self.status = status
        self.end_time = datetime.now(UTC)

    def _render_result(self, context: TestContext, *, streamed: bool) -> None:
        if self.passed:
            return
        if self.failed:
            context.renderer.error(f"{self.command_trimmed()} failed")
        else:
            context.renderer.warning(f"{self.command_trimmed()} failed (ignored)")
        if not streamed and self.output:
            context.renderer.output(self.output)

    def _annotate(self, context: TestContext) -> None:
        if self.passed or not self.named_args or not context.actions.enabled:
            return

        level = AnnotationLevel.ERROR if self.failed else AnnotationLevel.WARNING
        title = f"`{self.command_trimmed()}` failed on {context.platform.tag}!"
        message = truncate_tail(
            self.output or "",
            int(context.config["report"]["annotation_max_bytes"]),
        )
        for name in self.named_args:
            location = context.definition_location(name, self.name)
            if location is None:
                continue
            file, line = location
            context.actions.annotate(level, message, file=file, line=line, title=title)


__all__ = ["TERMINAL_STATUSES", "Step", "StepStatus"]
