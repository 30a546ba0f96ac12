"""Ordered collection of the steps one phase ran."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from formula_test_bot.execution.step import Step, StepStatus

if TYPE_CHECKING:
    from formula_test_bot.context import TestContext


class Report:
    """Steps recorded by one phase, in execution order."""

    def __init__(self, name: str, context: TestContext) -> None:
        self.name = name
        self._context = context
        self._steps: list[Step] = []

    @property
    def steps(self) -> tuple[Step, ...]:
        return tuple(self._steps)

    @property
    def failed_steps(self) -> tuple[Step, ...]:
        return tuple(step for step in self._steps if step.status is StepStatus.FAILED)

    @property
    def ignored_steps(self) -> tuple[Step, ...]:
        return tuple(step for step in self._steps if step.status is StepStatus.IGNORED)

    @property
    def passed_steps(self) -> tuple[Step, ...]:
        return tuple(step for step in self._steps if step.status is StepStatus.PASSED)

    @property
    def last_step(self) -> Step | None:
        return self._steps[-1] if self._steps else None

    @property
    def passed(self) -> bool:
        return not self.failed_steps

    def header(self, title: str, detail: str | None = None) -> None:
        """Print the ``Running <phase>`` banner."""

        text = f"Running {title}" if detail is None else f"Running {title}#{detail}"
        self._context.renderer.headline(text, color="yellow")

    def record(
        self,
        *command: str,
        env: Mapping[str, str | None] | None = None,
        named_args: Sequence[str] | str = (),
        ignore_failures: bool = False,
        verbose: bool = False,
    ) -> Step:
        """Run ``command`` as a new step and append it to this report."""

        step = self._new_step(command, env, named_args, ignore_failures, verbose)
        self._steps.append(step)
        return step.run(self._context)

    def record_failure(self, *command: str, output: str) -> Step:
        """Append a failed step for a problem the bot detected without running a command."""

        step = self._new_step(command, None, (), False, False)
        self._steps.append(step)
        return step.finish_without_running(StepStatus.FAILED, output, self._context)

    def _new_step(
        self,
        command: Sequence[str],
        env: Mapping[str, str | None] | None,
        named_args: Sequence[str] | str,
        ignore_failures: bool,
        verbose: bool,
    ) -> Step:
        names = (named_args,) if isinstance(named_args, str) else tuple(named_args)
        context = self._context
        return Step(
            command,
            env=env,
            named_args=names,
            ignore_failures=ignore_failures,
            verbose=verbose,
            repository=context.repository,
            display_prefixes=context.display_prefixes,
            noise_tokens=context.noise_tokens,
        )


__all__ = ["Report"]
