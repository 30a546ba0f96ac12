"""
formula-test-bot — phase runner

File: src/formula_test_bot/runner.py

Purpose
- Drive the phases for every argument in order, collect their reports and
  write the run-level outputs once all arguments are done.

Functional requirements
- ``cleanup_before`` and ``setup`` only run for the first argument,
  ``cleanup_after`` once after the last; no arguments means ``HEAD``.
- ``cleanup_after`` runs even when a phase raised on any argument, provided
  some phase had started.
- Without ``formulae_detect`` the scheduling sets come from the command line.
- The run passes iff no step anywhere failed.
- ``steps_output.txt`` is always written; the JUnit document is written with
  ``--junit`` when a package phase ran.
- On GitHub Actions the run-wide signals (skipped or failed packages, tested
  dependents, bottles) are appended to ``$GITHUB_OUTPUT``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

import structlog

from formula_test_bot.constants import BOTTLE_GLOB, DEFAULT_ARGUMENT
from formula_test_bot.context import PHASE_ORDER, PhaseName
from formula_test_bot.errors import UsageError
from formula_test_bot.packages.manager import PackageManagerError
from formula_test_bot.phases import (
    CleanupAfterPhase,
    CleanupBeforePhase,
    FormulaeDependentsPhase,
    FormulaeDetectPhase,
    FormulaePhase,
    RunSignals,
    SchedulingState,
    SetupPhase,
    TapSyntaxPhase,
)
from formula_test_bot.reporting import write_junit, write_steps_output
from formula_test_bot.utils.fs import safe_delete

if TYPE_CHECKING:
    from collections.abc import Sequence

    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.phases import Phase

logger = structlog.get_logger(__name__)

_PACKAGE_PHASES: Final[frozenset[str]] = frozenset(
    {PhaseName.FORMULAE.value, PhaseName.FORMULAE_DEPENDENTS.value}
)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Aggregate result of one invocation."""

    reports: tuple[Report, ...]
    steps_output: Path
    junit: Path | None = None

    @property
    def passed(self) -> bool:
        return all(report.passed for report in self.reports)

    @property
    def failed_step_count(self) -> int:
        return sum(len(report.failed_steps) for report in self.reports)


class TestRunner:
    """Runs the selected phases for each argument."""

    __test__ = False

    def __init__(self, context: TestContext) -> None:
        self.context = context
        self.signals = RunSignals()
        self._reports: list[Report] = []
        self._started: list[PhaseName] = []
        self._state = SchedulingState()

    @property
    def reports(self) -> tuple[Report, ...]:
        return tuple(self._reports)

    def phases_for(self, index: int, count: int) -> list[PhaseName]:
        options = self.context.options
        selected = [phase for phase in PHASE_ORDER if options.selects(phase)]
        if index > 0:
            selected = [
                phase
                for phase in selected
                if phase not in {PhaseName.CLEANUP_BEFORE, PhaseName.SETUP}
            ]
        if index < count - 1:
            selected = [phase for phase in selected if phase is not PhaseName.CLEANUP_AFTER]
        return selected

    def build_phase(self, name: PhaseName, argument: str) -> Phase:
        if name is PhaseName.CLEANUP_BEFORE:
            return CleanupBeforePhase()
        if name is PhaseName.SETUP:
            return SetupPhase()
        if name is PhaseName.TAP_SYNTAX:
            return TapSyntaxPhase()
        if name is PhaseName.FORMULAE_DETECT:
            return FormulaeDetectPhase(argument)
        if name is PhaseName.FORMULAE:
            return FormulaePhase(self.signals)
        if name is PhaseName.FORMULAE_DEPENDENTS:
            return FormulaeDependentsPhase()
        return CleanupAfterPhase()

    def initial_state(self, phases: Sequence[PhaseName]) -> SchedulingState:
        if PhaseName.FORMULAE_DETECT in phases:
            return SchedulingState()
        options = self.context.options
        return SchedulingState.seeded(
            testing=options.testing_formulae,
            added=options.added_formulae,
            deleted=options.deleted_formulae,
            skipped_or_failed=options.skipped_or_failed_formulae,
        )

    def check_usage(self) -> None:
        context = self.context
        if not context.options.cleanup:
            return
        configured = context.config["package_manager"]["prefix"]
        prefix = Path(configured) if configured else context.package_manager.prefix()
        if context.workdir.resolve() == prefix.resolve():
            raise UsageError(
                "Cannot use --cleanup from the package-manager prefix as it will delete all output."
            )

    def run(self) -> RunOutcome:
        self.check_usage()
        arguments = self.context.options.arguments or (DEFAULT_ARGUMENT,)
        junit_path: Path | None = None
        completed = False
        try:
            for index, argument in enumerate(arguments):
                self.run_argument(argument, self.phases_for(index, len(arguments)))
            completed = True
        finally:
            try:
                if self.context.options.selects(PhaseName.CLEANUP_AFTER) and (completed or self._started):
                    self.run_phase(PhaseName.CLEANUP_AFTER, arguments[-1], self._state)
            finally:
                if self.context.actions.enabled:
                    self.context.actions.set_outputs(self.signals.outputs())
                steps_output = write_steps_output(self.context.workdir, self._reports)
                junit_path = self.write_junit()
                self.clean_package_cache()

        outcome = RunOutcome(reports=self.reports, steps_output=steps_output, junit=junit_path)
        logger.info(
            "test_bot_finished",
            passed=outcome.passed,
            failed_steps=outcome.failed_step_count,
            run_id=self.context.run_id,
        )
        return outcome

    def run_argument(self, argument: str, phases: Sequence[PhaseName]) -> None:
        """Run every phase but ``cleanup_after``, which ``run`` performs once at the end."""

        self._state = self.initial_state(phases)
        logger.info("argument_started", argument=argument, phases=[phase.value for phase in phases])
        try:
            for name in phases:
                if name is PhaseName.CLEANUP_AFTER:
                    continue
                self.run_phase(name, argument, self._state)
        finally:
            self.signals.absorb(self._state)

    def run_phase(self, name: PhaseName, argument: str, state: SchedulingState) -> Report:
        phase = self.build_phase(name, argument)
        logger.info("phase_started", phase=name.value, argument=argument)
        self._started.append(name)
        report = phase.run(self.context, state)
        self._reports.append(report)
        logger.info(
            "phase_finished",
            phase=name.value,
            argument=argument,
            steps=len(report.steps),
            failed=len(report.failed_steps),
            ignored=len(report.ignored_steps),
        )
        return report

    def write_junit(self) -> Path | None:
        context = self.context
        if not context.options.junit:
            return None
        if not any(report.name in _PACKAGE_PHASES for report in self._reports):
            return None
        settings = context.config["report"]
        return write_junit(
            context.workdir / settings["junit_filename"],
            self._reports,
            tag=context.platform.tag,
            filters=settings["junit_filters"],
            max_output_bytes=settings["max_output_bytes"],
        )

    def clean_package_cache(self) -> None:
        """Drop downloaded bottles from the package-manager cache (everything with ``--clean-cache``)."""

        context = self.context
        if context.options.dry_run:
            return
        try:
            cache_dir = context.package_manager.cache_dir()
        except PackageManagerError as exc:
            logger.warning("package_cache_unavailable", error=str(exc))
            return
        if not cache_dir.is_dir():
            return
        if context.options.clean_cache:
            for child in sorted(cache_dir.iterdir()):
                safe_delete(child, cache_dir)
            logger.info("package_cache_cleared", path=str(cache_dir))
            return
        for bottle in sorted(context.workdir.glob(BOTTLE_GLOB)):
            safe_delete(cache_dir / bottle.name, cache_dir)


__all__ = ["RunOutcome", "TestRunner"]
