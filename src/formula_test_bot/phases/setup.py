"""Package-manager sanity checks run once at the start of a run."""

from __future__ import annotations

from typing import TYPE_CHECKING

from formula_test_bot.context import PhaseName
from formula_test_bot.phases.base import BasePhase

if TYPE_CHECKING:
    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.phases.state import SchedulingState

PRIMARY_OS = "macos"


class SetupPhase(BasePhase):
    name = PhaseName.SETUP
    title = "Setup"

    def run(self, context: TestContext, state: SchedulingState) -> Report:
        report = self.new_report(context)
        # Configuration is always shown, even when it passes.
        report.record(*context.brew("config"), verbose=True)
        report.record(
            *context.brew("doctor"),
            ignore_failures=context.platform.os != PRIMARY_OS,
        )
        return report


__all__ = ["PRIMARY_OS", "SetupPhase"]
