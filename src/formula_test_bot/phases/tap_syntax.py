"""Style, load and audit checks over every definition in the tap under test."""

from __future__ import annotations

from typing import TYPE_CHECKING

from formula_test_bot.context import PhaseName
from formula_test_bot.phases.base import BasePhase

if TYPE_CHECKING:
    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.phases.state import SchedulingState


class TapSyntaxPhase(BasePhase):
    name = PhaseName.TAP_SYNTAX
    title = "TapSyntax"

    def run(self, context: TestContext, state: SchedulingState) -> Report:
        report = self.new_report(context)
        tap = context.test_tap
        if not tap.installed:
            return report

        stable = context.options.stable
        if not stable:
            report.record(*context.brew("style", tap.name))
        if not tap.formula_files():
            return report

        report.record(*context.brew("readall", "--aliases", "--os=all", "--arch=all", tap.name))
        if not stable:
            report.record(*context.brew("audit", "--except=installed", f"--tap={tap.name}"))
        return report


__all__ = ["TapSyntaxPhase"]
