"""Phase protocol and the small base class every phase shares."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Protocol

from formula_test_bot.execution.report import Report

if TYPE_CHECKING:
    from formula_test_bot.context import PhaseName, TestContext
    from formula_test_bot.phases.state import SchedulingState


class Phase(Protocol):
    """One step of the run state machine."""

    name: PhaseName

    def run(self, context: TestContext, state: SchedulingState) -> Report: ...


class BasePhase:
    """Creates the phase report and prints its ``Running`` banner."""

    name: ClassVar[PhaseName]
    title: ClassVar[str]

    def new_report(
        self,
        context: TestContext,
        detail: str | None = None,
        *,
        announce: bool = True,
    ) -> Report:
        report = Report(self.name.value, context)
        if announce:
            report.header(self.title, detail)
        return report


__all__ = ["BasePhase", "Phase"]
