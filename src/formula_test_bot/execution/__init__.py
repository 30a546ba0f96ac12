"""Step execution: command contract, steps, per-phase reports and bounded retry."""

from formula_test_bot.execution.executor import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
)
from formula_test_bot.execution.report import Report
from formula_test_bot.execution.retry import retry_once
from formula_test_bot.execution.step import Step, StepStatus

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "Report",
    "Step",
    "StepStatus",
    "retry_once",
]
