"""Run phases in execution order and the scheduling state they share."""

from formula_test_bot.phases.base import BasePhase, Phase
from formula_test_bot.phases.cleanup import CleanupAfterPhase, CleanupBeforePhase
from formula_test_bot.phases.formulae import FormulaePhase
from formula_test_bot.phases.formulae_dependents import FormulaeDependentsPhase
from formula_test_bot.phases.formulae_detect import DetectionResult, FormulaeDetectPhase
from formula_test_bot.phases.setup import SetupPhase
from formula_test_bot.phases.state import RunSignals, SchedulingState
from formula_test_bot.phases.tap_syntax import TapSyntaxPhase

__all__ = [
    "BasePhase",
    "CleanupAfterPhase",
    "CleanupBeforePhase",
    "DetectionResult",
    "FormulaeDependentsPhase",
    "FormulaeDetectPhase",
    "FormulaePhase",
    "Phase",
    "RunSignals",
    "SchedulingState",
    "SetupPhase",
    "TapSyntaxPhase",
]
