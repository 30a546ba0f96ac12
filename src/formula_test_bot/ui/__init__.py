"""Console rendering; the command-line parser lives in ``formula_test_bot.ui.cli``."""

from formula_test_bot.ui.render import ConsoleRenderer, create_renderer

__all__ = ["ConsoleRenderer", "create_renderer"]
