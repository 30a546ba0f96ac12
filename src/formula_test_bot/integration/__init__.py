"""Version control integration."""

from formula_test_bot.integration.git import GitCommandError, GitRepository, GitResult

__all__ = ["GitCommandError", "GitRepository", "GitResult"]
