"""Observability exports: JSON-lines logging and GitHub Actions workflow commands."""

from formula_test_bot.observability.github_actions import (
    AnnotationLevel,
    GitHubActions,
    format_annotation,
)
from formula_test_bot.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    setup_logging,
    setup_structured_logging,
)

__all__ = [
    "AnnotationLevel",
    "GitHubActions",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "format_annotation",
    "setup_logging",
    "setup_structured_logging",
]
