"""Bounded recover-and-retry for recoverable package resolution and build errors."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

import structlog

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)

MAX_RECOVERIES = 1

logger = structlog.get_logger(__name__)


def retry_once(
    operation: Callable[[], T],
    *,
    on: type[E] | tuple[type[E], ...],
    recover: Callable[[E], bool],
    max_recoveries: int = MAX_RECOVERIES,
) -> T:
    """
    Run ``operation``; on ``on`` errors call ``recover`` and try again.

    ``recover`` returns ``False`` when the recovery itself failed, in which case
    the original error is re-raised. After ``max_recoveries`` recoveries the next
    error propagates unchanged.
    """

    recoveries = 0
    while True:
        try:
            return operation()
        except on as exc:
            if recoveries >= max_recoveries:
                raise
            recoveries += 1
            logger.info(
                "recovery_attempted",
                error_type=type(exc).__name__,
                error=str(exc),
                attempt=recoveries,
            )
            if not recover(exc):
                raise


__all__ = ["MAX_RECOVERIES", "retry_once"]
