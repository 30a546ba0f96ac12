"""Executable CLI entrypoint for ``formula_test_bot``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from formula_test_bot.config import ConfigLoadError, ConfigValidationError
from formula_test_bot.errors import (
    FailFastExit,
    PackageDefinitionError,
    PackageNotFoundError,
    UsageError,
)
from formula_test_bot.integration.git import GitCommandError
from formula_test_bot.packages.manager import PackageManagerError

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    STEPS_FAILED = 1
    USAGE_ERROR = 2
    ENVIRONMENT_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m formula_test_bot`` and the ``test-bot`` script."""

    try:
        from formula_test_bot.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return raw_code
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _route_exception(exc: BaseException) -> ExitCode:
    for item in _iter_exception_chain(exc):
        if isinstance(item, FailFastExit):
            return ExitCode.STEPS_FAILED
        if isinstance(item, (UsageError, ConfigLoadError, ConfigValidationError)):
            return ExitCode.USAGE_ERROR
        if isinstance(
            item,
            (GitCommandError, PackageManagerError, PackageDefinitionError, PackageNotFoundError),
        ):
            return ExitCode.ENVIRONMENT_ERROR
    return ExitCode.INTERNAL_ERROR


def _iter_exception_chain(exc: BaseException) -> list[BaseException]:
    seen: set[int] = set()
    items: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None:
        marker = id(current)
        if marker in seen:
            break
        seen.add(marker)
        items.append(current)
        if current.__cause__ is not None:
            current = current.__cause__
            continue
        if current.__context__ is not None and not current.__suppress_context__:
            current = current.__context__
            continue
        break
    return items


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return
    prefix = "Error: " if exit_code is not ExitCode.USAGE_ERROR else "Usage error: "
    _write_stderr(prefix + (str(exc).strip() or exc.__class__.__name__))


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
