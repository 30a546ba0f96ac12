"""
formula-test-bot — test suite for structured logging.

File: tests/unit/observability/test_structured_logging.py

Purpose
- Validate per-run JSON-lines log files and that structlog events are routed
  into them with their key/value fields.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from formula_test_bot.observability.logging import (
    LoggingConfig,
    setup_logging,
    setup_structured_logging,
)


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    logger = logging.getLogger("formula_test_bot")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def _events(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_structlog_events_land_in_the_run_log(tmp_path: Path) -> None:
    handle = setup_structured_logging(LoggingConfig(run_id="run-1", base_log_dir=tmp_path))

    structlog.get_logger("formula_test_bot.phases").info(
        "package_skipped",
        package="foo",
        reasons=("requirements",),
        path=tmp_path / "Formula" / "foo.yml",
    )
    handle.shutdown()

    assert handle.log_path == tmp_path / "run-1" / "test-bot.jsonl"
    [event] = _events(handle.log_path)
    assert event["message"] == "package_skipped"
    assert event["level"] == "INFO"
    assert event["run_id"] == "run-1"
    assert event["logger"] == "formula_test_bot.phases"
    assert event["fields"] == {
        "package": "foo",
        "reasons": ["requirements"],
        "path": str(tmp_path / "Formula" / "foo.yml"),
    }
    assert str(event["timestamp"]).endswith("Z")


def test_level_filters_events(tmp_path: Path) -> None:
    handle = setup_logging({"log_level": "WARNING"}, run_id="run-2", log_dir=tmp_path)

    log = structlog.get_logger("formula_test_bot.artifacts")
    log.info("artifact_cached", package="foo")
    log.warning("artifacts_reconciled", missing=["foo.bottle.tar.gz"])
    handle.shutdown()

    assert [event["message"] for event in _events(handle.log_path)] == ["artifacts_reconciled"]


def test_invalid_run_id_and_level_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="run_id"):
        setup_structured_logging(LoggingConfig(run_id="  ", base_log_dir=tmp_path))
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(LoggingConfig(run_id="run-3", base_log_dir=tmp_path, level="LOUD"))
