"""
formula-test-bot — test suite for the local command executor.

File: tests/unit/execution/test_executor.py

Purpose
- Validate merged output capture, streaming, environment overrides and
  unstartable commands against real subprocesses.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import pytest

from formula_test_bot.execution.executor import (
    CommandExecutor,
    CommandSpec,
    LocalSubprocessExecutor,
)

if TYPE_CHECKING:
    from pathlib import Path


def _script(source: str) -> tuple[str, ...]:
    return (sys.executable, "-c", source)


def test_stdout_and_stderr_are_merged_in_order() -> None:
    source = (
        "import sys\n"
        "print('first', flush=True)\n"
        "print('second', file=sys.stderr, flush=True)\n"
        "print('third', flush=True)\n"
        "sys.exit(3)\n"
    )

    result = LocalSubprocessExecutor().run(CommandSpec(argv=_script(source)))

    assert result.exit_code == 3
    assert not result.success
    assert result.text.splitlines() == ["first", "second", "third"]


def test_streaming_forwards_chunks_while_capturing() -> None:
    chunks: list[bytes] = []
    executor = LocalSubprocessExecutor(sink=chunks.append)

    streamed = executor.run(CommandSpec(argv=_script("print('a'); print('b')"), stream_output=True))
    quiet = executor.run(CommandSpec(argv=_script("print('c')")))

    assert b"".join(chunks).splitlines() == [b"a", b"b"]
    assert streamed.output.splitlines() == [b"a", b"b"]
    assert quiet.text.strip() == "c"


def test_environment_overrides_set_and_unset(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TEST_BOT_DROPPED", "present")
    source = "import os; print(os.environ.get('TEST_BOT_DROPPED', '-'), os.environ['TEST_BOT_ADDED'])"

    result = LocalSubprocessExecutor().run(
        CommandSpec(
            argv=_script(source),
            cwd=str(tmp_path),
            env={"TEST_BOT_DROPPED": None, "TEST_BOT_ADDED": "added"},
        )
    )

    assert result.success
    assert result.text.strip() == "- added"


def test_unstartable_command_reports_an_error(tmp_path: Path) -> None:
    missing = str(tmp_path / "no-such-tool")

    result = LocalSubprocessExecutor().run(CommandSpec(argv=(missing,)))

    assert result.exit_code is None
    assert result.error
    assert not result.success
    assert result.output == b""


def test_empty_argv_is_rejected() -> None:
    with pytest.raises(ValueError, match="argv must not be empty"):
        CommandSpec(argv=())


def test_local_executor_satisfies_the_protocol() -> None:
    assert isinstance(LocalSubprocessExecutor(), CommandExecutor)
