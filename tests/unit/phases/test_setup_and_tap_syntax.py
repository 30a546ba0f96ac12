"""
formula-test-bot — test suite for the setup and tap syntax phases.

File: tests/unit/phases/test_setup_and_tap_syntax.py

Purpose
- Validate the sanity checks run before any package is built.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from formula_test_bot.phases import SchedulingState, SetupPhase, TapSyntaxPhase

from . import FakeExecutor, make_context, write_package

if TYPE_CHECKING:
    from pathlib import Path


def test_setup_shows_config_and_tolerates_doctor_off_macos(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("brew", "config", output="HOMEBREW_VERSION: 4.4.0\n")
    executor.on("brew", "doctor", exit_code=1, output="Warning: unbrewed files\n")
    context = make_context(tmp_path, executor=executor)

    report = SetupPhase().run(context, SchedulingState())

    assert executor.commands() == ["brew config", "brew doctor"]
    assert report.passed
    assert [step.command_short() for step in report.ignored_steps] == ["doctor"]
    assert "HOMEBREW_VERSION: 4.4.0" in (report.steps[0].output or "")


def test_doctor_failure_fails_setup_on_macos(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("brew", "doctor", exit_code=1)
    context = make_context(
        tmp_path,
        executor=executor,
        config={"platform": {"tag": "arm64_sequoia", "os": "macos", "arch": "arm64"}},
    )

    report = SetupPhase().run(context, SchedulingState())

    assert not report.passed
    assert [step.command_short() for step in report.failed_steps] == ["doctor"]


def test_tap_syntax_runs_style_readall_and_audit(tmp_path: Path) -> None:
    write_package(tmp_path / "Taps", "foo")
    executor = FakeExecutor()
    context = make_context(tmp_path, executor=executor)

    report = TapSyntaxPhase().run(context, SchedulingState())

    assert executor.commands() == [
        "brew style homebrew/core",
        "brew readall --aliases --os=all --arch=all homebrew/core",
        "brew audit --except=installed --tap=homebrew/core",
    ]
    assert report.passed


def test_tap_syntax_stable_only_loads_definitions(tmp_path: Path) -> None:
    write_package(tmp_path / "Taps", "foo")
    executor = FakeExecutor()
    context = make_context(tmp_path, executor=executor, stable=True)

    TapSyntaxPhase().run(context, SchedulingState())

    assert executor.commands() == ["brew readall --aliases --os=all --arch=all homebrew/core"]


def test_tap_without_definitions_is_only_style_checked(tmp_path: Path) -> None:
    (tmp_path / "Taps" / "homebrew" / "homebrew-core").mkdir(parents=True)
    executor = FakeExecutor()
    context = make_context(tmp_path, executor=executor)

    TapSyntaxPhase().run(context, SchedulingState())

    assert executor.commands() == ["brew style homebrew/core"]


def test_missing_tap_is_skipped(tmp_path: Path) -> None:
    executor = FakeExecutor()
    context = make_context(tmp_path, executor=executor, tap="someone/absent")

    report = TapSyntaxPhase().run(context, SchedulingState())

    assert executor.calls == []
    assert report.steps == ()
