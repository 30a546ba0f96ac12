"""
formula-test-bot — test suite for the phase runner.

File: tests/unit/phases/test_test_runner.py

Purpose
- Validate per-argument phase selection, guaranteed ``cleanup_after``,
  scheduling-state seeding and the run-level output files.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from formula_test_bot.context import PHASE_ORDER, PhaseName
from formula_test_bot.errors import UsageError
from formula_test_bot.runner import TestRunner

from . import FakeExecutor, make_context, write_package

if TYPE_CHECKING:
    from pathlib import Path


def _report_names(runner: TestRunner) -> list[str]:
    return [report.name for report in runner.reports]


def test_first_and_last_arguments_bracket_the_run(tmp_path: Path) -> None:
    runner = TestRunner(make_context(tmp_path))

    single = runner.phases_for(0, 1)
    first = runner.phases_for(0, 3)
    middle = runner.phases_for(1, 3)
    last = runner.phases_for(2, 3)

    assert single == list(PHASE_ORDER)
    assert PhaseName.CLEANUP_AFTER not in first
    assert first[:2] == [PhaseName.CLEANUP_BEFORE, PhaseName.SETUP]
    assert middle == [
        PhaseName.TAP_SYNTAX,
        PhaseName.FORMULAE_DETECT,
        PhaseName.FORMULAE,
        PhaseName.FORMULAE_DEPENDENTS,
    ]
    assert last[-1] is PhaseName.CLEANUP_AFTER
    assert PhaseName.SETUP not in last


def test_skip_options_remove_phases(tmp_path: Path) -> None:
    context = make_context(tmp_path, skip_setup=True, skip_dependents=True, skip_cleanup_after=True)

    phases = TestRunner(context).phases_for(0, 1)

    assert phases == [
        PhaseName.CLEANUP_BEFORE,
        PhaseName.TAP_SYNTAX,
        PhaseName.FORMULAE_DETECT,
        PhaseName.FORMULAE,
    ]


def test_each_argument_is_detected_separately(tmp_path: Path) -> None:
    taps = tmp_path / "Taps"
    write_package(taps, "foo")
    write_package(taps, "bar")
    context = make_context(
        tmp_path,
        arguments=("foo", "bar"),
        only=frozenset({PhaseName.SETUP, PhaseName.FORMULAE_DETECT, PhaseName.CLEANUP_AFTER}),
    )
    runner = TestRunner(context)

    outcome = runner.run()

    assert _report_names(runner) == ["setup", "formulae_detect", "formulae_detect", "cleanup_after"]
    assert outcome.passed


def test_cleanup_after_runs_when_a_phase_raises(tmp_path: Path) -> None:
    write_package(tmp_path / "Taps", "foo")
    context = make_context(
        tmp_path,
        arguments=("no-such-package",),
        only=frozenset({PhaseName.FORMULAE_DETECT, PhaseName.CLEANUP_AFTER}),
    )
    runner = TestRunner(context)

    with pytest.raises(UsageError):
        runner.run()

    assert _report_names(runner) == ["cleanup_after"]
    assert (context.workdir / "steps_output.txt").read_text(encoding="utf-8") == "All steps passed!\n"


def test_cleanup_after_runs_once_when_an_earlier_argument_raises(tmp_path: Path) -> None:
    write_package(tmp_path / "Taps", "foo")
    context = make_context(
        tmp_path,
        arguments=("no-such-package", "foo"),
        only=frozenset({PhaseName.CLEANUP_BEFORE, PhaseName.FORMULAE_DETECT, PhaseName.CLEANUP_AFTER}),
    )
    runner = TestRunner(context)

    with pytest.raises(UsageError):
        runner.run()

    assert _report_names(runner) == ["cleanup_before", "cleanup_after"]


def test_run_signals_are_appended_to_github_output(tmp_path: Path) -> None:
    output = tmp_path / "github_output"
    context = make_context(
        tmp_path,
        environ={"GITHUB_ACTIONS": "true", "GITHUB_OUTPUT": str(output)},
        only=frozenset({PhaseName.SETUP}),
        skipped_or_failed_formulae=("baz",),
    )
    runner = TestRunner(context)
    runner.signals.bottle_produced("foo", tmp_path / "work" / "foo--1.0.x86_64_linux.bottle.tar.gz")
    runner.signals.bottle_disabled("qux")

    runner.run()

    assert output.read_text(encoding="utf-8") == (
        "skipped_or_failed_formulae=baz\n"
        "tested_dependents=\n"
        "bottles=foo--1.0.x86_64_linux.bottle.tar.gz\n"
        "reused_bottle_formulae=\n"
        "no_bottle_formulae=qux\n"
    )


def test_run_signals_stay_local_outside_github_actions(tmp_path: Path) -> None:
    output = tmp_path / "github_output"
    context = make_context(tmp_path, environ={"GITHUB_OUTPUT": str(output)}, only=frozenset({PhaseName.SETUP}))

    TestRunner(context).run()

    assert not output.exists()


def test_state_is_seeded_from_options_without_detection(tmp_path: Path) -> None:
    context = make_context(
        tmp_path,
        testing_formulae=("foo", "bar"),
        added_formulae=("bar",),
        skipped_or_failed_formulae=("baz",),
    )
    runner = TestRunner(context)

    seeded = runner.initial_state([PhaseName.FORMULAE])
    detected = runner.initial_state([PhaseName.FORMULAE_DETECT, PhaseName.FORMULAE])

    assert seeded.candidates == seeded.testing == ["foo", "bar"]
    assert seeded.added == ["bar"]
    assert seeded.skipped_or_failed == ["baz"]
    assert detected.testing == []


def test_steps_output_lists_ignored_and_failed_steps(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("brew", "config", exit_code=1)
    executor.on("brew", "doctor", exit_code=1)
    context = make_context(tmp_path, executor=executor, only=frozenset({PhaseName.SETUP}))

    outcome = TestRunner(context).run()

    assert not outcome.passed
    assert outcome.failed_step_count == 1
    assert outcome.junit is None
    assert outcome.steps_output.read_text(encoding="utf-8") == (
        "Warning: 1 failed steps ignored!\nbrew doctor\n\nError: 1 failed steps!\nbrew config\n"
    )


def test_junit_requires_the_flag_and_a_package_phase(tmp_path: Path) -> None:
    (tmp_path / "Taps" / "homebrew" / "homebrew-core").mkdir(parents=True)

    setup_only = TestRunner(make_context(tmp_path, junit=True, only=frozenset({PhaseName.SETUP}))).run()
    unflagged = TestRunner(make_context(tmp_path, only=frozenset({PhaseName.FORMULAE}))).run()
    flagged = TestRunner(make_context(tmp_path, junit=True, only=frozenset({PhaseName.FORMULAE}))).run()

    assert setup_only.junit is None
    assert unflagged.junit is None
    assert flagged.junit == tmp_path / "work" / "brew-test-bot.xml"
    assert 'tests="0"' in flagged.junit.read_text(encoding="utf-8")


def test_cleanup_from_the_prefix_is_refused(tmp_path: Path) -> None:
    context = make_context(
        tmp_path,
        cleanup=True,
        config={"package_manager": {"prefix": str(tmp_path / "work")}},
    )

    with pytest.raises(UsageError, match="Cannot use --cleanup from the package-manager prefix"):
        TestRunner(context).run()


def _cache_with_bottles(tmp_path: Path) -> Path:
    cache_dir = tmp_path / "downloads"
    cache_dir.mkdir()
    (cache_dir / "foo--1.0.x86_64_linux.bottle.tar.gz").write_bytes(b"bottle")
    (cache_dir / "other--2.0.tar.gz").write_bytes(b"source")
    work = tmp_path / "work"
    work.mkdir()
    (work / "foo--1.0.x86_64_linux.bottle.tar.gz").write_bytes(b"bottle")
    return cache_dir


def test_package_cache_drops_bottles_built_by_this_run(tmp_path: Path) -> None:
    cache_dir = _cache_with_bottles(tmp_path)

    TestRunner(make_context(tmp_path)).clean_package_cache()

    assert [path.name for path in cache_dir.iterdir()] == ["other--2.0.tar.gz"]


def test_clean_cache_empties_the_package_cache(tmp_path: Path) -> None:
    cache_dir = _cache_with_bottles(tmp_path)

    TestRunner(make_context(tmp_path, clean_cache=True)).clean_package_cache()

    assert list(cache_dir.iterdir()) == []


def test_dry_run_leaves_the_package_cache_alone(tmp_path: Path) -> None:
    cache_dir = _cache_with_bottles(tmp_path)

    TestRunner(make_context(tmp_path, clean_cache=True, dry_run=True)).clean_package_cache()

    assert len(list(cache_dir.iterdir())) == 2
