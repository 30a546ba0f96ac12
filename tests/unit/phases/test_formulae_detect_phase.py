"""
formula-test-bot — test suite for change detection.

File: tests/unit/phases/test_formulae_detect_phase.py

Purpose
- Validate revision ranges from the GitHub Actions environment and the
  added/modified/deleted sets over real temporary git repositories.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from formula_test_bot.errors import UsageError
from formula_test_bot.execution.report import Report
from formula_test_bot.phases import FormulaeDetectPhase, SchedulingState

from . import (
    FakeExecutor,
    commit_all,
    console_text,
    init_repository,
    make_context,
    run_git,
    write_package,
)


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir(exist_ok=True)
    xdg.mkdir(exist_ok=True)

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


def _tap_history(tmp_path: Path, tap: str = "homebrew/core") -> tuple[Path, str, str]:
    """Two commits: ``bar`` added, ``foo`` modified, ``baz`` deleted, plus a non-definition change."""

    taps = tmp_path / "Taps"
    user, repo = tap.split("/")
    repository = taps / user / f"homebrew-{repo}"
    init_repository(repository)
    write_package(taps, "foo", tap=tap)
    write_package(taps, "baz", tap=tap)
    write_package(taps, "keep", tap=tap)
    first = commit_all(repository, "initial")
    run_git(repository, "update-ref", "refs/remotes/origin/main", first)
    run_git(repository, "symbolic-ref", "refs/remotes/origin/HEAD", "refs/remotes/origin/main")

    write_package(taps, "bar", tap=tap)
    write_package(taps, "foo", tap=tap, version="2.0")
    (repository / "Formula" / "baz.yml").unlink()
    (repository / "README.md").write_text("docs\n", encoding="utf-8")
    second = commit_all(repository, "change")
    return repository, first, second


def _pull_request_env(sha: str, repository: str = "Homebrew/homebrew-core") -> dict[str, str]:
    return {
        "GITHUB_REPOSITORY": repository,
        "GITHUB_SHA": sha,
        "GITHUB_REF": "refs/pull/7/merge",
        "GITHUB_BASE_REF": "main",
        "GITHUB_EVENT_NAME": "pull_request",
    }


def _detect(context, argument: str = "HEAD"):
    phase = FormulaeDetectPhase(argument)
    return phase.detect(context, Report("formulae_detect", context))


def test_pull_request_diff_classifies_changed_definitions(tmp_path: Path) -> None:
    _, first, second = _tap_history(tmp_path)
    context = make_context(tmp_path, environ=_pull_request_env(second))

    result = _detect(context)

    assert result.added == ["bar"]
    assert result.modified == ["foo"]
    assert result.deleted == ["baz"]
    assert result.testing == ["bar", "foo"]
    assert (result.diff_start, result.diff_end) == (first, second)
    assert "https://github.com/Homebrew/homebrew-core/pull/7/checks" in console_text(context)


def test_detection_is_idempotent_for_the_same_revisions(tmp_path: Path) -> None:
    _, _, second = _tap_history(tmp_path)
    context = make_context(tmp_path, environ=_pull_request_env(second))

    assert _detect(context) == _detect(context)


def test_merge_queue_compares_against_default_branch(tmp_path: Path) -> None:
    _, first, second = _tap_history(tmp_path)
    environ = {
        "GITHUB_REPOSITORY": "Homebrew/homebrew-core",
        "GITHUB_SHA": second,
        "GITHUB_REF": "refs/heads/gh-readonly-queue/main/pr-7-abc",
        "GITHUB_EVENT_NAME": "merge_group",
    }
    context = make_context(tmp_path, environ=environ)

    result = _detect(context)

    assert result.diff_start == first
    assert result.testing == ["bar", "foo"]


def test_push_compares_head_with_itself_without_failing(tmp_path: Path) -> None:
    _, _, second = _tap_history(tmp_path)
    environ = {
        "GITHUB_REPOSITORY": "Homebrew/homebrew-core",
        "GITHUB_SHA": second,
        "GITHUB_REF": "refs/heads/main",
        "GITHUB_EVENT_NAME": "push",
    }
    executor = FakeExecutor()
    context = make_context(tmp_path, environ=environ, executor=executor)

    result = _detect(context)

    assert result.testing == []
    assert result.diff_start == result.diff_end == second
    assert executor.calls == []


def test_non_official_tap_fetches_base_branch_and_qualifies_names(tmp_path: Path) -> None:
    repository, _, second = _tap_history(tmp_path, tap="someone/extra")
    executor = FakeExecutor()
    context = make_context(
        tmp_path,
        environ=_pull_request_env(second, repository="someone/homebrew-extra"),
        executor=executor,
    )

    result = _detect(context)

    assert executor.commands() == [f"git -C {repository} fetch origin +refs/heads/main"]
    assert result.added == ["someone/extra/bar"]
    assert result.deleted == ["someone/extra/baz"]


def test_package_argument_collapses_the_diff(tmp_path: Path) -> None:
    _, _, second = _tap_history(tmp_path)
    context = make_context(tmp_path, environ=_pull_request_env(second))

    result = _detect(context, "keep")

    assert result.testing == ["keep"]
    assert result.added == result.deleted == result.modified == []
    assert result.diff_start == result.diff_end


def test_unknown_argument_is_a_usage_error(tmp_path: Path) -> None:
    _tap_history(tmp_path)
    context = make_context(tmp_path)

    with pytest.raises(UsageError, match="is not detected from GitHub Actions or a formula name"):
        _detect(context, "no-such-package")


def test_nothing_to_test_outside_push_is_a_usage_error(tmp_path: Path) -> None:
    _tap_history(tmp_path)
    context = make_context(tmp_path)

    with pytest.raises(UsageError, match="Did not find any formulae or commits to test!"):
        _detect(context)


def test_missing_variables_on_github_actions_are_fatal(tmp_path: Path) -> None:
    _tap_history(tmp_path)
    context = make_context(tmp_path, environ={"GITHUB_ACTIONS": "true"})

    with pytest.raises(UsageError, match="cannot find the needed GitHub Actions environment variables"):
        _detect(context)


def test_unknown_ci_logs_an_error_and_default_formula_is_tested(tmp_path: Path) -> None:
    _tap_history(tmp_path)
    context = make_context(tmp_path, environ={"CI": "true"}, test_default_formula=True)

    result = _detect(context)

    assert result.testing == ["homebrew/test-bot/testbottest"]
    assert result.modified == ["homebrew/test-bot/testbottest"]
    assert "No known CI provider detected!" in console_text(context)


def test_run_records_candidates_and_exports_outputs(tmp_path: Path) -> None:
    _, _, second = _tap_history(tmp_path)
    output_file = tmp_path / "github_output"
    environ = {**_pull_request_env(second), "GITHUB_ACTIONS": "true", "GITHUB_OUTPUT": str(output_file)}
    context = make_context(tmp_path, environ=environ)
    state = SchedulingState()

    report = FormulaeDetectPhase().run(context, state)

    assert report.steps == ()
    assert state.candidates == state.testing == ["bar", "foo"]
    assert state.added == ["bar"]
    assert state.deleted == ["baz"]
    assert state.modified == ["foo"]
    assert output_file.read_text(encoding="utf-8").splitlines() == [
        "testing_formulae=bar,foo",
        "added_formulae=bar",
        "deleted_formulae=baz",
    ]


_NAMES = st.lists(st.sampled_from(["alpha", "beta", "gamma", "delta", "omega"]), max_size=5)


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(added=_NAMES, modified=_NAMES, deleted=_NAMES)
def test_added_and_deleted_never_overlap(
    tmp_path: Path,
    added: list[str],
    modified: list[str],
    deleted: list[str],
) -> None:
    if not (tmp_path / "Taps").exists():
        _tap_history(tmp_path)
    repository = tmp_path / "Taps" / "homebrew" / "homebrew-core"
    second = run_git(repository, "rev-parse", "HEAD").stdout.strip()
    context = make_context(tmp_path, environ=_pull_request_env(second))
    phase = FormulaeDetectPhase()
    diffs = {"A": added, "M": modified, "D": deleted}
    phase.diff_packages = lambda tap, git, start, end, diff_filter: list(diffs[diff_filter])  # type: ignore[method-assign]

    result = phase.detect(context, Report("formulae_detect", context))

    assert not set(result.added) & set(result.deleted)
    assert set(added) & set(deleted) <= set(result.modified)
    assert len(result.testing) == len(set(result.testing))
    assert set(result.testing) == set(result.added) | set(result.modified)
