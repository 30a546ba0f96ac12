"""
formula-test-bot — change detection phase

File: src/formula_test_bot/phases/formulae_detect.py

Purpose
- Work out which packages to test for one argument: either the package named
  on the command line, or the packages added, modified and deleted between
  two revisions of the tap under test.

Functional requirements
- ``HEAD`` is diff-driven; a package name collapses the diff range; anything
  else is a usage error.
- The revision range comes from the GitHub Actions environment (pull request,
  merge queue, branch push); without it ``HEAD`` is compared with itself.
- The start revision is replaced by the merge base when one exists.
- A package both added and deleted is modified.
- Nothing to test outside a push event is a usage error.
- Results are deduplicated in first-seen order and exported to
  ``$GITHUB_OUTPUT`` when running on GitHub Actions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Final

import structlog

from formula_test_bot.constants import DEFAULT_ARGUMENT
from formula_test_bot.context import PhaseName
from formula_test_bot.errors import PackageDefinitionError, PackageNotFoundError, UsageError
from formula_test_bot.phases.formulae_common import FormulaePhaseBase

if TYPE_CHECKING:
    from collections.abc import Iterable

    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.integration.git import GitRepository
    from formula_test_bot.packages.tap import Tap
    from formula_test_bot.phases.state import SchedulingState

logger = structlog.get_logger(__name__)

_PULL_REQUEST_REF_RE: Final[re.Pattern[str]] = re.compile(r"refs/pull/(\d+)/merge")
_UNDEFINED: Final[str] = "(blank)"


def _unique(names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(names))


@dataclass(slots=True)
class DetectionResult:
    """Packages detected for one argument."""

    testing: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    diff_start: str = ""
    diff_end: str = ""


@dataclass(frozen=True, slots=True)
class _Range:
    start: str
    end: str
    origin_ref: str


class FormulaeDetectPhase(FormulaePhaseBase):
    """Turns an argument plus the CI environment into the scheduling sets."""

    name = PhaseName.FORMULAE_DETECT
    title = "FormulaeDetect"

    def __init__(self, argument: str = DEFAULT_ARGUMENT) -> None:
        self.argument = argument

    def run(self, context: TestContext, state: SchedulingState) -> Report:
        report = self.new_report(context, "detect_formulae!")
        result = self.detect(context, report)

        state.add_candidates(result.testing)
        state.added.extend(name for name in result.added if name not in state.added)
        state.deleted.extend(name for name in result.deleted if name not in state.deleted)
        state.modified.extend(name for name in result.modified if name not in state.modified)

        if context.actions.enabled:
            context.actions.set_outputs(
                {
                    "testing_formulae": ",".join(result.testing),
                    "added_formulae": ",".join(result.added),
                    "deleted_formulae": ",".join(result.deleted),
                }
            )
        return report

    def detect(self, context: TestContext, report: Report) -> DetectionResult:
        result = DetectionResult()
        environ = context.environ
        url: str | None = None

        if self.argument == DEFAULT_ARGUMENT:
            github_ref = environ.get("GITHUB_REF", "")
            github_repository = environ.get("GITHUB_REPOSITORY", "")
            match = _PULL_REQUEST_REF_RE.search(github_ref)
            if match is not None and github_repository:
                url = f"https://github.com/{github_repository}/pull/{match.group(1)}/checks"
        else:
            try:
                package = self.resolve(context, report, self.argument)
            except (PackageNotFoundError, PackageDefinitionError) as exc:
                logger.warning("formulae_detect_unresolved", argument=self.argument, error=str(exc))
                raise UsageError(
                    f"{self.argument} is not detected from GitHub Actions or a formula name!"
                ) from exc
            result.testing.append(package.full_name)

        tap = context.test_tap
        git = context.git
        revisions = self.revision_range(context, report, tap, git)
        start, end = revisions.start, revisions.end

        if git.exists:
            if start and end:
                merge_base = git.merge_base(start, end)
                if merge_base:
                    start = merge_base
            head = git.head()
            start = start or head
            end = end or head
        if result.testing:
            start = end

        origin_revision = git.log_line(revisions.origin_ref) if git.exists else ""
        tap_revision = git.log_line() if git.exists else ""
        context.renderer.headline(f"Testing {tap.name} {tap_revision or _UNDEFINED}:", color="cyan")
        context.renderer.info(
            "\n".join(
                (
                    f"    url               {url or _UNDEFINED}",
                    f"    tap {revisions.origin_ref:<13} {origin_revision or _UNDEFINED}",
                    f"    HEAD              {tap_revision or _UNDEFINED}",
                    f"    diff_start_sha1   {start or _UNDEFINED}",
                    f"    diff_end_sha1     {end or _UNDEFINED}",
                )
            )
        )

        modified: list[str] = []
        if git.exists and start != end:
            result.added = self.diff_packages(tap, git, start, end, "A")
            modified = self.diff_packages(tap, git, start, end, "M")
            result.deleted = self.diff_packages(tap, git, start, end, "D")

        both = [name for name in result.added if name in result.deleted]
        result.added = [name for name in result.added if name not in both]
        result.deleted = [name for name in result.deleted if name not in both]
        modified.extend(both)

        if context.options.test_default_formula:
            modified.append(context.config["formulae"]["default_test_formula"])

        result.testing.extend(result.added)
        result.testing.extend(modified)

        if (
            not result.testing
            and not result.deleted
            and start == end
            and environ.get("GITHUB_EVENT_NAME") != "push"
        ):
            raise UsageError("Did not find any formulae or commits to test!")

        result.testing = _unique(result.testing)
        result.added = _unique(result.added)
        result.modified = _unique(modified)
        result.deleted = _unique(result.deleted)
        result.diff_start = start
        result.diff_end = end

        context.renderer.info(
            "\n".join(
                (
                    "",
                    f"    testing_formulae  {' '.join(result.testing) or '(none)'}",
                    f"    added_formulae    {' '.join(result.added) or '(none)'}",
                    f"    modified_formulae {' '.join(result.modified) or '(none)'}",
                    f"    deleted_formulae  {' '.join(result.deleted) or '(none)'}",
                )
            )
        )
        logger.info(
            "formulae_detected",
            argument=self.argument,
            diff_start=start,
            diff_end=end,
            testing=result.testing,
            added=result.added,
            modified=result.modified,
            deleted=result.deleted,
        )
        return result

    def revision_range(
        self,
        context: TestContext,
        report: Report,
        tap: Tap,
        git: GitRepository,
    ) -> _Range:
        """Start and end revisions from the GitHub Actions environment; blank when unknown."""

        environ = context.environ
        repository = environ.get("GITHUB_REPOSITORY", "").strip()
        sha = environ.get("GITHUB_SHA", "").strip()
        ref = environ.get("GITHUB_REF", "").strip()
        origin_ref = "origin/main"

        if not (repository and sha and ref):
            if environ.get("GITHUB_ACTIONS"):
                raise UsageError(
                    "We cannot find the needed GitHub Actions environment variables! "
                    "Check you have e.g. exported them to a Docker container."
                )
            if environ.get("CI"):
                message = (
                    "No known CI provider detected! If you are using GitHub Actions then we cannot "
                    "find the expected environment variables! Check you have e.g. exported them "
                    "to a Docker container."
                )
                context.renderer.error(message)
                logger.error("formulae_detect_no_ci_context")
            return _Range("", "", origin_ref)

        if repository.lower() not in {tap.name, f"{tap.user}/homebrew-{tap.repo}"}:
            return _Range("", "", origin_ref)
        if not git.exists:
            return _Range("", "", origin_ref)

        base_ref = environ.get("GITHUB_BASE_REF", "").strip()
        branch = ref.removeprefix("refs/heads/")
        if base_ref:
            if not tap.official:
                report.record(*git.command("fetch", "origin", f"+refs/heads/{base_ref}"))
            origin_ref = f"origin/{base_ref}"
            return _Range(git.rev_parse(origin_ref), sha, origin_ref)
        if environ.get("GITHUB_EVENT_NAME") == "merge_group":
            start = git.rev_parse(git.default_origin_ref())
            return _Range(start, sha, f"origin/{branch}")
        if not tap.official:
            report.record(*git.command("fetch", "origin", f"+{ref}"))
        return _Range(sha, sha, f"origin/{branch}")

    def diff_packages(
        self,
        tap: Tap,
        git: GitRepository,
        start: str,
        end: str,
        diff_filter: str,
    ) -> list[str]:
        paths = git.changed_definition_paths(
            start,
            end,
            diff_filter=diff_filter,
            path=str(tap.formula_dir_relative),
        )
        return [
            tap.qualified_name(PurePosixPath(path).stem)
            for path in paths
            if tap.is_formula_file(path)
        ]


__all__ = ["DetectionResult", "FormulaeDetectPhase"]
