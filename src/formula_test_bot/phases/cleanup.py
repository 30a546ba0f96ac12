"""
formula-test-bot — cleanup phases

File: src/formula_test_bot/phases/cleanup.py

Purpose
- ``cleanup_before`` leaves the tap repositories and working directory in a
  known state before anything is built; ``cleanup_after`` removes what a run
  left behind.

Functional requirements
- Destructive repository cleanup (reset, clean, prune, untap, killing
  processes) only happens with ``--cleanup`` and never on a dry run.
- Stale bottle files in the working directory are removed before every run
  (not on a dry run).
- Hosted GitHub Actions runners are thrown away after a job, so
  ``cleanup_after`` does nothing there unless the bot's own tap is tested.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Final

import structlog

from formula_test_bot.context import TEST_BOT_TAP, PhaseName
from formula_test_bot.execution.executor import CommandSpec
from formula_test_bot.integration.git import GitRepository
from formula_test_bot.phases.base import BasePhase
from formula_test_bot.utils.fs import safe_delete

if TYPE_CHECKING:
    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.phases.state import SchedulingState

logger = structlog.get_logger(__name__)

STALE_BOTTLE_GLOB: Final[str] = "*.bottle*.*"
CLEAN_EXCLUDES: Final[tuple[str, ...]] = (
    "-dx",
    "--exclude=*.bottle*.*",
    "--exclude=Library/Taps",
    "--exclude=Library/Homebrew/vendor",
)
_PR_LOCK_GLOB: Final[str] = ".git/refs/remotes/*/pr/*/*.lock"


class CleanupPhaseBase(BasePhase):
    """Repository hygiene shared by both cleanup phases."""

    def destructive(self, context: TestContext) -> bool:
        return context.options.cleanup and not context.options.dry_run

    def repository_git(self, context: TestContext, path: Path) -> GitRepository:
        return GitRepository(path, executable=context.config["git"]["executable"])

    def clear_stash_if_needed(self, report: Report, git: GitRepository) -> None:
        if not git.stash_list():
            return
        report.record(*git.command("stash", "clear"))

    def reset_if_needed(self, report: Report, git: GitRepository) -> None:
        ref = git.default_origin_ref()
        if not git.differs_from(ref):
            return
        report.record(*git.command("reset", "--hard", ref))

    def clean_if_needed(self, report: Report, git: GitRepository) -> None:
        if not git.clean_preview(CLEAN_EXCLUDES):
            return
        report.record(*git.command("clean", "-ff", *CLEAN_EXCLUDES))

    def prune_if_needed(self, report: Report, git: GitRepository) -> None:
        if "git prune" not in git.gc_auto_output():
            return
        report.record(*git.command("prune"))

    def cleanup_git_meta(self, repository: Path) -> None:
        for lock in repository.glob(_PR_LOCK_GLOB):
            lock.unlink(missing_ok=True)
        (repository / ".git" / "gc.log").unlink(missing_ok=True)

    def allowed_taps(self, context: TestContext) -> set[str]:
        taps = context.config["taps"]
        allowed = {context.formulary.core_tap_name, *taps["allowed"], *taps["required"]}
        if context.tap is not None:
            allowed.add(context.tap.name)
        return allowed

    def cleanup_shared(self, context: TestContext, report: Report) -> None:
        repository = context.repository
        git = context.git
        if git.exists:
            self.cleanup_git_meta(repository)
            self.clean_if_needed(report, git)
            self.prune_if_needed(report, git)

        allowed = self.allowed_taps(context)
        for tap in context.formulary.installed_taps():
            if tap.name in allowed:
                continue
            report.record(*context.brew("untap", tap.name))
        context.formulary.clear_cache()

        for tap in context.formulary.installed_taps():
            if tap.name not in allowed or tap.path == repository:
                continue
            tap_git = self.repository_git(context, tap.path)
            if not tap_git.exists:
                continue
            self.cleanup_git_meta(tap.path)
            self.reset_if_needed(report, tap_git)
            self.prune_if_needed(report, tap_git)


class CleanupBeforePhase(CleanupPhaseBase):
    name = PhaseName.CLEANUP_BEFORE
    title = "CleanupBefore"

    def run(self, context: TestContext, state: SchedulingState) -> Report:
        report = self.new_report(context)
        git = context.git
        testing_bot = context.tap is not None and context.tap.name == TEST_BOT_TAP

        if not testing_bot and git.exists:
            self.clear_stash_if_needed(report, git)
            if self.destructive(context):
                git.abort_in_progress()

        if not context.options.dry_run:
            for stale in sorted(context.workdir.glob(STALE_BOTTLE_GLOB)):
                if stale.is_file():
                    stale.unlink()
                    logger.info("stale_bottle_removed", path=str(stale))

        if self.destructive(context):
            self.cleanup_shared(context, report)

        installed = {tap.name for tap in context.formulary.installed_taps()}
        required = [context.formulary.core_tap_name, *context.config["taps"]["required"]]
        for tap_name in dict.fromkeys(required):
            if tap_name not in installed:
                report.record(*context.brew("tap", tap_name))

        if git.exists:
            verb = "Testing" if context.tap is None else "Using"
            context.renderer.headline(f"{verb} {context.test_tap.name} {git.log_line()}", color="cyan")
        return report


class CleanupAfterPhase(CleanupPhaseBase):
    name = PhaseName.CLEANUP_AFTER
    title = "CleanupAfter"

    def skipped_on_runner(self, context: TestContext) -> bool:
        environ = context.environ
        hosted = bool(environ.get("HOMEBREW_GITHUB_ACTIONS")) and not environ.get(
            "GITHUB_ACTIONS_HOMEBREW_SELF_HOSTED"
        )
        testing_bot = context.tap is not None and context.tap.name == TEST_BOT_TAP
        return hosted and not testing_bot

    def run(self, context: TestContext, state: SchedulingState) -> Report:
        if self.skipped_on_runner(context):
            logger.info("cleanup_after_skipped", reason="hosted runner")
            return self.new_report(context, announce=False)

        report = self.new_report(context)
        if self.destructive(context):
            git = context.git
            testing_bot = context.tap is not None and context.tap.name == TEST_BOT_TAP
            if not testing_bot and git.exists:
                self.clear_stash_if_needed(report, git)
                self.reset_if_needed(report, git)
            self.pkill_if_needed(context, report)
            self.cleanup_shared(context, report)
            report.record(*context.brew("cleanup", "--prune=3"))

        if context.options.local and not context.options.dry_run:
            for leftover in ("home", "logs"):
                safe_delete(context.workdir / leftover, context.workdir)
        return report

    def pkill_if_needed(self, context: TestContext, report: Report) -> None:
        """Kill processes still running from the package-manager cellar."""

        cellar = str(context.package_manager.prefix() / "Cellar")

        def running() -> bool:
            return context.executor.run(CommandSpec(argv=("pgrep", "-f", cellar))).success

        if not running():
            return
        report.record("pkill", "-f", cellar)
        if not running():
            return
        time.sleep(1)
        if running():
            report.record("pkill", "-9", "-f", cellar)


__all__ = [
    "CLEAN_EXCLUDES",
    "CleanupAfterPhase",
    "CleanupBeforePhase",
    "CleanupPhaseBase",
    "STALE_BOTTLE_GLOB",
]
