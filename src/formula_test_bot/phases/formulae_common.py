"""
formula-test-bot — helpers shared by the build and dependents phases

File: src/formula_test_bot/phases/formulae_common.py

Purpose
- Bottle availability checks, skip/fail bookkeeping, conflict unlinking,
  low-disk cleanup and the bounded recoveries (tap a missing tap, install a
  compiler) that both package phases need.

Functional requirements
- A bottle tagged ``all`` only counts when every runtime dependency is bottled too.
- ``skipped``/``failed`` always record the package in ``skipped_or_failed``.
- Missing taps and unusable compilers are recovered at most once per lookup.
- In dry-run mode installed state is never queried and is treated as empty.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

import psutil
import structlog

from formula_test_bot.errors import CompilerSelectionError, TapNotInstalledError
from formula_test_bot.execution.retry import retry_once
from formula_test_bot.packages.model import ALL_PLATFORMS_TAG
from formula_test_bot.phases.base import BasePhase
from formula_test_bot.utils.hashing import checksum_map

if TYPE_CHECKING:
    from collections.abc import Sequence

    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.packages.manager import InstalledPackage
    from formula_test_bot.packages.model import Package
    from formula_test_bot.phases.state import SchedulingState

logger = structlog.get_logger(__name__)

DEVELOPER_UNSET: Final[dict[str, str | None]] = {"HOMEBREW_DEVELOPER": None}
_BYTES_IN_GB: Final[int] = 1000**3


class FormulaePhaseBase(BasePhase):
    """Package-level helpers for ``formulae`` and ``formulae_dependents``."""

    def bottled(
        self,
        context: TestContext,
        package: Package,
        *,
        no_older_versions: bool = False,
        _seen: frozenset[str] = frozenset(),
    ) -> bool:
        bottle = package.bottle
        if bottle is None or package.bottle_disabled:
            return False
        if bottle.has_tag(ALL_PLATFORMS_TAG):
            seen = _seen | {package.full_name}
            for dep in package.required_dependencies():
                if dep.build:
                    continue
                resolved = context.formulary.find(dep.name)
                if resolved is None:
                    return False
                if resolved.full_name in seen:
                    continue
                if not self.bottled(
                    context, resolved, no_older_versions=no_older_versions, _seen=seen
                ):
                    return False
            return True
        if bottle.has_tag(context.platform.tag):
            return True
        if no_older_versions:
            return False
        return any(bottle.has_tag(tag) for tag in context.platform.compatible_tags)

    def bottled_or_built(
        self,
        context: TestContext,
        state: SchedulingState,
        package: Package,
        *,
        no_older_versions: bool = False,
    ) -> bool:
        return package.full_name in state.bottled_or_built() or self.bottled(
            context, package, no_older_versions=no_older_versions
        )

    def skipped(self, context: TestContext, state: SchedulingState, name: str, reason: str) -> None:
        state.mark_skipped_or_failed(name)
        context.renderer.skipped(name, reason)
        logger.info("formulae_candidate_skipped", package=name, phase=self.name.value, reason=reason)

    def failed(self, context: TestContext, state: SchedulingState, name: str, reason: str) -> None:
        state.mark_skipped_or_failed(name)
        context.renderer.failed(name, reason)
        logger.warning("formulae_candidate_failed", package=name, phase=self.name.value, reason=reason)

    def unsatisfied_requirements_message(self, context: TestContext, package: Package) -> str | None:
        unsatisfied = package.unsatisfied_requirements(context.platform)
        if not unsatisfied:
            return None
        return "\n".join(req.unsatisfied_message() for req in unsatisfied)

    def installed(self, context: TestContext) -> dict[str, InstalledPackage]:
        if context.options.dry_run:
            return {}
        return context.package_manager.installed()

    def latest_version_installed(self, context: TestContext, package: Package) -> bool:
        installed = self.installed(context).get(package.full_name)
        return installed is not None and package.pkg_version in installed.versions

    def resolve(self, context: TestContext, report: Report, name: str) -> Package:
        """Resolve ``name``, tapping its tap once when it is not installed."""

        return retry_once(
            lambda: context.formulary.resolve(name),
            on=TapNotInstalledError,
            recover=lambda exc: self._tap(context, report, exc),
        )

    def dependency_closure(
        self,
        context: TestContext,
        report: Report,
        package: Package,
        *,
        include_build: bool = True,
        include_test: bool = False,
    ) -> tuple[Package, ...]:
        return retry_once(
            lambda: context.graph.dependency_closure(
                package,
                include_build=include_build,
                include_test=include_test,
            ),
            on=TapNotInstalledError,
            recover=lambda exc: self._tap(context, report, exc),
        )

    def _tap(self, context: TestContext, report: Report, exc: TapNotInstalledError) -> bool:
        step = report.record(*context.brew("tap", exc.tap))
        context.formulary.clear_cache()
        return step.passed

    def check_compilers(
        self,
        context: TestContext,
        report: Report,
        package: Package,
        dependencies: Sequence[Package],
    ) -> None:
        """Make sure some compiler can build ``package`` and its dependencies, installing gcc once if needed."""

        available = list(context.config["platform"]["system_compilers"])

        def select() -> None:
            for candidate in (*dependencies, package):
                if candidate.fails_with and all(name in candidate.fails_with for name in available):
                    raise CompilerSelectionError(candidate.full_name, tuple(candidate.fails_with))

        def install_gcc(_exc: CompilerSelectionError) -> bool:
            step = report.record(*context.brew("install", "gcc"), env=DEVELOPER_UNSET)
            if step.passed:
                available.append("gcc")
            return step.passed

        retry_once(select, on=CompilerSelectionError, recover=install_gcc)

    def unlink_conflicts(self, context: TestContext, report: Report, package: Package) -> None:
        """Unlink installed packages that conflict with ``package`` or its dependencies."""

        installed = self.installed(context)
        current = installed.get(package.full_name)
        if package.keg_only or (current is not None and current.linked):
            return

        conflicts: list[str] = list(package.conflicts_with)
        for dependency in self.dependency_closure(context, report, package):
            conflicts.extend(dependency.conflicts_with)

        installed_names = {item.name for item in installed.values()} | set(installed)
        for name in dict.fromkeys(conflicts):
            if name in installed_names:
                report.record(*context.brew("unlink", name))

    def cleanup_during(self, context: TestContext, report: Report) -> None:
        """Purge the package-manager cache when ``--cleanup`` is set and disk space runs low."""

        if not context.options.cleanup or context.options.dry_run:
            return
        cache_dir = context.package_manager.cache_dir()
        if not cache_dir.exists():
            return
        free_gb = psutil.disk_usage(str(cache_dir)).free // _BYTES_IN_GB
        minimum = int(context.config["cleanup"]["min_free_gb"])
        if free_gb >= minimum:
            return
        logger.info("cache_purge_needed", free_gb=free_gb, min_free_gb=minimum)
        report.header("TestFormulae", "cleanup_during!")
        report.record("rm", "-rf", str(cache_dir))

    def definition_checksums(self, packages: Sequence[Package]) -> dict[str, str]:
        return checksum_map({package.full_name: package.path for package in packages})

    def unchanged_in_repository(self, context: TestContext, revision: str, packages: Sequence[Package]) -> bool:
        """Whether the definitions of ``packages`` inside the tested repository are unchanged since ``revision``."""

        git = context.git
        paths = [package.path for package in packages if git.contains(package.path)]
        if not paths or not git.exists:
            return True
        return git.unchanged_since(revision, paths)

    def repository_revision(self, context: TestContext) -> str:
        git = context.git
        return git.head() if git.exists else ""


__all__ = ["DEVELOPER_UNSET", "FormulaePhaseBase"]
