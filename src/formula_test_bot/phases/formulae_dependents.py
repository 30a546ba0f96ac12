"""
formula-test-bot — dependents phase

File: src/formula_test_bot/phases/formulae_dependents.py

Purpose
- After the candidates are built, install and test the packages that depend
  on them, so a change that breaks downstream packages fails the run.

Functional requirements
- Dependents are discovered recursively unless ``--skip-recursive-dependents``
  or the platform config disables it; other candidates, deprecated and
  disabled packages are never dependents.
- A dependent that also depends on a candidate whose dependents are still to
  be processed is deferred to that candidate.
- Dependents are built from source with ``--build-dependents-from-source``
  when all their dependencies are bottled or built, or when they depend on an
  allow-listed candidate; otherwise only bottled dependents that need the
  candidate at runtime are installed.
- A dependent already tested against identical definitions in an earlier run
  is skipped with the run it passed in.
- A failing or unresolvable dependent never stops its siblings.
- A dry run shows every step a dependent would get, as if installs succeeded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from formula_test_bot.context import PhaseName
from formula_test_bot.errors import PackageDefinitionError, PackageNotFoundError
from formula_test_bot.observability.github_actions import AnnotationLevel
from formula_test_bot.phases.formulae_common import DEVELOPER_UNSET, FormulaePhaseBase

if TYPE_CHECKING:
    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.execution.step import Step
    from formula_test_bot.packages.model import Package
    from formula_test_bot.phases.state import SchedulingState

logger = structlog.get_logger(__name__)


class FormulaeDependentsPhase(FormulaePhaseBase):
    """Installs and tests the dependents of each successfully built candidate."""

    name = PhaseName.FORMULAE_DEPENDENTS
    title = "FormulaeDependents"

    def run(self, context: TestContext, state: SchedulingState) -> Report:
        report = self.new_report(context, announce=False)
        for name in state.bottled_or_built():
            self.dependent_formulae(context, report, state, name)
        return report

    def dependent_formulae(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        name: str,
    ) -> None:
        self.cleanup_during(context, report)
        report.header(self.title, f"dependent_formulae!({name})")

        try:
            # Dependencies were uninstalled after building.
            step = report.record(
                *context.brew("install", "--only-dependencies", name),
                env=DEVELOPER_UNSET,
                named_args=name,
            )
            if step.failed:
                return
            step = report.record(*context.brew("postinstall", name), named_args=name)
            if step.failed:
                return

            try:
                package = self.resolve(context, report, name)
            except (PackageNotFoundError, PackageDefinitionError) as exc:
                self.failed(context, state, name, str(exc))
                return

            source, bottled, testable = self.dependents_for(context, report, state, package)
            for dependent in source:
                self.install_dependent(context, report, state, package, dependent, testable, build_from_source=True)
                if self.bottled(context, dependent):
                    self.install_dependent(context, report, state, package, dependent, testable)
            for dependent in bottled:
                self.install_dependent(context, report, state, package, dependent, testable)
        finally:
            state.mark_dependents_checked(name)

    def dependents_for(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        package: Package,
    ) -> tuple[list[Package], list[Package], list[Package]]:
        """``(source, bottled, testable)`` dependents of ``package``."""

        context.renderer.headline("Determining dependents...", color="cyan")
        options = context.options
        recursive = not (
            options.skip_recursive_dependents
            or context.config["platform"]["skip_recursive_dependents"]
        )
        names = context.graph.uses(
            package.full_name,
            recursive=recursive,
            include_build=True,
            include_test=True,
        )

        still_to_check = {
            candidate
            for candidate in state.bottled_or_built()
            if candidate != package.full_name and candidate not in state.dependents_checked
        }
        allowlist = set(context.config["dependents"]["build_from_source_allowlist"])

        source: list[Package] = []
        others: list[Package] = []
        for name in names:
            if name in state.candidates:
                continue
            try:
                dependent = self.resolve(context, report, name)
                if recursive:
                    deps = self.dependency_closure(
                        context, report, dependent, include_build=True, include_test=True
                    )
                else:
                    deps = tuple(
                        self.resolve(context, report, dep.name)
                        for dep in dependent.dependencies
                        if not dep.optional
                    )
            except (PackageNotFoundError, PackageDefinitionError) as exc:
                logger.warning("dependent_unresolvable", package=package.full_name, dependent=name, error=str(exc))
                continue

            if dependent.deprecated or dependent.disabled:
                logger.info(
                    "dependent_excluded",
                    package=package.full_name,
                    dependent=name,
                    reason="deprecated" if dependent.deprecated else "disabled",
                )
                continue

            blocking = sorted(dep.full_name for dep in deps if dep.full_name in still_to_check)
            if blocking:
                logger.info("dependent_deferred", package=package.full_name, dependent=name, waiting_for=blocking)
                continue

            from_source = (
                options.build_dependents_from_source
                and all(self.bottled_or_built(context, state, dep) for dep in deps)
            ) or any(dep.full_name in allowlist and dep.full_name in state.candidates for dep in deps)
            if from_source:
                source.append(dependent)
                continue

            try:
                runtime = self.dependency_closure(
                    context, report, dependent, include_build=False, include_test=True
                )
            except (PackageNotFoundError, PackageDefinitionError) as exc:
                logger.warning("dependent_unresolvable", package=package.full_name, dependent=name, error=str(exc))
                continue
            if package.full_name not in {dep.full_name for dep in runtime}:
                logger.info("dependent_build_only", package=package.full_name, dependent=name)
                continue
            others.append(dependent)

        bottled = [dependent for dependent in others if self.bottled(context, dependent)]
        testable = [dependent for dependent in (*source, *bottled) if dependent.test_defined]

        for label, group in (("Source dependents:", source), ("Bottled dependents:", bottled), ("Testable dependents:", testable)):
            context.renderer.headline(label, color="cyan")
            context.renderer.items([dependent.full_name for dependent in group])
        logger.info(
            "dependents_determined",
            package=package.full_name,
            source=[dependent.full_name for dependent in source],
            bottled=[dependent.full_name for dependent in bottled],
            testable=[dependent.full_name for dependent in testable],
        )
        return source, bottled, testable

    def install_dependent(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        package: Package,
        dependent: Package,
        testable: list[Package],
        *,
        build_from_source: bool = False,
    ) -> None:
        name = dependent.full_name
        message = self.unsatisfied_requirements_message(context, dependent)
        if message is not None:
            self.skipped(context, state, name, message)
            return

        try:
            closure = self.dependency_closure(context, report, dependent, include_build=True, include_test=True)
        except (PackageNotFoundError, PackageDefinitionError) as exc:
            self.failed(context, state, name, str(exc))
            return
        definitions = self.definition_checksums((package, dependent, *closure))
        if self.previously_passed(context, package, dependent, closure, definitions):
            return

        self.cleanup_during(context, report)

        bottled_on_current_version = self.bottled(context, dependent, no_older_versions=True)
        previously_installed = self.latest_version_installed(context, dependent)
        install_step: Step | None = None

        if not previously_installed:
            build_args = ["--build-from-source"] if build_from_source else []
            fetch = report.record(*context.brew("fetch", *build_args, "--retry", name), named_args=name)
            if fetch.failed:
                return
            self.unlink_conflicts(context, report, dependent)
            report.record(
                *context.brew("install", *build_args, "--only-dependencies", name),
                env=DEVELOPER_UNSET,
                named_args=name,
            )
            install_step = report.record(
                *context.brew("install", *build_args, name),
                env=DEVELOPER_UNSET,
                named_args=name,
                ignore_failures=build_from_source and not bottled_on_current_version,
            )
            if not install_step.passed:
                return

        dry_run = context.options.dry_run
        installed = self.installed(context).get(name)
        if not dry_run and (installed is None or dependent.pkg_version not in installed.versions):
            return

        if not dependent.keg_only and (installed is None or not installed.linked):
            self.unlink_conflicts(context, report, dependent)
            report.record(*context.brew("link", name))
        report.record(*context.brew("install", "--only-dependencies", name))
        linkage = report.record(
            *context.brew("linkage", "--test", name),
            named_args=name,
            ignore_failures=not bottled_on_current_version,
        )
        if linkage.passed and not build_from_source:
            # Opportunistic linkage is informational only.
            report.record(
                *context.brew("linkage", "--cached", "--test", "--strict", name),
                named_args=name,
                ignore_failures=True,
            )

        test_step: Step | None = None
        if dependent in testable:
            report.record(*context.brew("install", "--only-dependencies", "--include-test", name))
            self.link_test_dependencies(context, report, dependent)
            test_step = report.record(
                *context.brew("test", "--retry", "--verbose", name),
                named_args=name,
                ignore_failures=not bottled_on_current_version,
            )

        report.record(*context.brew("uninstall", "--force", name))

        passed = (
            (install_step is None or install_step.passed)
            and linkage.passed
            and (test_step is None or test_step.passed)
        )
        if not passed or dry_run:
            return

        state.mark_dependent_tested(name)
        context.cache.record_dependent(
            package.full_name,
            name,
            revision=self.repository_revision(context),
            run_id=context.run_id,
            definitions=definitions,
        )

        if (
            build_from_source
            and not bottled_on_current_version
            and not previously_installed
            and all(self.bottled(context, dep, no_older_versions=True) for dep in closure)
        ):
            location = context.definition_location(name, "bottle")
            context.actions.annotate(
                AnnotationLevel.NOTICE,
                "All tests passed.",
                file=location[0] if location else None,
                title=f"{name} should be bottled for {context.platform.tag}!",
            )

    def previously_passed(
        self,
        context: TestContext,
        package: Package,
        dependent: Package,
        closure: tuple[Package, ...],
        definitions: dict[str, str],
    ) -> bool:
        """Whether ``dependent`` already passed against these exact definitions in an earlier run."""

        record = context.cache.dependent_record(package.full_name, dependent.full_name)
        if record is None or dict(record.definitions) != definitions:
            return False
        if not self.unchanged_in_repository(context, record.revision, (package, dependent, *closure)):
            return False
        reason = f"already tested against {package.full_name} in run {record.run_id}"
        if record.revision:
            reason = f"{reason} at {record.revision[:12]}"
        context.renderer.skipped(dependent.full_name, reason)
        logger.info(
            "dependent_skipped_cached",
            package=package.full_name,
            dependent=dependent.full_name,
            run_id=record.run_id,
            revision=record.revision,
        )
        return True

    def link_test_dependencies(self, context: TestContext, report: Report, dependent: Package) -> None:
        """Link installed build/test dependencies the test may need on ``PATH``."""

        installed = self.installed(context)
        for dep in dependent.dependencies:
            if not (dep.build or dep.test) or dep.optional:
                continue
            resolved = context.formulary.find(dep.name)
            if resolved is None or resolved.keg_only:
                continue
            current = installed.get(resolved.full_name)
            if current is None or current.linked:
                continue
            self.unlink_conflicts(context, report, resolved)
            report.record(*context.brew("link", resolved.full_name))


__all__ = ["FormulaeDependentsPhase"]
