"""
formula-test-bot — build & test phase

File: src/formula_test_bot/phases/formulae.py

Purpose
- For every candidate package: prepare its dependencies, build it from source
  (or reuse a verified cached bottle), audit it, bottle it, reinstall it from
  the bottle, then run linkage checks and its declared test.

Functional requirements
- Candidates are processed in descending order of how many other candidates
  depend on them; ties keep detection order.
- Unchanged dependencies are fetched as bottles in one batch; changed ones are
  built from source in one batch, then post-installed as that batch.
- Expected bottle checksums come from the bottle JSON and are verified before
  and after the bottle step; problems produce failed steps and the offending
  files never become publishable.
- A linkage or test failure moves the candidate's bottle into ``failed/``.
- Each candidate's outcome is recorded and processing continues.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Final

import structlog

from formula_test_bot.artifacts.ledger import ArtifactEntry, bottle_json_path
from formula_test_bot.constants import (
    BOTTLE_OUTPUT_FILENAME,
    LINKAGE_OUTPUT_FILENAME,
)
from formula_test_bot.context import PhaseName
from formula_test_bot.errors import (
    CompilerSelectionError,
    PackageDefinitionError,
    PackageNotFoundError,
)
from formula_test_bot.phases.formulae_common import DEVELOPER_UNSET, FormulaePhaseBase
from formula_test_bot.reporting.outputs import write_chunks, write_skipped_or_failed

if TYPE_CHECKING:
    from formula_test_bot.artifacts.cache import CachedArtifact
    from formula_test_bot.context import TestContext
    from formula_test_bot.execution.report import Report
    from formula_test_bot.packages.model import Package
    from formula_test_bot.phases.state import RunSignals, SchedulingState

logger = structlog.get_logger(__name__)

_BOTTLE_FILENAME_RE: Final[re.Pattern[str]] = re.compile(r"(\./\S+\.bottle(?:\.\d+)?\.tar\.gz)")


class FormulaePhase(FormulaePhaseBase):
    """Builds, bottles and tests each candidate package."""

    name = PhaseName.FORMULAE
    title = "Formulae"

    def __init__(self, signals: RunSignals) -> None:
        self.signals = signals
        self._bottle_output: list[str] = []
        self._linkage_output: list[str] = []

    def run(self, context: TestContext, state: SchedulingState) -> Report:
        report = self.new_report(context, announce=False)
        self._bottle_output = []
        self._linkage_output = []

        for name in self.schedule(context, report, state):
            self.build_and_test(context, report, state, name)
        for name in state.deleted:
            self.deleted_formula(context, report, name)

        workdir = context.workdir
        write_skipped_or_failed(workdir, context.platform.tag, state.skipped_or_failed)
        write_chunks(workdir / BOTTLE_OUTPUT_FILENAME, self._bottle_output)
        write_chunks(workdir / LINKAGE_OUTPUT_FILENAME, self._linkage_output)
        return report

    def schedule(self, context: TestContext, report: Report, state: SchedulingState) -> list[str]:
        """Candidates ordered by descending count of in-batch dependents (stable)."""

        in_batch = set(state.candidates)
        dependents: Counter[str] = Counter()
        for name in state.candidates:
            try:
                package = self.resolve(context, report, name)
                closure = self.dependency_closure(
                    context, report, package, include_build=True, include_test=True
                )
            except (PackageNotFoundError, PackageDefinitionError) as exc:
                logger.warning("formulae_schedule_unresolved", package=name, error=str(exc))
                continue
            for dependency in closure:
                if dependency.full_name in in_batch:
                    dependents[dependency.full_name] += 1

        ordered = sorted(state.candidates, key=lambda candidate: -dependents[candidate])
        logger.info("formulae_scheduled", order=ordered, dependents=dict(dependents))
        return ordered

    def build_and_test(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        name: str,
    ) -> None:
        self.cleanup_during(context, report)
        report.header(self.title, f"formula!({name})")

        try:
            package = self.resolve(context, report, name)
            dependencies = self.dependency_closure(
                context, report, package, include_build=True, include_test=True
            )
        except (PackageNotFoundError, PackageDefinitionError) as exc:
            self.failed(context, state, name, str(exc))
            return

        if package.disabled:
            self.failed(context, state, name, f"{package.full_name} has been disabled!")
            return

        message = self.unsatisfied_requirements_message(context, package)
        if message is not None:
            self.skipped(context, state, name, message)
            return

        if not self.bottled(context, package):
            try:
                missing = self.dependencies_without_bottles(context, report, state, package)
            except (PackageNotFoundError, PackageDefinitionError) as exc:
                self.failed(context, state, name, str(exc))
                return
            if missing:
                self.skipped(
                    context,
                    state,
                    name,
                    f"{package.full_name} has dependencies without bottles: {', '.join(missing)}",
                )
                return

        try:
            self.check_compilers(context, report, package, dependencies)
        except CompilerSelectionError as exc:
            self.skipped(context, state, name, str(exc))
            return

        unchanged = self.setup_dependencies(context, report, state, package, dependencies)
        runtime_or_test = {
            dep.full_name
            for dep in self.dependency_closure(
                context, report, package, include_build=False, include_test=True
            )
        }
        unchanged_build = [dep for dep in unchanged if dep not in runtime_or_test]

        try:
            cached = self.cached_artifact(context, package, dependencies)
            if cached is not None:
                self.install_from_cache(context, report, state, package, cached)
            else:
                self.build_from_source(context, report, state, package, dependencies, unchanged, unchanged_build)
        finally:
            if unchanged:
                report.record(*context.brew("uninstall", "--force", *unchanged))

    def dependencies_without_bottles(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        package: Package,
    ) -> list[str]:
        missing: list[str] = []
        for dep in package.required_dependencies():
            resolved = self.resolve(context, report, dep.name)
            if not self.bottled_or_built(context, state, resolved):
                missing.append(resolved.full_name)
        return missing

    def setup_dependencies(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        package: Package,
        dependencies: tuple[Package, ...],
    ) -> list[str]:
        """Unlink conflicts, link installed deps, fetch/install the rest; returns the unchanged ones."""

        self.unlink_conflicts(context, report, package)

        installed = self.installed(context)
        for dependency in dependencies:
            current = installed.get(dependency.full_name)
            if current is not None and not current.keg_only and not current.linked:
                report.record(*context.brew("link", dependency.full_name))

        missing = [dep.full_name for dep in dependencies if dep.full_name not in installed]
        unchanged = [name for name in missing if name not in state.testing]
        changed = [name for name in missing if name in state.testing]
        logger.info(
            "formulae_dependencies_classified",
            package=package.full_name,
            installed=sorted(set(installed) & {dep.full_name for dep in dependencies}),
            unchanged=unchanged,
            changed=changed,
        )

        if unchanged:
            report.record(*context.brew("fetch", "--retry", *unchanged))
        if changed:
            report.record(*context.brew("fetch", "--retry", "--build-from-source", *changed))
            report.record(*context.brew("install", "--build-from-source", *changed))
            report.record(*context.brew("postinstall", *changed))
        return unchanged

    def cached_artifact(
        self,
        context: TestContext,
        package: Package,
        dependencies: tuple[Package, ...],
    ) -> CachedArtifact | None:
        """A verified cached bottle built from the current definitions, if any."""

        if package.bottle_disabled:
            return None
        cached = context.cache.lookup(package.full_name)
        if cached is None:
            return None
        packages = (package, *dependencies)
        if dict(cached.definitions) != self.definition_checksums(packages):
            logger.info("artifact_cache_stale", package=package.full_name, reason="definitions changed")
            return None
        if not self.unchanged_in_repository(context, cached.revision, packages):
            logger.info("artifact_cache_stale", package=package.full_name, reason="repository changed")
            return None
        return cached

    def install_from_cache(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        package: Package,
        cached: CachedArtifact,
    ) -> None:
        name = package.full_name
        context.renderer.info(f"Using cached bottle {cached.path.name} (run {cached.run_id})")
        logger.info("artifact_cache_reused", package=name, run_id=cached.run_id, revision=cached.revision)

        if self.latest_version_installed(context, package):
            report.record(*context.brew("uninstall", "--force", name))
        report.record(*context.brew("install", "--only-dependencies", str(cached.path)))
        install = report.record(*context.brew("install", str(cached.path)), named_args=name)
        if not install.passed:
            self.failed(context, state, name, f"{name} failed to install from its cached bottle")
            return

        state.handed_off(name)
        state.mark_built(name)
        self.signals.reused_from_cache.append(name)
        self.signals.bottle_produced(name, cached.path)
        if not self.post_build_checks(context, report, package):
            self.signals.bottle_discarded(name)
            self.failed(context, state, name, f"{name} failed its linkage check or test")

    def build_from_source(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        package: Package,
        dependencies: tuple[Package, ...],
        unchanged: list[str],
        unchanged_build: list[str],
    ) -> None:
        name = package.full_name
        options = context.options
        new_formula = name in state.added
        bottle_expected = not new_formula and self.bottled(context, package, no_older_versions=True)

        fetch_args = [name]
        if not package.bottle_disabled:
            fetch_args.append("--build-bottle")
        if options.cleanup:
            fetch_args.append("--force")
        report.record(*context.brew("fetch", "--retry", *fetch_args), named_args=name)

        if self.latest_version_installed(context, package):
            report.record(*context.brew("uninstall", "--force", name))

        install_args = ["--verbose"]
        if not package.bottle_disabled:
            install_args.append("--build-bottle")
        install_args.append(name)
        report.record(
            *context.brew("install", "--only-dependencies", *install_args),
            env=DEVELOPER_UNSET,
            named_args=name,
        )
        install = report.record(
            *context.brew("install", *install_args),
            env=DEVELOPER_UNSET,
            named_args=name,
            ignore_failures=not bottle_expected,
        )

        audit_args = [name, "--online"]
        audit_args.extend(["--new-formula"] if new_formula else ["--git", "--skip-style"])
        report.record(*context.brew("audit", *audit_args), named_args=name)

        if not install.passed:
            if bottle_expected:
                self.failed(context, state, name, f"{name} failed to install")
            else:
                self.skipped(context, state, name, f"{name} failed to install and was not expected to be bottled")
            return
        state.mark_built(name)

        entry = self.bottle(context, report, state, package, new_formula, unchanged, unchanged_build)

        if not self.post_build_checks(context, report, package):
            context.ledger.discard(name)
            self.signals.bottle_discarded(name)
            self.failed(context, state, name, f"{name} failed its linkage check or test")
            return

        if entry is not None and entry in context.ledger.publishable():
            context.cache.store(
                entry,
                revision=self.repository_revision(context),
                run_id=context.run_id,
                definitions=self.definition_checksums((package, *dependencies)),
            )

    def bottle(
        self,
        context: TestContext,
        report: Report,
        state: SchedulingState,
        package: Package,
        new_formula: bool,
        unchanged: list[str],
        unchanged_build: list[str],
    ) -> ArtifactEntry | None:
        """Bottle the installed build, merge it into the definition and reinstall from the file."""

        name = package.full_name
        options = context.options
        if package.bottle_disabled:
            self.signals.bottle_disabled(name)
            return None

        self.verify_artifacts(context, report, f"before bottling {name}")

        keep_old = options.keep_old and not new_formula
        bottle_args = ["--verbose", "--json", name]
        if keep_old:
            bottle_args.append("--keep-old")
        if options.skip_relocation:
            bottle_args.append("--skip-relocation")
        if options.root_url:
            bottle_args.append(f"--root-url={options.root_url}")
        if options.or_later:
            bottle_args.append("--or-later")
        step = report.record(*context.brew("bottle", *bottle_args), named_args=name)
        if not step.passed or not step.output:
            return None
        self._bottle_output.append(step.output)

        match = _BOTTLE_FILENAME_RE.search(step.output)
        if match is None:
            report.record_failure(
                "test-bot", "verify-artifacts", name,
                output=f"no bottle file named in the output of: {step.command_trimmed()}",
            )
            return None
        relative = match.group(1)
        bottle_path = context.workdir / relative
        json_path = bottle_json_path(bottle_path)

        checksum = self.expected_checksum(context, package, json_path)
        if checksum is None:
            report.record_failure(
                "test-bot", "verify-artifacts", name,
                output=f"{json_path.name} does not record a checksum for {context.platform.tag}",
            )
            context.ledger.reconcile()
            return None
        entry = ArtifactEntry(package=name, tag=context.platform.tag, sha256=checksum, path=bottle_path)
        context.ledger.expect(entry)
        if not self.verify_artifacts(context, report, f"after bottling {name}") and context.ledger.entry(name) is None:
            return None

        merge_args = ["--merge", "--write", "--no-commit", f"./{json_path.name}"]
        if keep_old:
            merge_args.append("--keep-old")
        report.record(*context.brew("bottle", *merge_args))
        report.record(*context.brew("uninstall", "--force", name))

        state.handed_off(name)
        self.signals.bottle_produced(name, bottle_path)

        if unchanged_build:
            report.record(*context.brew("uninstall", "--force", *unchanged_build))
            for dep in unchanged_build:
                unchanged.remove(dep)

        report.record(*context.brew("install", "--only-dependencies", relative))
        report.record(*context.brew("install", relative), named_args=name)
        return entry

    def expected_checksum(self, context: TestContext, package: Package, json_path: Path) -> str | None:
        """The checksum the bottle JSON records for the current platform tag."""

        try:
            payload = json.loads(json_path.read_text(encoding="utf-8"))
            tags = payload[package.full_name]["bottle"]["tags"]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("bottle_json_unreadable", package=package.full_name, path=str(json_path), error=str(exc))
            return None
        details = tags.get(context.platform.tag)
        if details is None and len(tags) == 1:
            details = next(iter(tags.values()))
        if not isinstance(details, dict) or not details.get("sha256"):
            return None
        return str(details["sha256"]).lower()

    def verify_artifacts(self, context: TestContext, report: Report, label: str) -> bool:
        """Reconcile the artifact ledger; any problem becomes a failed step."""

        result = context.ledger.reconcile()
        if result.ok:
            return True
        report.record_failure("test-bot", "verify-artifacts", label, output="\n".join(result.problems()))
        return False

    def post_build_checks(self, context: TestContext, report: Report, package: Package) -> bool:
        """``linkage --test``, test dependencies and ``test``; ``False`` when linkage or the test failed."""

        name = package.full_name
        linkage = report.record(*context.brew("linkage", "--test", name), named_args=name)
        if linkage.output:
            self._linkage_output.append(linkage.output)
        failed = linkage.failed

        report.record(*context.brew("install", "--only-dependencies", "--include-test", name))
        if package.test_defined:
            test = report.record(*context.brew("test", "--verbose", name), named_args=name)
            failed = failed or test.failed
        return not failed

    def deleted_formula(self, context: TestContext, report: Report, name: str) -> None:
        report.header(self.title, f"deleted_formula!({name})")
        report.record(
            *context.brew("uses", "--include-build", "--include-optional", "--include-test", name)
        )


__all__ = ["FormulaePhase"]
