"""
formula-test-bot — dependency graph queries

File: src/formula_test_bot/packages/graph.py

Purpose
- Answer dependency questions over the loaded package definitions: direct and
  recursive dependencies, and reverse dependencies ("uses").

Functional requirements
- Build dependencies are followed recursively when requested; test
  dependencies only ever apply to the top-level package.
- Optional dependencies are skipped unless explicitly requested.
- Dependency cycles do not loop.
- Closures are ordered dependencies-first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from formula_test_bot.errors import PackageNotFoundError

if TYPE_CHECKING:
    from formula_test_bot.packages.model import Dependency, Package
    from formula_test_bot.packages.tap import Formulary

logger = structlog.get_logger(__name__)


class PackageGraph:
    """Dependency queries backed by a ``Formulary``."""

    def __init__(self, formulary: Formulary) -> None:
        self.formulary = formulary

    def canonical_name(self, name: str) -> str:
        package = self.formulary.find(name)
        return package.full_name if package is not None else name

    def direct_dependencies(
        self,
        package: Package,
        *,
        include_build: bool = True,
        include_test: bool = False,
        include_optional: bool = False,
    ) -> tuple[Dependency, ...]:
        return tuple(
            dep
            for dep in package.dependencies
            if _wanted(dep, include_build, include_test, include_optional)
        )

    def dependency_closure(
        self,
        package: Package,
        *,
        include_build: bool = True,
        include_test: bool = False,
        include_optional: bool = False,
    ) -> tuple[Package, ...]:
        """Recursive dependencies of ``package`` (excluding itself), dependencies first."""

        ordered: list[Package] = []
        visited: set[str] = {package.full_name}

        def visit(current: Package, *, top_level: bool) -> None:
            for dep in current.dependencies:
                if not _wanted(dep, include_build, include_test and top_level, include_optional):
                    continue
                resolved = self.formulary.resolve(dep.name)
                if resolved.full_name in visited:
                    continue
                visited.add(resolved.full_name)
                visit(resolved, top_level=False)
                ordered.append(resolved)

        visit(package, top_level=True)
        return tuple(ordered)

    def uses(
        self,
        name: str,
        *,
        recursive: bool = False,
        include_build: bool = True,
        include_test: bool = True,
        include_optional: bool = False,
    ) -> tuple[str, ...]:
        """Full names of the installed-tap packages that depend on ``name``."""

        target = self.canonical_name(name)
        dependents: list[str] = []
        for candidate in self.formulary.all_packages():
            if candidate.full_name == target:
                continue
            if recursive:
                try:
                    closure = self.dependency_closure(
                        candidate,
                        include_build=include_build,
                        include_test=include_test,
                        include_optional=include_optional,
                    )
                except PackageNotFoundError as exc:
                    logger.warning(
                        "dependents_candidate_unresolvable",
                        package=candidate.full_name,
                        error=str(exc),
                    )
                    continue
                if any(dep.full_name == target for dep in closure):
                    dependents.append(candidate.full_name)
                continue
            direct = self.direct_dependencies(
                candidate,
                include_build=include_build,
                include_test=include_test,
                include_optional=include_optional,
            )
            if any(self.canonical_name(dep.name) == target for dep in direct):
                dependents.append(candidate.full_name)
        return tuple(sorted(dependents))


def _wanted(dep: Dependency, include_build: bool, include_test: bool, include_optional: bool) -> bool:
    if dep.optional and not include_optional:
        return False
    if dep.build and not include_build:
        return False
    return not (dep.test and not dep.build and not include_test)


__all__ = ["PackageGraph"]
