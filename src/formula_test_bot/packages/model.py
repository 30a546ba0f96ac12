"""
formula-test-bot — package definition model

File: src/formula_test_bot/packages/model.py

Purpose
- Typed, immutable view of one package definition: version, dependencies and
  their tags, platform requirements, conflicts, published binary artifacts
  ("bottles") and whether a test is declared.

Functional requirements
- A bottle tagged ``all`` is usable on any platform.
- Requirements are evaluated against a ``Platform`` (operating system + CPU arch).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

ALL_PLATFORMS_TAG: Final[str] = "all"


class DependencyTag(StrEnum):
    """Dependency tags that change when a dependency is needed."""

    BUILD = "build"
    TEST = "test"
    OPTIONAL = "optional"
    RECOMMENDED = "recommended"


@dataclass(frozen=True, slots=True)
class Platform:
    """The platform the bot is running on, as used by bottle tags and requirements."""

    tag: str
    os: str
    arch: str
    compatible_tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Dependency:
    name: str
    tags: frozenset[str] = frozenset()

    @property
    def build(self) -> bool:
        return DependencyTag.BUILD in self.tags

    @property
    def test(self) -> bool:
        return DependencyTag.TEST in self.tags

    @property
    def optional(self) -> bool:
        return DependencyTag.OPTIONAL in self.tags

    @property
    def runtime(self) -> bool:
        return not (self.build or self.test or self.optional)


@dataclass(frozen=True, slots=True)
class Requirement:
    """A platform constraint such as "macOS only" or "arm64 only"."""

    name: str
    operating_systems: frozenset[str] = frozenset()
    architectures: frozenset[str] = frozenset()
    message: str | None = None

    def satisfied_by(self, platform: Platform) -> bool:
        if self.operating_systems and platform.os not in self.operating_systems:
            return False
        return not (self.architectures and platform.arch not in self.architectures)

    def unsatisfied_message(self) -> str:
        if self.message:
            return self.message
        wanted = sorted(self.operating_systems | self.architectures)
        return f"{self.name} is required ({', '.join(wanted)})"


@dataclass(frozen=True, slots=True)
class BottleSpec:
    """Published binary artifacts, keyed by platform tag."""

    rebuild: int = 0
    checksums: tuple[tuple[str, str], ...] = ()
    root_url: str | None = None

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(sorted(tag for tag, _ in self.checksums))

    def has_tag(self, tag: str) -> bool:
        return any(candidate == tag for candidate, _ in self.checksums)

    def checksum(self, tag: str) -> str | None:
        return dict(self.checksums).get(tag)


@dataclass(frozen=True, slots=True)
class Package:
    """One package definition loaded from a tap."""

    name: str
    full_name: str
    version: str
    path: Path
    tap: str
    revision: int = 0
    dependencies: tuple[Dependency, ...] = ()
    requirements: tuple[Requirement, ...] = ()
    conflicts_with: tuple[str, ...] = ()
    fails_with: tuple[str, ...] = ()
    bottle: BottleSpec | None = None
    test_defined: bool = False
    keg_only: bool = False
    deprecated: bool = False
    disabled: bool = False
    bottle_disabled: bool = False

    @property
    def pkg_version(self) -> str:
        return self.version if self.revision == 0 else f"{self.version}_{self.revision}"

    def required_dependencies(self, *, include_test: bool = False) -> tuple[Dependency, ...]:
        """Non-optional dependencies; test-only ones only when ``include_test`` is set."""

        return tuple(
            dep
            for dep in self.dependencies
            if not dep.optional and (include_test or not dep.test or dep.build)
        )

    def unsatisfied_requirements(self, platform: Platform) -> tuple[Requirement, ...]:
        return tuple(req for req in self.requirements if not req.satisfied_by(platform))


__all__ = [
    "ALL_PLATFORMS_TAG",
    "BottleSpec",
    "Dependency",
    "DependencyTag",
    "Package",
    "Platform",
    "Requirement",
]
