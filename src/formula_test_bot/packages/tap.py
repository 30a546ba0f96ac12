"""
formula-test-bot — taps and package definition loading

File: src/formula_test_bot/packages/tap.py

Purpose
- Locate taps (git repositories of package definitions) under the taps root,
  load their YAML package definitions, and resolve package names across taps.

Functional requirements
- Definitions live in ``Formula/<name>.yml`` (or the tap root when there is no
  ``Formula`` directory).
- Core tap packages have bare full names; other taps qualify them as
  ``user/repo/name``.
- Resolving a ``user/repo/name`` whose tap is not installed raises
  ``TapNotInstalledError`` so callers can tap it and retry once.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from pathlib import Path, PurePosixPath
from typing import Any, Final

import yaml

from formula_test_bot.errors import (
    PackageDefinitionError,
    PackageNotFoundError,
    TapNotInstalledError,
    UsageError,
)
from formula_test_bot.packages.model import (
    BottleSpec,
    Dependency,
    Package,
    Requirement,
)

DEFINITION_SUFFIXES: Final[frozenset[str]] = frozenset({".yml", ".yaml"})
_TAP_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^([\w.-]+)/(?:homebrew-)?([\w.-]+)$")
_QUALIFIED_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^([\w.-]+)/([\w.-]+)/([\w.+@-]+)$")


def parse_tap_name(name: str) -> tuple[str, str]:
    """Split ``user/repo`` (or ``user/homebrew-repo``) into lowercase parts."""

    match = _TAP_NAME_RE.match(name.strip())
    if match is None:
        raise UsageError(f"Invalid tap name {name!r}")
    return match.group(1).lower(), match.group(2).lower()


def split_qualified_name(name: str) -> tuple[str, str] | None:
    """Return ``(tap, short_name)`` for ``user/repo/name`` or ``None`` for bare names."""

    match = _QUALIFIED_NAME_RE.match(name)
    if match is None:
        return None
    return f"{match.group(1).lower()}/{match.group(2).lower()}", match.group(3)


class Tap:
    """A tap: a git repository of package definitions."""

    def __init__(self, name: str, path: Path, *, core: bool = False) -> None:
        self.user, self.repo = parse_tap_name(name)
        self.name = f"{self.user}/{self.repo}"
        self.path = Path(path)
        self.core = core
        self._cache: dict[str, Package] = {}

    def __repr__(self) -> str:
        return f"Tap({self.name!r}, {str(self.path)!r})"

    @property
    def installed(self) -> bool:
        return self.path.is_dir()

    @property
    def official(self) -> bool:
        return self.user == "homebrew"

    @property
    def formula_dir(self) -> Path:
        candidate = self.path / "Formula"
        return candidate if candidate.is_dir() else self.path

    @property
    def formula_dir_relative(self) -> PurePosixPath:
        return PurePosixPath(self.formula_dir.relative_to(self.path).as_posix())

    def qualified_name(self, short_name: str) -> str:
        return short_name if self.core else f"{self.name}/{short_name}"

    def is_formula_file(self, relative_path: str) -> bool:
        """Whether a repository-relative path is a package definition of this tap."""

        candidate = PurePosixPath(relative_path)
        return (
            candidate.suffix in DEFINITION_SUFFIXES
            and candidate.parent == self.formula_dir_relative
        )

    def formula_files(self) -> tuple[Path, ...]:
        if not self.installed:
            return ()
        return tuple(
            sorted(
                path
                for path in self.formula_dir.iterdir()
                if path.is_file() and path.suffix in DEFINITION_SUFFIXES
            )
        )

    def formula_names(self) -> tuple[str, ...]:
        return tuple(self.qualified_name(path.stem) for path in self.formula_files())

    def definition_path(self, short_name: str) -> Path | None:
        for suffix in sorted(DEFINITION_SUFFIXES):
            candidate = self.formula_dir / f"{short_name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def load(self, short_name: str) -> Package:
        """Load (and cache) the definition for ``short_name``."""

        cached = self._cache.get(short_name)
        if cached is not None:
            return cached
        path = self.definition_path(short_name)
        if path is None:
            raise PackageNotFoundError(self.qualified_name(short_name))
        package = load_definition(path, tap=self)
        self._cache[short_name] = package
        return package

    def packages(self) -> Iterator[Package]:
        for path in self.formula_files():
            yield self.load(path.stem)

    def declaration_line(self, package: Package, key: str) -> int | None:
        """1-based line of the top-level ``key:`` in the package definition, if present."""

        pattern = re.compile(rf"^{re.escape(key)}\s*:")
        try:
            lines = package.path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return None
        for index, line in enumerate(lines, start=1):
            if pattern.match(line):
                return index
        return None

    def clear_cache(self) -> None:
        self._cache.clear()


def load_definition(path: Path, *, tap: Tap) -> Package:
    """Parse one YAML package definition."""

    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise PackageDefinitionError(f"invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise PackageDefinitionError(f"unable to read {path}: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise PackageDefinitionError(f"package definition must be a mapping: {path}")

    short_name = path.stem
    version = payload.get("version")
    if version is None or not str(version).strip():
        raise PackageDefinitionError(f"{path}: missing required field 'version'")

    return Package(
        name=short_name,
        full_name=tap.qualified_name(short_name),
        version=str(version).strip(),
        path=path,
        tap=tap.name,
        revision=_as_int(payload.get("revision", 0), path, "revision"),
        dependencies=tuple(_parse_dependencies(payload.get("dependencies"), path)),
        requirements=tuple(_parse_requirements(payload.get("requirements"), path)),
        conflicts_with=_as_names(payload.get("conflicts_with"), path, "conflicts_with"),
        fails_with=_as_names(payload.get("fails_with"), path, "fails_with"),
        bottle=_parse_bottle(payload.get("bottle"), path),
        test_defined=bool(payload.get("test")),
        keg_only=bool(payload.get("keg_only", False)),
        deprecated=bool(payload.get("deprecated", False)),
        disabled=bool(payload.get("disabled", False)),
        bottle_disabled=bool(payload.get("bottle_disabled", False)),
    )


def _parse_dependencies(raw: object, path: Path) -> Iterator[Dependency]:
    if raw is None:
        return
    if not isinstance(raw, list):
        raise PackageDefinitionError(f"{path}: 'dependencies' must be a list")
    for item in raw:
        if isinstance(item, str):
            yield Dependency(name=item)
        elif isinstance(item, Mapping) and isinstance(item.get("name"), str):
            tags = item.get("tags") or []
            if not isinstance(tags, list):
                raise PackageDefinitionError(f"{path}: dependency tags must be a list")
            yield Dependency(name=item["name"], tags=frozenset(str(tag) for tag in tags))
        else:
            raise PackageDefinitionError(f"{path}: invalid dependency entry {item!r}")


def _parse_requirements(raw: object, path: Path) -> Iterator[Requirement]:
    if raw is None:
        return
    if not isinstance(raw, list):
        raise PackageDefinitionError(f"{path}: 'requirements' must be a list")
    for item in raw:
        if not isinstance(item, Mapping) or not isinstance(item.get("name"), str):
            raise PackageDefinitionError(f"{path}: invalid requirement entry {item!r}")
        yield Requirement(
            name=item["name"],
            operating_systems=frozenset(_as_names(item.get("os"), path, "requirements.os")),
            architectures=frozenset(_as_names(item.get("arch"), path, "requirements.arch")),
            message=item.get("message"),
        )


def _parse_bottle(raw: object, path: Path) -> BottleSpec | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise PackageDefinitionError(f"{path}: 'bottle' must be a mapping")
    checksums: Any = raw.get("sha256") or {}
    if not isinstance(checksums, Mapping):
        raise PackageDefinitionError(f"{path}: 'bottle.sha256' must map tags to checksums")
    root_url = raw.get("root_url")
    return BottleSpec(
        rebuild=_as_int(raw.get("rebuild", 0), path, "bottle.rebuild"),
        checksums=tuple(sorted((str(tag), str(sha)) for tag, sha in checksums.items())),
        root_url=str(root_url) if root_url else None,
    )


def _as_names(raw: object, path: Path, field_name: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise PackageDefinitionError(f"{path}: {field_name!r} must be a list of strings")
    return tuple(raw)


def _as_int(raw: object, path: Path, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise PackageDefinitionError(f"{path}: {field_name!r} must be an integer")
    return raw


class Formulary:
    """Resolves package names across the installed taps under a taps root."""

    def __init__(self, taps_root: Path, *, core_tap: str = "homebrew/core") -> None:
        self.taps_root = Path(taps_root)
        self.core_tap_name = "/".join(parse_tap_name(core_tap))
        self._taps: dict[str, Tap] = {}

    def tap(self, name: str) -> Tap:
        user, repo = parse_tap_name(name)
        key = f"{user}/{repo}"
        existing = self._taps.get(key)
        if existing is None:
            existing = Tap(
                key,
                self.taps_root / user / f"homebrew-{repo}",
                core=key == self.core_tap_name,
            )
            self._taps[key] = existing
        return existing

    @property
    def core_tap(self) -> Tap:
        return self.tap(self.core_tap_name)

    def installed_taps(self) -> tuple[Tap, ...]:
        """Core tap first, then the other installed taps in name order."""

        names: set[str] = set()
        if self.taps_root.is_dir():
            for user_dir in self.taps_root.iterdir():
                if not user_dir.is_dir():
                    continue
                for repo_dir in user_dir.iterdir():
                    if repo_dir.is_dir() and repo_dir.name.startswith("homebrew-"):
                        names.add(f"{user_dir.name.lower()}/{repo_dir.name[9:].lower()}")
        ordered = sorted(names - {self.core_tap_name})
        taps = [self.tap(name) for name in ordered]
        if self.core_tap.installed:
            taps.insert(0, self.core_tap)
        return tuple(taps)

    def resolve(self, name: str) -> Package:
        """Resolve a bare or tap-qualified package name."""

        qualified = split_qualified_name(name)
        if qualified is not None:
            tap_name, short_name = qualified
            tap = self.tap(tap_name)
            if not tap.installed:
                raise TapNotInstalledError(name, tap.name)
            return tap.load(short_name)

        for tap in self.installed_taps():
            if tap.definition_path(name) is not None:
                return tap.load(name)
        raise PackageNotFoundError(name)

    def find(self, name: str) -> Package | None:
        """Like ``resolve`` but returns ``None`` for unknown names."""

        try:
            return self.resolve(name)
        except PackageNotFoundError:
            return None

    def all_packages(self) -> Iterator[Package]:
        for tap in self.installed_taps():
            yield from tap.packages()

    def clear_cache(self) -> None:
        for tap in self._taps.values():
            tap.clear_cache()


__all__ = [
    "DEFINITION_SUFFIXES",
    "Formulary",
    "Tap",
    "load_definition",
    "parse_tap_name",
    "split_qualified_name",
]
