"""
formula-test-bot — per-run binary artifact ledger

File: src/formula_test_bot/artifacts/ledger.py

Purpose
- Track which bottle files this run is expected to produce, with their
  checksums, and reconcile that expectation against the working directory.

Functional requirements
- ``verify`` reports three disjoint problem sets: expected-but-missing,
  checksum mismatches, and bottle files nobody expected.
- ``reconcile`` discards every problem (bad files move to the failed
  directory, missing expectations are dropped), so a second ``verify``
  always comes back clean.
- Only verified entries are ever publishable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import structlog

from formula_test_bot.constants import BOTTLE_GLOB
from formula_test_bot.utils.fs import move_into
from formula_test_bot.utils.hashing import sha256_file

logger = structlog.get_logger(__name__)

_TARBALL_SUFFIX: Final[re.Pattern[str]] = re.compile(r"\.(\d+\.)?tar\.gz$")


def bottle_json_path(path: Path) -> Path:
    """``foo--1.0.x86_64_linux.bottle.1.tar.gz`` -> ``foo--1.0.x86_64_linux.bottle.json``."""

    return path.with_name(_TARBALL_SUFFIX.sub(".json", path.name))


@dataclass(frozen=True, slots=True)
class ArtifactEntry:
    """One expected bottle file."""

    package: str
    tag: str
    sha256: str
    path: Path

    @property
    def json_path(self) -> Path:
        return bottle_json_path(self.path)


@dataclass(frozen=True, slots=True)
class VerificationResult:
    missing: tuple[Path, ...] = ()
    mismatched: tuple[Path, ...] = ()
    unexpected: tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return not (self.missing or self.mismatched or self.unexpected)

    def problems(self) -> list[str]:
        lines = [f"missing: {path.name}" for path in self.missing]
        lines.extend(f"checksum mismatch: {path.name}" for path in self.mismatched)
        lines.extend(f"unexpected: {path.name}" for path in self.unexpected)
        return lines


class ArtifactLedger:
    """Expected bottle files for this run, keyed by package."""

    def __init__(self, directory: Path, *, failed_dir: Path, pattern: str = BOTTLE_GLOB) -> None:
        self.directory = Path(directory)
        self.failed_dir = Path(failed_dir)
        self.pattern = pattern
        self._entries: dict[str, ArtifactEntry] = {}

    @property
    def entries(self) -> tuple[ArtifactEntry, ...]:
        return tuple(self._entries.values())

    def entry(self, package: str) -> ArtifactEntry | None:
        return self._entries.get(package)

    def expect(self, entry: ArtifactEntry) -> None:
        self._entries[entry.package] = entry

    def verify(self) -> VerificationResult:
        """Compare expectations with the files on disk without changing anything."""

        missing: list[Path] = []
        mismatched: list[Path] = []
        expected_paths: set[Path] = set()
        for entry in self._entries.values():
            resolved = entry.path.resolve()
            expected_paths.add(resolved)
            if not entry.path.is_file():
                missing.append(entry.path)
            elif sha256_file(entry.path) != entry.sha256.lower():
                mismatched.append(entry.path)

        unexpected = [
            path
            for path in sorted(self.directory.glob(self.pattern))
            if path.is_file() and path.resolve() not in expected_paths
        ]
        return VerificationResult(
            missing=tuple(missing),
            mismatched=tuple(mismatched),
            unexpected=tuple(unexpected),
        )

    def reconcile(self) -> VerificationResult:
        """Verify, then discard every problem; returns what was found before discarding."""

        result = self.verify()
        if result.ok:
            return result

        bad = {path.resolve() for path in (*result.missing, *result.mismatched)}
        for package, entry in list(self._entries.items()):
            if entry.path.resolve() in bad:
                del self._entries[package]
        for path in (*result.mismatched, *result.unexpected):
            self._quarantine(path)
        logger.warning(
            "artifacts_reconciled",
            missing=[path.name for path in result.missing],
            mismatched=[path.name for path in result.mismatched],
            unexpected=[path.name for path in result.unexpected],
        )
        return result

    def discard(self, package: str) -> tuple[Path, ...]:
        """Drop ``package``'s artifact and move its files to the failed directory."""

        entry = self._entries.pop(package, None)
        if entry is None:
            return ()
        moved = tuple(self._quarantine(path) for path in (entry.path, entry.json_path) if path.exists())
        logger.info("artifact_discarded", package=package, files=[path.name for path in moved])
        return moved

    def publishable(self) -> tuple[ArtifactEntry, ...]:
        """Entries whose files exist and match their recorded checksum."""

        return tuple(
            entry
            for entry in self._entries.values()
            if entry.path.is_file() and sha256_file(entry.path) == entry.sha256.lower()
        )

    def _quarantine(self, path: Path) -> Path:
        destination = move_into(path, self.failed_dir)
        json_path = bottle_json_path(path)
        if json_path != path and json_path.exists():
            move_into(json_path, self.failed_dir)
        return destination


__all__ = [
    "ArtifactEntry",
    "ArtifactLedger",
    "VerificationResult",
    "bottle_json_path",
]
