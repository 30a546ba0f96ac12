"""
formula-test-bot — cross-run artifact cache

File: src/formula_test_bot/artifacts/cache.py

Purpose
- Keep verified bottles from earlier runs, per platform tag, together with the
  revision and definition checksums they were built from, so an unchanged
  package can be installed from its cached bottle instead of rebuilt.
- Remember which dependents were already tested against an unchanged
  dependency closure so they can be skipped with provenance.

Functional requirements
- Records are JSON files written atomically next to the cached bottle.
- A record is only returned when its bottle still exists and still matches the
  recorded checksum; anything else is treated as a cache miss.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from formula_test_bot.constants import ARTIFACT_CACHE_SCHEMA_VERSION
from formula_test_bot.utils.fs import atomic_write
from formula_test_bot.utils.hashing import sha256_file

if TYPE_CHECKING:
    from collections.abc import Mapping

    from formula_test_bot.artifacts.ledger import ArtifactEntry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CachedArtifact:
    """A verified bottle kept from an earlier run."""

    package: str
    tag: str
    sha256: str
    path: Path
    revision: str
    run_id: str
    created_at: str
    definitions: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DependentRecord:
    """A dependent that passed against a given dependency."""

    package: str
    dependent: str
    revision: str
    run_id: str
    created_at: str
    definitions: Mapping[str, str] = field(default_factory=dict)


def _slug(name: str) -> str:
    return name.replace("/", "--")


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class ArtifactCache:
    """On-disk cache rooted at ``<root>/<platform tag>``."""

    def __init__(self, root: Path, tag: str) -> None:
        self.root = Path(root)
        self.tag = tag

    @property
    def directory(self) -> Path:
        return self.root / self.tag

    def _record_path(self, package: str) -> Path:
        return self.directory / f"{_slug(package)}.json"

    def _dependent_path(self, package: str, dependent: str) -> Path:
        return self.directory / "dependents" / _slug(package) / f"{_slug(dependent)}.json"

    def lookup(self, package: str) -> CachedArtifact | None:
        """Return the verified cached bottle for ``package`` or ``None``."""

        payload = self._read(self._record_path(package))
        if payload is None:
            return None
        try:
            artifact = CachedArtifact(
                package=str(payload["package"]),
                tag=str(payload["tag"]),
                sha256=str(payload["sha256"]),
                path=self.directory / str(payload["filename"]),
                revision=str(payload["revision"]),
                run_id=str(payload["run_id"]),
                created_at=str(payload["created_at"]),
                definitions=dict(payload.get("definitions") or {}),
            )
        except KeyError as exc:
            logger.warning("artifact_cache_record_invalid", package=package, missing_key=str(exc))
            return None

        if artifact.tag != self.tag or not artifact.path.is_file():
            logger.info("artifact_cache_miss", package=package, reason="bottle missing")
            return None
        if sha256_file(artifact.path) != artifact.sha256:
            logger.warning("artifact_cache_miss", package=package, reason="checksum mismatch")
            return None
        return artifact

    def store(
        self,
        entry: ArtifactEntry,
        *,
        revision: str,
        run_id: str,
        definitions: Mapping[str, str],
    ) -> CachedArtifact:
        """Copy a verified bottle into the cache and write its record."""

        self.directory.mkdir(parents=True, exist_ok=True)
        destination = self.directory / entry.path.name
        if entry.path.resolve() != destination.resolve():
            shutil.copy2(entry.path, destination)
        artifact = CachedArtifact(
            package=entry.package,
            tag=self.tag,
            sha256=entry.sha256,
            path=destination,
            revision=revision,
            run_id=run_id,
            created_at=_now(),
            definitions=dict(definitions),
        )
        self._write(
            self._record_path(entry.package),
            {
                "package": artifact.package,
                "tag": artifact.tag,
                "sha256": artifact.sha256,
                "filename": destination.name,
                "revision": artifact.revision,
                "run_id": artifact.run_id,
                "created_at": artifact.created_at,
                "definitions": dict(artifact.definitions),
            },
        )
        logger.info("artifact_cached", package=entry.package, tag=self.tag, filename=destination.name)
        return artifact

    def record_dependent(
        self,
        package: str,
        dependent: str,
        *,
        revision: str,
        run_id: str,
        definitions: Mapping[str, str],
    ) -> DependentRecord:
        record = DependentRecord(
            package=package,
            dependent=dependent,
            revision=revision,
            run_id=run_id,
            created_at=_now(),
            definitions=dict(definitions),
        )
        self._write(
            self._dependent_path(package, dependent),
            {
                "package": package,
                "dependent": dependent,
                "revision": revision,
                "run_id": run_id,
                "created_at": record.created_at,
                "definitions": dict(definitions),
            },
        )
        return record

    def dependent_record(self, package: str, dependent: str) -> DependentRecord | None:
        payload = self._read(self._dependent_path(package, dependent))
        if payload is None:
            return None
        try:
            return DependentRecord(
                package=str(payload["package"]),
                dependent=str(payload["dependent"]),
                revision=str(payload["revision"]),
                run_id=str(payload["run_id"]),
                created_at=str(payload["created_at"]),
                definitions=dict(payload.get("definitions") or {}),
            )
        except KeyError as exc:
            logger.warning(
                "artifact_cache_record_invalid",
                package=package,
                dependent=dependent,
                missing_key=str(exc),
            )
            return None

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.is_file():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("artifact_cache_record_unreadable", path=str(path), error=str(exc))
            return None
        if not isinstance(payload, dict) or payload.get("schema_version") != ARTIFACT_CACHE_SCHEMA_VERSION:
            logger.info("artifact_cache_record_outdated", path=str(path))
            return None
        return payload

    def _write(self, path: Path, payload: dict[str, Any]) -> None:
        document = {"schema_version": ARTIFACT_CACHE_SCHEMA_VERSION, **payload}
        atomic_write(path, json.dumps(document, sort_keys=True, indent=2) + "\n")


__all__ = ["ArtifactCache", "CachedArtifact", "DependentRecord"]
