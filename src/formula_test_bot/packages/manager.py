"""
formula-test-bot — package manager command line

File: src/formula_test_bot/packages/manager.py

Purpose
- Build package-manager argv for steps and run the read-only queries the
  phases need (installed packages, cache and prefix locations).

Functional requirements
- Queries go through the same ``CommandExecutor`` as steps but are not
  recorded in any report; a failing query raises ``PackageManagerError``.
- Installed state is parsed from ``info --json=v2 --installed``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from formula_test_bot.errors import TestBotError
from formula_test_bot.execution.executor import CommandSpec

if TYPE_CHECKING:
    from collections.abc import Mapping

    from formula_test_bot.execution.executor import CommandExecutor

class PackageManagerError(TestBotError):
    """Raised when a read-only package manager query fails."""

    def __init__(self, command: tuple[str, ...], exit_code: int | None, output: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.output = output
        message = f"package manager query failed ({exit_code}): {' '.join(command)}"
        if output.strip():
            message = f"{message}: {output.strip().splitlines()[-1]}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class InstalledPackage:
    """Installed state of one package."""

    name: str
    full_name: str
    versions: tuple[str, ...]
    linked_version: str | None
    keg_only: bool

    @property
    def linked(self) -> bool:
        return self.linked_version is not None


class PackageManager:
    """Argv builder and query runner for the package manager executable."""

    def __init__(
        self,
        executable: str,
        *,
        executor: CommandExecutor,
        cwd: Path | None = None,
        cache_dir: Path | None = None,
        prefix: Path | None = None,
    ) -> None:
        self.executable = executable
        self._executor = executor
        self._cwd = cwd
        self._cache_dir = cache_dir
        self._prefix = prefix

    def command(self, *args: str) -> tuple[str, ...]:
        return (self.executable, *args)

    def query(self, *args: str, env: Mapping[str, str | None] | None = None) -> str:
        argv = self.command(*args)
        result = self._executor.run(
            CommandSpec(
                argv=argv,
                cwd=str(self._cwd) if self._cwd is not None else None,
                env=dict(env or {}),
            )
        )
        if not result.success:
            raise PackageManagerError(argv, result.exit_code, result.text + (result.error or ""))
        return result.text

    def installed(self) -> dict[str, InstalledPackage]:
        """Installed packages keyed by full name."""

        raw = self.query("info", "--json=v2", "--installed").strip()
        payload = json.loads(raw) if raw else {}
        packages: dict[str, InstalledPackage] = {}
        for item in payload.get("formulae", []):
            versions = tuple(
                str(entry["version"]) for entry in item.get("installed", []) if "version" in entry
            )
            if not versions:
                continue
            full_name = str(item.get("full_name") or item["name"])
            packages[full_name] = InstalledPackage(
                name=str(item["name"]),
                full_name=full_name,
                versions=versions,
                linked_version=item.get("linked_keg"),
                keg_only=bool(item.get("keg_only", False)),
            )
        return packages

    def cache_dir(self) -> Path:
        if self._cache_dir is None:
            self._cache_dir = Path(self.query("--cache").strip())
        return self._cache_dir

    def prefix(self) -> Path:
        if self._prefix is None:
            self._prefix = Path(self.query("--prefix").strip())
        return self._prefix


__all__ = ["InstalledPackage", "PackageManager", "PackageManagerError"]
