"""
formula-test-bot — run options and shared run context

File: src/formula_test_bot/context.py

Purpose
- ``RunOptions``: the frozen result of command-line parsing.
- ``TestContext``: everything phases and steps share during one run (options,
  effective config, console, command executor, GitHub Actions channel, package
  model, git repository under test, artifact ledger and cache).

Functional requirements
- Environment preparation for package-manager commands lives in
  ``TestContext.env`` as step overrides; ``os.environ`` is never mutated.
- The platform tag defaults to ``<arch>_<os>`` of the running machine.
- Phase selection: ``--only-*`` flags select phases explicitly, otherwise all
  phases run; ``--skip-*`` flags always win.
"""

from __future__ import annotations

import os
import platform as host_platform
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from formula_test_bot.artifacts import ArtifactCache, ArtifactLedger
from formula_test_bot.execution.executor import LocalSubprocessExecutor
from formula_test_bot.integration.git import GitRepository
from formula_test_bot.observability.github_actions import GitHubActions
from formula_test_bot.packages.graph import PackageGraph
from formula_test_bot.packages.manager import PackageManager
from formula_test_bot.packages.model import Platform
from formula_test_bot.packages.tap import Formulary, Tap
from formula_test_bot.ui.render import ConsoleRenderer

if TYPE_CHECKING:
    from formula_test_bot.execution.executor import CommandExecutor

DEFAULT_GIT_NAME: Final[str] = "BrewTestBot"
DEFAULT_GIT_EMAIL: Final[str] = "homebrew-test-bot@lists.sfconservancy.org"
TEST_BOT_TAP: Final[str] = "homebrew/test-bot"

_OS_ALIASES: Final[dict[str, str]] = {"darwin": "macos"}
_ARCH_ALIASES: Final[dict[str, str]] = {"aarch64": "arm64", "amd64": "x86_64"}


class PhaseName(StrEnum):
    """Phases in execution order."""

    CLEANUP_BEFORE = "cleanup_before"
    SETUP = "setup"
    TAP_SYNTAX = "tap_syntax"
    FORMULAE_DETECT = "formulae_detect"
    FORMULAE = "formulae"
    FORMULAE_DEPENDENTS = "formulae_dependents"
    CLEANUP_AFTER = "cleanup_after"


PHASE_ORDER: Final[tuple[PhaseName, ...]] = tuple(PhaseName)


@dataclass(frozen=True, slots=True)
class RunOptions:
    """Parsed command-line options for one invocation."""

    arguments: tuple[str, ...] = ()
    dry_run: bool = False
    fail_fast: bool = False
    verbose: bool = False
    cleanup: bool = False
    clean_cache: bool = False
    skip_setup: bool = False
    skip_dependents: bool = False
    skip_recursive_dependents: bool = False
    skip_cleanup_before: bool = False
    skip_cleanup_after: bool = False
    build_dependents_from_source: bool = False
    keep_old: bool = False
    skip_relocation: bool = False
    or_later: bool = False
    root_url: str | None = None
    local: bool = False
    stable: bool = False
    junit: bool = False
    test_default_formula: bool = False
    tap: str | None = None
    git_name: str | None = None
    git_email: str | None = None
    only: frozenset[PhaseName] = frozenset()
    testing_formulae: tuple[str, ...] = ()
    added_formulae: tuple[str, ...] = ()
    deleted_formulae: tuple[str, ...] = ()
    skipped_or_failed_formulae: tuple[str, ...] = ()
    no_color: bool = False
    config_path: str | None = None

    def selects(self, phase: PhaseName) -> bool:
        """Whether ``phase`` should run at all for this invocation."""

        skipped = {
            PhaseName.SETUP: self.skip_setup,
            PhaseName.FORMULAE_DEPENDENTS: self.skip_dependents,
            PhaseName.CLEANUP_BEFORE: self.skip_cleanup_before,
            PhaseName.CLEANUP_AFTER: self.skip_cleanup_after,
        }
        if skipped.get(phase, False):
            return False
        return not self.only or phase in self.only


def resolve_platform(config: Mapping[str, Any]) -> Platform:
    """Current platform, with config values taking precedence over host detection."""

    section = config["platform"]
    os_name = section["os"] or _OS_ALIASES.get(
        host_platform.system().lower(), host_platform.system().lower()
    )
    machine = host_platform.machine().lower()
    arch = section["arch"] or _ARCH_ALIASES.get(machine, machine)
    return Platform(
        tag=section["tag"] or f"{arch}_{os_name}",
        os=os_name,
        arch=arch,
        compatible_tags=tuple(section["compatible_tags"]),
    )


def step_environment(
    options: RunOptions,
    config: Mapping[str, Any],
    environ: Mapping[str, str],
    *,
    workdir: Path | None = None,
) -> dict[str, str | None]:
    """Environment overrides applied to every step."""

    env: dict[str, str | None] = {
        "HOMEBREW_DEVELOPER": "1",
        "HOMEBREW_NO_AUTO_UPDATE": "1",
        "HOMEBREW_NO_EMOJI": "1",
        "HOMEBREW_FAIL_LOG_LINES": "150",
        "HOMEBREW_GIT_NAME": options.git_name or DEFAULT_GIT_NAME,
        "HOMEBREW_GIT_EMAIL": options.git_email or DEFAULT_GIT_EMAIL,
    }
    prefix = config["package_manager"]["prefix"]
    if prefix:
        path = environ.get("PATH", "")
        env["PATH"] = f"{prefix}/bin:{prefix}/sbin:{path}" if path else f"{prefix}/bin:{prefix}/sbin"
    if options.local and workdir is not None:
        home = str(workdir / "home")
        env["HOME"] = home
        env["HOMEBREW_HOME"] = home
        env["HOMEBREW_LOGS"] = str(workdir / "logs")
    return env


def new_run_id() -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class TestContext:
    """Shared state for one run."""

    __test__ = False

    options: RunOptions
    config: Mapping[str, Any]
    renderer: ConsoleRenderer
    executor: CommandExecutor
    actions: GitHubActions
    workdir: Path
    platform: Platform
    formulary: Formulary
    package_manager: PackageManager
    ledger: ArtifactLedger
    cache: ArtifactCache
    run_id: str
    environ: Mapping[str, str] = field(default_factory=dict)
    env: dict[str, str | None] = field(default_factory=dict)
    tap: Tap | None = None

    @property
    def graph(self) -> PackageGraph:
        return PackageGraph(self.formulary)

    @property
    def test_tap(self) -> Tap:
        """The tap under test, or the core tap when none was given."""

        return self.tap if self.tap is not None else self.formulary.core_tap

    @property
    def repository(self) -> Path:
        return self.test_tap.path

    @property
    def git(self) -> GitRepository:
        return GitRepository(self.repository, executable=self.config["git"]["executable"])

    @property
    def display_prefixes(self) -> tuple[str, ...]:
        prefixes = [str(self.formulary.taps_root)]
        prefix = self.config["package_manager"]["prefix"]
        if prefix:
            prefixes.append(prefix)
        return tuple(prefixes)

    @property
    def noise_tokens(self) -> tuple[str, ...]:
        tokens = [self.package_manager.executable, str(self.repository), str(self.workdir)]
        prefix = self.config["package_manager"]["prefix"]
        if prefix:
            tokens.append(prefix)
        return tuple(tokens)

    @property
    def on_github_actions(self) -> bool:
        return self.actions.enabled

    def brew(self, *args: str) -> tuple[str, ...]:
        """Argv for a package-manager step."""

        return self.package_manager.command(*args)

    def definition_location(self, name: str, verb: str) -> tuple[str, int] | None:
        """Definition file (relative to the repository when inside it) and line for ``verb``."""

        package = self.formulary.find(name)
        if package is None:
            return None
        tap = self.formulary.tap(package.tap)
        line = tap.declaration_line(package, verb) or 1
        path = package.path
        try:
            relative = path.resolve().relative_to(self.repository.resolve()).as_posix()
        except ValueError:
            relative = str(path)
        return relative, line


def build_context(
    options: RunOptions,
    config: Mapping[str, Any],
    *,
    environ: Mapping[str, str] | None = None,
    executor: CommandExecutor | None = None,
    renderer: ConsoleRenderer | None = None,
    actions: GitHubActions | None = None,
    workdir: Path | None = None,
    run_id: str | None = None,
) -> TestContext:
    """Assemble a ``TestContext`` from options and effective config."""

    env_snapshot = dict(os.environ if environ is None else environ)
    work = Path.cwd() if workdir is None else Path(workdir)
    command_executor = executor if executor is not None else LocalSubprocessExecutor()
    platform = resolve_platform(config)

    pm_section = config["package_manager"]
    package_manager = PackageManager(
        pm_section["executable"],
        executor=command_executor,
        cwd=work,
        cache_dir=Path(pm_section["cache_dir"]) if pm_section["cache_dir"] else None,
        prefix=Path(pm_section["prefix"]) if pm_section["prefix"] else None,
    )

    taps_root = config["taps"]["root"]
    if not taps_root:
        prefix = pm_section["prefix"] or "/usr/local/Homebrew"
        taps_root = str(Path(prefix) / "Library" / "Taps")
    formulary = Formulary(Path(taps_root), core_tap=config["taps"]["core"])

    artifacts = config["artifacts"]
    cache_root = Path(artifacts["cache_dir"])
    if not cache_root.is_absolute():
        cache_root = work / cache_root
    failed_dir = Path(artifacts["failed_dir"])
    if not failed_dir.is_absolute():
        failed_dir = work / failed_dir

    context = TestContext(
        options=options,
        config=config,
        renderer=renderer or ConsoleRenderer(no_color=options.no_color, verbose=options.verbose),
        executor=command_executor,
        actions=actions or GitHubActions(env_snapshot),
        workdir=work,
        platform=platform,
        formulary=formulary,
        package_manager=package_manager,
        ledger=ArtifactLedger(work, failed_dir=failed_dir),
        cache=ArtifactCache(cache_root, platform.tag),
        run_id=run_id or new_run_id(),
        environ=env_snapshot,
        env=step_environment(options, config, env_snapshot, workdir=work),
    )
    context.tap = resolve_test_tap(context)
    return context


def resolve_test_tap(context: TestContext) -> Tap | None:
    """``--tap``, else the ``GITHUB_REPOSITORY`` tap when it names one."""

    if context.options.tap:
        return context.formulary.tap(context.options.tap)
    repository = context.environ.get("GITHUB_REPOSITORY", "").strip()
    if not repository:
        return None
    slug = repository.removeprefix("https://github.com/").rstrip("/").removesuffix(".git")
    user, _, repo = slug.partition("/")
    if not repo.startswith("homebrew-"):
        return None
    return context.formulary.tap(f"{user}/{repo}")


__all__ = [
    "PHASE_ORDER",
    "PhaseName",
    "RunOptions",
    "TEST_BOT_TAP",
    "TestContext",
    "build_context",
    "new_run_id",
    "resolve_platform",
    "resolve_test_tap",
    "step_environment",
]
