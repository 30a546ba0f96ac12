"""Shared deterministic fixtures and builders for phase and runner tests."""

from __future__ import annotations

import io
import json
import os
import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

import yaml
from rich.console import Console

from formula_test_bot.config import default_config, merge_config
from formula_test_bot.context import RunOptions, TestContext, build_context
from formula_test_bot.execution.executor import CommandResult, CommandSpec
from formula_test_bot.observability.github_actions import GitHubActions
from formula_test_bot.ui.render import ConsoleRenderer
from formula_test_bot.utils.hashing import sha256_bytes

TAG: Final[str] = "x86_64_linux"
RUN_ID: Final[str] = "20260201T120000Z-0000abcd"

Effect = Callable[[CommandSpec], CommandResult]


class FakeExecutor:
    """Scripted ``CommandExecutor``: the most recently added matching rule wins."""

    def __init__(self) -> None:
        self.calls: list[CommandSpec] = []
        self.installed: dict[str, dict[str, Any]] = {}
        self._rules: list[tuple[tuple[str, ...], Effect]] = []

    def on(
        self,
        *prefix: str,
        exit_code: int = 0,
        output: str = "",
        effect: Effect | None = None,
    ) -> None:
        if effect is None:

            def effect(spec: CommandSpec) -> CommandResult:
                return CommandResult(argv=spec.argv, exit_code=exit_code, output=output.encode("utf-8"))

        self._rules.append((tuple(prefix), effect))

    def mark_installed(
        self,
        name: str,
        version: str,
        *,
        linked: bool = True,
        keg_only: bool = False,
    ) -> None:
        self.installed[name] = {
            "name": name.rsplit("/", 1)[-1],
            "full_name": name,
            "installed": [{"version": version}],
            "linked_keg": version if linked else None,
            "keg_only": keg_only,
        }

    def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        for prefix, effect in reversed(self._rules):
            if spec.argv[: len(prefix)] == prefix:
                return effect(spec)
        if spec.argv[1:] == ("info", "--json=v2", "--installed"):
            payload = {"formulae": list(self.installed.values()), "casks": []}
            return CommandResult(argv=spec.argv, exit_code=0, output=json.dumps(payload).encode("utf-8"))
        return CommandResult(argv=spec.argv, exit_code=0, output=b"")

    def commands(self) -> list[str]:
        """Every argv run so far, space-joined, queries included."""

        return [" ".join(spec.argv) for spec in self.calls]

    def index(self, command: str) -> int:
        return self.commands().index(command)


def write_package(
    taps_root: Path,
    name: str,
    *,
    tap: str = "homebrew/core",
    **fields: Any,
) -> Path:
    """Write ``Formula/<name>.yml`` into ``tap`` under ``taps_root``."""

    user, repo = tap.split("/")
    path = taps_root / user / f"homebrew-{repo}" / "Formula" / f"{name}.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = {"version": "1.0"}
    payload.update(fields)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def bottled_for(tag: str = TAG) -> dict[str, Any]:
    return {"sha256": {tag: "a" * 64}}


def make_context(
    tmp_path: Path,
    *,
    executor: FakeExecutor | None = None,
    environ: Mapping[str, str] | None = None,
    config: Mapping[str, object] | None = None,
    **options: Any,
) -> TestContext:
    """Context over a temporary taps root, prefix, caches and working directory."""

    settings = merge_config(
        default_config(),
        {
            "taps": {"root": str(tmp_path / "Taps")},
            "package_manager": {
                "prefix": str(tmp_path / "prefix"),
                "cache_dir": str(tmp_path / "downloads"),
            },
            "platform": {"tag": TAG, "os": "linux", "arch": "x86_64"},
            "artifacts": {"cache_dir": str(tmp_path / "artifact-cache"), "failed_dir": "failed"},
        },
    )
    if config:
        settings = merge_config(settings, config)
    workdir = tmp_path / "work"
    workdir.mkdir(parents=True, exist_ok=True)
    env = dict(environ or {})
    renderer = ConsoleRenderer(
        console=Console(file=io.StringIO(), no_color=True, width=200, highlight=False),
    )
    return build_context(
        RunOptions(**options),
        settings,
        environ=env,
        executor=executor if executor is not None else FakeExecutor(),
        renderer=renderer,
        actions=GitHubActions(env, stream=io.StringIO()),
        workdir=workdir,
        run_id=RUN_ID,
    )


def console_text(context: TestContext) -> str:
    stream = context.renderer.console.file
    assert isinstance(stream, io.StringIO)
    return stream.getvalue()


def actions_text(context: TestContext) -> str:
    stream = context.actions._stream
    assert isinstance(stream, io.StringIO)
    return stream.getvalue()


def bottle_writer(
    workdir: Path,
    name: str,
    version: str = "1.0",
    *,
    tag: str = TAG,
    content: bytes = b"bottle-bytes",
    recorded_sha256: str | None = None,
) -> Effect:
    """Effect for ``brew bottle --verbose --json``: writes the bottle and its JSON."""

    def effect(spec: CommandSpec) -> CommandResult:
        filename = f"{name}--{version}.{tag}.bottle.tar.gz"
        (workdir / filename).write_bytes(content)
        document = {name: {"bottle": {"tags": {tag: {"sha256": recorded_sha256 or sha256_bytes(content)}}}}}
        (workdir / f"{name}--{version}.{tag}.bottle.json").write_text(json.dumps(document), encoding="utf-8")
        return CommandResult(argv=spec.argv, exit_code=0, output=f"./{filename}\n".encode())

    return effect


def run_git(cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and completed.returncode != 0:
        msg = f"git command failed: git {' '.join(args)}\nstdout:\n{completed.stdout}\nstderr:\n{completed.stderr}"
        raise AssertionError(msg)
    return completed


def init_repository(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    run_git(path, "init", "-q")
    run_git(path, "config", "user.name", "Test Bot")
    run_git(path, "config", "user.email", "test-bot@example.invalid")
    run_git(path, "config", "commit.gpgsign", "false")


def commit_all(worktree: Path, message: str) -> str:
    run_git(worktree, "add", "--all")
    run_git(worktree, "commit", "-q", "-m", message)
    return run_git(worktree, "rev-parse", "HEAD").stdout.strip()
