"""Read-only git queries against a tap repository, plus argv builders for git steps."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from formula_test_bot.errors import TestBotError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class GitCommandError(TestBotError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class GitResult:
    """Normalized subprocess result for git queries."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


class GitRepository:
    """Git queries for one repository; mutating commands are recorded as steps instead."""

    def __init__(
        self,
        path: Path | str,
        *,
        executable: str = "git",
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.path = Path(path)
        self.executable = executable
        self._env_overrides = dict(env_overrides or {})

    def command(self, *args: str) -> tuple[str, ...]:
        """Argv for a recorded git step against this repository."""

        return ("git", "-C", str(self.path), *args)

    @property
    def exists(self) -> bool:
        return (self.path / ".git").exists()

    def rev_parse(self, ref: str) -> str:
        """Return the commit for ``ref`` or an empty string when it does not resolve."""

        result = self._run_git(["rev-parse", "--verify", "-q", f"{ref}^{{commit}}"], check=False)
        return result.stdout.strip() if result.returncode == 0 else ""

    def head(self) -> str:
        return self.rev_parse("HEAD")

    def merge_base(self, first: str, second: str) -> str:
        result = self._run_git(["merge-base", first, second], check=False)
        return result.stdout.strip() if result.returncode == 0 else ""

    def changed_definition_paths(
        self,
        start: str,
        end: str,
        *,
        diff_filter: str,
        path: str = ".",
    ) -> tuple[str, ...]:
        """Repository-relative paths under ``path`` matching ``diff_filter`` between two revisions."""

        output = self._run_git(
            [
                "diff-tree",
                "-r",
                "--name-only",
                f"--diff-filter={diff_filter}",
                start,
                end,
                "--",
                path,
            ]
        ).stdout
        return tuple(line.strip() for line in output.splitlines() if line.strip())

    def unchanged_since(self, revision: str, paths: Sequence[Path | str]) -> bool:
        """Whether none of ``paths`` differ between ``revision`` and the working tree HEAD."""

        if not revision or not self.rev_parse(revision):
            return False
        if not paths:
            return True
        relative = [self._relative(path) for path in paths]
        result = self._run_git(["diff", "--quiet", revision, "HEAD", "--", *relative], check=False)
        return result.returncode == 0

    def contains(self, path: Path | str) -> bool:
        resolved_root = self.path.resolve()
        resolved = Path(path).resolve()
        return resolved == resolved_root or resolved_root in resolved.parents

    def log_line(self, ref: str = "HEAD") -> str:
        result = self._run_git(["log", "-1", "--format=%h (%s)", ref], check=False)
        return result.stdout.strip()

    def default_origin_ref(self) -> str:
        """``origin/<default branch>`` from ``refs/remotes/origin/HEAD``, falling back to ``origin/main``."""

        result = self._run_git(["symbolic-ref", "--short", "refs/remotes/origin/HEAD"], check=False)
        ref = result.stdout.strip()
        return ref if result.returncode == 0 and ref else "origin/main"

    def differs_from(self, ref: str) -> bool:
        result = self._run_git(["diff", "--quiet", ref], check=False)
        return result.returncode != 0

    def stash_list(self) -> str:
        return self._run_git(["stash", "list"], check=False).stdout.strip()

    def clean_preview(self, extra_args: Sequence[str] = ()) -> str:
        return self._run_git(["clean", "--dry-run", *extra_args], check=False).stdout.strip()

    def gc_auto_output(self) -> str:
        result = self._run_git(["-c", "gc.autoDetach=false", "gc", "--auto"], check=False)
        return result.stdout + result.stderr

    def abort_in_progress(self) -> None:
        """Abort any interrupted ``am``/``rebase``; failures mean nothing was in progress."""

        self._run_git(["am", "--abort"], check=False)
        self._run_git(["rebase", "--abort"], check=False)

    def _relative(self, path: Path | str) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate.resolve().relative_to(self.path.resolve()).as_posix()
        return candidate.as_posix()

    def _run_git(self, args: Sequence[str], *, check: bool = True) -> GitResult:
        command = (self.executable, *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)

        completed = subprocess.run(
            command,
            cwd=self.path,
            env=env,
            text=True,
            capture_output=True,
            check=False,
        )

        result = GitResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result


__all__ = ["GitCommandError", "GitRepository", "GitResult"]
