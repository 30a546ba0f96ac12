"""Command-line interface for formula-test-bot."""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Final

import structlog

from formula_test_bot.config import load_config
from formula_test_bot.constants import DEFAULT_ARGUMENT
from formula_test_bot.context import PHASE_ORDER, PhaseName, RunOptions, build_context, new_run_id
from formula_test_bot.errors import UsageError
from formula_test_bot.execution.executor import LocalSubprocessExecutor
from formula_test_bot.observability.logging import setup_logging
from formula_test_bot.reporting import steps_summary
from formula_test_bot.runner import TestRunner
from formula_test_bot.ui.render import create_renderer

if TYPE_CHECKING:
    from formula_test_bot.execution.executor import CommandExecutor

logger = structlog.get_logger(__name__)

_LIST_OPTIONS: Final[tuple[str, ...]] = (
    "testing_formulae",
    "added_formulae",
    "deleted_formulae",
    "skipped_or_failed_formulae",
)


def _only_flag(phase: PhaseName) -> str:
    return f"--only-{phase.value.replace('_', '-')}"


def _split_names(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(dict.fromkeys(name.strip() for name in raw.split(",") if name.strip()))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for ``test-bot``."""

    parser = argparse.ArgumentParser(
        prog="test-bot",
        description=(
            "Tests the full lifecycle of a package-manager change: detect changed package\n"
            "definitions, build and bottle them, test them and their dependents.\n\n"
            "Common workflows:\n"
            "  test-bot                       Test the changes in HEAD\n"
            "  test-bot --dry-run foo         Print the steps for testing foo\n"
            "  test-bot --only-formulae --testing-formulae=foo,bar\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "arguments",
        nargs="*",
        metavar="argument",
        help=f"Package name or revision to test (default: {DEFAULT_ARGUMENT}).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print the steps without running them.")
    parser.add_argument("--fail-fast", action="store_true", help="Stop at the first failed step.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print every step's output live.")
    parser.add_argument("--cleanup", action="store_true", help="Clean all state from the installation.")
    parser.add_argument(
        "--clean-cache",
        action="store_true",
        help="Remove all cached downloads at the end of the run.",
    )
    parser.add_argument("--skip-setup", action="store_true", help="Skip the installation sanity checks.")
    parser.add_argument("--skip-dependents", action="store_true", help="Skip testing dependents.")
    parser.add_argument(
        "--skip-recursive-dependents",
        action="store_true",
        help="Only test direct dependents.",
    )
    parser.add_argument("--skip-cleanup-before", action="store_true", help="Skip the initial cleanup.")
    parser.add_argument("--skip-cleanup-after", action="store_true", help="Skip the final cleanup.")
    parser.add_argument(
        "--build-dependents-from-source",
        action="store_true",
        help="Build dependents from source instead of installing their bottles.",
    )
    parser.add_argument("--keep-old", action="store_true", help="Keep the existing bottle tags.")
    parser.add_argument("--skip-relocation", action="store_true", help="Do not relocate bottles.")
    parser.add_argument("--or-later", action="store_true", help="Mark bottles as usable on later platforms.")
    parser.add_argument("--root-url", default=None, help="Root URL for bottle downloads.")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Keep HOME and logs inside the working directory.",
    )
    parser.add_argument("--stable", action="store_true", help="Skip style checks and audits of the tap.")
    parser.add_argument("--junit", action="store_true", help="Write a JUnit XML report.")
    parser.add_argument(
        "--test-default-formula",
        action="store_true",
        help="Also test the default test package.",
    )
    parser.add_argument("--tap", default=None, help="Tap to test (default: from GITHUB_REPOSITORY).")
    parser.add_argument("--git-name", default=None, help="Git author name for commits.")
    parser.add_argument("--git-email", default=None, help="Git author email for commits.")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to test-bot TOML config (default: ./test-bot.toml if present).",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    only = parser.add_argument_group("phase selection")
    for phase in PHASE_ORDER:
        only.add_argument(
            _only_flag(phase),
            dest=f"only_{phase.value}",
            action="store_true",
            help=f"Only run the {phase.value} phase.",
        )

    scheduling = parser.add_argument_group("scheduling sets (used when detection is not run)")
    for option in _LIST_OPTIONS:
        scheduling.add_argument(
            f"--{option.replace('_', '-')}",
            dest=option,
            default=None,
            help="Comma-separated package names.",
        )
    return parser


def options_from_namespace(namespace: argparse.Namespace, environ: Mapping[str, str]) -> RunOptions:
    """Validate option combinations and freeze them into ``RunOptions``."""

    only = frozenset(phase for phase in PHASE_ORDER if getattr(namespace, f"only_{phase.value}"))
    arguments = tuple(namespace.arguments)
    testing = _split_names(namespace.testing_formulae)

    named = [argument for argument in arguments if argument != DEFAULT_ARGUMENT]
    if only and named and testing:
        raise UsageError("--testing-formulae cannot be combined with a package argument and --only-* flags")

    return RunOptions(
        arguments=arguments,
        dry_run=namespace.dry_run,
        fail_fast=namespace.fail_fast,
        verbose=namespace.verbose or bool(environ.get("GITHUB_ACTIONS")),
        cleanup=namespace.cleanup,
        clean_cache=namespace.clean_cache,
        skip_setup=namespace.skip_setup,
        skip_dependents=namespace.skip_dependents,
        skip_recursive_dependents=namespace.skip_recursive_dependents,
        skip_cleanup_before=namespace.skip_cleanup_before,
        skip_cleanup_after=namespace.skip_cleanup_after,
        build_dependents_from_source=namespace.build_dependents_from_source,
        keep_old=namespace.keep_old,
        skip_relocation=namespace.skip_relocation,
        or_later=namespace.or_later,
        root_url=namespace.root_url,
        local=namespace.local,
        stable=namespace.stable,
        junit=namespace.junit,
        test_default_formula=namespace.test_default_formula,
        tap=namespace.tap,
        git_name=namespace.git_name,
        git_email=namespace.git_email,
        only=only,
        testing_formulae=testing,
        added_formulae=_split_names(namespace.added_formulae),
        deleted_formulae=_split_names(namespace.deleted_formulae),
        skipped_or_failed_formulae=_split_names(namespace.skipped_or_failed_formulae),
        no_color=namespace.no_color,
        config_path=namespace.config_path,
    )


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    executor: CommandExecutor | None = None,
    workdir: Path | None = None,
) -> int:
    """Parse argv, run the bot and return the process exit code."""

    env_snapshot = dict(os.environ if environ is None else environ)
    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    options = options_from_namespace(namespace, env_snapshot)

    config = load_config(options.config_path, environ=env_snapshot)
    run_id = new_run_id()
    logging_handle = setup_logging(config["observability"], run_id=run_id)
    try:
        renderer = create_renderer(no_color=options.no_color, verbose=options.verbose)
        context = build_context(
            options,
            config,
            environ=env_snapshot,
            executor=executor if executor is not None else LocalSubprocessExecutor(sink=renderer.raw),
            renderer=renderer,
            workdir=workdir,
            run_id=run_id,
        )
        logger.info(
            "test_bot_started",
            run_id=run_id,
            arguments=list(options.arguments),
            dry_run=options.dry_run,
            platform_tag=context.platform.tag,
        )
        outcome = TestRunner(context).run()
        renderer.output(steps_summary(outcome.reports))
        return 0 if outcome.passed else 1
    finally:
        logging_handle.shutdown()


__all__ = ["build_parser", "options_from_namespace", "run_cli"]
