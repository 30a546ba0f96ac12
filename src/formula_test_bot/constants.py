"""Stable constants shared across the test bot phases."""

from __future__ import annotations

from typing import Final

CONFIG_SCHEMA_VERSION: Final[int] = 1
ARTIFACT_CACHE_SCHEMA_VERSION: Final[int] = 1

# Default output files written into the working directory.
STEPS_OUTPUT_FILENAME: Final[str] = "steps_output.txt"
JUNIT_FILENAME: Final[str] = "brew-test-bot.xml"
BOTTLE_OUTPUT_FILENAME: Final[str] = "bottle_output.txt"
LINKAGE_OUTPUT_FILENAME: Final[str] = "linkage_output.txt"
SKIPPED_OR_FAILED_PREFIX: Final[str] = "skipped_or_failed_formulae"

# Binary artifact naming.
BOTTLE_GLOB: Final[str] = "*.bottle*.tar.gz"
BOTTLE_JSON_GLOB: Final[str] = "*.bottle*.json"

# Revision that is tested when no argument is given.
DEFAULT_ARGUMENT: Final[str] = "HEAD"

# Size limits for report payloads.
MAX_STEP_OUTPUT_BYTES: Final[int] = 1024 * 1024 - 200 * 1024
MAX_ANNOTATION_BYTES: Final[int] = 4096

# Free space below which the package cache is purged mid-run.
MIN_FREE_SPACE_GB: Final[int] = 10

# Package tested when nothing else is detected and a default is requested.
DEFAULT_TEST_FORMULA: Final[str] = "homebrew/test-bot/testbottest"

__all__ = [
    "ARTIFACT_CACHE_SCHEMA_VERSION",
    "BOTTLE_GLOB",
    "BOTTLE_JSON_GLOB",
    "BOTTLE_OUTPUT_FILENAME",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_ARGUMENT",
    "DEFAULT_TEST_FORMULA",
    "JUNIT_FILENAME",
    "LINKAGE_OUTPUT_FILENAME",
    "MAX_ANNOTATION_BYTES",
    "MAX_STEP_OUTPUT_BYTES",
    "MIN_FREE_SPACE_GB",
    "SKIPPED_OR_FAILED_PREFIX",
    "STEPS_OUTPUT_FILENAME",
]
