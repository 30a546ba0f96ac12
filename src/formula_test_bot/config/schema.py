"""
formula-test-bot — configuration schema and validation.

File: src/formula_test_bot/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from formula_test_bot.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_TEST_FORMULA,
    JUNIT_FILENAME,
    MAX_ANNOTATION_BYTES,
    MAX_STEP_OUTPUT_BYTES,
    MIN_FREE_SPACE_GB,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("artifacts", "cache_dir"),
    ("observability", "log_dir"),
    ("taps", "root"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PackageManagerConfig(TypedDict):
    executable: str
    prefix: str
    cache_dir: str


class GitConfig(TypedDict):
    executable: str


class TapsConfig(TypedDict):
    root: str
    core: str
    required: list[str]
    allowed: list[str]


class PlatformConfig(TypedDict):
    tag: str
    os: str
    arch: str
    compatible_tags: list[str]
    skip_recursive_dependents: bool
    system_compilers: list[str]


class ArtifactsConfig(TypedDict):
    cache_dir: str
    failed_dir: str


class CleanupConfig(TypedDict):
    min_free_gb: int


class ReportConfig(TypedDict):
    junit_filename: str
    junit_filters: list[str]
    max_output_bytes: int
    annotation_max_bytes: int


class FormulaeConfig(TypedDict):
    default_test_formula: str


class DependentsConfig(TypedDict):
    build_from_source_allowlist: list[str]


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    json_logs: bool


class TestBotConfig(TypedDict):
    meta: MetaConfig
    package_manager: PackageManagerConfig
    git: GitConfig
    taps: TapsConfig
    platform: PlatformConfig
    artifacts: ArtifactsConfig
    cleanup: CleanupConfig
    report: ReportConfig
    formulae: FormulaeConfig
    dependents: DependentsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[TestBotConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "package_manager": {"executable": "brew", "prefix": "", "cache_dir": ""},
    "git": {"executable": "git"},
    "taps": {
        "root": "",
        "core": "homebrew/core",
        "required": [],
        "allowed": ["homebrew/core", "homebrew/test-bot"],
    },
    "platform": {
        "tag": "",
        "os": "",
        "arch": "",
        "compatible_tags": [],
        "skip_recursive_dependents": False,
        "system_compilers": [],
    },
    "artifacts": {"cache_dir": ".test-bot/artifacts", "failed_dir": "failed"},
    "cleanup": {"min_free_gb": MIN_FREE_SPACE_GB},
    "report": {
        "junit_filename": JUNIT_FILENAME,
        "junit_filters": ["audit", "test"],
        "max_output_bytes": MAX_STEP_OUTPUT_BYTES,
        "annotation_max_bytes": MAX_ANNOTATION_BYTES,
    },
    "formulae": {"default_test_formula": DEFAULT_TEST_FORMULA},
    "dependents": {"build_from_source_allowlist": []},
    "observability": {"log_level": "INFO", "log_dir": ".test-bot/logs", "json_logs": False},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_FieldKind = str
# Section -> field -> kind. Kinds: "str" (non-empty), "text" (may be empty),
# "bool", "int", "positive_int", "list", "log_level".
_SCHEMA: Final[dict[str, dict[str, _FieldKind]]] = {
    "meta": {"schema_version": "positive_int"},
    "package_manager": {"executable": "str", "prefix": "text", "cache_dir": "text"},
    "git": {"executable": "str"},
    "taps": {"root": "text", "core": "str", "required": "list", "allowed": "list"},
    "platform": {
        "tag": "text",
        "os": "text",
        "arch": "text",
        "compatible_tags": "list",
        "skip_recursive_dependents": "bool",
        "system_compilers": "list",
    },
    "artifacts": {"cache_dir": "str", "failed_dir": "str"},
    "cleanup": {"min_free_gb": "int"},
    "report": {
        "junit_filename": "str",
        "junit_filters": "list",
        "max_output_bytes": "positive_int",
        "annotation_max_bytes": "positive_int",
    },
    "formulae": {"default_test_formula": "str"},
    "dependents": {"build_from_source_allowlist": "list"},
    "observability": {"log_level": "log_level", "log_dir": "str", "json_logs": "bool"},
}


def default_config() -> TestBotConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade test-bot.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade formula-test-bot"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> tuple[ConfigValidationIssue, ...]:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return issues.items()

    for key in sorted(config):
        if key not in _SCHEMA:
            issues.add(str(key), "unknown section")

    for section_name, fields in _SCHEMA.items():
        section = config.get(section_name)
        if section is None:
            issues.add(section_name, "missing required section")
            continue
        if not isinstance(section, Mapping):
            issues.add(section_name, f"expected object, got {type(section).__name__}")
            continue
        for key in sorted(section):
            if key not in fields:
                issues.add(f"{section_name}.{key}", "unknown field")
        for field_name, kind in fields.items():
            path = f"{section_name}.{field_name}"
            if field_name not in section:
                issues.add(path, "missing required field")
                continue
            _VALIDATORS[kind](section[field_name], path, issues)

    meta = config.get("meta")
    if isinstance(meta, Mapping):
        version = meta.get("schema_version")
        if isinstance(version, int) and not isinstance(version, bool):
            if version != ConfigSchemaVersion:
                issues.add("meta.schema_version", migration_guidance(version))

    return issues.items()


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    issues = validate_config(config)
    if issues:
        raise ConfigValidationError(issues)
    assert isinstance(config, Mapping)
    return copy.deepcopy(dict(config))


def _check_str(value: object, path: str, issues: _IssueCollector) -> None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
    elif not value.strip():
        issues.add(path, "must not be empty")


def _check_text(value: object, path: str, issues: _IssueCollector) -> None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
    elif "\x00" in value:
        issues.add(path, "must not contain NUL bytes")


def _check_bool(value: object, path: str, issues: _IssueCollector) -> None:
    if not isinstance(value, bool):
        issues.add(path, f"expected boolean, got {type(value).__name__}")


def _check_int(value: object, path: str, issues: _IssueCollector, *, minimum: int = 0) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
    elif value < minimum:
        issues.add(path, f"must be >= {minimum}")


def _check_positive_int(value: object, path: str, issues: _IssueCollector) -> None:
    _check_int(value, path, issues, minimum=1)


def _check_list(value: object, path: str, issues: _IssueCollector) -> None:
    if not isinstance(value, list):
        issues.add(path, f"expected list of strings, got {type(value).__name__}")
        return
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            issues.add(f"{path}[{index}]", "expected non-empty string")


def _check_log_level(value: object, path: str, issues: _IssueCollector) -> None:
    if not isinstance(value, str) or value.upper() not in LOG_LEVELS:
        expected = ", ".join(LOG_LEVELS)
        issues.add(path, f"invalid value {value!r}; expected one of: {expected}")


_VALIDATORS: Final[dict[_FieldKind, Callable[[object, str, _IssueCollector], None]]] = {
    "str": _check_str,
    "text": _check_text,
    "bool": _check_bool,
    "int": _check_int,
    "positive_int": _check_positive_int,
    "list": _check_list,
    "log_level": _check_log_level,
}


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def field_kind(path: tuple[str, ...]) -> _FieldKind | None:
    """Return the schema kind for a ``(section, field)`` path, if known."""

    if len(path) != 2:
        return None
    return _SCHEMA.get(path[0], {}).get(path[1])


def iter_field_paths() -> tuple[tuple[str, str], ...]:
    """Return every ``(section, field)`` pair in deterministic order."""

    return tuple(
        (section, field_name)
        for section in sorted(_SCHEMA)
        for field_name in sorted(_SCHEMA[section])
    )


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "TestBotConfig",
    "assert_valid_config",
    "default_config",
    "field_kind",
    "iter_field_paths",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
