"""
formula-test-bot — unit tests for config schema validation

File: tests/unit/config/test_config_schema.py

Purpose
- Validate strict config schema behavior and structured errors.

What this test file should cover
- Built-in defaults validate successfully.
- Unknown keys and invalid types are rejected with actionable paths.
- Schema version mismatches carry migration guidance.
- Deep merge is non-destructive.
"""

from __future__ import annotations

import pytest

from formula_test_bot.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    field_kind,
    iter_field_paths,
    merge_config,
    validate_config,
)


def _paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config)]


def test_defaults_validate_successfully() -> None:
    assert validate_config(default_config()) == ()


def test_unknown_sections_and_fields_are_reported() -> None:
    config = merge_config(default_config(), {"extras": {}, "taps": {"mirror": "x"}})

    assert _paths(config) == ["extras", "taps.mirror"]


def test_invalid_types_carry_field_paths() -> None:
    config = merge_config(
        default_config(),
        {
            "platform": {"skip_recursive_dependents": "yes"},
            "report": {"junit_filters": ["audit", ""]},
            "observability": {"log_level": "chatty"},
            "package_manager": {"executable": "  "},
        },
    )

    issues = {issue.path: issue.message for issue in validate_config(config)}

    assert issues == {
        "package_manager.executable": "must not be empty",
        "platform.skip_recursive_dependents": "expected boolean, got str",
        "report.junit_filters[1]": "expected non-empty string",
        "observability.log_level": "invalid value 'chatty'; expected one of: DEBUG, INFO, WARNING, ERROR",
    }


def test_missing_sections_and_non_mapping_roots() -> None:
    config = default_config()
    del config["dependents"]  # type: ignore[misc]

    assert _paths(config) == ["dependents"]
    assert _paths(["not", "a", "mapping"]) == ["<root>"]


@pytest.mark.parametrize(
    ("version", "fragment"),
    [
        (ConfigSchemaVersion + 1, "upgrade formula-test-bot"),
        (ConfigSchemaVersion - 1, "upgrade test-bot.toml"),
    ],
)
def test_schema_version_mismatch_explains_migration(version: int, fragment: str) -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": version}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    assert {issue.path for issue in excinfo.value.issues} == {"meta.schema_version"}
    assert fragment in str(excinfo.value)


def test_merge_does_not_mutate_inputs() -> None:
    base = default_config()
    overlay = {"taps": {"required": ["homebrew/cask"]}}

    merged = merge_config(base, overlay)
    merged["taps"]["required"].append("someone/extra")

    assert base["taps"]["required"] == []
    assert overlay["taps"]["required"] == ["homebrew/cask"]
    assert merged["taps"]["core"] == "homebrew/core"


def test_field_paths_are_sorted_and_typed() -> None:
    paths = iter_field_paths()

    assert list(paths) == sorted(paths)
    assert field_kind(("cleanup", "min_free_gb")) == "int"
    assert field_kind(("cleanup",)) is None
