"""
formula-test-bot — unit tests for config loader

File: tests/unit/config/test_config_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from formula_test_bot.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "test-bot.toml"
    default_path = tmp_path / "default.toml"
    _write_config(default_path, "")
    _write_config(
        config_path,
        """
[cleanup]
min_free_gb = 4
""".strip(),
    )

    default_loaded = load_config(default_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"TEST_BOT_CLEANUP_MIN_FREE_GB": "6"})
    cli_loaded = load_config(
        config_path,
        environ={"TEST_BOT_CLEANUP_MIN_FREE_GB": "6"},
        cli_overrides={"cleanup.min_free_gb": 7},
    )

    assert default_loaded["cleanup"]["min_free_gb"] == 10
    assert file_loaded["cleanup"]["min_free_gb"] == 4
    assert env_loaded["cleanup"]["min_free_gb"] == 6
    assert cli_loaded["cleanup"]["min_free_gb"] == 7


def test_env_mapping_coerces_lists_and_booleans(tmp_path: Path) -> None:
    config_path = tmp_path / "test-bot.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "TEST_BOT_TAPS_REQUIRED": "homebrew/cask, someone/extra ,",
            "TEST_BOT_PLATFORM_SKIP_RECURSIVE_DEPENDENTS": "yes",
            "TEST_BOT_OBSERVABILITY_JSON_LOGS": "off",
            "TEST_BOT_PLATFORM_TAG": "arm64_sonoma",
        },
    )

    assert loaded["taps"]["required"] == ["homebrew/cask", "someone/extra"]
    assert loaded["platform"]["skip_recursive_dependents"] is True
    assert loaded["observability"]["json_logs"] is False
    assert loaded["platform"]["tag"] == "arm64_sonoma"


@pytest.mark.parametrize(
    ("env_name", "raw"),
    [
        ("TEST_BOT_CLEANUP_MIN_FREE_GB", "lots"),
        ("TEST_BOT_OBSERVABILITY_JSON_LOGS", "maybe"),
    ],
)
def test_invalid_env_values_raise_load_errors(tmp_path: Path, env_name: str, raw: str) -> None:
    config_path = tmp_path / "test-bot.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match=env_name):
        load_config(config_path, environ={env_name: raw})


def test_missing_explicit_file_and_invalid_toml_are_load_errors(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    _write_config(broken, "[cleanup\nmin_free_gb = ")

    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})


def test_missing_default_file_falls_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(environ={})

    assert loaded["taps"]["core"] == "homebrew/core"
    assert loaded["report"]["junit_filters"] == ["audit", "test"]


def test_invalid_file_values_fail_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "test-bot.toml"
    _write_config(
        config_path,
        """
[report]
max_output_bytes = 0

[mystery]
enabled = true
""".strip(),
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    paths = [issue.path for issue in excinfo.value.issues]
    assert paths == ["mystery", "report.max_output_bytes"]


def test_paths_are_normalized_relative_to_the_config_file(tmp_path: Path) -> None:
    config_dir = tmp_path / "ci"
    config_path = config_dir / "test-bot.toml"
    _write_config(
        config_path,
        """
[taps]
root = "../Taps"

[artifacts]
cache_dir = "cache"
failed_dir = "failed"
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    assert loaded["taps"]["root"] == (tmp_path / "Taps").as_posix()
    assert loaded["artifacts"]["cache_dir"] == (config_dir / "cache").as_posix()
    assert loaded["artifacts"]["failed_dir"] == "failed"
    assert loaded["package_manager"]["prefix"] == ""


def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "test-bot.toml"
    _write_config(config_path, "")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert list(json.loads(first)) == sorted(json.loads(first))
