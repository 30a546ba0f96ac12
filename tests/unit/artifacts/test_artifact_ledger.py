"""
formula-test-bot — test suite for the per-run artifact ledger.

File: tests/unit/artifacts/test_artifact_ledger.py

Purpose
- Validate verification, reconciliation to a clean fixed point, and that only
  verified bottles are publishable.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from formula_test_bot.artifacts import ArtifactEntry, ArtifactLedger, bottle_json_path
from formula_test_bot.utils.hashing import sha256_bytes

TAG = "x86_64_linux"


def _bottle(directory: Path, package: str, content: bytes = b"bottle") -> Path:
    path = directory / f"{package}--1.0.{TAG}.bottle.tar.gz"
    path.write_bytes(content)
    bottle_json_path(path).write_text("{}", encoding="utf-8")
    return path


def _entry(path: Path, package: str, content: bytes = b"bottle") -> ArtifactEntry:
    return ArtifactEntry(package=package, tag=TAG, sha256=sha256_bytes(content), path=path)


def _ledger(tmp_path: Path) -> ArtifactLedger:
    return ArtifactLedger(tmp_path, failed_dir=tmp_path / "failed")


def test_json_path_drops_the_rebuild_suffix() -> None:
    assert bottle_json_path(Path("foo--1.0.arm64_sonoma.bottle.2.tar.gz")).name == (
        "foo--1.0.arm64_sonoma.bottle.json"
    )
    assert bottle_json_path(Path("foo--1.0.all.bottle.tar.gz")).name == "foo--1.0.all.bottle.json"


def test_verify_classifies_problems_without_touching_files(tmp_path: Path) -> None:
    ledger = _ledger(tmp_path)
    good = _bottle(tmp_path, "good")
    ledger.expect(_entry(good, "good"))
    ledger.expect(_entry(tmp_path / f"gone--1.0.{TAG}.bottle.tar.gz", "gone"))
    bad = _bottle(tmp_path, "bad", b"tampered")
    ledger.expect(_entry(bad, "bad"))
    stray = _bottle(tmp_path, "stray")

    result = ledger.verify()

    assert [path.name for path in result.missing] == [f"gone--1.0.{TAG}.bottle.tar.gz"]
    assert result.mismatched == (bad,)
    assert result.unexpected == (stray,)
    assert not result.ok
    assert stray.exists()
    assert result.problems() == [
        f"missing: gone--1.0.{TAG}.bottle.tar.gz",
        f"checksum mismatch: bad--1.0.{TAG}.bottle.tar.gz",
        f"unexpected: stray--1.0.{TAG}.bottle.tar.gz",
    ]


def test_reconcile_quarantines_and_reaches_a_clean_state(tmp_path: Path) -> None:
    ledger = _ledger(tmp_path)
    good = _bottle(tmp_path, "good")
    ledger.expect(_entry(good, "good"))
    bad = _bottle(tmp_path, "bad", b"tampered")
    ledger.expect(_entry(bad, "bad"))
    _bottle(tmp_path, "stray")

    found = ledger.reconcile()

    assert not found.ok
    assert ledger.verify().ok
    assert [entry.package for entry in ledger.entries] == ["good"]
    assert [entry.package for entry in ledger.publishable()] == ["good"]
    assert sorted(path.name for path in (tmp_path / "failed").iterdir()) == [
        f"bad--1.0.{TAG}.bottle.json",
        f"bad--1.0.{TAG}.bottle.tar.gz",
        f"stray--1.0.{TAG}.bottle.json",
        f"stray--1.0.{TAG}.bottle.tar.gz",
    ]


def test_discard_moves_bottle_and_json(tmp_path: Path) -> None:
    ledger = _ledger(tmp_path)
    path = _bottle(tmp_path, "foo")
    ledger.expect(_entry(path, "foo"))

    moved = ledger.discard("foo")

    assert moved == (tmp_path / "failed" / path.name,)
    assert (tmp_path / "failed" / bottle_json_path(path).name).is_file()
    assert ledger.entry("foo") is None
    assert ledger.discard("foo") == ()
    assert not path.exists()


def test_publishable_rechecks_checksums(tmp_path: Path) -> None:
    ledger = _ledger(tmp_path)
    path = _bottle(tmp_path, "foo")
    ledger.expect(_entry(path, "foo"))
    path.write_bytes(b"changed after verification")

    assert ledger.publishable() == ()


_STATES = st.sampled_from(["good", "missing", "mismatched"])


@settings(max_examples=50, deadline=None)
@given(states=st.lists(_STATES, max_size=6), strays=st.integers(min_value=0, max_value=3))
def test_reconcile_is_a_fixed_point(
    tmp_path_factory: pytest.TempPathFactory,
    states: list[str],
    strays: int,
) -> None:
    directory = tmp_path_factory.mktemp("ledger")
    ledger = _ledger(directory)
    for index, state in enumerate(states):
        package = f"pkg{index}"
        if state == "missing":
            ledger.expect(_entry(directory / f"{package}--1.0.{TAG}.bottle.tar.gz", package))
            continue
        content = b"bottle" if state == "good" else b"other"
        ledger.expect(_entry(_bottle(directory, package, content), package))
    for index in range(strays):
        _bottle(directory, f"stray{index}")

    ledger.reconcile()
    second = ledger.reconcile()

    assert second.ok
    assert ledger.verify().ok
    expected = [f"pkg{index}" for index, state in enumerate(states) if state == "good"]
    assert [entry.package for entry in ledger.publishable()] == expected
    assert [entry.package for entry in ledger.entries] == expected
