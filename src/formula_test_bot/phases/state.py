"""
formula-test-bot — scheduling state shared between phases

File: src/formula_test_bot/phases/state.py

Purpose
- Carry detection output into the build phase and build output into the
  dependents phase without any hidden globals.

Functional requirements
- ``tested_dependents`` holds dependents that passed; ``dependents_checked``
  holds candidates whose dependents were already processed.
- Every set is append-only except ``testing``, from which a package is removed
  once its freshly built bottle has been handed off (installed from the file).
- ``candidates`` is the frozen detection result; ``testing`` is the shrinking
  working set used to tell changed dependencies from unchanged ones.
- Appends are deduplicated and keep first-seen order.
- ``RunSignals`` gathers the run-wide results of every argument for the CI
  output channel; a bottle moved to the failed area is no longer listed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path


def _append_unique(target: list[str], names: Iterable[str]) -> None:
    for name in names:
        if name not in target:
            target.append(name)


@dataclass(slots=True)
class SchedulingState:
    """Package name sets for one argument."""

    candidates: list[str] = field(default_factory=list)
    testing: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    skipped_or_failed: list[str] = field(default_factory=list)
    built: list[str] = field(default_factory=list)
    tested_dependents: list[str] = field(default_factory=list)
    dependents_checked: list[str] = field(default_factory=list)

    @classmethod
    def seeded(
        cls,
        *,
        testing: Iterable[str] = (),
        added: Iterable[str] = (),
        deleted: Iterable[str] = (),
        skipped_or_failed: Iterable[str] = (),
    ) -> SchedulingState:
        state = cls()
        state.add_candidates(testing)
        _append_unique(state.added, added)
        _append_unique(state.deleted, deleted)
        _append_unique(state.skipped_or_failed, skipped_or_failed)
        return state

    def add_candidates(self, names: Iterable[str]) -> None:
        names = list(names)
        _append_unique(self.candidates, names)
        _append_unique(self.testing, names)

    def mark_skipped_or_failed(self, name: str) -> None:
        _append_unique(self.skipped_or_failed, (name,))

    def mark_built(self, name: str) -> None:
        _append_unique(self.built, (name,))

    def mark_dependent_tested(self, dependent: str) -> None:
        _append_unique(self.tested_dependents, (dependent,))

    def mark_dependents_checked(self, name: str) -> None:
        """All dependents of candidate ``name`` have been processed."""

        _append_unique(self.dependents_checked, (name,))

    def handed_off(self, name: str) -> None:
        """The package's bottle was installed from file; stop treating it as changed."""

        if name in self.testing:
            self.testing.remove(name)

    def bottled_or_built(self) -> list[str]:
        """Candidates that were neither skipped nor failed."""

        return [name for name in self.candidates if name not in self.skipped_or_failed]


@dataclass(slots=True)
class RunSignals:
    """Signals accumulated across phases and arguments, exported once the run ends."""

    bottles: dict[str, Path] = field(default_factory=dict)
    reused_from_cache: list[str] = field(default_factory=list)
    no_bottle: set[str] = field(default_factory=set)
    skipped_or_failed: list[str] = field(default_factory=list)
    tested_dependents: list[str] = field(default_factory=list)

    def bottle_produced(self, name: str, path: Path) -> None:
        self.bottles[name] = path

    def bottle_discarded(self, name: str) -> None:
        """The bottle was moved to the failed area and must not be reported as produced."""

        self.bottles.pop(name, None)
        if name in self.reused_from_cache:
            self.reused_from_cache.remove(name)

    def bottle_disabled(self, name: str) -> None:
        self.no_bottle.add(name)

    def absorb(self, state: SchedulingState) -> None:
        _append_unique(self.skipped_or_failed, state.skipped_or_failed)
        _append_unique(self.tested_dependents, state.tested_dependents)

    def outputs(self) -> dict[str, str]:
        """CI output values; lists are comma-separated."""

        return {
            "skipped_or_failed_formulae": ",".join(self.skipped_or_failed),
            "tested_dependents": ",".join(self.tested_dependents),
            "bottles": ",".join(path.name for path in self.bottles.values()),
            "reused_bottle_formulae": ",".join(self.reused_from_cache),
            "no_bottle_formulae": ",".join(sorted(self.no_bottle)),
        }


__all__ = ["RunSignals", "SchedulingState"]
