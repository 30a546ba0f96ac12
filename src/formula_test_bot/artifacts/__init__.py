"""Bottle bookkeeping: the per-run ledger and the cross-run cache."""

from formula_test_bot.artifacts.cache import ArtifactCache, CachedArtifact, DependentRecord
from formula_test_bot.artifacts.ledger import (
    ArtifactEntry,
    ArtifactLedger,
    VerificationResult,
    bottle_json_path,
)

__all__ = [
    "ArtifactCache",
    "ArtifactEntry",
    "ArtifactLedger",
    "CachedArtifact",
    "DependentRecord",
    "VerificationResult",
    "bottle_json_path",
]
