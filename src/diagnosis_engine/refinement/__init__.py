"""AI-assisted refinement: completion client, prompts, engine, and diffs."""

from diagnosis_engine.refinement.client import (
    CompletionClient,
    RefinementClient,
    RefinementProposal,
    RefinementRequest,
)
from diagnosis_engine.refinement.diff import FieldChange, VersionDiff, get_version_diff
from diagnosis_engine.refinement.engine import (
    LowConfidenceOutcome,
    RefinementEngine,
    RefinementOutcome,
)

__all__ = [
    "CompletionClient",
    "FieldChange",
    "LowConfidenceOutcome",
    "RefinementClient",
    "RefinementEngine",
    "RefinementOutcome",
    "RefinementProposal",
    "RefinementRequest",
    "VersionDiff",
    "get_version_diff",
]
