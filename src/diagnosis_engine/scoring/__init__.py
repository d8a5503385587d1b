"""Trait scoring: answers → trait vectors, type, reliability, potential."""

from diagnosis_engine.scoring.engine import ScoredDiagnosis, TraitScoringEngine
from diagnosis_engine.scoring.potential import JOB_PROFILES, compute_potential_scores
from diagnosis_engine.scoring.reliability import ReliabilityReport, check_reliability

__all__ = [
    "JOB_PROFILES",
    "ReliabilityReport",
    "ScoredDiagnosis",
    "TraitScoringEngine",
    "check_reliability",
    "compute_potential_scores",
]
