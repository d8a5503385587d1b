"""Peer similarity: metrics, trait index, and the similarity engine."""

from diagnosis_engine.similarity.engine import MatrixReport, SimilarityEngine, SimilarityResult
from diagnosis_engine.similarity.index import TraitIndex
from diagnosis_engine.similarity.metrics import (
    combined_similarity,
    cosine_similarity,
    differing_factors,
    euclidean_similarity,
)
from diagnosis_engine.similarity.store import VectorStore

__all__ = [
    "MatrixReport",
    "SimilarityEngine",
    "SimilarityResult",
    "TraitIndex",
    "VectorStore",
    "combined_similarity",
    "cosine_similarity",
    "differing_factors",
    "euclidean_similarity",
]
