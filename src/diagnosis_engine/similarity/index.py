"""Trait index — each user's current bigFive vector in ChromaDB.

The index is a read model: the repository stays the source of truth and
the similarity engine refreshes an entry whenever a user's vectors
change.  Entries carry the diagnosis version they were built from, so a
reader can tell a stale entry from a current one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.traits import BIG_FIVE, BIG_FIVE_DIMENSIONS, TraitVector, validate_vector

if TYPE_CHECKING:
    from collections.abc import Iterable

    from diagnosis_engine.models import DiagnosisResult
    from diagnosis_engine.similarity.store import VectorStore

logger = logging.getLogger(__name__)

TRAIT_COLLECTION = "trait_vectors"


@dataclass
class IndexedVector:
    user_id: str
    diagnosis_id: str
    version: str
    vector: TraitVector


class TraitIndex:
    """Upserts and reads bigFive vectors keyed by user id."""

    def __init__(self, store: VectorStore, *, collection: str = TRAIT_COLLECTION) -> None:
        self._store = store
        self.collection = collection

    def upsert(self, diagnosis: DiagnosisResult) -> None:
        vector = validate_vector(BIG_FIVE, diagnosis.big_five)
        metadata: dict[str, object] = {
            "user_id": diagnosis.user_id,
            "diagnosis_id": diagnosis.id,
            "version": diagnosis.version,
            **vector,
        }
        self._store.upsert_vectors(
            self.collection,
            ids=[diagnosis.user_id],
            embeddings=[[vector[dim] for dim in BIG_FIVE_DIMENSIONS]],
            metadatas=[metadata],
        )

    def get(self, user_ids: Iterable[str]) -> dict[str, IndexedVector]:
        """Indexed vectors for the given users; unindexed users are omitted.

        An entry whose metadata no longer validates is logged and skipped
        so the caller falls back to the repository.
        """
        rows = self._store.get_vectors(self.collection, ids=list(user_ids))
        found: dict[str, IndexedVector] = {}
        for user_id, metadata in rows.items():
            try:
                vector = validate_vector(
                    BIG_FIVE, {dim: metadata.get(dim) for dim in BIG_FIVE_DIMENSIONS}
                )
            except ActionableError as exc:
                logger.warning("Skipping malformed index entry for %s: %s", user_id, exc.error)
                continue
            found[user_id] = IndexedVector(
                user_id=user_id,
                diagnosis_id=str(metadata.get("diagnosis_id", "")),
                version=str(metadata.get("version", "")),
                vector=vector,
            )
        return found

    def remove(self, user_id: str) -> None:
        self._store.delete_vectors(self.collection, ids=[user_id])
