"""Vector store and trait index tests — real ChromaDB on tmp_path.

Maps to BDD specs: TestVectorStoreOperations, TestTraitIndex
"""

from __future__ import annotations

import pytest

from conftest import make_diagnosis
from diagnosis_engine.errors import ValidationError
from diagnosis_engine.similarity.index import TRAIT_COLLECTION, TraitIndex
from diagnosis_engine.similarity.store import VectorStore

_COLLECTION = "test_vectors"


class TestVectorStoreOperations:
    """REQUIREMENT: The vector store wraps ChromaDB with validated, idempotent operations.

    WHO: The trait index
    WHAT: Upserts with mismatched list lengths raise VALIDATION; empty
          upserts are no-ops; get returns {id: metadata} for ids that exist;
          delete removes the named records
    WHY: A silent length mismatch in ChromaDB pairs vectors with the
         wrong users
    """

    def test_upsert_then_get_returns_metadata(self, vector_store: VectorStore) -> None:
        """Metadata round-trips for the requested id."""
        vector_store.upsert_vectors(
            _COLLECTION,
            ids=["u-1"],
            embeddings=[[0.1, 0.2, 0.3]],
            metadatas=[{"version": "1.0", "openness": 62.0}],
        )
        rows = vector_store.get_vectors(_COLLECTION, ids=["u-1"])
        assert rows == {"u-1": {"version": "1.0", "openness": 62.0}}

    def test_upsert_replaces_existing_record(self, vector_store: VectorStore) -> None:
        """A second upsert with the same id overwrites rather than duplicates."""
        for version in ("1.0", "1.1"):
            vector_store.upsert_vectors(
                _COLLECTION,
                ids=["u-1"],
                embeddings=[[0.1, 0.2, 0.3]],
                metadatas=[{"version": version}],
            )
        assert len(vector_store.get_vectors(_COLLECTION)) == 1
        assert vector_store.get_vectors(_COLLECTION, ids=["u-1"])["u-1"]["version"] == "1.1"

    def test_mismatched_lengths_raise_validation(self, vector_store: VectorStore) -> None:
        """Two ids with one embedding is rejected before ChromaDB sees it."""
        with pytest.raises(ValidationError, match="mismatched"):
            vector_store.upsert_vectors(
                _COLLECTION,
                ids=["u-1", "u-2"],
                embeddings=[[0.1, 0.2, 0.3]],
                metadatas=[{}, {}],
            )

    def test_empty_upsert_is_a_noop(self, vector_store: VectorStore) -> None:
        """Nothing to write, nothing written."""
        vector_store.upsert_vectors(_COLLECTION, ids=[], embeddings=[], metadatas=[])
        assert len(vector_store.get_vectors(_COLLECTION)) == 0

    def test_unknown_ids_are_absent(self, vector_store: VectorStore) -> None:
        """Ids without a record are omitted; an empty id list returns nothing."""
        vector_store.upsert_vectors(
            _COLLECTION, ids=["u-1"], embeddings=[[0.1, 0.2, 0.3]], metadatas=[{"v": 1}]
        )
        assert set(vector_store.get_vectors(_COLLECTION, ids=["u-1", "ghost"])) == {"u-1"}
        assert vector_store.get_vectors(_COLLECTION, ids=[]) == {}

    def test_delete_removes_named_ids(self, vector_store: VectorStore) -> None:
        """delete_vectors removes only the ids it is given."""
        vector_store.upsert_vectors(
            _COLLECTION,
            ids=["u-1", "u-2", "u-3"],
            embeddings=[[0.1, 0.2, 0.3]] * 3,
            metadatas=[{"n": 1}, {"n": 2}, {"n": 3}],
        )
        vector_store.delete_vectors(_COLLECTION, ids=["u-1"])
        assert set(vector_store.get_vectors(_COLLECTION)) == {"u-2", "u-3"}


class TestTraitIndex:
    """REQUIREMENT: The trait index holds each user's current bigFive vector and version.

    WHO: The similarity engine reading cohort vectors
    WHAT: upsert stores the exact values and version keyed by user id;
          re-upserting replaces the entry; malformed entries are skipped;
          remove deletes the entry
    WHY: A reader must be able to tell which diagnosis version an entry
         was built from
    """

    def test_upsert_then_get(self, trait_index: TraitIndex) -> None:
        """The stored vector and version come back for the user."""
        diagnosis = make_diagnosis("u-1", big_five={**make_diagnosis().big_five, "openness": 62.5})
        trait_index.upsert(diagnosis)
        entry = trait_index.get(["u-1"])["u-1"]
        assert entry.version == "1.0"
        assert entry.diagnosis_id == diagnosis.id
        assert entry.vector["openness"] == 62.5

    def test_reupsert_replaces_version(
        self, trait_index: TraitIndex, vector_store: VectorStore
    ) -> None:
        """A refined diagnosis overwrites the entry; there is still one record."""
        trait_index.upsert(make_diagnosis("u-1"))
        trait_index.upsert(make_diagnosis("u-1", version="1.1"))
        assert len(vector_store.get_vectors(TRAIT_COLLECTION)) == 1
        assert trait_index.get(["u-1"])["u-1"].version == "1.1"

    def test_malformed_entry_is_skipped(
        self, trait_index: TraitIndex, vector_store: VectorStore
    ) -> None:
        """An entry missing dimension metadata is left out rather than raising."""
        vector_store.upsert_vectors(
            TRAIT_COLLECTION,
            ids=["broken"],
            embeddings=[[50.0, 50.0, 50.0, 50.0, 50.0]],
            metadatas=[{"user_id": "broken", "version": "1.0"}],
        )
        trait_index.upsert(make_diagnosis("u-1"))
        assert set(trait_index.get(["broken", "u-1"])) == {"u-1"}

    def test_remove(self, trait_index: TraitIndex) -> None:
        """A removed user is no longer indexed."""
        trait_index.upsert(make_diagnosis("u-1"))
        trait_index.remove("u-1")
        assert trait_index.get(["u-1"]) == {}
