"""ChromaDB collection management.

Provides a thin wrapper around ChromaDB's persistent client, adding:
- Consistent error handling via ActionableError
- Collection creation with the L2 distance space
- Input validation for vector operations

ChromaDB is an **embedded** vector database — like SQLite for vectors.
Here it holds one record per user: the user's current bigFive vector as
the embedding, with the exact values and the diagnosis version kept in
metadata.
"""

from __future__ import annotations

from typing import Any

import chromadb
from chromadb.errors import ChromaError

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.logging import logger


class VectorStore:
    """Manages ChromaDB collections for the trait index.

    Usage::

        store = VectorStore(persist_dir="./data/chroma_db")
        store.upsert_vectors("trait_vectors", ids=[...], embeddings=[...], metadatas=[...])
        rows = store.get_vectors("trait_vectors", ids=["user-1"])
    """

    def __init__(self, persist_dir: str) -> None:
        self.persist_dir = persist_dir
        self._client = chromadb.PersistentClient(path=persist_dir)
        logger.debug("ChromaDB client initialized at %s", persist_dir)

    # -- Collections ---------------------------------------------------------

    def get_or_create_collection(self, name: str) -> chromadb.Collection:
        """Return the named collection, creating it if necessary.

        Uses L2 distance, matching the Euclidean half of the similarity
        metric.
        """
        return self._client.get_or_create_collection(
            name=name,
            metadata={"hnsw:space": "l2"},
        )

    # -- Vector operations ---------------------------------------------------

    def upsert_vectors(
        self,
        collection_name: str,
        *,
        ids: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Add or update records; all lists must be the same length."""
        lengths = {"ids": len(ids), "embeddings": len(embeddings), "metadatas": len(metadatas)}
        if len(set(lengths.values())) > 1:
            raise ActionableError.validation(
                field_name="vectors",
                reason=f"mismatched input lengths: {lengths}",
                suggestion="Ensure ids, embeddings, and metadatas all have the same length",
            )
        if not ids:
            return

        collection = self.get_or_create_collection(collection_name)
        try:
            collection.upsert(
                ids=ids,
                embeddings=embeddings,  # type: ignore[arg-type]
                metadatas=metadatas,  # type: ignore[arg-type]
            )
        except (ValueError, ChromaError) as exc:
            raise ActionableError.index(collection_name, str(exc)) from None
        logger.debug("Upserted %d vectors into '%s'", len(ids), collection_name)

    def get_vectors(
        self,
        collection_name: str,
        *,
        ids: list[str] | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Return ``{id: metadata}`` for the requested ids (all records when ``None``).

        Ids without a record are simply absent from the result.
        """
        if ids is not None and not ids:
            return {}
        collection = self.get_or_create_collection(collection_name)
        try:
            result = collection.get(ids=ids, include=["metadatas"])  # type: ignore[list-item]
        except (ValueError, ChromaError) as exc:
            raise ActionableError.index(collection_name, str(exc)) from None
        metadatas = result.get("metadatas") or []
        return {
            record_id: dict(metadata or {})
            for record_id, metadata in zip(result["ids"], metadatas, strict=True)
        }

    def delete_vectors(self, collection_name: str, *, ids: list[str]) -> None:
        if not ids:
            return
        collection = self.get_or_create_collection(collection_name)
        try:
            collection.delete(ids=ids)
        except (ValueError, ChromaError) as exc:
            raise ActionableError.index(collection_name, str(exc)) from None
