"""Peer similarity over current bigFive vectors.

The :class:`SimilarityEngine` answers three questions:

- How similar are two users?  (``compare``)
- Who in a cohort resembles this user?  (``find_similar_members``, live,
  and ``cached_similar_members``, cache first)
- What is every pairwise similarity in a cohort?  (``compute_cohort_matrix``,
  which fills the SimilarityScore cache)

It is also a vector-change listener: when a user's vectors change it
drops every cached row that involves the user and refreshes the user's
trait-index entry.  Readers also check recorded versions against the
current diagnoses, so a row or index entry left behind by a failed
refresh is never served.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import TYPE_CHECKING

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.models import SimilarityScore, utcnow
from diagnosis_engine.similarity.metrics import (
    DEFAULT_DIFFERING_THRESHOLD,
    DEFAULT_MAX_DELTA,
    combined_similarity,
    differing_factors,
)
from diagnosis_engine.traits import BIG_FIVE, TraitVector, validate_vector

if TYPE_CHECKING:
    from collections.abc import Iterable

    from diagnosis_engine.config import SimilarityConfig
    from diagnosis_engine.models import DiagnosisResult
    from diagnosis_engine.persistence.repository import Repository
    from diagnosis_engine.similarity.index import IndexedVector, TraitIndex

logger = logging.getLogger(__name__)


@dataclass
class SimilarityResult:
    """How similar ``similar_user_id`` is to ``user_id``."""

    user_id: str
    similar_user_id: str
    similarity_percentage: int
    differing_factors: list[str]
    user_version: str = ""
    similar_user_version: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "userId": self.user_id,
            "similarUserId": self.similar_user_id,
            "similarityPercentage": self.similarity_percentage,
            "differingFactors": list(self.differing_factors),
        }


@dataclass
class PairFailure:
    user_id: str
    similar_user_id: str
    reason: str


@dataclass
class MatrixReport:
    """Outcome of one cohort matrix run."""

    cohort_id: str
    pairs: int = 0
    rows_written: int = 0
    failures: list[PairFailure] = field(default_factory=list)


@dataclass
class _Member:
    vector: TraitVector
    version: str


class SimilarityEngine:
    """Pairwise, cohort-scan, and batch-matrix similarity.

    Usage::

        engine = SimilarityEngine(repo, index=TraitIndex(store))
        engine.compare("alice", "bob").similarity_percentage
        engine.find_similar_members("alice", "cohort-1")
        report = await engine.compute_cohort_matrix("cohort-1")
    """

    def __init__(
        self,
        repository: Repository,
        index: TraitIndex | None = None,
        *,
        min_similarity: int = 70,
        limit: int = 10,
        differing_threshold: float = DEFAULT_DIFFERING_THRESHOLD,
        max_delta: float = DEFAULT_MAX_DELTA,
        matrix_concurrency: int = 8,
    ) -> None:
        self._repo = repository
        self._index = index
        self.min_similarity = min_similarity
        self.limit = limit
        self.differing_threshold = differing_threshold
        self.max_delta = max_delta
        self.matrix_concurrency = matrix_concurrency

    @classmethod
    def from_config(
        cls, repository: Repository, config: SimilarityConfig, index: TraitIndex | None = None
    ) -> SimilarityEngine:
        return cls(
            repository,
            index,
            min_similarity=config.min_similarity,
            limit=config.limit,
            differing_threshold=config.differing_threshold,
            max_delta=config.euclidean_max_delta,
            matrix_concurrency=config.matrix_concurrency,
        )

    # -- Single pair ---------------------------------------------------------

    def compare(self, user_id: str, other_user_id: str) -> SimilarityResult:
        """Similarity of *other_user_id* to *user_id*.

        Raises :class:`~diagnosis_engine.errors.NotFoundError` when
        either user has no diagnosis.
        """
        target = self._require_member(user_id)
        other = self._require_member(other_user_id)
        return self._score(user_id, target, other_user_id, other)

    # -- Cohort scan ---------------------------------------------------------

    def find_similar_members(
        self,
        user_id: str,
        cohort_id: str,
        min_similarity: int | None = None,
        limit: int | None = None,
    ) -> list[SimilarityResult]:
        """Cohort members at or above *min_similarity*, most similar first.

        The target user is always excluded.  Members without a diagnosis
        or with an invalid vector are skipped.
        """
        threshold = self.min_similarity if min_similarity is None else min_similarity
        max_results = self.limit if limit is None else limit

        target = self._require_member(user_id)
        members = [m for m in self._repo.list_cohort_members(cohort_id) if m != user_id]
        vectors = self._member_vectors(members)

        results = [
            self._score(user_id, target, member_id, member)
            for member_id, member in vectors.items()
        ]
        matches = [r for r in results if r.similarity_percentage >= threshold]
        matches.sort(key=lambda r: r.similarity_percentage, reverse=True)
        return matches[:max_results]

    def cached_similar_members(
        self,
        user_id: str,
        cohort_id: str,
        min_similarity: int | None = None,
        limit: int | None = None,
    ) -> list[SimilarityResult]:
        """Cache-first read; falls back to a live scan without writing back.

        Cached rows are served only while every recorded version matches
        the users' current diagnoses; one stale row sends the whole lookup
        to the live scan.
        """
        threshold = self.min_similarity if min_similarity is None else min_similarity
        max_results = self.limit if limit is None else limit

        members = set(self._repo.list_cohort_members(cohort_id))
        rows = [
            row
            for row in self._repo.list_similar(user_id, threshold)
            if row.similar_user_id in members
        ]
        versions = self._current_versions([user_id, *(r.similar_user_id for r in rows)])
        stale = [
            row
            for row in rows
            if versions.get(row.user_id) != row.user_version
            or versions.get(row.similar_user_id) != row.similar_user_version
        ]
        if stale:
            logger.info("Ignoring cache for %s — %d stale similarity rows", user_id, len(stale))
            rows = []
        if rows:
            logger.debug("Similarity cache hit for %s in %s (%d rows)", user_id, cohort_id, len(rows))
            return [
                SimilarityResult(
                    user_id=row.user_id,
                    similar_user_id=row.similar_user_id,
                    similarity_percentage=row.similarity_percentage,
                    differing_factors=list(row.differing_factors),
                    user_version=row.user_version,
                    similar_user_version=row.similar_user_version,
                )
                for row in rows[:max_results]
            ]

        logger.debug("Similarity cache miss for %s in %s — scanning cohort", user_id, cohort_id)
        return self.find_similar_members(user_id, cohort_id, threshold, max_results)

    # -- Batch matrix --------------------------------------------------------

    async def compute_cohort_matrix(self, cohort_id: str) -> MatrixReport:
        """Compute every unordered pair once and cache both directions.

        Writes run in worker threads, at most ``matrix_concurrency`` at a
        time.  A failed write is logged and reported; the rest of the
        batch continues.
        """
        members = self._repo.list_cohort_members(cohort_id)
        vectors = self._member_vectors(members)
        pairs = list(combinations(sorted(vectors), 2))
        report = MatrixReport(cohort_id=cohort_id, pairs=len(pairs))
        semaphore = asyncio.Semaphore(self.matrix_concurrency)

        async def _write_pair(user_a: str, user_b: str) -> int:
            result = self._score(user_a, vectors[user_a], user_b, vectors[user_b])
            async with semaphore:
                try:
                    return await asyncio.to_thread(self._store_pair, result)
                except ActionableError as exc:
                    logger.warning(
                        "Similarity write failed for %s ↔ %s: %s", user_a, user_b, exc.error
                    )
                    report.failures.append(PairFailure(user_a, user_b, exc.error))
                except Exception as exc:
                    logger.exception("Unexpected error writing similarity %s ↔ %s", user_a, user_b)
                    report.failures.append(PairFailure(user_a, user_b, str(exc)))
                return 0

        written = await asyncio.gather(*[_write_pair(a, b) for a, b in pairs])
        report.rows_written = sum(written)

        logger.info(
            "Cohort %s matrix: %d pairs, %d rows written, %d failures",
            cohort_id,
            report.pairs,
            report.rows_written,
            len(report.failures),
        )
        return report

    # -- Invalidation --------------------------------------------------------

    async def vectors_changed(self, diagnosis: DiagnosisResult) -> None:
        """Refresh the index entry and drop cached rows involving the user."""
        await asyncio.to_thread(self._refresh, diagnosis)

    def _refresh(self, diagnosis: DiagnosisResult) -> None:
        # Rows go first so a failed index write cannot keep them alive
        removed = self._repo.delete_similarity_for_user(diagnosis.user_id)
        logger.info(
            "Vectors changed for %s (version %s) — %d cached similarity rows invalidated",
            diagnosis.user_id,
            diagnosis.version,
            removed,
        )
        if self._index is not None:
            self._index.upsert(diagnosis)

    # -- Internal helpers ----------------------------------------------------

    def _score(
        self, user_id: str, target: _Member, other_id: str, other: _Member
    ) -> SimilarityResult:
        return SimilarityResult(
            user_id=user_id,
            similar_user_id=other_id,
            similarity_percentage=combined_similarity(target.vector, other.vector, self.max_delta),
            differing_factors=differing_factors(
                target.vector, other.vector, self.differing_threshold
            ),
            user_version=target.version,
            similar_user_version=other.version,
        )

    def _store_pair(self, result: SimilarityResult) -> int:
        """Upsert both directional rows for one pair atomically."""
        now = utcnow()
        with self._repo.transaction():
            self._repo.upsert_similarity(
                SimilarityScore(
                    user_id=result.user_id,
                    similar_user_id=result.similar_user_id,
                    similarity_percentage=result.similarity_percentage,
                    differing_factors=list(result.differing_factors),
                    user_version=result.user_version,
                    similar_user_version=result.similar_user_version,
                    calculated_at=now,
                )
            )
            self._repo.upsert_similarity(
                SimilarityScore(
                    user_id=result.similar_user_id,
                    similar_user_id=result.user_id,
                    similarity_percentage=result.similarity_percentage,
                    differing_factors=list(result.differing_factors),
                    user_version=result.similar_user_version,
                    similar_user_version=result.user_version,
                    calculated_at=now,
                )
            )
        return 2

    def _require_member(self, user_id: str) -> _Member:
        diagnosis = self._repo.get_current_diagnosis(user_id)
        if diagnosis is None:
            raise ActionableError.not_found("diagnosis for user", user_id)
        return _Member(vector=validate_vector(BIG_FIVE, diagnosis.big_five), version=diagnosis.version)

    def _current_versions(self, user_ids: Iterable[str]) -> dict[str, str]:
        versions: dict[str, str] = {}
        for user_id in dict.fromkeys(user_ids):
            diagnosis = self._repo.get_current_diagnosis(user_id)
            if diagnosis is not None:
                versions[user_id] = diagnosis.version
        return versions

    def _member_vectors(self, user_ids: Iterable[str]) -> dict[str, _Member]:
        """Current vectors, read from the trait index where it is up to date.

        The repository decides which version is current.  An index entry
        at any other version is rewritten from the repository, and an
        entry for a user with no diagnosis is removed.  Cohort order is
        preserved.
        """
        wanted = list(dict.fromkeys(user_ids))
        indexed: dict[str, IndexedVector] = {}

        if self._index is not None and wanted:
            try:
                indexed = self._index.get(wanted)
            except ActionableError as exc:
                logger.warning("Trait index unavailable, reading repository: %s", exc.error)

        members: dict[str, _Member] = {}
        for user_id in wanted:
            entry = indexed.get(user_id)
            diagnosis = self._repo.get_current_diagnosis(user_id)
            if diagnosis is None:
                if entry is not None:
                    self._drop_index_entry(user_id)
                continue
            if entry is not None and entry.version == diagnosis.version:
                members[user_id] = _Member(vector=entry.vector, version=entry.version)
                continue
            try:
                vector = validate_vector(BIG_FIVE, diagnosis.big_five)
            except ActionableError as exc:
                logger.warning("Skipping %s — invalid bigFive vector: %s", user_id, exc.error)
                continue
            members[user_id] = _Member(vector=vector, version=diagnosis.version)
            if entry is not None:
                logger.info(
                    "Index entry for %s is stale (%s, current %s)",
                    user_id,
                    entry.version,
                    diagnosis.version,
                )
            self._backfill(diagnosis)

        return members

    def _backfill(self, diagnosis: DiagnosisResult) -> None:
        if self._index is None:
            return
        try:
            self._index.upsert(diagnosis)
        except ActionableError as exc:
            logger.warning("Index backfill failed for %s: %s", diagnosis.user_id, exc.error)

    def _drop_index_entry(self, user_id: str) -> None:
        if self._index is None:
            return
        try:
            self._index.remove(user_id)
        except ActionableError as exc:
            logger.warning("Could not remove orphaned index entry for %s: %s", user_id, exc.error)
            return
        logger.info("Removed orphaned index entry for %s", user_id)
