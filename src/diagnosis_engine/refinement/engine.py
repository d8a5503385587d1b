"""Refinement engine — AI-assisted, confidence-gated diagnosis updates.

One call to :meth:`RefinementEngine.refine` walks the state machine::

    IDLE → COLLECTING → EVALUATING → APPLIED | SUPPRESSED | FAILED

1. **Load** the user's current diagnosis (``NotFoundError`` if none)
2. **Collect** external diagnoses and the most recent evaluations
3. **Gate** on data sufficiency for the trigger; no AI call when short
4. **Evaluate** with the completion collaborator
5. **Confidence gate**: below the threshold nothing changes
6. **Apply** bounded deltas, bump the version, and write the diagnosis,
   history row, and audit entry in one transaction

Every attempt that gets past step 1 writes exactly one AuditLogEntry,
whatever the outcome.  Collaborator failures, low confidence,
insufficient data, and concurrency conflicts come back as structured
:class:`RefinementOutcome` values instead of exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from diagnosis_engine.errors import ActionableError, ConcurrencyConflict
from diagnosis_engine.events import notify_vectors_changed
from diagnosis_engine.locks import UserLocks
from diagnosis_engine.models import (
    AuditLogEntry,
    BrushUpHistory,
    DisplayDecision,
    ExternalDiagnosisType,
    RefinementState,
    TriggerType,
    utcnow,
)
from diagnosis_engine.refinement.client import RefinementRequest
from diagnosis_engine.refinement.diff import get_version_diff
from diagnosis_engine.refinement.prompts import build_payload, hash_payload
from diagnosis_engine.traits import (
    BEHAVIOR_PATTERN,
    BIG_FIVE,
    THINKING_PATTERN,
    TraitVector,
    round_half_up,
)
from diagnosis_engine.versioning import increment_version

if TYPE_CHECKING:
    from diagnosis_engine.config import RefinementConfig
    from diagnosis_engine.events import VectorChangeListener
    from diagnosis_engine.models import (
        DiagnosisResult,
        ExternalDiagnosis,
        InterviewEvaluation,
        TokenUsage,
    )
    from diagnosis_engine.persistence.repository import Repository
    from diagnosis_engine.refinement.client import CompletionClient, RefinementProposal
    from diagnosis_engine.refinement.diff import VersionDiff

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient data"
MAX_FEATURE_LABELS = 5


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LowConfidenceOutcome:
    """What the model proposed when its confidence fell below the gate."""

    reasoning: str
    confidence: float
    risk_flags: tuple[str, ...] = ()


@dataclass
class CollectedSignals:
    mbti: ExternalDiagnosis | None = None
    animal_fortune: ExternalDiagnosis | None = None
    evaluations: list[InterviewEvaluation] = field(default_factory=list)

    @property
    def has_any(self) -> bool:
        return self.mbti is not None or self.animal_fortune is not None or bool(self.evaluations)


@dataclass
class RefinementOutcome:
    """Result of one :meth:`RefinementEngine.refine` call."""

    state: RefinementState
    user_id: str
    trigger_type: TriggerType
    diagnosis: DiagnosisResult
    reason: str | None = None
    proposal: RefinementProposal | None = None
    low_confidence: LowConfidenceOutcome | None = None
    history: BrushUpHistory | None = None
    audit: AuditLogEntry | None = None
    error: ActionableError | None = None
    transitions: list[RefinementState] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.state is RefinementState.APPLIED


# ---------------------------------------------------------------------------
# Bounded adjustment
# ---------------------------------------------------------------------------


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def apply_deltas(
    vectors: dict[str, TraitVector],
    deltas: dict[str, dict[str, float]],
    *,
    max_adjustment: float = 5.0,
    min_score: float = 20.0,
    max_score: float = 80.0,
) -> dict[str, TraitVector]:
    """New vectors after bounded deltas.

    Each delta is clamped to ``±max_adjustment``; the adjusted value is
    clamped to ``[min_score, max_score]`` and rounded to one decimal.
    Every proposed dimension is clamped, a zero delta included, so an
    out-of-range score is pulled into range.  Dimensions with no delta
    keep their value.
    """
    updated = {name: dict(vector) for name, vector in vectors.items()}
    for vector_name, proposed in deltas.items():
        for dim, delta in proposed.items():
            bounded = clamp(delta, -max_adjustment, max_adjustment)
            current = updated[vector_name][dim]
            updated[vector_name][dim] = round_half_up(
                clamp(current + bounded, min_score, max_score), 1
            )
    return updated


def merge_labels(current: list[str], proposed: list[str] | None) -> list[str]:
    """Proposed labels (deduplicated, at most five) or the current ones."""
    if not proposed:
        return list(current)
    cleaned = [label.strip() for label in proposed if label.strip()]
    return list(dict.fromkeys(cleaned))[:MAX_FEATURE_LABELS] or list(current)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RefinementEngine:
    """Confidence-gated, version-tracked refinement of a user's diagnosis.

    Usage::

        engine = RefinementEngine(repo, RefinementClient(...), locks=locks)
        outcome = await engine.refine("user-1", TriggerType.SIGNAL_A_ADDED)
        if outcome.applied:
            engine.get_version_diff(outcome.history.id)
    """

    def __init__(
        self,
        repository: Repository,
        client: CompletionClient,
        *,
        locks: UserLocks | None = None,
        listeners: list[VectorChangeListener] | None = None,
        confidence_threshold: float = 50.0,
        max_adjustment: float = 5.0,
        min_score: float = 20.0,
        max_score: float = 80.0,
        max_evaluations: int = 10,
    ) -> None:
        self._repo = repository
        self._client = client
        self._locks = locks or UserLocks()
        self._listeners: list[VectorChangeListener] = list(listeners or [])
        self.confidence_threshold = confidence_threshold
        self.max_adjustment = max_adjustment
        self.min_score = min_score
        self.max_score = max_score
        self.max_evaluations = max_evaluations

    @classmethod
    def from_config(
        cls,
        repository: Repository,
        client: CompletionClient,
        config: RefinementConfig,
        *,
        locks: UserLocks | None = None,
        listeners: list[VectorChangeListener] | None = None,
    ) -> RefinementEngine:
        return cls(
            repository,
            client,
            locks=locks,
            listeners=listeners,
            confidence_threshold=config.confidence_threshold,
            max_adjustment=config.max_adjustment,
            min_score=config.min_score,
            max_score=config.max_score,
            max_evaluations=config.max_evaluations,
        )

    def add_listener(self, listener: VectorChangeListener) -> None:
        self._listeners.append(listener)

    # -- Public API ----------------------------------------------------------

    async def refine(
        self,
        user_id: str,
        trigger_type: TriggerType | str,
        trigger_source_id: str | None = None,
    ) -> RefinementOutcome:
        """Run one refinement attempt for *user_id*.

        Raises:
            NotFoundError: the user has no diagnosis.
            ValidationError: *trigger_type* is not a known trigger.
        """
        trigger = _parse_trigger(trigger_type)
        async with self._locks.hold(user_id):
            outcome = await self._refine_locked(user_id, trigger, trigger_source_id)
        if outcome.applied:
            await notify_vectors_changed(self._listeners, outcome.diagnosis)
        return outcome

    async def manual_refinement(self, user_id: str) -> RefinementOutcome:
        return await self.refine(user_id, TriggerType.MANUAL)

    def get_history(self, user_id: str) -> list[BrushUpHistory]:
        """The user's refinement history, newest first."""
        diagnosis = self._repo.get_current_diagnosis(user_id)
        if diagnosis is None:
            return []
        return self._repo.list_history(diagnosis.id)

    def get_version_diff(self, history_id: str) -> VersionDiff:
        return get_version_diff(self._repo, history_id)

    # -- State machine -------------------------------------------------------

    async def _refine_locked(
        self, user_id: str, trigger: TriggerType, trigger_source_id: str | None
    ) -> RefinementOutcome:
        transitions = [RefinementState.IDLE]

        diagnosis = self._repo.get_current_diagnosis(user_id)
        if diagnosis is None:
            raise ActionableError.not_found("diagnosis for user", user_id)

        transitions.append(RefinementState.COLLECTING)
        signals = self._collect(user_id)
        payload = build_payload(
            diagnosis,
            trigger,
            mbti=signals.mbti,
            animal_fortune=signals.animal_fortune,
            evaluations=signals.evaluations,
        )
        input_hash = hash_payload(payload)

        def _finish(state: RefinementState, **kwargs: Any) -> RefinementOutcome:
            transitions.append(state)
            return RefinementOutcome(
                state=state,
                user_id=user_id,
                trigger_type=trigger,
                transitions=transitions,
                **kwargs,
            )

        # -- gate on data sufficiency ----------------------------------------
        if not _has_enough_data(trigger, signals):
            error = ActionableError.insufficient_data(user_id, str(trigger))
            audit = self._record_audit(
                diagnosis,
                payload,
                input_hash,
                decision=DisplayDecision.SUPPRESSED,
                error_message=INSUFFICIENT_DATA,
            )
            logger.info("Refinement for %s (%s) suppressed — %s", user_id, trigger, INSUFFICIENT_DATA)
            return _finish(
                RefinementState.SUPPRESSED,
                diagnosis=diagnosis,
                reason=INSUFFICIENT_DATA,
                audit=audit,
                error=error,
            )

        # -- evaluate ---------------------------------------------------------
        transitions.append(RefinementState.EVALUATING)
        failure: ActionableError | None = None
        try:
            proposal = await self._client.propose(RefinementRequest(payload=payload))
        except ActionableError as exc:
            logger.error("Refinement for %s (%s) failed: %s", user_id, trigger, exc.error)
            failure = exc
        except Exception as exc:
            logger.exception("Unexpected error refining %s (%s)", user_id, trigger)
            failure = ActionableError.from_exception(exc, "refinement", "propose")
        if failure is not None:
            audit = self._record_audit(
                diagnosis,
                payload,
                input_hash,
                decision=DisplayDecision.SUPPRESSED,
                error_message=failure.error,
            )
            return _finish(
                RefinementState.FAILED,
                diagnosis=diagnosis,
                reason=failure.error,
                audit=audit,
                error=failure,
            )

        # -- confidence gate --------------------------------------------------
        if proposal.confidence < self.confidence_threshold:
            audit = self._record_audit(
                diagnosis,
                payload,
                input_hash,
                decision=DisplayDecision.SUPPRESSED,
                proposal=proposal,
            )
            logger.info(
                "Refinement for %s (%s) suppressed — confidence %.1f below %.1f",
                user_id,
                trigger,
                proposal.confidence,
                self.confidence_threshold,
            )
            return _finish(
                RefinementState.SUPPRESSED,
                diagnosis=diagnosis,
                reason=f"confidence {proposal.confidence:g} below {self.confidence_threshold:g}",
                proposal=proposal,
                low_confidence=LowConfidenceOutcome(
                    reasoning=proposal.reasoning,
                    confidence=proposal.confidence,
                    risk_flags=tuple(proposal.risk_flags),
                ),
                audit=audit,
            )

        # -- apply ------------------------------------------------------------
        updated = self._build_updated(diagnosis, proposal)
        history = BrushUpHistory(
            diagnosis_result_id=diagnosis.id,
            version=updated.version,
            trigger_type=trigger,
            trigger_source_id=trigger_source_id,
            previous_data=diagnosis.snapshot(),
            updated_data=updated.snapshot(),
            ai_reasoning=proposal.reasoning,
        )
        audit = self._audit_entry(
            diagnosis,
            payload,
            input_hash,
            decision=DisplayDecision.SHOWN,
            proposal=proposal,
            brush_up_history_id=history.id,
        )
        try:
            with self._repo.transaction():
                self._repo.save_diagnosis(updated, expected_version=diagnosis.version)
                self._repo.append_history(history)
                self._repo.append_audit(audit)
        except ConcurrencyConflict as exc:
            logger.warning("Refinement for %s (%s) lost a race: %s", user_id, trigger, exc.error)
            conflict_audit = self._record_audit(
                diagnosis,
                payload,
                input_hash,
                decision=DisplayDecision.SUPPRESSED,
                proposal=proposal,
                error_message=exc.error,
            )
            return _finish(
                RefinementState.FAILED,
                diagnosis=diagnosis,
                reason=exc.error,
                proposal=proposal,
                audit=conflict_audit,
                error=exc,
            )

        logger.info(
            "Refinement for %s (%s) applied — version %s → %s, confidence %.1f",
            user_id,
            trigger,
            diagnosis.version,
            updated.version,
            proposal.confidence,
        )
        return _finish(
            RefinementState.APPLIED,
            diagnosis=updated,
            proposal=proposal,
            history=history,
            audit=audit,
        )

    # -- Internal helpers ----------------------------------------------------

    def _collect(self, user_id: str) -> CollectedSignals:
        signals = CollectedSignals(
            evaluations=self._repo.list_recent_evaluations(user_id, self.max_evaluations)
        )
        # Latest of each type wins
        for external in sorted(
            self._repo.list_external_diagnoses(user_id), key=lambda d: d.created_at
        ):
            if external.type == ExternalDiagnosisType.MBTI:
                signals.mbti = external
            elif external.type == ExternalDiagnosisType.ANIMAL_FORTUNE:
                signals.animal_fortune = external
        return signals

    def _build_updated(
        self, diagnosis: DiagnosisResult, proposal: RefinementProposal
    ) -> DiagnosisResult:
        vectors = apply_deltas(
            diagnosis.vectors(),
            proposal.score_deltas,
            max_adjustment=self.max_adjustment,
            min_score=self.min_score,
            max_score=self.max_score,
        )
        return replace(
            diagnosis,
            feature_labels=merge_labels(diagnosis.feature_labels, proposal.feature_labels),
            big_five=vectors[BIG_FIVE],
            thinking_pattern=vectors[THINKING_PATTERN],
            behavior_pattern=vectors[BEHAVIOR_PATTERN],
            version=increment_version(diagnosis.version),
            updated_at=utcnow(),
        )

    def _audit_entry(
        self,
        diagnosis: DiagnosisResult,
        payload: dict[str, Any],
        input_hash: str,
        *,
        decision: DisplayDecision,
        proposal: RefinementProposal | None = None,
        error_message: str | None = None,
        brush_up_history_id: str | None = None,
    ) -> AuditLogEntry:
        usage: TokenUsage | None = proposal.usage if proposal is not None else None
        model_version = getattr(self._client, "model", "unknown")
        if proposal is not None and proposal.model:
            model_version = proposal.model
        return AuditLogEntry(
            diagnosis_result_id=diagnosis.id,
            input_hash=input_hash,
            model_version=model_version,
            confidence=proposal.confidence if proposal is not None else 0.0,
            risk_flag=bool(proposal.risk_flags) if proposal is not None else False,
            display_decision=decision,
            input_data=payload,
            output_data=proposal.to_dict() if proposal is not None else None,
            usage=usage,
            error_message=error_message,
            brush_up_history_id=brush_up_history_id,
        )

    def _record_audit(
        self,
        diagnosis: DiagnosisResult,
        payload: dict[str, Any],
        input_hash: str,
        **kwargs: Any,
    ) -> AuditLogEntry:
        entry = self._audit_entry(diagnosis, payload, input_hash, **kwargs)
        self._repo.append_audit(entry)
        return entry


def _parse_trigger(trigger_type: TriggerType | str) -> TriggerType:
    try:
        return TriggerType(trigger_type)
    except ValueError:
        raise ActionableError.validation(
            field_name="trigger_type",
            reason=f"'{trigger_type}' is not one of {[t.value for t in TriggerType]}",
        ) from None


def _has_enough_data(trigger: TriggerType, signals: CollectedSignals) -> bool:
    if trigger is TriggerType.INITIAL:
        return True
    if trigger is TriggerType.MANUAL:
        return signals.has_any
    if trigger is TriggerType.SIGNAL_A_ADDED:
        return signals.mbti is not None
    if trigger is TriggerType.SIGNAL_B_ADDED:
        return signals.animal_fortune is not None
    if trigger is TriggerType.EVALUATION_ADDED:
        return bool(signals.evaluations)
    return False
