"""AI completion collaborator for refinement.

Wraps the ``ollama`` Python SDK's :class:`AsyncClient`:

- **Proposal**: refinement payload → validated :class:`RefinementProposal`
  via a JSON-mode chat completion
- **Health check**: verify Ollama is reachable and the model is pulled

One attempt per call.  A timeout, transport error,
error status, or a response that does not match the schema is raised as
:class:`~diagnosis_engine.errors.ExternalServiceError`; the refinement
engine records it and leaves the diagnosis untouched.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import ollama as ollama_sdk

from diagnosis_engine.errors import ActionableError
from diagnosis_engine.logging import logger
from diagnosis_engine.models import TokenUsage
from diagnosis_engine.refinement.prompts import SYSTEM_PROMPT, build_user_prompt
from diagnosis_engine.traits import VECTOR_DIMENSIONS

_SERVICE = "Ollama"
_REQUIRED_FIELDS = ("updatedFeatureLabels", "scoreDeltas", "reasoning", "confidence", "riskFlags")


@dataclass
class RefinementRequest:
    """One refinement attempt's input, as built by :func:`~diagnosis_engine.refinement.prompts.build_payload`."""

    payload: dict[str, Any]


@dataclass
class RefinementProposal:
    """Validated model response.

    ``score_deltas`` maps vector name → dimension → proposed change.
    ``feature_labels`` is ``None`` when the model proposed no labels.
    """

    feature_labels: list[str] | None
    score_deltas: dict[str, dict[str, float]]
    reasoning: str
    confidence: float
    risk_flags: list[str] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "updatedFeatureLabels": self.feature_labels,
            "scoreDeltas": self.score_deltas,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "riskFlags": list(self.risk_flags),
        }


class CompletionClient(Protocol):
    """What the refinement engine needs from an AI collaborator."""

    model: str

    async def propose(self, request: RefinementRequest) -> RefinementProposal: ...


class RefinementClient:
    """Ollama-backed :class:`CompletionClient`.

    Usage::

        client = RefinementClient(base_url="http://localhost:11434", model="mistral:7b")
        await client.health_check()
        proposal = await client.propose(RefinementRequest(payload))
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        temperature: float = 0.3,
        timeout: float = 60.0,
        prompt_cost_per_1k: float = 0.0,
        completion_cost_per_1k: float = 0.0,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.prompt_cost_per_1k = prompt_cost_per_1k
        self.completion_cost_per_1k = completion_cost_per_1k
        self._client = ollama_sdk.AsyncClient(host=base_url, timeout=timeout)

    # -- Public API ----------------------------------------------------------

    async def propose(self, request: RefinementRequest) -> RefinementProposal:
        """Ask the model for a refinement proposal.

        Raises :class:`~diagnosis_engine.errors.ExternalServiceError` on
        any failure; never retries.
        """
        try:
            response = await self._client.chat(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(request.payload)},
                ],
                format="json",
                options={"temperature": self.temperature},
            )
        except ollama_sdk.ResponseError as exc:
            raise ActionableError.external_service(
                _SERVICE, self.model, f"status {exc.status_code}: {exc.error}"
            ) from None
        except httpx.TimeoutException:
            raise ActionableError.external_service(
                _SERVICE, self.model, f"timed out after {self.timeout}s"
            ) from None
        except (httpx.HTTPError, ConnectionError, OSError) as exc:
            raise ActionableError.external_service(_SERVICE, self.model, str(exc)) from None

        usage = self._usage(response)
        logger.info(
            "Refinement completion (%s): %d prompt + %d completion tokens, est. cost %.6f",
            self.model,
            usage.prompt_tokens,
            usage.completion_tokens,
            usage.estimated_cost,
        )

        proposal = parse_proposal(response.message.content or "", model=self.model)
        proposal.usage = usage
        return proposal

    async def health_check(self) -> None:
        """Verify Ollama is reachable and the configured model is pulled.

        Raises :class:`~diagnosis_engine.errors.ActionableError`:
          - CONNECTION if Ollama is unreachable
          - EXTERNAL_SERVICE if the model is not pulled
        """
        try:
            response = await self._client.list()
        except (httpx.HTTPError, ConnectionError, OSError) as exc:
            raise ActionableError.connection(
                service=_SERVICE,
                url=self.base_url,
                raw_error=str(exc),
            ) from None

        available = {m.model for m in response.models if m.model}
        # Ollama model names may include a :latest suffix
        available |= {name.split(":")[0] for name in available}
        if self.model not in available and self.model.split(":")[0] not in available:
            raise ActionableError.external_service(
                _SERVICE,
                self.model,
                f"Model '{self.model}' is not pulled in Ollama",
                suggestion=f"Run: ollama pull {self.model}",
            )
        logger.info("Ollama health check passed — %s available", self.model)

    # -- Internal helpers ----------------------------------------------------

    def _usage(self, response: Any) -> TokenUsage:
        prompt_tokens = int(getattr(response, "prompt_eval_count", None) or 0)
        completion_tokens = int(getattr(response, "eval_count", None) or 0)
        cost = (
            prompt_tokens * self.prompt_cost_per_1k + completion_tokens * self.completion_cost_per_1k
        ) / 1000
        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            estimated_cost=round(cost, 6),
        )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def parse_proposal(raw: str, *, model: str) -> RefinementProposal:
    """Validate a raw JSON response against the proposal schema.

    Raises :class:`~diagnosis_engine.errors.ExternalServiceError` for
    non-JSON bodies, missing fields, unknown vectors or dimensions,
    non-numeric deltas, and confidence outside 0–100.
    """

    def _reject(reason: str) -> ActionableError:
        logger.warning("Malformed refinement response from %s: %s", model, reason)
        return ActionableError.external_service(
            _SERVICE, model, f"malformed response — {reason}"
        )

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise _reject(f"not valid JSON ({exc.msg})") from None
    if not isinstance(data, dict):
        raise _reject("top-level value is not an object")

    missing = [name for name in _REQUIRED_FIELDS if name not in data]
    if missing:
        raise _reject(f"missing field(s) {missing}")

    labels = data["updatedFeatureLabels"]
    if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
        raise _reject("updatedFeatureLabels must be a list of strings")

    deltas_raw = data["scoreDeltas"]
    if not isinstance(deltas_raw, dict):
        raise _reject("scoreDeltas must be an object")
    score_deltas: dict[str, dict[str, float]] = {}
    for vector_name, proposed in deltas_raw.items():
        dimensions = VECTOR_DIMENSIONS.get(vector_name)
        if dimensions is None:
            raise _reject(f"unknown vector '{vector_name}'")
        if not isinstance(proposed, dict):
            raise _reject(f"scoreDeltas.{vector_name} must be an object")
        vector_deltas: dict[str, float] = {}
        for dim, delta in proposed.items():
            if dim not in dimensions:
                raise _reject(f"unknown dimension '{vector_name}.{dim}'")
            if not _is_number(delta):
                raise _reject(f"delta for {vector_name}.{dim} is not a number")
            vector_deltas[dim] = float(delta)
        score_deltas[vector_name] = vector_deltas

    reasoning = data["reasoning"]
    if not isinstance(reasoning, str):
        raise _reject("reasoning must be a string")

    confidence = data["confidence"]
    if not _is_number(confidence) or not 0 <= confidence <= 100:
        raise _reject(f"confidence {confidence!r} is not a number within 0-100")

    risk_flags = data["riskFlags"]
    if not isinstance(risk_flags, list) or not all(isinstance(flag, str) for flag in risk_flags):
        raise _reject("riskFlags must be a list of strings")

    return RefinementProposal(
        feature_labels=list(labels) if labels else None,
        score_deltas=score_deltas,
        reasoning=reasoning,
        confidence=float(confidence),
        risk_flags=list(risk_flags),
        model=model,
        raw=data,
    )


def _is_number(value: object) -> bool:
    return (
        not isinstance(value, bool)
        and isinstance(value, (int, float))
        and math.isfinite(value)
    )
