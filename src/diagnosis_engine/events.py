"""Vector-change notification.

Whenever a user's trait vectors change (survey completion or an applied
refinement) the writer notifies every registered listener after the
transaction commits.  Listener failures are logged and never undo the
committed write.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from diagnosis_engine.errors import ActionableError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from diagnosis_engine.models import DiagnosisResult

logger = logging.getLogger(__name__)


class VectorChangeListener(Protocol):
    async def vectors_changed(self, diagnosis: DiagnosisResult) -> None: ...


async def notify_vectors_changed(
    listeners: Iterable[VectorChangeListener], diagnosis: DiagnosisResult
) -> None:
    for listener in listeners:
        try:
            await listener.vectors_changed(diagnosis)
        except ActionableError as exc:
            logger.error(
                "Vector-change listener %s failed for user %s: %s",
                type(listener).__name__,
                diagnosis.user_id,
                exc.error,
            )
        except Exception:
            logger.exception(
                "Unexpected error in vector-change listener %s for user %s",
                type(listener).__name__,
                diagnosis.user_id,
            )
