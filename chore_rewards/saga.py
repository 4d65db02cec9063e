"""Multi-step writes with compensating actions.

The store only guarantees atomicity per call, so an operation that spans
several calls (insert a claim, then deduct points) records how to undo each
finished step. When a later step fails the finished steps are undone in
reverse order and the original error is raised again.
"""

import logging
from enum import Enum
from typing import Any, Callable, Optional

from .errors import CompensationFailure

logger = logging.getLogger(__name__)


class SagaState(str, Enum):
    running = "running"
    compensated = "compensated"
    compensation_failed = "compensation_failed"


class Saga:
    def __init__(self, name: str):
        self.name = name
        self.state = SagaState.running
        self._compensations: list[tuple[Callable[[Any], Any], Any]] = []

    def run_step(
        self,
        action: Callable[[], Any],
        compensate: Optional[Callable[[Any], Any]] = None,
    ):
        """Run ``action`` now; remember ``compensate(result)`` for rollback."""
        if self.state != SagaState.running:
            raise RuntimeError(f"Saga {self.name!r} already finished with state {self.state.value}")
        try:
            result = action()
        except Exception as exc:
            self._compensate(exc)
            raise
        if compensate is not None:
            self._compensations.append((compensate, result))
        return result

    def _compensate(self, original: Exception) -> None:
        logger.warning("%s failed (%s); undoing %d step(s)", self.name, original, len(self._compensations))
        for compensate, result in reversed(self._compensations):
            try:
                compensate(result)
            except Exception as exc:
                self.state = SagaState.compensation_failed
                logger.error("Could not undo a step of %s: %s", self.name, exc)
                raise CompensationFailure(
                    f"{original} The partial change could not be undone automatically.",
                    original,
                ) from original
        self._compensations.clear()
        self.state = SagaState.compensated
