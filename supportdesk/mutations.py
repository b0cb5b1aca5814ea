"""Retry and instrumentation wrapper for load-validate-mutate-persist sequences."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from supportdesk.core.logging import get_tracer
from supportdesk.errors import StaleWriteError
from supportdesk.metrics import MetricsRegistry, metrics_registry, track_duration
from supportdesk.metrics.definitions import MUTATION_DURATION, MUTATION_RETRIES, STORE_CONFLICTS

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")


class MutationRunner:
    """Run a whole mutation attempt, re-running it after a stale write.

    The callable must reload the entity on every call; a retry never re-saves
    an object loaded by a previous attempt. After ``retry_attempts`` retries
    the last :class:`StaleWriteError` propagates.
    """

    def __init__(self, *, retry_attempts: int = 1, metrics: MetricsRegistry | None = None) -> None:
        if retry_attempts < 0:
            raise ValueError("retry_attempts must be zero or greater")
        self.retry_attempts = retry_attempts
        metrics = metrics or metrics_registry
        self._conflicts = metrics.counter(STORE_CONFLICTS, label_names=("entity",))
        self._retries = metrics.counter(MUTATION_RETRIES, label_names=("operation",))
        self._duration = metrics.distribution(MUTATION_DURATION, label_names=("operation",))

    async def run(self, operation: str, attempt: Callable[[], Awaitable[T]]) -> T:
        labels = {"operation": operation}
        with tracer.start_as_current_span(f"supportdesk.{operation}") as span:
            with track_duration(self._duration, labels=labels):
                tries = 0
                while True:
                    try:
                        return await attempt()
                    except StaleWriteError as exc:
                        self._conflicts.inc(labels={"entity": exc.entity})
                        span.add_event("stale_write", {"entity": exc.entity, "entity_id": exc.entity_id})
                        if tries >= self.retry_attempts:
                            logger.info("Giving up on %s after %d retries: %s", operation, tries, exc)
                            raise
                        tries += 1
                        self._retries.inc(labels=labels)
                        logger.debug("Retrying %s after stale write on %s %s", operation, exc.entity, exc.entity_id)
