from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Mapping

from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import AUDIT_FAILURES

if TYPE_CHECKING:
    from supportdesk.storage.base import AuditStore

logger = logging.getLogger(__name__)


class AuditLogger:
    """Fire-and-forget audit writer.

    ``log_async`` schedules the write and returns immediately; write failures
    are logged and counted, never raised to the caller.
    """

    def __init__(self, store: AuditStore, *, metrics: MetricsRegistry | None = None) -> None:
        self._store = store
        self._pending: set[asyncio.Task[None]] = set()
        self._failures = (metrics or metrics_registry).counter(AUDIT_FAILURES)

    def log_async(
        self,
        actor: str | None,
        action: str,
        entity_type: str,
        entity_id: str,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
    ) -> None:
        task = asyncio.create_task(
            self._write(
                actor_id=actor,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                before=before,
                after=after,
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, **entry: Any) -> None:
        try:
            await self._store.add_entry(**entry)
        except Exception:
            self._failures.inc()
            logger.exception(
                "Failed to write audit entry %s for %s %s",
                entry["action"],
                entry["entity_type"],
                entry["entity_id"],
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled writes; used on shutdown and in tests."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
