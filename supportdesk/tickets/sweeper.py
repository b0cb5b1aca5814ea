from __future__ import annotations

import asyncio
import contextlib
import logging

from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import SLA_SWEEP_FAILURES

from .service import TicketService

logger = logging.getLogger(__name__)


class SlaSweeper:
    """Background task refreshing ticket SLA statuses on a fixed interval."""

    def __init__(
        self,
        service: TicketService,
        *,
        interval_seconds: float = 300.0,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than zero")
        self._service = service
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._failures = (metrics or metrics_registry).counter(SLA_SWEEP_FAILURES)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="sla-sweeper")
        logger.info("SLA sweeper started (every %.0fs)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("SLA sweeper stopped")

    async def run_once(self) -> int:
        try:
            changed = await self._service.refresh_sla_statuses()
        except Exception:
            self._failures.inc()
            logger.exception("SLA sweep failed")
            return 0
        if changed:
            logger.info("SLA sweep updated %d tickets", changed)
        return changed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()
