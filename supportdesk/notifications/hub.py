"""Process-wide fan-out of support events to connected subscribers."""

from __future__ import annotations

import asyncio
import logging
from threading import Lock
from typing import Iterable, Protocol

from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import HUB_DELIVERIES, HUB_DELIVERY_FAILURES

from .events import Event
from .subscribers import Subscriber

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def subscribe(self, channel: str, subscriber: Subscriber) -> None:
        ...

    def unsubscribe(self, channel: str, subscriber: Subscriber) -> None:
        ...

    async def publish(self, channel: str, event: Event) -> int:
        ...

    async def publish_many(self, channels: Iterable[str], event: Event) -> int:
        ...


class NotificationHub:
    """Channel registry plus best-effort broadcast.

    Membership changes happen under a lock; a broadcast takes a snapshot of the
    subscriber sets under that lock and sends outside it. Each send is bounded
    by ``send_timeout``; a subscriber whose send fails is removed from every
    channel and never fails the broadcast.
    """

    def __init__(self, *, send_timeout: float = 5.0, metrics: MetricsRegistry | None = None) -> None:
        self._send_timeout = send_timeout
        self._channels: dict[str, dict[str, Subscriber]] = {}
        self._lock = Lock()
        metrics = metrics or metrics_registry
        self._deliveries = metrics.counter(HUB_DELIVERIES, label_names=("event",))
        self._failures = metrics.counter(HUB_DELIVERY_FAILURES, label_names=("event",))

    def subscribe(self, channel: str, subscriber: Subscriber) -> None:
        with self._lock:
            self._channels.setdefault(channel, {})[subscriber.subscriber_id] = subscriber
        logger.debug("Subscriber %s joined %s", subscriber.subscriber_id, channel)

    def unsubscribe(self, channel: str, subscriber: Subscriber) -> None:
        with self._lock:
            members = self._channels.get(channel)
            if members is None:
                return
            members.pop(subscriber.subscriber_id, None)
            if not members:
                del self._channels[channel]

    def unsubscribe_all(self, subscriber: Subscriber) -> None:
        with self._lock:
            for channel in list(self._channels):
                members = self._channels[channel]
                members.pop(subscriber.subscriber_id, None)
                if not members:
                    del self._channels[channel]

    def subscribers(self, channel: str) -> tuple[Subscriber, ...]:
        with self._lock:
            return tuple(self._channels.get(channel, {}).values())

    def channels(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._channels)

    async def publish(self, channel: str, event: Event) -> int:
        return await self.publish_many((channel,), event)

    async def publish_many(self, channels: Iterable[str], event: Event) -> int:
        """Send ``event`` once to every subscriber of any of ``channels``.

        Returns the number of successful deliveries.
        """

        with self._lock:
            targets: dict[str, Subscriber] = {}
            for channel in channels:
                targets.update(self._channels.get(channel, {}))
        if not targets:
            return 0

        message = event.to_message()
        recipients = list(targets.values())
        results = await asyncio.gather(
            *(asyncio.wait_for(subscriber.send(message), timeout=self._send_timeout) for subscriber in recipients),
            return_exceptions=True,
        )

        delivered = 0
        labels = {"event": event.type.value}
        for subscriber, result in zip(recipients, results):
            # Cancelling the publisher itself raises from gather; a cancelled send is a failed delivery.
            if isinstance(result, BaseException):
                logger.warning(
                    "Dropping subscriber %s after failed %s delivery: %r",
                    subscriber.subscriber_id,
                    event.type.value,
                    result,
                )
                self._failures.inc(labels=labels)
                self.unsubscribe_all(subscriber)
            else:
                delivered += 1
        if delivered:
            self._deliveries.inc(delivered, labels=labels)
        return delivered
