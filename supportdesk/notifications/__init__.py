"""Real-time notification fan-out."""

from .events import STAFF_CHANNEL, Event, EventType, chat_channel, ticket_channel, user_channel
from .hub import NotificationHub, Publisher
from .subscribers import QueueSubscriber, Subscriber, SubscriberOverflowError, WebSocketSubscriber

__all__ = [
    "Event",
    "EventType",
    "NotificationHub",
    "Publisher",
    "QueueSubscriber",
    "STAFF_CHANNEL",
    "Subscriber",
    "SubscriberOverflowError",
    "WebSocketSubscriber",
    "chat_channel",
    "ticket_channel",
    "user_channel",
]
