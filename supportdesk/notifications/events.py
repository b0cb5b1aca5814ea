from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

STAFF_CHANNEL = "staff"


def ticket_channel(ticket_id: str) -> str:
    return f"ticket:{ticket_id}"


def chat_channel(session_id: str) -> str:
    return f"support:{session_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


class EventType(str, Enum):
    TICKET_ASSIGNED = "ticket.assigned"
    TICKET_CLOSED = "ticket.closed"
    TICKET_COMPLETED = "ticket.completed"
    TICKET_REPLY = "ticket.reply"
    CHAT_MESSAGE = "chat.message"
    CHAT_SESSION_CREATED = "chat.session.created"
    CHAT_SESSION_UPDATED = "chat.session.updated"
    CHAT_SESSION_CLOSED = "chat.session.closed"

    @property
    def entity_key(self) -> str:
        return "ticketId" if self.value.startswith("ticket.") else "chatSessionId"


@dataclass(slots=True, frozen=True)
class Event:
    """Client-facing notification; delivery is best effort."""

    type: EventType
    entity_id: str
    payload: Mapping[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            self.type.entity_key: self.entity_id,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }
