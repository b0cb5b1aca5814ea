from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .state import ChatSessionStatus


@dataclass(slots=True)
class ChatSession:
    """A customer-initiated live conversation, optionally staffed."""

    chat_session_id: str
    customer_id: str
    status: ChatSessionStatus
    priority_level: int
    started_at: datetime
    assigned_staff_id: str | None = None
    closed_at: datetime | None = None
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    version: int = 1

    @property
    def is_queued(self) -> bool:
        return self.status is ChatSessionStatus.WAITING and self.assigned_staff_id is None

    def snapshot(self) -> dict[str, Any]:
        return {
            "chatSessionId": self.chat_session_id,
            "assignedStaffId": self.assigned_staff_id,
            "status": self.status.value,
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "chatSessionId": self.chat_session_id,
            "customerId": self.customer_id,
            "assignedStaffId": self.assigned_staff_id,
            "status": self.status.value,
            "priorityLevel": self.priority_level,
            "startedAt": self.started_at.isoformat(),
            "closedAt": self.closed_at.isoformat() if self.closed_at else None,
            "lastMessageAt": self.last_message_at.isoformat() if self.last_message_at else None,
            "lastMessagePreview": self.last_message_preview,
        }


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """Append-only message belonging to exactly one session."""

    message_id: str
    chat_session_id: str
    sender_id: str
    is_from_staff: bool
    content: str
    sent_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "messageId": self.message_id,
            "chatSessionId": self.chat_session_id,
            "senderId": self.sender_id,
            "isFromStaff": self.is_from_staff,
            "content": self.content,
            "sentAt": self.sent_at.isoformat(),
        }


@dataclass(slots=True)
class OpenSessionResult:
    session: ChatSession
    is_new: bool
    last_closed_session: ChatSession | None = None
    initial_message: ChatMessage | None = None

    @property
    def has_previous_closed_session(self) -> bool:
        return self.is_new and self.last_closed_session is not None

    def to_payload(self) -> dict[str, Any]:
        payload = self.session.to_payload()
        closed = self.last_closed_session if self.is_new else None
        payload.update(
            {
                "isNew": self.is_new,
                "hasPreviousClosedSession": self.has_previous_closed_session,
                "lastClosedSessionId": closed.chat_session_id if closed else None,
                "lastClosedAt": (closed.closed_at or closed.started_at).isoformat() if closed else None,
            }
        )
        return payload
