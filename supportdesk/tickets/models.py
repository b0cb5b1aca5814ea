from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .state import AssignmentState, TicketStatus


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a customer support ticket."""

    ticket_id: str
    ticket_code: str
    subject: str
    customer_id: str | None
    status: TicketStatus
    assignment_state: AssignmentState
    assignee_id: str | None
    severity: str
    priority_level: int
    sla_status: str
    created_at: datetime
    updated_at: datetime | None = None
    resolved_at: datetime | None = None
    first_response_due_at: datetime | None = None
    resolution_due_at: datetime | None = None
    first_responded_at: datetime | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def assignment_snapshot(self) -> dict[str, Any]:
        return {
            "ticketId": self.ticket_id,
            "assigneeId": self.assignee_id,
            "assignmentState": self.assignment_state.value,
            "status": self.status.value,
        }

    def resolution_snapshot(self) -> dict[str, Any]:
        return {
            "ticketId": self.ticket_id,
            "status": self.status.value,
            "slaStatus": self.sla_status,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "ticketId": self.ticket_id,
            "ticketCode": self.ticket_code,
            "subject": self.subject,
            "status": self.status.value,
            "assignmentState": self.assignment_state.value,
            "assigneeId": self.assignee_id,
            "severity": self.severity,
            "priorityLevel": self.priority_level,
            "slaStatus": self.sla_status,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass(slots=True, frozen=True)
class TicketReply:
    """Append-only message posted on a ticket by its owner or by staff."""

    reply_id: str
    ticket_id: str
    sender_id: str
    is_staff_reply: bool
    message: str
    sent_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "replyId": self.reply_id,
            "ticketId": self.ticket_id,
            "senderId": self.sender_id,
            "isStaffReply": self.is_staff_reply,
            "message": self.message,
            "sentAt": self.sent_at.isoformat(),
        }
