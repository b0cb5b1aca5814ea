from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Mapping

from supportdesk.errors import (
    CLOSE_REQUIRES_NEW,
    COMPLETE_REQUIRES_IN_PROGRESS,
    TICKET_LOCKED,
    InvalidOperationError,
)

from .sla import SlaPolicy

if TYPE_CHECKING:
    from .models import Ticket

CLAIM_LOCKED = "Ticket đã khoá, không thể nhận thêm."
CLAIM_TAKEN = "Ticket đã có người xử lý, không thể nhận thêm."


class TicketStatus(str, Enum):
    """Workflow states of a ticket."""

    NEW = "New"
    IN_PROGRESS = "InProgress"
    CLOSED = "Closed"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, value: str | None) -> "TicketStatus":
        """Parse a stored status; blank and the legacy ``Open`` mean ``New``."""

        text = (value or "").strip()
        if not text or text.lower() == "open":
            return cls.NEW
        return cls(text)

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.CLOSED, TicketStatus.COMPLETED)


class AssignmentState(str, Enum):
    UNASSIGNED = "Unassigned"
    ASSIGNED = "Assigned"

    @classmethod
    def parse(cls, value: str | None) -> "AssignmentState":
        text = (value or "").strip()
        return cls(text) if text else cls.UNASSIGNED


class TicketAction(str, Enum):
    ASSIGN = "assign"
    CLAIM = "claim"
    CLOSE = "close"
    COMPLETE = "complete"
    REPLY = "reply"


class InvalidTicketTransitionError(InvalidOperationError):
    """Raised when an action is not legal from the ticket's current status."""

    def __init__(self, reason: str, *, status: TicketStatus, action: TicketAction) -> None:
        super().__init__(reason)
        self.status = status
        self.action = action


@dataclass(slots=True, frozen=True)
class Rejection:
    reason: str


Outcome = TicketStatus | Rejection


class TicketStateMachine:
    """Status x action table plus the field effects of each legal transition."""

    _TRANSITIONS: Mapping[tuple[TicketStatus, TicketAction], Outcome] = {
        (TicketStatus.NEW, TicketAction.ASSIGN): TicketStatus.IN_PROGRESS,
        (TicketStatus.IN_PROGRESS, TicketAction.ASSIGN): TicketStatus.IN_PROGRESS,
        (TicketStatus.CLOSED, TicketAction.ASSIGN): Rejection(TICKET_LOCKED),
        (TicketStatus.COMPLETED, TicketAction.ASSIGN): Rejection(TICKET_LOCKED),
        (TicketStatus.NEW, TicketAction.CLAIM): TicketStatus.IN_PROGRESS,
        (TicketStatus.IN_PROGRESS, TicketAction.CLAIM): TicketStatus.IN_PROGRESS,
        (TicketStatus.CLOSED, TicketAction.CLAIM): Rejection(CLAIM_LOCKED),
        (TicketStatus.COMPLETED, TicketAction.CLAIM): Rejection(CLAIM_LOCKED),
        (TicketStatus.NEW, TicketAction.CLOSE): TicketStatus.CLOSED,
        (TicketStatus.IN_PROGRESS, TicketAction.CLOSE): Rejection(CLOSE_REQUIRES_NEW),
        (TicketStatus.CLOSED, TicketAction.CLOSE): Rejection(TICKET_LOCKED),
        (TicketStatus.COMPLETED, TicketAction.CLOSE): Rejection(TICKET_LOCKED),
        (TicketStatus.NEW, TicketAction.COMPLETE): Rejection(COMPLETE_REQUIRES_IN_PROGRESS),
        (TicketStatus.IN_PROGRESS, TicketAction.COMPLETE): TicketStatus.COMPLETED,
        (TicketStatus.CLOSED, TicketAction.COMPLETE): Rejection(TICKET_LOCKED),
        (TicketStatus.COMPLETED, TicketAction.COMPLETE): Rejection(TICKET_LOCKED),
        (TicketStatus.NEW, TicketAction.REPLY): TicketStatus.IN_PROGRESS,
        (TicketStatus.IN_PROGRESS, TicketAction.REPLY): TicketStatus.IN_PROGRESS,
        (TicketStatus.CLOSED, TicketAction.REPLY): TicketStatus.CLOSED,
        (TicketStatus.COMPLETED, TicketAction.REPLY): TicketStatus.COMPLETED,
    }

    def __init__(self, sla_policy: SlaPolicy | None = None) -> None:
        self._sla_policy = sla_policy or SlaPolicy()

    @classmethod
    def initial_state(cls) -> tuple[TicketStatus, AssignmentState]:
        return TicketStatus.NEW, AssignmentState.UNASSIGNED

    @classmethod
    def transitions(cls) -> Mapping[tuple[TicketStatus, TicketAction], Outcome]:
        return dict(cls._TRANSITIONS)

    def can_transition(self, current: TicketStatus, action: TicketAction) -> bool:
        return isinstance(self._TRANSITIONS[(current, action)], TicketStatus)

    def next_status(self, current: TicketStatus, action: TicketAction) -> TicketStatus:
        outcome = self._TRANSITIONS[(current, action)]
        if isinstance(outcome, Rejection):
            raise InvalidTicketTransitionError(outcome.reason, status=current, action=action)
        return outcome

    def assert_transition(self, current: TicketStatus, action: TicketAction) -> None:
        self.next_status(current, action)

    def assign(self, ticket: "Ticket", assignee_id: str, now: datetime) -> "Ticket":
        """Point the ticket at ``assignee_id``; New tickets move to InProgress."""

        status = self.next_status(ticket.status, TicketAction.ASSIGN)
        return replace(
            ticket,
            assignee_id=assignee_id,
            assignment_state=AssignmentState.ASSIGNED,
            status=status,
            updated_at=now,
        )

    def claim(self, ticket: "Ticket", assignee_id: str, now: datetime) -> "Ticket":
        status = self.next_status(ticket.status, TicketAction.CLAIM)
        if ticket.assignee_id is not None:
            raise InvalidTicketTransitionError(CLAIM_TAKEN, status=ticket.status, action=TicketAction.CLAIM)
        return replace(
            ticket,
            assignee_id=assignee_id,
            assignment_state=AssignmentState.ASSIGNED,
            status=status,
            updated_at=now,
        )

    def close(self, ticket: "Ticket", now: datetime) -> "Ticket":
        return self._resolve(ticket, TicketAction.CLOSE, now)

    def complete(self, ticket: "Ticket", now: datetime) -> "Ticket":
        return self._resolve(ticket, TicketAction.COMPLETE, now)

    def reply(self, ticket: "Ticket", *, from_staff: bool, now: datetime) -> "Ticket":
        """Record a reply on the ticket.

        The first staff reply stamps ``first_responded_at`` and pulls a New
        ticket into InProgress; customer replies only touch ``updated_at``.
        """

        if from_staff:
            updated = replace(
                ticket,
                status=self.next_status(ticket.status, TicketAction.REPLY),
                first_responded_at=ticket.first_responded_at or now,
                updated_at=now,
            )
        else:
            updated = replace(ticket, updated_at=now)
        return self.refresh_sla(updated, now)

    def refresh_sla(self, ticket: "Ticket", now: datetime) -> "Ticket":
        return replace(ticket, sla_status=self._sla_policy.evaluate(ticket, now).value)

    def _resolve(self, ticket: "Ticket", action: TicketAction, now: datetime) -> "Ticket":
        status = self.next_status(ticket.status, action)
        resolved = replace(
            ticket,
            status=status,
            resolved_at=ticket.resolved_at or now,
            updated_at=now,
        )
        return self.refresh_sla(resolved, now)
