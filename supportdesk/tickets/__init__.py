"""Ticket lifecycle: state machine, SLA evaluation and orchestration."""

from .models import Ticket, TicketReply
from .service import TicketService
from .sla import SlaPolicy, SlaState
from .state import (
    AssignmentState,
    InvalidTicketTransitionError,
    TicketAction,
    TicketStateMachine,
    TicketStatus,
)
from .sweeper import SlaSweeper

__all__ = [
    "AssignmentState",
    "InvalidTicketTransitionError",
    "SlaPolicy",
    "SlaState",
    "SlaSweeper",
    "Ticket",
    "TicketAction",
    "TicketReply",
    "TicketService",
    "TicketStateMachine",
    "TicketStatus",
]
