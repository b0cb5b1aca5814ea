"""SLA status evaluation for tickets.

A ticket may carry a first-response deadline and a resolution deadline, both
measured from ``created_at``. Each deadline contributes a state:

* finished after the deadline -> ``Overdue``
* unfinished and past the deadline -> ``Overdue``
* unfinished and past ``warning_ratio`` of the window -> ``Warning``

The ticket's SLA status is the worst contribution; a ticket without deadlines
is always ``OK``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Ticket


class SlaState(str, Enum):
    OK = "OK"
    WARNING = "Warning"
    OVERDUE = "Overdue"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {SlaState.OK: 0, SlaState.WARNING: 1, SlaState.OVERDUE: 2}


def _worst(first: SlaState, second: SlaState) -> SlaState:
    return first if first.rank >= second.rank else second


@dataclass(slots=True, frozen=True)
class SlaPolicy:
    warning_ratio: float = 0.75

    def evaluate(self, ticket: "Ticket", now: datetime) -> SlaState:
        state = SlaState.OK
        windows = (
            (ticket.first_response_due_at, ticket.first_responded_at),
            (ticket.resolution_due_at, ticket.resolved_at),
        )
        for due, finished_at in windows:
            if due is None:
                continue
            state = _worst(state, self._evaluate_window(ticket.created_at, due, finished_at, now))
        return state

    def _evaluate_window(
        self,
        start: datetime,
        due: datetime,
        finished_at: datetime | None,
        now: datetime,
    ) -> SlaState:
        if due < start:
            due = start
        if finished_at is not None:
            return SlaState.OVERDUE if finished_at > due else SlaState.OK
        if now > due:
            return SlaState.OVERDUE
        warn_at = start + (due - start) * self.warning_ratio
        if now >= warn_at:
            return SlaState.WARNING
        return SlaState.OK
