from __future__ import annotations

from enum import Enum
from typing import Mapping

from supportdesk.errors import SESSION_CLOSED, InvalidOperationError

PREVIEW_LIMIT = 255

UNASSIGN_CLOSED = "Phiên chat đã đóng, không thể trả lại hàng chờ."
ASSIGN_CLOSED = "Phiên chat đã đóng, không thể gán nhân viên."
TRANSFER_CLOSED = "Phiên chat đã đóng, không thể chuyển nhân viên."


class ChatSessionStatus(str, Enum):
    WAITING = "Waiting"
    ACTIVE = "Active"
    CLOSED = "Closed"

    @classmethod
    def parse(cls, value: str | None) -> "ChatSessionStatus":
        text = (value or "").strip()
        return cls(text) if text else cls.WAITING

    @property
    def is_open(self) -> bool:
        return self is not ChatSessionStatus.CLOSED


class ChatEvent(str, Enum):
    POST = "post"
    CLAIM = "claim"
    UNASSIGN = "unassign"
    CLOSE = "close"
    ADMIN_ASSIGN = "admin_assign"
    ADMIN_TRANSFER = "admin_transfer"


class InvalidChatTransitionError(InvalidOperationError):
    """Raised when an event is not accepted in the session's current status."""

    def __init__(self, reason: str, *, status: ChatSessionStatus, event: ChatEvent) -> None:
        super().__init__(reason)
        self.status = status
        self.event = event


_W, _A, _C = ChatSessionStatus.WAITING, ChatSessionStatus.ACTIVE, ChatSessionStatus.CLOSED

# Each entry maps the current status to the next one; a string is the
# rejection reason for that status.
_TRANSITIONS: Mapping[ChatEvent, Mapping[ChatSessionStatus, ChatSessionStatus | str]] = {
    ChatEvent.POST: {_W: _W, _A: _A, _C: SESSION_CLOSED},
    ChatEvent.CLAIM: {_W: _A, _A: _A, _C: SESSION_CLOSED},
    ChatEvent.UNASSIGN: {_W: _W, _A: _W, _C: UNASSIGN_CLOSED},
    ChatEvent.CLOSE: {_W: _C, _A: _C, _C: _C},
    ChatEvent.ADMIN_ASSIGN: {_W: _W, _A: _A, _C: ASSIGN_CLOSED},
    ChatEvent.ADMIN_TRANSFER: {_W: _W, _A: _A, _C: TRANSFER_CLOSED},
}


class ChatSessionStateMachine:
    """Status transitions of a support chat session."""

    def __init__(
        self,
        transitions: Mapping[ChatEvent, Mapping[ChatSessionStatus, ChatSessionStatus | str]] | None = None,
    ) -> None:
        self._transitions = transitions or _TRANSITIONS

    @staticmethod
    def initial_state() -> ChatSessionStatus:
        return ChatSessionStatus.WAITING

    def can_apply(self, current: ChatSessionStatus, event: ChatEvent) -> bool:
        return isinstance(self._transitions[event][current], ChatSessionStatus)

    def next_status(self, current: ChatSessionStatus, event: ChatEvent) -> ChatSessionStatus:
        outcome = self._transitions[event][current]
        if not isinstance(outcome, ChatSessionStatus):
            raise InvalidChatTransitionError(outcome, status=current, event=event)
        return outcome


def build_preview(content: str) -> str:
    """Return the list-view preview of a message: the first 255 characters of the trimmed text."""

    return (content or "").strip()[:PREVIEW_LIMIT]


def clamp_priority(level: int | None) -> int:
    if level is None:
        return 1
    return max(1, min(3, level))
