"""Outcome taxonomy shared by the ticket and chat services.

Every rejection carries the literal, user-visible reason string that clients
display; routes forward ``str(exc)`` unchanged.
"""

from __future__ import annotations


class SupportServiceError(RuntimeError):
    """Base error for support service outcomes other than success."""

    status_code = 500

    def __init__(self, reason: str = "") -> None:
        super().__init__(reason)
        self.reason = reason


class NotFoundError(SupportServiceError):
    """Raised when the targeted ticket, session or user id does not resolve."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidOperationError(SupportServiceError):
    """Raised when a business rule or state precondition is violated."""

    status_code = 400


class UnauthenticatedError(SupportServiceError):
    """Raised when no caller identity can be resolved."""

    status_code = 401

    def __init__(self, reason: str = "Unauthenticated") -> None:
        super().__init__(reason)


class ForbiddenError(SupportServiceError):
    """Raised when the caller is known but lacks the role or relationship."""

    status_code = 403


class ConflictError(SupportServiceError):
    """Raised when the requested change collides with the entity's current owner."""

    status_code = 409


class StaleWriteError(ConflictError):
    """Raised by a store when a concurrent writer committed first.

    The orchestrating services retry the whole load-validate-mutate sequence
    on this error; it reaches callers only when retries are exhausted.
    """

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} was modified concurrently, please retry")
        self.entity = entity
        self.entity_id = entity_id


# Literal reasons relied on by existing clients.
ACCOUNT_LOCKED = "Tài khoản đã bị khoá."
TICKET_LOCKED = "Ticket đã khoá."
INVALID_STAFF = "Nhân viên không hợp lệ (yêu cầu Customer Care Staff & Active)."
CLOSE_REQUIRES_NEW = "Chỉ đóng khi trạng thái Mới."
COMPLETE_REQUIRES_IN_PROGRESS = "Chỉ hoàn thành khi trạng thái Đang xử lý."
EMPTY_MESSAGE = "Nội dung tin nhắn trống."
SESSION_CLOSED = "Phiên chat đã đóng."

__all__ = [
    "ACCOUNT_LOCKED",
    "CLOSE_REQUIRES_NEW",
    "COMPLETE_REQUIRES_IN_PROGRESS",
    "ConflictError",
    "EMPTY_MESSAGE",
    "ForbiddenError",
    "INVALID_STAFF",
    "InvalidOperationError",
    "NotFoundError",
    "SESSION_CLOSED",
    "StaleWriteError",
    "SupportServiceError",
    "TICKET_LOCKED",
    "UnauthenticatedError",
]
