"""Database models and utilities."""

from .models import (
    AuditLogTable,
    SupportChatMessageTable,
    SupportChatSessionTable,
    TicketReplyTable,
    TicketTable,
    UserTable,
)

__all__ = [
    "AuditLogTable",
    "SupportChatMessageTable",
    "SupportChatSessionTable",
    "TicketReplyTable",
    "TicketTable",
    "UserTable",
]
