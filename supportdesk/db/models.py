"""SQLModel table definitions for the support desk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    return str(uuid.uuid4())


class UserTable(SQLModel, table=True):
    """User accounts as seen by the support core; role codes are stored raw."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    full_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    status: str | None = Field(default="Active", sa_column=Column(String(50), nullable=True))
    role_codes: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    support_priority_level: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Support tickets; ``version`` guards concurrent updates."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_code: str = Field(sa_column=Column(String(50), nullable=False, unique=True))
    subject: str = Field(sa_column=Column(String(255), nullable=False))
    customer_id: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("users.id"), nullable=True)
    )
    status: str = Field(default="New", sa_column=Column(String(30), nullable=False))
    assignment_state: str = Field(default="Unassigned", sa_column=Column(String(30), nullable=False))
    assignee_id: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("users.id"), nullable=True)
    )
    severity: str = Field(default="Medium", sa_column=Column(String(30), nullable=False))
    priority_level: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    sla_status: str = Field(default="OK", sa_column=Column(String(30), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    first_response_due_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolution_due_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    first_responded_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False))


class TicketReplyTable(SQLModel, table=True):
    __tablename__ = "ticket_replies"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    sender_id: str = Field(sa_column=Column(String(36), nullable=False))
    is_staff_reply: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    sent_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class SupportChatSessionTable(SQLModel, table=True):
    __tablename__ = "support_chat_sessions"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    customer_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False, index=True))
    assigned_staff_id: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("users.id"), nullable=True)
    )
    status: str = Field(default="Waiting", sa_column=Column(String(30), nullable=False))
    priority_level: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    started_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    closed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    last_message_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    last_message_preview: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False))


class SupportChatMessageTable(SQLModel, table=True):
    __tablename__ = "support_chat_messages"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    chat_session_id: str = Field(
        sa_column=Column(
            String(36), ForeignKey("support_chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    sender_id: str = Field(sa_column=Column(String(36), nullable=False))
    is_from_staff: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    sent_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditLogTable(SQLModel, table=True):
    """Audit trail of support actions with before/after snapshots."""

    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    actor_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    action: str = Field(sa_column=Column(String(100), nullable=False))
    entity_type: str = Field(sa_column=Column(String(100), nullable=False))
    entity_id: str = Field(sa_column=Column(String(100), nullable=False))
    before: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    after: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
