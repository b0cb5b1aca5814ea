from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from supportdesk.chat.models import ChatMessage, ChatSession
from supportdesk.chat.state import ChatSessionStatus
from supportdesk.db.models import (
    AuditLogTable,
    SupportChatMessageTable,
    SupportChatSessionTable,
    TicketReplyTable,
    TicketTable,
    UserTable,
)
from supportdesk.errors import StaleWriteError
from supportdesk.identity.models import UserAccount, normalize_roles
from supportdesk.tickets.models import Ticket, TicketReply
from supportdesk.tickets.state import AssignmentState, TicketStatus

logger = logging.getLogger(__name__)


def to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


class SqlSupportStore:
    """Persistence for users, tickets, replies, chat sessions, messages and audit rows.

    Ticket and session updates are issued as ``UPDATE ... WHERE id = :id AND
    version = :version``; zero affected rows means another writer got there
    first and surfaces as :class:`StaleWriteError`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_dsn(cls, dsn: str) -> "SqlSupportStore":
        engine = create_async_engine(to_asyncpg_dsn(dsn), future=True)
        return cls(async_sessionmaker(engine, expire_on_commit=False), engine=engine)

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    async def add_user(self, account: UserAccount, *, role_codes: Sequence[str] | None = None) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    UserTable(
                        id=account.user_id,
                        email=account.email,
                        full_name=account.full_name,
                        status=account.status,
                        role_codes=list(role_codes if role_codes is not None else sorted(account.roles)),
                        support_priority_level=account.support_priority_level,
                    )
                )

    async def add_ticket(self, ticket: Ticket) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(TicketTable(id=ticket.ticket_id, **self._ticket_values(ticket), version=ticket.version))

    async def get_user(self, user_id: str) -> UserAccount | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
        if row is None:
            return None
        return UserAccount(
            user_id=row.id,
            roles=normalize_roles(row.role_codes or ()),
            status=row.status or "Active",
            email=row.email,
            full_name=row.full_name,
            support_priority_level=row.support_priority_level,
        )

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
        return self._table_to_ticket(row) if row is not None else None

    async def save_ticket(self, ticket: Ticket) -> Ticket:
        async with self._session_factory() as session:
            async with session.begin():
                await self._update_ticket(session, ticket)
        return replace(ticket, version=ticket.version + 1)

    async def add_reply(self, ticket: Ticket, reply: TicketReply) -> Ticket:
        async with self._session_factory() as session:
            async with session.begin():
                await self._update_ticket(session, ticket)
                session.add(
                    TicketReplyTable(
                        id=reply.reply_id,
                        ticket_id=reply.ticket_id,
                        sender_id=reply.sender_id,
                        is_staff_reply=reply.is_staff_reply,
                        message=reply.message,
                        sent_at=reply.sent_at,
                    )
                )
        return replace(ticket, version=ticket.version + 1)

    async def list_replies(self, ticket_id: str) -> Sequence[TicketReply]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketReplyTable)
                .where(TicketReplyTable.ticket_id == ticket_id)
                .order_by(TicketReplyTable.sent_at.asc())
            )
            return [self._table_to_reply(row) for row in result.scalars().all()]

    async def list_active_tickets(self) -> Sequence[Ticket]:
        terminal = (TicketStatus.CLOSED.value, TicketStatus.COMPLETED.value)
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable).where(TicketTable.status.not_in(terminal)).order_by(TicketTable.created_at.asc())
            )
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def get_session(self, session_id: str) -> ChatSession | None:
        async with self._session_factory() as session:
            row = await session.get(SupportChatSessionTable, session_id)
        return self._table_to_session(row) if row is not None else None

    async def create_session(self, chat_session: ChatSession) -> ChatSession:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    SupportChatSessionTable(
                        id=chat_session.chat_session_id,
                        **self._session_values(chat_session),
                        version=chat_session.version,
                    )
                )
        return chat_session

    async def save_session(self, chat_session: ChatSession) -> ChatSession:
        async with self._session_factory() as session:
            async with session.begin():
                await self._update_session(session, chat_session)
        return replace(chat_session, version=chat_session.version + 1)

    async def append_message(self, chat_session: ChatSession, message: ChatMessage) -> ChatSession:
        async with self._session_factory() as session:
            async with session.begin():
                await self._update_session(session, chat_session)
                session.add(
                    SupportChatMessageTable(
                        id=message.message_id,
                        chat_session_id=message.chat_session_id,
                        sender_id=message.sender_id,
                        is_from_staff=message.is_from_staff,
                        content=message.content,
                        sent_at=message.sent_at,
                    )
                )
        return replace(chat_session, version=chat_session.version + 1)

    async def list_messages(self, session_id: str) -> Sequence[ChatMessage]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SupportChatMessageTable)
                .where(SupportChatMessageTable.chat_session_id == session_id)
                .order_by(SupportChatMessageTable.sent_at.asc())
            )
            return [self._table_to_message(row) for row in result.scalars().all()]

    async def find_open_session(self, customer_id: str) -> ChatSession | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SupportChatSessionTable)
                .where(
                    SupportChatSessionTable.customer_id == customer_id,
                    SupportChatSessionTable.status != ChatSessionStatus.CLOSED.value,
                )
                .order_by(SupportChatSessionTable.started_at.desc())
                .limit(1)
            )
            row = result.scalars().first()
        return self._table_to_session(row) if row is not None else None

    async def find_last_closed_session(self, customer_id: str) -> ChatSession | None:
        closed_or_started = func.coalesce(SupportChatSessionTable.closed_at, SupportChatSessionTable.started_at)
        async with self._session_factory() as session:
            result = await session.execute(
                select(SupportChatSessionTable)
                .where(
                    SupportChatSessionTable.customer_id == customer_id,
                    SupportChatSessionTable.status == ChatSessionStatus.CLOSED.value,
                )
                .order_by(closed_or_started.desc())
                .limit(1)
            )
            row = result.scalars().first()
        return self._table_to_session(row) if row is not None else None

    async def list_queue(self, *, offset: int, limit: int) -> Sequence[ChatSession]:
        waiting_since = func.coalesce(SupportChatSessionTable.last_message_at, SupportChatSessionTable.started_at)
        async with self._session_factory() as session:
            result = await session.execute(
                select(SupportChatSessionTable)
                .where(
                    SupportChatSessionTable.status == ChatSessionStatus.WAITING.value,
                    SupportChatSessionTable.assigned_staff_id.is_(None),
                )
                .order_by(SupportChatSessionTable.priority_level.desc(), waiting_since.asc())
                .offset(offset)
                .limit(limit)
            )
            return [self._table_to_session(row) for row in result.scalars().all()]

    async def add_entry(
        self,
        *,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    AuditLogTable(
                        actor_id=actor_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        before=dict(before) if before is not None else None,
                        after=dict(after) if after is not None else None,
                    )
                )

    async def _update_ticket(self, session: AsyncSession, ticket: Ticket) -> None:
        result = await session.execute(
            update(TicketTable)
            .where(TicketTable.id == ticket.ticket_id, TicketTable.version == ticket.version)
            .values(**self._ticket_values(ticket), version=ticket.version + 1)
        )
        if result.rowcount != 1:
            logger.debug("Stale write on ticket %s at version %s", ticket.ticket_id, ticket.version)
            raise StaleWriteError("Ticket", ticket.ticket_id)

    async def _update_session(self, session: AsyncSession, chat_session: ChatSession) -> None:
        result = await session.execute(
            update(SupportChatSessionTable)
            .where(
                SupportChatSessionTable.id == chat_session.chat_session_id,
                SupportChatSessionTable.version == chat_session.version,
            )
            .values(**self._session_values(chat_session), version=chat_session.version + 1)
        )
        if result.rowcount != 1:
            logger.debug(
                "Stale write on chat session %s at version %s", chat_session.chat_session_id, chat_session.version
            )
            raise StaleWriteError("SupportChatSession", chat_session.chat_session_id)

    @staticmethod
    def _ticket_values(ticket: Ticket) -> dict[str, Any]:
        return {
            "ticket_code": ticket.ticket_code,
            "subject": ticket.subject,
            "customer_id": ticket.customer_id,
            "status": ticket.status.value,
            "assignment_state": ticket.assignment_state.value,
            "assignee_id": ticket.assignee_id,
            "severity": ticket.severity,
            "priority_level": ticket.priority_level,
            "sla_status": ticket.sla_status,
            "created_at": ticket.created_at,
            "updated_at": ticket.updated_at,
            "resolved_at": ticket.resolved_at,
            "first_response_due_at": ticket.first_response_due_at,
            "resolution_due_at": ticket.resolution_due_at,
            "first_responded_at": ticket.first_responded_at,
        }

    @staticmethod
    def _session_values(chat_session: ChatSession) -> dict[str, Any]:
        return {
            "customer_id": chat_session.customer_id,
            "assigned_staff_id": chat_session.assigned_staff_id,
            "status": chat_session.status.value,
            "priority_level": chat_session.priority_level,
            "started_at": chat_session.started_at,
            "closed_at": chat_session.closed_at,
            "last_message_at": chat_session.last_message_at,
            "last_message_preview": chat_session.last_message_preview,
        }

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            ticket_id=row.id,
            ticket_code=row.ticket_code,
            subject=row.subject,
            customer_id=row.customer_id,
            status=TicketStatus.parse(row.status),
            assignment_state=AssignmentState.parse(row.assignment_state),
            assignee_id=row.assignee_id,
            severity=row.severity,
            priority_level=row.priority_level,
            sla_status=row.sla_status,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_optional_datetime(row.updated_at),
            resolved_at=_optional_datetime(row.resolved_at),
            first_response_due_at=_optional_datetime(row.first_response_due_at),
            resolution_due_at=_optional_datetime(row.resolution_due_at),
            first_responded_at=_optional_datetime(row.first_responded_at),
            version=row.version,
        )

    @staticmethod
    def _table_to_reply(row: TicketReplyTable) -> TicketReply:
        return TicketReply(
            reply_id=row.id,
            ticket_id=row.ticket_id,
            sender_id=row.sender_id,
            is_staff_reply=row.is_staff_reply,
            message=row.message,
            sent_at=_ensure_datetime(row.sent_at),
        )

    @staticmethod
    def _table_to_session(row: SupportChatSessionTable) -> ChatSession:
        return ChatSession(
            chat_session_id=row.id,
            customer_id=row.customer_id,
            status=ChatSessionStatus.parse(row.status),
            priority_level=row.priority_level,
            started_at=_ensure_datetime(row.started_at),
            assigned_staff_id=row.assigned_staff_id,
            closed_at=_optional_datetime(row.closed_at),
            last_message_at=_optional_datetime(row.last_message_at),
            last_message_preview=row.last_message_preview,
            version=row.version,
        )

    @staticmethod
    def _table_to_message(row: SupportChatMessageTable) -> ChatMessage:
        return ChatMessage(
            message_id=row.id,
            chat_session_id=row.chat_session_id,
            sender_id=row.sender_id,
            is_from_staff=row.is_from_staff,
            content=row.content,
            sent_at=_ensure_datetime(row.sent_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def _optional_datetime(value: datetime | None) -> datetime | None:
    return _ensure_datetime(value) if value is not None else None
