from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from supportdesk.chat.models import ChatMessage, ChatSession
from supportdesk.chat.state import ChatSessionStatus
from supportdesk.errors import StaleWriteError
from supportdesk.identity.models import UserAccount
from supportdesk.tickets.models import Ticket, TicketReply


@dataclass(slots=True, frozen=True)
class AuditRecord:
    id: str
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str
    before: Mapping[str, Any] | None
    after: Mapping[str, Any] | None
    created_at: datetime


class InMemorySupportStore:
    """Process-local store with the same version checks as the SQL store.

    Entities are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._users: dict[str, UserAccount] = {}
        self._tickets: dict[str, Ticket] = {}
        self._replies: dict[str, list[TicketReply]] = {}
        self._sessions: dict[str, ChatSession] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self.audit_records: list[AuditRecord] = []

    async def ensure_schema(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # Seeding helpers used by development setups and tests.
    def add_user(self, account: UserAccount) -> None:
        self._users[account.user_id] = account

    def add_ticket(self, ticket: Ticket) -> None:
        self._tickets[ticket.ticket_id] = replace(ticket)

    def add_session(self, session: ChatSession) -> None:
        self._sessions[session.chat_session_id] = replace(session)
        self._messages.setdefault(session.chat_session_id, [])

    async def get_user(self, user_id: str) -> UserAccount | None:
        return self._users.get(user_id)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return replace(ticket) if ticket is not None else None

    async def save_ticket(self, ticket: Ticket) -> Ticket:
        async with self._lock:
            return self._save_ticket_locked(ticket)

    async def add_reply(self, ticket: Ticket, reply: TicketReply) -> Ticket:
        async with self._lock:
            saved = self._save_ticket_locked(ticket)
            self._replies.setdefault(ticket.ticket_id, []).append(reply)
            return saved

    def _save_ticket_locked(self, ticket: Ticket) -> Ticket:
        current = self._tickets.get(ticket.ticket_id)
        if current is None or current.version != ticket.version:
            raise StaleWriteError("Ticket", ticket.ticket_id)
        stored = replace(ticket, version=ticket.version + 1)
        self._tickets[ticket.ticket_id] = stored
        return replace(stored)

    async def list_replies(self, ticket_id: str) -> Sequence[TicketReply]:
        return sorted(self._replies.get(ticket_id, ()), key=lambda reply: reply.sent_at)

    async def list_active_tickets(self) -> Sequence[Ticket]:
        return [replace(ticket) for ticket in self._tickets.values() if not ticket.is_terminal]

    async def get_session(self, session_id: str) -> ChatSession | None:
        session = self._sessions.get(session_id)
        return replace(session) if session is not None else None

    async def create_session(self, session: ChatSession) -> ChatSession:
        async with self._lock:
            self._sessions[session.chat_session_id] = replace(session)
            self._messages.setdefault(session.chat_session_id, [])
            return replace(session)

    async def save_session(self, session: ChatSession) -> ChatSession:
        async with self._lock:
            return self._save_session_locked(session)

    async def append_message(self, session: ChatSession, message: ChatMessage) -> ChatSession:
        async with self._lock:
            saved = self._save_session_locked(session)
            self._messages.setdefault(session.chat_session_id, []).append(message)
            return saved

    def _save_session_locked(self, session: ChatSession) -> ChatSession:
        current = self._sessions.get(session.chat_session_id)
        if current is None or current.version != session.version:
            raise StaleWriteError("SupportChatSession", session.chat_session_id)
        stored = replace(session, version=session.version + 1)
        self._sessions[session.chat_session_id] = stored
        return replace(stored)

    async def list_messages(self, session_id: str) -> Sequence[ChatMessage]:
        return sorted(self._messages.get(session_id, ()), key=lambda message: message.sent_at)

    async def find_open_session(self, customer_id: str) -> ChatSession | None:
        candidates = [
            session
            for session in self._sessions.values()
            if session.customer_id == customer_id and session.status.is_open
        ]
        if not candidates:
            return None
        return replace(max(candidates, key=lambda session: session.started_at))

    async def find_last_closed_session(self, customer_id: str) -> ChatSession | None:
        candidates = [
            session
            for session in self._sessions.values()
            if session.customer_id == customer_id and session.status is ChatSessionStatus.CLOSED
        ]
        if not candidates:
            return None
        return replace(max(candidates, key=lambda session: session.closed_at or session.started_at))

    async def list_queue(self, *, offset: int, limit: int) -> Sequence[ChatSession]:
        queued = [session for session in self._sessions.values() if session.is_queued]
        queued.sort(key=lambda session: session.last_message_at or session.started_at)
        queued.sort(key=lambda session: session.priority_level, reverse=True)
        return [replace(session) for session in queued[offset : offset + limit]]

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
        self.audit_records.append(
            AuditRecord(
                id=str(uuid.uuid4()),
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                before=dict(before) if before is not None else None,
                after=dict(after) if after is not None else None,
                created_at=datetime.now(timezone.utc),
            )
        )
