"""Store interfaces consumed by the support services.

Every save is a compare-and-set on the entity's ``version``: a writer whose
loaded version is no longer current gets :class:`StaleWriteError` and must
reload before trying again.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence

if TYPE_CHECKING:
    from supportdesk.chat.models import ChatMessage, ChatSession
    from supportdesk.identity.models import UserAccount
    from supportdesk.tickets.models import Ticket, TicketReply


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> UserAccount | None:
        ...


class TicketStore(Protocol):
    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ...

    async def save_ticket(self, ticket: Ticket) -> Ticket:
        """Persist ``ticket`` if its version is current; return it with the bumped version."""
        ...

    async def list_active_tickets(self) -> Sequence[Ticket]:
        ...

    async def add_reply(self, ticket: Ticket, reply: TicketReply) -> Ticket:
        """Insert ``reply`` and save ``ticket`` in one transaction."""
        ...

    async def list_replies(self, ticket_id: str) -> Sequence[TicketReply]:
        ...


class ChatStore(Protocol):
    async def get_session(self, session_id: str) -> ChatSession | None:
        ...

    async def create_session(self, session: ChatSession) -> ChatSession:
        ...

    async def save_session(self, session: ChatSession) -> ChatSession:
        ...

    async def append_message(self, session: ChatSession, message: ChatMessage) -> ChatSession:
        """Insert ``message`` and save ``session`` in one transaction."""
        ...

    async def list_messages(self, session_id: str) -> Sequence[ChatMessage]:
        ...

    async def find_open_session(self, customer_id: str) -> ChatSession | None:
        ...

    async def find_last_closed_session(self, customer_id: str) -> ChatSession | None:
        ...

    async def list_queue(self, *, offset: int, limit: int) -> Sequence[ChatSession]:
        ...


class AuditStore(Protocol):
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
        ...


class SupportStore(UserDirectory, TicketStore, ChatStore, AuditStore, Protocol):
    """Everything the application needs from one backing store."""

    async def ensure_schema(self) -> None:
        ...

    async def close(self) -> None:
        ...
