from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

import pytest

from supportdesk.audit import AuditLogger
from supportdesk.chat import ChatSession, ChatSessionStatus, SupportChatService
from supportdesk.identity import CallerContext, IdentityGate, Role, UserAccount
from supportdesk.metrics import MetricsRegistry, register_default_metrics
from supportdesk.mutations import MutationRunner
from supportdesk.notifications import NotificationHub
from supportdesk.storage import InMemorySupportStore
from supportdesk.tickets import AssignmentState, Ticket, TicketService, TicketStatus

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

ADMIN = UserAccount("admin-1", frozenset({Role.ADMIN.value}), email="admin@example.com")
STAFF = UserAccount("staff-1", frozenset({Role.CARE_STAFF.value}), full_name="Lan")
OTHER_STAFF = UserAccount("staff-2", frozenset({Role.CARE_STAFF.value}), full_name="Minh")
LOCKED_STAFF = UserAccount("staff-locked", frozenset({Role.CARE_STAFF.value}), status="Locked")
CUSTOMER = UserAccount("customer-1", frozenset({Role.CUSTOMER.value}), support_priority_level=2)
OTHER_CUSTOMER = UserAccount("customer-2", frozenset({Role.CUSTOMER.value}))


def caller(account: UserAccount | str | None) -> CallerContext:
    if isinstance(account, UserAccount):
        return CallerContext(account.user_id)
    return CallerContext(account)


class RecordingSubscriber:
    def __init__(self, subscriber_id: str = "recorder") -> None:
        self.subscriber_id = subscriber_id
        self.messages: list[Mapping[str, Any]] = []

    async def send(self, message: Mapping[str, Any]) -> None:
        self.messages.append(message)

    @property
    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


@pytest.fixture
def registry() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def store() -> InMemorySupportStore:
    store = InMemorySupportStore()
    for account in (ADMIN, STAFF, OTHER_STAFF, LOCKED_STAFF, CUSTOMER, OTHER_CUSTOMER):
        store.add_user(account)
    return store


@pytest.fixture
def gate(store: InMemorySupportStore) -> IdentityGate:
    return IdentityGate(store)


@pytest.fixture
def hub(registry: MetricsRegistry) -> NotificationHub:
    return NotificationHub(send_timeout=0.5, metrics=registry)


@pytest.fixture
def audit(store: InMemorySupportStore, registry: MetricsRegistry) -> AuditLogger:
    return AuditLogger(store, metrics=registry)


@pytest.fixture
def runner(registry: MetricsRegistry) -> MutationRunner:
    return MutationRunner(retry_attempts=1, metrics=registry)


@pytest.fixture
def ticket_service(store, gate, hub, audit, runner, registry) -> TicketService:
    return TicketService(store, gate, hub, audit, runner=runner, metrics=registry, clock=lambda: NOW)


@pytest.fixture
def chat_service(store, gate, hub, audit, runner, registry) -> SupportChatService:
    return SupportChatService(store, gate, hub, audit, runner=runner, metrics=registry, clock=lambda: NOW)


@pytest.fixture
def recorder(hub: NotificationHub) -> Callable[..., RecordingSubscriber]:
    def subscribe(*channels: str, subscriber_id: str = "recorder") -> RecordingSubscriber:
        subscriber = RecordingSubscriber(subscriber_id)
        for channel in channels:
            hub.subscribe(channel, subscriber)
        return subscriber

    return subscribe


def make_ticket(
    ticket_id: str = "ticket-1",
    *,
    status: TicketStatus = TicketStatus.NEW,
    assignee_id: str | None = None,
    customer_id: str | None = CUSTOMER.user_id,
    **overrides: Any,
) -> Ticket:
    values: dict[str, Any] = dict(
        ticket_id=ticket_id,
        ticket_code=f"TK-{ticket_id}",
        subject="Không đăng nhập được",
        customer_id=customer_id,
        status=status,
        assignment_state=AssignmentState.ASSIGNED if assignee_id else AssignmentState.UNASSIGNED,
        assignee_id=assignee_id,
        severity="Medium",
        priority_level=2,
        sla_status="OK",
        created_at=NOW - timedelta(hours=1),
    )
    values.update(overrides)
    return Ticket(**values)


def make_session(
    session_id: str = "session-1",
    *,
    status: ChatSessionStatus = ChatSessionStatus.WAITING,
    customer_id: str = CUSTOMER.user_id,
    assigned_staff_id: str | None = None,
    **overrides: Any,
) -> ChatSession:
    values: dict[str, Any] = dict(
        chat_session_id=session_id,
        customer_id=customer_id,
        status=status,
        priority_level=1,
        started_at=NOW - timedelta(minutes=30),
        assigned_staff_id=assigned_staff_id,
    )
    values.update(overrides)
    return ChatSession(**values)
