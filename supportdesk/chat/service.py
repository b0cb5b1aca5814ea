from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Sequence

from supportdesk.audit import AuditLogger
from supportdesk.errors import (
    ACCOUNT_LOCKED,
    EMPTY_MESSAGE,
    INVALID_STAFF,
    ConflictError,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
    SupportServiceError,
)
from supportdesk.identity import CallerContext, IdentityGate, UserAccount, is_active, is_admin, is_staff_or_admin
from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import CHAT_MESSAGES, CHAT_SESSION_CHANGES
from supportdesk.mutations import MutationRunner
from supportdesk.notifications import STAFF_CHANNEL, Event, EventType, Publisher, chat_channel, user_channel

from .models import ChatMessage, ChatSession, OpenSessionResult
from .state import ChatEvent, ChatSessionStateMachine, ChatSessionStatus, build_preview, clamp_priority

if TYPE_CHECKING:
    from supportdesk.storage.base import ChatStore

logger = logging.getLogger(__name__)

ADMIN_POST_ONLY = "Chỉ admin mới được gửi tin theo chế độ admin."
POST_FORBIDDEN = "Người dùng không có quyền gửi tin trong phiên chat này."
VIEW_FORBIDDEN = "Người dùng không có quyền truy cập phiên chat này."
QUEUE_STAFF_ONLY = "Chỉ nhân viên hỗ trợ mới xem được queue unassigned."
CLAIM_STAFF_ONLY = "Chỉ nhân viên hỗ trợ mới được claim phiên chat."
CLAIM_TAKEN = "Phiên chat đã được gán cho nhân viên khác."
UNASSIGN_STAFF_ONLY = "Chỉ nhân viên hỗ trợ mới được trả lại phiên chat."
NOT_ASSIGNEE = "Bạn không phải nhân viên đang phụ trách phiên chat này."
CLOSE_FORBIDDEN = "Người dùng không có quyền đóng phiên chat này."
ADMIN_ASSIGN_ONLY = "Chỉ admin mới được gán nhân viên cho phiên chat."
ADMIN_TRANSFER_ONLY = "Chỉ admin mới được chuyển nhân viên phụ trách phiên chat."
ASSIGN_TARGET_REQUIRED = "Vui lòng chọn nhân viên cần gán."
TRANSFER_TARGET_REQUIRED = "Vui lòng chọn nhân viên cần chuyển tới."
ALREADY_STAFFED = "Phiên chat đã có nhân viên, hãy dùng chức năng chuyển nhân viên."
NOT_STAFFED = "Phiên chat chưa có nhân viên, hãy dùng chức năng gán nhân viên."
SAME_STAFF = "Vui lòng chọn nhân viên khác với người đang phụ trách."

MAX_QUEUE_PAGE_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _SessionChange:
    before: ChatSession
    after: ChatSession
    actor_id: str
    changed: bool = True


class SupportChatService:
    """Live chat use cases over the chat store, identity gate and hub."""

    def __init__(
        self,
        store: ChatStore,
        gate: IdentityGate,
        publisher: Publisher,
        audit: AuditLogger,
        *,
        state_machine: ChatSessionStateMachine | None = None,
        runner: MutationRunner | None = None,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._gate = gate
        self._publisher = publisher
        self._audit = audit
        self._state_machine = state_machine or ChatSessionStateMachine()
        self._runner = runner or MutationRunner(metrics=metrics)
        self._clock = clock
        metrics = metrics or metrics_registry
        self._messages = metrics.counter(CHAT_MESSAGES, label_names=("sender",))
        self._changes = metrics.counter(CHAT_SESSION_CHANGES, label_names=("action", "outcome"))

    # -- message admission -------------------------------------------------

    async def post_message(self, caller: CallerContext, session_id: str, content: str | None) -> ChatMessage:
        """Admit a message from the session's customer, its assigned staff or an admin.

        Rejections short-circuit in this order: empty content, unauthenticated,
        locked account, unknown session, no relationship to the session,
        closed session.
        """

        text = _trimmed(content)

        async def attempt() -> tuple[ChatSession, ChatMessage]:
            account = await self._gate.require_active(caller)
            session = await self._load(session_id)
            is_customer = session.customer_id == account.user_id
            is_assigned_staff = session.assigned_staff_id == account.user_id and is_staff_or_admin(account.roles)
            if not (is_customer or is_assigned_staff or is_admin(account.roles)):
                raise ForbiddenError(POST_FORBIDDEN)
            return await self._admit(session, account.user_id, text, is_from_staff=not is_customer)

        session, message = await self._runner.run("chat.post_message", attempt)
        await self._after_message(session, message)
        return message

    async def admin_post_message(self, caller: CallerContext, session_id: str, content: str | None) -> ChatMessage:
        """Admin posting path; the message always counts as staff-sent."""

        text = _trimmed(content)

        async def attempt() -> tuple[ChatSession, ChatMessage]:
            account = await self._gate.require_admin(caller, reason=ADMIN_POST_ONLY)
            session = await self._load(session_id)
            return await self._admit(session, account.user_id, text, is_from_staff=True)

        session, message = await self._runner.run("chat.admin_post_message", attempt)
        await self._after_message(session, message)
        return message

    async def _admit(
        self, session: ChatSession, sender_id: str, text: str, *, is_from_staff: bool
    ) -> tuple[ChatSession, ChatMessage]:
        status = self._state_machine.next_status(session.status, ChatEvent.POST)
        now = self._clock()
        message = ChatMessage(
            message_id=str(uuid.uuid4()),
            chat_session_id=session.chat_session_id,
            sender_id=sender_id,
            is_from_staff=is_from_staff,
            content=text,
            sent_at=now,
        )
        updated = replace(session, status=status, last_message_at=now, last_message_preview=build_preview(text))
        saved = await self._store.append_message(updated, message)
        return saved, message

    async def _after_message(self, session: ChatSession, message: ChatMessage) -> None:
        self._messages.inc(labels={"sender": "staff" if message.is_from_staff else "customer"})
        await self._broadcast(
            (chat_channel(session.chat_session_id),),
            Event(EventType.CHAT_MESSAGE, session.chat_session_id, message.to_payload()),
        )
        await self._broadcast(
            (STAFF_CHANNEL,),
            Event(EventType.CHAT_SESSION_UPDATED, session.chat_session_id, session.to_payload()),
        )

    # -- session lifecycle -------------------------------------------------

    async def open_or_get(self, caller: CallerContext, initial_message: str | None = None) -> OpenSessionResult:
        """Return the caller's open session, creating a Waiting one when none exists."""

        text = (initial_message or "").strip()

        async def attempt() -> OpenSessionResult:
            account = await self._gate.require_active(caller)
            last_closed = await self._store.find_last_closed_session(account.user_id)
            session = await self._store.find_open_session(account.user_id)
            is_new = session is None
            if session is None:
                session = await self._store.create_session(
                    ChatSession(
                        chat_session_id=str(uuid.uuid4()),
                        customer_id=account.user_id,
                        status=self._state_machine.initial_state(),
                        priority_level=clamp_priority(account.support_priority_level),
                        started_at=self._clock(),
                    )
                )
            message = None
            if text:
                session, message = await self._admit(session, account.user_id, text, is_from_staff=False)
            return OpenSessionResult(
                session=session,
                is_new=is_new,
                last_closed_session=last_closed,
                initial_message=message,
            )

        result = await self._runner.run("chat.open_or_get", attempt)
        session = result.session
        if result.is_new:
            logger.info("Opened chat session %s for %s", session.chat_session_id, session.customer_id)
            await self._broadcast(
                (STAFF_CHANNEL, user_channel(session.customer_id)),
                Event(EventType.CHAT_SESSION_CREATED, session.chat_session_id, result.to_payload()),
            )
        if result.initial_message is not None:
            self._messages.inc(labels={"sender": "customer"})
            await self._broadcast(
                (chat_channel(session.chat_session_id),),
                Event(EventType.CHAT_MESSAGE, session.chat_session_id, result.initial_message.to_payload()),
            )
            if not result.is_new:
                await self._broadcast(
                    (STAFF_CHANNEL,),
                    Event(EventType.CHAT_SESSION_UPDATED, session.chat_session_id, session.to_payload()),
                )
        return result

    async def claim(self, caller: CallerContext, session_id: str) -> ChatSession:
        """Take a queued session; idempotent for the current assignee."""

        async def attempt() -> _SessionChange:
            account = await self._gate.require_staff(caller, reason=CLAIM_STAFF_ONLY)
            session = await self._load(session_id)
            status = self._state_machine.next_status(session.status, ChatEvent.CLAIM)
            if session.assigned_staff_id is not None and session.assigned_staff_id != account.user_id:
                raise ConflictError(CLAIM_TAKEN)
            if session.assigned_staff_id == account.user_id:
                return _SessionChange(session, session, account.user_id, changed=False)
            updated = replace(session, assigned_staff_id=account.user_id, status=status)
            return _SessionChange(session, await self._store.save_session(updated), account.user_id)

        return await self._execute("ClaimSupportChatSession", attempt)

    async def unassign(self, caller: CallerContext, session_id: str) -> ChatSession:
        """Return a session to the queue."""

        async def attempt() -> _SessionChange:
            account = await self._gate.require_staff(caller, reason=UNASSIGN_STAFF_ONLY)
            session = await self._load(session_id)
            status = self._state_machine.next_status(session.status, ChatEvent.UNASSIGN)
            if session.assigned_staff_id != account.user_id and not is_admin(account.roles):
                raise ForbiddenError(NOT_ASSIGNEE)
            updated = replace(session, assigned_staff_id=None, status=status)
            return _SessionChange(session, await self._store.save_session(updated), account.user_id)

        return await self._execute("UnassignSupportChatSession", attempt)

    async def close_session(self, caller: CallerContext, session_id: str) -> ChatSession:
        """Close a session; closing an already closed session changes nothing."""

        async def attempt() -> _SessionChange:
            account = await self._gate.require_active(caller)
            session = await self._load(session_id)
            if not self._is_party(account, session):
                raise ForbiddenError(CLOSE_FORBIDDEN)
            if session.status is ChatSessionStatus.CLOSED:
                return _SessionChange(session, session, account.user_id, changed=False)
            status = self._state_machine.next_status(session.status, ChatEvent.CLOSE)
            updated = replace(session, status=status, closed_at=self._clock())
            return _SessionChange(session, await self._store.save_session(updated), account.user_id)

        return await self._execute("CloseSupportChatSession", attempt)

    async def admin_assign_staff(self, caller: CallerContext, session_id: str, assignee_id: str | None) -> ChatSession:
        async def attempt() -> _SessionChange:
            account = await self._gate.require_admin(caller, reason=ADMIN_ASSIGN_ONLY)
            if not (assignee_id or "").strip():
                raise InvalidOperationError(ASSIGN_TARGET_REQUIRED)
            session = await self._load(session_id)
            status = self._state_machine.next_status(session.status, ChatEvent.ADMIN_ASSIGN)
            if session.assigned_staff_id is not None:
                raise InvalidOperationError(ALREADY_STAFFED)
            staff = await self._require_care_staff(assignee_id)
            updated = replace(session, assigned_staff_id=staff.user_id, status=status)
            return _SessionChange(session, await self._store.save_session(updated), account.user_id)

        return await self._execute("AdminAssignStaff", attempt)

    async def admin_transfer_staff(
        self, caller: CallerContext, session_id: str, assignee_id: str | None
    ) -> ChatSession:
        async def attempt() -> _SessionChange:
            account = await self._gate.require_admin(caller, reason=ADMIN_TRANSFER_ONLY)
            if not (assignee_id or "").strip():
                raise InvalidOperationError(TRANSFER_TARGET_REQUIRED)
            session = await self._load(session_id)
            status = self._state_machine.next_status(session.status, ChatEvent.ADMIN_TRANSFER)
            if session.assigned_staff_id is None:
                raise InvalidOperationError(NOT_STAFFED)
            if session.assigned_staff_id == assignee_id:
                raise InvalidOperationError(SAME_STAFF)
            staff = await self._require_care_staff(assignee_id)
            updated = replace(session, assigned_staff_id=staff.user_id, status=status)
            return _SessionChange(session, await self._store.save_session(updated), account.user_id)

        return await self._execute("AdminTransferStaff", attempt)

    # -- reads -------------------------------------------------------------

    async def list_messages(self, caller: CallerContext, session_id: str) -> Sequence[ChatMessage]:
        account = await self._gate.require_active(caller)
        session = await self._load(session_id)
        if not self.can_view_session(account, session):
            raise ForbiddenError(VIEW_FORBIDDEN)
        return await self._store.list_messages(session_id)

    async def get_session(self, caller: CallerContext, session_id: str) -> ChatSession:
        account = await self._gate.require_active(caller)
        session = await self._load(session_id)
        if not self.can_view_session(account, session):
            raise ForbiddenError(VIEW_FORBIDDEN)
        return session

    async def list_queue(self, caller: CallerContext, *, page: int = 1, page_size: int = 20) -> Sequence[ChatSession]:
        """Waiting sessions without staff, highest priority and longest waiting first."""

        await self._gate.require_staff(caller, reason=QUEUE_STAFF_ONLY)
        page = max(1, page)
        page_size = max(1, min(MAX_QUEUE_PAGE_SIZE, page_size))
        return await self._store.list_queue(offset=(page - 1) * page_size, limit=page_size)

    @staticmethod
    def can_view_session(account: UserAccount, session: ChatSession) -> bool:
        if not is_active(account):
            return False
        if session.customer_id == account.user_id or is_admin(account.roles):
            return True
        if not is_staff_or_admin(account.roles):
            return False
        return session.assigned_staff_id == account.user_id or session.is_queued

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _is_party(account: UserAccount, session: ChatSession) -> bool:
        if session.customer_id == account.user_id or is_admin(account.roles):
            return True
        return session.assigned_staff_id == account.user_id and is_staff_or_admin(account.roles)

    async def _load(self, session_id: str) -> ChatSession:
        session = await self._store.get_session(session_id)
        if session is None:
            raise NotFoundError("SupportChatSession", session_id)
        return session

    async def _require_care_staff(self, user_id: str | None) -> UserAccount:
        staff = await self._gate.find_active_care_staff(user_id)
        if staff is None:
            raise InvalidOperationError(INVALID_STAFF)
        return staff

    async def _execute(self, action: str, attempt: Callable[[], Awaitable[_SessionChange]]) -> ChatSession:
        try:
            change = await self._runner.run(f"chat.{action}", attempt)
        except SupportServiceError as exc:
            self._changes.inc(labels={"action": action, "outcome": type(exc).__name__})
            raise
        self._changes.inc(labels={"action": action, "outcome": "ok" if change.changed else "unchanged"})
        session = change.after
        if not change.changed:
            # A repeated claim is still recorded; a repeated close is not.
            if action == "ClaimSupportChatSession":
                self._audit.log_async(
                    change.actor_id, action, "SupportChatSession", session.chat_session_id, None, session.snapshot()
                )
            return session

        logger.info(
            "Chat session %s %s by %s -> %s/%s",
            session.chat_session_id,
            action,
            change.actor_id,
            session.status.value,
            session.assigned_staff_id,
        )
        event_type = (
            EventType.CHAT_SESSION_CLOSED if session.status is ChatSessionStatus.CLOSED else EventType.CHAT_SESSION_UPDATED
        )
        await self._broadcast(
            _session_channels(session),
            Event(event_type, session.chat_session_id, session.to_payload()),
        )
        self._audit.log_async(
            change.actor_id,
            action,
            "SupportChatSession",
            session.chat_session_id,
            change.before.snapshot(),
            session.snapshot(),
        )
        return session

    async def _broadcast(self, channels: Iterable[str], event: Event) -> None:
        try:
            await self._publisher.publish_many(channels, event)
        except Exception:
            logger.exception("Broadcast of %s for chat session %s failed", event.type.value, event.entity_id)


def _trimmed(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise InvalidOperationError(EMPTY_MESSAGE)
    return text


def _session_channels(session: ChatSession) -> tuple[str, ...]:
    channels = [chat_channel(session.chat_session_id), STAFF_CHANNEL, user_channel(session.customer_id)]
    if session.assigned_staff_id:
        channels.append(user_channel(session.assigned_staff_id))
    return tuple(channels)
