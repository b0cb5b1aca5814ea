from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Mapping

from supportdesk.audit import AuditLogger
from supportdesk.errors import (
    INVALID_STAFF,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
    StaleWriteError,
    SupportServiceError,
)
from supportdesk.identity import CallerContext, IdentityGate, is_admin, is_staff_or_admin
from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import SLA_SWEEP_UPDATES, TICKET_REPLIES, TICKET_TRANSITIONS
from supportdesk.mutations import MutationRunner
from supportdesk.notifications import STAFF_CHANNEL, Event, EventType, Publisher, ticket_channel, user_channel

from .models import Ticket, TicketReply
from .state import TicketAction, TicketStateMachine

if TYPE_CHECKING:
    from supportdesk.storage.base import TicketStore

logger = logging.getLogger(__name__)

ASSIGN_FORBIDDEN = "Bạn không có quyền gán ticket."
CLOSE_FORBIDDEN = "Bạn không có quyền đóng ticket."
STAFF_ONLY = "Bạn không có quyền truy cập chức năng này."
COMPLETE_NOT_ASSIGNEE = "Người dùng không có quyền hạn để hoàn thành ticket."
CLAIM_FORBIDDEN = "Bạn không có quyền nhận ticket này."
EMPTY_REPLY = "Nội dung phản hồi trống."
REPLY_FORBIDDEN = "Người dùng không có quyền hạn để phản hồi."
REPLY_PREVIEW_LIMIT = 200

_AUDIT_ACTIONS = {
    TicketAction.ASSIGN: "AssignStaffToTicket",
    TicketAction.CLAIM: "AssignToMe",
    TicketAction.CLOSE: "CloseTicket",
    TicketAction.COMPLETE: "CompleteTicket",
}

_EVENTS = {
    TicketAction.ASSIGN: EventType.TICKET_ASSIGNED,
    TicketAction.CLAIM: EventType.TICKET_ASSIGNED,
    TicketAction.CLOSE: EventType.TICKET_CLOSED,
    TicketAction.COMPLETE: EventType.TICKET_COMPLETED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    """Ticket lifecycle use cases: authorize, transition, persist, notify, audit."""

    def __init__(
        self,
        store: TicketStore,
        gate: IdentityGate,
        publisher: Publisher,
        audit: AuditLogger,
        *,
        state_machine: TicketStateMachine | None = None,
        runner: MutationRunner | None = None,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._gate = gate
        self._publisher = publisher
        self._audit = audit
        self._state_machine = state_machine or TicketStateMachine()
        self._runner = runner or MutationRunner(metrics=metrics)
        self._clock = clock
        metrics = metrics or metrics_registry
        self._transitions = metrics.counter(TICKET_TRANSITIONS, label_names=("action", "outcome"))
        self._sla_updates = metrics.counter(SLA_SWEEP_UPDATES, label_names=("sla_status",))
        self._replies = metrics.counter(TICKET_REPLIES, label_names=("sender",))

    async def get_ticket(self, caller: CallerContext, ticket_id: str) -> Ticket:
        await self._gate.require_staff(caller, reason=STAFF_ONLY)
        return await self._load(ticket_id)

    async def assign(self, caller: CallerContext, ticket_id: str, assignee_id: str) -> Ticket:
        """Point the ticket at an active care-staff member (admin only)."""

        async def attempt() -> tuple[Ticket, Ticket, str]:
            actor = await self._gate.require_admin(caller, reason=ASSIGN_FORBIDDEN)
            ticket = await self._load(ticket_id)
            self._state_machine.assert_transition(ticket.status, TicketAction.ASSIGN)
            if await self._gate.find_active_care_staff(assignee_id) is None:
                raise InvalidOperationError(INVALID_STAFF)
            updated = self._state_machine.assign(ticket, assignee_id, self._clock())
            return ticket, await self._store.save_ticket(updated), actor.user_id

        return await self._execute(TicketAction.ASSIGN, attempt)

    async def assign_to_me(self, caller: CallerContext, ticket_id: str) -> Ticket:
        """Let an active care-staff member take an unassigned ticket."""

        async def attempt() -> tuple[Ticket, Ticket, str]:
            account = await self._gate.resolve(caller)
            ticket = await self._load(ticket_id)
            updated = self._state_machine.claim(ticket, account.user_id, self._clock())
            if await self._gate.find_active_care_staff(account.user_id) is None:
                raise ForbiddenError(CLAIM_FORBIDDEN)
            return ticket, await self._store.save_ticket(updated), account.user_id

        return await self._execute(TicketAction.CLAIM, attempt)

    async def close(self, caller: CallerContext, ticket_id: str) -> Ticket:
        """Withdraw a ticket that is still New (admin only)."""

        async def attempt() -> tuple[Ticket, Ticket, str]:
            actor = await self._gate.require_admin(caller, reason=CLOSE_FORBIDDEN)
            ticket = await self._load(ticket_id)
            updated = self._state_machine.close(ticket, self._clock())
            return ticket, await self._store.save_ticket(updated), actor.user_id

        return await self._execute(TicketAction.CLOSE, attempt)

    async def complete(self, caller: CallerContext, ticket_id: str) -> Ticket:
        """Finish an InProgress ticket; admins or the assigned care staff only."""

        async def attempt() -> tuple[Ticket, Ticket, str]:
            actor = await self._gate.require_staff(caller, reason=STAFF_ONLY)
            ticket = await self._load(ticket_id)
            if not is_admin(actor.roles) and ticket.assignee_id != actor.user_id:
                raise ForbiddenError(COMPLETE_NOT_ASSIGNEE)
            updated = self._state_machine.complete(ticket, self._clock())
            return ticket, await self._store.save_ticket(updated), actor.user_id

        return await self._execute(TicketAction.COMPLETE, attempt)

    async def reply(self, caller: CallerContext, ticket_id: str, message: str | None) -> TicketReply:
        """Post a reply as the ticket owner, its assignee or an admin.

        Any reply not written by the owner counts as a staff reply: the first
        one stamps ``first_responded_at`` and moves a New ticket to InProgress.
        Only staff replies are audited.
        """

        text = (message or "").strip()
        if not text:
            raise InvalidOperationError(EMPTY_REPLY)

        async def attempt() -> tuple[Ticket, TicketReply]:
            account = await self._gate.require_active(caller)
            ticket = await self._load(ticket_id)
            is_owner = ticket.customer_id == account.user_id
            is_assignee = ticket.assignee_id == account.user_id
            if not (is_owner or is_assignee or is_admin(account.roles)):
                raise ForbiddenError(REPLY_FORBIDDEN)
            now = self._clock()
            reply = TicketReply(
                reply_id=str(uuid.uuid4()),
                ticket_id=ticket.ticket_id,
                sender_id=account.user_id,
                is_staff_reply=not is_owner,
                message=text,
                sent_at=now,
            )
            updated = self._state_machine.reply(ticket, from_staff=reply.is_staff_reply, now=now)
            return await self._store.add_reply(updated, reply), reply

        ticket, reply = await self._runner.run("ticket.reply", attempt)
        self._replies.inc(labels={"sender": "staff" if reply.is_staff_reply else "customer"})
        logger.info("Ticket %s reply %s by %s", ticket.ticket_id, reply.reply_id, reply.sender_id)

        await self._notify_reply(ticket, reply)
        if reply.is_staff_reply:
            self._audit.log_async(
                reply.sender_id, "StaffReply", "TicketReply", reply.reply_id, None, _reply_snapshot(ticket, reply)
            )
        return reply

    async def list_replies(self, caller: CallerContext, ticket_id: str) -> list[TicketReply]:
        account = await self._gate.require_active(caller)
        ticket = await self._load(ticket_id)
        if ticket.customer_id != account.user_id and not is_staff_or_admin(account.roles):
            raise ForbiddenError(STAFF_ONLY)
        return list(await self._store.list_replies(ticket.ticket_id))

    async def refresh_sla_statuses(self) -> int:
        """Recompute SLA status for active tickets; return how many changed.

        Tickets updated concurrently are skipped until the next run.
        """

        now = self._clock()
        changed = 0
        for ticket in await self._store.list_active_tickets():
            refreshed = self._state_machine.refresh_sla(ticket, now)
            if refreshed.sla_status == ticket.sla_status:
                continue
            try:
                await self._store.save_ticket(refreshed)
            except StaleWriteError:
                logger.info("Skipping SLA update for ticket %s modified concurrently", ticket.ticket_id)
                continue
            changed += 1
            self._sla_updates.inc(labels={"sla_status": refreshed.sla_status})
            logger.debug("Ticket %s SLA %s -> %s", ticket.ticket_id, ticket.sla_status, refreshed.sla_status)
        return changed

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self._store.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    async def _execute(
        self,
        action: TicketAction,
        attempt: Callable[[], Awaitable[tuple[Ticket, Ticket, str]]],
    ) -> Ticket:
        try:
            before, after, actor_id = await self._runner.run(f"ticket.{action.value}", attempt)
        except SupportServiceError as exc:
            self._transitions.inc(labels={"action": action.value, "outcome": type(exc).__name__})
            raise
        self._transitions.inc(labels={"action": action.value, "outcome": "ok"})
        logger.info("Ticket %s %s by %s -> %s", after.ticket_id, action.value, actor_id, after.status.value)

        await self._notify(action, after)
        if action in (TicketAction.ASSIGN, TicketAction.CLAIM):
            snapshots: tuple[Mapping[str, Any], Mapping[str, Any]] = (
                before.assignment_snapshot(),
                after.assignment_snapshot(),
            )
        else:
            snapshots = (before.resolution_snapshot(), after.resolution_snapshot())
        self._audit.log_async(actor_id, _AUDIT_ACTIONS[action], "Ticket", after.ticket_id, *snapshots)
        return after

    async def _notify(self, action: TicketAction, ticket: Ticket) -> None:
        channels: list[str] = [ticket_channel(ticket.ticket_id), STAFF_CHANNEL]
        channels.extend(user_channel(user_id) for user_id in _involved(ticket))
        event = Event(type=_EVENTS[action], entity_id=ticket.ticket_id, payload=ticket.to_payload())
        try:
            await self._publisher.publish_many(channels, event)
        except Exception:
            logger.exception("Broadcast of %s for ticket %s failed", event.type.value, ticket.ticket_id)

    async def _notify_reply(self, ticket: Ticket, reply: TicketReply) -> None:
        channels: list[str] = [ticket_channel(ticket.ticket_id)]
        channels.extend(user_channel(user_id) for user_id in _involved(ticket) if user_id != reply.sender_id)
        payload = {**reply.to_payload(), "status": ticket.status.value, "slaStatus": ticket.sla_status}
        event = Event(type=EventType.TICKET_REPLY, entity_id=ticket.ticket_id, payload=payload)
        try:
            await self._publisher.publish_many(channels, event)
        except Exception:
            logger.exception("Broadcast of %s for ticket %s failed", event.type.value, ticket.ticket_id)


def _involved(ticket: Ticket) -> Iterable[str]:
    return [user_id for user_id in (ticket.customer_id, ticket.assignee_id) if user_id]


def _reply_snapshot(ticket: Ticket, reply: TicketReply) -> dict[str, Any]:
    return {
        "replyId": reply.reply_id,
        "ticketId": ticket.ticket_id,
        "senderId": reply.sender_id,
        "isStaffReply": reply.is_staff_reply,
        "messagePreview": reply.message[:REPLY_PREVIEW_LIMIT],
        "status": ticket.status.value,
        "slaStatus": ticket.sla_status,
        "firstRespondedAt": ticket.first_responded_at.isoformat() if ticket.first_responded_at else None,
        "updatedAt": ticket.updated_at.isoformat() if ticket.updated_at else None,
    }
