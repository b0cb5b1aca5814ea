from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from supportdesk.errors import (
    ACCOUNT_LOCKED,
    CLOSE_REQUIRES_NEW,
    COMPLETE_REQUIRES_IN_PROGRESS,
    INVALID_STAFF,
    TICKET_LOCKED,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
    StaleWriteError,
    UnauthenticatedError,
)
from supportdesk.metrics.definitions import SLA_SWEEP_FAILURES, SLA_SWEEP_UPDATES, TICKET_REPLIES, TICKET_TRANSITIONS
from supportdesk.notifications import STAFF_CHANNEL, ticket_channel, user_channel
from supportdesk.tickets import AssignmentState, SlaSweeper, TicketService, TicketStatus
from supportdesk.tickets.service import (
    ASSIGN_FORBIDDEN,
    CLAIM_FORBIDDEN,
    CLOSE_FORBIDDEN,
    COMPLETE_NOT_ASSIGNEE,
    EMPTY_REPLY,
    REPLY_FORBIDDEN,
    STAFF_ONLY,
)
from supportdesk.tickets.state import CLAIM_LOCKED, CLAIM_TAKEN

from tests.conftest import (
    ADMIN,
    CUSTOMER,
    LOCKED_STAFF,
    NOW,
    OTHER_CUSTOMER,
    OTHER_STAFF,
    STAFF,
    caller,
    make_ticket,
)


@pytest.fixture
def seeded(store):
    store.add_ticket(make_ticket())
    return store


@pytest.mark.asyncio
async def test_admin_assigns_new_ticket(seeded, ticket_service, audit, recorder):
    staff_feed = recorder(STAFF_CHANNEL, subscriber_id="staff-feed")
    ticket_feed = recorder(ticket_channel("ticket-1"), subscriber_id="ticket-feed")
    customer_feed = recorder(user_channel(CUSTOMER.user_id), subscriber_id="customer-feed")

    ticket = await ticket_service.assign(caller(ADMIN), "ticket-1", STAFF.user_id)
    await audit.drain()

    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.assignment_state is AssignmentState.ASSIGNED
    assert ticket.assignee_id == STAFF.user_id
    assert ticket.updated_at == NOW
    assert ticket.version == 2
    for feed in (staff_feed, ticket_feed, customer_feed):
        assert feed.types == ["ticket.assigned"]
    assert staff_feed.messages[0]["ticketId"] == "ticket-1"

    [record] = seeded.audit_records
    assert record.action == "AssignStaffToTicket"
    assert record.actor_id == ADMIN.user_id
    assert record.before["assigneeId"] is None
    assert record.after["assigneeId"] == STAFF.user_id


@pytest.mark.asyncio
async def test_reassign_in_progress_ticket(seeded, ticket_service, audit, recorder):
    feed = recorder(ticket_channel("ticket-1"))

    await ticket_service.assign(caller(ADMIN), "ticket-1", STAFF.user_id)
    ticket = await ticket_service.assign(caller(ADMIN), "ticket-1", OTHER_STAFF.user_id)
    await audit.drain()

    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.assignee_id == OTHER_STAFF.user_id
    assert feed.types == ["ticket.assigned"] * 2
    assert [message["payload"]["assigneeId"] for message in feed.messages] == [STAFF.user_id, OTHER_STAFF.user_id]
    assert [record.action for record in seeded.audit_records] == ["AssignStaffToTicket"] * 2
    assert [record.after["assigneeId"] for record in seeded.audit_records] == [STAFF.user_id, OTHER_STAFF.user_id]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("actor", "assignee", "error", "reason"),
    [
        (None, STAFF.user_id, UnauthenticatedError, None),
        (LOCKED_STAFF, STAFF.user_id, ForbiddenError, ACCOUNT_LOCKED),
        (STAFF, STAFF.user_id, ForbiddenError, ASSIGN_FORBIDDEN),
        (ADMIN, LOCKED_STAFF.user_id, InvalidOperationError, INVALID_STAFF),
        (ADMIN, CUSTOMER.user_id, InvalidOperationError, INVALID_STAFF),
        (ADMIN, "ghost", InvalidOperationError, INVALID_STAFF),
    ],
)
async def test_assign_rejections(seeded, ticket_service, actor, assignee, error, reason):
    with pytest.raises(error) as excinfo:
        await ticket_service.assign(caller(actor), "ticket-1", assignee)
    if reason is not None:
        assert str(excinfo.value) == reason
    assert (await seeded.get_ticket("ticket-1")).version == 1


@pytest.mark.asyncio
async def test_assign_checks_admin_before_ticket_existence(seeded, ticket_service):
    with pytest.raises(ForbiddenError):
        await ticket_service.assign(caller(STAFF), "missing", STAFF.user_id)
    with pytest.raises(NotFoundError):
        await ticket_service.assign(caller(ADMIN), "missing", STAFF.user_id)


@pytest.mark.asyncio
async def test_assign_terminal_ticket_is_locked_before_staff_validation(store, ticket_service):
    store.add_ticket(make_ticket(status=TicketStatus.COMPLETED, assignee_id=STAFF.user_id, resolved_at=NOW))
    with pytest.raises(InvalidOperationError) as excinfo:
        await ticket_service.assign(caller(ADMIN), "ticket-1", "ghost")
    assert str(excinfo.value) == TICKET_LOCKED


@pytest.mark.asyncio
async def test_close_new_ticket(seeded, ticket_service, audit, recorder):
    feed = recorder(ticket_channel("ticket-1"))

    ticket = await ticket_service.close(caller(ADMIN), "ticket-1")
    await audit.drain()

    assert ticket.status is TicketStatus.CLOSED
    assert ticket.resolved_at == NOW
    assert feed.types == ["ticket.closed"]
    assert seeded.audit_records[0].action == "CloseTicket"
    assert seeded.audit_records[0].after["status"] == "Closed"


@pytest.mark.asyncio
async def test_close_rules(store, ticket_service):
    store.add_ticket(make_ticket("in-progress", status=TicketStatus.IN_PROGRESS, assignee_id=STAFF.user_id))
    store.add_ticket(make_ticket("closed", status=TicketStatus.CLOSED, resolved_at=NOW))

    with pytest.raises(ForbiddenError) as excinfo:
        await ticket_service.close(caller(STAFF), "in-progress")
    assert str(excinfo.value) == CLOSE_FORBIDDEN
    with pytest.raises(InvalidOperationError, match=CLOSE_REQUIRES_NEW):
        await ticket_service.close(caller(ADMIN), "in-progress")
    with pytest.raises(InvalidOperationError, match=TICKET_LOCKED):
        await ticket_service.close(caller(ADMIN), "closed")


@pytest.mark.asyncio
async def test_assignee_completes_in_progress_ticket(store, ticket_service, audit, recorder):
    store.add_ticket(make_ticket(status=TicketStatus.IN_PROGRESS, assignee_id=STAFF.user_id))
    feed = recorder(user_channel(STAFF.user_id))

    ticket = await ticket_service.complete(caller(STAFF), "ticket-1")
    await audit.drain()

    assert ticket.status is TicketStatus.COMPLETED
    assert ticket.assignee_id == STAFF.user_id
    assert ticket.resolved_at == NOW
    assert feed.types == ["ticket.completed"]
    assert store.audit_records[0].action == "CompleteTicket"


@pytest.mark.asyncio
async def test_complete_rules(store, ticket_service):
    store.add_ticket(make_ticket("mine", status=TicketStatus.IN_PROGRESS, assignee_id=STAFF.user_id))
    store.add_ticket(make_ticket("new"))

    with pytest.raises(ForbiddenError) as excinfo:
        await ticket_service.complete(caller(CUSTOMER), "mine")
    assert str(excinfo.value) == STAFF_ONLY
    with pytest.raises(ForbiddenError) as excinfo:
        await ticket_service.complete(caller(OTHER_STAFF), "mine")
    assert str(excinfo.value) == COMPLETE_NOT_ASSIGNEE
    with pytest.raises(InvalidOperationError, match=COMPLETE_REQUIRES_IN_PROGRESS):
        await ticket_service.complete(caller(ADMIN), "new")

    ticket = await ticket_service.complete(caller(ADMIN), "mine")
    assert ticket.status is TicketStatus.COMPLETED


@pytest.mark.asyncio
async def test_assign_to_me(seeded, ticket_service, audit):
    ticket = await ticket_service.assign_to_me(caller(STAFF), "ticket-1")
    await audit.drain()

    assert ticket.assignee_id == STAFF.user_id
    assert ticket.status is TicketStatus.IN_PROGRESS
    assert seeded.audit_records[0].action == "AssignToMe"

    with pytest.raises(InvalidOperationError, match=CLAIM_TAKEN):
        await ticket_service.assign_to_me(caller(OTHER_STAFF), "ticket-1")


@pytest.mark.asyncio
async def test_assign_to_me_rules(store, ticket_service):
    store.add_ticket(make_ticket("open"))
    store.add_ticket(make_ticket("done", status=TicketStatus.COMPLETED, assignee_id=STAFF.user_id, resolved_at=NOW))

    with pytest.raises(ForbiddenError) as excinfo:
        await ticket_service.assign_to_me(caller(CUSTOMER), "open")
    assert str(excinfo.value) == CLAIM_FORBIDDEN
    with pytest.raises(ForbiddenError, match=CLAIM_FORBIDDEN):
        await ticket_service.assign_to_me(caller(LOCKED_STAFF), "open")
    with pytest.raises(InvalidOperationError, match=CLAIM_LOCKED):
        await ticket_service.assign_to_me(caller(STAFF), "done")
    with pytest.raises(NotFoundError):
        await ticket_service.assign_to_me(caller(STAFF), "missing")


@pytest.mark.asyncio
async def test_get_ticket_is_staff_only(seeded, ticket_service):
    assert (await ticket_service.get_ticket(caller(STAFF), "ticket-1")).ticket_id == "ticket-1"
    with pytest.raises(ForbiddenError, match=STAFF_ONLY):
        await ticket_service.get_ticket(caller(CUSTOMER), "ticket-1")


@pytest.mark.asyncio
async def test_concurrent_assign_and_close_have_one_winner(seeded, ticket_service):
    unpatched_get = seeded.get_ticket

    async def slow_get(ticket_id):
        ticket = await unpatched_get(ticket_id)
        await asyncio.sleep(0)
        return ticket

    seeded.get_ticket = slow_get

    results = await asyncio.gather(
        ticket_service.assign(caller(ADMIN), "ticket-1", STAFF.user_id),
        ticket_service.close(caller(ADMIN), "ticket-1"),
        return_exceptions=True,
    )

    winners = [result for result in results if not isinstance(result, BaseException)]
    losers = [result for result in results if isinstance(result, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], InvalidOperationError)
    final = await unpatched_get("ticket-1")
    if final.status is TicketStatus.CLOSED:
        assert str(losers[0]) == TICKET_LOCKED
        assert final.assignee_id is None
        assert final.assignment_state is AssignmentState.UNASSIGNED
    else:
        assert str(losers[0]) == CLOSE_REQUIRES_NEW
        assert final.status is TicketStatus.IN_PROGRESS
        assert final.assignee_id == STAFF.user_id
        assert final.resolved_at is None
    assert final.version == 2


@pytest.mark.asyncio
async def test_stale_write_is_retried_against_fresh_state(seeded, ticket_service):
    unpatched_save = seeded.save_ticket
    calls = {"count": 0}

    async def racing_save(ticket):
        calls["count"] += 1
        if calls["count"] == 1:
            current = await seeded.get_ticket(ticket.ticket_id)
            await unpatched_save(replace(current, status=TicketStatus.CLOSED, resolved_at=NOW))
        return await unpatched_save(ticket)

    seeded.save_ticket = racing_save

    with pytest.raises(InvalidOperationError, match=TICKET_LOCKED):
        await ticket_service.assign(caller(ADMIN), "ticket-1", STAFF.user_id)
    final = await seeded.get_ticket("ticket-1")
    assert final.status is TicketStatus.CLOSED
    assert final.assignee_id is None


@pytest.mark.asyncio
async def test_exhausted_retries_surface_conflict(seeded, ticket_service, registry):
    seeded.save_ticket = AsyncMock(side_effect=StaleWriteError("Ticket", "ticket-1"))

    with pytest.raises(StaleWriteError):
        await ticket_service.close(caller(ADMIN), "ticket-1")

    assert seeded.save_ticket.await_count == 2
    counter = registry.get(TICKET_TRANSITIONS)
    assert counter.value(labels={"action": "close", "outcome": "StaleWriteError"}) == 1


@pytest.mark.asyncio
async def test_broadcast_failure_does_not_fail_mutation(seeded, gate, audit, runner, registry):
    publisher = AsyncMock()
    publisher.publish_many.side_effect = RuntimeError("hub down")
    service = TicketService(seeded, gate, publisher, audit, runner=runner, metrics=registry, clock=lambda: NOW)

    ticket = await service.close(caller(ADMIN), "ticket-1")

    assert ticket.status is TicketStatus.CLOSED
    assert (await seeded.get_ticket("ticket-1")).status is TicketStatus.CLOSED


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_mutation(seeded, ticket_service, audit):
    seeded.add_entry = AsyncMock(side_effect=RuntimeError("audit table missing"))

    ticket = await ticket_service.close(caller(ADMIN), "ticket-1")
    await audit.drain()

    assert ticket.status is TicketStatus.CLOSED


@pytest.mark.asyncio
async def test_staff_reply_records_first_response_and_starts_work(seeded, ticket_service, audit, recorder, registry):
    ticket_feed = recorder(ticket_channel("ticket-1"), subscriber_id="ticket-feed")
    customer_feed = recorder(user_channel(CUSTOMER.user_id), subscriber_id="customer-feed")
    admin_feed = recorder(user_channel(ADMIN.user_id), subscriber_id="admin-feed")

    reply = await ticket_service.reply(caller(ADMIN), "ticket-1", "  Chúng tôi đang kiểm tra.  ")
    await audit.drain()

    assert reply.message == "Chúng tôi đang kiểm tra."
    assert reply.is_staff_reply
    assert reply.sent_at == NOW
    ticket = await seeded.get_ticket("ticket-1")
    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.first_responded_at == NOW
    assert ticket.updated_at == NOW
    assert ticket.version == 2
    assert [item.reply_id for item in await seeded.list_replies("ticket-1")] == [reply.reply_id]

    assert ticket_feed.types == customer_feed.types == ["ticket.reply"]
    assert admin_feed.types == []
    payload = customer_feed.messages[0]["payload"]
    assert payload["replyId"] == reply.reply_id
    assert payload["status"] == "InProgress"
    assert registry.get(TICKET_REPLIES).value(labels={"sender": "staff"}) == 1

    [record] = seeded.audit_records
    assert record.action == "StaffReply"
    assert record.entity_type == "TicketReply"
    assert record.entity_id == reply.reply_id
    assert record.before is None
    assert record.after["firstRespondedAt"] == NOW.isoformat()
    assert record.after["messagePreview"] == "Chúng tôi đang kiểm tra."


@pytest.mark.asyncio
async def test_later_staff_reply_keeps_first_response_time(store, ticket_service, audit):
    earlier = NOW - timedelta(minutes=20)
    store.add_ticket(make_ticket(status=TicketStatus.IN_PROGRESS, assignee_id=STAFF.user_id, first_responded_at=earlier))

    await ticket_service.reply(caller(STAFF), "ticket-1", "x" * 250)
    await audit.drain()

    ticket = await store.get_ticket("ticket-1")
    assert ticket.first_responded_at == earlier
    assert ticket.updated_at == NOW
    [record] = store.audit_records
    assert record.after["messagePreview"] == "x" * 200


@pytest.mark.asyncio
async def test_customer_reply_is_not_audited_and_keeps_status(seeded, ticket_service, audit, recorder, registry):
    ticket_feed = recorder(ticket_channel("ticket-1"), subscriber_id="ticket-feed")
    customer_feed = recorder(user_channel(CUSTOMER.user_id), subscriber_id="customer-feed")

    reply = await ticket_service.reply(caller(CUSTOMER), "ticket-1", "Vẫn chưa được ạ")
    await audit.drain()

    assert not reply.is_staff_reply
    ticket = await seeded.get_ticket("ticket-1")
    assert ticket.status is TicketStatus.NEW
    assert ticket.first_responded_at is None
    assert ticket.updated_at == NOW
    assert ticket_feed.types == ["ticket.reply"]
    assert customer_feed.types == []
    assert seeded.audit_records == []
    assert registry.get(TICKET_REPLIES).value(labels={"sender": "customer"}) == 1


@pytest.mark.asyncio
async def test_on_time_first_reply_keeps_sla_ok(store, gate, hub, audit, runner, registry, ticket_service):
    store.add_ticket(make_ticket(first_response_due_at=NOW + timedelta(minutes=10), sla_status="Warning"))

    await ticket_service.reply(caller(ADMIN), "ticket-1", "Chào anh, em nhận ticket.")
    assert (await store.get_ticket("ticket-1")).sla_status == "OK"

    after_deadline = TicketService(
        store, gate, hub, audit, runner=runner, metrics=registry, clock=lambda: NOW + timedelta(hours=1)
    )
    assert await after_deadline.refresh_sla_statuses() == 0
    assert (await store.get_ticket("ticket-1")).sla_status == "OK"


@pytest.mark.asyncio
async def test_unanswered_ticket_goes_overdue_after_first_response_deadline(store, gate, hub, audit, runner, registry):
    store.add_ticket(make_ticket(first_response_due_at=NOW + timedelta(minutes=10)))

    after_deadline = TicketService(
        store, gate, hub, audit, runner=runner, metrics=registry, clock=lambda: NOW + timedelta(hours=1)
    )
    assert await after_deadline.refresh_sla_statuses() == 1
    assert (await store.get_ticket("ticket-1")).sla_status == "Overdue"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("actor", "message", "error", "reason"),
    [
        (CUSTOMER, "   ", InvalidOperationError, EMPTY_REPLY),
        (None, "xin chào", UnauthenticatedError, None),
        (LOCKED_STAFF, "xin chào", ForbiddenError, ACCOUNT_LOCKED),
        (OTHER_CUSTOMER, "xin chào", ForbiddenError, REPLY_FORBIDDEN),
        (STAFF, "xin chào", ForbiddenError, REPLY_FORBIDDEN),
    ],
)
async def test_reply_rejections(seeded, ticket_service, actor, message, error, reason):
    with pytest.raises(error) as excinfo:
        await ticket_service.reply(caller(actor), "ticket-1", message)
    if reason is not None:
        assert str(excinfo.value) == reason
    assert await seeded.list_replies("ticket-1") == []
    assert (await seeded.get_ticket("ticket-1")).version == 1


@pytest.mark.asyncio
async def test_reply_checks_message_and_caller_before_ticket_existence(seeded, ticket_service):
    with pytest.raises(InvalidOperationError, match=EMPTY_REPLY):
        await ticket_service.reply(caller(ADMIN), "ghost", None)
    with pytest.raises(ForbiddenError, match=ACCOUNT_LOCKED):
        await ticket_service.reply(caller(LOCKED_STAFF), "ghost", "xin chào")
    with pytest.raises(NotFoundError):
        await ticket_service.reply(caller(ADMIN), "ghost", "xin chào")


@pytest.mark.asyncio
async def test_reply_on_completed_ticket_keeps_it_completed(store, ticket_service):
    store.add_ticket(make_ticket(status=TicketStatus.COMPLETED, assignee_id=STAFF.user_id, resolved_at=NOW))

    await ticket_service.reply(caller(STAFF), "ticket-1", "Đã xử lý xong.")

    ticket = await store.get_ticket("ticket-1")
    assert ticket.status is TicketStatus.COMPLETED
    assert ticket.first_responded_at == NOW


@pytest.mark.asyncio
async def test_list_replies_visibility(seeded, ticket_service):
    await ticket_service.reply(caller(CUSTOMER), "ticket-1", "Em cần hỗ trợ")

    for actor in (CUSTOMER, STAFF, ADMIN):
        [reply] = await ticket_service.list_replies(caller(actor), "ticket-1")
        assert reply.message == "Em cần hỗ trợ"
    with pytest.raises(ForbiddenError, match=STAFF_ONLY):
        await ticket_service.list_replies(caller(OTHER_CUSTOMER), "ticket-1")
    with pytest.raises(NotFoundError):
        await ticket_service.list_replies(caller(STAFF), "ghost")


@pytest.mark.asyncio
async def test_refresh_sla_statuses_persists_changes_only(store, ticket_service, registry):
    store.add_ticket(make_ticket("late", resolution_due_at=NOW - timedelta(minutes=1)))
    store.add_ticket(make_ticket("fine", resolution_due_at=NOW + timedelta(hours=5)))
    store.add_ticket(
        make_ticket("done", status=TicketStatus.COMPLETED, resolved_at=NOW, resolution_due_at=NOW - timedelta(days=1))
    )

    assert await ticket_service.refresh_sla_statuses() == 1

    assert (await store.get_ticket("late")).sla_status == "Overdue"
    assert (await store.get_ticket("fine")).version == 1
    assert (await store.get_ticket("done")).sla_status == "OK"
    assert registry.get(SLA_SWEEP_UPDATES).value(labels={"sla_status": "Overdue"}) == 1
    assert await ticket_service.refresh_sla_statuses() == 0


@pytest.mark.asyncio
async def test_sla_sweeper_runs_and_stops(store, ticket_service):
    store.add_ticket(make_ticket("late", resolution_due_at=NOW - timedelta(minutes=1)))
    sweeper = SlaSweeper(ticket_service, interval_seconds=0.01)

    sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if (await store.get_ticket("late")).sla_status == "Overdue":
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert not sweeper.running
    assert (await store.get_ticket("late")).sla_status == "Overdue"


@pytest.mark.asyncio
async def test_sla_sweeper_counts_failures(registry):
    service = AsyncMock()
    service.refresh_sla_statuses.side_effect = RuntimeError("db down")
    sweeper = SlaSweeper(service, interval_seconds=60, metrics=registry)

    assert await sweeper.run_once() == 0
    assert registry.get(SLA_SWEEP_FAILURES).value() == 1


def test_sla_sweeper_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        SlaSweeper(AsyncMock(), interval_seconds=0)
