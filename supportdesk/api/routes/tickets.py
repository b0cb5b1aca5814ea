from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel

from supportdesk.dependencies.auth import CurrentCaller
from supportdesk.dependencies.support import TicketServiceDep, to_http_exception
from supportdesk.errors import SupportServiceError
from supportdesk.tickets import Ticket, TicketReply
from supportdesk.tickets.state import AssignmentState, TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketModel(BaseModel):
    id: str
    code: str
    subject: str
    customer_id: str | None = None
    status: TicketStatus
    assignment_state: AssignmentState
    assignee_id: str | None = None
    severity: str
    priority_level: int
    sla_status: str
    created_at: str
    updated_at: str | None = None
    resolved_at: str | None = None
    first_response_due_at: str | None = None
    resolution_due_at: str | None = None
    first_responded_at: str | None = None

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        return cls(
            id=ticket.ticket_id,
            code=ticket.ticket_code,
            subject=ticket.subject,
            customer_id=ticket.customer_id,
            status=ticket.status,
            assignment_state=ticket.assignment_state,
            assignee_id=ticket.assignee_id,
            severity=ticket.severity,
            priority_level=ticket.priority_level,
            sla_status=ticket.sla_status,
            created_at=ticket.created_at.isoformat(),
            updated_at=_isoformat(ticket.updated_at),
            resolved_at=_isoformat(ticket.resolved_at),
            first_response_due_at=_isoformat(ticket.first_response_due_at),
            resolution_due_at=_isoformat(ticket.resolution_due_at),
            first_responded_at=_isoformat(ticket.first_responded_at),
        )


class TicketReplyModel(BaseModel):
    id: str
    ticket_id: str
    sender_id: str
    is_staff_reply: bool
    message: str
    sent_at: str

    @classmethod
    def from_entity(cls, reply: TicketReply) -> "TicketReplyModel":
        return cls(
            id=reply.reply_id,
            ticket_id=reply.ticket_id,
            sender_id=reply.sender_id,
            is_staff_reply=reply.is_staff_reply,
            message=reply.message,
            sent_at=reply.sent_at.isoformat(),
        )


class TicketAssignRequest(BaseModel):
    assignee_id: str


class TicketReplyRequest(BaseModel):
    message: str | None = None


def _isoformat(value) -> str | None:
    return value.isoformat() if value is not None else None


@router.get("/{ticket_id}", response_model=TicketModel, summary="Read a ticket (staff only)")
async def get_ticket(ticket_id: str, service: TicketServiceDep, caller: CurrentCaller) -> TicketModel:
    try:
        ticket = await service.get_ticket(caller, ticket_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/assign", response_model=TicketModel, summary="Assign care staff (admin only)")
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    caller: CurrentCaller,
) -> TicketModel:
    try:
        ticket = await service.assign(caller, ticket_id, payload.assignee_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/assign-me", response_model=TicketModel, summary="Take an unassigned ticket")
async def assign_ticket_to_me(ticket_id: str, service: TicketServiceDep, caller: CurrentCaller) -> TicketModel:
    try:
        ticket = await service.assign_to_me(caller, ticket_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/close", response_model=TicketModel, summary="Close a New ticket (admin only)")
async def close_ticket(ticket_id: str, service: TicketServiceDep, caller: CurrentCaller) -> TicketModel:
    try:
        ticket = await service.close(caller, ticket_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/complete", response_model=TicketModel, summary="Complete an InProgress ticket")
async def complete_ticket(ticket_id: str, service: TicketServiceDep, caller: CurrentCaller) -> TicketModel:
    try:
        ticket = await service.complete(caller, ticket_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.get("/{ticket_id}/replies", response_model=list[TicketReplyModel], summary="Replies on a ticket")
async def list_replies(ticket_id: str, service: TicketServiceDep, caller: CurrentCaller) -> list[TicketReplyModel]:
    try:
        replies = await service.list_replies(caller, ticket_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return [TicketReplyModel.from_entity(reply) for reply in replies]


@router.post(
    "/{ticket_id}/replies",
    response_model=TicketReplyModel,
    status_code=status.HTTP_201_CREATED,
    summary="Reply as the owner, the assignee or an admin",
)
async def post_reply(
    ticket_id: str,
    payload: TicketReplyRequest,
    service: TicketServiceDep,
    caller: CurrentCaller,
) -> TicketReplyModel:
    try:
        reply = await service.reply(caller, ticket_id, payload.message)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketReplyModel.from_entity(reply)
