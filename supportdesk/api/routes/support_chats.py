from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from supportdesk.chat import ChatMessage, ChatSession, ChatSessionStatus, OpenSessionResult
from supportdesk.dependencies.auth import CurrentCaller
from supportdesk.dependencies.support import ChatServiceDep, to_http_exception
from supportdesk.errors import SupportServiceError

router = APIRouter(prefix="/support-chats", tags=["support-chats"])


class ChatSessionModel(BaseModel):
    id: str
    customer_id: str
    assigned_staff_id: str | None = None
    status: ChatSessionStatus
    priority_level: int
    started_at: str
    closed_at: str | None = None
    last_message_at: str | None = None
    last_message_preview: str | None = None

    @classmethod
    def from_entity(cls, session: ChatSession) -> "ChatSessionModel":
        return cls(
            id=session.chat_session_id,
            customer_id=session.customer_id,
            assigned_staff_id=session.assigned_staff_id,
            status=session.status,
            priority_level=session.priority_level,
            started_at=session.started_at.isoformat(),
            closed_at=session.closed_at.isoformat() if session.closed_at else None,
            last_message_at=session.last_message_at.isoformat() if session.last_message_at else None,
            last_message_preview=session.last_message_preview,
        )


class ChatMessageModel(BaseModel):
    id: str
    session_id: str
    sender_id: str
    is_from_staff: bool
    content: str
    sent_at: str

    @classmethod
    def from_entity(cls, message: ChatMessage) -> "ChatMessageModel":
        return cls(
            id=message.message_id,
            session_id=message.chat_session_id,
            sender_id=message.sender_id,
            is_from_staff=message.is_from_staff,
            content=message.content,
            sent_at=message.sent_at.isoformat(),
        )


class OpenSessionModel(BaseModel):
    session: ChatSessionModel
    is_new: bool
    has_previous_closed_session: bool
    last_closed_session_id: str | None = None
    last_closed_at: str | None = None
    initial_message: ChatMessageModel | None = None

    @classmethod
    def from_result(cls, result: OpenSessionResult) -> "OpenSessionModel":
        closed = result.last_closed_session if result.has_previous_closed_session else None
        return cls(
            session=ChatSessionModel.from_entity(result.session),
            is_new=result.is_new,
            has_previous_closed_session=result.has_previous_closed_session,
            last_closed_session_id=closed.chat_session_id if closed else None,
            last_closed_at=(closed.closed_at or closed.started_at).isoformat() if closed else None,
            initial_message=(
                ChatMessageModel.from_entity(result.initial_message) if result.initial_message else None
            ),
        )


class OpenSessionRequest(BaseModel):
    initial_message: str | None = None


class MessageCreateRequest(BaseModel):
    content: str | None = None


class StaffTargetRequest(BaseModel):
    staff_id: str | None = None


@router.post("/open-or-get", response_model=OpenSessionModel, summary="Open or resume the caller's chat")
async def open_or_get_session(
    payload: OpenSessionRequest,
    service: ChatServiceDep,
    caller: CurrentCaller,
) -> OpenSessionModel:
    try:
        result = await service.open_or_get(caller, payload.initial_message)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return OpenSessionModel.from_result(result)


@router.get("/queue", response_model=list[ChatSessionModel], summary="Unassigned waiting sessions")
async def list_queue(
    service: ChatServiceDep,
    caller: CurrentCaller,
    page: int = Query(1, description="1-based page number"),
    page_size: int = Query(20, description="Items per page, clamped to 1..100"),
) -> list[ChatSessionModel]:
    try:
        sessions = await service.list_queue(caller, page=page, page_size=page_size)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return [ChatSessionModel.from_entity(session) for session in sessions]


@router.get("/{session_id}", response_model=ChatSessionModel)
async def get_session(session_id: str, service: ChatServiceDep, caller: CurrentCaller) -> ChatSessionModel:
    try:
        session = await service.get_session(caller, session_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatSessionModel.from_entity(session)


@router.get("/{session_id}/messages", response_model=list[ChatMessageModel])
async def list_messages(session_id: str, service: ChatServiceDep, caller: CurrentCaller) -> list[ChatMessageModel]:
    try:
        messages = await service.list_messages(caller, session_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return [ChatMessageModel.from_entity(message) for message in messages]


@router.post("/{session_id}/messages", response_model=ChatMessageModel, status_code=status.HTTP_201_CREATED)
async def post_message(
    session_id: str,
    payload: MessageCreateRequest,
    service: ChatServiceDep,
    caller: CurrentCaller,
) -> ChatMessageModel:
    try:
        message = await service.post_message(caller, session_id, payload.content)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatMessageModel.from_entity(message)


@router.post(
    "/{session_id}/admin-messages",
    response_model=ChatMessageModel,
    status_code=status.HTTP_201_CREATED,
    summary="Post into any open session as admin",
)
async def admin_post_message(
    session_id: str,
    payload: MessageCreateRequest,
    service: ChatServiceDep,
    caller: CurrentCaller,
) -> ChatMessageModel:
    try:
        message = await service.admin_post_message(caller, session_id, payload.content)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatMessageModel.from_entity(message)


@router.post("/{session_id}/claim", response_model=ChatSessionModel)
async def claim_session(session_id: str, service: ChatServiceDep, caller: CurrentCaller) -> ChatSessionModel:
    try:
        session = await service.claim(caller, session_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatSessionModel.from_entity(session)


@router.post("/{session_id}/unassign", response_model=ChatSessionModel)
async def unassign_session(session_id: str, service: ChatServiceDep, caller: CurrentCaller) -> ChatSessionModel:
    try:
        session = await service.unassign(caller, session_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatSessionModel.from_entity(session)


@router.post("/{session_id}/close", response_model=ChatSessionModel)
async def close_session(session_id: str, service: ChatServiceDep, caller: CurrentCaller) -> ChatSessionModel:
    try:
        session = await service.close_session(caller, session_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatSessionModel.from_entity(session)


@router.post("/{session_id}/admin-assign", response_model=ChatSessionModel)
async def admin_assign_staff(
    session_id: str,
    payload: StaffTargetRequest,
    service: ChatServiceDep,
    caller: CurrentCaller,
) -> ChatSessionModel:
    try:
        session = await service.admin_assign_staff(caller, session_id, payload.staff_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatSessionModel.from_entity(session)


@router.post("/{session_id}/admin-transfer", response_model=ChatSessionModel)
async def admin_transfer_staff(
    session_id: str,
    payload: StaffTargetRequest,
    service: ChatServiceDep,
    caller: CurrentCaller,
) -> ChatSessionModel:
    try:
        session = await service.admin_transfer_staff(caller, session_id, payload.staff_id)
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatSessionModel.from_entity(session)
