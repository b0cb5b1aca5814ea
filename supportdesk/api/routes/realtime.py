from __future__ import annotations

import logging
from typing import Annotated, Any, AsyncIterator, Iterable

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from supportdesk.chat import SupportChatService
from supportdesk.core.config import get_settings
from supportdesk.dependencies.auth import CurrentCaller, resolve_caller_from_token
from supportdesk.dependencies.support import (
    ChatServiceDep,
    IdentityGateDep,
    NotificationHubDep,
    TicketServiceDep,
    to_http_exception,
)
from supportdesk.errors import ForbiddenError, InvalidOperationError, SupportServiceError
from supportdesk.identity import CallerContext, IdentityGate, is_staff_or_admin
from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import HUB_SUBSCRIBERS
from supportdesk.notifications import (
    STAFF_CHANNEL,
    NotificationHub,
    QueueSubscriber,
    Subscriber,
    WebSocketSubscriber,
    user_channel,
)
from supportdesk.tickets import TicketService
from supportdesk.tickets.service import STAFF_ONLY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

UNKNOWN_CHANNEL = "Unknown channel"


class ChannelAuthorizer:
    """Decide which hub channels a caller may listen on.

    ``ticket:`` and ``support:`` channels reuse the read checks of the ticket
    and chat services, so a caller can only follow what it could fetch.
    """

    def __init__(self, gate: IdentityGate, tickets: TicketService, chats: SupportChatService) -> None:
        self._gate = gate
        self._tickets = tickets
        self._chats = chats

    async def default_channels(self, caller: CallerContext) -> list[str]:
        account = await self._gate.require_active(caller)
        channels = [user_channel(account.user_id)]
        if is_staff_or_admin(account.roles):
            channels.append(STAFF_CHANNEL)
        return channels

    async def authorize(self, caller: CallerContext, channel: str) -> str:
        prefix, _, key = channel.partition(":")
        if channel == STAFF_CHANNEL:
            await self._gate.require_staff(caller, reason=STAFF_ONLY)
        elif prefix == "user" and key:
            account = await self._gate.require_active(caller)
            if key != account.user_id:
                raise ForbiddenError(STAFF_ONLY)
        elif prefix == "ticket" and key:
            await self._tickets.get_ticket(caller, key)
        elif prefix == "support" and key:
            await self._chats.get_session(caller, key)
        else:
            raise InvalidOperationError(f"{UNKNOWN_CHANNEL}: {channel}")
        return channel

    async def resolve(self, caller: CallerContext, requested: Iterable[str]) -> list[str]:
        channels = await self.default_channels(caller)
        for channel in requested:
            if channel not in channels:
                channels.append(await self.authorize(caller, channel))
        return channels


def _registry(app: Any) -> MetricsRegistry:
    return getattr(app.state, "metrics_registry", None) or metrics_registry


def _subscribe(hub: NotificationHub, subscriber: Subscriber, channels: Iterable[str]) -> None:
    for channel in channels:
        hub.subscribe(channel, subscriber)


async def _event_stream(hub: NotificationHub, subscriber: QueueSubscriber) -> AsyncIterator[str]:
    try:
        async for frame in subscriber.iter_sse():
            yield frame
    finally:
        hub.unsubscribe_all(subscriber)
        subscriber.close()
        logger.debug("SSE subscriber %s disconnected", subscriber.subscriber_id)


@router.get(
    "/stream",
    response_class=StreamingResponse,
    summary="Stream hub events via Server-Sent Events",
)
async def stream_events(
    request: Request,
    caller: CurrentCaller,
    hub: NotificationHubDep,
    gate: IdentityGateDep,
    tickets: TicketServiceDep,
    chats: ChatServiceDep,
    channel: Annotated[list[str] | None, Query(description="Extra ticket:/support: channels")] = None,
) -> StreamingResponse:
    authorizer = ChannelAuthorizer(gate, tickets, chats)
    try:
        channels = await authorizer.resolve(caller, channel or [])
    except SupportServiceError as exc:
        raise to_http_exception(exc) from exc

    subscriber = QueueSubscriber(maxsize=get_settings().hub_subscriber_queue_size)
    _subscribe(hub, subscriber, channels)
    _registry(request.app).counter(HUB_SUBSCRIBERS, label_names=("transport",)).inc(labels={"transport": "sse"})
    logger.info("SSE subscriber %s joined %s", subscriber.subscriber_id, ", ".join(channels))
    return StreamingResponse(_event_stream(hub, subscriber), media_type="text/event-stream")


def _websocket_caller(websocket: WebSocket) -> CallerContext:
    token = websocket.query_params.get("token")
    if token is None:
        scheme, _, credentials = (websocket.headers.get("authorization") or "").partition(" ")
        if scheme.lower() == "bearer" and credentials:
            token = credentials
    return resolve_caller_from_token(token, get_settings())


async def _send_error(websocket: WebSocket, status_code: int, detail: str) -> None:
    await websocket.send_json({"type": "error", "status": status_code, "detail": detail})


@router.websocket("/ws")
async def realtime_websocket(websocket: WebSocket) -> None:
    """Push hub events over a WebSocket.

    Clients may send ``{"action": "subscribe" | "unsubscribe", "channel": ...}``
    frames to follow further ticket or chat channels.
    """

    await websocket.accept()
    state = websocket.app.state
    hub: NotificationHub | None = getattr(state, "notification_hub", None)
    gate = getattr(state, "identity_gate", None)
    tickets = getattr(state, "ticket_service", None)
    chats = getattr(state, "chat_service", None)
    if hub is None or gate is None or tickets is None or chats is None:
        await _send_error(websocket, 503, "Notification hub is not configured")
        await websocket.close()
        return

    authorizer = ChannelAuthorizer(gate, tickets, chats)
    subscriber = WebSocketSubscriber(websocket)
    try:
        caller = _websocket_caller(websocket)
        channels = await authorizer.default_channels(caller)
    except HTTPException as exc:
        await _send_error(websocket, exc.status_code, str(exc.detail))
        await websocket.close()
        return
    except SupportServiceError as exc:
        await _send_error(websocket, exc.status_code, str(exc))
        await websocket.close()
        return

    _subscribe(hub, subscriber, channels)
    _registry(websocket.app).counter(HUB_SUBSCRIBERS, label_names=("transport",)).inc(labels={"transport": "websocket"})
    logger.info("WebSocket subscriber %s joined %s", subscriber.subscriber_id, ", ".join(channels))

    try:
        await websocket.send_json({"type": "subscribed", "channels": channels})
        while True:
            frame = await websocket.receive_json()
            action = str(frame.get("action", "")) if isinstance(frame, dict) else ""
            channel = str(frame.get("channel", "")) if isinstance(frame, dict) else ""
            if action == "subscribe":
                try:
                    await authorizer.authorize(caller, channel)
                except SupportServiceError as exc:
                    await _send_error(websocket, exc.status_code, str(exc))
                    continue
                hub.subscribe(channel, subscriber)
                await websocket.send_json({"type": "subscribed", "channels": [channel]})
            elif action == "unsubscribe":
                hub.unsubscribe(channel, subscriber)
                await websocket.send_json({"type": "unsubscribed", "channels": [channel]})
            else:
                await _send_error(websocket, 400, f"Unsupported action: {action or '<missing>'}")
    except WebSocketDisconnect:
        logger.debug("WebSocket subscriber %s disconnected", subscriber.subscriber_id)
    finally:
        hub.unsubscribe_all(subscriber)
