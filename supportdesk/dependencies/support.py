from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from supportdesk.chat import SupportChatService
from supportdesk.errors import SupportServiceError
from supportdesk.identity import IdentityGate
from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.notifications import NotificationHub
from supportdesk.tickets import TicketService


def to_http_exception(exc: SupportServiceError) -> HTTPException:
    """Translate a service outcome into the matching HTTP error."""

    return HTTPException(status_code=exc.status_code, detail=str(exc))


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_chat_service(request: Request) -> SupportChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Support chat service is not configured")
    return service


async def get_identity_gate(request: Request) -> IdentityGate:
    gate = getattr(request.app.state, "identity_gate", None)
    if gate is None:
        raise HTTPException(status_code=503, detail="Identity gate is not configured")
    return gate


async def get_notification_hub(request: Request) -> NotificationHub:
    hub = getattr(request.app.state, "notification_hub", None)
    if hub is None:
        raise HTTPException(status_code=503, detail="Notification hub is not configured")
    return hub


async def get_metrics_registry(request: Request) -> MetricsRegistry:
    return getattr(request.app.state, "metrics_registry", None) or metrics_registry


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
ChatServiceDep = Annotated[SupportChatService, Depends(get_chat_service)]
IdentityGateDep = Annotated[IdentityGate, Depends(get_identity_gate)]
NotificationHubDep = Annotated[NotificationHub, Depends(get_notification_hub)]
MetricsRegistryDep = Annotated[MetricsRegistry, Depends(get_metrics_registry)]
