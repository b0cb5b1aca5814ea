from contextlib import asynccontextmanager

from fastapi import FastAPI

from supportdesk.api.routes import metrics, ping, realtime, support_chats, tickets
from supportdesk.audit import AuditLogger
from supportdesk.chat import SupportChatService
from supportdesk.core.config import get_settings
from supportdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from supportdesk.identity import IdentityGate
from supportdesk.metrics import metrics_registry, register_default_metrics
from supportdesk.mutations import MutationRunner
from supportdesk.notifications import NotificationHub
from supportdesk.storage import build_store
from supportdesk.tickets import SlaPolicy, SlaSweeper, TicketService, TicketStateMachine


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    registry = register_default_metrics(metrics_registry)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.metrics_registry = registry
    app.state.ticket_service = None
    app.state.chat_service = None
    app.state.identity_gate = None

    hub = NotificationHub(send_timeout=settings.hub_send_timeout_seconds, metrics=registry)
    app.state.notification_hub = hub

    store = None
    audit = None
    sweeper = None
    try:
        store = build_store(settings)
        await store.ensure_schema()
        gate = IdentityGate(store)
        audit = AuditLogger(store, metrics=registry)
        runner = MutationRunner(retry_attempts=settings.mutation_retry_attempts, metrics=registry)
        ticket_service = TicketService(
            store,
            gate,
            hub,
            audit,
            state_machine=TicketStateMachine(SlaPolicy(warning_ratio=settings.sla_warning_ratio)),
            runner=runner,
            metrics=registry,
        )
        app.state.identity_gate = gate
        app.state.ticket_service = ticket_service
        app.state.chat_service = SupportChatService(store, gate, hub, audit, runner=runner, metrics=registry)
        if settings.sla_sweep_enabled:
            sweeper = SlaSweeper(ticket_service, interval_seconds=settings.sla_sweep_interval_seconds, metrics=registry)
            sweeper.start()
        logger.info("Support services ready (storage=%s)", settings.storage_backend)
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Support services could not be initialised")
        app.state.identity_gate = None
        app.state.ticket_service = None
        app.state.chat_service = None
        if store is not None:
            await store.close()
            store = None
    app.state.sla_sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        if audit is not None:
            await audit.drain()
        if store is not None:
            await store.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(tickets.router)
    app.include_router(support_chats.router)
    app.include_router(realtime.router)
    return app


app = create_app()
