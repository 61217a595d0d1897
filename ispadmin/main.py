import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from ispadmin.api.errors import register_error_handlers
from ispadmin.api.routes import auth, chats, ping, tickets
from ispadmin.auth.directory import AdminDirectory
from ispadmin.auth.gate import AuthorizationGate
from ispadmin.auth.sessions import SessionResolver, StaticTokenSessionResolver, StoreSessionResolver
from ispadmin.chats.service import ChatService
from ispadmin.core.config import Settings, get_settings
from ispadmin.core.logging import configure_logging, init_tracer, shutdown_tracer
from ispadmin.notifications import LoggingNotifier
from ispadmin.store.base import EntityStore
from ispadmin.store.memory import InMemoryEntityStore
from ispadmin.store.postgres import PostgresEntityStore
from ispadmin.tickets.service import TicketService
from ispadmin.tickets.state import TicketStateMachine

logger = logging.getLogger(__name__)


async def _open_store(settings: Settings) -> EntityStore:
    if settings.store_backend == "memory":
        logger.warning("Using the in-memory store; data is lost on restart")
        return InMemoryEntityStore()
    store = await PostgresEntityStore.connect(
        settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    await store.ensure_schema()
    return store


def _session_resolver(settings: Settings, store: EntityStore) -> SessionResolver:
    if settings.static_session_tokens:
        logger.warning("Static session tokens are enabled")
        return StaticTokenSessionResolver(settings.static_session_tokens)
    return StoreSessionResolver(store, ttl=timedelta(seconds=settings.session_ttl_seconds))


def _wire_services(app: FastAPI, settings: Settings, store: EntityStore, resolver: SessionResolver) -> None:
    notifier = LoggingNotifier()
    app.state.store = store
    app.state.gate = AuthorizationGate(resolver, AdminDirectory(store))
    app.state.ticket_service = TicketService(
        store,
        state_machine=TicketStateMachine(strict=settings.strict_ticket_transitions),
        notifier=notifier,
        history_limit=settings.ticket_history_limit,
        max_list_limit=settings.ticket_list_max_limit,
    )
    app.state.chat_service = ChatService(
        store,
        notifier=notifier,
        max_list_limit=settings.chat_list_max_limit,
        max_messages_limit=settings.chat_messages_max_limit,
    )


def create_app(
    *,
    settings: Settings | None = None,
    store: EntityStore | None = None,
    session_resolver: SessionResolver | None = None,
) -> FastAPI:
    """Build the API application.

    ``store`` and ``session_resolver`` replace the configured backends; an
    injected store is left open on shutdown.
    """

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
        app.state.logger = configure_logging(settings)
        tracer_provider = init_tracer(settings)
        app.state.tracer_provider = tracer_provider

        owned_store = store is None
        active_store = store if store is not None else await _open_store(settings)
        resolver = session_resolver or _session_resolver(settings, active_store)
        _wire_services(app, settings, active_store, resolver)
        try:
            yield
        finally:
            if owned_store and isinstance(active_store, PostgresEntityStore):
                await active_store.close()
            shutdown_tracer(tracer_provider)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(ping.router)
    app.include_router(auth.router)
    app.include_router(tickets.router)
    app.include_router(chats.router)
    return app


app = create_app()
