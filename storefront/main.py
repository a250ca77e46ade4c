from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import MemoryCache, start_eviction_sweeper
from .config import get_settings
from .database import SessionLocal, init_db
from .dependencies import http_status_for
from .errors import StorefrontError
from .events import (
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    BrokerEventQueue,
    EventQueue,
    InlineEventQueue,
    ThreadedEventQueue,
)
from .log import configure_logging, get_logger
from .notifications.dispatcher import NotificationDispatcher
from .notifications.handlers import make_order_event_handler
from .routers import admin_router, catalog_router, customer_router, order_router

logger = get_logger(__name__)


def build_event_queue(kind: str, handler) -> EventQueue:
    if kind == "inline":
        return InlineEventQueue(handler)
    if kind == "rabbitmq":
        from .messaging import start_consumer_in_thread

        start_consumer_in_thread(
            queue_name="storefront.notifications",
            binding_keys=[ORDER_CREATED, ORDER_STATUS_CHANGED],
            handler=handler,
        )
        return BrokerEventQueue()
    return ThreadedEventQueue(handler)


def start_services(app: FastAPI) -> None:
    settings = get_settings()

    app.state.cache = MemoryCache(default_ttl=settings.cache_ttl)
    app.state.cache_sweeper = start_eviction_sweeper(app.state.cache, settings.cache_check_period)

    app.state.dispatcher = NotificationDispatcher(SessionLocal, settings)
    handler = make_order_event_handler(app.state.dispatcher)
    app.state.events = build_event_queue(settings.event_queue, handler)

    logger.info(
        "services_started",
        environment=settings.environment,
        event_queue=settings.event_queue,
        sms_mode=app.state.dispatcher.mode,
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Storefront",
        description="Order lifecycle and inventory service for a hardware storefront",
        version="1.0.0",
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorefrontError)
    async def _storefront_error(request: Request, exc: StorefrontError):
        return JSONResponse(status_code=http_status_for(exc), content={"detail": exc.to_dict()})

    app.include_router(order_router.router)
    app.include_router(customer_router.router)
    app.include_router(admin_router.router)
    app.include_router(catalog_router.router)

    @app.on_event("startup")
    def _startup() -> None:
        configure_logging()
        init_db()
        # tests install their own cache, queue and dispatcher before startup
        if getattr(app.state, "events", None) is None:
            start_services(app)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        events = getattr(app.state, "events", None)
        if events is not None:
            events.close()
        sweeper = getattr(app.state, "cache_sweeper", None)
        if sweeper is not None:
            sweeper.set()

    @app.get("/")
    def root():
        return {
            "service": "Storefront",
            "status": "running",
            "version": "1.0.0",
        }

    @app.get("/health")
    def health_check():
        return {
            "status": "healthy",
            "service": "storefront",
        }

    return app


app = create_app()
