"""
Ticket Waiting Room API - application entry point.

Requesters join a per-event waiting list; the head of the line is offered
tickets for a fixed window, reserved against the pool so concurrent
admission never oversells. A background sweeper reclaims lapsed offers and
re-offers them in arrival order.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from waitroom.core.config import get_settings
from waitroom.core.logging import setup_logging, get_logger
from waitroom.api.errors import register_exception_handlers
from waitroom.api.router import api_router
from waitroom.api.middleware import RequestLoggingMiddleware
from waitroom.api.routes import health
from waitroom.db.session import get_session_factory
from waitroom.infrastructure.redis_client import get_redis, close_redis
from waitroom.services.sweeper_service import OfferSweeper

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger = get_logger(__name__)
    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        offer_window_minutes=settings.OFFER_WINDOW_MINUTES,
    )

    # Advisory only: observers poll when Redis is absent
    if settings.REDIS_ENABLED and await get_redis() is None:
        logger.warning("redis_unavailable", message="Observers fall back to polling")

    app.state.sweeper = OfferSweeper(get_session_factory()) if settings.SWEEPER_ENABLED else None
    if app.state.sweeper is not None:
        app.state.sweeper.start()

    try:
        yield
    finally:
        if app.state.sweeper is not None:
            await app.state.sweeper.stop()
        await close_redis()
        logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Waiting list and time-boxed ticket offers with oversell-safe admission",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time", "Retry-After"],
)
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)

app.include_router(health.router)
app.include_router(api_router)
