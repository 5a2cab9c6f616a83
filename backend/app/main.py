"""Doula Workflow Engine - FastAPI Application."""

import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from api.v1.router import api_v1_router
from api.routes import health
from db.database import close_db, init_db
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        if get_settings().is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()
    settings.validate_secrets()

    await init_db()

    poller_stop = None
    if settings.RUN_INPROCESS_SCHEDULER:
        poller_stop = _start_scheduler_poller(settings.SCHEDULER_POLL_INTERVAL_SECONDS)
        logger.info(f"In-process scheduler started ({settings.SCHEDULER_POLL_INTERVAL_SECONDS}s interval)")

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield

    if poller_stop is not None:
        poller_stop.set()
    await close_db()
    logger.info("Application shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Multi-tenant workflow automation for doula practices: "
                    "record triggers, timed follow-ups and client messaging.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(RequestTrackingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API, all business endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


def _start_scheduler_poller(interval: int) -> threading.Event:
    """Launch a daemon thread that runs a scheduler cycle every ``interval`` seconds.

    Used for single-process deployments without Celery beat. Each cycle gets its
    own event loop and engine, like a Celery task would.
    Returns a threading.Event that stops the poller when set.
    """
    import asyncio

    from db.worker_session import worker_session_factory
    from workflow.scheduler import ExecutionScheduler

    stop_event = threading.Event()
    poller_logger = logging.getLogger("scheduler-poller")

    async def _cycle() -> dict:
        async with worker_session_factory() as factory:
            report = await ExecutionScheduler(factory).run_cycle()
        return report.to_dict()

    def _poller_loop():
        poller_logger.info("Scheduler poller thread started")
        # Let the app finish starting
        stop_event.wait(timeout=5)

        while not stop_event.is_set():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                result = loop.run_until_complete(_cycle())
                if result.get("claimed", 0) > 0:
                    poller_logger.info(f"Scheduler cycle: {result}")
            except Exception as e:
                poller_logger.error(f"Scheduler cycle failed: {e}", exc_info=True)
            finally:
                loop.close()

            stop_event.wait(timeout=interval)

        poller_logger.info("Scheduler poller thread stopped")

    t = threading.Thread(target=_poller_loop, daemon=True, name="scheduler-poller")
    t.start()
    return stop_event


app = create_app()
