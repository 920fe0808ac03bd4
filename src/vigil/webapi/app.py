"""FastAPI application exposing activity events and monitoring status."""

import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from sqlalchemy import Engine

from .. import __version__
from ..config.logging import get_logger
from ..engine import MonitorEngine
from ..ormdb.database import check_database_health
from .exceptions import setup_exception_handlers
from .models import (
    ActivityRequest,
    ActivityResponse,
    HealthResponse,
    MonitorStatusResponse,
)

logger = get_logger(__name__)


async def add_request_id_middleware(request: Request, call_next):
    """Add unique request ID to each request for tracking."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)

    # Add request ID to response headers
    response.headers["X-Request-ID"] = request_id

    logger.debug(
        "Request completed",
        request_id=request_id,
        status_code=response.status_code,
        method=request.method,
        path=request.url.path,
    )
    return response


def get_monitor_engine(request: Request) -> MonitorEngine:
    return request.app.state.engine


def create_app(
    engine: MonitorEngine,
    database_engine: Optional[Engine] = None,
    manage_engine: bool = True,
) -> FastAPI:
    """
    Create the monitoring API.

    Args:
        engine: Monitor engine the endpoints talk to
        database_engine: SQLAlchemy engine to include in health checks
        manage_engine: Start and stop the monitor engine with the app

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Vigil monitoring API")
        if manage_engine:
            await engine.start()

        yield

        logger.info("Shutting down Vigil monitoring API")
        if manage_engine:
            await engine.stop()
        logger.info("Vigil monitoring API shutdown completed")

    app = FastAPI(
        title="Vigil Monitoring API",
        description="Activity events and status for the market alert monitor.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.database_engine = database_engine

    # Add middleware for request tracking
    app.middleware("http")(add_request_id_middleware)

    # Setup exception handlers
    setup_exception_handlers(app)

    @app.post(
        "/activity",
        response_model=ActivityResponse,
        status_code=202,
        summary="Record user activity on an instrument",
    )
    async def record_activity(
        payload: ActivityRequest,
        request: Request,
        monitor: MonitorEngine = Depends(get_monitor_engine),
    ) -> ActivityResponse:
        """Bias the instrument's polling toward the active cadence."""
        queued = monitor.notify_activity(payload.user_id, payload.symbol)
        return ActivityResponse(
            symbol=payload.symbol,
            queued=queued,
            request_id=request.state.request_id,
        )

    @app.get(
        "/monitor/status",
        response_model=MonitorStatusResponse,
        summary="Monitoring engine status",
    )
    async def monitor_status(
        request: Request, monitor: MonitorEngine = Depends(get_monitor_engine)
    ) -> MonitorStatusResponse:
        return MonitorStatusResponse(
            data=monitor.status(), request_id=request.state.request_id
        )

    @app.get("/health", response_model=HealthResponse, summary="Basic Health Check")
    async def health(
        request: Request, monitor: MonitorEngine = Depends(get_monitor_engine)
    ) -> HealthResponse:
        """Report engine and (when configured) database health."""
        status = monitor.status()
        services = {
            "engine": {
                "status": "healthy" if status["running"] else "unhealthy",
                "monitored_symbols": status["monitored_count"],
                "inflight_ticks": status["inflight_ticks"],
            }
        }
        if app.state.database_engine is not None:
            services["database"] = check_database_health(app.state.database_engine)

        statuses = [service["status"] for service in services.values()]
        if "unhealthy" in statuses:
            overall_status = "unhealthy"
        elif "degraded" in statuses:
            overall_status = "degraded"
        else:
            overall_status = "healthy"

        return HealthResponse(
            status=overall_status,
            services=services,
            uptime_seconds=status["uptime_seconds"],
            version=__version__,
            request_id=request.state.request_id,
        )

    return app
