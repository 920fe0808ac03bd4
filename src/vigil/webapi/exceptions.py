"""Error handling for the monitoring API."""

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config.logging import get_logger
from ..exceptions import (
    InvalidAlertError,
    MarketDataUnavailableError,
    NotificationError,
    PersistenceError,
    VigilError,
)
from .models import ErrorResponse

logger = get_logger(__name__)

# Most specific class first
_STATUS_BY_ERROR = (
    (InvalidAlertError, 422),
    (MarketDataUnavailableError, 503),
    (PersistenceError, 503),
    (NotificationError, 502),
)


def status_for(exc: VigilError) -> int:
    """HTTP status code a domain error is reported with."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"type": error_type, "message": message, "status_code": status_code}
    if details:
        error["details"] = details
    body = ErrorResponse(error=error, request_id=getattr(request.state, "request_id", None))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def vigil_exception_handler(request: Request, exc: VigilError) -> JSONResponse:
    status_code = status_for(exc)
    logger.error(
        "Monitoring error reached the API",
        exception_type=type(exc).__name__,
        message=exc.message,
        status_code=status_code,
        path=request.url.path,
    )
    return _error_response(request, status_code, type(exc).__name__, exc.message, exc.details)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report which request fields failed validation."""
    field_errors = {
        ".".join(str(part) for part in error["loc"] if part != "body"): error["msg"]
        for error in exc.errors()
    }
    logger.warning("Rejected invalid request", field_errors=field_errors, path=request.url.path)
    return _error_response(
        request,
        422,
        "ValidationError",
        "Request validation failed",
        {"field_errors": field_errors},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP error", status_code=exc.status_code, path=request.url.path)
    return _error_response(request, exc.status_code, "HTTPException", str(exc.detail))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures; internal details are not exposed to clients."""
    logger.error(
        "Unhandled exception in API",
        exception_type=type(exc).__name__,
        path=request.url.path,
        exc_info=True,
    )
    return _error_response(request, 500, "InternalServerError", "An unexpected error occurred")


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app."""
    app.add_exception_handler(VigilError, vigil_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
