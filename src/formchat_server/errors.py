"""Global exception handlers — map domain and infrastructure errors to HTTP.

Route handlers stay focused on the happy path; anything they let escape is
logged here with full detail and answered with a generic, client-safe
message.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from formchat_engine.errors import FormchatError, InfrastructureError

logger = logging.getLogger(__name__)


async def infrastructure_error_handler(
    request: Request, exc: InfrastructureError
) -> JSONResponse:
    """Downstream dependency (store, queue, gateway) unavailable → 503."""
    logger.error("Infrastructure error at %s: %s", request.url, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable"},
    )


async def formchat_error_handler(request: Request, exc: FormchatError) -> JSONResponse:
    """Data-level engine errors (bad field definition, corrupt session) → 422."""
    logger.warning("%s at %s: %s", type(exc).__name__, request.url, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": "Request could not be processed"},
    )


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Malformed identifiers and similar caller mistakes → 400."""
    logger.warning("ValueError at %s: %s", request.url, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid request"})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
