"""Centralized exception handlers for the API."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from c4g.exceptions import PlatformError

logger = logging.getLogger(__name__)


def handle_platform_error(request: Request, exc: PlatformError) -> JSONResponse:
    """Render a PlatformError with its own status code and machine-readable code."""
    error = {
        "code": exc.code,
        "message": str(exc) or exc.code,
        "type": exc.__class__.__name__,
    }
    if exc.details:
        error.update(exc.details)

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": error})


def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """Log the full exception and return a generic error to the client."""
    logger.exception(f"Unexpected exception in {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred",
                "type": "InternalServerError",
            },
        },
    )


def register_exception_handlers(app):
    app.add_exception_handler(PlatformError, handle_platform_error)
    app.add_exception_handler(Exception, handle_unexpected_exception)
