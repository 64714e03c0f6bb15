"""Global exception handlers for the FastAPI application."""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError

from app.hosting.errors import (
    CredentialsGoneError,
    DuplicateJobError,
    HostingConflictError,
    HostingNotFoundError,
)

logger = logging.getLogger(__name__)


def _log_context(request: Request) -> str:
    request_id = getattr(request.state, "request_id", "-")
    return f"[{request_id}] {request.method} {request.url.path}"


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI application."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Return a clean 422 with structured validation errors."""
        errors = [
            {
                "field": " -> ".join(str(loc) for loc in err.get("loc", [])),
                "message": err.get("msg", "Validation error"),
                "type": err.get("type", "unknown"),
            }
            for err in exc.errors()
        ]
        logger.warning("Validation error on %s: %s", _log_context(request), errors)
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": errors},
        )

    @app.exception_handler(HostingNotFoundError)
    async def hosting_not_found_handler(
        request: Request, exc: HostingNotFoundError
    ) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(CredentialsGoneError)
    async def credentials_gone_handler(
        request: Request, exc: CredentialsGoneError
    ) -> JSONResponse:
        return JSONResponse(status_code=410, content={"detail": str(exc)})

    @app.exception_handler(HostingConflictError)
    async def hosting_conflict_handler(
        request: Request, exc: HostingConflictError
    ) -> JSONResponse:
        """Invalid status transitions, duplicate jobs and live-domain conflicts."""
        logger.warning("Conflict on %s: %s", _log_context(request), exc)
        content = {"detail": str(exc)}
        if isinstance(exc, DuplicateJobError):
            content["job_id"] = exc.job_id
        return JSONResponse(status_code=409, content=content)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(
        request: Request, exc: IntegrityError
    ) -> JSONResponse:
        """Database constraint violations, e.g. a second live hosting service for a domain."""
        error_msg = str(exc.orig) if exc.orig else str(exc)
        lowered = error_msg.lower()
        if "unique" in lowered or "duplicate" in lowered:
            detail = "A record with this value already exists"
        elif "foreign key" in lowered:
            detail = "Referenced record does not exist or cannot be removed"
        else:
            detail = "Database constraint violation"

        logger.warning("IntegrityError on %s: %s", _log_context(request), error_msg)
        return JSONResponse(status_code=409, content={"detail": detail})

    @app.exception_handler(OperationalError)
    async def operational_error_handler(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        logger.error("Database operational error on %s: %s", _log_context(request), exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable"},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions: log full traceback, return 500."""
        logger.error(
            "Unhandled exception on %s: %s\n%s",
            _log_context(request),
            exc,
            traceback.format_exc(),
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
