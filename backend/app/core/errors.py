"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes for the alert lifecycle
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Error taxonomy:

    ValidationError             malformed submission, rejected before any
                                Alert exists (caller resubmits)
    TransientCollaboratorError  geocoder / plan generator timeout or
                                retryable failure (recovered locally)
    PlanGenerationError         plan generator rejected the request
                                (not retried, recovered by fallback)
    FatalPipelineError          configuration / programming bug, surfaces
                                only as the Failed state
    ConcurrencyConflict         racing transitions (serialised internally)
    InvalidTransitionError      operator asked for an illegal transition

Usage:
    from backend.app.core.errors import ValidationError, NotFoundError

    raise ValidationError("description too short", field="description")
    raise NotFoundError("Alert", alert_id="ALR-000000000000")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class ReliefAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(ReliefAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(ReliefAPIError):
    """Submission failed validation (422). Carries the offending field."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )
        self.field = field


class InvalidTransitionError(ReliefAPIError):
    """Requested state transition is not allowed from the current state (409)."""

    def __init__(self, alert_id: str, current: str, target: str):
        super().__init__(
            message=f"Alert {alert_id} cannot move from {current} to {target}",
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={"alert_id": alert_id, "current_state": current, "target_state": target},
        )
        self.alert_id = alert_id
        self.current = current
        self.target = target


class ConcurrencyConflict(ReliefAPIError):
    """A merge or re-plan raced an in-flight transition (409)."""

    def __init__(self, alert_id: str, message: str = "concurrent update"):
        super().__init__(
            message=f"Alert {alert_id}: {message}",
            status_code=409,
            error_code="CONCURRENCY_CONFLICT",
            details={"alert_id": alert_id},
        )


class TransientCollaboratorError(ReliefAPIError):
    """External collaborator timed out or failed in a retryable way (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Collaborator '{service}' failed transiently: {message}",
            status_code=502,
            error_code="COLLABORATOR_UNAVAILABLE",
            details={"service": service, **details},
        )
        self.service = service


class PlanGenerationError(ReliefAPIError):
    """Plan generator rejected the request or returned garbage (502)."""

    def __init__(self, message: str = "", **details: Any):
        super().__init__(
            message=f"Plan generation failed: {message}",
            status_code=502,
            error_code="PLAN_GENERATION_ERROR",
            details=details,
        )


class FatalPipelineError(ReliefAPIError):
    """Unrecoverable configuration or programming error (500)."""

    def __init__(self, alert_id: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Pipeline failure for {alert_id}: {message}",
            status_code=500,
            error_code="FATAL_PIPELINE_ERROR",
            details={"alert_id": alert_id, **details},
        )
        self.alert_id = alert_id


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(ReliefAPIError)
    async def handle_relief_error(request: Request, exc: ReliefAPIError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        # drop the "body" / "query" prefix so field names match domain errors
        loc = [str(p) for p in first.get("loc", ())][1:]
        details: Dict[str, Any] = {"errors": len(errors)}
        if loc:
            details["field"] = ".".join(loc)
        logger.warning("Request validation failed: %s", first.get("msg", "invalid request"))
        return _build_error_response(
            422, "VALIDATION_ERROR", first.get("msg", "Invalid request"),
            details, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
