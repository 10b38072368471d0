from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fleetdesk.core.settings import settings

logger = logging.getLogger(__name__)


class FleetdeskError(Exception):
    """Base class for failures scoped to a single user action."""

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class AuthExpired(FleetdeskError):
    """The backend refused the bearer token; the operator must sign in again."""

    status_code = 403
    code = "session_expired"

    def __init__(self, message: str = "Session expired, please sign in again", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ValidationFailure(FleetdeskError):
    status_code = 422

    def __init__(self, code: str, message: str, *, details: dict | None = None) -> None:
        super().__init__(message, details=details)
        self.code = code


class BackendError(FleetdeskError):
    """Network failure or non-2xx response from the backend API."""

    status_code = 502
    code = "backend_error"

    def __init__(self, message: str, *, status: int | None = None, text: str = "", details: dict | None = None) -> None:
        merged = {"backend_status": status, "backend_text": text}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.status = status
        self.text = text


class ActionInProgress(FleetdeskError):
    status_code = 409
    code = "action_in_progress"

    def __init__(self, object_id: str) -> None:
        super().__init__(
            f"An action for object {object_id} is still being processed",
            details={"object_id": object_id},
        )
        self.object_id = object_id


class BulkDeclineUnsupported(FleetdeskError):
    code = "bulk_decline_unsupported"

    def __init__(self, object_ids: list[str] | None = None) -> None:
        super().__init__(
            "Bulk decline is not available; decline objects individually with a specific reason",
            details={"object_ids": list(object_ids or [])},
        )


class Forbidden(FleetdeskError):
    status_code = 403
    code = "forbidden"


class ObjectNotFound(FleetdeskError):
    status_code = 404
    code = "not_found"

    def __init__(self, object_id: str) -> None:
        super().__init__(f"Pending object {object_id} not found", details={"object_id": object_id})


# status -> (code, message) for errors raised by the framework itself
_HTTP_DEFAULTS: dict[int, tuple[str, str]] = {
    400: ("bad_request", "Bad request"),
    401: ("unauthorized", "Sign in to continue"),
    403: ("forbidden", "You do not have access to this action"),
    404: ("not_found", "Not found"),
    405: ("method_not_allowed", "Method not allowed"),
    409: ("conflict", "Conflict"),
    422: ("unprocessable_entity", "Unprocessable entity"),
    502: ("backend_error", "The backend could not be reached"),
}


def _http_defaults(status_code: int) -> tuple[str, str]:
    if status_code in _HTTP_DEFAULTS:
        return _HTTP_DEFAULTS[status_code]
    try:
        return "http_error", HTTPStatus(status_code).phrase
    except ValueError:
        return "http_error", "Request failed"


def _as_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return dict(details)
    if isinstance(details, list):
        return {"errors": details}
    return {"detail": str(details)}


def _build_response(
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Error envelope; every error carries the auto-dismiss hint for the toast."""
    normalized = _as_details(details)
    normalized.setdefault("dismiss_after_seconds", settings.error_dismiss_seconds)
    payload = {"code": code, "message": message, "data": None, "details": normalized}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload), headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message = _http_defaults(exc.status_code)
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code") or code
        message = detail.get("message") or message
        details = detail.get("details")
    elif isinstance(detail, str) and detail:
        message = detail
        details = None
    else:
        details = detail
    return _build_response(exc.status_code, code, message, details, headers=getattr(exc, "headers", None))


async def fleetdesk_exception_handler(request: Request, exc: FleetdeskError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s: %s", exc.code, exc.message, extra={"event": "request.failed"})
    return _build_response(exc.status_code, exc.code, exc.message, exc.details)


def _location(error: dict) -> str:
    parts = [str(part) for part in error.get("loc") or [] if part not in {"body", "query", "path", "header"}]
    return ".".join(parts)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0] or {}
        location = _location(first)
        text = first.get("msg") or message
        message = f"{location}: {text}" if location else str(text)
    return _build_response(422, "validation_error", message, {"errors": errors})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _build_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(FleetdeskError, fleetdesk_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
