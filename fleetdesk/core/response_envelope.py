from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from fleetdesk.core.settings import settings

_SUCCESS_CODES = {200: "ok", 201: "created", 202: "accepted"}
_MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_SKIP_HEADERS = frozenset({"content-length", "content-type"})


def success_envelope(data: Any, status_code: int, method: str = "GET") -> dict[str, Any]:
    """Wrap a handler payload; mutations carry the success auto-dismiss hint."""
    try:
        message = HTTPStatus(status_code).phrase
    except ValueError:
        message = "Success"
    details: dict[str, Any] = {}
    if method.upper() in _MUTATING_METHODS:
        details["dismiss_after_seconds"] = settings.success_dismiss_seconds
    return {
        "code": _SUCCESS_CODES.get(status_code, "ok"),
        "message": message,
        "data": data,
        "details": details,
    }


def is_enveloped(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "code" in payload
        and "message" in payload
        and ("data" in payload or "details" in payload)
    )


def _with_headers(source: Response, target: Response) -> Response:
    for key, value in source.headers.items():
        if key.lower() not in _SKIP_HEADERS:
            target.headers[key] = value
    return target


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON responses in ``{code, message, data, details}``.

    Error responses are already enveloped by the exception handlers and pass
    through untouched, as does anything under ``exclude_paths``.
    """

    def __init__(self, app, exclude_paths: Iterable[str] = ()) -> None:
        super().__init__(app)
        self.exclude_paths = frozenset(exclude_paths)

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)
        if request.url.path in self.exclude_paths or not 200 <= response.status_code < 300:
            return response

        if response.status_code == 204:
            return _with_headers(response, JSONResponse(success_envelope(None, 200, request.method)))

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("application/json"):
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            return _with_headers(
                response, Response(content=body, status_code=response.status_code, media_type=content_type)
            )

        if not is_enveloped(payload):
            payload = success_envelope(payload, response.status_code, request.method)
        return _with_headers(response, JSONResponse(status_code=response.status_code, content=payload))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware, exclude_paths=[app.openapi_url] if app.openapi_url else [])
