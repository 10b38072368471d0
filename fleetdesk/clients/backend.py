from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx
from pydantic import ValidationError

from fleetdesk.core.context import get_request_id
from fleetdesk.core.errors import AuthExpired, BackendError
from fleetdesk.core.settings import settings
from fleetdesk.schemas.access import FieldConfig, FieldSetting
from fleetdesk.schemas.insured_objects import AmountConfig, CalculationMethod

logger = logging.getLogger(__name__)


USER_PATH = "/user"
ORGANIZATION_PATH = "/organization"
INSURED_OBJECT_PATH = "/insured-object"

# keys under which the backend has been seen to nest list payloads
_LIST_KEYS = ("items", "objects", "insuredObjects")
_FIELD_CONFIG_KEYS = ("fieldConfig", "field_config", "boat_fields_config")


def approval_body(
    premium: AmountConfig | None = None,
    own_risk: AmountConfig | None = None,
) -> dict[str, Any] | None:
    """Approve payload for operator overrides; ``None`` means use stored defaults."""
    if premium is None and own_risk is None:
        return None
    body: dict[str, Any] = {}
    if premium is not None:
        body["premium"] = _method_value(premium)
    if own_risk is not None:
        body["ownRisk"] = _method_value(own_risk)
    return body


def _method_value(config: AmountConfig) -> dict[str, Any]:
    method = CalculationMethod(config.method)
    value = config.percentage if method == CalculationMethod.PERCENTAGE else config.fixed_amount
    return {"method": method.value, "value": float(value)}


def _parse_field_config(raw: Any) -> FieldConfig | None:
    if not isinstance(raw, dict):
        return None
    config: FieldConfig = {}
    for key, setting in raw.items():
        if not isinstance(setting, dict):
            continue
        try:
            config[str(key)] = FieldSetting.model_validate(setting)
        except ValidationError:
            logger.warning("Ignoring malformed field setting %s", key)
    return config


class BackendClient:
    """Async client for the insurance backend API.

    A 403 is surfaced as :class:`AuthExpired`; every other failure, including
    transport errors, as :class:`BackendError`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.backend_api_url).rstrip("/"),
            timeout=timeout if timeout is not None else settings.backend_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        request_id = get_request_id()
        if request_id != "-":
            headers["X-Request-ID"] = request_id
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        token: str | None,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=self._headers(token)
            )
        except httpx.HTTPError as exc:
            logger.warning("Backend %s %s failed: %s", method, path, exc)
            raise BackendError(f"Backend unreachable: {exc}") from exc
        if response.status_code == 403:
            raise AuthExpired()
        if response.is_error:
            text = response.reason_phrase or response.text
            raise BackendError(
                f"{response.status_code} {text}".strip(),
                status=response.status_code,
                text=text,
                details=_error_details(response),
            )
        return response

    async def get_user(self, token: str, subject_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"{USER_PATH}/{subject_id}", token)
        payload = _json(response)
        if isinstance(payload, dict) and isinstance(payload.get("user"), dict):
            return payload["user"]
        return payload if isinstance(payload, dict) else {}

    async def get_organization_config(self, token: str | None, name: str) -> FieldConfig | None:
        response = await self._request("GET", ORGANIZATION_PATH, token, params={"name": name})
        payload = _json(response)
        organizations = payload.get("organizations") if isinstance(payload, dict) else None
        if not organizations:
            return None
        match = next(
            (org for org in organizations if isinstance(org, dict) and org.get("name") == name),
            organizations[0],
        )
        if not isinstance(match, dict):
            return None
        for key in _FIELD_CONFIG_KEYS:
            if key in match:
                return _parse_field_config(match[key])
        return None

    async def list_pending_objects(self, token: str, statuses: Iterable[str]) -> list[Any]:
        response = await self._request(
            "GET",
            INSURED_OBJECT_PATH,
            token,
            params={"status": ",".join(statuses)},
        )
        payload = _json(response)
        if isinstance(payload, dict):
            for key in _LIST_KEYS:
                if isinstance(payload.get(key), list):
                    return payload[key]
            return []
        return payload if isinstance(payload, list) else []

    async def approve_object(self, token: str, object_id: str, body: dict[str, Any] | None = None) -> None:
        await self._request("PUT", f"{INSURED_OBJECT_PATH}/{object_id}/approve", token, json=body)

    async def decline_object(self, token: str, object_id: str, reason: str) -> None:
        await self._request("PUT", f"{INSURED_OBJECT_PATH}/{object_id}/decline", token, json={"reason": reason})


def _json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise BackendError("Backend returned malformed JSON", status=response.status_code) from exc


def _error_details(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    if isinstance(payload, dict) and payload.get("message"):
        return {"backend_message": payload["message"]}
    return {}
