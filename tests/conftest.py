"""Shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any fleetdesk import)
- FakeBackend matching the BackendClient interface, with call recording
- Factories for principals, session tokens and raw backend records
"""

from __future__ import annotations

import os

# Settings are validated on import.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BACKEND_API_URL", "http://backend.test")

from datetime import datetime, timezone
from typing import Any

from jose import jwt

from fleetdesk.core.errors import BackendError
from fleetdesk.core.permissions import Role
from fleetdesk.schemas.access import FieldConfig
from fleetdesk.schemas.principals import Principal

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# FakeBackend: mimics fleetdesk.clients.backend.BackendClient
# ---------------------------------------------------------------------------


class FakeBackend:
    """In-memory backend.

    ``records`` is the pending queue returned by list_pending_objects. Approve
    removes the record, as the backend moves it to Approved; decline leaves it
    queued as Rejected. ``fail_on`` maps an object id to the exception its
    approve/decline should raise.
    """

    def __init__(
        self,
        records: list[dict[str, Any]] | None = None,
        *,
        users: dict[str, dict[str, Any]] | None = None,
        configs: dict[str, FieldConfig | None] | None = None,
    ) -> None:
        self.records = list(records or [])
        self.users = dict(users or {})
        self.configs = dict(configs or {})
        self.fail_on: dict[str, Exception] = {}
        self.config_failures: dict[str, Exception] = {}
        self.user_failures: dict[str, Exception] = {}
        self.list_error: Exception | None = None
        self.calls: list[tuple] = []

    async def get_user(self, token: str, subject_id: str) -> dict[str, Any]:
        self.calls.append(("get_user", subject_id))
        if subject_id in self.user_failures:
            raise self.user_failures[subject_id]
        return self.users.get(subject_id, {})

    async def get_organization_config(self, token: str | None, name: str) -> FieldConfig | None:
        self.calls.append(("get_organization_config", name))
        if name in self.config_failures:
            raise self.config_failures[name]
        return self.configs.get(name)

    async def list_pending_objects(self, token: str, statuses) -> list[Any]:
        self.calls.append(("list_pending_objects", tuple(statuses)))
        if self.list_error is not None:
            raise self.list_error
        return [dict(record) for record in self.records]

    async def approve_object(self, token: str, object_id: str, body: dict[str, Any] | None = None) -> None:
        self.calls.append(("approve_object", object_id, body))
        if object_id in self.fail_on:
            raise self.fail_on[object_id]
        self.records = [record for record in self.records if record.get("id") != object_id]

    async def decline_object(self, token: str, object_id: str, reason: str) -> None:
        self.calls.append(("decline_object", object_id, reason))
        if object_id in self.fail_on:
            raise self.fail_on[object_id]
        for record in self.records:
            if record.get("id") == object_id:
                record["status"] = "Rejected"

    async def aclose(self) -> None:
        return None

    def mutations(self) -> list[tuple]:
        return [call for call in self.calls if call[0] in {"approve_object", "decline_object"}]


def backend_failure(status: int = 500, text: str = "Internal Server Error") -> BackendError:
    return BackendError(f"{status} {text}", status=status, text=text)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_principal(
    role: Role | str = Role.EDITOR,
    *,
    subject_id: str = "user-1",
    primary: str | None = None,
    organizations: tuple[str, ...] = (),
) -> Principal:
    return Principal(
        subject_id=subject_id,
        role=Role(role),
        primary_organization=primary,
        organizations=frozenset(organizations),
    )


def make_token(subject_id: str = "user-1", **claims: Any) -> str:
    # Only the claims are read, so any key will do.
    return jwt.encode({"sub": subject_id, **claims}, "test-signing-key", algorithm="HS256")


def make_record(object_id: str = "obj-1", **overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": object_id,
        "objectType": "boat",
        "status": "Pending",
        "organization": "Org A",
        "waarde": 20000,
        "premiumMethod": "percentage",
        "premiepromillage": 2.5,
        "eigenRisico": 250,
        "merkBoot": "Beneteau",
        "bootnummer": "NL-123",
        "createdAt": "2026-02-20T09:00:00Z",
        "updatedAt": "2026-02-20T09:00:00Z",
        "ingangsdatum": "2026-03-01",
    }
    record.update(overrides)
    return record

