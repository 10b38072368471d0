from __future__ import annotations

import logging
from typing import Any, Mapping

from fleetdesk.clients.backend import BackendClient
from fleetdesk.core.permissions import Role
from fleetdesk.core.security import decode_subject
from fleetdesk.schemas.principals import Principal

logger = logging.getLogger(__name__)


def _role(value: Any) -> Role:
    if value is None:
        return Role.USER
    try:
        return Role(value)
    except ValueError:
        logger.warning("Unknown role %r from user directory, treating as user", value)
        return Role.USER


def principal_from_directory(subject_id: str, record: Mapping[str, Any]) -> Principal:
    organizations = record.get("organizations") or []
    if isinstance(organizations, str):
        organizations = [organizations]
    return Principal(
        subject_id=subject_id,
        role=_role(record.get("role")),
        primary_organization=record.get("organization") or None,
        organizations=frozenset(str(name) for name in organizations if name),
    )


async def load_principal(client: BackendClient, token: str) -> Principal:
    """Resolve the session token to a principal via the user directory.

    Raises ``ValueError`` for an unreadable token; directory failures propagate
    as ``AuthExpired`` / ``BackendError``.
    """
    subject = decode_subject(token)
    record = await client.get_user(token, subject.subject_id)
    return principal_from_directory(subject.subject_id, record)
