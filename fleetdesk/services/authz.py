from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, TypeVar

from fleetdesk.core.errors import AuthExpired
from fleetdesk.core.permissions import Permission, Role, permissions_for
from fleetdesk.schemas.access import (
    ALL_MEMBERSHIPS,
    UNRESTRICTED,
    AllMembershipsScope,
    FieldConfig,
    FieldSetting,
    OrganizationScope,
    Scope,
)
from fleetdesk.schemas.insured_objects import InsuredObjectStatus
from fleetdesk.schemas.principals import Principal

logger = logging.getLogger(__name__)

T = TypeVar("T")

ConfigFetcher = Callable[[str], Awaitable[FieldConfig | None]]

NON_ADMIN_LOCKED_STATUSES = frozenset({InsuredObjectStatus.REJECTED, InsuredObjectStatus.REMOVED})


def can_access_organization(principal: Principal | None, organization: str | None) -> bool:
    if principal is None or not organization:
        return False
    if principal.role == Role.ADMIN:
        return True
    if principal.primary_organization == organization:
        return True
    return organization in principal.organizations


def filter_accessible(
    principal: Principal | None,
    records: Iterable[T],
    organization_of: Callable[[T], str | None],
) -> list[T]:
    """Keep only records whose organization the principal can reach."""
    if principal is not None and principal.role == Role.ADMIN:
        return list(records)
    return [record for record in records if can_access_organization(principal, organization_of(record))]


def has_permission(principal: Principal | None, permission: Permission | str) -> bool:
    if principal is None:
        return False
    target = permission.value if isinstance(permission, Permission) else str(permission)
    return target in permissions_for(principal.role)


def can_perform_action(
    principal: Principal | None,
    permission: Permission | str,
    resource_organization: str | None = None,
) -> bool:
    if not has_permission(principal, permission):
        return False
    if principal.role == Role.ADMIN or resource_organization is None:
        return True
    return can_access_organization(principal, resource_organization)


def can_edit_insured_object(principal: Principal | None, status: InsuredObjectStatus | str) -> bool:
    if principal is None:
        return False
    if principal.role == Role.ADMIN:
        return True
    return InsuredObjectStatus(status) not in NON_ADMIN_LOCKED_STATUSES


def default_scope(principal: Principal) -> Scope:
    if principal.role == Role.ADMIN:
        return UNRESTRICTED
    if principal.primary_organization:
        return OrganizationScope(name=principal.primary_organization)
    if len(principal.organizations) == 1:
        return OrganizationScope(name=next(iter(principal.organizations)))
    return ALL_MEMBERSHIPS


def merge_field_configs(configs: Iterable[FieldConfig | None]) -> FieldConfig:
    """OR-merge field settings; a key appears only if some source declares it."""
    merged: dict[str, FieldSetting] = {}
    for config in configs:
        if not config:
            continue
        for key, setting in config.items():
            current = merged.get(key)
            if current is None:
                merged[key] = FieldSetting(visible=setting.visible, required=setting.required)
            else:
                merged[key] = FieldSetting(
                    visible=current.visible or setting.visible,
                    required=current.required or setting.required,
                )
    return merged


async def _fetch_one(fetch_config: ConfigFetcher, organization: str) -> FieldConfig | None:
    try:
        return await fetch_config(organization)
    except AuthExpired:
        raise
    except Exception:
        logger.warning(
            "Field config for organization %s unavailable, showing fields by default",
            organization,
            exc_info=True,
            extra={"event": "field_config.fetch_failed"},
        )
        return None


async def _fetch_and_merge(fetch_config: ConfigFetcher, organizations: Sequence[str]) -> FieldConfig | None:
    results = await asyncio.gather(*(_fetch_one(fetch_config, name) for name in organizations))
    merged = merge_field_configs(results)
    return merged or None


async def resolve_effective_field_config(
    principal: Principal,
    scope: Scope,
    fetch_config: ConfigFetcher,
) -> FieldConfig | None:
    """Field visibility/requiredness for the principal in the given scope.

    ``None`` is the unrestricted answer: every field visible, nothing required.
    Lookup failures fall back to ``None`` for the affected organization so an
    unreachable organization never hides fields owned by reachable ones.
    """
    if principal.role == Role.ADMIN:
        return None
    if principal.primary_organization:
        return await _fetch_one(fetch_config, principal.primary_organization)
    if isinstance(scope, AllMembershipsScope):
        if principal.organizations:
            return await _fetch_and_merge(fetch_config, sorted(principal.organizations))
        return None
    if isinstance(scope, OrganizationScope) and scope.name in principal.organizations:
        return await _fetch_one(fetch_config, scope.name)
    return None


def field_visible(config: FieldConfig | None, key: str) -> bool:
    if config is None:
        return True
    setting = config.get(key)
    return True if setting is None else setting.visible


def field_required(config: FieldConfig | None, key: str) -> bool:
    if config is None:
        return False
    setting = config.get(key)
    return False if setting is None else setting.required


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return value == 0
    return False


def missing_required_fields(config: FieldConfig | None, record: Mapping[str, Any]) -> list[str]:
    """Keys that are visible and required but hold no usable value."""
    if config is None:
        return []
    return [
        key
        for key, setting in config.items()
        if setting.visible and setting.required and _is_blank(record.get(key))
    ]
