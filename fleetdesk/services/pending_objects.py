from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError

from fleetdesk.core.settings import settings
from fleetdesk.schemas.insured_objects import (
    CalculationMethod,
    ObjectType,
    PendingInsuredObject,
    RejectionAudit,
    WorkflowStatus,
)
from fleetdesk.schemas.pending import PendingQuery, PendingStats, SortDirection, SortField

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

OBJECT_TYPE_LABELS = {
    ObjectType.BOAT: "Boot",
    ObjectType.TRAILER: "Trailer",
    ObjectType.MOTOR: "Motor",
}

# Canonical field -> accepted backend keys, first present wins.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id",),
    "organization": ("organization",),
    "created_at": ("createdAt", "created_at"),
    "updated_at": ("updatedAt", "updated_at"),
    "object_type": ("objectType", "object_type"),
    "value": ("value", "waarde"),
    "insurance_start_date": ("insuranceStartDate", "ingangsdatum", "startDate"),
    "insurance_end_date": ("insuranceEndDate", "uitgangsdatum"),
    "premium_method": ("premiumMethod", "premium_method"),
    "premium_percentage": ("premiumPercentage", "premiepromillage", "premiepercentage"),
    "premium_fixed_amount": ("premiumFixedAmount", "premium_fixed_amount"),
    "own_risk_amount": ("ownRisk", "ownRiskAmount", "eigenRisico"),
    "notes": ("notes", "notitie"),
    "last_updated_by": ("lastUpdatedBy", "last_updated_by"),
    "rejection_audit": ("rejectionAudit", "rejection_audit"),
}

_CONSUMED_KEYS = {key for aliases in FIELD_ALIASES.values() for key in aliases} | {"status"}


def _first(raw: Mapping[str, Any], canonical: str) -> Any:
    for key in FIELD_ALIASES[canonical]:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _decimal_or(value: Any, default: Decimal | None) -> Decimal | None:
    if value is None:
        return default
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return default
    # NaN and Infinity are not amounts
    return parsed if parsed.is_finite() else default


def _text_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _datetime_or(value: Any, default: datetime | None) -> datetime | None:
    if value is None:
        return default
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _object_type(raw: Mapping[str, Any]) -> ObjectType:
    value = _first(raw, "object_type")
    if value is not None:
        try:
            return ObjectType(str(value).lower())
        except ValueError:
            pass
    return ObjectType.MOTOR if raw.get("motorMerk") else ObjectType.BOAT


def _status(raw: Mapping[str, Any]) -> WorkflowStatus:
    if str(raw.get("status") or "").strip().lower() == "rejected":
        return WorkflowStatus.REJECTED
    return WorkflowStatus.PENDING


def _premium_method(raw: Mapping[str, Any]) -> CalculationMethod | None:
    value = _first(raw, "premium_method")
    if value is None:
        return None
    try:
        return CalculationMethod(str(value).lower())
    except ValueError:
        return None


def _rejection_audit(raw: Mapping[str, Any]) -> RejectionAudit | None:
    value = _first(raw, "rejection_audit")
    if not isinstance(value, Mapping):
        return None
    rules = []
    for rule in value.get("rulesEvaluated") or value.get("rules_evaluated") or []:
        if not isinstance(rule, Mapping):
            continue
        rules.append(
            {
                "rule_name": rule.get("ruleName") or rule.get("rule_name") or "",
                "logic": rule.get("logic") or "AND",
                "passed_conditions": rule.get("passedConditions") or rule.get("passed_conditions") or 0,
                "total_conditions": rule.get("totalConditions") or rule.get("total_conditions") or 0,
                "failed_conditions": [
                    condition
                    for condition in (rule.get("failedConditions") or rule.get("failed_conditions") or [])
                    if isinstance(condition, Mapping)
                ],
            }
        )
    try:
        return RejectionAudit(
            reason=value.get("reason"),
            ingangsdatum_override=value.get("ingangsdatumOverride", value.get("ingangsdatum_override")),
            rules_evaluated=rules,
        )
    except ValidationError:
        logger.warning("Ignoring malformed rejection audit", extra={"event": "rejection_audit.malformed"})
        return None


def normalize_raw_record(raw: Mapping[str, Any], index: int, now: datetime | None = None) -> PendingInsuredObject:
    """Turn one backend record into a PendingInsuredObject.

    Missing values are backfilled instead of rejecting the record:
    id -> ``temp-id-{index}``, organization -> the configured unknown label,
    timestamps and start date -> ``now``, object type -> motor when a motor
    brand is present else boat, value / premium percentage / own risk -> 0,
    status -> Pending unless the backend says Rejected.
    """
    current = now or datetime.now(timezone.utc)
    return PendingInsuredObject(
        id=str(_first(raw, "id") or f"temp-id-{index}"),
        object_type=_object_type(raw),
        status=_status(raw),
        value=_decimal_or(_first(raw, "value"), Decimal("0")),
        organization=str(_first(raw, "organization") or settings.unknown_organization_label),
        insurance_start_date=_datetime_or(_first(raw, "insurance_start_date"), current),
        insurance_end_date=_datetime_or(_first(raw, "insurance_end_date"), None),
        premium_method=_premium_method(raw),
        premium_percentage=_decimal_or(_first(raw, "premium_percentage"), Decimal("0")),
        premium_fixed_amount=_decimal_or(_first(raw, "premium_fixed_amount"), None),
        own_risk_amount=_decimal_or(_first(raw, "own_risk_amount"), Decimal("0")),
        notes=_text_or_none(_first(raw, "notes")),
        created_at=_datetime_or(_first(raw, "created_at"), current),
        updated_at=_datetime_or(_first(raw, "updated_at"), current),
        last_updated_by=_text_or_none(_first(raw, "last_updated_by")),
        rejection_audit=_rejection_audit(raw),
        attributes={key: value for key, value in raw.items() if key not in _CONSUMED_KEYS},
    )


def normalize_records(raw_records: Iterable[Any], now: datetime | None = None) -> list[PendingInsuredObject]:
    current = now or datetime.now(timezone.utc)
    normalized: list[PendingInsuredObject] = []
    for index, raw in enumerate(raw_records):
        if not isinstance(raw, Mapping):
            logger.warning("Skipping non-object pending record at index %s", index)
            continue
        try:
            normalized.append(normalize_raw_record(raw, index, current))
        except ValidationError as exc:
            logger.warning(
                "Skipping unreadable pending record at index %s: %s",
                index,
                exc.errors(include_url=False),
                extra={"event": "pending.record_skipped", "object_id": raw.get("id")},
            )
    return normalized


def field_values(obj: PendingInsuredObject) -> dict[str, Any]:
    """Values keyed the way organization field configs name them."""
    return {
        **obj.attributes,
        "waarde": obj.value,
        "ingangsdatum": obj.insurance_start_date,
        "uitgangsdatum": obj.insurance_end_date,
        "premiepromillage": obj.premium_percentage,
        "eigenRisico": obj.own_risk_amount,
        "notitie": obj.notes,
    }


def object_type_label(object_type: ObjectType | str) -> str:
    try:
        return OBJECT_TYPE_LABELS[ObjectType(object_type)]
    except ValueError:
        return "Object"


def _named(name: str, number: str, fallback: str) -> str:
    if name and number:
        return f"{name} ({number})"
    if name:
        return name
    if number:
        return f"{fallback} {number}"
    return fallback


def display_name(obj: PendingInsuredObject) -> str:
    attrs = obj.attributes
    if obj.object_type == ObjectType.BOAT:
        name = attrs.get("merkBoot") or attrs.get("typeBoot") or ""
        return _named(str(name), str(attrs.get("bootnummer") or ""), "Boot")
    if obj.object_type == ObjectType.TRAILER:
        registration = attrs.get("trailerRegistratienummer")
        return f"Trailer ({registration})" if registration else "Trailer"
    if obj.object_type == ObjectType.MOTOR:
        return _named(str(attrs.get("motorMerk") or ""), str(attrs.get("motorSerienummer") or ""), "Motor")
    return f"{object_type_label(obj.object_type)} {obj.id[-8:]}"


def counts_toward_value(status: WorkflowStatus | str) -> bool:
    """Rejected objects stay listed but are not part of the insured value total."""
    return WorkflowStatus(status) != WorkflowStatus.REJECTED


def days_ago(moment: datetime, now: datetime) -> int:
    """Started days between ``moment`` and ``now``; anything under a day counts as one."""
    seconds = abs((now - moment).total_seconds())
    return math.ceil(seconds / SECONDS_PER_DAY)


def _value_of(objects: Iterable[PendingInsuredObject]) -> Decimal:
    return sum((item.value for item in objects), Decimal("0"))


def calculate_stats(objects: Sequence[PendingInsuredObject], now: datetime | None = None) -> PendingStats:
    if not objects:
        return PendingStats()
    current = now or datetime.now(timezone.utc)
    oldest = min(objects, key=lambda item: item.created_at)
    pending = [item for item in objects if item.status == WorkflowStatus.PENDING]
    rejected = [item for item in objects if item.status == WorkflowStatus.REJECTED]
    return PendingStats(
        total=len(objects),
        boats=sum(1 for item in objects if item.object_type == ObjectType.BOAT),
        trailers=sum(1 for item in objects if item.object_type == ObjectType.TRAILER),
        motors=sum(1 for item in objects if item.object_type == ObjectType.MOTOR),
        organization_count=len({item.organization for item in objects}),
        total_value=_value_of(item for item in objects if counts_toward_value(item.status)),
        pending_count=len(pending),
        pending_value=_value_of(pending),
        rejected_count=len(rejected),
        rejected_value=_value_of(rejected),
        oldest_pending=oldest.created_at,
        oldest_pending_days=days_ago(oldest.created_at, current),
    )


def _matches_search(obj: PendingInsuredObject, needle: str) -> bool:
    haystacks = (
        display_name(obj),
        obj.organization,
        obj.notes or "",
        object_type_label(obj.object_type),
    )
    return any(needle in text.lower() for text in haystacks)


def filter_objects(objects: Iterable[PendingInsuredObject], query: PendingQuery) -> list[PendingInsuredObject]:
    needle = query.search.strip().lower()
    filtered = list(objects)
    if needle:
        filtered = [obj for obj in filtered if _matches_search(obj, needle)]
    if query.object_type is not None:
        filtered = [obj for obj in filtered if obj.object_type == query.object_type]
    if query.organization:
        filtered = [obj for obj in filtered if obj.organization == query.organization]
    return filtered


def _sort_key(field: SortField):
    if field == SortField.ORGANIZATION:
        return lambda obj: obj.organization.lower()
    if field == SortField.OBJECT_TYPE:
        return lambda obj: object_type_label(obj.object_type).lower()
    if field == SortField.VALUE:
        return lambda obj: obj.value
    return lambda obj: obj.created_at


def sort_objects(
    objects: Iterable[PendingInsuredObject],
    sort_by: SortField = SortField.CREATED_AT,
    direction: SortDirection = SortDirection.DESC,
) -> list[PendingInsuredObject]:
    # sorted() is stable in both directions, ties keep their incoming order
    return sorted(objects, key=_sort_key(SortField(sort_by)), reverse=SortDirection(direction) == SortDirection.DESC)


def apply_query(objects: Iterable[PendingInsuredObject], query: PendingQuery) -> list[PendingInsuredObject]:
    return sort_objects(filter_objects(objects, query), query.sort_by, query.sort_direction)
