from __future__ import annotations

from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fleetdesk.core.settings import settings


class ObjectType(str, Enum):
    BOAT = "boat"
    TRAILER = "trailer"
    MOTOR = "motor"


class WorkflowStatus(str, Enum):
    PENDING = "Pending"
    REJECTED = "Rejected"
    APPROVED = "Approved"


class InsuredObjectStatus(str, Enum):
    """Lifecycle status as stored by the backend for any insured object."""

    PENDING = "Pending"
    INSURED = "Insured"
    REJECTED = "Rejected"
    REMOVED = "Removed"


class CalculationMethod(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class AmountConfig(BaseModel):
    """Method plus both method inputs; switching method keeps the other input.

    Percentages keep at most ``PERCENTAGE_MAX_FRACTION_DIGITS`` fractional
    digits; extra digits are cut off, not rounded.
    """

    model_config = ConfigDict(frozen=True)

    method: CalculationMethod = CalculationMethod.FIXED
    fixed_amount: Decimal = Field(default=Decimal("0"), allow_inf_nan=False)
    percentage: Decimal = Field(default=Decimal("0"), allow_inf_nan=False)

    @field_validator("percentage")
    @classmethod
    def truncate_fraction_digits(cls, value: Decimal) -> Decimal:
        quantum = Decimal(1).scaleb(-settings.percentage_max_fraction_digits)
        if value.as_tuple().exponent >= quantum.as_tuple().exponent:
            return value
        return value.quantize(quantum, rounding=ROUND_DOWN)


class PremiumConfig(AmountConfig):
    pass


class OwnRiskConfig(AmountConfig):
    pass


class FailedCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: str
    expected: Any = None
    actual: Any = None


class RuleEvaluation(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_name: str
    logic: str = "AND"
    passed_conditions: int = 0
    total_conditions: int = 0
    failed_conditions: tuple[FailedCondition, ...] = ()


class RejectionAudit(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str | None = None
    ingangsdatum_override: bool | None = None
    rules_evaluated: tuple[RuleEvaluation, ...] = ()


class PendingInsuredObject(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    object_type: ObjectType
    status: WorkflowStatus = WorkflowStatus.PENDING
    value: Decimal = Decimal("0")
    organization: str
    insurance_start_date: datetime
    insurance_end_date: datetime | None = None
    premium_method: CalculationMethod | None = None
    premium_percentage: Decimal | None = None
    premium_fixed_amount: Decimal | None = None
    own_risk_amount: Decimal = Decimal("0")
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    last_updated_by: str | None = None
    rejection_audit: RejectionAudit | None = None
    # type-specific fields (brand, hull number, registration, ...)
    attributes: dict[str, Any] = Field(default_factory=dict)
