from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

from fleetdesk.core.settings import settings
from fleetdesk.schemas.insured_objects import (
    AmountConfig,
    CalculationMethod,
    OwnRiskConfig,
    PendingInsuredObject,
    PremiumConfig,
)
from fleetdesk.schemas.pending import PremiumPreview, Violation


TWOPLACES = Decimal("0.01")
WHOLE = Decimal("1")
PER_MILLE = Decimal("1000")
DAYS_PER_YEAR = Decimal("365")


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _per_mille_of(base_value, rate) -> Decimal:
    return _as_decimal(base_value) * _as_decimal(rate) / PER_MILLE


def _unsupported(method) -> ValueError:
    return ValueError(f"Unsupported calculation method: {method!r}")


def calculate_premium(config: AmountConfig, base_value) -> Decimal:
    method = CalculationMethod(config.method)
    if method == CalculationMethod.FIXED:
        return _as_decimal(config.fixed_amount).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    if method == CalculationMethod.PERCENTAGE:
        return _per_mille_of(base_value, config.percentage).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    raise _unsupported(method)


def snap_to_step(amount, step: int | None = None) -> Decimal:
    step_value = Decimal(step if step is not None else settings.own_risk_step)
    steps = (_as_decimal(amount) / step_value).quantize(WHOLE, rounding=ROUND_HALF_UP)
    return steps * step_value


def calculate_own_risk(config: AmountConfig, base_value) -> Decimal:
    method = CalculationMethod(config.method)
    if method == CalculationMethod.FIXED:
        return snap_to_step(config.fixed_amount)
    if method == CalculationMethod.PERCENTAGE:
        # Whole currency units only; the percentage path is not snapped to the step.
        return _per_mille_of(base_value, config.percentage).quantize(WHOLE, rounding=ROUND_HALF_UP)
    raise _unsupported(method)


def validate_config(config: AmountConfig, field: str = "premium") -> list[Violation]:
    method = CalculationMethod(config.method)
    violations: list[Violation] = []
    if method == CalculationMethod.PERCENTAGE and _as_decimal(config.percentage) <= 0:
        violations.append(
            Violation(
                code="percentage_not_positive",
                field=f"{field}.percentage",
                message="Percentage must be greater than zero",
            )
        )
    elif method == CalculationMethod.FIXED and _as_decimal(config.fixed_amount) <= 0:
        violations.append(
            Violation(
                code="fixed_amount_not_positive",
                field=f"{field}.fixed_amount",
                message="Fixed amount must be greater than zero",
            )
        )
    return violations


def approval_violations(
    premium_config: AmountConfig,
    own_risk_config: AmountConfig,
    base_value,
) -> list[Violation]:
    """Conditions that block approval: a computed premium or own risk of zero."""
    violations: list[Violation] = []
    if calculate_premium(premium_config, base_value) == 0:
        violations.append(
            Violation(code="premium_zero", field="premium", message="Premium cannot be 0")
        )
    if calculate_own_risk(own_risk_config, base_value) == 0:
        violations.append(
            Violation(code="own_risk_zero", field="own_risk", message="Own risk cannot be 0")
        )
    return violations


def stored_premium_config(obj: PendingInsuredObject) -> PremiumConfig:
    """Stored premium values expressed as a fixed-method config.

    The amount is what the stored method yields for the object's value; the
    stored percentage travels along so switching method later keeps it.
    """
    percentage = _as_decimal(obj.premium_percentage)
    fixed_amount = _as_decimal(obj.premium_fixed_amount)
    method = obj.premium_method
    if method is None:
        method = CalculationMethod.FIXED if obj.premium_fixed_amount is not None else CalculationMethod.PERCENTAGE
    stored = PremiumConfig(method=method, fixed_amount=fixed_amount, percentage=percentage)
    return PremiumConfig(
        method=CalculationMethod.FIXED,
        fixed_amount=calculate_premium(stored, obj.value),
        percentage=percentage,
    )


def stored_own_risk_config(obj: PendingInsuredObject) -> OwnRiskConfig:
    return OwnRiskConfig(method=CalculationMethod.FIXED, fixed_amount=_as_decimal(obj.own_risk_amount))


def preview(
    obj: PendingInsuredObject,
    premium_override: PremiumConfig | None = None,
    own_risk_override: OwnRiskConfig | None = None,
    today: date | None = None,
) -> PremiumPreview:
    premium_config = premium_override or stored_premium_config(obj)
    own_risk_config = own_risk_override or stored_own_risk_config(obj)
    return build_preview(
        premium_config,
        own_risk_config,
        obj.value,
        start=obj.insurance_start_date,
        end=obj.insurance_end_date,
        today=today,
    )


def build_preview(
    premium_config: PremiumConfig,
    own_risk_config: OwnRiskConfig,
    base_value,
    *,
    start: date | datetime | None = None,
    end: date | datetime | None = None,
    today: date | None = None,
) -> PremiumPreview:
    """Yearly premium and own risk, plus the pro-rata premium for the insured period."""
    violations = [
        *validate_config(premium_config, "premium"),
        *validate_config(own_risk_config, "own_risk"),
        *approval_violations(premium_config, own_risk_config, base_value),
    ]
    premium = calculate_premium(premium_config, base_value)
    days = insured_period_days(start, end, today)
    return PremiumPreview(
        premium=premium,
        insured_days=days,
        period_premium=period_premium(premium, days),
        own_risk=calculate_own_risk(own_risk_config, base_value),
        premium_config=premium_config,
        own_risk_config=own_risk_config,
        violations=violations,
        approvable=not violations,
    )


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def insured_period_days(
    start: date | datetime | None,
    end: date | datetime | None = None,
    today: date | None = None,
) -> int:
    """Days covered from start to end; an open end runs to 31 December of this year."""
    current = today or date.today()
    start_date = _as_date(start) if start is not None else current
    end_date = _as_date(end) if end is not None else date(current.year, 12, 31)
    return max(1, (end_date - start_date).days)


def period_premium(yearly, days: int) -> Decimal:
    return (_as_decimal(yearly) * Decimal(days) / DAYS_PER_YEAR).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
