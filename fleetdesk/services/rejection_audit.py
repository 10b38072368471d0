from __future__ import annotations

from typing import Any

from fleetdesk.schemas.insured_objects import FailedCondition, RejectionAudit, RuleEvaluation
from fleetdesk.schemas.pending import AuditLine


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, (list, tuple)):
        return ", ".join(_format_value(item) for item in value)
    return str(value)


def _condition_line(condition: FailedCondition) -> AuditLine:
    return AuditLine(
        kind="condition",
        text=(
            f"{condition.field} {condition.operator} {_format_value(condition.expected)}"
            f" (actual: {_format_value(condition.actual)})"
        ),
        passed=False,
    )


def _rule_lines(rule: RuleEvaluation) -> list[AuditLine]:
    passed = rule.total_conditions > 0 and rule.passed_conditions == rule.total_conditions
    lines = [
        AuditLine(
            kind="rule",
            text=f"{rule.rule_name} ({rule.logic}): {rule.passed_conditions}/{rule.total_conditions} conditions passed",
            passed=passed,
        )
    ]
    lines.extend(_condition_line(condition) for condition in rule.failed_conditions)
    return lines


def render_rejection_audit(audit: RejectionAudit | None) -> list[AuditLine]:
    """Read-only rendering of an auto-approval rejection trail, in evaluation order."""
    if audit is None:
        return []
    lines: list[AuditLine] = []
    if audit.reason:
        lines.append(AuditLine(kind="reason", text=audit.reason))
    if audit.ingangsdatum_override:
        lines.append(AuditLine(kind="override", text="Start date was overridden at submission"))
    for rule in audit.rules_evaluated:
        lines.extend(_rule_lines(rule))
    return lines
