from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from fleetdesk.schemas.access import FieldConfig
from fleetdesk.schemas.insured_objects import (
    ObjectType,
    OwnRiskConfig,
    PendingInsuredObject,
    PremiumConfig,
    WorkflowStatus,
)


class SortField(str, Enum):
    CREATED_AT = "createdAt"
    ORGANIZATION = "organization"
    OBJECT_TYPE = "objectType"
    VALUE = "value"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PendingQuery(BaseModel):
    search: str = ""
    object_type: ObjectType | None = None
    organization: str | None = None
    sort_by: SortField = SortField.CREATED_AT
    sort_direction: SortDirection = SortDirection.DESC


class PendingStats(BaseModel):
    total: int = 0
    boats: int = 0
    trailers: int = 0
    motors: int = 0
    organization_count: int = 0
    # excludes Rejected objects
    total_value: Decimal = Decimal("0")
    pending_count: int = 0
    pending_value: Decimal = Decimal("0")
    rejected_count: int = 0
    rejected_value: Decimal = Decimal("0")
    oldest_pending: datetime | None = None
    oldest_pending_days: int | None = None


class Violation(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    field: str
    message: str


class PremiumPreview(BaseModel):
    # yearly amount
    premium: Decimal
    insured_days: int
    period_premium: Decimal
    own_risk: Decimal
    premium_config: PremiumConfig
    own_risk_config: OwnRiskConfig
    violations: list[Violation] = Field(default_factory=list)
    approvable: bool = True


class PremiumPreviewRequest(BaseModel):
    base_value: Decimal = Field(ge=0)
    premium: PremiumConfig
    own_risk: OwnRiskConfig
    insurance_start_date: date | None = None
    insurance_end_date: date | None = None


class PendingObjectView(BaseModel):
    object: PendingInsuredObject
    display_name: str
    object_type_label: str
    preview: PremiumPreview
    editable: bool = True
    # visible and required fields without a value
    missing_fields: list[str] = Field(default_factory=list)
    selected: bool = False
    busy: bool = False


class PendingOverviewResponse(BaseModel):
    items: list[PendingObjectView]
    stats: PendingStats
    selected_ids: list[str]
    organizations: list[str]
    field_config: FieldConfig | None = None


class ApproveRequest(BaseModel):
    premium: PremiumConfig | None = None
    own_risk: OwnRiskConfig | None = None


class DeclineRequest(BaseModel):
    reason: str = ""


class BulkApproveRequest(BaseModel):
    object_ids: list[str] | None = None


class BulkDeclineRequest(BaseModel):
    object_ids: list[str] = Field(default_factory=list)
    reason: str | None = None


class SelectionAction(str, Enum):
    TOGGLE = "toggle"
    SELECT_ALL = "select_all"
    CLEAR = "clear"


class SelectionRequest(BaseModel):
    action: SelectionAction
    object_id: str | None = None
    object_ids: list[str] | None = None


class SelectionResponse(BaseModel):
    selected_ids: list[str]


class ActionResult(BaseModel):
    object_id: str
    status: WorkflowStatus
    message: str
    refreshed: bool = True
    # error code of a failed refetch after the confirmed mutation
    refresh_error: str | None = None
    dismiss_after_seconds: int


class BulkFailure(BaseModel):
    object_id: str
    code: str
    message: str


class BulkApproveResult(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    failed: list[BulkFailure] = Field(default_factory=list)
    success_count: int = 0
    failure_count: int = 0
    refreshed: bool = True
    refresh_error: str | None = None


class AuditLine(BaseModel):
    kind: str
    text: str
    passed: bool | None = None


class RejectionAuditResponse(BaseModel):
    object_id: str
    lines: list[AuditLine]
