from fastapi import APIRouter, Depends, Query

from fleetdesk.api import deps
from fleetdesk.api.v1.routers.access import resolve_for_request
from fleetdesk.core.errors import ValidationFailure
from fleetdesk.schemas.insured_objects import ObjectType
from fleetdesk.schemas.pending import (
    ActionResult,
    ApproveRequest,
    BulkApproveRequest,
    BulkApproveResult,
    BulkDeclineRequest,
    DeclineRequest,
    PendingOverviewResponse,
    PendingQuery,
    RejectionAuditResponse,
    SelectionAction,
    SelectionRequest,
    SelectionResponse,
    SortDirection,
    SortField,
)
from fleetdesk.services import authz, rejection_audit
from fleetdesk.services.approval_workflow import ApprovalWorkflow

router = APIRouter(prefix="/pending", tags=["pending"])


@router.get("", response_model=PendingOverviewResponse, summary="Pending and rejected objects awaiting review")
async def read_pending(
    search: str = Query(default=""),
    object_type: ObjectType | None = Query(default=None),
    organization: str | None = Query(default=None),
    sort_by: SortField = Query(default=SortField.CREATED_AT),
    sort_direction: SortDirection = Query(default=SortDirection.DESC),
    refresh: bool = Query(default=True),
    workflow: ApprovalWorkflow = Depends(deps.get_workflow),
) -> PendingOverviewResponse:
    if refresh or not workflow.loaded:
        await workflow.refresh()
    field_config = await resolve_for_request(
        workflow.principal,
        workflow.token,
        workflow.client,
        authz.default_scope(workflow.principal),
    )
    query = PendingQuery(
        search=search,
        object_type=object_type,
        organization=organization,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )
    return workflow.view(query, field_config)


@router.post("/{object_id}/approve", response_model=ActionResult, summary="Approve one object")
async def approve_object(
    object_id: str,
    payload: ApproveRequest | None = None,
    workflow: ApprovalWorkflow = Depends(deps.get_workflow),
) -> ActionResult:
    if not workflow.loaded:
        await workflow.refresh()
    payload = payload or ApproveRequest()
    return await workflow.approve(object_id, premium=payload.premium, own_risk=payload.own_risk)


@router.post("/{object_id}/decline", response_model=ActionResult, summary="Decline one object with a reason")
async def decline_object(
    object_id: str,
    payload: DeclineRequest,
    workflow: ApprovalWorkflow = Depends(deps.get_workflow),
) -> ActionResult:
    if not workflow.loaded:
        await workflow.refresh()
    return await workflow.decline(object_id, payload.reason)


@router.post("/bulk-approve", response_model=BulkApproveResult, summary="Approve several objects on stored defaults")
async def bulk_approve(
    payload: BulkApproveRequest,
    workflow: ApprovalWorkflow = Depends(deps.get_workflow),
) -> BulkApproveResult:
    if not workflow.loaded:
        await workflow.refresh()
    return await workflow.bulk_approve(payload.object_ids)


@router.post("/bulk-decline", summary="Bulk decline (refused, decline individually)")
async def bulk_decline(
    payload: BulkDeclineRequest,
    workflow: ApprovalWorkflow = Depends(deps.get_workflow),
) -> None:
    workflow.bulk_decline(payload.object_ids)


@router.post("/selection", response_model=SelectionResponse, summary="Change the selection set")
async def update_selection(
    payload: SelectionRequest,
    workflow: ApprovalWorkflow = Depends(deps.get_workflow),
) -> SelectionResponse:
    if payload.action == SelectionAction.TOGGLE:
        if not payload.object_id:
            raise ValidationFailure(
                "object_id_required",
                "object_id is required to toggle selection",
                details={"field": "object_id"},
            )
        selected = workflow.toggle(payload.object_id)
    elif payload.action == SelectionAction.SELECT_ALL:
        selected = workflow.select_all(payload.object_ids)
    else:
        selected = workflow.clear_selection()
    return SelectionResponse(selected_ids=selected)


@router.get(
    "/{object_id}/rejection-audit",
    response_model=RejectionAuditResponse,
    summary="Read-only auto-approval rejection trail",
)
async def read_rejection_audit(
    object_id: str,
    workflow: ApprovalWorkflow = Depends(deps.get_workflow),
) -> RejectionAuditResponse:
    if not workflow.loaded:
        await workflow.refresh()
    obj = workflow.get(object_id)
    return RejectionAuditResponse(object_id=obj.id, lines=rejection_audit.render_rejection_audit(obj.rejection_audit))
