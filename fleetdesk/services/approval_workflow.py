from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator

from fleetdesk.clients.backend import BackendClient, approval_body
from fleetdesk.core.errors import (
    ActionInProgress,
    BulkDeclineUnsupported,
    FleetdeskError,
    Forbidden,
    ObjectNotFound,
    ValidationFailure,
)
from fleetdesk.core.logging import get_audit_logger
from fleetdesk.core.permissions import Permission
from fleetdesk.core.settings import settings
from fleetdesk.schemas.access import FieldConfig
from fleetdesk.schemas.insured_objects import (
    OwnRiskConfig,
    PendingInsuredObject,
    PremiumConfig,
    WorkflowStatus,
)
from fleetdesk.schemas.pending import (
    ActionResult,
    BulkApproveResult,
    BulkFailure,
    PendingObjectView,
    PendingOverviewResponse,
    PendingQuery,
    PendingStats,
)
from fleetdesk.schemas.principals import Principal
from fleetdesk.services import authz, pending_objects, premiums

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


class ApprovalWorkflow:
    """Pending-object review state for one signed-in operator.

    The working set is a snapshot of the backend queue. It is only ever
    replaced wholesale by :meth:`refresh`, which runs after every confirmed
    mutation; nothing is patched optimistically.
    """

    def __init__(
        self,
        client: BackendClient,
        principal: Principal,
        token: str,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.principal = principal
        self.token = token
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._objects: tuple[PendingInsuredObject, ...] = ()
        self._selected: set[str] = set()
        self._in_flight: set[str] = set()
        self._loaded = False

    @property
    def objects(self) -> tuple[PendingInsuredObject, ...]:
        return self._objects

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def selected_ids(self) -> list[str]:
        order = [obj.id for obj in self._objects if obj.id in self._selected]
        return order + sorted(self._selected.difference(order))

    def is_busy(self, object_id: str) -> bool:
        return object_id in self._in_flight

    def get(self, object_id: str) -> PendingInsuredObject:
        for obj in self._objects:
            if obj.id == object_id:
                return obj
        raise ObjectNotFound(object_id)

    async def refresh(self) -> tuple[PendingInsuredObject, ...]:
        raw = await self.client.list_pending_objects(self.token, settings.pending_statuses)
        normalized = pending_objects.normalize_records(raw, self._clock())
        visible = authz.filter_accessible(self.principal, normalized, lambda obj: obj.organization)
        self._objects = tuple(visible)
        self._selected.clear()
        self._loaded = True
        logger.info(
            "Pending queue refreshed: %s visible of %s",
            len(visible),
            len(normalized),
            extra={"event": "pending.refreshed"},
        )
        return self._objects

    def stats(self) -> PendingStats:
        return pending_objects.calculate_stats(self._objects, self._clock())

    def organizations(self) -> list[str]:
        return sorted({obj.organization for obj in self._objects})

    def view(self, query: PendingQuery | None = None, field_config: FieldConfig | None = None) -> PendingOverviewResponse:
        items = pending_objects.apply_query(self._objects, query or PendingQuery())
        today = self._clock().date()
        return PendingOverviewResponse(
            items=[
                PendingObjectView(
                    object=obj,
                    display_name=pending_objects.display_name(obj),
                    object_type_label=pending_objects.object_type_label(obj.object_type),
                    preview=premiums.preview(obj, today=today),
                    editable=authz.can_edit_insured_object(self.principal, obj.status),
                    missing_fields=authz.missing_required_fields(field_config, pending_objects.field_values(obj)),
                    selected=obj.id in self._selected,
                    busy=obj.id in self._in_flight,
                )
                for obj in items
            ],
            stats=self.stats(),
            selected_ids=self.selected_ids,
            organizations=self.organizations(),
            field_config=field_config,
        )

    # -- selection --

    def toggle(self, object_id: str) -> list[str]:
        self.get(object_id)
        if object_id in self._selected:
            self._selected.discard(object_id)
        else:
            self._selected.add(object_id)
        return self.selected_ids

    def select_all(self, object_ids: Iterable[str] | None = None) -> list[str]:
        known = {obj.id for obj in self._objects}
        targets = known if object_ids is None else known.intersection(object_ids)
        self._selected = set(targets)
        return self.selected_ids

    def clear_selection(self) -> list[str]:
        self._selected.clear()
        return []

    # -- actions --

    @contextmanager
    def _claim(self, object_id: str) -> Iterator[None]:
        if object_id in self._in_flight:
            raise ActionInProgress(object_id)
        self._in_flight.add(object_id)
        try:
            yield
        finally:
            self._in_flight.discard(object_id)

    def _ensure_can_act(self, obj: PendingInsuredObject) -> None:
        if not authz.can_perform_action(self.principal, Permission.INSURED_OBJECT_UPDATE, obj.organization):
            raise Forbidden(
                f"No permission to review objects of {obj.organization}",
                details={"object_id": obj.id, "organization": obj.organization},
            )

    def _approval_configs(
        self,
        obj: PendingInsuredObject,
        premium: PremiumConfig | None,
        own_risk: OwnRiskConfig | None,
    ) -> tuple[PremiumConfig, OwnRiskConfig]:
        premium_config = premium or premiums.stored_premium_config(obj)
        own_risk_config = own_risk or premiums.stored_own_risk_config(obj)
        violations = premiums.approval_violations(premium_config, own_risk_config, obj.value)
        if premium is not None:
            violations = premiums.validate_config(premium, "premium") + violations
        if own_risk is not None:
            violations = premiums.validate_config(own_risk, "own_risk") + violations
        if violations:
            raise ValidationFailure(
                "approval_blocked",
                violations[0].message,
                details={"object_id": obj.id, "violations": [item.model_dump() for item in violations]},
            )
        return premium_config, own_risk_config

    async def _refresh_after_mutation(self, object_ids: set[str], *, drop: bool) -> str | None:
        """Refetch after a confirmed mutation; returns the error code if the refetch fails.

        The mutation itself already succeeded, so a failing refetch (an expired
        session included) never turns it into a failure.
        """
        try:
            await self.refresh()
        except FleetdeskError as exc:
            logger.warning(
                "Refresh after mutating %s failed (%s); keeping confirmed local state",
                ", ".join(sorted(object_ids)),
                exc.code,
                exc_info=True,
            )
            if drop:
                self._objects = tuple(obj for obj in self._objects if obj.id not in object_ids)
            return exc.code
        return None

    async def approve(
        self,
        object_id: str,
        premium: PremiumConfig | None = None,
        own_risk: OwnRiskConfig | None = None,
    ) -> ActionResult:
        obj = self.get(object_id)
        self._ensure_can_act(obj)
        premium_config, own_risk_config = self._approval_configs(obj, premium, own_risk)
        with self._claim(object_id):
            await self.client.approve_object(self.token, object_id, approval_body(premium, own_risk))
        self._selected.discard(object_id)
        audit_logger.info(
            "Approved %s (%s) premium=%s own_risk=%s override=%s",
            object_id,
            obj.organization,
            premiums.calculate_premium(premium_config, obj.value),
            premiums.calculate_own_risk(own_risk_config, obj.value),
            premium is not None or own_risk is not None,
            extra={
                "event": "pending.approved",
                "object_id": object_id,
                "organization": obj.organization,
                "outcome": "approved",
            },
        )
        refresh_error = await self._refresh_after_mutation({object_id}, drop=True)
        return ActionResult(
            object_id=object_id,
            status=WorkflowStatus.APPROVED,
            message=f"{pending_objects.display_name(obj)} is goedgekeurd.",
            refreshed=refresh_error is None,
            refresh_error=refresh_error,
            dismiss_after_seconds=settings.success_dismiss_seconds,
        )

    async def decline(self, object_id: str, reason: str | None) -> ActionResult:
        cleaned = (reason or "").strip()
        if not cleaned:
            raise ValidationFailure(
                "reason_required",
                "A reason is required to decline an object",
                details={"object_id": object_id, "field": "reason"},
            )
        obj = self.get(object_id)
        self._ensure_can_act(obj)
        with self._claim(object_id):
            await self.client.decline_object(self.token, object_id, cleaned)
        self._selected.discard(object_id)
        audit_logger.info(
            "Declined %s (%s): %s",
            object_id,
            obj.organization,
            cleaned,
            extra={
                "event": "pending.declined",
                "object_id": object_id,
                "organization": obj.organization,
                "outcome": "declined",
            },
        )
        refresh_error = await self._refresh_after_mutation({object_id}, drop=False)
        return ActionResult(
            object_id=object_id,
            status=WorkflowStatus.REJECTED,
            message=f"{pending_objects.display_name(obj)} is afgewezen.",
            refreshed=refresh_error is None,
            refresh_error=refresh_error,
            dismiss_after_seconds=settings.success_dismiss_seconds,
        )

    async def _bulk_approve_one(self, object_id: str) -> None:
        obj = self.get(object_id)
        self._ensure_can_act(obj)
        self._approval_configs(obj, None, None)
        with self._claim(object_id):
            await self.client.approve_object(self.token, object_id, None)

    async def bulk_approve(self, object_ids: Iterable[str] | None = None) -> BulkApproveResult:
        """Approve each id on its stored defaults; failures never block the others."""
        targets = list(dict.fromkeys(object_ids if object_ids is not None else self.selected_ids))
        if not targets:
            return BulkApproveResult(refreshed=False)
        outcomes = await asyncio.gather(
            *(self._bulk_approve_one(object_id) for object_id in targets),
            return_exceptions=True,
        )
        succeeded: list[str] = []
        failed: list[BulkFailure] = []
        for object_id, outcome in zip(targets, outcomes):
            if isinstance(outcome, FleetdeskError):
                failed.append(BulkFailure(object_id=object_id, code=outcome.code, message=outcome.message))
            elif isinstance(outcome, BaseException):
                logger.error("Unexpected failure approving %s", object_id, exc_info=outcome)
                failed.append(BulkFailure(object_id=object_id, code="internal_error", message=str(outcome)))
            else:
                succeeded.append(object_id)
                self._selected.discard(object_id)
        audit_logger.info(
            "Bulk approve: %s succeeded, %s failed (%s)",
            len(succeeded),
            len(failed),
            ", ".join(succeeded) or "-",
            extra={
                "event": "pending.bulk_approved",
                "succeeded": succeeded,
                "failed": [failure.object_id for failure in failed],
            },
        )
        refresh_error = None
        if succeeded:
            refresh_error = await self._refresh_after_mutation(set(succeeded), drop=True)
        return BulkApproveResult(
            succeeded=succeeded,
            failed=failed,
            success_count=len(succeeded),
            failure_count=len(failed),
            refreshed=bool(succeeded) and refresh_error is None,
            refresh_error=refresh_error,
        )

    def bulk_decline(self, object_ids: Iterable[str] | None = None) -> None:
        raise BulkDeclineUnsupported(list(object_ids or []))


class WorkflowRegistry:
    """One workflow per operator (subject id).

    Holds at most ``max_size`` workflows; the least recently used one is
    dropped first. Sessions that expire are discarded by the request layer.
    """

    def __init__(self, max_size: int | None = None) -> None:
        self.max_size = max_size if max_size is not None else settings.max_operator_workflows
        self._workflows: OrderedDict[str, ApprovalWorkflow] = OrderedDict()

    def get(self, client: BackendClient, principal: Principal, token: str) -> ApprovalWorkflow:
        workflow = self._workflows.get(principal.subject_id)
        if workflow is None or workflow.client is not client:
            workflow = ApprovalWorkflow(client, principal, token)
            self._workflows[principal.subject_id] = workflow
        else:
            workflow.principal = principal
            workflow.token = token
        self._workflows.move_to_end(principal.subject_id)
        while len(self._workflows) > self.max_size:
            evicted, _ = self._workflows.popitem(last=False)
            logger.info("Dropped idle review state of %s", evicted, extra={"event": "workflow.evicted"})
        return workflow

    def discard(self, subject_id: str) -> None:
        self._workflows.pop(subject_id, None)

    def __len__(self) -> int:
        return len(self._workflows)
