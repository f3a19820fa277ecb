"""
approval_services.aggregation_adapters -- Source adapters for the approvals feed.

Each adapter reads one native source and maps its rows into
``AggregatedApproval``.  Source-specific column names and status
vocabularies stop here; the Aggregation Service only sees the normalized
shape.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.aggregation import (
    AggregatedApproval,
    AggregatedStatus,
    ApprovalCategory,
    SourceAdapter,
    SourceKind,
)
from approval_kernel.domain.approval import (
    ApprovalType,
    OwnerStatus,
    TierStatus,
    is_pending_status,
)
from approval_kernel.models.approval_chain import (
    ApprovalChainModel,
    ApprovalTierEntryModel,
)
from approval_kernel.models.owners import (
    OWNER_MODELS,
    ShiftSwapModel,
    ShiftSwapStatus,
    TimeOffRequestModel,
    TimeOffStatus,
)

_TYPE_LABELS: dict[ApprovalType, str] = {
    ApprovalType.REQUISITION: "Requisition",
    ApprovalType.PURCHASE_ORDER: "Purchase Order",
    ApprovalType.PURCHASE_REQUEST: "Purchase Request",
    ApprovalType.WORKFLOW_INSTANCE: "Workflow",
}

_TIME_OFF_STATUS: dict[str, AggregatedStatus] = {
    TimeOffStatus.PENDING.value: AggregatedStatus.PENDING,
    TimeOffStatus.APPROVED.value: AggregatedStatus.APPROVED,
    TimeOffStatus.REJECTED.value: AggregatedStatus.REJECTED,
    TimeOffStatus.CANCELLED.value: AggregatedStatus.CANCELLED,
}

# Colleague stage is in progress; only the manager stage waits on an approver.
_SHIFT_SWAP_STATUS: dict[str, AggregatedStatus] = {
    ShiftSwapStatus.PENDING.value: AggregatedStatus.IN_PROGRESS,
    ShiftSwapStatus.ACCEPTED.value: AggregatedStatus.IN_PROGRESS,
    ShiftSwapStatus.MANAGER_PENDING.value: AggregatedStatus.PENDING,
    ShiftSwapStatus.MANAGER_APPROVED.value: AggregatedStatus.APPROVED,
    ShiftSwapStatus.COMPLETED.value: AggregatedStatus.COMPLETED,
    ShiftSwapStatus.REJECTED.value: AggregatedStatus.REJECTED,
    ShiftSwapStatus.MANAGER_REJECTED.value: AggregatedStatus.REJECTED,
    ShiftSwapStatus.CANCELLED.value: AggregatedStatus.CANCELLED,
}


def normalize_owner_status(
    approval_type: ApprovalType, status: OwnerStatus,
) -> AggregatedStatus | None:
    """Normalized status for a chain owner.  Drafts are not in the feed."""
    if status == OwnerStatus.DRAFT:
        return None
    if is_pending_status(status):
        if approval_type == ApprovalType.WORKFLOW_INSTANCE:
            return AggregatedStatus.IN_PROGRESS
        return AggregatedStatus.PENDING
    if status in (OwnerStatus.APPROVED, OwnerStatus.READY_FOR_PO):
        return AggregatedStatus.APPROVED
    return AggregatedStatus(status.value)


class ChainOwnerAdapter:
    """Adapter for any entity that carries an approval chain."""

    def __init__(
        self,
        approval_type: ApprovalType,
        category: ApprovalCategory = ApprovalCategory.PURCHASE,
    ) -> None:
        self.approval_type = approval_type
        self.source = SourceKind(approval_type.value)
        self.category = category
        self._model = OWNER_MODELS[approval_type]

    def _current_steps(self, session: Session) -> dict[UUID, str]:
        stmt = (
            select(ApprovalChainModel.owner_id, ApprovalTierEntryModel.tier_name)
            .join(ApprovalTierEntryModel, ApprovalTierEntryModel.chain_id == ApprovalChainModel.id)
            .where(
                ApprovalChainModel.owner_type == self.approval_type.value,
                ApprovalChainModel.superseded_at.is_(None),
                ApprovalTierEntryModel.status == TierStatus.PENDING.value,
            )
        )
        return {owner_id: name for owner_id, name in session.execute(stmt)}

    def fetch(self, session: Session) -> list[AggregatedApproval]:
        model = self._model
        rows = session.execute(
            select(model)
            .where(model.status != OwnerStatus.DRAFT.value)
            .execution_options(populate_existing=True)
        ).scalars().all()
        steps = self._current_steps(session)

        items = []
        for row in rows:
            status = normalize_owner_status(self.approval_type, OwnerStatus(row.status))
            if status is None:
                continue
            items.append(AggregatedApproval(
                source=self.source,
                source_id=row.id,
                category=self.category,
                type=_TYPE_LABELS[self.approval_type],
                title=row.title,
                status=status,
                requested_by=row.requester_name,
                requester_id=row.requester_id,
                created_at=row.created_at,
                amount=row.total,
                current_step=steps.get(row.id),
                metadata={"owner_status": row.status},
            ))
        return items


class TimeOffAdapter:
    source = SourceKind.TIME_OFF
    category = ApprovalCategory.TIME_OFF

    def fetch(self, session: Session) -> list[AggregatedApproval]:
        rows = session.execute(
            select(TimeOffRequestModel).execution_options(populate_existing=True)
        ).scalars().all()
        return [
            AggregatedApproval(
                source=self.source,
                source_id=row.id,
                category=self.category,
                type="Time Off",
                title=f"{row.request_type.replace('_', ' ').title()}: "
                      f"{row.start_date.isoformat()} to {row.end_date.isoformat()}",
                status=_TIME_OFF_STATUS[row.status],
                requested_by=row.employee_name,
                requester_id=row.employee_id,
                created_at=row.created_at,
                current_step=(
                    "Manager Approval"
                    if row.status == TimeOffStatus.PENDING.value else None
                ),
                metadata={
                    "request_type": row.request_type,
                    "total_hours": row.total_hours,
                    "reason": row.reason,
                },
            )
            for row in rows
        ]


class ShiftSwapAdapter:
    source = SourceKind.SHIFT_SWAP
    category = ApprovalCategory.TIME_OFF

    def fetch(self, session: Session) -> list[AggregatedApproval]:
        rows = session.execute(
            select(ShiftSwapModel).execution_options(populate_existing=True)
        ).scalars().all()
        items = []
        for row in rows:
            if row.status in (ShiftSwapStatus.PENDING.value, ShiftSwapStatus.ACCEPTED.value):
                step = "Colleague Acceptance" if row.status == ShiftSwapStatus.PENDING.value else None
            elif row.status == ShiftSwapStatus.MANAGER_PENDING.value:
                step = "Manager Approval"
            else:
                step = None
            items.append(AggregatedApproval(
                source=self.source,
                source_id=row.id,
                category=self.category,
                type="Shift Swap",
                title=f"Shift {row.swap_type} on {row.shift_date.isoformat()}",
                status=_SHIFT_SWAP_STATUS[row.status],
                requested_by=row.requester_name,
                requester_id=row.requester_id,
                created_at=row.created_at,
                current_step=step,
                metadata={
                    "swap_type": row.swap_type,
                    "target_employee_id": row.target_employee_id,
                    "target_employee_name": row.target_employee_name,
                },
            ))
        return items


class AdapterRegistry:
    """Ordered set of source adapters, one per SourceKind."""

    def __init__(self) -> None:
        self._adapters: dict[SourceKind, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter) -> None:
        if adapter.source in self._adapters:
            raise ValueError(f"Adapter already registered for source: {adapter.source.value}")
        self._adapters[adapter.source] = adapter

    def unregister(self, source: SourceKind) -> None:
        self._adapters.pop(source, None)

    def get(self, source: SourceKind) -> SourceAdapter | None:
        return self._adapters.get(source)

    def __iter__(self):
        return iter(list(self._adapters.values()))

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def sources(self) -> tuple[SourceKind, ...]:
        return tuple(self._adapters)


def default_registry() -> AdapterRegistry:
    """Adapters for every built-in source."""
    registry = AdapterRegistry()
    registry.register(ChainOwnerAdapter(ApprovalType.REQUISITION))
    registry.register(ChainOwnerAdapter(ApprovalType.PURCHASE_ORDER))
    registry.register(ChainOwnerAdapter(ApprovalType.PURCHASE_REQUEST))
    registry.register(
        ChainOwnerAdapter(ApprovalType.WORKFLOW_INSTANCE, ApprovalCategory.PERMITS),
    )
    registry.register(TimeOffAdapter())
    registry.register(ShiftSwapAdapter())
    return registry
