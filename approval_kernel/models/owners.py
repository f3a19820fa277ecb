"""
Module: approval_kernel.models.owners
Responsibility: ORM persistence for the entities that own approval chains
    (requisitions, purchase orders, purchase requests, workflow instances)
    and for the non-tiered approval sources (time-off, shift swaps).

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (status vocabularies, DTO conversion).

Invariants enforced:
    OW-1 -- DB check constraint limits chain-owner status values to the
            ``OwnerStatus`` vocabulary.
    OW-2 -- ``total`` is Numeric(38, 9); never float.
    OW-3 -- Non-tiered sources carry their own native status vocabulary;
            normalization happens only in the aggregation adapters.

Failure modes:
    - IntegrityError on unknown status values.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase, UUIDString
from approval_kernel.domain.approval import (
    ApprovalType,
    OwnerRef,
    OwnerSnapshot,
    OwnerStatus,
)

_OWNER_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in OwnerStatus)


def _owner_status_check(table: str) -> CheckConstraint:
    return CheckConstraint(
        f"status IN ({_OWNER_STATUS_VALUES})",
        name=f"ck_{table}_status",
    )


class ChainOwnerMixin:
    """Columns shared by every entity that can carry an approval chain."""

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requester_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    total: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=OwnerStatus.DRAFT.value,
    )
    approved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approved_date: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def ref(self) -> OwnerRef:
        return OwnerRef(self.approval_type, self.id)

    def to_snapshot(self) -> OwnerSnapshot:
        """Convert ORM row to a frozen owner view."""
        return OwnerSnapshot(
            ref=self.ref,
            status=OwnerStatus(self.status),
            requester_id=self.requester_id,
            requester_name=self.requester_name,
            title=self.title,
            total=self.total,
            approved_by=self.approved_by,
            approved_date=self.approved_date,
            created_at=self.created_at,
        )


class RequisitionModel(ChainOwnerMixin, TrackedBase):
    """Purchase requisition.  Fully approved requisitions become ``ready_for_po``."""

    __tablename__ = "purchase_requisitions"
    __table_args__ = (
        _owner_status_check("purchase_requisitions"),
        Index("ix_purchase_requisitions_status", "status"),
    )

    approval_type = ApprovalType.REQUISITION

    requisition_number: Mapped[str] = mapped_column(String(50), nullable=False)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Requisition {self.requisition_number} status={self.status}>"


class PurchaseOrderModel(ChainOwnerMixin, TrackedBase):
    __tablename__ = "purchase_orders"
    __table_args__ = (
        _owner_status_check("purchase_orders"),
        Index("ix_purchase_orders_status", "status"),
    )

    approval_type = ApprovalType.PURCHASE_ORDER

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} status={self.status}>"


class PurchaseRequestModel(ChainOwnerMixin, TrackedBase):
    __tablename__ = "purchase_requests"
    __table_args__ = (
        _owner_status_check("purchase_requests"),
        Index("ix_purchase_requests_status", "status"),
    )

    approval_type = ApprovalType.PURCHASE_REQUEST

    request_number: Mapped[str] = mapped_column(String(50), nullable=False)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<PurchaseRequest {self.request_number} status={self.status}>"


class WorkflowInstanceModel(ChainOwnerMixin, TrackedBase):
    """Generic multi-step workflow (permits, sign-offs).  Usually no total."""

    __tablename__ = "workflow_instances"
    __table_args__ = (
        _owner_status_check("workflow_instances"),
        Index("ix_workflow_instances_status", "status"),
    )

    approval_type = ApprovalType.WORKFLOW_INSTANCE

    workflow_name: Mapped[str] = mapped_column(String(100), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<WorkflowInstance {self.workflow_name} status={self.status}>"


OWNER_MODELS: dict[ApprovalType, type] = {
    ApprovalType.REQUISITION: RequisitionModel,
    ApprovalType.PURCHASE_ORDER: PurchaseOrderModel,
    ApprovalType.PURCHASE_REQUEST: PurchaseRequestModel,
    ApprovalType.WORKFLOW_INSTANCE: WorkflowInstanceModel,
}


# =============================================================================
# Non-tiered approval sources
# =============================================================================


class TimeOffStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ShiftSwapStatus(str, Enum):
    """Two-stage status: colleague acceptance, then manager approval."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    MANAGER_PENDING = "manager_pending"
    MANAGER_APPROVED = "manager_approved"
    MANAGER_REJECTED = "manager_rejected"
    COMPLETED = "completed"


class TimeOffRequestModel(TrackedBase):
    __tablename__ = "time_off_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ("
            + ", ".join(f"'{s.value}'" for s in TimeOffStatus)
            + ")",
            name="ck_time_off_requests_status",
        ),
    )

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    employee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    request_type: Mapped[str] = mapped_column(String(50), nullable=False, default="vacation")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TimeOffStatus.PENDING.value,
    )
    approved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<TimeOffRequest {self.employee_name} {self.start_date} status={self.status}>"


class ShiftSwapModel(TrackedBase):
    __tablename__ = "shift_swaps"
    __table_args__ = (
        CheckConstraint(
            "status IN ("
            + ", ".join(f"'{s.value}'" for s in ShiftSwapStatus)
            + ")",
            name="ck_shift_swaps_status",
        ),
    )

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requester_name: Mapped[str] = mapped_column(String(200), nullable=False)
    target_employee_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    target_employee_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    swap_type: Mapped[str] = mapped_column(String(20), nullable=False, default="swap")
    shift_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ShiftSwapStatus.PENDING.value,
    )

    def __repr__(self) -> str:
        return f"<ShiftSwap {self.requester_name} {self.shift_date} status={self.status}>"
