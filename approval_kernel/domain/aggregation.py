"""
Aggregated approval feed types (``approval_kernel.domain.aggregation``).

Responsibility
--------------
Read-only projection shared by every pending-approval source: requisitions,
purchase orders, purchase requests, generic workflow instances, time-off
requests and shift swaps.  Defines the normalized status vocabulary, the
filter semantics and the source adapter protocol.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, no I/O.

Invariants enforced
-------------------
* AG-1: Items are addressed by ``(source, source_id)``; ids never carry a
  kind prefix.
* AG-2: Categories are disjoint, so ``total == purchase + time_off + permits``.
* AG-3: Only the ``returned`` filter is requester-scoped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID


class SourceKind(str, Enum):
    """Where an aggregated item came from."""

    REQUISITION = "requisition"
    PURCHASE_ORDER = "purchase_order"
    PURCHASE_REQUEST = "purchase_request"
    WORKFLOW_INSTANCE = "workflow_instance"
    TIME_OFF = "time_off"
    SHIFT_SWAP = "shift_swap"


class ApprovalCategory(str, Enum):
    """Dashboard count buckets."""

    PURCHASE = "purchase"
    TIME_OFF = "timeOff"
    PERMITS = "permits"


class AggregatedStatus(str, Enum):
    """Normalized status vocabulary across all sources."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    RETURNED_TO_REQUESTOR = "returned_to_requestor"
    CANCELLED = "cancelled"


class AggregationFilter(str, Enum):
    """Uniform filters over the aggregated feed."""

    ALL = "all"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"


_FILTER_STATUSES: dict[AggregationFilter, frozenset[AggregatedStatus]] = {
    AggregationFilter.PENDING: frozenset({
        AggregatedStatus.PENDING,
        AggregatedStatus.IN_PROGRESS,
    }),
    AggregationFilter.APPROVED: frozenset({
        AggregatedStatus.APPROVED,
        AggregatedStatus.COMPLETED,
    }),
    AggregationFilter.REJECTED: frozenset({AggregatedStatus.REJECTED}),
    AggregationFilter.RETURNED: frozenset({
        AggregatedStatus.RETURNED_TO_REQUESTOR,
    }),
}


@dataclass(frozen=True)
class AggregatedApproval:
    """One row of the unified approvals queue. Derived, never persisted."""

    source: SourceKind
    source_id: UUID
    category: ApprovalCategory
    type: str
    title: str
    status: AggregatedStatus
    requested_by: str
    requester_id: UUID
    created_at: datetime
    amount: Decimal | None = None
    current_step: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def id(self) -> UUID:
        return self.source_id

    @property
    def key(self) -> tuple[SourceKind, UUID]:
        """Tagged identity across sources (AG-1)."""
        return (self.source, self.source_id)


@dataclass(frozen=True)
class ApprovalCounts:
    """Pending counts by category (AG-2)."""

    purchase: int = 0
    time_off: int = 0
    permits: int = 0

    @property
    def total(self) -> int:
        return self.purchase + self.time_off + self.permits

    def as_dict(self) -> dict[str, int]:
        return {
            ApprovalCategory.PURCHASE.value: self.purchase,
            ApprovalCategory.TIME_OFF.value: self.time_off,
            ApprovalCategory.PERMITS.value: self.permits,
            "total": self.total,
        }


def matches_filter(
    item: AggregatedApproval,
    filter_: AggregationFilter,
    current_user_id: UUID | None,
) -> bool:
    """Apply one filter to one item (AG-3)."""
    if filter_ == AggregationFilter.ALL:
        return True
    if item.status not in _FILTER_STATUSES[filter_]:
        return False
    if filter_ == AggregationFilter.RETURNED:
        return current_user_id is not None and item.requester_id == current_user_id
    return True


class SourceAdapter(Protocol):
    """Maps one native source into ``AggregatedApproval`` rows."""

    source: SourceKind
    category: ApprovalCategory

    def fetch(self, session: Any) -> list[AggregatedApproval]:
        ...
