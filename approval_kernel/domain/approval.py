"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the tiered approval engine.  Defines the per-tier
lifecycle state machine, owner status vocabulary, chain/tier records,
owner references and the collaborator protocols (record store,
authorization, hierarchy, event sink).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* TL-1: Tier lifecycle -- ``TIER_TRANSITIONS`` defines the only valid
  per-tier status transitions.  Terminal statuses have no outgoing edges.
* TL-2: Tier range -- tier levels are integers in ``[1, 5]``.
* TL-3: Single active tier -- ``ApprovalChain.active_entry`` raises if a
  chain carries more than one ``pending`` entry.
* TL-4: Tagged owner identity -- owners are addressed by
  ``OwnerRef(approval_type, owner_id)``; ids never encode their kind.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence
from uuid import UUID

MIN_TIER_LEVEL = 1
MAX_TIER_LEVEL = 5


# =========================================================================
# Tier Status Lifecycle (TL-1)
# =========================================================================


class TierStatus(str, Enum):
    """Per-tier lifecycle states."""

    WAITING = "waiting"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"


TIER_TRANSITIONS: dict[TierStatus, frozenset[TierStatus]] = {
    TierStatus.WAITING: frozenset({TierStatus.PENDING}),
    TierStatus.PENDING: frozenset({
        TierStatus.APPROVED,
        TierStatus.REJECTED,
        TierStatus.RETURNED,
    }),
    TierStatus.APPROVED: frozenset(),
    TierStatus.REJECTED: frozenset(),
    TierStatus.RETURNED: frozenset(),
}

TERMINAL_TIER_STATUSES: frozenset[TierStatus] = frozenset({
    TierStatus.APPROVED,
    TierStatus.REJECTED,
    TierStatus.RETURNED,
})


def is_valid_tier_transition(current: TierStatus, new: TierStatus) -> bool:
    """True iff ``current -> new`` is an edge of ``TIER_TRANSITIONS``."""
    return new in TIER_TRANSITIONS.get(current, frozenset())


def is_valid_tier_level(tier: int) -> bool:
    """TL-2: tier levels are 1..5 inclusive."""
    return isinstance(tier, int) and MIN_TIER_LEVEL <= tier <= MAX_TIER_LEVEL


# =========================================================================
# Owners
# =========================================================================


class ApprovalType(str, Enum):
    """Kinds of owner that can carry an approval chain."""

    PURCHASE_ORDER = "purchase_order"
    REQUISITION = "requisition"
    PURCHASE_REQUEST = "purchase_request"
    WORKFLOW_INSTANCE = "workflow_instance"


class OwnerStatus(str, Enum):
    """Owner status values driven by the chain."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    PENDING_TIER1_APPROVAL = "pending_tier1_approval"
    PENDING_TIER2_APPROVAL = "pending_tier2_approval"
    PENDING_TIER3_APPROVAL = "pending_tier3_approval"
    PENDING_TIER4_APPROVAL = "pending_tier4_approval"
    PENDING_TIER5_APPROVAL = "pending_tier5_approval"
    READY_FOR_PO = "ready_for_po"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED_TO_REQUESTOR = "returned_to_requestor"
    CANCELLED = "cancelled"


TERMINAL_OWNER_STATUSES: frozenset[OwnerStatus] = frozenset({
    OwnerStatus.READY_FOR_PO,
    OwnerStatus.APPROVED,
    OwnerStatus.REJECTED,
    OwnerStatus.CANCELLED,
})

DEFAULT_APPROVED_STATUS: dict[ApprovalType, OwnerStatus] = {
    ApprovalType.REQUISITION: OwnerStatus.READY_FOR_PO,
    ApprovalType.PURCHASE_ORDER: OwnerStatus.APPROVED,
    ApprovalType.PURCHASE_REQUEST: OwnerStatus.APPROVED,
    ApprovalType.WORKFLOW_INSTANCE: OwnerStatus.APPROVED,
}


def pending_tier_status(tier: int) -> OwnerStatus:
    """Owner status while ``tier`` is the active tier."""
    if not is_valid_tier_level(tier):
        raise ValueError(f"Tier out of range: {tier}")
    return OwnerStatus(f"pending_tier{tier}_approval")


def is_pending_status(status: OwnerStatus) -> bool:
    """True for ``pending_approval`` and every ``pending_tierN_approval``."""
    return status.value.startswith("pending_")


@dataclass(frozen=True)
class OwnerRef:
    """Tagged reference to the owner of a chain (TL-4)."""

    approval_type: ApprovalType
    owner_id: UUID

    def __str__(self) -> str:
        return f"{self.approval_type.value}:{self.owner_id}"


@dataclass(frozen=True)
class OwnerSnapshot:
    """Read-only view of an owning request/order/instance."""

    ref: OwnerRef
    status: OwnerStatus
    requester_id: UUID
    requester_name: str = ""
    title: str = ""
    total: Decimal | None = None
    approved_by: str | None = None
    approved_date: datetime | None = None
    created_at: datetime | None = None


# =========================================================================
# Tier and Chain Records
# =========================================================================


@dataclass(frozen=True)
class TierMetadata:
    """Names and assignment for one tier, supplied to the chain builder."""

    tier: int
    tier_name: str
    approver_role: str
    approver_id: UUID | None = None
    approver_name: str | None = None


@dataclass(frozen=True)
class ApprovalLimit:
    """Amount band an approver, or a proxy, may sign off on.

    ``None`` on either side leaves that side open.  Owners without a total
    are never limited.
    """

    min_amount: Decimal | None = None
    max_amount: Decimal | None = None

    def __post_init__(self) -> None:
        for bound in (self.min_amount, self.max_amount):
            if bound is not None and bound < 0:
                raise ValueError(f"Approval limit cannot be negative: {bound}")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError(
                f"min_amount {self.min_amount} exceeds max_amount {self.max_amount}"
            )

    def allows(self, amount: Decimal | None) -> bool:
        if amount is None:
            return True
        if self.max_amount is not None and amount > self.max_amount:
            return False
        return self.min_amount is None or amount >= self.min_amount


@dataclass(frozen=True)
class TierEntry:
    """One tier of a chain. Immutable; transitions produce new instances."""

    tier: int
    tier_name: str
    approver_role: str
    status: TierStatus = TierStatus.WAITING
    approver_id: UUID | None = None
    approver_name: str | None = None
    amount_threshold: Decimal | None = None
    decision_at: datetime | None = None
    decided_by_id: UUID | None = None
    comments: str | None = None
    escalated_at: datetime | None = None
    delegated_from_id: UUID | None = None
    entry_id: UUID | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TIER_STATUSES


@dataclass(frozen=True)
class ApprovalChain:
    """Ordered tiers for one owner revision.

    TL-3: at most one entry is ``pending``.  ``revision`` increases each
    time the owner is resubmitted or returned to an earlier tier; older
    revisions are kept with ``superseded_at`` set.
    """

    chain_id: UUID
    owner: OwnerRef
    entries: tuple[TierEntry, ...] = ()
    revision: int = 1
    created_at: datetime | None = None
    superseded_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def is_superseded(self) -> bool:
        return self.superseded_at is not None

    @property
    def tiers(self) -> tuple[int, ...]:
        return tuple(e.tier for e in self.entries)

    @property
    def active_entry(self) -> TierEntry | None:
        """The single ``pending`` entry, or None."""
        pending = [e for e in self.entries if e.status == TierStatus.PENDING]
        if len(pending) > 1:
            raise ValueError(
                f"TL-3 violation: chain {self.chain_id} has "
                f"{len(pending)} pending tiers"
            )
        return pending[0] if pending else None

    def entry_for(self, tier: int) -> TierEntry | None:
        for entry in self.entries:
            if entry.tier == tier:
                return entry
        return None

    def next_entry_after(self, tier: int) -> TierEntry | None:
        """The first entry with a tier number above ``tier``."""
        later = [e for e in self.entries if e.tier > tier]
        return min(later, key=lambda e: e.tier) if later else None


# =========================================================================
# Decisions
# =========================================================================


class DecisionAction(str, Enum):
    """Actions recorded in the decision log."""

    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    ESCALATE = "escalate"
    DELEGATE = "delegate"
    REASSIGN = "reassign"
    SUBMIT = "submit"
    RESUBMIT = "resubmit"
    CANCEL = "cancel"


@dataclass(frozen=True)
class ApproverCandidate:
    """A user offered as a delegate/reassign target."""

    user_id: UUID
    name: str
    roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class DecisionEvent:
    """Emitted once per successful decision. Immutable."""

    owner: OwnerRef
    action: DecisionAction
    actor_id: UUID
    timestamp: datetime
    tier: int | None = None
    chain_id: UUID | None = None
    actor_name: str = ""
    comments: str | None = None
    target_user_id: UUID | None = None
    on_behalf_of_id: UUID | None = None
    owner_status: OwnerStatus | None = None


# =========================================================================
# Collaborator Protocols
# =========================================================================


class OrgHierarchyProvider(Protocol):
    """Pluggable interface for organizational hierarchy lookups."""

    def get_actor_roles(self, actor_id: UUID) -> tuple[str, ...]:
        """Return all roles for an actor."""
        ...

    def get_approval_chain(self, actor_id: UUID) -> tuple[UUID, ...]:
        """Return the chain of approvers above this actor, nearest first."""
        ...

    def has_role(self, actor_id: UUID, role: str) -> bool:
        """Check if actor has a specific role."""
        ...

    def get_display_name(self, actor_id: UUID) -> str | None:
        """Name shown on a tier after escalation, if known."""
        ...


class ApprovalAuthority(Protocol):
    """Decides who may act on a tier.

    ``amount`` is the owner's total when the action signs off on it
    (approve, reject, return); ``None`` skips amount limits.
    """

    def can_act(
        self,
        actor_id: UUID,
        entry: TierEntry,
        owner: OwnerRef,
        amount: Decimal | None = None,
    ) -> bool:
        ...

    def acting_on_behalf_of(
        self,
        actor_id: UUID,
        entry: TierEntry,
        owner: OwnerRef,
        amount: Decimal | None = None,
    ) -> UUID | None:
        """Assigned approver the actor is standing in for, if acting by proxy."""
        ...


class DecisionEventSink(Protocol):
    """Receives one event per successful decision."""

    def emit(self, event: DecisionEvent) -> None:
        ...


class ApprovalRecordStore(Protocol):
    """External transactional record store.

    ``conditional_update_entry`` is a compare-and-swap: the patch is
    applied only if the entry's status still equals ``expected_status``.
    """

    def get_owner(self, ref: OwnerRef) -> OwnerSnapshot | None:
        ...

    def get_chain(self, ref: OwnerRef) -> ApprovalChain | None:
        ...

    def list_chains(self, ref: OwnerRef) -> list[ApprovalChain]:
        ...

    def insert_chain(self, chain: ApprovalChain) -> ApprovalChain:
        ...

    def conditional_update_entry(
        self,
        chain_id: UUID,
        tier: int,
        expected_status: TierStatus,
        patch: Mapping[str, Any],
    ) -> bool:
        ...

    def update_owner(
        self,
        ref: OwnerRef,
        patch: Mapping[str, Any],
        expected_status: OwnerStatus | None = None,
    ) -> bool:
        ...

    def supersede_chain(self, chain_id: UUID, at: datetime) -> bool:
        ...


def find_candidate(
    candidates: Sequence[ApproverCandidate], user_id: UUID,
) -> ApproverCandidate | None:
    """Resolve ``user_id`` against an offered candidate list."""
    for candidate in candidates:
        if candidate.user_id == user_id:
            return candidate
    return None
