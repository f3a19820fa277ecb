"""
approval_engines.chain_builder -- Approval Chain Builder.

Responsibility:
    Turn an owner, its amount and per-tier metadata into an ordered chain
    of tier entries, plus the owner status the chain implies.  Also
    rebuilds a chain from an earlier tier when an approver sends a request
    back down the chain.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - CB-1: The first required tier is ``pending``; every later tier is
      ``waiting``.
    - CB-2: No required tiers means an empty chain and the owner goes
      straight to its approved status.  This is the only path that skips
      the tier state machine.
    - CB-3: Every required tier has metadata with a non-empty name and role.

Failure modes:
    - InvalidAmountError for negative amounts (raised before anything else).
    - IncompleteTierMetadataError for a required tier without metadata.
    - InvalidTierLevelError when rebuilding from a tier that was never
      approved on the previous chain.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping
from uuid import UUID, uuid4

from approval_kernel.domain.approval import (
    DEFAULT_APPROVED_STATUS,
    ApprovalChain,
    OwnerRef,
    OwnerStatus,
    TierEntry,
    TierMetadata,
    TierStatus,
    pending_tier_status,
)
from approval_kernel.exceptions import (
    IncompleteTierMetadataError,
    InvalidTierLevelError,
)
from approval_engines.thresholds import (
    DEFAULT_THRESHOLDS,
    ThresholdTable,
    normalize_amount,
    required_tiers,
)


@dataclass(frozen=True)
class ChainBuildResult:
    """Chain plus the owner status it implies."""

    chain: ApprovalChain
    owner_status: OwnerStatus
    required_tiers: tuple[int, ...]

    @property
    def bypassed(self) -> bool:
        """True when no tiers were required (CB-2)."""
        return self.chain.is_empty


def _index_metadata(
    tier_metadata: Mapping[int, TierMetadata] | Iterable[TierMetadata],
) -> dict[int, TierMetadata]:
    if isinstance(tier_metadata, Mapping):
        return dict(tier_metadata)
    return {meta.tier: meta for meta in tier_metadata}


def _validated_metadata(tier: int, metadata: dict[int, TierMetadata]) -> TierMetadata:
    meta = metadata.get(tier)
    if meta is None:
        raise IncompleteTierMetadataError(tier, "metadata")
    if not (meta.tier_name or "").strip():
        raise IncompleteTierMetadataError(tier, "tier_name")
    if not (meta.approver_role or "").strip():
        raise IncompleteTierMetadataError(tier, "approver_role")
    return meta


def build_chain(
    owner: OwnerRef,
    amount: Decimal | int | str | None,
    tier_metadata: Mapping[int, TierMetadata] | Iterable[TierMetadata],
    *,
    thresholds: ThresholdTable = DEFAULT_THRESHOLDS,
    base_tiers: Iterable[int] = (),
    approved_status: OwnerStatus | None = None,
    chain_id: UUID | None = None,
    revision: int = 1,
    created_at: datetime | None = None,
) -> ChainBuildResult:
    """Build the chain for a freshly submitted owner.

    Args:
        owner: The requisition / PO / request / workflow instance.
        amount: Owner total, or None for non-financial owners.
        tier_metadata: Name, role and optional assignee per tier.
        thresholds: Ceiling table used to pick threshold tiers.
        base_tiers: Tiers this owner kind always needs.
        approved_status: Status for an owner that needs no approval;
            defaults to the per-type value (``ready_for_po`` for
            requisitions, ``approved`` otherwise).

    Returns:
        ChainBuildResult with the (possibly empty) chain and owner status.
    """
    normalize_amount(amount)
    tiers = required_tiers(amount, thresholds, base_tiers)
    metadata = _index_metadata(tier_metadata)

    entries: list[TierEntry] = []
    for position, tier in enumerate(tiers):
        meta = _validated_metadata(tier, metadata)
        entries.append(TierEntry(
            tier=tier,
            tier_name=meta.tier_name,
            approver_role=meta.approver_role,
            status=TierStatus.PENDING if position == 0 else TierStatus.WAITING,
            approver_id=meta.approver_id,
            approver_name=meta.approver_name,
            amount_threshold=thresholds.ceiling_for(tier),
        ))

    chain = ApprovalChain(
        chain_id=chain_id or uuid4(),
        owner=owner,
        entries=tuple(entries),
        revision=revision,
        created_at=created_at,
    )

    if entries:
        owner_status = pending_tier_status(entries[0].tier)
    else:
        owner_status = approved_status or DEFAULT_APPROVED_STATUS[owner.approval_type]

    return ChainBuildResult(chain=chain, owner_status=owner_status, required_tiers=tiers)


def _reset(entry: TierEntry, status: TierStatus) -> TierEntry:
    return replace(
        entry,
        status=status,
        decision_at=None,
        decided_by_id=None,
        comments=None,
        escalated_at=None,
        entry_id=None,
    )


def rebuild_from_tier(
    previous: ApprovalChain,
    target_tier: int,
    *,
    chain_id: UUID | None = None,
    created_at: datetime | None = None,
) -> ChainBuildResult:
    """New chain revision restarting at ``target_tier``.

    Tiers below the target keep their approvals, the target becomes
    ``pending`` again and later tiers go back to ``waiting``.  Current
    assignees are kept.
    """
    target = previous.entry_for(target_tier)
    if target is None or target.status != TierStatus.APPROVED:
        raise InvalidTierLevelError(
            target_tier, "return target must be an approved tier on this chain",
        )

    entries: list[TierEntry] = []
    for entry in previous.entries:
        if entry.tier < target_tier:
            entries.append(replace(entry, entry_id=None))
        elif entry.tier == target_tier:
            entries.append(_reset(entry, TierStatus.PENDING))
        else:
            entries.append(_reset(entry, TierStatus.WAITING))

    chain = ApprovalChain(
        chain_id=chain_id or uuid4(),
        owner=previous.owner,
        entries=tuple(entries),
        revision=previous.revision + 1,
        created_at=created_at,
    )
    return ChainBuildResult(
        chain=chain,
        owner_status=pending_tier_status(target_tier),
        required_tiers=previous.tiers,
    )
