"""
approval_engines.tier_progression -- Tier Progression State Machine.

Responsibility:
    Apply one decision to the active tier of a chain and compute the
    resulting chain, together with the ordered list of compare-and-swap
    patches the caller must persist.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The Decision Processor
    persists ``Transition.patches`` through the record store.

Invariants enforced:
    - TP-1 (single active tier): only the entry currently ``pending`` may be
      acted upon.  Acting on a ``waiting`` or terminal entry raises
      TierNotPendingError.
    - TP-2 (monotonic progression): approving tier N activates the next
      higher tier in the chain, never a lower one.
    - TP-3 (reject is final): a rejected chain has no pending entry, so no
      later decision can apply to it.
    - TP-4 (same-tier escalation): escalate, delegate and reassign change
      the assignment on the active entry and leave its status ``pending``.
    - Every patch carries the status it expects to overwrite; the first
      patch always targets the active tier with expected ``pending``.

Failure modes:
    - TierNotPendingError when no entry (or not the named entry) is pending.
    - MissingReasonError for reject/return/escalate without a reason.
    - InvalidTierLevelError for a return target that is not an approved
      tier below the active one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from approval_kernel.domain.approval import (
    ApprovalChain,
    DecisionAction,
    TierEntry,
    TierStatus,
    is_valid_tier_transition,
)
from approval_kernel.exceptions import (
    InvalidTierLevelError,
    MissingReasonError,
    TierNotPendingError,
)


@dataclass(frozen=True)
class EntryPatch:
    """One compare-and-swap write against a tier entry."""

    tier: int
    expected_status: TierStatus
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class Transition:
    """Result of applying a decision to a chain."""

    action: DecisionAction
    chain: ApprovalChain
    entry: TierEntry
    patches: tuple[EntryPatch, ...]
    restart_tier: int | None = None

    @property
    def activated(self) -> TierEntry | None:
        """Entry moved from ``waiting`` to ``pending`` by this transition."""
        if len(self.patches) < 2:
            return None
        return self.chain.entry_for(self.patches[1].tier)


def require_reason(reason: str | None, action: str) -> str:
    """Non-empty, stripped reason or MissingReasonError."""
    if reason is None or not reason.strip():
        raise MissingReasonError(action)
    return reason.strip()


def active_entry(chain: ApprovalChain, tier: int | None = None) -> TierEntry:
    """The pending entry, optionally checked against an expected tier (TP-1)."""
    owner_id = str(chain.owner.owner_id)
    if tier is not None:
        entry = chain.entry_for(tier)
        if entry is None:
            raise InvalidTierLevelError(tier, "tier is not part of this chain")
        if entry.status != TierStatus.PENDING:
            raise TierNotPendingError(owner_id, tier, entry.status.value)
        return entry
    entry = chain.active_entry
    if entry is None:
        raise TierNotPendingError(owner_id, None, None)
    return entry


def _apply(chain: ApprovalChain, patch: EntryPatch) -> ApprovalChain:
    entries = []
    for entry in chain.entries:
        if entry.tier == patch.tier:
            new_status = patch.changes.get("status", entry.status)
            if new_status != entry.status and not is_valid_tier_transition(
                entry.status, new_status,
            ):
                raise ValueError(
                    f"Illegal tier transition {entry.status.value} -> "
                    f"{new_status.value} on tier {entry.tier}"
                )
            entry = replace(entry, **patch.changes)
        entries.append(entry)
    return replace(chain, entries=tuple(entries))


def _transition(
    action: DecisionAction,
    chain: ApprovalChain,
    active: TierEntry,
    patches: list[EntryPatch],
    restart_tier: int | None = None,
) -> Transition:
    for patch in patches:
        chain = _apply(chain, patch)
    return Transition(
        action=action,
        chain=chain,
        entry=chain.entry_for(active.tier),
        patches=tuple(patches),
        restart_tier=restart_tier,
    )


# =========================================================================
# Terminal decisions
# =========================================================================


def approve(
    chain: ApprovalChain,
    actor_id: UUID,
    at: datetime,
    comments: str | None = None,
    tier: int | None = None,
) -> Transition:
    """Approve the active tier and activate the next one, if any (TP-2)."""
    active = active_entry(chain, tier)
    patches = [EntryPatch(
        tier=active.tier,
        expected_status=TierStatus.PENDING,
        changes={
            "status": TierStatus.APPROVED,
            "decision_at": at,
            "decided_by_id": actor_id,
            "comments": comments.strip() if comments and comments.strip() else None,
        },
    )]
    following = chain.next_entry_after(active.tier)
    if following is not None:
        if following.status != TierStatus.WAITING:
            raise TierNotPendingError(
                str(chain.owner.owner_id), following.tier, following.status.value,
            )
        patches.append(EntryPatch(
            tier=following.tier,
            expected_status=TierStatus.WAITING,
            changes={"status": TierStatus.PENDING},
        ))
    return _transition(DecisionAction.APPROVE, chain, active, patches)


def reject(
    chain: ApprovalChain,
    actor_id: UUID,
    at: datetime,
    reason: str | None,
    tier: int | None = None,
) -> Transition:
    """Reject the active tier.  Later tiers are never evaluated (TP-3)."""
    active = active_entry(chain, tier)
    reason = require_reason(reason, "reject")
    patch = EntryPatch(
        tier=active.tier,
        expected_status=TierStatus.PENDING,
        changes={
            "status": TierStatus.REJECTED,
            "decision_at": at,
            "decided_by_id": actor_id,
            "comments": reason,
        },
    )
    return _transition(DecisionAction.REJECT, chain, active, [patch])


def return_to_requestor(
    chain: ApprovalChain,
    actor_id: UUID,
    at: datetime,
    reason: str | None,
    target_tier: int | None = None,
    tier: int | None = None,
) -> Transition:
    """Mark the active tier ``returned``.

    With ``target_tier`` the caller is expected to open a new chain
    revision restarting at that tier (``Transition.restart_tier``);
    without it the owner goes back to its requester.
    """
    active = active_entry(chain, tier)
    reason = require_reason(reason, "return")
    if target_tier is not None:
        target = chain.entry_for(target_tier)
        if target_tier >= active.tier:
            raise InvalidTierLevelError(
                target_tier, f"return target must be below active tier {active.tier}",
            )
        if target is None or target.status != TierStatus.APPROVED:
            raise InvalidTierLevelError(
                target_tier, "return target must be an approved tier on this chain",
            )
    patch = EntryPatch(
        tier=active.tier,
        expected_status=TierStatus.PENDING,
        changes={
            "status": TierStatus.RETURNED,
            "decision_at": at,
            "decided_by_id": actor_id,
            "comments": reason,
        },
    )
    return _transition(
        DecisionAction.RETURN, chain, active, [patch], restart_tier=target_tier,
    )


# =========================================================================
# Assignment changes (TP-4)
# =========================================================================


def escalate(
    chain: ApprovalChain,
    new_approver_id: UUID,
    new_approver_name: str | None,
    at: datetime,
    reason: str | None,
    tier: int | None = None,
) -> Transition:
    """Redirect the active tier to a higher authority, same tier level."""
    active = active_entry(chain, tier)
    require_reason(reason, "escalate")
    patch = EntryPatch(
        tier=active.tier,
        expected_status=TierStatus.PENDING,
        changes={
            "approver_id": new_approver_id,
            "approver_name": new_approver_name,
            "escalated_at": at,
        },
    )
    return _transition(DecisionAction.ESCALATE, chain, active, [patch])


def delegate(
    chain: ApprovalChain,
    actor_id: UUID,
    target_user_id: UUID,
    target_name: str | None,
    tier: int | None = None,
) -> Transition:
    """Hand the active tier to another user; remember who delegated."""
    active = active_entry(chain, tier)
    patch = EntryPatch(
        tier=active.tier,
        expected_status=TierStatus.PENDING,
        changes={
            "approver_id": target_user_id,
            "approver_name": target_name,
            "delegated_from_id": active.approver_id or actor_id,
        },
    )
    return _transition(DecisionAction.DELEGATE, chain, active, [patch])


def reassign(
    chain: ApprovalChain,
    target_user_id: UUID,
    target_name: str | None,
    tier: int | None = None,
) -> Transition:
    """Replace the active tier's approver outright."""
    active = active_entry(chain, tier)
    patch = EntryPatch(
        tier=active.tier,
        expected_status=TierStatus.PENDING,
        changes={
            "approver_id": target_user_id,
            "approver_name": target_name,
            "delegated_from_id": None,
        },
    )
    return _transition(DecisionAction.REASSIGN, chain, active, [patch])
