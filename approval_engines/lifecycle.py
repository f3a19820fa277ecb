"""
approval_engines.lifecycle -- Request/Order Lifecycle Mapper.

Responsibility:
    Derive the owning entity's status from its chain.  Owner status is
    never set independently while a chain is live; it is always the output
    of ``map_owner_status``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - LM-1 (precedence): any ``rejected`` entry -> ``rejected``; else any
      ``returned`` entry -> ``returned_to_requestor``; else all approved ->
      the approved status for the owner type; else
      ``pending_tier<N>_approval`` for the pending tier N.
    - LM-2 (idempotent): mapping the same chain twice yields the same status.
    - LM-3: only the fully approved state stamps ``approved_by`` and
      ``approved_date`` on the owner.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from approval_kernel.domain.approval import (
    TERMINAL_OWNER_STATUSES,
    ApprovalChain,
    OwnerStatus,
    TierStatus,
    pending_tier_status,
)


def map_owner_status(chain: ApprovalChain, approved_status: OwnerStatus) -> OwnerStatus:
    """Owner status implied by ``chain`` (LM-1)."""
    statuses = {entry.status for entry in chain.entries}
    if TierStatus.REJECTED in statuses:
        return OwnerStatus.REJECTED
    if TierStatus.RETURNED in statuses:
        return OwnerStatus.RETURNED_TO_REQUESTOR
    if not chain.entries or statuses == {TierStatus.APPROVED}:
        return approved_status
    active = chain.active_entry
    if active is None:
        raise ValueError(
            f"Chain {chain.chain_id} has waiting tiers but no pending tier"
        )
    return pending_tier_status(active.tier)


def owner_patch(
    chain: ApprovalChain,
    approved_status: OwnerStatus,
    approver_name: str,
    at: datetime,
) -> dict[str, Any]:
    """Owner columns to write after a chain mutation (LM-3)."""
    status = map_owner_status(chain, approved_status)
    patch: dict[str, Any] = {"status": status}
    if status == approved_status:
        patch["approved_by"] = approver_name
        patch["approved_date"] = at
    return patch


def is_decidable(status: OwnerStatus) -> bool:
    """True while tier decisions may still be applied to the owner."""
    return status not in TERMINAL_OWNER_STATUSES and status not in (
        OwnerStatus.DRAFT,
        OwnerStatus.RETURNED_TO_REQUESTOR,
    )
