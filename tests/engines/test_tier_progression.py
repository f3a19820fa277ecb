"""
Tests for the tier progression state machine.

Covers:
- approve: activates the next tier; last tier leaves nothing pending
- reject / return: terminal, reason required
- return with target tier: validation of the restart point
- escalate / delegate / reassign: assignment changes, status unchanged
- Patches carry the expected status for compare-and-swap
- Property: approving every tier in order never leaves two pending tiers
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from approval_engines import tier_progression
from approval_engines.chain_builder import build_chain
from approval_engines.lifecycle import map_owner_status
from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalType,
    DecisionAction,
    OwnerRef,
    OwnerStatus,
    TierMetadata,
    TierStatus,
)
from approval_kernel.exceptions import (
    InvalidTierLevelError,
    MissingReasonError,
    TierNotPendingError,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
ACTOR = uuid4()

METADATA = {
    t: TierMetadata(tier=t, tier_name=f"Tier {t}", approver_role=f"role_{t}")
    for t in range(1, 6)
}


def chain_for(amount: str, base_tiers: tuple[int, ...] = ()) -> ApprovalChain:
    return build_chain(
        OwnerRef(ApprovalType.REQUISITION, uuid4()),
        Decimal(amount),
        METADATA,
        base_tiers=base_tiers,
    ).chain


def statuses(chain: ApprovalChain) -> dict[int, TierStatus]:
    return {e.tier: e.status for e in chain.entries}


# =========================================================================
# approve
# =========================================================================


class TestApprove:

    def test_activates_next_tier(self):
        transition = tier_progression.approve(chain_for("25000"), ACTOR, T0, "ok")

        assert statuses(transition.chain) == {2: TierStatus.APPROVED, 3: TierStatus.PENDING}
        assert transition.entry.tier == 2
        assert transition.entry.decided_by_id == ACTOR
        assert transition.entry.decision_at == T0
        assert transition.entry.comments == "ok"
        assert transition.activated.tier == 3

    def test_patches_are_compare_and_swap(self):
        transition = tier_progression.approve(chain_for("25000"), ACTOR, T0)

        first, second = transition.patches
        assert (first.tier, first.expected_status) == (2, TierStatus.PENDING)
        assert first.changes["status"] == TierStatus.APPROVED
        assert (second.tier, second.expected_status) == (3, TierStatus.WAITING)
        assert second.changes == {"status": TierStatus.PENDING}

    def test_last_tier(self):
        transition = tier_progression.approve(chain_for("8000"), ACTOR, T0)

        assert statuses(transition.chain) == {2: TierStatus.APPROVED}
        assert len(transition.patches) == 1
        assert transition.activated is None
        assert transition.chain.active_entry is None

    def test_blank_comment_stored_as_none(self):
        transition = tier_progression.approve(chain_for("8000"), ACTOR, T0, "   ")
        assert transition.entry.comments is None

    def test_no_pending_tier(self):
        chain = tier_progression.approve(chain_for("8000"), ACTOR, T0).chain
        with pytest.raises(TierNotPendingError):
            tier_progression.approve(chain, ACTOR, T0)

    def test_named_tier_must_be_pending(self):
        with pytest.raises(TierNotPendingError) as exc_info:
            tier_progression.approve(chain_for("25000"), ACTOR, T0, tier=3)
        assert exc_info.value.status == "waiting"

    def test_named_tier_must_exist(self):
        with pytest.raises(InvalidTierLevelError):
            tier_progression.approve(chain_for("25000"), ACTOR, T0, tier=4)

    def test_input_chain_unchanged(self):
        chain = chain_for("25000")
        tier_progression.approve(chain, ACTOR, T0)
        assert statuses(chain) == {2: TierStatus.PENDING, 3: TierStatus.WAITING}


# =========================================================================
# reject / return
# =========================================================================


class TestReject:

    def test_reject_is_final(self):
        chain = tier_progression.approve(chain_for("25000"), ACTOR, T0).chain
        transition = tier_progression.reject(chain, ACTOR, T0, "budget exceeded")

        assert statuses(transition.chain) == {2: TierStatus.APPROVED, 3: TierStatus.REJECTED}
        assert transition.entry.comments == "budget exceeded"
        assert transition.action == DecisionAction.REJECT
        with pytest.raises(TierNotPendingError):
            tier_progression.approve(transition.chain, ACTOR, T0)

    def test_later_tiers_untouched(self):
        transition = tier_progression.reject(chain_for("25000"), ACTOR, T0, "no")
        assert statuses(transition.chain)[3] == TierStatus.WAITING

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, reason):
        with pytest.raises(MissingReasonError) as exc_info:
            tier_progression.reject(chain_for("8000"), ACTOR, T0, reason)
        assert exc_info.value.action == "reject"

    def test_reason_stripped(self):
        transition = tier_progression.reject(chain_for("8000"), ACTOR, T0, "  no budget ")
        assert transition.entry.comments == "no budget"


class TestReturn:

    def test_return_to_requestor(self):
        transition = tier_progression.return_to_requestor(
            chain_for("8000"), ACTOR, T0, "needs quotes",
        )
        assert transition.entry.status == TierStatus.RETURNED
        assert transition.restart_tier is None

    def test_empty_reason(self):
        with pytest.raises(MissingReasonError):
            tier_progression.return_to_requestor(chain_for("8000"), ACTOR, T0, "")

    def test_target_tier(self):
        chain = tier_progression.approve(chain_for("25000", (1,)), ACTOR, T0).chain
        chain = tier_progression.approve(chain, ACTOR, T0).chain

        transition = tier_progression.return_to_requestor(
            chain, ACTOR, T0, "recheck", target_tier=1,
        )

        assert transition.restart_tier == 1
        assert transition.entry.tier == 3

    def test_target_must_be_below_active(self):
        chain = tier_progression.approve(chain_for("25000"), ACTOR, T0).chain
        with pytest.raises(InvalidTierLevelError, match="below active tier"):
            tier_progression.return_to_requestor(chain, ACTOR, T0, "x", target_tier=3)

    def test_target_must_be_on_chain(self):
        chain = tier_progression.approve(chain_for("25000"), ACTOR, T0).chain
        with pytest.raises(InvalidTierLevelError, match="approved tier"):
            tier_progression.return_to_requestor(chain, ACTOR, T0, "x", target_tier=1)


# =========================================================================
# Assignment changes
# =========================================================================


class TestAssignmentChanges:

    def test_escalate_same_tier(self):
        boss = uuid4()
        transition = tier_progression.escalate(
            chain_for("8000"), boss, "Boss", T0, "on leave",
        )

        entry = transition.entry
        assert entry.tier == 2
        assert entry.status == TierStatus.PENDING
        assert entry.approver_id == boss
        assert entry.approver_name == "Boss"
        assert entry.escalated_at == T0
        assert transition.patches[0].expected_status == TierStatus.PENDING

    def test_escalate_reason_required(self):
        with pytest.raises(MissingReasonError):
            tier_progression.escalate(chain_for("8000"), uuid4(), "Boss", T0, None)

    def test_delegate_records_source(self):
        target = uuid4()
        transition = tier_progression.delegate(chain_for("8000"), ACTOR, target, "Deputy")

        assert transition.entry.approver_id == target
        assert transition.entry.delegated_from_id == ACTOR
        assert transition.entry.status == TierStatus.PENDING

    def test_reassign_clears_delegation(self):
        chain = tier_progression.delegate(chain_for("8000"), ACTOR, uuid4(), "Deputy").chain
        target = uuid4()

        transition = tier_progression.reassign(chain, target, "New")

        assert transition.entry.approver_id == target
        assert transition.entry.delegated_from_id is None

    def test_assignment_on_finished_chain(self):
        chain = tier_progression.approve(chain_for("8000"), ACTOR, T0).chain
        with pytest.raises(TierNotPendingError):
            tier_progression.reassign(chain, uuid4(), "X")


# =========================================================================
# Properties
# =========================================================================


class TestProgressionProperties:

    @given(
        amount=st.decimals(min_value=0, max_value=50000, places=2),
        with_base=st.booleans(),
    )
    def test_approving_in_order_reaches_approved(self, amount, with_base):
        chain = build_chain(
            OwnerRef(ApprovalType.REQUISITION, uuid4()),
            amount,
            METADATA,
            base_tiers=(1,) if with_base else (),
        ).chain
        approved_order = []
        while chain.active_entry is not None:
            pending = [e for e in chain.entries if e.status == TierStatus.PENDING]
            assert len(pending) == 1
            approved_order.append(pending[0].tier)
            chain = tier_progression.approve(chain, ACTOR, T0).chain

        assert approved_order == sorted(approved_order)
        assert all(e.status == TierStatus.APPROVED for e in chain.entries)
        assert map_owner_status(chain, OwnerStatus.READY_FOR_PO) == OwnerStatus.READY_FOR_PO
