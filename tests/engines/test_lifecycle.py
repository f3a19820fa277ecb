"""Tests for the owner lifecycle mapper."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from approval_engines.lifecycle import is_decidable, map_owner_status, owner_patch
from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalType,
    OwnerRef,
    OwnerStatus,
    TierEntry,
    TierStatus,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def chain_of(**tier_statuses: TierStatus) -> ApprovalChain:
    entries = tuple(
        TierEntry(tier=int(name[1:]), tier_name=name, approver_role="r", status=status)
        for name, status in tier_statuses.items()
    )
    return ApprovalChain(
        chain_id=uuid4(),
        owner=OwnerRef(ApprovalType.PURCHASE_ORDER, uuid4()),
        entries=entries,
    )


class TestMapOwnerStatus:

    def test_all_approved(self):
        chain = chain_of(t2=TierStatus.APPROVED, t3=TierStatus.APPROVED)
        assert map_owner_status(chain, OwnerStatus.APPROVED) == OwnerStatus.APPROVED

    def test_empty_chain_is_approved(self):
        assert map_owner_status(chain_of(), OwnerStatus.READY_FOR_PO) == OwnerStatus.READY_FOR_PO

    def test_pending_tier(self):
        chain = chain_of(t2=TierStatus.APPROVED, t3=TierStatus.PENDING)
        assert map_owner_status(chain, OwnerStatus.APPROVED) == OwnerStatus.PENDING_TIER3_APPROVAL

    def test_rejected_wins(self):
        chain = chain_of(t1=TierStatus.RETURNED, t2=TierStatus.REJECTED)
        assert map_owner_status(chain, OwnerStatus.APPROVED) == OwnerStatus.REJECTED

    def test_returned(self):
        chain = chain_of(t2=TierStatus.RETURNED, t3=TierStatus.WAITING)
        assert (
            map_owner_status(chain, OwnerStatus.APPROVED)
            == OwnerStatus.RETURNED_TO_REQUESTOR
        )

    def test_idempotent(self):
        chain = chain_of(t2=TierStatus.APPROVED, t3=TierStatus.PENDING)
        first = map_owner_status(chain, OwnerStatus.APPROVED)
        assert map_owner_status(chain, OwnerStatus.APPROVED) == first

    def test_waiting_without_pending_is_inconsistent(self):
        chain = chain_of(t2=TierStatus.APPROVED, t3=TierStatus.WAITING)
        with pytest.raises(ValueError, match="no pending tier"):
            map_owner_status(chain, OwnerStatus.APPROVED)


class TestOwnerPatch:

    def test_stamps_approval(self):
        patch = owner_patch(chain_of(t2=TierStatus.APPROVED), OwnerStatus.APPROVED, "Pat", T0)
        assert patch == {
            "status": OwnerStatus.APPROVED,
            "approved_by": "Pat",
            "approved_date": T0,
        }

    def test_no_stamp_while_pending(self):
        patch = owner_patch(
            chain_of(t2=TierStatus.APPROVED, t3=TierStatus.PENDING),
            OwnerStatus.APPROVED, "Pat", T0,
        )
        assert patch == {"status": OwnerStatus.PENDING_TIER3_APPROVAL}


class TestIsDecidable:

    @pytest.mark.parametrize("status", [
        OwnerStatus.PENDING_APPROVAL,
        OwnerStatus.PENDING_TIER1_APPROVAL,
        OwnerStatus.PENDING_TIER5_APPROVAL,
    ])
    def test_pending_statuses(self, status):
        assert is_decidable(status)

    @pytest.mark.parametrize("status", [
        OwnerStatus.DRAFT,
        OwnerStatus.READY_FOR_PO,
        OwnerStatus.APPROVED,
        OwnerStatus.REJECTED,
        OwnerStatus.RETURNED_TO_REQUESTOR,
        OwnerStatus.CANCELLED,
    ])
    def test_closed_statuses(self, status):
        assert not is_decidable(status)
