"""
Tests for the approval chain builder.

Covers:
- First tier pending, later tiers waiting
- Empty chain bypass to the approved status
- Metadata validation
- rebuild_from_tier for cascade returns
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from approval_engines.chain_builder import build_chain, rebuild_from_tier
from approval_engines.thresholds import DEFAULT_THRESHOLDS
from approval_kernel.domain.approval import (
    ApprovalType,
    OwnerRef,
    OwnerStatus,
    TierMetadata,
    TierStatus,
)
from approval_kernel.exceptions import (
    IncompleteTierMetadataError,
    InvalidAmountError,
    InvalidTierLevelError,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_metadata(*tiers: int) -> dict[int, TierMetadata]:
    tiers = tiers or (1, 2, 3, 4, 5)
    return {
        t: TierMetadata(tier=t, tier_name=f"Tier {t} Approver", approver_role=f"role_{t}")
        for t in tiers
    }


def requisition() -> OwnerRef:
    return OwnerRef(ApprovalType.REQUISITION, uuid4())


# =========================================================================
# build_chain
# =========================================================================


class TestBuildChain:

    def test_2000_needs_no_tiers(self):
        result = build_chain(requisition(), Decimal("2000"), make_metadata())

        assert result.bypassed
        assert result.chain.entries == ()
        assert result.owner_status == OwnerStatus.READY_FOR_PO

    def test_bypass_uses_per_type_default(self):
        owner = OwnerRef(ApprovalType.PURCHASE_ORDER, uuid4())
        result = build_chain(owner, Decimal("100"), make_metadata())
        assert result.owner_status == OwnerStatus.APPROVED

    def test_bypass_uses_explicit_status(self):
        result = build_chain(
            requisition(), Decimal("100"), make_metadata(),
            approved_status=OwnerStatus.APPROVED,
        )
        assert result.owner_status == OwnerStatus.APPROVED

    def test_8000_single_tier_pending(self):
        result = build_chain(requisition(), Decimal("8000"), make_metadata())

        assert result.required_tiers == (2,)
        (entry,) = result.chain.entries
        assert entry.tier == 2
        assert entry.status == TierStatus.PENDING
        assert entry.amount_threshold == Decimal("5000")
        assert result.owner_status == OwnerStatus.PENDING_TIER2_APPROVAL

    def test_25000_first_pending_rest_waiting(self):
        result = build_chain(requisition(), Decimal("25000"), make_metadata())

        statuses = [(e.tier, e.status) for e in result.chain.entries]
        assert statuses == [(2, TierStatus.PENDING), (3, TierStatus.WAITING)]

    def test_base_tiers_come_first(self):
        result = build_chain(
            requisition(), Decimal("8000"), make_metadata(), base_tiers=(1,),
        )
        assert result.chain.tiers == (1, 2)
        assert result.chain.active_entry.tier == 1
        assert result.owner_status == OwnerStatus.PENDING_TIER1_APPROVAL

    def test_assignee_carried_from_metadata(self):
        approver = uuid4()
        metadata = make_metadata()
        metadata[2] = TierMetadata(2, "Plant Manager", "plant_manager", approver, "Pat")

        entry = build_chain(requisition(), Decimal("8000"), metadata).chain.entries[0]

        assert entry.approver_id == approver
        assert entry.approver_name == "Pat"

    def test_chain_fields(self):
        owner = requisition()
        chain_id = uuid4()
        result = build_chain(
            owner, Decimal("8000"), make_metadata(),
            chain_id=chain_id, revision=3, created_at=T0,
        )
        assert result.chain.chain_id == chain_id
        assert result.chain.owner == owner
        assert result.chain.revision == 3
        assert result.chain.created_at == T0

    def test_negative_amount_rejected_first(self):
        with pytest.raises(InvalidAmountError):
            build_chain(requisition(), Decimal("-1"), {})

    def test_missing_metadata(self):
        with pytest.raises(IncompleteTierMetadataError) as exc_info:
            build_chain(requisition(), Decimal("25000"), make_metadata(2))
        assert exc_info.value.tier == 3

    def test_blank_role(self):
        metadata = make_metadata()
        metadata[2] = TierMetadata(2, "Plant Manager", "  ")
        with pytest.raises(IncompleteTierMetadataError, match="approver_role"):
            build_chain(requisition(), Decimal("8000"), metadata)

    def test_metadata_as_iterable(self):
        result = build_chain(
            requisition(), Decimal("8000"), list(make_metadata().values()),
        )
        assert result.chain.tiers == (2,)

    @given(amount=st.decimals(min_value=0, max_value=100000, places=2))
    def test_exactly_one_pending_unless_empty(self, amount):
        chain = build_chain(
            requisition(), amount, make_metadata(), thresholds=DEFAULT_THRESHOLDS,
        ).chain
        pending = [e for e in chain.entries if e.status == TierStatus.PENDING]
        assert len(pending) == (0 if chain.is_empty else 1)
        if pending:
            assert pending[0].tier == min(chain.tiers)


# =========================================================================
# rebuild_from_tier
# =========================================================================


class TestRebuildFromTier:

    def _approved_through(self, tier: int):
        chain = build_chain(
            requisition(), Decimal("25000"), make_metadata(), base_tiers=(1,),
            created_at=T0,
        ).chain
        entries = []
        for entry in chain.entries:
            if entry.tier <= tier:
                entry = replace(
                    entry,
                    status=TierStatus.APPROVED,
                    decision_at=T0,
                    decided_by_id=uuid4(),
                    entry_id=uuid4(),
                )
            elif entry.tier == tier + 1:
                entry = replace(entry, status=TierStatus.RETURNED)
            entries.append(entry)
        return replace(chain, entries=tuple(entries))

    def test_restart_at_tier_two(self):
        previous = self._approved_through(2)

        result = rebuild_from_tier(previous, 2, created_at=T0)

        by_tier = {e.tier: e for e in result.chain.entries}
        assert by_tier[1].status == TierStatus.APPROVED
        assert by_tier[1].decided_by_id is not None
        assert by_tier[2].status == TierStatus.PENDING
        assert by_tier[2].decision_at is None
        assert by_tier[3].status == TierStatus.WAITING
        assert result.owner_status == OwnerStatus.PENDING_TIER2_APPROVAL
        assert result.chain.revision == previous.revision + 1
        assert result.chain.chain_id != previous.chain_id

    def test_entry_ids_dropped(self):
        result = rebuild_from_tier(self._approved_through(2), 1)
        assert all(e.entry_id is None for e in result.chain.entries)

    def test_target_must_be_approved(self):
        with pytest.raises(InvalidTierLevelError):
            rebuild_from_tier(self._approved_through(1), 3)

    def test_target_must_exist(self):
        with pytest.raises(InvalidTierLevelError):
            rebuild_from_tier(self._approved_through(2), 5)
