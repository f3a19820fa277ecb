"""
Tests for the approval ORM models.

Covers:
- Chain + entries DTO round trip
- Database constraints: unique revision, unique tier, tier range, status
- Append-only decision records with a per-owner sequence
- Delegation windows
- Owner snapshots
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalType,
    DecisionAction,
    DecisionEvent,
    OwnerRef,
    OwnerStatus,
    TierEntry,
    TierStatus,
)
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models import (
    ApprovalChainModel,
    ApprovalDecisionModel,
    ApprovalTierEntryModel,
    DelegationRuleModel,
    RequisitionModel,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_chain(owner: OwnerRef | None = None, revision: int = 1, tiers=(2, 3)) -> ApprovalChain:
    entries = tuple(
        TierEntry(
            tier=t,
            tier_name=f"Tier {t}",
            approver_role=f"role_{t}",
            status=TierStatus.PENDING if i == 0 else TierStatus.WAITING,
            amount_threshold=Decimal("5000") * t,
        )
        for i, t in enumerate(tiers)
    )
    return ApprovalChain(
        chain_id=uuid4(),
        owner=owner or OwnerRef(ApprovalType.REQUISITION, uuid4()),
        entries=entries,
        revision=revision,
        created_at=T0,
    )


def make_event(**overrides) -> DecisionEvent:
    fields = dict(
        owner=OwnerRef(ApprovalType.PURCHASE_ORDER, uuid4()),
        action=DecisionAction.APPROVE,
        actor_id=uuid4(),
        timestamp=T0,
        tier=2,
        chain_id=uuid4(),
        actor_name="Pat Plant",
        comments="fine",
        owner_status=OwnerStatus.APPROVED,
    )
    fields.update(overrides)
    return DecisionEvent(**fields)


# =========================================================================
# Chains
# =========================================================================


class TestApprovalChainModel:

    def test_round_trip(self, session):
        chain = make_chain()
        model = ApprovalChainModel.from_dto(chain)
        session.add(model)
        session.flush()
        session.expire_all()

        loaded = session.get(ApprovalChainModel, chain.chain_id).to_dto()

        assert loaded.owner == chain.owner
        assert loaded.tiers == (2, 3)
        assert loaded.entries[0].status == TierStatus.PENDING
        assert loaded.entries[1].amount_threshold == Decimal("15000")
        assert loaded.created_at == T0
        assert all(e.entry_id is not None for e in loaded.entries)

    def test_duplicate_revision_rejected(self, session):
        owner = OwnerRef(ApprovalType.REQUISITION, uuid4())
        session.add(ApprovalChainModel.from_dto(make_chain(owner)))
        session.flush()
        session.add(ApprovalChainModel.from_dto(make_chain(owner)))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_tier_range_enforced(self, session):
        model = ApprovalChainModel.from_dto(make_chain(tiers=(2,)))
        model.entries[0].tier = 6
        session.add(model)
        with pytest.raises(IntegrityError):
            session.flush()

    def test_status_vocabulary_enforced(self, session):
        model = ApprovalChainModel.from_dto(make_chain(tiers=(2,)))
        model.entries[0].status = "skipped"
        session.add(model)
        with pytest.raises(IntegrityError):
            session.flush()

    def test_duplicate_tier_rejected(self, session):
        model = ApprovalChainModel.from_dto(make_chain(tiers=(2,)))
        model.entries.append(ApprovalTierEntryModel.from_dto(make_chain(tiers=(2,)).entries[0]))
        session.add(model)
        with pytest.raises(IntegrityError):
            session.flush()


# =========================================================================
# Decisions
# =========================================================================


class TestApprovalDecisionModel:

    def test_event_round_trip(self, session):
        event = make_event(on_behalf_of_id=uuid4())
        model = ApprovalDecisionModel.from_event(event)
        session.add(model)
        session.flush()
        session.expire_all()

        loaded = session.get(ApprovalDecisionModel, model.id).to_event()

        assert loaded == event

    def test_update_forbidden(self, session):
        model = ApprovalDecisionModel.from_event(make_event())
        session.add(model)
        session.flush()

        model.comments = "rewritten"
        with pytest.raises(ImmutabilityViolationError, match="cannot modify"):
            session.flush()

    def test_delete_forbidden(self, session):
        model = ApprovalDecisionModel.from_event(make_event())
        session.add(model)
        session.flush()

        session.delete(model)
        with pytest.raises(ImmutabilityViolationError, match="cannot delete"):
            session.flush()

    def test_sequence_unique_per_owner(self, session):
        event = make_event()
        session.add(ApprovalDecisionModel.from_event(event, sequence=1))
        session.add(ApprovalDecisionModel.from_event(make_event(), sequence=1))
        session.flush()

        session.add(ApprovalDecisionModel.from_event(event, sequence=1))
        with pytest.raises(IntegrityError):
            session.flush()


# =========================================================================
# Delegation rules
# =========================================================================


class TestDelegationRule:

    def make_rule(self, **overrides) -> DelegationRuleModel:
        fields = dict(
            from_user_id=uuid4(),
            to_user_id=uuid4(),
            starts_at=T0,
            ends_at=T0 + timedelta(days=7),
        )
        fields.update(overrides)
        return DelegationRuleModel(**fields)

    def test_window(self):
        rule = self.make_rule(is_active=True)
        assert rule.covers(T0)
        assert rule.covers(T0 + timedelta(days=6))
        assert not rule.covers(T0 - timedelta(seconds=1))
        assert not rule.covers(T0 + timedelta(days=7))

    def test_open_ended(self):
        rule = self.make_rule(ends_at=None, is_active=True)
        assert rule.covers(T0 + timedelta(days=365))

    def test_inactive(self):
        assert not self.make_rule(is_active=False).covers(T0)

    def test_scoped_to_approval_type(self):
        rule = self.make_rule(approval_type="purchase_order", is_active=True)
        assert rule.covers(T0, "purchase_order")
        assert not rule.covers(T0, "requisition")

    def test_amount_cap(self):
        rule = self.make_rule(max_amount=Decimal("10000"), is_active=True)
        assert rule.covers(T0)
        assert rule.covers(T0, amount=Decimal("10000"))
        assert not rule.covers(T0, amount=Decimal("10000.01"))

    def test_uncapped_rule_covers_any_amount(self):
        rule = self.make_rule(is_active=True)
        assert rule.covers(T0, amount=Decimal("1000000"))

    def test_overlaps(self):
        rule = self.make_rule()
        assert rule.overlaps(T0 + timedelta(days=6), None)
        assert rule.overlaps(T0 - timedelta(days=1), T0 + timedelta(days=1))
        assert not rule.overlaps(T0 + timedelta(days=7), T0 + timedelta(days=9))
        assert not rule.overlaps(T0 - timedelta(days=3), T0)

    def test_open_ended_overlaps_everything_after_start(self):
        rule = self.make_rule(ends_at=None)
        assert rule.overlaps(T0 + timedelta(days=400), T0 + timedelta(days=401))
        assert not rule.overlaps(T0 - timedelta(days=2), T0 - timedelta(days=1))

    def test_negative_cap_rejected(self, session):
        session.add(self.make_rule(max_amount=Decimal("-1")))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_self_delegation_rejected(self, session):
        user = uuid4()
        session.add(self.make_rule(from_user_id=user, to_user_id=user))
        with pytest.raises(IntegrityError):
            session.flush()


# =========================================================================
# Owners
# =========================================================================


class TestOwnerModels:

    def test_snapshot(self, session):
        requester = uuid4()
        row = RequisitionModel(
            requisition_number="REQ-1",
            requester_id=requester,
            requester_name="Riley",
            title="Spare bearings",
            total=Decimal("8000.00"),
            created_at=T0,
        )
        session.add(row)
        session.flush()

        snapshot = row.to_snapshot()

        assert snapshot.ref == OwnerRef(ApprovalType.REQUISITION, row.id)
        assert snapshot.status == OwnerStatus.DRAFT
        assert snapshot.total == Decimal("8000.00")
        assert snapshot.requester_id == requester

    def test_unknown_status_rejected(self, session):
        session.add(RequisitionModel(
            requisition_number="REQ-2",
            requester_id=uuid4(),
            status="on_hold",
        ))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_query_by_status(self, session):
        session.add(RequisitionModel(
            requisition_number="REQ-3",
            requester_id=uuid4(),
            status=OwnerStatus.PENDING_TIER2_APPROVAL.value,
        ))
        session.flush()
        found = session.execute(
            select(RequisitionModel).where(
                RequisitionModel.status == OwnerStatus.PENDING_TIER2_APPROVAL.value,
            )
        ).scalars().all()
        assert [r.requisition_number for r in found] == ["REQ-3"]
