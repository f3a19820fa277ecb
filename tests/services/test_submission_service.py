"""
Tests for SubmissionService: submit, resubmit, cancel.

Covers:
- Submission builds the first chain, or bypasses straight to approved
- Double submission and non-draft owners are refused
- Resubmission after a return builds a new revision from the new total
- Cancellation is idempotent and closes the in-flight chain
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    ApprovalType,
    ApproverCandidate,
    DecisionAction,
    OwnerRef,
    OwnerStatus,
    TierStatus,
)
from approval_kernel.exceptions import (
    OwnerNotActionableError,
    OwnerNotFoundError,
    PreconditionFailedError,
    UnauthorizedApproverError,
)


class TestSubmit:

    def test_builds_chain(self, submission, create_owner, record_store, staff):
        ref = create_owner(total="25000")

        built = submission.submit(ref, staff.requester, "Riley Requester")

        assert built.required_tiers == (2, 3)
        assert built.owner_status == OwnerStatus.PENDING_TIER2_APPROVAL
        stored = record_store.get_chain(ref)
        assert stored.chain_id == built.chain.chain_id
        assert stored.revision == 1
        assert stored.active_entry.tier_name == "Plant Manager"
        assert record_store.get_owner(ref).status == OwnerStatus.PENDING_TIER2_APPROVAL

    def test_bypass(self, submission, create_owner, record_store, staff, deterministic_clock):
        ref = create_owner(total="2000")

        built = submission.submit(ref, staff.requester, "Riley Requester")

        assert built.bypassed
        assert built.owner_status == OwnerStatus.READY_FOR_PO
        assert record_store.get_chain(ref) is None
        owner = record_store.get_owner(ref)
        assert owner.status == OwnerStatus.READY_FOR_PO
        assert owner.approved_by == "Riley Requester"
        assert owner.approved_date == deterministic_clock.now()

    def test_bypass_event_has_no_chain(self, submission, create_owner, decision_log, staff):
        ref = create_owner(total="10")
        submission.submit(ref, staff.requester, "Riley Requester")

        (event,) = decision_log.history(ref)
        assert event.action == DecisionAction.SUBMIT
        assert event.chain_id is None
        assert event.owner_status == OwnerStatus.READY_FOR_PO

    def test_workflow_needs_department_sign_off(self, submission, create_owner, staff):
        ref = create_owner(approval_type=ApprovalType.WORKFLOW_INSTANCE, total=None)
        built = submission.submit(ref, staff.requester, "Riley Requester")
        assert built.required_tiers == (1,)

    def test_assignees(self, submission, create_owner, staff):
        ref = create_owner(total="8000")
        built = submission.submit(
            ref, staff.requester, "Riley Requester",
            assignees={2: ApproverCandidate(staff.plant_manager, "Pat Plant")},
        )
        entry = built.chain.entry_for(2)
        assert entry.approver_id == staff.plant_manager
        assert entry.approver_name == "Pat Plant"

    def test_double_submit(self, submission, submitted_owner, staff):
        ref = submitted_owner("8000")
        with pytest.raises(PreconditionFailedError, match="already has an approval chain"):
            submission.submit(ref, staff.requester, "Riley Requester")

    def test_not_draft(self, submission, create_owner, staff):
        ref = create_owner(total="8000", status=OwnerStatus.REJECTED)
        with pytest.raises(OwnerNotActionableError):
            submission.submit(ref, staff.requester, "Riley Requester")

    def test_missing_owner(self, submission, staff):
        with pytest.raises(OwnerNotFoundError):
            submission.submit(
                OwnerRef(ApprovalType.PURCHASE_ORDER, uuid4()), staff.requester, "Riley",
            )

    def test_logged(self, submission, create_owner, staff, captured_logs):
        submission.submit(create_owner(total="8000"), staff.requester, "Riley Requester")

        built = [r for r in captured_logs() if r["message"] == "approval_chain_built"]
        assert built[0]["required_tiers"] == [2]
        assert built[0]["bypassed"] is False


class TestResubmit:

    @pytest.fixture
    def returned_owner(self, processor, submitted_owner, staff, deterministic_clock):
        ref = submitted_owner("8000")
        deterministic_clock.advance(60)
        processor.return_to_requestor(ref, staff.plant_manager, "Pat Plant", "need quotes")
        deterministic_clock.advance(60)
        return ref

    def test_new_revision(self, submission, returned_owner, record_store, staff):
        built = submission.resubmit(returned_owner, staff.requester, "Riley Requester")

        assert built.chain.revision == 2
        old, new = submission.chain_history(returned_owner)
        assert old.is_superseded
        assert old.entry_for(2).status == TierStatus.RETURNED
        assert new.active_entry.tier == 2
        assert record_store.get_owner(returned_owner).status == OwnerStatus.PENDING_TIER2_APPROVAL

    def test_new_total_changes_tiers(self, submission, returned_owner, record_store, staff):
        built = submission.resubmit(
            returned_owner, staff.requester, "Riley Requester",
            total=Decimal("30000"), comments="added quotes",
        )

        assert built.required_tiers == (2, 3)
        assert record_store.get_owner(returned_owner).total == Decimal("30000")

    def test_reduced_total_bypasses(self, submission, returned_owner, record_store, staff):
        built = submission.resubmit(
            returned_owner, staff.requester, "Riley Requester", total=Decimal("900"),
        )

        assert built.bypassed
        assert record_store.get_chain(returned_owner) is None
        assert record_store.get_owner(returned_owner).status == OwnerStatus.READY_FOR_PO

    def test_only_requester(self, submission, returned_owner, staff):
        with pytest.raises(UnauthorizedApproverError):
            submission.resubmit(returned_owner, staff.plant_manager, "Pat Plant")

    def test_must_be_returned(self, submission, submitted_owner, staff):
        with pytest.raises(OwnerNotActionableError):
            submission.resubmit(submitted_owner("8000"), staff.requester, "Riley Requester")

    def test_event(self, submission, returned_owner, decision_log, staff):
        submission.resubmit(returned_owner, staff.requester, "Riley Requester", comments="fixed")

        event = decision_log.history(returned_owner)[-1]
        assert event.action == DecisionAction.RESUBMIT
        assert event.comments == "fixed"

    def test_new_revision_can_be_approved(self, submission, processor, returned_owner, staff):
        submission.resubmit(returned_owner, staff.requester, "Riley Requester")
        result = processor.approve(returned_owner, staff.plant_manager, "Pat Plant")
        assert result.owner_status == OwnerStatus.READY_FOR_PO


class TestCancel:

    def test_cancel_pending(self, submission, submitted_owner, record_store, staff):
        ref = submitted_owner("25000")

        status = submission.cancel(ref, staff.requester, "Riley Requester", "no longer needed")

        assert status == OwnerStatus.CANCELLED
        assert record_store.get_owner(ref).status == OwnerStatus.CANCELLED
        assert record_store.get_chain(ref) is None
        assert submission.chain_history(ref)[0].is_superseded

    def test_idempotent(self, submission, submitted_owner, decision_log, staff, captured_logs):
        ref = submitted_owner("8000")
        submission.cancel(ref, staff.requester, "Riley Requester")

        assert submission.cancel(ref, staff.requester, "Riley Requester") == OwnerStatus.CANCELLED

        cancels = [e for e in decision_log.history(ref) if e.action == DecisionAction.CANCEL]
        assert len(cancels) == 1
        assert any(r["message"] == "owner_already_cancelled" for r in captured_logs())

    def test_cancel_draft(self, submission, create_owner, record_store, staff):
        ref = create_owner(total="8000")
        submission.cancel(ref, staff.requester, "Riley Requester")
        assert record_store.get_owner(ref).status == OwnerStatus.CANCELLED

    def test_decisions_refused_after_cancel(self, submission, processor, submitted_owner, staff):
        ref = submitted_owner("8000")
        submission.cancel(ref, staff.requester, "Riley Requester")

        result = processor.approve(ref, staff.plant_manager, "Pat Plant")

        assert not result.success
        assert result.error_code == "CHAIN_NOT_FOUND"

    def test_event(self, submission, submitted_owner, decision_log, staff, deterministic_clock):
        ref = submitted_owner("8000")
        deterministic_clock.advance(60)
        submission.cancel(ref, staff.requester, "Riley Requester", "  duplicate  ")

        event = decision_log.history(ref)[-1]
        assert event.action == DecisionAction.CANCEL
        assert event.comments == "duplicate"
        assert event.chain_id is not None
        assert event.owner_status == OwnerStatus.CANCELLED
