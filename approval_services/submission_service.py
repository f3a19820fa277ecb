"""
approval_services.submission_service -- Submit, resubmit and cancel owners.

Responsibility:
    Owns the parts of an owner's lifecycle that sit outside tier decisions:
    building the first chain on submission, building a fresh revision on
    resubmission after a return, and cancelling.  Chains are built by the
    pure Chain Builder from the active approval configuration.

Architecture position:
    Services -- orchestration.  Unlike the Decision Processor these
    operations raise typed exceptions; they are not behind the decision
    result boundary.

Invariants enforced:
    SS-1: An owner has at most one current (non-superseded) chain.
    SS-2: Older revisions are superseded, never deleted.
    SS-3: An empty chain (no required tiers) is not persisted; the owner
          goes straight to its approved status and is stamped as such.
    SS-4: Cancellation supersedes the in-flight chain, so a tier write
          racing the cancel fails its compare-and-swap.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_config import CompiledApprovalConfig, get_active_config
from approval_engines.chain_builder import ChainBuildResult, build_chain
from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalRecordStore,
    ApproverCandidate,
    DecisionAction,
    DecisionEvent,
    DecisionEventSink,
    OwnerRef,
    OwnerSnapshot,
    OwnerStatus,
    TierMetadata,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    OwnerNotActionableError,
    OwnerNotFoundError,
    PreconditionFailedError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.record_store import SqlAlchemyRecordStore
from approval_services.decision_processor import publish

logger = get_logger("services.submission")


class SubmissionService:
    """Starts, restarts and cancels approval for an owner."""

    def __init__(
        self,
        session: Session,
        *,
        store: ApprovalRecordStore | None = None,
        clock: Clock | None = None,
        config: CompiledApprovalConfig | None = None,
        sinks: Sequence[DecisionEventSink] = (),
    ) -> None:
        self._session = session
        self._store = store or SqlAlchemyRecordStore(session)
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._sinks = list(sinks)

    def add_sink(self, sink: DecisionEventSink) -> None:
        self._sinks.append(sink)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        assignees: Mapping[int, ApproverCandidate] | None = None,
    ) -> ChainBuildResult:
        """Build and persist the first chain for a draft owner.

        Args:
            assignees: Optional named approver per tier.  Tiers without an
                assignee are open to anyone holding the tier's role.

        Raises:
            OwnerNotFoundError, OwnerNotActionableError (owner is not a
            draft), PreconditionFailedError (owner already has a chain),
            plus any ApprovalValidationError from the Chain Builder.
        """
        with LogContext.bind(
            actor_id=str(actor_id),
            owner_id=str(owner.owner_id),
            approval_type=owner.approval_type.value,
        ):
            savepoint = self._session.begin_nested()
            try:
                snapshot = self._require_owner(owner)
                if self._store.get_chain(owner) is not None:
                    raise PreconditionFailedError(
                        f"{owner} already has an approval chain",
                        owner_id=str(owner.owner_id),
                    )
                if snapshot.status != OwnerStatus.DRAFT:
                    raise OwnerNotActionableError(
                        str(owner.owner_id), snapshot.status.value, "submit",
                    )
                built = self._build_and_store(
                    snapshot, snapshot.total, actor_name, assignees,
                )
                savepoint.commit()
            except Exception:
                savepoint.rollback()
                raise

            self._emit(DecisionAction.SUBMIT, snapshot, built, actor_id, actor_name, None)
            return built

    def resubmit(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        total: Decimal | None = None,
        comments: str | None = None,
    ) -> ChainBuildResult:
        """Supersede the returned chain and build a new revision.

        ``total`` replaces the owner's amount before tiers are resolved,
        so an edited request may need more or fewer tiers than before.
        """
        with LogContext.bind(
            actor_id=str(actor_id),
            owner_id=str(owner.owner_id),
            approval_type=owner.approval_type.value,
        ):
            savepoint = self._session.begin_nested()
            try:
                snapshot = self._require_owner(owner)
                if actor_id != snapshot.requester_id:
                    raise UnauthorizedApproverError(str(actor_id), None, "requester")
                if snapshot.status != OwnerStatus.RETURNED_TO_REQUESTOR:
                    raise OwnerNotActionableError(
                        str(owner.owner_id), snapshot.status.value, "resubmit",
                    )
                current = self._store.get_chain(owner)
                if current is not None:
                    self._store.supersede_chain(current.chain_id, self._clock.now())
                if total is not None:
                    self._store.update_owner(owner, {"total": total})
                    snapshot = replace(snapshot, total=total)
                built = self._build_and_store(snapshot, snapshot.total, actor_name, None)
                savepoint.commit()
            except Exception:
                savepoint.rollback()
                raise

            self._emit(
                DecisionAction.RESUBMIT, snapshot, built, actor_id, actor_name, comments,
            )
            return built

    def cancel(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        reason: str | None = None,
    ) -> OwnerStatus:
        """Cancel the owner regardless of chain state.  Idempotent."""
        with LogContext.bind(
            actor_id=str(actor_id),
            owner_id=str(owner.owner_id),
            approval_type=owner.approval_type.value,
        ):
            savepoint = self._session.begin_nested()
            try:
                snapshot = self._require_owner(owner)
                if snapshot.status == OwnerStatus.CANCELLED:
                    savepoint.commit()
                    logger.info("owner_already_cancelled")
                    return OwnerStatus.CANCELLED
                now = self._clock.now()
                current = self._store.get_chain(owner)
                if current is not None:
                    self._store.supersede_chain(current.chain_id, now)
                if not self._store.update_owner(
                    owner, {"status": OwnerStatus.CANCELLED},
                    expected_status=snapshot.status,
                ):
                    raise PreconditionFailedError(
                        f"Owner {owner} changed status concurrently",
                        owner_id=str(owner.owner_id),
                    )
                savepoint.commit()
            except Exception:
                savepoint.rollback()
                raise

            logger.info(
                "owner_cancelled",
                extra={
                    "previous_status": snapshot.status.value,
                    "chain_id": str(current.chain_id) if current else None,
                },
            )
            publish(self._sinks, DecisionEvent(
                owner=owner,
                action=DecisionAction.CANCEL,
                actor_id=actor_id,
                timestamp=now,
                chain_id=current.chain_id if current else None,
                actor_name=actor_name,
                comments=reason.strip() if reason and reason.strip() else None,
                owner_status=OwnerStatus.CANCELLED,
            ))
            return OwnerStatus.CANCELLED

    def chain_history(self, owner: OwnerRef) -> list[ApprovalChain]:
        """Every chain revision for ``owner``, oldest first."""
        return self._store.list_chains(owner)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_owner(self, owner: OwnerRef) -> OwnerSnapshot:
        snapshot = self._store.get_owner(owner)
        if snapshot is None:
            raise OwnerNotFoundError(owner.approval_type.value, str(owner.owner_id))
        return snapshot

    def _tier_metadata(
        self, assignees: Mapping[int, ApproverCandidate] | None,
    ) -> dict[int, TierMetadata]:
        metadata = self._config.tier_metadata()
        for tier, candidate in (assignees or {}).items():
            if tier in metadata:
                metadata[tier] = replace(
                    metadata[tier],
                    approver_id=candidate.user_id,
                    approver_name=candidate.name,
                )
        return metadata

    def _build_and_store(
        self,
        snapshot: OwnerSnapshot,
        amount: Decimal | None,
        actor_name: str,
        assignees: Mapping[int, ApproverCandidate] | None,
    ) -> ChainBuildResult:
        kind = snapshot.ref.approval_type
        policy = self._config.policy_for(kind)
        now = self._clock.now()
        revision = max(
            (c.revision for c in self._store.list_chains(snapshot.ref)), default=0,
        ) + 1

        built = build_chain(
            snapshot.ref,
            amount,
            self._tier_metadata(assignees),
            thresholds=self._config.thresholds_for(kind),
            base_tiers=policy.base_tiers,
            approved_status=policy.approved_status,
            chain_id=uuid4(),
            revision=revision,
            created_at=now,
        )

        patch: dict = {"status": built.owner_status}
        if built.bypassed:
            patch["approved_by"] = actor_name
            patch["approved_date"] = now
        else:
            built = replace(built, chain=self._store.insert_chain(built.chain))

        if not self._store.update_owner(
            snapshot.ref, patch, expected_status=snapshot.status,
        ):
            raise PreconditionFailedError(
                f"Owner {snapshot.ref} changed status concurrently",
                owner_id=str(snapshot.ref.owner_id),
            )

        logger.info(
            "approval_chain_built",
            extra={
                "chain_id": None if built.bypassed else str(built.chain.chain_id),
                "revision": revision,
                "required_tiers": list(built.required_tiers),
                "owner_status": built.owner_status.value,
                "bypassed": built.bypassed,
            },
        )
        return built

    def _emit(
        self,
        action: DecisionAction,
        snapshot: OwnerSnapshot,
        built: ChainBuildResult,
        actor_id: UUID,
        actor_name: str,
        comments: str | None,
    ) -> None:
        publish(self._sinks, DecisionEvent(
            owner=snapshot.ref,
            action=action,
            actor_id=actor_id,
            timestamp=self._clock.now(),
            chain_id=None if built.bypassed else built.chain.chain_id,
            actor_name=actor_name,
            comments=comments,
            owner_status=built.owner_status,
        ))
