"""
approval_services.decision_processor -- Decision Processor.

Responsibility:
    The single write path for tier decisions: approve, reject, return,
    escalate, delegate and reassign.  Loads the owner and its current
    chain, checks authorization and input, applies the pure state machine,
    persists the resulting compare-and-swap patches and the derived owner
    status, then emits one DecisionEvent.

Architecture position:
    Services -- orchestration.  May import from approval_kernel,
    approval_engines and approval_config.

Invariants enforced:
    DP-1 (check order): owner exists -> current chain exists -> owner is
         decidable -> a tier is pending -> actor is authorized -> input is
         valid -> CAS writes.
    DP-2 (all-or-nothing): every operation runs inside a SAVEPOINT; any
         failure rolls back every write made by that operation.
    DP-3 (first writer wins): tier writes are compare-and-swap on the
         entry's expected status.  A lost race surfaces as
         ConcurrentDecisionError, never as a silent overwrite.
    DP-4 (typed results): validation, precondition, authorization and
         not-found errors are returned as ``DecisionResult.failed``; they
         never propagate past this class.
    DP-5 (one event per decision): sinks receive exactly one event per
         successful call.  Sink failures are logged and not retried.

Failure modes (as DecisionResult.error_code):
    - OWNER_NOT_FOUND / CHAIN_NOT_FOUND
    - OWNER_NOT_ACTIONABLE, TIER_NOT_PENDING, CONCURRENT_DECISION
    - UNAUTHORIZED_APPROVER
    - MISSING_REASON, INVALID_TARGET_USER, INVALID_TIER_LEVEL,
      VALIDATION_FAILED (no higher authority to escalate to)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_config import CompiledApprovalConfig, get_active_config
from approval_engines import tier_progression
from approval_engines.chain_builder import rebuild_from_tier
from approval_engines.lifecycle import is_decidable, owner_patch
from approval_engines.tier_progression import Transition
from approval_kernel.domain.approval import (
    ApprovalAuthority,
    ApprovalChain,
    ApprovalRecordStore,
    ApproverCandidate,
    DecisionAction,
    DecisionEvent,
    DecisionEventSink,
    OrgHierarchyProvider,
    OwnerRef,
    OwnerSnapshot,
    OwnerStatus,
    TierEntry,
    find_candidate,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.results import DecisionResult, classify_error
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ApprovalValidationError,
    ChainNotFoundError,
    ConcurrentDecisionError,
    InvalidTargetUserError,
    OwnerNotActionableError,
    OwnerNotFoundError,
    PreconditionFailedError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.record_store import SqlAlchemyRecordStore

logger = get_logger("services.decision_processor")


def publish(sinks: Sequence[DecisionEventSink], event: DecisionEvent) -> None:
    """Deliver ``event`` to every sink once.  Failures are logged only."""
    for sink in sinks:
        try:
            sink.emit(event)
        except Exception:
            logger.exception(
                "decision_sink_failed",
                extra={
                    "sink": type(sink).__name__,
                    "owner": str(event.owner),
                    "action": event.action.value,
                },
            )


@dataclass(frozen=True)
class _Applied:
    """What an operation body hands back to the boundary."""

    result: DecisionResult
    event: DecisionEvent


class DecisionProcessor:
    """Validates and applies tier decisions.

    Contract:
        Every public method returns a ``DecisionResult``.  On success the
        result carries the new owner status, the chain as persisted and
        the acted-on tier entry, so callers never need to re-query.

    Non-goals:
        - Does NOT commit.  The caller's ``session_scope()`` owns the
          outer transaction.
        - Does NOT submit, resubmit or cancel owners (SubmissionService).
    """

    def __init__(
        self,
        session: Session,
        authority: ApprovalAuthority,
        *,
        store: ApprovalRecordStore | None = None,
        clock: Clock | None = None,
        config: CompiledApprovalConfig | None = None,
        org: OrgHierarchyProvider | None = None,
        sinks: Sequence[DecisionEventSink] = (),
    ) -> None:
        self._session = session
        self._authority = authority
        self._store = store or SqlAlchemyRecordStore(session)
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._org = org
        self._sinks = list(sinks)

    def add_sink(self, sink: DecisionEventSink) -> None:
        self._sinks.append(sink)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def approve(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        comments: str | None = None,
    ) -> DecisionResult:
        """Approve the active tier; advance or finish the chain."""
        def body() -> _Applied:
            snapshot, chain, active = self._load(owner, actor_id, "approve", signs_off=True)
            transition = tier_progression.approve(
                chain, actor_id, self._clock.now(), comments,
            )
            return self._finish_status_change(
                snapshot, active, transition, actor_id, actor_name, comments,
            )

        return self._execute(DecisionAction.APPROVE, owner, actor_id, body)

    def reject(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        reason: str | None,
    ) -> DecisionResult:
        """Reject the active tier.  Final for the whole chain."""
        def body() -> _Applied:
            snapshot, chain, active = self._load(owner, actor_id, "reject", signs_off=True)
            transition = tier_progression.reject(
                chain, actor_id, self._clock.now(), reason,
            )
            return self._finish_status_change(
                snapshot, active, transition, actor_id, actor_name, transition.entry.comments,
            )

        return self._execute(DecisionAction.REJECT, owner, actor_id, body)

    def return_to_requestor(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        reason: str | None,
        target_tier: int | None = None,
    ) -> DecisionResult:
        """Send the owner back to its requester, or down to ``target_tier``."""
        def body() -> _Applied:
            snapshot, chain, active = self._load(owner, actor_id, "return", signs_off=True)
            now = self._clock.now()
            transition = tier_progression.return_to_requestor(
                chain, actor_id, now, reason, target_tier,
            )
            if transition.restart_tier is None:
                return self._finish_status_change(
                    snapshot, active, transition, actor_id, actor_name,
                    transition.entry.comments,
                )
            return self._restart_chain(snapshot, active, transition, actor_id, actor_name)

        return self._execute(DecisionAction.RETURN, owner, actor_id, body)

    def escalate(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        reason: str | None,
    ) -> DecisionResult:
        """Reassign the active tier to the next authority up, same tier level."""
        def body() -> _Applied:
            snapshot, chain, active = self._load(owner, actor_id, "escalate")
            tier_progression.require_reason(reason, "escalate")
            new_approver_id = self._next_authority(active.approver_id or actor_id, actor_id)
            transition = tier_progression.escalate(
                chain,
                new_approver_id,
                self._org.get_display_name(new_approver_id),
                self._clock.now(),
                reason,
            )
            return self._finish_assignment_change(
                snapshot, active, transition, actor_id, actor_name,
                comments=reason.strip(), target_user_id=new_approver_id,
            )

        return self._execute(DecisionAction.ESCALATE, owner, actor_id, body)

    def delegate(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        target_user_id: UUID,
        candidates: Sequence[ApproverCandidate],
        note: str | None = None,
    ) -> DecisionResult:
        """Hand the active tier to a user from ``candidates``."""
        def body() -> _Applied:
            snapshot, chain, active = self._load(owner, actor_id, "delegate")
            target = self._resolve_target(active, target_user_id, candidates)
            transition = tier_progression.delegate(
                chain, actor_id, target.user_id, target.name,
            )
            return self._finish_assignment_change(
                snapshot, active, transition, actor_id, actor_name,
                comments=note, target_user_id=target.user_id,
            )

        return self._execute(DecisionAction.DELEGATE, owner, actor_id, body)

    def reassign(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        actor_name: str,
        target_user_id: UUID,
        candidates: Sequence[ApproverCandidate],
        note: str | None = None,
    ) -> DecisionResult:
        """Replace the active tier's approver with a user from ``candidates``."""
        def body() -> _Applied:
            snapshot, chain, active = self._load(owner, actor_id, "reassign")
            target = self._resolve_target(active, target_user_id, candidates)
            transition = tier_progression.reassign(chain, target.user_id, target.name)
            return self._finish_assignment_change(
                snapshot, active, transition, actor_id, actor_name,
                comments=note, target_user_id=target.user_id,
            )

        return self._execute(DecisionAction.REASSIGN, owner, actor_id, body)

    # ------------------------------------------------------------------
    # Boundary (DP-2, DP-4, DP-5)
    # ------------------------------------------------------------------

    def _execute(
        self,
        action: DecisionAction,
        owner: OwnerRef,
        actor_id: UUID,
        body: Callable[[], _Applied],
    ) -> DecisionResult:
        with LogContext.bind(
            actor_id=str(actor_id),
            owner_id=str(owner.owner_id),
            approval_type=owner.approval_type.value,
        ):
            savepoint = self._session.begin_nested()
            try:
                applied = body()
                savepoint.commit()
            except ApprovalKernelError as exc:
                savepoint.rollback()
                if classify_error(exc) is None:
                    raise
                logger.warning(
                    "approval_decision_refused",
                    extra={
                        "action": action.value,
                        "error_code": exc.code,
                        "reason": str(exc),
                    },
                )
                return DecisionResult.failed(action, owner, exc)
            except Exception:
                savepoint.rollback()
                raise

            result = applied.result
            logger.info(
                "approval_decision_recorded",
                extra={
                    "action": action.value,
                    "tier": applied.event.tier,
                    "chain_id": str(applied.event.chain_id),
                    "owner_status": result.owner_status.value,
                    "on_behalf_of_id": (
                        str(applied.event.on_behalf_of_id)
                        if applied.event.on_behalf_of_id else None
                    ),
                },
            )
            publish(self._sinks, applied.event)
            return result

    # ------------------------------------------------------------------
    # Loading and checks (DP-1)
    # ------------------------------------------------------------------

    def _load(
        self,
        owner: OwnerRef,
        actor_id: UUID,
        operation: str,
        signs_off: bool = False,
    ) -> tuple[OwnerSnapshot, ApprovalChain, TierEntry]:
        """Load and check in DP-1 order.

        ``signs_off`` holds the actor to amount limits; escalation and
        reassignment stay open so a capped approver can hand the tier up.
        """
        snapshot = self._store.get_owner(owner)
        if snapshot is None:
            raise OwnerNotFoundError(owner.approval_type.value, str(owner.owner_id))
        chain = self._store.get_chain(owner)
        if chain is None:
            raise ChainNotFoundError(owner.approval_type.value, str(owner.owner_id))
        if not is_decidable(snapshot.status):
            raise OwnerNotActionableError(
                str(owner.owner_id), snapshot.status.value, operation,
            )
        active = tier_progression.active_entry(chain)
        amount = snapshot.total if signs_off else None
        if not self._authority.can_act(actor_id, active, owner, amount):
            raise UnauthorizedApproverError(
                str(actor_id), active.tier, active.approver_role,
            )
        return snapshot, chain, active

    def _resolve_target(
        self,
        active: TierEntry,
        target_user_id: UUID,
        candidates: Sequence[ApproverCandidate],
    ) -> ApproverCandidate:
        target = find_candidate(candidates, target_user_id)
        if target is None:
            raise InvalidTargetUserError(str(target_user_id))
        if target.user_id == active.approver_id:
            raise InvalidTargetUserError(str(target_user_id), "already assigned to this tier")
        return target

    def _next_authority(self, user_id: UUID, actor_id: UUID) -> UUID:
        chain_up = self._org.get_approval_chain(user_id) if self._org else ()
        for candidate in chain_up:
            if candidate not in (user_id, actor_id):
                return candidate
        raise ApprovalValidationError(
            f"No higher authority above {user_id} to escalate to",
            field="approver_id",
        )

    # ------------------------------------------------------------------
    # Persistence (DP-3)
    # ------------------------------------------------------------------

    def _persist(self, chain: ApprovalChain, transition: Transition) -> None:
        for patch in transition.patches:
            if not self._store.conditional_update_entry(
                chain.chain_id, patch.tier, patch.expected_status, patch.changes,
            ):
                raise ConcurrentDecisionError(str(chain.owner.owner_id), patch.tier)

    def _update_owner(self, snapshot: OwnerSnapshot, patch: dict) -> None:
        if not self._store.update_owner(
            snapshot.ref, patch, expected_status=snapshot.status,
        ):
            raise PreconditionFailedError(
                f"Owner {snapshot.ref} changed status concurrently",
                owner_id=str(snapshot.ref.owner_id),
            )

    def _event(
        self,
        snapshot: OwnerSnapshot,
        active: TierEntry,
        transition: Transition,
        actor_id: UUID,
        actor_name: str,
        owner_status: OwnerStatus,
        chain_id: UUID,
        comments: str | None,
        target_user_id: UUID | None = None,
        amount: Decimal | None = None,
    ) -> DecisionEvent:
        return DecisionEvent(
            owner=snapshot.ref,
            action=transition.action,
            actor_id=actor_id,
            timestamp=self._clock.now(),
            tier=transition.entry.tier,
            chain_id=chain_id,
            actor_name=actor_name,
            comments=comments,
            target_user_id=target_user_id,
            on_behalf_of_id=self._authority.acting_on_behalf_of(
                actor_id, active, snapshot.ref, amount,
            ),
            owner_status=owner_status,
        )

    def _finish_status_change(
        self,
        snapshot: OwnerSnapshot,
        active: TierEntry,
        transition: Transition,
        actor_id: UUID,
        actor_name: str,
        comments: str | None,
    ) -> _Applied:
        chain = transition.chain
        self._persist(chain, transition)
        approved_status = self._config.approved_status_for(snapshot.ref.approval_type)
        patch = owner_patch(chain, approved_status, actor_name, self._clock.now())
        self._update_owner(snapshot, patch)
        status = patch["status"]

        if transition.activated is not None:
            logger.info(
                "approval_tier_activated",
                extra={"tier": transition.activated.tier, "chain_id": str(chain.chain_id)},
            )

        event = self._event(
            snapshot, active, transition, actor_id, actor_name, status, chain.chain_id, comments,
            amount=snapshot.total,
        )
        return _Applied(
            result=DecisionResult.ok(
                transition.action, snapshot.ref, status, chain, transition.entry,
            ),
            event=event,
        )

    def _finish_assignment_change(
        self,
        snapshot: OwnerSnapshot,
        active: TierEntry,
        transition: Transition,
        actor_id: UUID,
        actor_name: str,
        comments: str | None,
        target_user_id: UUID,
    ) -> _Applied:
        chain = transition.chain
        self._persist(chain, transition)
        event = self._event(
            snapshot, active, transition, actor_id, actor_name, snapshot.status,
            chain.chain_id, comments, target_user_id,
        )
        return _Applied(
            result=DecisionResult.ok(
                transition.action, snapshot.ref, snapshot.status, chain, transition.entry,
            ),
            event=event,
        )

    def _restart_chain(
        self,
        snapshot: OwnerSnapshot,
        active: TierEntry,
        transition: Transition,
        actor_id: UUID,
        actor_name: str,
    ) -> _Applied:
        """Cascade return: freeze this revision and reopen at the target tier."""
        old_chain = transition.chain
        self._persist(old_chain, transition)
        now = self._clock.now()
        if not self._store.supersede_chain(old_chain.chain_id, now):
            raise ConcurrentDecisionError(str(snapshot.ref.owner_id), transition.entry.tier)

        rebuilt = rebuild_from_tier(
            old_chain, transition.restart_tier, chain_id=uuid4(), created_at=now,
        )
        new_chain = self._store.insert_chain(rebuilt.chain)
        self._update_owner(snapshot, {"status": rebuilt.owner_status})

        logger.info(
            "approval_chain_restarted",
            extra={
                "old_chain_id": str(old_chain.chain_id),
                "new_chain_id": str(new_chain.chain_id),
                "restart_tier": transition.restart_tier,
                "revision": new_chain.revision,
            },
        )
        event = self._event(
            snapshot, active, transition, actor_id, actor_name, rebuilt.owner_status,
            old_chain.chain_id, transition.entry.comments, amount=snapshot.total,
        )
        return _Applied(
            result=DecisionResult.ok(
                transition.action, snapshot.ref, rebuilt.owner_status,
                new_chain, transition.entry,
            ),
            event=event,
        )
