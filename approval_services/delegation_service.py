"""
approval_services.delegation_service -- Create and revoke proxy delegations.

Responsibility:
    The write path for ``delegation_rules``.  A rule lets ``to_user`` act on
    tiers assigned to ``from_user`` inside a time window, optionally scoped
    to one approval type and capped at ``max_amount``.  RoleBasedAuthority
    reads the rules; this service is the only thing that writes them.

Architecture position:
    Services -- orchestration.  Operations raise typed exceptions, like
    SubmissionService.

Invariants enforced:
    DS-1: A user has at most one live rule for any instant.  A new window
          that overlaps a live rule from the same delegator is refused.
    DS-2: A user covering for someone under a rule that forbids
          re-delegation, and who is away themselves, cannot be handed
          anyone else's work.
    DS-3: Revocation is soft (``is_active`` cleared, ``revoked_at`` set) and
          idempotent; the row stays for the proxy audit trail.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApprovalType
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    ApprovalValidationError,
    InvalidAmountError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.delegation import DelegationRuleModel

logger = get_logger("services.delegation")


class DelegationService:
    """Manages proxy delegation rules."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def create(
        self,
        from_user_id: UUID,
        from_user_name: str,
        to_user_id: UUID,
        to_user_name: str,
        starts_at: datetime,
        ends_at: datetime | None = None,
        *,
        approval_type: ApprovalType | None = None,
        max_amount: Decimal | None = None,
        allow_redelegation: bool = True,
        reason: str | None = None,
    ) -> DelegationRuleModel:
        """Record a new delegation from ``from_user_id`` to ``to_user_id``.

        Raises:
            ApprovalValidationError: self-delegation, an empty window, an
                overlapping live rule, or a blocked re-delegation.
            InvalidAmountError: negative ``max_amount``.
        """
        with LogContext.bind(actor_id=str(from_user_id)):
            if from_user_id == to_user_id:
                raise ApprovalValidationError(
                    "A user cannot delegate to themselves", field="to_user_id",
                )
            if ends_at is not None and ends_at <= starts_at:
                raise ApprovalValidationError(
                    "Delegation must end after it starts", field="ends_at",
                )
            if max_amount is not None and max_amount < 0:
                raise InvalidAmountError(str(max_amount))

            conflicts = [
                rule for rule in self._live_rules(from_user_id=from_user_id)
                if rule.overlaps(starts_at, ends_at)
            ]
            if conflicts:
                logger.warning(
                    "delegation_conflict",
                    extra={"conflicting_rule_ids": [str(r.id) for r in conflicts]},
                )
                raise ApprovalValidationError(
                    f"{from_user_name or from_user_id} already has a delegation "
                    f"covering part of this period",
                    field="starts_at",
                )
            self._check_redelegation(to_user_id, to_user_name)

            rule = DelegationRuleModel(
                from_user_id=from_user_id,
                from_user_name=from_user_name,
                to_user_id=to_user_id,
                to_user_name=to_user_name,
                approval_type=approval_type.value if approval_type else None,
                starts_at=starts_at,
                ends_at=ends_at,
                max_amount=max_amount,
                allow_redelegation=allow_redelegation,
                is_active=True,
                reason=reason.strip() if reason and reason.strip() else None,
                created_at=self._clock.now(),
            )
            self._session.add(rule)
            self._session.flush()

            logger.info(
                "delegation_created",
                extra={
                    "rule_id": str(rule.id),
                    "to_user_id": str(to_user_id),
                    "approval_type": rule.approval_type,
                    "max_amount": max_amount,
                },
            )
            return rule

    def revoke(self, rule_id: UUID, actor_id: UUID) -> DelegationRuleModel:
        """Switch a rule off.  Only its delegator may revoke it."""
        with LogContext.bind(actor_id=str(actor_id)):
            rule = self._session.get(DelegationRuleModel, rule_id)
            if rule is None:
                raise ApprovalNotFoundError(f"Delegation rule not found: {rule_id}")
            if actor_id != rule.from_user_id:
                raise UnauthorizedApproverError(str(actor_id), None, "delegator")
            if not rule.is_active:
                logger.info("delegation_already_revoked", extra={"rule_id": str(rule_id)})
                return rule

            rule.is_active = False
            rule.revoked_at = self._clock.now()
            self._session.flush()
            logger.info("delegation_revoked", extra={"rule_id": str(rule_id)})
            return rule

    def active_rules(
        self,
        from_user_id: UUID | None = None,
        to_user_id: UUID | None = None,
    ) -> list[DelegationRuleModel]:
        """Rules in force right now, oldest window first."""
        now = self._clock.now()
        return [
            rule for rule in self._live_rules(from_user_id, to_user_id)
            if rule.covers(now, rule.approval_type)
        ]

    def _live_rules(
        self,
        from_user_id: UUID | None = None,
        to_user_id: UUID | None = None,
    ) -> list[DelegationRuleModel]:
        """Active rules that have not yet expired, including future ones."""
        stmt = select(DelegationRuleModel).where(
            DelegationRuleModel.is_active.is_(True),
            or_(
                DelegationRuleModel.ends_at.is_(None),
                DelegationRuleModel.ends_at > self._clock.now(),
            ),
        )
        if from_user_id is not None:
            stmt = stmt.where(DelegationRuleModel.from_user_id == from_user_id)
        if to_user_id is not None:
            stmt = stmt.where(DelegationRuleModel.to_user_id == to_user_id)
        stmt = stmt.order_by(DelegationRuleModel.starts_at)
        return list(self._session.execute(stmt).scalars())

    def _check_redelegation(self, to_user_id: UUID, to_user_name: str) -> None:
        outgoing = self.active_rules(from_user_id=to_user_id)
        if not outgoing:
            return
        locked = [r for r in self.active_rules(to_user_id=to_user_id) if not r.allow_redelegation]
        if locked:
            raise ApprovalValidationError(
                f"{to_user_name or to_user_id} is covering for "
                f"{locked[0].from_user_name or locked[0].from_user_id} under a "
                f"delegation that does not allow re-delegation",
                field="to_user_id",
            )
        logger.warning(
            "delegate_is_away",
            extra={
                "to_user_id": str(to_user_id),
                "their_delegate_id": str(outgoing[0].to_user_id),
            },
        )
