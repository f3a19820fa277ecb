"""
approval_kernel.services.authority -- Who may act on a tier.

Responsibility:
    Answers ``can_act(actor, entry, owner)`` for the Decision Processor.
    An actor may act when they are the assigned approver, when they hold an
    active delegation from the assigned approver, or (for unassigned tiers)
    when they hold the tier's approver role.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    AU-1 -- An assigned tier is actionable only by its approver or by an
            active delegate of that approver.  Role membership alone is not
            enough once a tier has been assigned, delegated or escalated.
    AU-2 -- Delegation windows are evaluated against the injected clock.
    AU-3 -- When the action signs off on an amount, the tier's configured
            band applies to everyone acting on the tier until it is
            escalated.  A proxy is further held to its delegation rule's
            ``max_amount``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApprovalLimit,
    OrgHierarchyProvider,
    OwnerRef,
    TierEntry,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_kernel.models.delegation import DelegationRuleModel

logger = get_logger("services.authority")


class DelegationLookup(Protocol):
    def has_active_delegation(
        self,
        from_user_id: UUID,
        to_user_id: UUID,
        owner: OwnerRef,
        amount: Decimal | None = None,
    ) -> bool:
        ...


class SqlAlchemyDelegationLookup:
    """Reads ``delegation_rules`` for proxy approval."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def has_active_delegation(
        self,
        from_user_id: UUID,
        to_user_id: UUID,
        owner: OwnerRef,
        amount: Decimal | None = None,
    ) -> bool:
        stmt = select(DelegationRuleModel).where(
            DelegationRuleModel.from_user_id == from_user_id,
            DelegationRuleModel.to_user_id == to_user_id,
            DelegationRuleModel.is_active.is_(True),
        )
        now = self._clock.now()
        return any(
            rule.covers(now, owner.approval_type.value, amount)
            for rule in self._session.execute(stmt).scalars()
        )


class StaticOrgHierarchy:
    """In-memory OrgHierarchyProvider for fixtures and small deployments."""

    def __init__(
        self,
        roles: dict[UUID, tuple[str, ...]] | None = None,
        managers: dict[UUID, UUID] | None = None,
        names: dict[UUID, str] | None = None,
    ) -> None:
        self._roles = dict(roles or {})
        self._managers = dict(managers or {})
        self._names = dict(names or {})

    def get_display_name(self, actor_id: UUID) -> str | None:
        return self._names.get(actor_id)

    def get_actor_roles(self, actor_id: UUID) -> tuple[str, ...]:
        return self._roles.get(actor_id, ())

    def get_approval_chain(self, actor_id: UUID) -> tuple[UUID, ...]:
        chain: list[UUID] = []
        current = self._managers.get(actor_id)
        while current is not None and current not in chain and current != actor_id:
            chain.append(current)
            current = self._managers.get(current)
        return tuple(chain)

    def has_role(self, actor_id: UUID, role: str) -> bool:
        return role in self._roles.get(actor_id, ())


class RoleBasedAuthority:
    """Default ApprovalAuthority (AU-1, AU-3)."""

    def __init__(
        self,
        org: OrgHierarchyProvider,
        delegations: DelegationLookup | None = None,
        limits: Mapping[int, ApprovalLimit] | None = None,
    ) -> None:
        self._org = org
        self._delegations = delegations
        self._limits = dict(limits or {})

    def can_act(
        self,
        actor_id: UUID,
        entry: TierEntry,
        owner: OwnerRef,
        amount: Decimal | None = None,
    ) -> bool:
        # An escalated tier is held by a higher authority; the band no longer binds.
        limit = None if entry.escalated_at is not None else self._limits.get(entry.tier)
        if limit is not None and not limit.allows(amount):
            logger.info(
                "approval_limit_exceeded",
                extra={
                    "tier": entry.tier,
                    "amount": amount,
                    "min_amount": limit.min_amount,
                    "max_amount": limit.max_amount,
                },
            )
            return False
        if entry.approver_id is None:
            return self._org.has_role(actor_id, entry.approver_role)
        if actor_id == entry.approver_id:
            return True
        return self.acting_on_behalf_of(actor_id, entry, owner, amount) is not None

    def acting_on_behalf_of(
        self,
        actor_id: UUID,
        entry: TierEntry,
        owner: OwnerRef,
        amount: Decimal | None = None,
    ) -> UUID | None:
        if (
            self._delegations is None
            or entry.approver_id is None
            or actor_id == entry.approver_id
        ):
            return None
        if self._delegations.has_active_delegation(
            entry.approver_id, actor_id, owner, amount,
        ):
            logger.debug(
                "proxy_authority_granted",
                extra={
                    "actor_id": str(actor_id),
                    "on_behalf_of_id": str(entry.approver_id),
                    "tier": entry.tier,
                },
            )
            return entry.approver_id
        return None
