"""
Module: approval_kernel.models.approval_decision
Responsibility: Append-only persistence for approval decisions (the audit log).

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions.

Invariants enforced:
    DL-1 -- Decisions are immutable once created: ORM listeners reject
            UPDATE and DELETE.
    DL-2 -- Each row records the owner, tier, action, actor and timestamp
            of exactly one successful decision.
    DL-4 -- ``sequence`` numbers an owner's decisions 1, 2, 3... in the order
            they were logged (unique per owner).  History is read in that
            order; timestamps can tie within one clock tick.

Failure modes:
    - ImmutabilityViolationError on decision UPDATE/DELETE.

Audit relevance:
    This table is the decision history shown to approvers and auditors.
    Nothing in the kernel ever rewrites it.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import (
    ApprovalType,
    DecisionAction,
    DecisionEvent,
    OwnerRef,
    OwnerStatus,
)
from approval_kernel.exceptions import ImmutabilityViolationError


class ApprovalDecisionModel(Base):
    """Persistent approval decision record. Append-only."""

    __tablename__ = "approval_decisions"

    __table_args__ = (
        UniqueConstraint(
            "owner_type", "owner_id", "sequence",
            name="uq_approval_decisions_owner_sequence",
        ),
        Index("ix_approval_decisions_actor", "actor_id", "decided_at"),
    )

    owner_type: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    chain_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    tier: Mapped[int | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    on_behalf_of_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    owner_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalDecision {self.id} {self.owner_type}:{self.owner_id} "
            f"tier={self.tier} action={self.action}>"
        )

    def to_event(self) -> DecisionEvent:
        """Convert ORM model back to the decision event it recorded."""
        return DecisionEvent(
            owner=OwnerRef(ApprovalType(self.owner_type), self.owner_id),
            action=DecisionAction(self.action),
            actor_id=self.actor_id,
            timestamp=self.decided_at,
            tier=self.tier,
            chain_id=self.chain_id,
            actor_name=self.actor_name,
            comments=self.comments,
            target_user_id=self.target_user_id,
            on_behalf_of_id=self.on_behalf_of_id,
            owner_status=OwnerStatus(self.owner_status) if self.owner_status else None,
        )

    @classmethod
    def from_event(cls, event_: DecisionEvent, sequence: int = 1) -> ApprovalDecisionModel:
        return cls(
            sequence=sequence,
            owner_type=event_.owner.approval_type.value,
            owner_id=event_.owner.owner_id,
            chain_id=event_.chain_id,
            tier=event_.tier,
            action=event_.action.value,
            actor_id=event_.actor_id,
            actor_name=event_.actor_name,
            comments=event_.comments,
            target_user_id=event_.target_user_id,
            on_behalf_of_id=event_.on_behalf_of_id,
            owner_status=event_.owner_status.value if event_.owner_status else None,
            decided_at=event_.timestamp,
        )


# =============================================================================
# ORM-Level Immutability for Decisions (Append-Only)
# =============================================================================


@event.listens_for(ApprovalDecisionModel, "before_update")
def prevent_decision_update(mapper, connection, target):
    """Prevent updates to approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.id),
        reason="Approval decisions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalDecisionModel, "before_delete")
def prevent_decision_delete(mapper, connection, target):
    """Prevent deletion of approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.id),
        reason="Approval decisions are immutable -- cannot delete",
    )
