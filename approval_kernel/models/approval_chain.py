"""
Module: approval_kernel.models.approval_chain
Responsibility: ORM persistence for approval chains and their tier entries.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (DTO conversion only).

Invariants enforced:
    TL-1 -- DB check constraint limits tier status values.
    TL-2 -- DB check constraint limits tier levels to 1..5.
    CH-1 -- One row per (owner_type, owner_id, revision); resubmission and
            cascade-return insert a new revision instead of rewriting rows.
    CH-2 -- One entry per (chain_id, tier): no duplicate tiers in a chain.

Failure modes:
    - IntegrityError on duplicate revision (CH-1) or duplicate tier (CH-2).
    - IntegrityError on out-of-range tier or unknown status.

Audit relevance:
    Superseded chains are never deleted; ``superseded_at`` marks them as
    history.  Tier entries are only mutated through the compare-and-swap
    update in ``SqlAlchemyRecordStore``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import (
    ApprovalChain,
    ApprovalType,
    OwnerRef,
    TierEntry,
    TierStatus,
)

_TIER_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in TierStatus)
_OWNER_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in ApprovalType)


class ApprovalChainModel(Base):
    """One revision of an owner's approval chain.

    Guarantees:
        - At most one revision per owner has ``superseded_at IS NULL``
          (maintained by the record store, which supersedes before insert).
    """

    __tablename__ = "approval_chains"

    __table_args__ = (
        UniqueConstraint(
            "owner_type", "owner_id", "revision",
            name="uq_approval_chains_owner_revision",
        ),
        CheckConstraint(
            f"owner_type IN ({_OWNER_TYPE_VALUES})",
            name="ck_approval_chains_owner_type",
        ),
        Index(
            "ix_approval_chains_owner_current",
            "owner_type", "owner_id", "superseded_at",
        ),
    )

    owner_type: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    revision: Mapped[int] = mapped_column(nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    entries: Mapped[list["ApprovalTierEntryModel"]] = relationship(
        "ApprovalTierEntryModel",
        back_populates="chain",
        order_by="ApprovalTierEntryModel.tier",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalChain {self.id} {self.owner_type}:{self.owner_id} "
            f"rev={self.revision}>"
        )

    def to_dto(self) -> ApprovalChain:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalChain(
            chain_id=self.id,
            owner=OwnerRef(ApprovalType(self.owner_type), self.owner_id),
            entries=tuple(e.to_dto() for e in self.entries),
            revision=self.revision,
            created_at=self.created_at,
            superseded_at=self.superseded_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalChain) -> ApprovalChainModel:
        """Create ORM model (with entries) from domain DTO."""
        model = cls(
            id=dto.chain_id,
            owner_type=dto.owner.approval_type.value,
            owner_id=dto.owner.owner_id,
            revision=dto.revision,
            created_at=dto.created_at,
            superseded_at=dto.superseded_at,
        )
        model.entries = [ApprovalTierEntryModel.from_dto(e) for e in dto.entries]
        return model


class ApprovalTierEntryModel(Base):
    """One tier of a persisted chain."""

    __tablename__ = "approval_tier_entries"

    __table_args__ = (
        UniqueConstraint("chain_id", "tier", name="uq_approval_tier_entries_tier"),
        CheckConstraint(
            "tier BETWEEN 1 AND 5",
            name="ck_approval_tier_entries_tier_range",
        ),
        CheckConstraint(
            f"status IN ({_TIER_STATUS_VALUES})",
            name="ck_approval_tier_entries_status",
        ),
        # Pending-queue lookups by assigned approver
        Index("ix_approval_tier_entries_approver_status", "approver_id", "status"),
    )

    chain_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_chains.id"),
        nullable=False,
    )
    tier: Mapped[int] = mapped_column(nullable=False)
    tier_name: Mapped[str] = mapped_column(String(100), nullable=False)
    approver_role: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    amount_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    decision_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delegated_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )

    chain: Mapped[ApprovalChainModel] = relationship(
        "ApprovalChainModel", back_populates="entries",
    )

    def __repr__(self) -> str:
        return f"<ApprovalTierEntry chain={self.chain_id} tier={self.tier} {self.status}>"

    def to_dto(self) -> TierEntry:
        return TierEntry(
            tier=self.tier,
            tier_name=self.tier_name,
            approver_role=self.approver_role,
            status=TierStatus(self.status),
            approver_id=self.approver_id,
            approver_name=self.approver_name,
            amount_threshold=self.amount_threshold,
            decision_at=self.decision_at,
            decided_by_id=self.decided_by_id,
            comments=self.comments,
            escalated_at=self.escalated_at,
            delegated_from_id=self.delegated_from_id,
            entry_id=self.id,
        )

    @classmethod
    def from_dto(cls, dto: TierEntry) -> ApprovalTierEntryModel:
        """New row for ``dto``.  ``entry_id`` is ignored; rows get fresh ids."""
        return cls(
            tier=dto.tier,
            tier_name=dto.tier_name,
            approver_role=dto.approver_role,
            status=dto.status.value,
            approver_id=dto.approver_id,
            approver_name=dto.approver_name,
            amount_threshold=dto.amount_threshold,
            decision_at=dto.decision_at,
            decided_by_id=dto.decided_by_id,
            comments=dto.comments,
            escalated_at=dto.escalated_at,
            delegated_from_id=dto.delegated_from_id,
        )
