"""
Module: approval_kernel.models.delegation
Responsibility: Proxy delegation windows.  While a rule is active, the
    delegate may act on tiers assigned to the delegator.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    DG-1 -- A user cannot delegate to themselves (check constraint).
    DG-2 -- ``ends_at`` is either NULL (open-ended) or after ``starts_at``.
    DG-3 -- ``max_amount`` caps the owner total a delegate may decide on;
            NULL means the delegator's own limits apply unchanged.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase, UUIDString


class DelegationRuleModel(TrackedBase):
    """Time-boxed delegation of approval authority."""

    __tablename__ = "delegation_rules"

    __table_args__ = (
        CheckConstraint(
            "from_user_id <> to_user_id",
            name="ck_delegation_rules_not_self",
        ),
        CheckConstraint(
            "ends_at IS NULL OR ends_at > starts_at",
            name="ck_delegation_rules_window",
        ),
        CheckConstraint(
            "max_amount IS NULL OR max_amount >= 0",
            name="ck_delegation_rules_max_amount",
        ),
        Index("ix_delegation_rules_lookup", "to_user_id", "from_user_id", "is_active"),
    )

    from_user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    from_user_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    to_user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    to_user_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    # NULL scope means every approval type
    approval_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    allow_redelegation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<DelegationRule {self.from_user_id} -> {self.to_user_id} "
            f"active={self.is_active}>"
        )

    def covers(
        self,
        at: datetime,
        approval_type: str | None = None,
        amount: Decimal | None = None,
    ) -> bool:
        """True if the rule is in force at ``at`` for ``approval_type`` and ``amount``."""
        if not self.is_active or at < self.starts_at:
            return False
        if self.ends_at is not None and at >= self.ends_at:
            return False
        if self.approval_type is not None and self.approval_type != approval_type:
            return False
        return amount is None or self.max_amount is None or amount <= self.max_amount

    def overlaps(self, starts_at: datetime, ends_at: datetime | None) -> bool:
        """True if this rule's window intersects ``[starts_at, ends_at)``."""
        if ends_at is not None and ends_at <= self.starts_at:
            return False
        return self.ends_at is None or starts_at < self.ends_at
