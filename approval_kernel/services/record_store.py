"""
approval_kernel.services.record_store -- SQLAlchemy-backed approval record store.

Responsibility:
    Reads and writes chains, tier entries and owners on behalf of the
    Decision Processor and Submission Service.  Implements the
    compare-and-swap primitive every tier transition goes through.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    CS-1 -- Tier entries are only written by ``conditional_update_entry``:
            ``UPDATE ... WHERE chain_id = :c AND tier = :t AND status =
            :expected`` on a non-superseded chain.  Success iff exactly one
            row matched.
    CS-2 -- Reads use ``populate_existing`` so a session never serves a
            tier status older than its last CAS.
    CS-3 -- The store never commits; callers own the transaction.

Failure modes:
    - ValueError on patch keys that are not tier/owner columns.
    - IntegrityError on duplicate chain revision or tier.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApprovalChain,
    OwnerRef,
    OwnerSnapshot,
    OwnerStatus,
    TierStatus,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval_chain import (
    ApprovalChainModel,
    ApprovalTierEntryModel,
)
from approval_kernel.models.owners import OWNER_MODELS

logger = get_logger("services.record_store")

_ENTRY_PATCH_FIELDS = frozenset({
    "status",
    "approver_id",
    "approver_name",
    "decision_at",
    "decided_by_id",
    "comments",
    "escalated_at",
    "delegated_from_id",
})

_OWNER_PATCH_FIELDS = frozenset({
    "status",
    "total",
    "approved_by",
    "approved_date",
})


def _column_values(patch: Mapping[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    unknown = set(patch) - allowed
    if unknown:
        raise ValueError(f"Unsupported patch fields: {sorted(unknown)}")
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in patch.items()
    }


class SqlAlchemyRecordStore:
    """ApprovalRecordStore over a SQLAlchemy ``Session``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    def get_owner(self, ref: OwnerRef) -> OwnerSnapshot | None:
        model = OWNER_MODELS[ref.approval_type]
        row = self._session.get(model, ref.owner_id, populate_existing=True)
        return row.to_snapshot() if row is not None else None

    def update_owner(
        self,
        ref: OwnerRef,
        patch: Mapping[str, Any],
        expected_status: OwnerStatus | None = None,
    ) -> bool:
        """Patch an owner row, optionally guarded by its current status."""
        model = OWNER_MODELS[ref.approval_type]
        stmt = (
            update(model)
            .where(model.id == ref.owner_id)
            .values(**_column_values(patch, _OWNER_PATCH_FIELDS))
            .execution_options(synchronize_session=False)
        )
        if expected_status is not None:
            stmt = stmt.where(model.status == expected_status.value)
        result = self._session.execute(stmt)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def get_chain(self, ref: OwnerRef) -> ApprovalChain | None:
        """Current (non-superseded) chain for ``ref``, or None."""
        stmt = (
            select(ApprovalChainModel)
            .where(
                ApprovalChainModel.owner_type == ref.approval_type.value,
                ApprovalChainModel.owner_id == ref.owner_id,
                ApprovalChainModel.superseded_at.is_(None),
            )
            .order_by(ApprovalChainModel.revision.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = self._session.execute(stmt).scalars().first()
        return row.to_dto() if row is not None else None

    def list_chains(self, ref: OwnerRef) -> list[ApprovalChain]:
        """Every revision for ``ref``, oldest first."""
        stmt = (
            select(ApprovalChainModel)
            .where(
                ApprovalChainModel.owner_type == ref.approval_type.value,
                ApprovalChainModel.owner_id == ref.owner_id,
            )
            .order_by(ApprovalChainModel.revision)
            .execution_options(populate_existing=True)
        )
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def insert_chain(self, chain: ApprovalChain) -> ApprovalChain:
        model = ApprovalChainModel.from_dto(chain)
        self._session.add(model)
        self._session.flush()
        logger.debug(
            "approval_chain_inserted",
            extra={
                "chain_id": str(model.id),
                "owner": str(chain.owner),
                "revision": chain.revision,
                "tiers": list(chain.tiers),
            },
        )
        return model.to_dto()

    def supersede_chain(self, chain_id: UUID, at: datetime) -> bool:
        stmt = (
            update(ApprovalChainModel)
            .where(
                ApprovalChainModel.id == chain_id,
                ApprovalChainModel.superseded_at.is_(None),
            )
            .values(superseded_at=at)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    # ------------------------------------------------------------------
    # Tier entries (CS-1)
    # ------------------------------------------------------------------

    def conditional_update_entry(
        self,
        chain_id: UUID,
        tier: int,
        expected_status: TierStatus,
        patch: Mapping[str, Any],
    ) -> bool:
        """Compare-and-swap one tier entry.

        Returns False if the entry's status is no longer ``expected_status``
        or the chain has been superseded; nothing is written in that case.
        """
        live_chain = (
            select(ApprovalChainModel.id)
            .where(
                ApprovalChainModel.id == chain_id,
                ApprovalChainModel.superseded_at.is_(None),
            )
            .scalar_subquery()
        )
        stmt = (
            update(ApprovalTierEntryModel)
            .where(
                ApprovalTierEntryModel.chain_id == live_chain,
                ApprovalTierEntryModel.tier == tier,
                ApprovalTierEntryModel.status == expected_status.value,
            )
            .values(**_column_values(patch, _ENTRY_PATCH_FIELDS))
            .execution_options(synchronize_session=False)
        )
        matched = self._session.execute(stmt).rowcount == 1
        if not matched:
            logger.info(
                "tier_entry_cas_missed",
                extra={
                    "chain_id": str(chain_id),
                    "tier": tier,
                    "expected_status": expected_status.value,
                },
            )
        return matched
