"""
approval_kernel.services.decision_log -- Append-only decision history.

Responsibility:
    Persists one ``approval_decisions`` row per ``DecisionEvent`` and reads
    the history back for an owner or an actor.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    DL-1 -- Rows are never updated or deleted (ORM listeners on the model).
    DL-3 -- A failed write is rolled back to its own SAVEPOINT, so it never
            takes the caller's decision down with it.
    DL-4 -- Each row gets the next per-owner ``sequence``; history is read
            in sequence order, never by timestamp.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import DecisionEvent, OwnerRef
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval_decision import ApprovalDecisionModel

logger = get_logger("services.decision_log")


class DecisionLog:
    """DecisionEventSink that writes the audit trail."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def emit(self, event: DecisionEvent) -> None:
        with self._session.begin_nested():
            model = ApprovalDecisionModel.from_event(
                event, sequence=self._next_sequence(event.owner),
            )
            self._session.add(model)
        logger.info(
            "approval_decision_logged",
            extra={
                "decision_id": str(model.id),
                "sequence": model.sequence,
                "owner": str(event.owner),
                "tier": event.tier,
                "action": event.action.value,
                "actor_id": str(event.actor_id),
            },
        )

    def history(self, ref: OwnerRef) -> list[DecisionEvent]:
        """Every decision recorded for ``ref``, oldest first."""
        stmt = (
            select(ApprovalDecisionModel)
            .where(
                ApprovalDecisionModel.owner_type == ref.approval_type.value,
                ApprovalDecisionModel.owner_id == ref.owner_id,
            )
            .order_by(ApprovalDecisionModel.sequence)
        )
        return [row.to_event() for row in self._session.execute(stmt).scalars()]

    def by_actor(self, actor_id: UUID, limit: int = 100) -> list[DecisionEvent]:
        """Most recent decisions taken by ``actor_id``, across all owners."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        stmt = (
            select(ApprovalDecisionModel)
            .where(ApprovalDecisionModel.actor_id == actor_id)
            .order_by(ApprovalDecisionModel.decided_at.desc())
            .limit(limit)
        )
        return [row.to_event() for row in self._session.execute(stmt).scalars()]

    def _next_sequence(self, ref: OwnerRef) -> int:
        stmt = select(func.max(ApprovalDecisionModel.sequence)).where(
            ApprovalDecisionModel.owner_type == ref.approval_type.value,
            ApprovalDecisionModel.owner_id == ref.owner_id,
        )
        return (self._session.execute(stmt).scalar() or 0) + 1
