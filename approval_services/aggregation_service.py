"""
approval_services.aggregation_service -- Unified approvals queue.

Responsibility:
    Reads every registered source adapter, applies the uniform filter
    semantics and returns one list ordered by ``created_at`` descending,
    plus pending counts per dashboard category.

Architecture position:
    Services -- read-only.  Never writes to the record store.

Invariants enforced:
    AS-1 (partial results): one failing adapter is logged and omitted; the
         rest of the feed is still returned.
    AS-2 (no stale counts): adapter reads are memoized only inside a
         ``request_cycle()`` block, and a DecisionEvent clears the memo.
    AS-3: ``counts.total == purchase + time_off + permits``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.aggregation import (
    AggregatedApproval,
    AggregationFilter,
    ApprovalCategory,
    ApprovalCounts,
    SourceAdapter,
    SourceKind,
    matches_filter,
)
from approval_kernel.domain.approval import DecisionEvent
from approval_kernel.logging_config import get_logger
from approval_services.aggregation_adapters import AdapterRegistry, default_registry

logger = get_logger("services.aggregation")


class AggregationService:
    """Read model over all approval sources.  Also a DecisionEventSink."""

    def __init__(
        self,
        session: Session,
        registry: AdapterRegistry | None = None,
    ) -> None:
        self._session = session
        self._registry = registry or default_registry()
        self._memo: dict[SourceKind, list[AggregatedApproval]] | None = None

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    @contextmanager
    def request_cycle(self) -> Iterator[AggregationService]:
        """Memoize adapter reads until the block exits."""
        outer = self._memo
        if outer is None:
            self._memo = {}
        try:
            yield self
        finally:
            if outer is None:
                self._memo = None

    def invalidate(self) -> None:
        if self._memo:
            self._memo.clear()

    def emit(self, event: DecisionEvent) -> None:
        self.invalidate()
        logger.debug(
            "aggregation_invalidated",
            extra={"owner": str(event.owner), "action": event.action.value},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_aggregated_approvals(
        self,
        filter_: AggregationFilter = AggregationFilter.ALL,
        current_user_id: UUID | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AggregatedApproval]:
        if offset < 0 or (limit is not None and limit < 0):
            raise ValueError("limit and offset must be non-negative")
        items = [
            item
            for item in self._collect()
            if matches_filter(item, filter_, current_user_id)
        ]
        items.sort(key=lambda item: item.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return items[offset:end]

    def counts_by_category(self, current_user_id: UUID | None = None) -> ApprovalCounts:
        """Pending items per category."""
        counts = {category: 0 for category in ApprovalCategory}
        for item in self._collect():
            if matches_filter(item, AggregationFilter.PENDING, current_user_id):
                counts[item.category] += 1
        return ApprovalCounts(
            purchase=counts[ApprovalCategory.PURCHASE],
            time_off=counts[ApprovalCategory.TIME_OFF],
            permits=counts[ApprovalCategory.PERMITS],
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _collect(self) -> list[AggregatedApproval]:
        items: list[AggregatedApproval] = []
        for adapter in self._registry:
            items.extend(self._read(adapter))
        return items

    def _read(self, adapter: SourceAdapter) -> list[AggregatedApproval]:
        if self._memo is not None and adapter.source in self._memo:
            return self._memo[adapter.source]

        savepoint = self._session.begin_nested()
        try:
            rows = adapter.fetch(self._session)
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            logger.warning(
                "aggregation_source_failed",
                extra={
                    "source": adapter.source.value,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return []

        if self._memo is not None:
            self._memo[adapter.source] = rows
        return rows
