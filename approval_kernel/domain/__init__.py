"""
Pure domain layer.

This module contains immutable value objects and protocols with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (beyond the injectable Clock itself)
- I/O
"""

from approval_kernel.domain.aggregation import (
    AggregatedApproval,
    AggregatedStatus,
    AggregationFilter,
    ApprovalCategory,
    ApprovalCounts,
    SourceAdapter,
    SourceKind,
    matches_filter,
)
from approval_kernel.domain.approval import (
    DEFAULT_APPROVED_STATUS,
    MAX_TIER_LEVEL,
    MIN_TIER_LEVEL,
    TERMINAL_OWNER_STATUSES,
    TIER_TRANSITIONS,
    ApprovalAuthority,
    ApprovalLimit,
    ApprovalChain,
    ApprovalRecordStore,
    ApprovalType,
    ApproverCandidate,
    DecisionAction,
    DecisionEvent,
    DecisionEventSink,
    OrgHierarchyProvider,
    OwnerRef,
    OwnerSnapshot,
    OwnerStatus,
    TierEntry,
    TierMetadata,
    TierStatus,
    is_valid_tier_transition,
    pending_tier_status,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.results import DecisionResult, FailureKind

__all__ = [
    # Approval
    "ApprovalAuthority",
    "ApprovalChain",
    "ApprovalRecordStore",
    "ApprovalType",
    "ApproverCandidate",
    "DEFAULT_APPROVED_STATUS",
    "DecisionAction",
    "DecisionEvent",
    "DecisionEventSink",
    "ApprovalLimit",
    "MAX_TIER_LEVEL",
    "MIN_TIER_LEVEL",
    "OrgHierarchyProvider",
    "OwnerRef",
    "OwnerSnapshot",
    "OwnerStatus",
    "TERMINAL_OWNER_STATUSES",
    "TIER_TRANSITIONS",
    "TierEntry",
    "TierMetadata",
    "TierStatus",
    "is_valid_tier_transition",
    "pending_tier_status",
    # Results
    "DecisionResult",
    "FailureKind",
    # Aggregation
    "AggregatedApproval",
    "AggregatedStatus",
    "AggregationFilter",
    "ApprovalCategory",
    "ApprovalCounts",
    "SourceAdapter",
    "SourceKind",
    "matches_filter",
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
