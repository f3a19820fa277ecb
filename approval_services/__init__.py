"""
Approval services: orchestration over the kernel, engines and configuration.

- DecisionProcessor: approve / reject / return / escalate / delegate / reassign
- SubmissionService: submit / resubmit / cancel
- DelegationService: create / revoke proxy delegation rules
- AggregationService: unified approvals feed and dashboard counts
"""

from approval_services.aggregation_adapters import (
    AdapterRegistry,
    ChainOwnerAdapter,
    ShiftSwapAdapter,
    TimeOffAdapter,
    default_registry,
    normalize_owner_status,
)
from approval_services.aggregation_service import AggregationService
from approval_services.decision_processor import DecisionProcessor, publish
from approval_services.delegation_service import DelegationService
from approval_services.submission_service import SubmissionService

__all__ = [
    "AdapterRegistry",
    "AggregationService",
    "ChainOwnerAdapter",
    "DecisionProcessor",
    "DelegationService",
    "ShiftSwapAdapter",
    "SubmissionService",
    "TimeOffAdapter",
    "default_registry",
    "normalize_owner_status",
    "publish",
]
