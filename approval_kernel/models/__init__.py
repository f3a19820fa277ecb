"""ORM models for the approval kernel."""

from approval_kernel.models.approval_chain import (
    ApprovalChainModel,
    ApprovalTierEntryModel,
)
from approval_kernel.models.approval_decision import ApprovalDecisionModel
from approval_kernel.models.delegation import DelegationRuleModel
from approval_kernel.models.owners import (
    OWNER_MODELS,
    ChainOwnerMixin,
    PurchaseOrderModel,
    PurchaseRequestModel,
    RequisitionModel,
    ShiftSwapModel,
    ShiftSwapStatus,
    TimeOffRequestModel,
    TimeOffStatus,
    WorkflowInstanceModel,
)

__all__ = [
    "ApprovalChainModel",
    "ApprovalTierEntryModel",
    "ApprovalDecisionModel",
    "ChainOwnerMixin",
    "DelegationRuleModel",
    "OWNER_MODELS",
    "PurchaseOrderModel",
    "PurchaseRequestModel",
    "RequisitionModel",
    "ShiftSwapModel",
    "ShiftSwapStatus",
    "TimeOffRequestModel",
    "TimeOffStatus",
    "WorkflowInstanceModel",
]
