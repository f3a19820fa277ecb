"""Services for the approval kernel (persistence-facing)."""

from approval_kernel.services.authority import (
    RoleBasedAuthority,
    SqlAlchemyDelegationLookup,
    StaticOrgHierarchy,
)
from approval_kernel.services.decision_log import DecisionLog
from approval_kernel.services.record_store import SqlAlchemyRecordStore

__all__ = [
    "DecisionLog",
    "RoleBasedAuthority",
    "SqlAlchemyDelegationLookup",
    "SqlAlchemyRecordStore",
    "StaticOrgHierarchy",
]
