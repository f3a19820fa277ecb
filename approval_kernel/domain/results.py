"""
Typed decision results (``approval_kernel.domain.results``).

The Decision Processor never lets kernel errors escape; every call returns
a ``DecisionResult`` that is either successful or carries the machine
readable ``error_code`` of the exception that refused it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from approval_kernel.domain.approval import (
    ApprovalChain,
    DecisionAction,
    OwnerRef,
    OwnerStatus,
    TierEntry,
)
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ApprovalNotFoundError,
    ApprovalValidationError,
    PreconditionFailedError,
    UnauthorizedApproverError,
)


class FailureKind(str, Enum):
    """Coarse error taxonomy surfaced to callers."""

    VALIDATION = "validation"
    PRECONDITION = "precondition"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"


def classify_error(error: ApprovalKernelError) -> FailureKind | None:
    """Map an exception onto the caller-facing taxonomy."""
    if isinstance(error, ApprovalValidationError):
        return FailureKind.VALIDATION
    if isinstance(error, PreconditionFailedError):
        return FailureKind.PRECONDITION
    if isinstance(error, UnauthorizedApproverError):
        return FailureKind.AUTHORIZATION
    if isinstance(error, ApprovalNotFoundError):
        return FailureKind.NOT_FOUND
    return None


@dataclass(frozen=True)
class DecisionResult:
    """Outcome of one Decision Processor call."""

    success: bool
    action: DecisionAction
    owner: OwnerRef
    owner_status: OwnerStatus | None = None
    chain: ApprovalChain | None = None
    entry: TierEntry | None = None
    error_code: str | None = None
    failure_kind: FailureKind | None = None
    message: str | None = None
    error: ApprovalKernelError | None = None

    @classmethod
    def ok(
        cls,
        action: DecisionAction,
        owner: OwnerRef,
        owner_status: OwnerStatus,
        chain: ApprovalChain | None,
        entry: TierEntry | None = None,
    ) -> DecisionResult:
        return cls(
            success=True,
            action=action,
            owner=owner,
            owner_status=owner_status,
            chain=chain,
            entry=entry,
        )

    @classmethod
    def failed(
        cls,
        action: DecisionAction,
        owner: OwnerRef,
        error: ApprovalKernelError,
    ) -> DecisionResult:
        return cls(
            success=False,
            action=action,
            owner=owner,
            error_code=error.code,
            failure_kind=classify_error(error),
            message=str(error),
            error=error,
        )

    @property
    def is_conflict(self) -> bool:
        """True when a reload-and-retry is the right response."""
        return self.failure_kind == FailureKind.PRECONDITION
