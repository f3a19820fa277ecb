"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval callers must react differently to different failures. A missing
rejection reason means "re-prompt the user"; a lost compare-and-swap means
"reload and retry"; an unauthorized actor means "hide the button". Parsing
message strings to tell these apart is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        processor.reject(owner, actor_id, actor_name, reason)
    except Exception as e:
        if "not pending" in str(e):  # FRAGILE - message might change
            reload()

Example - RIGHT way (what this module enables):
    result = processor.reject(owner, actor_id, actor_name, reason)
    if result.error_code == PreconditionFailedError.code:
        reload_and_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalKernelError:

    ApprovalKernelError (base)
    |
    +-- ApprovalValidationError
    |   +-- MissingReasonError
    |   +-- InvalidTargetUserError
    |   +-- InvalidAmountError
    |   +-- IncompleteTierMetadataError
    |   +-- InvalidTierLevelError
    |
    +-- PreconditionFailedError
    |   +-- TierNotPendingError
    |   +-- ConcurrentDecisionError
    |   +-- OwnerNotActionableError
    |
    +-- UnauthorizedApproverError
    |
    +-- ApprovalNotFoundError
    |   +-- OwnerNotFoundError
    |   +-- ChainNotFoundError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_FAILED           | Generic input validation failure
                | MISSING_REASON              | reject/return/escalate without a reason
                | INVALID_TARGET_USER         | delegate/reassign target not a candidate
                | INVALID_AMOUNT              | Negative amount at chain build
                | INCOMPLETE_TIER_METADATA    | Required tier has no name/role
                | INVALID_TIER_LEVEL          | Tier outside 1..5 or bad return target
----------------|-----------------------------|-----------------------------------------
Precondition    | PRECONDITION_FAILED         | Generic precondition failure
                | TIER_NOT_PENDING            | Acting on a waiting/terminal tier
                | CONCURRENT_DECISION         | Lost the compare-and-swap race
                | OWNER_NOT_ACTIONABLE        | Owner terminal, cancelled or superseded
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED_APPROVER       | Actor may not act on the active tier
----------------|-----------------------------|-----------------------------------------
Not found       | NOT_FOUND                   | Generic lookup miss
                | OWNER_NOT_FOUND             | Owner row does not exist
                | CHAIN_NOT_FOUND             | Owner has no current chain
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only decision record
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Invalid approval configuration

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY SEPARATE PRECONDITION FROM VALIDATION?
   A PreconditionFailedError is retryable after reloading state; a
   ApprovalValidationError needs different input from the user.  The
   Decision Processor surfaces them with distinct codes.

3. WHY code CLASS ATTRIBUTE (not instance)?
   Codes are static per exception type, usable without instantiation.
===============================================================================
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation-related exceptions


class ApprovalValidationError(ApprovalKernelError):
    """Input rejected before any state change."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class MissingReasonError(ApprovalValidationError):
    """A decision that requires a reason was submitted without one."""

    code: str = "MISSING_REASON"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A non-empty reason is required to {action}", field="reason")


class InvalidTargetUserError(ApprovalValidationError):
    """Delegate/reassign target is not among the offered candidates."""

    code: str = "INVALID_TARGET_USER"

    def __init__(self, target_user_id: str, reason: str = "not in candidate list"):
        self.target_user_id = target_user_id
        self.reason = reason
        super().__init__(
            f"Invalid target user {target_user_id}: {reason}",
            field="target_user_id",
        )


class InvalidAmountError(ApprovalValidationError):
    """Monetary amount is negative or otherwise unusable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str):
        self.amount = amount
        super().__init__(f"Invalid approval amount: {amount}", field="amount")


class IncompleteTierMetadataError(ApprovalValidationError):
    """A required tier has no metadata, or metadata lacks name/role."""

    code: str = "INCOMPLETE_TIER_METADATA"

    def __init__(self, tier: int, missing: str):
        self.tier = tier
        self.missing = missing
        super().__init__(
            f"Tier {tier} metadata incomplete: missing {missing}",
            field="tier_metadata",
        )


class InvalidTierLevelError(ApprovalValidationError):
    """Tier number outside the allowed range or not a legal target."""

    code: str = "INVALID_TIER_LEVEL"

    def __init__(self, tier: int, reason: str):
        self.tier = tier
        self.reason = reason
        super().__init__(f"Invalid tier {tier}: {reason}", field="tier")


# Precondition-related exceptions


class PreconditionFailedError(ApprovalKernelError):
    """
    State no longer matches what the operation expected.

    Retryable: the caller should reload and try again rather than
    re-prompt the user.
    """

    code: str = "PRECONDITION_FAILED"

    def __init__(self, message: str, owner_id: str | None = None):
        self.owner_id = owner_id
        super().__init__(message)


class TierNotPendingError(PreconditionFailedError):
    """The targeted tier entry is not currently pending."""

    code: str = "TIER_NOT_PENDING"

    def __init__(self, owner_id: str, tier: int | None, status: str | None):
        self.tier = tier
        self.status = status
        if tier is None:
            message = f"No pending tier on chain for owner {owner_id}"
        else:
            message = f"Tier {tier} for owner {owner_id} is {status}, not pending"
        super().__init__(message, owner_id=owner_id)


class ConcurrentDecisionError(PreconditionFailedError):
    """Compare-and-swap on the tier entry failed: another writer won."""

    code: str = "CONCURRENT_DECISION"

    def __init__(self, owner_id: str, tier: int):
        self.tier = tier
        super().__init__(
            f"Tier {tier} for owner {owner_id} was modified by another decision",
            owner_id=owner_id,
        )


class OwnerNotActionableError(PreconditionFailedError):
    """Owner is terminal, cancelled, or in a state that forbids the operation."""

    code: str = "OWNER_NOT_ACTIONABLE"

    def __init__(self, owner_id: str, status: str, operation: str):
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} owner {owner_id} in status '{status}'",
            owner_id=owner_id,
        )


# Authorization-related exceptions


class UnauthorizedApproverError(ApprovalKernelError):
    """Actor is not permitted to act on the active tier (or on the owner)."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, actor_id: str, tier: int | None, approver_role: str):
        self.actor_id = actor_id
        self.tier = tier
        self.approver_role = approver_role
        if tier is None:
            message = f"Actor {actor_id} is not the {approver_role}"
        else:
            message = f"Actor {actor_id} is not authorized for tier {tier} ({approver_role})"
        super().__init__(message)


# Lookup-related exceptions


class ApprovalNotFoundError(ApprovalKernelError):
    """Requested approval record does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, message: str, owner_id: str | None = None):
        self.owner_id = owner_id
        super().__init__(message)


class OwnerNotFoundError(ApprovalNotFoundError):
    """Owning request/order does not exist."""

    code: str = "OWNER_NOT_FOUND"

    def __init__(self, approval_type: str, owner_id: str):
        self.approval_type = approval_type
        super().__init__(f"{approval_type} not found: {owner_id}", owner_id=owner_id)


class ChainNotFoundError(ApprovalNotFoundError):
    """Owner has no current (non-superseded) approval chain."""

    code: str = "CHAIN_NOT_FOUND"

    def __init__(self, approval_type: str, owner_id: str):
        self.approval_type = approval_type
        super().__init__(
            f"No current approval chain for {approval_type} {owner_id}",
            owner_id=owner_id,
        )


# Immutability-related exceptions


class ImmutabilityViolationError(ApprovalKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration-related exceptions


class ConfigurationError(ApprovalKernelError):
    """Approval configuration failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)
