"""
ApprovalConfigurationSet schema.

Defines the human-authored, reviewable source artifact for approval
configuration.  YAML is parsed into these types by the loader and compiled
into a CompiledApprovalConfig by the compiler.

Key distinction:
  ApprovalConfigurationSet = source artifact (human-authored, versioned)
  CompiledApprovalConfig   = runtime artifact (validated, frozen)
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Tier labels
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TierLabelDef:
    """Display name, approver role and optional amount band for one tier."""

    tier: int
    tier_name: str
    approver_role: str
    min_amount: str | None = None
    max_amount: str | None = None


# ---------------------------------------------------------------------------
# Per approval type policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalTypeDef:
    """How one owner kind picks its tiers and what "approved" means for it."""

    approval_type: str
    base_tiers: tuple[int, ...] = ()
    use_thresholds: bool = True
    approved_status: str = "approved"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalConfigurationSet:
    """Root source artifact."""

    config_id: str
    version: int
    thresholds: tuple[tuple[int, str], ...]
    tier_labels: tuple[TierLabelDef, ...]
    approval_types: tuple[ApprovalTypeDef, ...]
    checksum: str = ""
