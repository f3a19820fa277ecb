"""
Approval configuration compiler.

Validates an ApprovalConfigurationSet and produces the frozen runtime
artifact, CompiledApprovalConfig.  Compilation is all-or-nothing: any
structural problem raises ConfigurationError and no artifact is produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from approval_config.schema import ApprovalConfigurationSet
from approval_engines.thresholds import ThresholdTable, required_tiers
from approval_kernel.domain.approval import (
    ApprovalLimit,
    ApprovalType,
    OwnerStatus,
    TierMetadata,
    is_valid_tier_level,
)
from approval_kernel.exceptions import ConfigurationError

_APPROVED_STATUSES = frozenset({OwnerStatus.APPROVED, OwnerStatus.READY_FOR_PO})

_NO_THRESHOLDS = ThresholdTable(())


@dataclass(frozen=True)
class ApprovalTypePolicy:
    """Compiled per-type policy."""

    approval_type: ApprovalType
    base_tiers: tuple[int, ...]
    use_thresholds: bool
    approved_status: OwnerStatus


@dataclass(frozen=True)
class CompiledApprovalConfig:
    """Runtime approval configuration. The only artifact services consume."""

    config_id: str
    version: int
    checksum: str
    thresholds: ThresholdTable
    tier_labels: tuple[TierMetadata, ...]
    policies: tuple[ApprovalTypePolicy, ...]
    approver_limits: tuple[tuple[int, ApprovalLimit], ...] = ()

    def policy_for(self, approval_type: ApprovalType) -> ApprovalTypePolicy:
        for policy in self.policies:
            if policy.approval_type == approval_type:
                return policy
        raise ConfigurationError(f"No approval policy for {approval_type.value}")

    def thresholds_for(self, approval_type: ApprovalType) -> ThresholdTable:
        if self.policy_for(approval_type).use_thresholds:
            return self.thresholds
        return _NO_THRESHOLDS

    def approved_status_for(self, approval_type: ApprovalType) -> OwnerStatus:
        return self.policy_for(approval_type).approved_status

    def tier_metadata(self) -> dict[int, TierMetadata]:
        return {label.tier: label for label in self.tier_labels}

    def limits_by_tier(self) -> dict[int, ApprovalLimit]:
        """Amount bands for the tiers that declare one."""
        return dict(self.approver_limits)

    def required_tiers(
        self, approval_type: ApprovalType, amount: Decimal | None,
    ) -> tuple[int, ...]:
        policy = self.policy_for(approval_type)
        return required_tiers(
            amount, self.thresholds_for(approval_type), policy.base_tiers,
        )


def _compile_thresholds(source: ApprovalConfigurationSet) -> ThresholdTable:
    ceilings = []
    for tier, raw in source.thresholds:
        try:
            ceilings.append((tier, Decimal(raw)))
        except InvalidOperation:
            raise ConfigurationError(
                f"Threshold for tier {tier} is not a number: {raw!r}", "thresholds",
            ) from None
    try:
        return ThresholdTable(tuple(ceilings))
    except ValueError as exc:
        raise ConfigurationError(str(exc), "thresholds") from exc


def _compile_limit(label) -> ApprovalLimit | None:
    if label.min_amount is None and label.max_amount is None:
        return None
    where = "tier_labels"
    bounds = []
    for raw in (label.min_amount, label.max_amount):
        if raw is None:
            bounds.append(None)
            continue
        try:
            bounds.append(Decimal(raw))
        except InvalidOperation:
            raise ConfigurationError(
                f"Approval limit for tier {label.tier} is not a number: {raw!r}", where,
            ) from None
    try:
        return ApprovalLimit(min_amount=bounds[0], max_amount=bounds[1])
    except ValueError as exc:
        raise ConfigurationError(f"Tier {label.tier}: {exc}", where) from exc


def _compile_policy(approval_type: str, definition) -> ApprovalTypePolicy:
    where = f"approval_types.{approval_type}"
    try:
        kind = ApprovalType(approval_type)
    except ValueError:
        raise ConfigurationError(f"Unknown approval type '{approval_type}'", where) from None
    try:
        approved = OwnerStatus(definition.approved_status)
    except ValueError:
        approved = None
    if approved not in _APPROVED_STATUSES:
        raise ConfigurationError(
            f"approved_status for {approval_type} must be one of "
            f"{sorted(s.value for s in _APPROVED_STATUSES)}, "
            f"got '{definition.approved_status}'",
            where,
        )
    for tier in definition.base_tiers:
        if not is_valid_tier_level(tier):
            raise ConfigurationError(f"Base tier {tier} out of range in {where}", where)
    return ApprovalTypePolicy(
        approval_type=kind,
        base_tiers=tuple(sorted(set(definition.base_tiers))),
        use_thresholds=definition.use_thresholds,
        approved_status=approved,
    )


def compile_config(source: ApprovalConfigurationSet) -> CompiledApprovalConfig:
    """Validate and freeze ``source``."""
    thresholds = _compile_thresholds(source)

    labels: dict[int, TierMetadata] = {}
    limits: list[tuple[int, ApprovalLimit]] = []
    for label in source.tier_labels:
        if not is_valid_tier_level(label.tier):
            raise ConfigurationError(f"Tier label {label.tier} out of range", "tier_labels")
        if label.tier in labels:
            raise ConfigurationError(f"Duplicate tier label {label.tier}", "tier_labels")
        if not label.tier_name.strip() or not label.approver_role.strip():
            raise ConfigurationError(
                f"Tier label {label.tier} needs tier_name and approver_role",
                "tier_labels",
            )
        labels[label.tier] = TierMetadata(
            tier=label.tier,
            tier_name=label.tier_name,
            approver_role=label.approver_role,
        )
        limit = _compile_limit(label)
        if limit is not None:
            limits.append((label.tier, limit))

    policies = tuple(
        _compile_policy(d.approval_type, d) for d in source.approval_types
    )
    missing = set(ApprovalType) - {p.approval_type for p in policies}
    if missing:
        raise ConfigurationError(
            f"Missing approval type policies: {sorted(m.value for m in missing)}",
            "approval_types",
        )

    # Every tier a chain could need must have a label
    reachable = set(thresholds.tiers)
    for policy in policies:
        reachable.update(policy.base_tiers)
    unlabeled = reachable - set(labels)
    if unlabeled:
        raise ConfigurationError(
            f"Tiers without labels: {sorted(unlabeled)}", "tier_labels",
        )

    return CompiledApprovalConfig(
        config_id=source.config_id,
        version=source.version,
        checksum=source.checksum,
        thresholds=thresholds,
        tier_labels=tuple(labels[t] for t in sorted(labels)),
        policies=tuple(sorted(policies, key=lambda p: p.approval_type.value)),
        approver_limits=tuple(sorted(limits, key=lambda item: item[0])),
    )
