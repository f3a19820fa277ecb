"""
approval_engines.thresholds -- Threshold Resolver.

Responsibility:
    Map a monetary amount to the ordered set of approval tiers it requires.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and exceptions.

Invariants enforced:
    - TH-1 (strict ordering): ceilings increase strictly with tier number,
      e.g. ``TIER_2 = 5000 < TIER_3 = 20000``.
    - TH-2 (monotonic): for ``a <= b``, ``required_tiers(a)`` is a subset of
      ``required_tiers(b)``.
    - TH-3 (boundary): a tier is required only when the amount is strictly
      greater than its ceiling.  An amount equal to ``TIER_2`` needs nothing.
    - Purity: same input, same output.  No clock, no I/O.

Failure modes:
    - InvalidAmountError for negative or non-numeric amounts.
    - ValueError when a ThresholdTable is constructed out of order.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Mapping

from approval_kernel.domain.approval import is_valid_tier_level
from approval_kernel.exceptions import InvalidAmountError, InvalidTierLevelError

TIER_2_CEILING = Decimal("5000")
TIER_3_CEILING = Decimal("20000")


@dataclass(frozen=True)
class ThresholdTable:
    """Ceiling per threshold-driven tier, ordered by tier (TH-1)."""

    ceilings: tuple[tuple[int, Decimal], ...]

    def __post_init__(self) -> None:
        previous: tuple[int, Decimal] | None = None
        for tier, ceiling in self.ceilings:
            if not is_valid_tier_level(tier):
                raise ValueError(f"Threshold tier out of range: {tier}")
            if ceiling < 0:
                raise ValueError(f"Threshold ceiling for tier {tier} is negative")
            if previous is not None and (
                tier <= previous[0] or ceiling <= previous[1]
            ):
                raise ValueError(
                    f"Thresholds must increase strictly: tier {previous[0]} "
                    f"({previous[1]}) then tier {tier} ({ceiling})"
                )
            previous = (tier, ceiling)

    @classmethod
    def from_mapping(cls, mapping: Mapping[int, Decimal | int | str]) -> ThresholdTable:
        return cls(tuple(
            (int(tier), Decimal(str(ceiling)))
            for tier, ceiling in sorted(mapping.items())
        ))

    @property
    def tiers(self) -> tuple[int, ...]:
        return tuple(tier for tier, _ in self.ceilings)

    def ceiling_for(self, tier: int) -> Decimal | None:
        for t, ceiling in self.ceilings:
            if t == tier:
                return ceiling
        return None


DEFAULT_THRESHOLDS = ThresholdTable((
    (2, TIER_2_CEILING),
    (3, TIER_3_CEILING),
))


def normalize_amount(amount: Decimal | int | str | float | None) -> Decimal | None:
    """Coerce ``amount`` to Decimal, rejecting negatives and NaN."""
    if amount is None:
        return None
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(str(amount)) from None
    if not value.is_finite() or value < 0:
        raise InvalidAmountError(str(amount))
    return value


def required_tiers(
    amount: Decimal | int | str | float | None,
    thresholds: ThresholdTable = DEFAULT_THRESHOLDS,
    base_tiers: Iterable[int] = (),
) -> tuple[int, ...]:
    """Ordered tiers required for ``amount``.

    Args:
        amount: Request total.  ``None`` means a non-financial owner, which
            only gets its ``base_tiers``.
        thresholds: Ceiling table; defaults to 5000 / 20000.
        base_tiers: Tiers every owner of this kind needs regardless of
            amount (e.g. tier 1 for purchase requests).

    Returns:
        Sorted tuple of distinct tier levels, possibly empty.
    """
    tiers: set[int] = set()
    for tier in base_tiers:
        if not is_valid_tier_level(tier):
            raise InvalidTierLevelError(tier, "base tier out of range")
        tiers.add(tier)

    value = normalize_amount(amount)
    if value is not None:
        tiers.update(
            tier for tier, ceiling in thresholds.ceilings if value > ceiling
        )
    return tuple(sorted(tiers))
