"""
Approval engines -- pure calculation layer.

No engine performs I/O, reads the clock or touches the database.  Every
function takes its inputs explicitly and returns frozen values.
"""

from approval_engines.chain_builder import (
    ChainBuildResult,
    build_chain,
    rebuild_from_tier,
)
from approval_engines.lifecycle import is_decidable, map_owner_status, owner_patch
from approval_engines.thresholds import (
    DEFAULT_THRESHOLDS,
    TIER_2_CEILING,
    TIER_3_CEILING,
    ThresholdTable,
    required_tiers,
)
from approval_engines.tier_progression import EntryPatch, Transition

__all__ = [
    "ChainBuildResult",
    "DEFAULT_THRESHOLDS",
    "EntryPatch",
    "TIER_2_CEILING",
    "TIER_3_CEILING",
    "ThresholdTable",
    "Transition",
    "build_chain",
    "is_decidable",
    "map_owner_status",
    "owner_patch",
    "rebuild_from_tier",
    "required_tiers",
]
