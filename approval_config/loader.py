"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML approval configuration file and parses it into typed
``approval_config.schema`` dataclass instances.  The single public entry
point for runtime config is ``approval_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  No dependency on services.

Invariants enforced
-------------------
* All parse errors raise ``ConfigurationError`` naming the offending key;
  no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing or mistyped keys  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalConfigurationSet,
    ApprovalTypeDef,
    TierLabelDef,
)
from approval_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigurationError(f"Missing required key '{key}' in {where}", source=where)
    return data[key]


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Expected integer in {where}, got {value!r}", source=where)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Expected integer in {where}, got {value!r}", source=where,
        ) from None


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_tier_label(data: dict[str, Any]) -> TierLabelDef:
    where = "tier_labels"
    return TierLabelDef(
        tier=_as_int(_require(data, "tier", where), where),
        tier_name=str(_require(data, "tier_name", where)),
        approver_role=str(_require(data, "approver_role", where)),
        min_amount=_optional_str(data.get("min_amount")),
        max_amount=_optional_str(data.get("max_amount")),
    )


def parse_approval_type(name: str, data: dict[str, Any] | None) -> ApprovalTypeDef:
    where = f"approval_types.{name}"
    data = data or {}
    return ApprovalTypeDef(
        approval_type=name,
        base_tiers=tuple(_as_int(t, where) for t in data.get("base_tiers") or ()),
        use_thresholds=bool(data.get("use_thresholds", True)),
        approved_status=str(data.get("approved_status", "approved")),
    )


def parse_configuration_set(data: dict[str, Any]) -> ApprovalConfigurationSet:
    """Parse a whole configuration document."""
    thresholds = _require(data, "thresholds", "root")
    if not isinstance(thresholds, dict):
        raise ConfigurationError("'thresholds' must be a mapping of tier -> ceiling", "thresholds")
    approval_types = _require(data, "approval_types", "root")
    if not isinstance(approval_types, dict):
        raise ConfigurationError("'approval_types' must be a mapping", "approval_types")

    return ApprovalConfigurationSet(
        config_id=str(_require(data, "config_id", "root")),
        version=_as_int(data.get("version", 1), "version"),
        thresholds=tuple(
            (_as_int(tier, "thresholds"), str(ceiling))
            for tier, ceiling in sorted(thresholds.items(), key=lambda kv: _as_int(kv[0], "thresholds"))
        ),
        tier_labels=tuple(
            parse_tier_label(item) for item in data.get("tier_labels") or ()
        ),
        approval_types=tuple(
            parse_approval_type(str(name), body)
            for name, body in sorted(approval_types.items())
        ),
        checksum=compute_checksum(data),
    )


def load_configuration_set(path: Path) -> ApprovalConfigurationSet:
    return parse_configuration_set(load_yaml_file(path))
