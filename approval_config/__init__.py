"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain approval configuration at runtime
    through ``get_active_config()``.  Returns a ``CompiledApprovalConfig``,
    the sole runtime artifact.  YAML loading is internal tooling.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and ``approval_engines``
    and below ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Build-time validation: thresholds strictly increase, every reachable
      tier has a label, every approval type has a policy.
    - Deterministic compilation: same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ConfigurationError`` -- schema or structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``approval_config_loaded`` log entry with config_id, version and
    checksum, tying decisions back to the thresholds that governed them.
"""

from __future__ import annotations

from pathlib import Path

from approval_config.compiler import (
    ApprovalTypePolicy,
    CompiledApprovalConfig,
    compile_config,
)
from approval_config.loader import load_configuration_set
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "approval.yaml"


def get_active_config(path: Path | str | None = None) -> CompiledApprovalConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load; defaults to the packaged configuration.
    """
    source_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = compile_config(load_configuration_set(source_path))

    _logger.info(
        "approval_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source_path),
            "thresholds": {tier: str(c) for tier, c in config.thresholds.ceilings},
        },
    )
    return config


__all__ = [
    "ApprovalTypePolicy",
    "CompiledApprovalConfig",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
