"""
settleup_config -- single public entrypoint for core configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``. Services receive the returned ``CoreConfig``
    by injection; engines only ever see plain values taken from it.

Architecture position:
    Configuration -- YAML-driven, validated at load time.
    This package sits above ``settleup_kernel`` and below
    ``settleup_services``. The kernel and the engines MUST NEVER import
    from ``settleup_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ConfigError`` (a ``ValueError``) -- invalid or unknown values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SETTLEUP_CONFIG_TRACE`` log entry with the checksum and the values
    that change computed results.
"""

from __future__ import annotations

import logging
from pathlib import Path

from settleup_config.loader import load_config
from settleup_config.schema import (
    CacheConfig,
    ConfigError,
    CoreConfig,
    SettlementConfig,
    SplitConfig,
    WorkerConfig,
)

_logger = logging.getLogger("settleup.config")

__all__ = [
    "CacheConfig",
    "ConfigError",
    "CoreConfig",
    "SettlementConfig",
    "SplitConfig",
    "WorkerConfig",
    "get_active_config",
]


def get_active_config(path: Path | str | None = None) -> CoreConfig:
    """Load, validate and trace the active configuration.

    Args:
        path: Optional YAML file merged over the packaged defaults.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ConfigError: If a value is invalid.
    """
    config = load_config(path)

    _logger.info(
        "SETTLEUP_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEUP_CONFIG_TRACE",
            "source": str(path) if path is not None else "defaults",
            "checksum": config.checksum,
            "currency": config.currency,
            "cache_ttl_seconds": config.cache.ttl_seconds,
            "weighted_rounding": config.split.weighted_rounding,
            "epsilon_minor_units": config.settlement.epsilon_minor_units,
            "max_workers": config.workers.max_workers,
        },
    )
    return config
