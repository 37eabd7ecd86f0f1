"""
Core configuration schema.

Frozen dataclasses for the runtime settings of the settle-up core. YAML
documents are parsed into these types by ``settleup_config.loader``; the
services read them, the engines receive plain values.

Defaults here mirror ``defaults.yaml`` so that a partial document (or none
at all) still yields a complete configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


class ConfigError(ValueError):
    """A configuration document has a missing or invalid value."""

    code: str = "INVALID_CONFIG"

    def __init__(self, path: str, problem: str):
        self.path = path
        self.problem = problem
        super().__init__(f"Invalid configuration at {path!r}: {problem}")


WEIGHTED_ROUNDING_CHOICES = ("remainder_to_last", "largest_remainder")


@dataclass(frozen=True)
class CacheConfig:
    """ResultCache lifetime settings."""

    ttl_seconds: int = 300
    sweep_interval_seconds: int = 60


@dataclass(frozen=True)
class SplitConfig:
    """SplitCalculator rounding settings."""

    weighted_rounding: str = "remainder_to_last"
    exact_tolerance_per_member: int = 1  # minor units


@dataclass(frozen=True)
class SettlementConfig:
    """SettlementMinimizer and settlement validation settings."""

    epsilon_minor_units: int = 1
    max_amount: Decimal = Decimal("999999.99")


@dataclass(frozen=True)
class WorkerConfig:
    """Background computation pool."""

    max_workers: int = 2


@dataclass(frozen=True)
class CoreConfig:
    """
    Complete runtime configuration.

    ``checksum`` is the SHA-256 of the merged source document, so two
    configs built from the same YAML compare equal and can be traced back
    to their source in logs.
    """

    currency: str = "USD"
    cache: CacheConfig = field(default_factory=CacheConfig)
    split: SplitConfig = field(default_factory=SplitConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    checksum: str = ""
