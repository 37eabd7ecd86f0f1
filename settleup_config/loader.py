"""
Configuration Loader (``settleup_config.loader``).

Responsibility
--------------
Loads YAML configuration documents, merges a user document over the
packaged defaults and parses the result into the frozen dataclasses of
``settleup_config.schema``. Callers go through
``settleup_config.get_active_config()``.

Invariants enforced
-------------------
* Every value is validated; a bad value raises ``ConfigError`` naming its
  dotted path. Unknown keys are rejected so that typos do not silently
  fall back to defaults.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the merged
  document for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid or unknown values  -> ``ConfigError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settleup_config.schema import (
    WEIGHTED_ROUNDING_CHOICES,
    CacheConfig,
    ConfigError,
    CoreConfig,
    SettlementConfig,
    SplitConfig,
    WorkerConfig,
)
from settleup_kernel.domain.currency import CurrencyRegistry

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS: dict[str, tuple[str, ...]] = {
    "cache": ("ttl_seconds", "sweep_interval_seconds"),
    "split": ("weighted_rounding", "exact_tolerance_per_member"),
    "settlement": ("epsilon_minor_units", "max_amount"),
    "workers": ("max_workers",),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError("<root>", f"{path} does not contain a mapping")
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` merged in; nested dicts merge recursively."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _int(value: Any, path: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(path, f"expected an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(path, f"must be at least {minimum}, got {value}")
    return value


def _decimal(value: Any, path: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ConfigError(path, f"expected a decimal amount, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigError(path, f"expected a decimal amount, got {value!r}") from e
    if not result.is_finite() or result <= 0:
        raise ConfigError(path, f"must be a positive amount, got {value!r}")
    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(name, "expected a mapping")
    unknown = sorted(set(section) - set(_SECTIONS[name]))
    if unknown:
        raise ConfigError(f"{name}.{unknown[0]}", "unknown key")
    return section


def parse_config(data: dict[str, Any], checksum: str = "") -> CoreConfig:
    """
    Parse a merged configuration document.

    Keys absent from ``data`` take the dataclass defaults.

    Raises:
        ConfigError: on the first invalid or unknown value.
    """
    unknown = sorted(set(data) - set(_SECTIONS) - {"currency"})
    if unknown:
        raise ConfigError(unknown[0], "unknown key")

    currency = data.get("currency", "USD")
    if not isinstance(currency, str) or not CurrencyRegistry.is_valid(currency.strip().upper()):
        raise ConfigError("currency", f"unknown ISO 4217 code {currency!r}")

    cache = _section(data, "cache")
    split = _section(data, "split")
    settlement = _section(data, "settlement")
    workers = _section(data, "workers")

    weighted_rounding = split.get("weighted_rounding", SplitConfig.weighted_rounding)
    if weighted_rounding not in WEIGHTED_ROUNDING_CHOICES:
        raise ConfigError(
            "split.weighted_rounding",
            f"expected one of {', '.join(WEIGHTED_ROUNDING_CHOICES)}, got {weighted_rounding!r}",
        )

    return CoreConfig(
        currency=currency.strip().upper(),
        cache=CacheConfig(
            ttl_seconds=_int(
                cache.get("ttl_seconds", CacheConfig.ttl_seconds), "cache.ttl_seconds", 1
            ),
            sweep_interval_seconds=_int(
                cache.get("sweep_interval_seconds", CacheConfig.sweep_interval_seconds),
                "cache.sweep_interval_seconds",
                1,
            ),
        ),
        split=SplitConfig(
            weighted_rounding=weighted_rounding,
            exact_tolerance_per_member=_int(
                split.get(
                    "exact_tolerance_per_member", SplitConfig.exact_tolerance_per_member
                ),
                "split.exact_tolerance_per_member",
                0,
            ),
        ),
        settlement=SettlementConfig(
            epsilon_minor_units=_int(
                settlement.get("epsilon_minor_units", SettlementConfig.epsilon_minor_units),
                "settlement.epsilon_minor_units",
                0,
            ),
            max_amount=_decimal(
                settlement.get("max_amount", SettlementConfig.max_amount),
                "settlement.max_amount",
            ),
        ),
        workers=WorkerConfig(
            max_workers=_int(
                workers.get("max_workers", WorkerConfig.max_workers),
                "workers.max_workers",
                1,
            ),
        ),
        checksum=checksum,
    )


def load_config(path: Path | str | None = None) -> CoreConfig:
    """Load the packaged defaults, merge ``path`` over them and parse."""
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = deep_merge(data, load_yaml_file(Path(path)))
    return parse_config(data, checksum=compute_checksum(data))
