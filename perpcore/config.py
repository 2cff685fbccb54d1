"""Engine configuration.

All tunable constants live in one frozen ``EngineConfig``. The defaults are the
production posture; hosts may override them from a YAML file:

    min_deposit: 1000
    max_oracle_staleness_seconds: 30

Loading is fail-closed: unknown keys and non-int values are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml


@dataclass(frozen=True)
class EngineConfig:
    # Margin account ledger
    min_deposit: int = 1000
    min_withdrawal: int = 1000
    max_positions_per_account: int = 10
    max_orders_per_account: int = 20

    # Oracle quote validation
    max_oracle_staleness_seconds: int = 60
    max_oracle_confidence_bps: int = 100

    # AMM
    max_trade_bps_of_base: int = 1000
    k_tolerance_divisor: int = 1000
    default_virtual_base_reserve: int = 1_000_000_000
    default_virtual_quote_reserve: int = 1_000_000_000_000

    # Funding
    max_abs_funding_rate: int = 1_000_000

    def __post_init__(self) -> None:
        for f in fields(self):
            v = getattr(self, f.name)
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{f.name} must be an int")
            if v < 0:
                raise ValueError(f"{f.name} must be non-negative: {v}")
        if not (0 < self.max_trade_bps_of_base <= 10_000):
            raise ValueError(f"max_trade_bps_of_base must be in (0, 10000]: {self.max_trade_bps_of_base}")
        if not (0 <= self.max_oracle_confidence_bps <= 10_000):
            raise ValueError("max_oracle_confidence_bps must be in [0, 10000]")
        if self.k_tolerance_divisor == 0:
            raise ValueError("k_tolerance_divisor must be positive")
        if self.max_positions_per_account == 0 or self.max_orders_per_account == 0:
            raise ValueError("account list bounds must be positive")


DEFAULT_CONFIG = EngineConfig()

CONFIG_KEYS: tuple[str, ...] = tuple(f.name for f in fields(EngineConfig))


def config_from_mapping(d: Mapping[str, Any], base: EngineConfig = DEFAULT_CONFIG) -> EngineConfig:
    """Overlay ``d`` on ``base``. Raises on unknown keys or invalid values."""
    if not isinstance(d, Mapping):
        raise TypeError("config must be a mapping")
    extra = set(d) - set(CONFIG_KEYS)
    if extra:
        raise ValueError(f"unknown config keys: {sorted(extra)}")
    return replace(base, **dict(d))


def load_config(path: str | Path) -> EngineConfig:
    """Load an ``EngineConfig`` from a YAML file (empty file = defaults)."""
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if obj is None:
        return DEFAULT_CONFIG
    return config_from_mapping(obj)
