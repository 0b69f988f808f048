"""
config.py - Reserve and Pool Parameters

Frozen term-sheet dataclasses for the lending pool, plus a YAML loader.

    InterestRateStrategy   kinked borrow-rate curve of one reserve
    ReserveParameters      risk parameters of one reserve
    PoolConfig             defaults, per-asset overrides, flash-loan fee

A configuration file looks like:

    flash_loan_fee_rate: 0.05
    default_reserve:
      ltv: 0.75
      liquidation_threshold: 0.80
      liquidation_bonus: 0.05
      rate_strategy:
        base_rate: 0.01
        slope1: 0.04
        slope2: 1.00
        optimal_utilization: 0.80
    reserves:
      T2:
        ltv: 0.50

Keys missing from an override inherit from default_reserve.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_FLASH_LOAN_FEE_RATE = Decimal("0.05")


def _to_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _check_ratio(name: str, value: Decimal) -> None:
    if not Decimal("0") <= value <= Decimal("1"):
        raise ValueError(f"{name} must be between 0 and 1, got {value}")


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class InterestRateStrategy:
    """
    Annual borrow rate as a function of utilization U:

        U <= optimal:  base + slope1 * U / optimal
        U >  optimal:  base + slope1 + slope2 * (U - optimal) / (1 - optimal)
    """
    base_rate: Decimal = Decimal("0.01")
    slope1: Decimal = Decimal("0.04")
    slope2: Decimal = Decimal("1.00")
    optimal_utilization: Decimal = Decimal("0.80")

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, _to_decimal(f.name, getattr(self, f.name)))
        if self.base_rate < 0 or self.slope1 < 0 or self.slope2 < 0:
            raise ValueError("interest rate strategy rates and slopes must be non-negative")
        if not Decimal("0") < self.optimal_utilization < Decimal("1"):
            raise ValueError(
                f"optimal_utilization must be strictly between 0 and 1, got {self.optimal_utilization}"
            )


@dataclass(frozen=True, slots=True)
class ReserveParameters:
    """
    Risk parameters of a reserve - fixed when the reserve is added.

    Attributes:
        ltv: Maximum loan-to-value a borrower may reach through borrowing
        liquidation_threshold: Collateral weight in the health factor
        liquidation_bonus: Extra collateral a liquidator receives (0.05 = 5%)
        collateral_factor: Share of the deposit value counted as collateral
        origination_fee_rate: One-off fee charged on each borrowed principal
        rate_strategy: Borrow rate curve
    """
    ltv: Decimal = Decimal("0.75")
    liquidation_threshold: Decimal = Decimal("0.80")
    liquidation_bonus: Decimal = Decimal("0.05")
    collateral_factor: Decimal = Decimal("1.0")
    origination_fee_rate: Decimal = Decimal("0.0025")
    rate_strategy: InterestRateStrategy = field(default_factory=InterestRateStrategy)

    def __post_init__(self):
        for name in ('ltv', 'liquidation_threshold', 'liquidation_bonus',
                     'collateral_factor', 'origination_fee_rate'):
            object.__setattr__(self, name, _to_decimal(name, getattr(self, name)))
        _check_ratio('ltv', self.ltv)
        _check_ratio('liquidation_threshold', self.liquidation_threshold)
        _check_ratio('collateral_factor', self.collateral_factor)
        _check_ratio('origination_fee_rate', self.origination_fee_rate)
        if self.liquidation_bonus < 0:
            raise ValueError(f"liquidation_bonus must be non-negative, got {self.liquidation_bonus}")
        if self.ltv > self.liquidation_threshold:
            raise ValueError(
                f"ltv ({self.ltv}) cannot exceed liquidation_threshold ({self.liquidation_threshold})"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Plain mapping stored inside the pool's reserve state."""
        return {
            'ltv': self.ltv,
            'liquidation_threshold': self.liquidation_threshold,
            'liquidation_bonus': self.liquidation_bonus,
            'collateral_factor': self.collateral_factor,
            'origination_fee_rate': self.origination_fee_rate,
            'rate_strategy': {
                'base_rate': self.rate_strategy.base_rate,
                'slope1': self.rate_strategy.slope1,
                'slope2': self.rate_strategy.slope2,
                'optimal_utilization': self.rate_strategy.optimal_utilization,
            },
        }

    @classmethod
    def from_mapping(
        cls,
        raw: Mapping[str, Any],
        base: Optional['ReserveParameters'] = None,
    ) -> 'ReserveParameters':
        """
        Build parameters from a mapping, inheriting missing keys from base.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        if not isinstance(raw, Mapping):
            raise ValueError(f"reserve parameters must be a mapping, got {type(raw).__name__}")
        base = base or cls()
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"unknown reserve parameters: {sorted(unknown)}")
        values = {k: v for k, v in raw.items() if k != 'rate_strategy'}
        strategy = base.rate_strategy
        if raw.get('rate_strategy') is not None:
            strategy_raw = raw['rate_strategy']
            if not isinstance(strategy_raw, Mapping):
                raise ValueError("rate_strategy must be a mapping")
            known_strategy = {f.name for f in fields(InterestRateStrategy)}
            unknown = set(strategy_raw) - known_strategy
            if unknown:
                raise ValueError(f"unknown rate_strategy parameters: {sorted(unknown)}")
            strategy = replace(strategy, **strategy_raw)
        return replace(base, rate_strategy=strategy, **values)


@dataclass(frozen=True, slots=True)
class PoolConfig:
    """Pool-wide configuration."""
    default_reserve: ReserveParameters = field(default_factory=ReserveParameters)
    reserve_overrides: Mapping[str, ReserveParameters] = field(default_factory=dict)
    flash_loan_fee_rate: Decimal = DEFAULT_FLASH_LOAN_FEE_RATE

    def __post_init__(self):
        object.__setattr__(
            self, 'flash_loan_fee_rate',
            _to_decimal('flash_loan_fee_rate', self.flash_loan_fee_rate),
        )
        _check_ratio('flash_loan_fee_rate', self.flash_loan_fee_rate)

    def reserve_parameters(self, asset: str) -> ReserveParameters:
        """Parameters for a newly added reserve of this asset."""
        return self.reserve_overrides.get(asset, self.default_reserve)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> 'PoolConfig':
        """
        Build a PoolConfig from an already-parsed mapping (e.g., YAML).

        Raises:
            ValueError: If the mapping is malformed
        """
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ValueError(f"pool configuration must be a mapping, got {type(raw).__name__}")
        default = ReserveParameters.from_mapping(raw.get('default_reserve') or {})
        overrides = {}
        reserves_raw = raw.get('reserves') or {}
        if not isinstance(reserves_raw, Mapping):
            raise ValueError("reserves must be a mapping of asset -> parameters")
        for asset, params in reserves_raw.items():
            overrides[str(asset)] = ReserveParameters.from_mapping(params or {}, base=default)
        fee = raw.get('flash_loan_fee_rate', DEFAULT_FLASH_LOAN_FEE_RATE)
        return cls(default_reserve=default, reserve_overrides=overrides, flash_loan_fee_rate=fee)


# ============================================================================
# LOADER
# ============================================================================

def load_config(config_path: Union[str, Path, None] = None) -> PoolConfig:
    """
    Load pool configuration from a YAML file.

    A missing path (or None) falls back to the built-in defaults.

    Raises:
        ValueError: If the file content is malformed
    """
    if config_path is None:
        return PoolConfig()
    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning("Config file not found: %s, using defaults", config_path)
        return PoolConfig()

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    cfg = PoolConfig.from_mapping(raw)
    logger.info("Configuration loaded from %s", config_path)
    return cfg
