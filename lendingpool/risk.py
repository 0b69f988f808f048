"""
risk.py - Risk Engine

Aggregates a user's positions across all reserves into reference-currency
values and derives the health factor and borrowing power.

Key Formulas:
    collateral_value   = sum(deposit * price * collateral_factor)   flagged reserves only
    debt_value         = sum((principal + interest) * price)
    fee_value          = sum(origination_fee * price)
    health_factor      = sum(collateral * liquidation_threshold) / (debt_value + fee_value)
    borrow_power       = sum(collateral * ltv) - debt_value - fee_value

The health factor is a Wad integer and saturates at MAX_UINT256 when there is
no debt. HF >= 1.0 is safe, HF < 1.0 is open to liquidation.

All functions here are pure: the pool loads ReservePosition snapshots and
passes them in. Hypothetical changes (redeem, collateral toggle, seizure)
are evaluated by passing modified snapshots.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .positions import BorrowBalances, ZERO_BALANCES
from .reserves import ReserveState
from .wad_math import WAD, MAX_UINT256, to_wad


@dataclass(frozen=True, slots=True)
class ReservePosition:
    """One user's standing in one reserve, with the reserve accrued to now."""
    reserve: ReserveState
    deposit: Decimal = Decimal("0")
    use_as_collateral: bool = False
    debt: BorrowBalances = ZERO_BALANCES

    @property
    def collateral_value(self) -> Decimal:
        if not self.use_as_collateral or self.deposit <= 0:
            return Decimal("0")
        return self.deposit * self.reserve.price * self.reserve.params.collateral_factor


@dataclass(frozen=True, slots=True)
class UserAccountData:
    """
    Global view of a user's account, in reference-currency units.

    Attributes:
        total_collateral_value: Value of deposits flagged as collateral
        total_debt_value: Value of principal + interest across reserves
        total_fee_value: Value of unpaid origination fees
        ltv: Collateral-weighted maximum loan-to-value
        liquidation_threshold: Collateral-weighted liquidation threshold
        available_borrow_value: Value that can still be borrowed (>= 0)
        health_factor: Wad integer, MAX_UINT256 without debt
    """
    total_collateral_value: Decimal
    total_debt_value: Decimal
    total_fee_value: Decimal
    ltv: Decimal
    liquidation_threshold: Decimal
    available_borrow_value: Decimal
    health_factor: int

    @property
    def total_liabilities(self) -> Decimal:
        return self.total_debt_value + self.total_fee_value


def calculate_health_factor(collateral_at_threshold: Decimal, liabilities: Decimal) -> int:
    """
    Health factor as a Wad integer.

    Args:
        collateral_at_threshold: sum(collateral * liquidation_threshold)
        liabilities: Debt value including fees

    Returns:
        MAX_UINT256 when liabilities are zero
    """
    if liabilities <= 0:
        return MAX_UINT256
    return to_wad(collateral_at_threshold / liabilities)


def calculate_user_account_data(positions: Iterable[ReservePosition]) -> UserAccountData:
    """Aggregate ReservePosition snapshots into a UserAccountData."""
    collateral = Decimal("0")
    collateral_at_ltv = Decimal("0")
    collateral_at_threshold = Decimal("0")
    debt = Decimal("0")
    fees = Decimal("0")

    for pos in positions:
        value = pos.collateral_value
        if value > 0:
            collateral += value
            collateral_at_ltv += value * pos.reserve.params.ltv
            collateral_at_threshold += value * pos.reserve.params.liquidation_threshold
        if pos.debt.total > 0:
            debt += pos.debt.compounded * pos.reserve.price
            fees += pos.debt.origination_fee * pos.reserve.price

    if collateral > 0:
        ltv = collateral_at_ltv / collateral
        threshold = collateral_at_threshold / collateral
    else:
        ltv = threshold = Decimal("0")

    return UserAccountData(
        total_collateral_value=collateral,
        total_debt_value=debt,
        total_fee_value=fees,
        ltv=ltv,
        liquidation_threshold=threshold,
        available_borrow_value=max(collateral_at_ltv - debt - fees, Decimal("0")),
        health_factor=calculate_health_factor(collateral_at_threshold, debt + fees),
    )


def available_borrow_power(data: UserAccountData, price: Decimal) -> Decimal:
    """Remaining borrowing power expressed in units of an asset priced at price."""
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    return data.available_borrow_value / price


def is_liquidatable(health_factor: int) -> bool:
    return health_factor < WAD
