"""
interest.py - Interest Rate Model

Utilization drives a kinked borrow-rate curve; the borrow rate compounds
per second into each reserve's cumulative borrow index.

Key Formulas (all Ray):
    utilization     = borrows / (available + borrows)      (0 if both are 0)
    borrow_rate     = see InterestRateStrategy
    liquidity_rate  = borrow_rate * utilization
    index(t + dt)   = index(t) * (1 + borrow_rate / SECONDS_PER_YEAR) ** dt

A borrower's debt grows by index(now) / index(snapshot), so one index per
reserve is enough to accrue every position lazily.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal

from .config import InterestRateStrategy
from .reserves import ReserveState
from .wad_math import RAY, ray_mul, ray_div, ray_pow, to_ray

SECONDS_PER_YEAR = 365 * 24 * 60 * 60


def calculate_utilization(total_borrows: Decimal, available_liquidity: Decimal) -> int:
    """Share of total liquidity currently lent out, in Ray."""
    total_liquidity = available_liquidity + total_borrows
    if total_liquidity <= 0 or total_borrows <= 0:
        return 0
    return to_ray(total_borrows / total_liquidity)


def calculate_borrow_rate(strategy: InterestRateStrategy, utilization: int) -> int:
    """
    Annual borrow rate for a given utilization.

    Args:
        strategy: Rate curve parameters
        utilization: Ray

    Returns:
        Annual rate, Ray. Non-decreasing in utilization; equals base_rate at 0.
    """
    base = to_ray(strategy.base_rate)
    slope1 = to_ray(strategy.slope1)
    slope2 = to_ray(strategy.slope2)
    optimal = to_ray(strategy.optimal_utilization)

    if utilization <= optimal:
        return base + ray_mul(slope1, ray_div(utilization, optimal))
    excess = ray_div(utilization - optimal, RAY - optimal)
    return base + slope1 + ray_mul(slope2, excess)


def calculate_liquidity_rate(borrow_rate: int, utilization: int) -> int:
    """Annual rate earned by depositors, Ray."""
    return ray_mul(borrow_rate, utilization)


def calculate_compounded_index(index: int, annual_rate: int, seconds: int) -> int:
    """Compound index by annual_rate over the given number of seconds."""
    if seconds <= 0:
        return index
    rate_per_second = annual_rate // SECONDS_PER_YEAR
    return ray_mul(index, ray_pow(RAY + rate_per_second, seconds))


def current_borrow_rate(reserve: ReserveState, available_liquidity: Decimal) -> int:
    utilization = calculate_utilization(reserve.total_borrows, available_liquidity)
    return calculate_borrow_rate(reserve.params.rate_strategy, utilization)


def accrue_reserve(
    reserve: ReserveState,
    available_liquidity: Decimal,
    now: datetime,
) -> ReserveState:
    """
    Bring a reserve's index and aggregate borrows up to now.

    The rate applied over the period is the one implied by the reserve's
    utilization at the start of the period. Whole seconds only: the
    fractional remainder stays pending until the next accrual, so calling
    this twice at the same time changes nothing the second time.

    Args:
        reserve: Reserve before accrual
        available_liquidity: Pool wallet balance of the asset
        now: Accrual time

    Returns:
        New ReserveState (the same object when no whole second has elapsed)
    """
    seconds = int((now - reserve.last_update).total_seconds())
    if seconds <= 0:
        return reserve

    bearing = reserve.interest_bearing_borrows
    if bearing > 0:
        rate = current_borrow_rate(reserve, available_liquidity)
        new_index = calculate_compounded_index(reserve.borrow_index, rate, seconds)
        grown = bearing * Decimal(new_index) / Decimal(reserve.borrow_index)
        grown = grown.quantize(Decimal(10) ** -reserve.decimals)
        total_borrows = reserve.total_fees + grown
    else:
        # Nothing is borrowed, the index stays put
        new_index = reserve.borrow_index
        total_borrows = reserve.total_borrows

    return replace(
        reserve,
        borrow_index=new_index,
        total_borrows=total_borrows,
        last_update=reserve.last_update + timedelta(seconds=seconds),
    )
