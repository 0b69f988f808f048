"""
wad_math.py - Fixed-point arithmetic on integers

Two scales are used throughout the protocol:

    WAD = 1e18   health factor and other ratios reported to users
    RAY = 1e27   interest rates, utilization and the cumulative borrow index

All operations round half up, the convention of the on-chain lending
protocols these values are exchanged with. Token amounts and prices stay
Decimal; the to_/from_ helpers bridge between the two representations.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP

WAD = 10 ** 18
RAY = 10 ** 27
HALF_WAD = WAD // 2
HALF_RAY = RAY // 2
WAD_RAY_RATIO = 10 ** 9

# Saturating value reported for a health factor with no debt
MAX_UINT256 = 2 ** 256 - 1


def wad_mul(a: int, b: int) -> int:
    return (a * b + HALF_WAD) // WAD


def wad_div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("wad_div by zero")
    return (a * WAD + b // 2) // b


def ray_mul(a: int, b: int) -> int:
    return (a * b + HALF_RAY) // RAY


def ray_div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("ray_div by zero")
    return (a * RAY + b // 2) // b


def ray_to_wad(a: int) -> int:
    return (a + WAD_RAY_RATIO // 2) // WAD_RAY_RATIO


def wad_to_ray(a: int) -> int:
    return a * WAD_RAY_RATIO


def ray_pow(x: int, n: int) -> int:
    """
    Raise a Ray value to an integer power by repeated squaring.

    Args:
        x: Base, in Ray
        n: Non-negative exponent

    Returns:
        x ** n, in Ray

    Raises:
        ValueError: If n is negative
    """
    if n < 0:
        raise ValueError(f"ray_pow exponent must be non-negative, got {n}")
    z = x if n % 2 != 0 else RAY
    n //= 2
    while n != 0:
        x = ray_mul(x, x)
        if n % 2 != 0:
            z = ray_mul(z, x)
        n //= 2
    return z


# ============================================================================
# DECIMAL BRIDGES
# ============================================================================

def _scale(value, scale: int) -> int:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int((value * scale).to_integral_value(rounding=ROUND_HALF_UP))


def to_wad(value) -> int:
    """Convert a Decimal (or int/str) to a Wad integer."""
    return _scale(value, WAD)


def from_wad(value: int) -> Decimal:
    return Decimal(value) / Decimal(WAD)


def to_ray(value) -> int:
    """Convert a Decimal (or int/str) to a Ray integer."""
    return _scale(value, RAY)


def from_ray(value: int) -> Decimal:
    return Decimal(value) / Decimal(RAY)
