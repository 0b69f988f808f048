"""
positions.py - Borrow Positions

Deposit principal needs no bookkeeping here: it is the user's receipt-token
balance on the ledger. Borrow positions are stored in pool state, one per
(user, reserve):

    principal         outstanding borrowed amount
    origination_fee   one-off fee charged at borrow time, owed until repaid
    accrued_interest  interest crystallised at the last position update
    index_snapshot    reserve borrow index at the last position update (Ray)
    last_update       time of the last position update

Current debt is computed lazily from the reserve index:

    compounded = (principal + accrued_interest) * index / index_snapshot
    interest   = compounded - principal
    total      = principal + origination_fee + interest

The origination fee does not bear interest.

Repayment order: interest first, then the origination fee, then principal.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

from .core import QUANTITY_EPSILON, RepayExceedsDebt

RoundFn = Callable[[Decimal], Decimal]


@dataclass(frozen=True, slots=True)
class BorrowPosition:
    """Immutable snapshot of one user's borrow in one reserve."""
    principal: Decimal
    origination_fee: Decimal
    accrued_interest: Decimal
    index_snapshot: int
    last_update: datetime

    def __post_init__(self):
        for name in ('principal', 'origination_fee', 'accrued_interest'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))


@dataclass(frozen=True, slots=True)
class BorrowBalances:
    """Debt of a position at a point in time."""
    principal: Decimal
    origination_fee: Decimal
    interest: Decimal

    @property
    def total(self) -> Decimal:
        return self.principal + self.origination_fee + self.interest

    @property
    def principal_plus_fee(self) -> Decimal:
        return self.principal + self.origination_fee

    @property
    def compounded(self) -> Decimal:
        """Interest-bearing part of the debt (principal + interest)."""
        return self.principal + self.interest


ZERO_BALANCES = BorrowBalances(Decimal("0"), Decimal("0"), Decimal("0"))


def position_from_dict(raw: Dict[str, Any]) -> BorrowPosition:
    return BorrowPosition(
        principal=raw['principal'],
        origination_fee=raw.get('origination_fee', Decimal("0")),
        accrued_interest=raw.get('accrued_interest', Decimal("0")),
        index_snapshot=raw['index_snapshot'],
        last_update=raw['last_update'],
    )


def position_to_dict(position: BorrowPosition) -> Dict[str, Any]:
    return {
        'principal': position.principal,
        'origination_fee': position.origination_fee,
        'accrued_interest': position.accrued_interest,
        'index_snapshot': position.index_snapshot,
        'last_update': position.last_update,
    }


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_origination_fee(principal: Decimal, fee_rate: Decimal, round_fn: RoundFn) -> Decimal:
    return round_fn(principal * fee_rate)


def calculate_current_debt(
    position: Optional[BorrowPosition],
    index: int,
    round_fn: RoundFn,
) -> BorrowBalances:
    """
    Debt of a position given the reserve's current borrow index.

    Args:
        position: Borrow position, or None for no borrow
        index: Current reserve borrow index (Ray)
        round_fn: Rounds to the asset's precision

    Returns:
        BorrowBalances (all zero when position is None)
    """
    if position is None:
        return ZERO_BALANCES
    base = position.principal + position.accrued_interest
    compounded = round_fn(base * Decimal(index) / Decimal(position.index_snapshot))
    interest = max(compounded - position.principal, position.accrued_interest)
    return BorrowBalances(
        principal=position.principal,
        origination_fee=position.origination_fee,
        interest=interest,
    )


def record_borrow(
    position: Optional[BorrowPosition],
    principal: Decimal,
    fee: Decimal,
    index: int,
    now: datetime,
    round_fn: RoundFn,
) -> BorrowPosition:
    """
    Add a new borrow to a position.

    Interest accrued so far is crystallised before the new principal is
    added, then the index snapshot is refreshed.
    """
    current = calculate_current_debt(position, index, round_fn)
    return BorrowPosition(
        principal=current.principal + principal,
        origination_fee=current.origination_fee + fee,
        accrued_interest=current.interest,
        index_snapshot=index,
        last_update=now,
    )


def split_repayment(balances: BorrowBalances, amount: Decimal) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Split a repayment into (interest, fee, principal) parts.

    Raises:
        RepayExceedsDebt: If amount is larger than the total debt
    """
    if amount > balances.total:
        raise RepayExceedsDebt(f"repayment {amount} exceeds debt {balances.total}")
    interest_paid = min(amount, balances.interest)
    remaining = amount - interest_paid
    fee_paid = min(remaining, balances.origination_fee)
    principal_paid = remaining - fee_paid
    return interest_paid, fee_paid, principal_paid


def _settle(
    balances: BorrowBalances,
    interest_paid: Decimal,
    fee_paid: Decimal,
    principal_paid: Decimal,
    index: int,
    now: datetime,
) -> Optional[BorrowPosition]:
    principal = balances.principal - principal_paid
    fee = balances.origination_fee - fee_paid
    interest = balances.interest - interest_paid
    if principal + fee + interest < QUANTITY_EPSILON:
        return None
    return BorrowPosition(
        principal=principal,
        origination_fee=fee,
        accrued_interest=interest,
        index_snapshot=index,
        last_update=now,
    )


def apply_repayment(
    balances: BorrowBalances,
    amount: Decimal,
    index: int,
    now: datetime,
) -> Optional[BorrowPosition]:
    """
    Apply a repayment to a position's current balances.

    Returns:
        The updated position, or None once the debt is fully cleared
    """
    interest_paid, fee_paid, principal_paid = split_repayment(balances, amount)
    return _settle(balances, interest_paid, fee_paid, principal_paid, index, now)


def apply_liquidation_cover(
    balances: BorrowBalances,
    cover: Decimal,
    fee_paid: Decimal,
    index: int,
    now: datetime,
) -> Optional[BorrowPosition]:
    """
    Apply a liquidator's payment: cover goes to interest then principal,
    fee_paid clears part of the origination fee.
    """
    if cover > balances.compounded:
        raise RepayExceedsDebt(f"cover {cover} exceeds debt {balances.compounded}")
    interest_paid = min(cover, balances.interest)
    principal_paid = cover - interest_paid
    return _settle(balances, interest_paid, min(fee_paid, balances.origination_fee),
                   principal_paid, index, now)

