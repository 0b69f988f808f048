"""
reserves.py - Reserve Registry

A reserve is the pool's book for one asset. Its state is stored inside the
pool unit as a plain dict; ReserveState is the typed, frozen view of it.

    asset                    underlying token symbol
    receipt                  receipt-token symbol (a<ASSET>), one per reserve
    enabled                  disabled reserves refuse deposits and borrows
    price                    reference units per asset unit, set by the oracle
    total_borrows            aggregate principal + fees + interest owed
    total_principal_borrowed aggregate principal owed
    total_fees               aggregate unpaid origination fees
    borrow_index             cumulative borrow index, Ray, starts at RAY
    last_update              time of the last accrual
    params                   ReserveParameters

Available liquidity is not stored: it is the pool wallet's balance of the
asset, so tokens sent straight to the pool are lendable.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from .config import ReserveParameters
from .core import Unit, UNIT_TYPE_RECEIPT, receipt_transfer_rule
from .wad_math import RAY

RECEIPT_PREFIX = "a"


def receipt_symbol(asset: str) -> str:
    return f"{RECEIPT_PREFIX}{asset}"


def create_receipt_unit(asset: str, decimals: int) -> Unit:
    """
    Create the receipt-token unit for a reserve.

    Receipt balances are deposit principal. They can only be minted from or
    burned to the system wallet (see receipt_transfer_rule).
    """
    return Unit(
        symbol=receipt_symbol(asset),
        name=f"Interest bearing {asset}",
        unit_type=UNIT_TYPE_RECEIPT,
        min_balance=Decimal("0"),
        max_balance=Decimal("Infinity"),
        decimal_places=decimals,
        transfer_rule=receipt_transfer_rule,
    )


@dataclass(frozen=True, slots=True)
class ReserveState:
    """Immutable snapshot of a reserve."""
    asset: str
    receipt: str
    decimals: int
    enabled: bool
    price: Decimal
    total_borrows: Decimal
    total_principal_borrowed: Decimal
    total_fees: Decimal
    borrow_index: int
    last_update: datetime
    params: ReserveParameters = field(default_factory=ReserveParameters)

    def __post_init__(self):
        for name in ('price', 'total_borrows', 'total_principal_borrowed', 'total_fees'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.borrow_index <= 0:
            raise ValueError(f"borrow_index must be positive, got {self.borrow_index}")

    @property
    def interest_bearing_borrows(self) -> Decimal:
        """Aggregate debt that compounds with the borrow index (fees do not)."""
        return max(self.total_borrows - self.total_fees, Decimal("0"))


def new_reserve(asset: str, params: ReserveParameters, now: datetime, decimals: int) -> ReserveState:
    """A freshly added reserve: price 1, empty aggregates, index at RAY."""
    return ReserveState(
        asset=asset,
        receipt=receipt_symbol(asset),
        decimals=decimals,
        enabled=True,
        price=Decimal("1"),
        total_borrows=Decimal("0"),
        total_principal_borrowed=Decimal("0"),
        total_fees=Decimal("0"),
        borrow_index=RAY,
        last_update=now,
        params=params,
    )


# ============================================================================
# ADAPTERS
# ============================================================================

def reserve_from_dict(raw: Dict[str, Any]) -> ReserveState:
    """Load a ReserveState from its stored dict."""
    return ReserveState(
        asset=raw['asset'],
        receipt=raw['receipt'],
        decimals=raw['decimals'],
        enabled=raw.get('enabled', True),
        price=raw['price'],
        total_borrows=raw.get('total_borrows', Decimal("0")),
        total_principal_borrowed=raw.get('total_principal_borrowed', Decimal("0")),
        total_fees=raw.get('total_fees', Decimal("0")),
        borrow_index=raw.get('borrow_index', RAY),
        last_update=raw['last_update'],
        params=ReserveParameters.from_mapping(raw.get('params', {})),
    )


def reserve_to_dict(reserve: ReserveState) -> Dict[str, Any]:
    """Inverse of reserve_from_dict()."""
    return {
        'asset': reserve.asset,
        'receipt': reserve.receipt,
        'decimals': reserve.decimals,
        'enabled': reserve.enabled,
        'price': reserve.price,
        'total_borrows': reserve.total_borrows,
        'total_principal_borrowed': reserve.total_principal_borrowed,
        'total_fees': reserve.total_fees,
        'borrow_index': reserve.borrow_index,
        'last_update': reserve.last_update,
        'params': reserve.params.to_dict(),
    }
