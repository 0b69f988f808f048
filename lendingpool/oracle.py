"""
oracle.py - Price sources and oracle price synchronisation

Reserve prices are quoted in a reference currency and can only be written
by the pool's oracle. This module provides the price feeds an oracle reads
from and the operation that pushes them into the pool.

Classes:
- PricingSource: Protocol defining the price feed interface
- StaticPricingSource: Time-independent prices
- TimeSeriesPricingSource: Time-varying prices, most recent observation wins

compute_price_sync() writes every available feed price for the pool's
reserves in one oracle transaction.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
import logging
from typing import Dict, Set, Optional, List, Tuple, Protocol, runtime_checkable

from .core import (
    LedgerView, PendingTransaction, UnitStateChange, TransactionOrigin, OriginType,
    Unauthorized, build_transaction, empty_pending_transaction,
)
from .pool import load_pool, to_state_dict

logger = logging.getLogger(__name__)

REFERENCE_CURRENCY = "ETH"


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for price feeds.

    A pricing source returns asset prices at a timestamp, in units of
    base_currency per asset unit.
    """
    base_currency: str

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Get the price of a single asset at a specific timestamp."""
        ...

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        """Get prices for several assets at a specific timestamp."""
        ...


class StaticPricingSource:
    """Prices that do not depend on time. The base currency prices at 1."""

    def __init__(self, prices: Dict[str, Decimal], base_currency: str = REFERENCE_CURRENCY):
        self.base_currency = base_currency
        self.prices = {k: Decimal(str(v)) for k, v in prices.items()}
        self.prices[base_currency] = Decimal("1")

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        return self.prices.get(unit_symbol)

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        return {unit: self.prices[unit] for unit in units if unit in self.prices}

    def update_price(self, unit_symbol: str, price: Decimal):
        self.prices[unit_symbol] = Decimal(str(price))

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices, base={self.base_currency})"


class TimeSeriesPricingSource:
    """
    Time-varying prices.

    get_price() returns the most recent observation at or before the
    requested time, or None before the first observation.

    Example:
        feed = TimeSeriesPricingSource({
            'T1': [(t0, Decimal("1")), (t1, Decimal("2"))],
        })
        feed.get_price('T1', t1)   # Decimal("2")
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None,
        base_currency: str = REFERENCE_CURRENCY,
    ):
        self.base_currency = base_currency
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        for unit, path in (price_paths or {}).items():
            if path:
                self.price_history[unit] = sorted(
                    ((ts, Decimal(str(p))) for ts, p in path), key=lambda x: x[0]
                )

    def add_price(self, unit_symbol: str, timestamp: datetime, price: Decimal):
        history = self.price_history.setdefault(unit_symbol, [])
        history.append((timestamp, Decimal(str(price))))
        history.sort(key=lambda x: x[0])

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        if unit_symbol == self.base_currency:
            return Decimal("1")
        history = self.price_history.get(unit_symbol)
        if not history:
            return None
        idx = bisect_right([ts for ts, _ in history], timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        prices = {}
        for unit in units:
            price = self.get_price(unit, timestamp)
            if price is not None:
                prices[unit] = price
        return prices

    def __repr__(self):
        total = sum(len(h) for h in self.price_history.values())
        return f"TimeSeriesPricingSource({len(self.price_history)} units, {total} observations, base={self.base_currency})"


def compute_price_sync(
    view: LedgerView,
    pool: str,
    caller: str,
    source: PricingSource,
) -> PendingTransaction:
    """
    Push the feed's current prices for all registered reserves.

    Assets the feed does not price are left alone, as are feed prices for
    assets without a reserve. Returns an empty transaction when no price
    changes.

    Raises:
        Unauthorized: If caller is not the pool's oracle
        ValueError: If the feed returns a non-positive price
    """
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    if caller != state.oracle:
        raise Unauthorized(f"{caller} lacks oracle capability")

    prices = source.get_prices(set(state.reserves), view.current_time)
    reserves = dict(state.reserves)
    changed = []
    for asset, price in sorted(prices.items()):
        if price <= 0:
            raise ValueError(f"feed price for {asset} must be positive, got {price}")
        if reserves[asset].price != price:
            reserves[asset] = replace(reserves[asset], price=price)
            changed.append(asset)

    if not changed:
        return empty_pending_transaction(view)
    logger.debug("Price sync for %s updates %s", pool, ", ".join(changed))

    new_state = replace(state, reserves=reserves, nonce=state.nonce + 1)
    origin = TransactionOrigin(OriginType.ORACLE, caller, pool, "PRICE_SYNC")
    return build_transaction(
        view, [], [UnitStateChange(pool, old_raw, to_state_dict(new_state))], origin=origin,
    )
