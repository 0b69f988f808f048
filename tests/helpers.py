"""
helpers.py - Scenario helpers shared by the lending pool tests

Minting, approving, supplying liquidity and comparing Decimal results.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Tuple

from lendingpool import (
    Ledger, ExecuteResult, LendingPool,
    create_token, compute_mint, compute_approve,
)


T0 = datetime(2025, 1, 1)
TOKENS = ("T1", "T2", "T3")
USERS = ("alice", "bob", "carol", "dave")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def mint(ledger: Ledger, token: str, wallet: str, amount) -> None:
    """Issue tokens to a wallet through the ledger."""
    result = ledger.execute(compute_mint(ledger, token, wallet, Decimal(str(amount))))
    assert result == ExecuteResult.APPLIED


def approve(ledger: Ledger, token: str, owner: str, spender: str, amount) -> None:
    result = ledger.execute(compute_approve(ledger, token, owner, spender, Decimal(str(amount))))
    assert result == ExecuteResult.APPLIED


def supply(pool: LendingPool, user: str, asset: str, amount, use_as_collateral: bool = True) -> None:
    """Mint, approve and deposit in one step."""
    amount = Decimal(str(amount))
    mint(pool.ledger, asset, user, amount)
    approve(pool.ledger, asset, user, pool.wallet, amount)
    pool.deposit(user, asset, amount, use_as_collateral=use_as_collateral)


def advance(ledger: Ledger, **delta) -> None:
    ledger.advance_time(ledger.current_time + timedelta(**delta))


def make_token_ledger(name: str = "test") -> Ledger:
    ledger = Ledger(name, T0, verbose=False, test_mode=True)
    for symbol in TOKENS:
        ledger.register_unit(create_token(symbol, f"Token {symbol}"))
    for wallet in ("owner", "oracle") + USERS:
        ledger.register_wallet(wallet)
    return ledger


def make_pool(ledger: Ledger, symbol: str = "LP", config=None) -> LendingPool:
    pool = LendingPool.deploy(ledger, symbol, admin="owner", oracle="oracle", config=config)
    for token in TOKENS:
        pool.add_reserve("owner", token)
    return pool


def close_to(actual: Decimal, expected, tolerance: str = "1e-9") -> bool:
    return abs(Decimal(actual) - Decimal(str(expected))) <= Decimal(tolerance)


def snapshot_balances(ledger: Ledger) -> dict:
    """(wallet, unit) -> balance for every registered wallet and unit."""
    return {
        (w, u): ledger.get_balance(w, u)
        for w in sorted(ledger.list_wallets())
        for u in ledger.list_units()
    }


def verify_conservation(ledger: Ledger, unit_symbol: str, expected_total: Decimal = None, tolerance: Decimal = None) -> Tuple[bool, Decimal]:
    """
    Verify conservation law for a unit.

    Returns:
        (is_conserved, actual_total)
    """
    if tolerance is None:
        tolerance = Decimal("1e-9")
    actual = ledger.total_supply(unit_symbol)
    if expected_total is not None:
        return abs(actual - expected_total) < tolerance, actual
    return True, actual


