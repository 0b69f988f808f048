"""
Atomicity Conformance Tests

INVARIANT: Pool operations are all-or-nothing.

    ∀ operation op:
        op raises ⟹ every balance and the pool state are unchanged
        op succeeds ⟹ its token moves and state change land together

Operations check everything before building a transaction, and the ledger
applies a transaction completely or not at all.
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from lendingpool import LendingError
from tests.helpers import (
    USERS, TOKENS, mint, approve, advance, make_token_ledger, make_pool, snapshot_balances,
)


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

amounts = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("20000"), places=2,
    allow_nan=False, allow_infinity=False,
)

operation = st.tuples(
    st.sampled_from(["deposit", "borrow", "repay", "redeem", "toggle", "liquidate", "price", "wait"]),
    st.sampled_from(USERS),
    st.sampled_from(TOKENS),
    amounts,
)


def _funded_pool():
    ledger = make_token_ledger()
    pool = make_pool(ledger)
    for user in USERS:
        for token in TOKENS:
            mint(ledger, token, user, Decimal("50000"))
            approve(ledger, token, user, pool.wallet, Decimal("1000000"))
    return pool


def _apply(pool, op, user, token, amount):
    if op == "deposit":
        pool.deposit(user, token, amount)
    elif op == "borrow":
        pool.borrow(user, token, amount)
    elif op == "repay":
        pool.repay(user, token, amount)
    elif op == "redeem":
        pool.redeem(user, token, amount)
    elif op == "toggle":
        pool.set_use_reserve_as_collateral(user, token, amount > 100)
    elif op == "liquidate":
        pool.liquidation("dave", token, "T2", user, amount)
    elif op == "price":
        pool.set_price("oracle", token, amount / 1000)
    else:
        advance(pool.ledger, days=int(amount) % 60)


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(st.lists(operation, min_size=1, max_size=15))
    @settings(max_examples=40, deadline=None)
    def test_failed_operations_change_nothing(self, ops):
        """
        PROPERTY: An operation that raises leaves every balance and the
        pool state exactly as they were.
        """
        pool = _funded_pool()
        for op, user, token, amount in ops:
            balances = snapshot_balances(pool.ledger)
            state = pool.ledger.get_unit_state(pool.symbol)
            log_length = len(pool.ledger.transaction_log)
            try:
                _apply(pool, op, user, token, amount)
            except (LendingError, ValueError):
                assert snapshot_balances(pool.ledger) == balances
                assert pool.ledger.get_unit_state(pool.symbol) == state
                assert len(pool.ledger.transaction_log) == log_length

    @given(st.lists(operation, min_size=1, max_size=15))
    @settings(max_examples=40, deadline=None)
    def test_receipts_match_reserve_custody(self, ops):
        """
        PROPERTY: Outstanding receipts never exceed what the pool holds
        plus what it has lent out.
        """
        pool = _funded_pool()
        for op, user, token, amount in ops:
            try:
                _apply(pool, op, user, token, amount)
            except (LendingError, ValueError):
                pass
        for token in TOKENS:
            receipts = sum(
                (pool.balance_of_receipt_token(user, token) for user in USERS), Decimal("0"),
            )
            data = pool.get_reserve_data(token)
            assert receipts <= data.available_liquidity + data.total_principal_borrowed
