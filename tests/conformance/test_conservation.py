"""
Conservation Law Conformance Tests

INVARIANT: For all units u, at all times t:
    Σ_{w ∈ wallets} balance(w, u, t) = 0

Tokens are issued from the system wallet and receipts are minted and burned
against it, so including the system wallet every unit sums to zero.
Lending redistributes balances but never creates or destroys value.
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from lendingpool import LendingError, Move, SYSTEM_WALLET, receipt_symbol
from tests.helpers import (
    USERS, mint, approve, supply, advance, make_token_ledger, make_pool,
)


deposits = st.lists(
    st.tuples(
        st.sampled_from(USERS),
        st.sampled_from(("T1", "T2")),
        st.decimals(min_value=Decimal("1"), max_value=Decimal("50000"), places=6,
                    allow_nan=False, allow_infinity=False),
    ),
    min_size=1, max_size=8,
)


def _assert_conserved(ledger):
    report = ledger.verify_double_entry({unit: Decimal("0") for unit in ledger.list_units()})
    assert report['valid'], report['discrepancies']


class TestConservationProperties:

    @given(deposits, st.integers(min_value=0, max_value=400))
    @settings(max_examples=40, deadline=None)
    def test_lending_cycle_conserves_every_unit(self, supplied, days):
        """
        PROPERTY: Deposits, borrows, interest, repayments and redemptions
        keep every unit's total at zero.
        """
        ledger = make_token_ledger()
        pool = make_pool(ledger)
        for user, token, amount in supplied:
            supply(pool, user, token, amount)
        _assert_conserved(ledger)

        supply(pool, "dave", "T3", Decimal("100000"))
        liquidity = pool.get_reserve_data("T1").available_liquidity
        if liquidity > Decimal("10"):
            pool.borrow("dave", "T1", min(liquidity / 2, Decimal("50000")))
        _assert_conserved(ledger)

        advance(ledger, days=days)
        pool.accrue()
        _assert_conserved(ledger)

        _, total, _ = pool.get_user_borrow_balances("T1", "dave")
        if total > 0:
            mint(ledger, "T1", "dave", total)
            approve(ledger, "T1", "dave", pool.wallet, total)
            pool.repay("dave", "T1")
        for user, token, _ in supplied:
            if pool.balance_of_receipt_token(user, token) > 0:
                pool.redeem_all(user, token)
        _assert_conserved(ledger)

        for token in ("T1", "T2"):
            assert ledger.get_balance(SYSTEM_WALLET, receipt_symbol(token)) == -sum(
                (pool.balance_of_receipt_token(u, token) for u in USERS), Decimal("0"),
            )

    @given(st.decimals(min_value=Decimal("1"), max_value=Decimal("10000"), places=2,
                       allow_nan=False, allow_infinity=False))
    @settings(max_examples=30, deadline=None)
    def test_flash_loan_conserves(self, amount):
        """PROPERTY: A repaid flash loan only moves the fee from receiver to pool."""
        ledger = make_token_ledger()
        pool = make_pool(ledger)
        supply(pool, "carol", "T1", Decimal("10000"), use_as_collateral=False)
        mint(ledger, "T1", "bob", Decimal("1000"))

        def receiver(view, asset, loaned, fee):
            return [Move(loaned + fee, asset, "bob", pool.wallet, "flash_repay")]

        try:
            pool.flash_loan("bob", "T1", amount, receiver)
        except LendingError:
            pass
        _assert_conserved(ledger)
        assert ledger.get_balance(pool.wallet, "T1") + ledger.get_balance("bob", "T1") == Decimal("11000")
