"""
conftest.py - Shared pytest fixtures for lending pool tests

Provides common fixtures used across unit and functional tests:
- Token ledgers (three 18-decimal tokens, funded wallets)
- A deployed pool with a reserve per token
- A pool with an open borrow
"""

import pytest
from decimal import Decimal

from lendingpool import Ledger

from tests.helpers import T0, TOKENS, USERS, mint, supply, make_token_ledger, make_pool


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", T0, verbose=False, test_mode=True)


@pytest.fixture
def token_ledger():
    """Ledger with T1, T2, T3 and the owner, oracle and user wallets."""
    return make_token_ledger()


@pytest.fixture
def funded_ledger(token_ledger):
    """Token ledger where every user holds 100,000 of each token."""
    for user in USERS:
        for token in TOKENS:
            mint(token_ledger, token, user, Decimal("100000"))
    return token_ledger


# =============================================================================
# POOL FIXTURES
# =============================================================================

@pytest.fixture
def pool(token_ledger):
    """Pool LP with default reserves for T1, T2 and T3."""
    return make_pool(token_ledger)


@pytest.fixture
def ledger(pool):
    return pool.ledger


@pytest.fixture
def bob_borrowing(pool):
    """
    Bob has 10,000 T1 as collateral and borrowed 1,000 T2 from carol's
    50,000 T2 liquidity.
    """
    supply(pool, "carol", "T2", Decimal("50000"), use_as_collateral=False)
    supply(pool, "bob", "T1", Decimal("10000"))
    pool.borrow("bob", "T2", Decimal("1000"))
    return pool
