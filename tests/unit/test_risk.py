"""
test_risk.py - Unit tests for the risk engine

Tests:
- Collateral value of a reserve position
- Health factor scale and saturation
- Aggregation across reserves (weighted ltv and threshold)
- Borrowing power
"""

import pytest
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from lendingpool import (
    ReserveParameters, WAD, MAX_UINT256,
    ReservePosition, BorrowBalances,
    calculate_user_account_data, calculate_health_factor,
    available_borrow_power, is_liquidatable, to_wad,
)
from lendingpool.reserves import new_reserve


T0 = datetime(2025, 1, 1)


def _reserve(asset, price="1", **params):
    return replace(new_reserve(asset, ReserveParameters(**params), T0, 18), price=Decimal(price))


def _debt(principal, fee="0", interest="0"):
    return BorrowBalances(Decimal(principal), Decimal(fee), Decimal(interest))


class TestReservePosition:

    def test_collateral_value(self):
        pos = ReservePosition(_reserve("T1", price="2"), Decimal("100"), True)
        assert pos.collateral_value == Decimal("200")

    def test_collateral_factor_applies(self):
        pos = ReservePosition(_reserve("T1", collateral_factor=Decimal("0.5")), Decimal("100"), True)
        assert pos.collateral_value == Decimal("50")

    def test_unflagged_deposit_is_not_collateral(self):
        pos = ReservePosition(_reserve("T1"), Decimal("100"), False)
        assert pos.collateral_value == Decimal("0")


class TestHealthFactor:

    def test_no_debt_saturates(self):
        assert calculate_health_factor(Decimal("8000"), Decimal("0")) == MAX_UINT256

    def test_wad_scale(self):
        assert calculate_health_factor(Decimal("8000"), Decimal("4000")) == 2 * WAD

    def test_is_liquidatable(self):
        assert is_liquidatable(WAD - 1)
        assert not is_liquidatable(WAD)
        assert not is_liquidatable(MAX_UINT256)


class TestUserAccountData:

    def test_empty_account(self):
        data = calculate_user_account_data([])
        assert data.total_collateral_value == Decimal("0")
        assert data.health_factor == MAX_UINT256
        assert data.available_borrow_value == Decimal("0")

    def test_single_collateral_and_debt(self):
        positions = [
            ReservePosition(_reserve("T1"), Decimal("10000"), True),
            ReservePosition(_reserve("T2"), debt=_debt("1000", fee="2.5")),
        ]
        data = calculate_user_account_data(positions)
        assert data.total_collateral_value == Decimal("10000")
        assert data.total_debt_value == Decimal("1000")
        assert data.total_fee_value == Decimal("2.5")
        assert data.total_liabilities == Decimal("1002.5")
        assert data.ltv == Decimal("0.75")
        assert data.liquidation_threshold == Decimal("0.80")
        assert data.available_borrow_value == Decimal("6497.5")
        assert data.health_factor == to_wad(Decimal("8000") / Decimal("1002.5"))

    def test_weighted_parameters(self):
        positions = [
            ReservePosition(_reserve("T1", ltv=Decimal("0.5"), liquidation_threshold=Decimal("0.6")), Decimal("100"), True),
            ReservePosition(_reserve("T2", ltv=Decimal("0.7"), liquidation_threshold=Decimal("0.8")), Decimal("300"), True),
        ]
        data = calculate_user_account_data(positions)
        assert data.ltv == Decimal("0.65")
        assert data.liquidation_threshold == Decimal("0.75")

    def test_price_drop_makes_unhealthy(self):
        positions = [
            ReservePosition(_reserve("T1"), Decimal("10000"), True),
            ReservePosition(_reserve("T2", price="20"), debt=_debt("1000", fee="2.5")),
        ]
        data = calculate_user_account_data(positions)
        assert data.health_factor < WAD
        assert data.available_borrow_value == Decimal("0")

    def test_interest_counts_as_debt(self):
        positions = [
            ReservePosition(_reserve("T1"), Decimal("1000"), True),
            ReservePosition(_reserve("T2"), debt=_debt("500", interest="100")),
        ]
        data = calculate_user_account_data(positions)
        assert data.total_debt_value == Decimal("600")

    def test_uncollateralised_deposit_ignored(self):
        positions = [ReservePosition(_reserve("T1"), Decimal("1000"), False)]
        data = calculate_user_account_data(positions)
        assert data.total_collateral_value == Decimal("0")


class TestBorrowPower:

    def test_in_asset_units(self):
        positions = [ReservePosition(_reserve("T1"), Decimal("10000"), True)]
        data = calculate_user_account_data(positions)
        assert available_borrow_power(data, Decimal("2")) == Decimal("3750")

    def test_non_positive_price(self):
        data = calculate_user_account_data([])
        with pytest.raises(ValueError):
            available_borrow_power(data, Decimal("0"))
