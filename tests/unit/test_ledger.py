"""
test_ledger.py - Unit tests for the double-entry ledger

Tests:
- Registration of wallets and units
- Atomic, idempotent execution
- Rejection of stale, future-dated and over-spending transactions
- Clock, test-mode balance overrides, cloning and conservation checks
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from lendingpool import (
    Ledger, Move, ExecuteResult, UnitStateChange, LedgerError, SYSTEM_WALLET,
    WalletNotRegistered, UnitNotRegistered,
    build_transaction, create_token, compute_approve, compute_transfer,
)
from lendingpool.core import PendingTransaction
from lendingpool.reserves import create_receipt_unit
from tests.helpers import T0, mint, snapshot_balances


class TestRegistration:

    def test_duplicate_wallet(self, token_ledger):
        with pytest.raises(ValueError):
            token_ledger.register_wallet("alice")

    def test_duplicate_unit(self, token_ledger):
        with pytest.raises(ValueError):
            token_ledger.register_unit(create_token("T1", "Again"))

    def test_system_wallet_always_present(self, empty_ledger):
        assert empty_ledger.is_registered(SYSTEM_WALLET)

    def test_unknown_lookups(self, token_ledger):
        with pytest.raises(WalletNotRegistered):
            token_ledger.get_balance("zed", "T1")
        with pytest.raises(UnitNotRegistered):
            token_ledger.get_balance("alice", "T9")
        with pytest.raises(UnitNotRegistered):
            token_ledger.get_unit_state("T9")


class TestExecute:

    def test_moves_apply(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("100"))
        assert token_ledger.get_balance("alice", "T1") == Decimal("100")
        assert token_ledger.get_balance(SYSTEM_WALLET, "T1") == Decimal("-100")
        assert token_ledger.get_positions("T1") == {
            "alice": Decimal("100"), SYSTEM_WALLET: Decimal("-100"),
        }

    def test_same_intent_applies_once(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("100"))
        pending = build_transaction(token_ledger, [Move(Decimal("10"), "T1", "alice", "bob", "pay_1")])
        assert token_ledger.execute(pending) == ExecuteResult.APPLIED
        assert token_ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert token_ledger.get_balance("bob", "T1") == Decimal("10")

    def test_empty_transaction(self, token_ledger):
        pending = build_transaction(token_ledger, [])
        before = len(token_ledger.transaction_log)
        assert token_ledger.execute(pending) == ExecuteResult.APPLIED
        assert len(token_ledger.transaction_log) == before

    def test_overspend_rejected(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("5"))
        before = snapshot_balances(token_ledger)
        pending = build_transaction(token_ledger, [Move(Decimal("10"), "T1", "alice", "bob", "pay_1")])
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED
        assert snapshot_balances(token_ledger) == before

    def test_net_deltas_are_validated(self, token_ledger):
        mint(token_ledger, "T1", "bob", Decimal("5"))
        pending = build_transaction(token_ledger, [
            Move(Decimal("10"), "T1", "alice", "bob", "loan"),
            Move(Decimal("5"), "T1", "bob", "alice", "loan_back"),
        ])
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED
        mint(token_ledger, "T1", "alice", Decimal("10"))
        pending = build_transaction(token_ledger, [
            Move(Decimal("10"), "T1", "alice", "bob", "loan"),
            Move(Decimal("15"), "T1", "bob", "alice", "loan_back"),
        ])
        assert token_ledger.execute(pending) == ExecuteResult.APPLIED
        assert token_ledger.get_balance("alice", "T1") == Decimal("15")
        assert token_ledger.get_balance("bob", "T1") == Decimal("0")

    def test_unregistered_wallet_rejected(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("5"))
        pending = build_transaction(token_ledger, [Move(Decimal("1"), "T1", "alice", "zed", "pay")])
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED

    def test_transfer_rule_rejects(self, token_ledger):
        token_ledger.register_unit(create_receipt_unit("T1", 18))
        pending = build_transaction(token_ledger, [Move(Decimal("1"), "aT1", "alice", "bob", "gift")])
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED

    def test_stale_state_rejected(self, token_ledger):
        first = compute_approve(token_ledger, "T1", "alice", "bob", Decimal("10"))
        second = compute_approve(token_ledger, "T1", "alice", "carol", Decimal("20"))
        assert token_ledger.execute(first) == ExecuteResult.APPLIED
        assert token_ledger.execute(second) == ExecuteResult.REJECTED
        allowances = token_ledger.get_unit_state("T1")['allowances']
        assert allowances == {'alice': {'bob': Decimal("10")}}

    def test_state_change_to_unknown_unit(self, token_ledger):
        pending = build_transaction(token_ledger, [], [UnitStateChange("T9", None, {'x': 1})])
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED

    def test_future_timestamp_rejected(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("5"))
        pending = build_transaction(token_ledger, [Move(Decimal("1"), "T1", "alice", "bob", "pay")])
        future = PendingTransaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=T0 + timedelta(days=1),
        )
        assert token_ledger.execute(future) == ExecuteResult.REJECTED

    def test_unit_creation_collision_rolls_back(self, token_ledger):
        fresh = create_token("T7", "Seven")
        pending = build_transaction(
            token_ledger, [], units_to_create=(fresh, create_token("T1", "Clash")),
        )
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED
        assert "T7" not in token_ledger.list_units()

    def test_units_created_with_transaction(self, token_ledger):
        pending = build_transaction(
            token_ledger,
            [Move(Decimal("3"), "T7", SYSTEM_WALLET, "alice", "mint_T7")],
            units_to_create=(create_token("T7", "Seven"),),
        )
        assert token_ledger.execute(pending) == ExecuteResult.APPLIED
        assert token_ledger.get_balance("alice", "T7") == Decimal("3")

    def test_log_records_applied_transactions(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("5"))
        token_ledger.execute(compute_transfer(token_ledger, "T1", "alice", "bob", Decimal("2")))
        log = token_ledger.transaction_log
        assert [tx.sequence_number for tx in log] == [0, 1]
        assert all(tx.ledger_name == "test" for tx in log)


class TestClockAndModes:

    def test_time_moves_forward(self, token_ledger):
        token_ledger.advance_time(T0 + timedelta(seconds=1))
        assert token_ledger.current_time == T0 + timedelta(seconds=1)

    def test_time_cannot_move_backwards(self, token_ledger):
        with pytest.raises(ValueError):
            token_ledger.advance_time(T0 - timedelta(seconds=1))

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", T0)
        ledger.register_unit(create_token("T1", "Token T1"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError):
            ledger.set_balance("alice", "T1", Decimal("1"))

    def test_set_balance_in_test_mode(self, token_ledger):
        token_ledger.set_balance("alice", "T1", 7)
        assert token_ledger.get_balance("alice", "T1") == Decimal("7")


class TestCloneAndConservation:

    def test_clone_is_independent(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("100"))
        token_ledger.execute(compute_approve(token_ledger, "T1", "alice", "bob", Decimal("5")))
        copy = token_ledger.clone()
        copy.execute(compute_transfer(copy, "T1", "alice", "bob", Decimal("40")))
        copy.execute(compute_approve(copy, "T1", "alice", "bob", Decimal("9")))
        assert token_ledger.get_balance("alice", "T1") == Decimal("100")
        assert token_ledger.get_unit_state("T1")['allowances']['alice']['bob'] == Decimal("5")
        assert copy.get_balance("alice", "T1") == Decimal("60")

    def test_clone_keeps_idempotency_memory(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("100"))
        pending = build_transaction(token_ledger, [Move(Decimal("1"), "T1", "alice", "bob", "pay")])
        token_ledger.execute(pending)
        assert token_ledger.clone().execute(pending) == ExecuteResult.ALREADY_APPLIED

    def test_minted_supply_nets_to_zero(self, token_ledger):
        mint(token_ledger, "T1", "alice", Decimal("100"))
        mint(token_ledger, "T2", "bob", Decimal("50"))
        token_ledger.execute(compute_transfer(token_ledger, "T1", "alice", "carol", Decimal("30")))
        report = token_ledger.verify_double_entry({'T1': Decimal("0"), 'T2': Decimal("0")})
        assert report['valid']
        assert report['supplies']['T1'] == Decimal("0")

    def test_discrepancy_reported(self, token_ledger):
        token_ledger.set_balance("alice", "T1", Decimal("5"))
        report = token_ledger.verify_double_entry({'T1': Decimal("0"), 'T9': Decimal("1")})
        assert not report['valid']
        assert {d['unit'] for d in report['discrepancies']} == {'T1', 'T9'}
