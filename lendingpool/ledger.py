"""
ledger.py - Stateful Double-Entry Ledger for token balances and protocol state

The Ledger class is the central state manager for the lending pool.
It is the only module that mutates state, so every change is controlled
and auditable.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (all moves and state changes, or none)
    - Maintains wallet balances and unit (token, receipt, pool) definitions
    - Tracks the protocol clock used for interest accrual
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
import logging
from decimal import Decimal

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError,
    TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    _freeze_state,
)

logger = logging.getLogger(__name__)


class Ledger:
    """
    Double-entry ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: every transaction is checked against registration,
          transfer rules, balance limits and the unit state it was built on.
        - Always logs: every applied transaction is kept in transaction_log.

    Thread Safety:
        Not thread-safe. LendingPool serialises its own access; other callers
        sharing a Ledger across threads must add their own lock.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(create_token("T1", "Token One"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")

        tx = build_transaction(ledger, [
            Move(Decimal("100"), "T1", "alice", "bob", "payment_001")
        ])
        result = ledger.execute(tx)
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = False,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Log every applied transaction at INFO instead of DEBUG
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        # Inverted index unit -> {wallet -> quantity}
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        # System wallet mints and burns receipt tokens
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Args:
            wallet_id: Wallet identifier
            unit_symbol: Unit symbol

        Returns:
            Current balance (Decimal("0") if wallet has no balance for this unit)

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        The returned dictionary can be mutated freely without affecting
        the ledger.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        unit_obj = self.units[unit_symbol]
        return copy.deepcopy(unit_obj.state) if unit_obj.state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Calculate total supply of a unit across all wallets.

        Wallets are summed in sorted order so accumulation is deterministic.
        The system wallet is included, so for minted units the result is zero
        (issued supply is the negative of the system balance).

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-9")
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        For every unit, the sum of all balances across all wallets must equal
        a constant. Token moves and receipt mint/burn are both double-entry,
        so lending activity never changes these totals.

        Args:
            expected_supplies: Optional dict mapping unit symbols to expected totals.
            tolerance: Maximum allowed difference for decimal comparisons.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, Decimal] - Current total supply for each unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                difference = abs(current_supply - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': difference,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': Decimal("0"),
                        'difference': abs(expected),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        logger.debug("%s: registered wallet %s", self.name, wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        logger.debug(
            "%s: registered unit %s (%s) [%s]%s",
            self.name, unit.symbol, unit.name, unit.unit_type,
            f" rule={unit.transfer_rule.__name__}" if unit.transfer_rule else "",
        )

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: This bypasses double-entry accounting and is only available
        in test mode. Use build_transaction() and execute() otherwise.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves and state changes are applied together or not at all.
        Execution is idempotent: a pending transaction with the same intent_id
        will not be applied twice.

        Validation covers:
        - Unit and wallet registration
        - Transfer rules
        - Balance constraints (min/max balance limits)
        - Unit state: each state change must have been built on the state the
          unit holds now, otherwise the intent is stale and is rejected

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            logger.info("%s: already applied intent_id=%s", self.name, pending.intent_id)
            return ExecuteResult.ALREADY_APPLIED

        # Units are registered for validation and removed again on rejection
        newly_registered_units: List[str] = []
        for unit in pending.units_to_create:
            if unit.symbol in self.units:
                self._rollback_units(newly_registered_units)
                return self._reject(pending, f"unit already registered: {unit.symbol}")
            self.register_unit(unit)
            newly_registered_units.append(unit.symbol)

        valid, reason = self._validate_pending(pending)
        if not valid:
            self._rollback_units(newly_registered_units)
            return self._reject(pending, reason)

        sequence = self._next_sequence
        self._next_sequence += 1
        exec_id = self._generate_exec_id(sequence)

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=exec_id,
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        self._execute_moves(tx.moves)

        # Unit is frozen, so each change replaces the Unit instance
        for sc in tx.state_changes:
            old_unit = self.units[sc.unit]
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        logger.log(logging.INFO if self.verbose else logging.DEBUG, "%s: applied %s", self.name, tx.summary())
        return ExecuteResult.APPLIED

    def _reject(self, pending: PendingTransaction, reason: str) -> ExecuteResult:
        logger.info("%s: rejected %r: %s", self.name, pending.origin, reason)
        return ExecuteResult.REJECTED

    def _rollback_units(self, symbols: List[str]) -> None:
        for sym in symbols:
            del self.units[sym]

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Unit and wallet registration
        3. Transfer rule enforcement
        4. Balance constraint validation (min/max balance limits)
        5. State changes target registered units and match their current state

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt: it carries the negative of every minted supply
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)

            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"unit not registered: {sc.unit}"
            if sc.old_state is None:
                continue
            current_state = self.units[sc.unit].state
            old_state = sc.old_state if isinstance(sc.old_state, dict) else {}
            if old_state != current_state:
                return False, f"stale state for {sc.unit}"

        return True, ""

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> wallet index in step with a balance change; dust is dropped."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply moves to wallet balances with unit rounding and index upkeep."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a fully independent deep copy of this ledger.

        Useful for what-if evaluation (for example, simulating a liquidation
        before submitting it) without touching the live ledger.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode

        cloned.units = {
            symbol: replace(unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state)))
            for symbol, unit in self.units.items()
        }

        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence

        cloned.balances = {}
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(lambda: Decimal("0"), bals)

        cloned._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in self._positions_by_unit.items():
            cloned._positions_by_unit[unit_symbol] = dict(positions)

        return cloned
