"""
Core types and pure functions for the lending pool ledger.

This module provides the foundational data structures shared by every
protocol component:
1. Protocols: LedgerView for read-only access to balances and unit state
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError for the ledger substrate, LendingError for the protocol
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: receipt tokens may only be minted or burned

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, Context, DefaultContext, ROUND_HALF_EVEN, ROUND_DOWN, getcontext, localcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Token amounts, prices and debt balances are Decimal. Interest indexes and
# the health factor are integer fixed-point values (see wad_math.py), but
# they are bridged through Decimal, so the context must carry enough digits
# for a 1e27 scaled integer without rounding.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
# Each thread has its own context. Threads started after import copy
# DefaultContext; code running on older threads goes through
# ledger_decimal_context().
#
LEDGER_DECIMAL_PRECISION = 50

_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = LEDGER_DECIMAL_PRECISION
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN
DefaultContext.prec = LEDGER_DECIMAL_PRECISION
DefaultContext.rounding = ROUND_HALF_EVEN


def ledger_decimal_context():
    """Apply the ledger precision and rounding to the current thread for a with-block."""
    return localcontext(Context(prec=LEDGER_DECIMAL_PRECISION, rounding=ROUND_HALF_EVEN))


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for receipt-token issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_RECEIPT = "RECEIPT"
UNIT_TYPE_LENDING_POOL = "LENDING_POOL"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

# ERC20-style default precision for fungible tokens.
DEFAULT_TOKEN_DECIMALS = 18

DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_HALF_EVEN,
    UNIT_TYPE_RECEIPT: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (allowance tables, pool bookkeeping, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Every protocol operation receives a LedgerView, reads what it needs,
    and returns a PendingTransaction describing the change. Functions
    accepting a LedgerView parameter declare their read-only intent.

    The Ledger class implements this protocol but also provides mutation
    methods. For testing, FakeView provides a truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balance constraints, transfer rules,
              unregistered wallets or units).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"     # Deposit, borrow, repay, redeem, liquidation
    ADMIN = "admin"                 # Reserve registration and configuration
    ORACLE = "oracle"               # Price updates
    KEEPER = "keeper"               # Interest accrual without user action
    TOKEN = "token"                 # Plain token transfers and approvals
    FLASH_LOAN = "flash_loan"       # Same-transaction loans
    SYSTEM = "system"               # Initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would cause a wallet balance to violate the unit's min/max constraints."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class LendingError(LedgerError):
    """Base exception for lending protocol failures. Raising one means nothing was applied."""
    pass


class Unauthorized(LendingError):
    """Caller lacks the capability (admin, oracle) the operation requires."""
    pass


class UnknownReserve(LendingError):
    """The asset has no registered reserve."""
    pass


class AlreadyRegistered(LendingError):
    """The asset already has a reserve."""
    pass


class ReserveInactive(LendingError):
    """The reserve is disabled for new deposits and borrows."""
    pass


class InsufficientAllowance(LendingError):
    """The token owner has not approved the spender for the requested amount."""
    pass


class TransferFailed(LendingError):
    """A token transfer could not be performed (balance too low, or the ledger rejected it)."""
    pass


class InsufficientLiquidity(LendingError):
    """The reserve does not hold enough free tokens for the operation."""
    pass


class InsufficientCollateral(LendingError):
    """Borrowing power or health factor would not cover the operation."""
    pass


class NoPosition(LendingError):
    """The user holds no deposit in the reserve."""
    pass


class NoDebt(LendingError):
    """The user has no open borrow in the reserve."""
    pass


class RepayExceedsDebt(LendingError):
    """Repayment amount is larger than the outstanding debt."""
    pass


class CollateralInUse(LendingError):
    """Disabling the collateral flag would leave the user's open borrows under-collateralized."""
    pass


class NotEligibleForLiquidation(LendingError):
    """The borrower's health factor is at or above the liquidation threshold."""
    pass


class FlashLoanNotRepaid(LendingError):
    """A flash loan receiver did not return principal plus fee."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Wallet or component that initiated the transaction
        unit_symbol: Symbol of the unit the operation targets (pool, token)
        event_type: Operation name (e.g., "DEPOSIT", "LIQUIDATION")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change, with complete before/after snapshots.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The token or receipt being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Reference of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal exponent, so that
    semantically equal intents hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, set):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on the semantic content (moves, state changes, origin,
    units to create), never on timestamps. Used for idempotency checking.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Every protocol operation returns one of these. It carries the complete
    effect of the operation (token moves, state changes, units to create),
    so the ledger can apply it atomically or not at all.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Tuple of Unit objects to register before executing moves
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state changes.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to a USER_ACTION origin)
        units_to_create: Optional tuple of Unit objects to register before executing moves

    Returns:
        A PendingTransaction ready for execution

    Example:
        old_state = view.get_unit_state("T1")
        new_state = {**old_state, "allowances": {...}}
        changes = [UnitStateChange(unit="T1", old_state=old_state, new_state=new_state)]
        return build_transaction(view, [], changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="user",
        )

    # Deep copy state changes to prevent mutation
    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction, for operations with nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.KEEPER, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def summary(self) -> str:
        """One-line description used in log records."""
        moves = ", ".join(
            f"{m.quantity} {m.unit_symbol} {m.source}->{m.dest}" for m in self.moves
        )
        units = ",".join(sc.unit for sc in self.state_changes)
        return f"{self.exec_id} {self.origin!r} moves=[{moves}] state=[{units}]"

    def __repr__(self) -> str:
        return f"Transaction({self.exec_id}, {len(self.moves)} moves, {self.origin})"


# Type alias for transfer rule functions.
# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (token, receipt token, pool) in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "T1", "aT1", "LP").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (TOKEN, RECEIPT, LENDING_POOL).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Get the unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision using quantize.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def receipt_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Receipt tokens can only be minted or burned by the protocol.

    A receipt balance is the depositor's claim on a reserve, and the pool's
    health-factor checks assume it only changes through deposit, redeem or
    liquidation. Every receipt move must therefore come from or go to the
    system wallet.

    Raises:
        TransferRuleViolation: If neither side of the move is the system wallet.
    """
    if move.source != SYSTEM_WALLET and move.dest != SYSTEM_WALLET:
        raise TransferRuleViolation(
            f"Receipt {move.unit_symbol} is not transferable: "
            f"{move.source} -> {move.dest}"
        )
