"""
pool.py - Lending Pool Orchestrator

Every user action enters here. An operation loads the pool, accrues
interest on the reserves, asks the risk engine to validate, and returns one
PendingTransaction carrying all token moves and state changes. The ledger
applies it atomically, so an operation either happens completely or not at
all.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. ADAPTERS: load_pool() / to_state_dict()
   - PoolState is the typed, frozen view of the pool unit's state

2. OPERATIONS (compute_*):
   - Take (view, pool_symbol, caller, ...) and return a PendingTransaction
   - Raise a LendingError subclass (or ValueError for bad arguments) and
     return nothing when a check fails

3. READERS:
   - calculate_user_global_data, get_user_borrow_balances, get_reserve_data, ...
   - Accrue in memory to the view's current time; never mutate

4. FACADE: LendingPool
   - Binds a Ledger and a pool symbol, executes intents under a lock

Pool unit state:
    admin, oracle        capability holders
    wallet               wallet custodying all reserve liquidity
    nonce                bumped by every operation
    flash_loan_fee_rate  fee charged on pool flash loans
    reserves             {asset: reserve dict}          (see reserves.py)
    collateral           {user: {asset: bool}}
    borrows              {user: {asset: position dict}} (see positions.py)

Per user and reserve the lifecycle is:

    NoPosition -> Deposited -> CollateralActive -> Borrowing
    Borrowing -> Deposited (repaid) | Borrowing (partial liquidation)
    Deposited -> NoPosition (redeem all)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import PoolConfig, ReserveParameters, DEFAULT_FLASH_LOAN_FEE_RATE
from .core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, ExecuteResult,
    SYSTEM_WALLET, UNIT_TYPE_LENDING_POOL, DEFAULT_TOKEN_DECIMALS,
    LendingError, Unauthorized, UnknownReserve, AlreadyRegistered, ReserveInactive,
    TransferFailed, InsufficientLiquidity, InsufficientCollateral, NoPosition,
    NoDebt, RepayExceedsDebt, CollateralInUse, NotEligibleForLiquidation,
    build_transaction, empty_pending_transaction, ledger_decimal_context, _freeze_state,
)
from .flash_loan import compute_flash_loan
from .interest import (
    accrue_reserve, calculate_utilization, calculate_borrow_rate, calculate_liquidity_rate,
)
from .positions import (
    BorrowBalances, BorrowPosition, ZERO_BALANCES,
    position_from_dict, position_to_dict,
    calculate_origination_fee, calculate_current_debt, record_borrow,
    split_repayment, apply_repayment, apply_liquidation_cover,
)
from .reserves import (
    ReserveState, new_reserve, reserve_from_dict, reserve_to_dict, create_receipt_unit,
)
from .risk import (
    ReservePosition, UserAccountData, calculate_user_account_data, available_borrow_power,
)
from .tokens import pull_from
from .wad_math import WAD

logger = logging.getLogger(__name__)


class Capability(Enum):
    """Privileged roles checked at the top of restricted operations."""
    ADMIN = "admin"
    ORACLE = "oracle"


# ============================================================================
# POOL STATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolState:
    """Immutable snapshot of a lending pool."""
    admin: str
    oracle: str
    wallet: str
    nonce: int
    flash_loan_fee_rate: Decimal
    reserves: Mapping[str, ReserveState]
    collateral: Mapping[str, Mapping[str, bool]]
    borrows: Mapping[str, Mapping[str, BorrowPosition]]

    def holder(self, capability: Capability) -> str:
        return self.admin if capability is Capability.ADMIN else self.oracle


def create_lending_pool(
    symbol: str,
    name: str,
    admin: str,
    oracle: str,
    wallet: str,
    flash_loan_fee_rate: Decimal = DEFAULT_FLASH_LOAN_FEE_RATE,
) -> Unit:
    """
    Create the unit holding a lending pool's state.

    The pool unit itself is never held by any wallet; its max_balance of
    zero rejects any move of it.

    Args:
        symbol: Pool unit symbol
        name: Human-readable name
        admin: Wallet allowed to add and configure reserves
        oracle: Wallet allowed to set prices
        wallet: Wallet custodying all reserve liquidity
        flash_loan_fee_rate: Fee charged on flash loans served by the pool
    """
    state = {
        'admin': admin,
        'oracle': oracle,
        'wallet': wallet,
        'nonce': 0,
        'flash_loan_fee_rate': Decimal(str(flash_loan_fee_rate)),
        'reserves': {},
        'collateral': {},
        'borrows': {},
    }
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_LENDING_POOL,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=None,
        _frozen_state=_freeze_state(state),
    )


def load_pool(view: LedgerView, pool: str) -> PoolState:
    """Load a lending pool from ledger state as a frozen PoolState."""
    raw = view.get_unit_state(pool)
    return PoolState(
        admin=raw['admin'],
        oracle=raw['oracle'],
        wallet=raw['wallet'],
        nonce=raw.get('nonce', 0),
        flash_loan_fee_rate=raw.get('flash_loan_fee_rate', DEFAULT_FLASH_LOAN_FEE_RATE),
        reserves={a: reserve_from_dict(r) for a, r in raw.get('reserves', {}).items()},
        collateral={u: dict(flags) for u, flags in raw.get('collateral', {}).items()},
        borrows={
            u: {a: position_from_dict(p) for a, p in per_asset.items()}
            for u, per_asset in raw.get('borrows', {}).items()
        },
    )


def to_state_dict(state: PoolState) -> Dict[str, Any]:
    """Inverse of load_pool(). Empty user entries are dropped."""
    return {
        'admin': state.admin,
        'oracle': state.oracle,
        'wallet': state.wallet,
        'nonce': state.nonce,
        'flash_loan_fee_rate': state.flash_loan_fee_rate,
        'reserves': {a: reserve_to_dict(r) for a, r in state.reserves.items()},
        'collateral': {u: dict(flags) for u, flags in state.collateral.items() if flags},
        'borrows': {
            u: {a: position_to_dict(p) for a, p in per_asset.items()}
            for u, per_asset in state.borrows.items() if per_asset
        },
    }


# ============================================================================
# INTERNAL HELPERS
# ============================================================================

def _require(state: PoolState, caller: str, capability: Capability) -> None:
    if caller != state.holder(capability):
        raise Unauthorized(f"{caller} lacks {capability.value} capability")


def _get_reserve(reserves: Mapping[str, ReserveState], asset: str) -> ReserveState:
    try:
        return reserves[asset]
    except KeyError:
        raise UnknownReserve(f"No reserve for {asset}") from None


def _positive(name: str, amount) -> Decimal:
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount <= 0:
        raise ValueError(f"{name} must be positive, got {amount}")
    return amount


def _round_fn(view: LedgerView, asset: str) -> Callable[[Decimal], Decimal]:
    return view.get_unit(asset).round


def _available(view: LedgerView, state: PoolState, asset: str) -> Decimal:
    return view.get_balance(state.wallet, asset)


def _accrue_all(view: LedgerView, state: PoolState) -> Dict[str, ReserveState]:
    """Every reserve brought up to the view's current time."""
    now = view.current_time
    return {
        asset: accrue_reserve(reserve, _available(view, state, asset), now)
        for asset, reserve in state.reserves.items()
    }


def _deposit_of(view: LedgerView, user: str, reserve: ReserveState) -> Decimal:
    if user not in view.list_wallets():
        return Decimal("0")
    return view.get_balance(user, reserve.receipt)


def _user_positions(
    view: LedgerView,
    state: PoolState,
    reserves: Mapping[str, ReserveState],
    user: str,
) -> Dict[str, ReservePosition]:
    flags = state.collateral.get(user, {})
    borrows = state.borrows.get(user, {})
    positions = {}
    for asset, reserve in reserves.items():
        positions[asset] = ReservePosition(
            reserve=reserve,
            deposit=_deposit_of(view, user, reserve),
            use_as_collateral=flags.get(asset, False),
            debt=calculate_current_debt(
                borrows.get(asset), reserve.borrow_index, _round_fn(view, asset),
            ),
        )
    return positions


def _account(positions: Mapping[str, ReservePosition]) -> UserAccountData:
    return calculate_user_account_data(positions.values())


def _copy_collateral(state: PoolState) -> Dict[str, Dict[str, bool]]:
    return {u: dict(flags) for u, flags in state.collateral.items()}


def _copy_borrows(state: PoolState) -> Dict[str, Dict[str, BorrowPosition]]:
    return {u: dict(per_asset) for u, per_asset in state.borrows.items()}


def _origin(origin_type: OriginType, caller: str, pool: str, event: str) -> TransactionOrigin:
    return TransactionOrigin(origin_type, caller, pool, event)


def _commit(
    view: LedgerView,
    pool: str,
    old_raw: Dict[str, Any],
    new_state: PoolState,
    moves: List[Move],
    origin: TransactionOrigin,
    token_changes: Optional[List[UnitStateChange]] = None,
    units_to_create: Optional[Tuple[Unit, ...]] = None,
) -> PendingTransaction:
    """Bump the nonce and package the new pool state with moves and token changes."""
    new_state = replace(new_state, nonce=new_state.nonce + 1)
    changes = [UnitStateChange(pool, old_raw, to_state_dict(new_state))]
    changes.extend(token_changes or [])
    return build_transaction(view, moves, changes, origin=origin, units_to_create=units_to_create)


def _debit_borrows(reserve: ReserveState, paid: Decimal, principal_paid: Decimal, fee_paid: Decimal) -> ReserveState:
    zero = Decimal("0")
    return replace(
        reserve,
        total_borrows=max(reserve.total_borrows - paid, zero),
        total_principal_borrowed=max(reserve.total_principal_borrowed - principal_paid, zero),
        total_fees=max(reserve.total_fees - fee_paid, zero),
    )


def _set_position(
    borrows: Dict[str, Dict[str, BorrowPosition]],
    user: str,
    asset: str,
    position: Optional[BorrowPosition],
) -> None:
    per_asset = borrows.setdefault(user, {})
    if position is None:
        per_asset.pop(asset, None)
    else:
        per_asset[asset] = position


# ============================================================================
# RESERVE REGISTRY OPERATIONS
# ============================================================================

def compute_add_reserve(
    view: LedgerView,
    pool: str,
    caller: str,
    asset: str,
    params: Optional[ReserveParameters] = None,
) -> PendingTransaction:
    """
    Register a reserve for an asset and create its receipt token.

    The new reserve starts enabled, priced at 1, with empty aggregates and
    the borrow index at its baseline.

    Raises:
        Unauthorized: If caller is not the admin
        AlreadyRegistered: If the asset already has a reserve
    """
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    _require(state, caller, Capability.ADMIN)
    if asset in state.reserves:
        raise AlreadyRegistered(f"Reserve {asset} already registered")

    decimals = view.get_unit(asset).decimal_places
    if decimals is None:
        decimals = DEFAULT_TOKEN_DECIMALS
    reserve = new_reserve(asset, params or ReserveParameters(), view.current_time, decimals)
    reserves = {**state.reserves, asset: reserve}

    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves), [],
        _origin(OriginType.ADMIN, caller, pool, "ADD_RESERVE"),
        units_to_create=(create_receipt_unit(asset, decimals),),
    )


def compute_set_price(
    view: LedgerView,
    pool: str,
    caller: str,
    asset: str,
    price: Decimal,
) -> PendingTransaction:
    """
    Set the reference price of a reserve's asset. Last write wins.

    Raises:
        Unauthorized: If caller is not the oracle
        UnknownReserve: If the asset has no reserve
        ValueError: If price is not positive
    """
    price = _positive("price", price)
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    _require(state, caller, Capability.ORACLE)
    reserve = _get_reserve(state.reserves, asset)
    reserves = {**state.reserves, asset: replace(reserve, price=price)}
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves), [],
        _origin(OriginType.ORACLE, caller, pool, "SET_PRICE"),
    )


def compute_set_reserve_enabled(
    view: LedgerView,
    pool: str,
    caller: str,
    asset: str,
    enabled: bool,
) -> PendingTransaction:
    """
    Enable or disable a reserve.

    A disabled reserve refuses deposits and borrows but still accepts
    repayment, redemption and liquidation.

    Raises:
        Unauthorized: If caller is not the admin
        UnknownReserve: If the asset has no reserve
    """
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    _require(state, caller, Capability.ADMIN)
    reserves = _accrue_all(view, state)
    reserve = _get_reserve(reserves, asset)
    reserves[asset] = replace(reserve, enabled=bool(enabled))
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves), [],
        _origin(OriginType.ADMIN, caller, pool, "ENABLE_RESERVE" if enabled else "DISABLE_RESERVE"),
    )


def compute_accrue(view: LedgerView, pool: str, asset: Optional[str] = None) -> PendingTransaction:
    """
    Checkpoint interest on one reserve (or all) without any user action.

    Returns an empty transaction when nothing changes, so accruing twice at
    the same time is the same as accruing once.

    Raises:
        UnknownReserve: If asset is given and has no reserve
    """
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    if asset is not None:
        reserve = _get_reserve(state.reserves, asset)
        accrued = {asset: accrue_reserve(reserve, _available(view, state, asset), view.current_time)}
    else:
        accrued = _accrue_all(view, state)

    changed = {a: r for a, r in accrued.items() if r != state.reserves[a]}
    if not changed:
        return empty_pending_transaction(view)
    reserves = {**state.reserves, **changed}
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves), [],
        _origin(OriginType.KEEPER, "keeper", pool, "ACCRUE"),
    )


# ============================================================================
# USER OPERATIONS
# ============================================================================

def compute_deposit(
    view: LedgerView,
    pool: str,
    user: str,
    asset: str,
    amount: Decimal,
    use_as_collateral: bool = True,
) -> PendingTransaction:
    """
    Deposit tokens into a reserve and mint the same amount of receipt tokens.

    The pool wallet pulls the tokens using the allowance the user granted it.
    use_as_collateral=True marks the reserve as collateral; False leaves an
    existing flag untouched (disabling goes through
    compute_set_use_reserve_as_collateral so the health check applies).

    Raises:
        ValueError: If amount is not positive
        UnknownReserve: If the asset has no reserve
        ReserveInactive: If the reserve is disabled
        InsufficientAllowance: If the pool is not approved for amount
        TransferFailed: If the user's balance is short
    """
    amount = _positive("amount", amount)
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    reserve = _get_reserve(reserves, asset)
    if not reserve.enabled:
        raise ReserveInactive(f"Reserve {asset} is disabled")
    amount = _round_fn(view, asset)(amount)
    if amount <= 0:
        raise ValueError("amount rounds to zero")

    pull, token_state = pull_from(
        view, asset, user, state.wallet, state.wallet, amount, f"deposit_{pool}_{asset}",
    )
    moves = [
        pull,
        Move(amount, reserve.receipt, SYSTEM_WALLET, user, f"deposit_{pool}_{asset}"),
    ]

    collateral = _copy_collateral(state)
    flags = collateral.setdefault(user, {})
    if use_as_collateral:
        flags[asset] = True
    else:
        flags.setdefault(asset, False)

    new_state = replace(state, reserves=reserves, collateral=collateral)
    token_change = UnitStateChange(asset, view.get_unit_state(asset), token_state)
    return _commit(
        view, pool, old_raw, new_state, moves,
        _origin(OriginType.USER_ACTION, user, pool, "DEPOSIT"),
        token_changes=[token_change],
    )


def compute_borrow(
    view: LedgerView,
    pool: str,
    user: str,
    asset: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Borrow from a reserve against the user's collateral.

    The origination fee is added to the debt; the user receives amount.
    The borrowed value including the fee must fit in the remaining
    borrowing power.

    Raises:
        ValueError: If amount is not positive
        UnknownReserve: If the asset has no reserve
        ReserveInactive: If the reserve is disabled
        InsufficientLiquidity: If the pool holds less than amount
        InsufficientCollateral: If borrowing power does not cover amount + fee
    """
    amount = _positive("amount", amount)
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    reserve = _get_reserve(reserves, asset)
    if not reserve.enabled:
        raise ReserveInactive(f"Reserve {asset} is disabled")
    round_fn = _round_fn(view, asset)
    amount = round_fn(amount)
    if amount <= 0:
        raise ValueError("amount rounds to zero")

    available = _available(view, state, asset)
    if amount > available:
        raise InsufficientLiquidity(
            f"Not enough liquidity in {asset}: {available} available, {amount} requested"
        )

    fee = calculate_origination_fee(amount, reserve.params.origination_fee_rate, round_fn)
    account = _account(_user_positions(view, state, reserves, user))
    power = available_borrow_power(account, reserve.price)
    if amount + fee > power:
        raise InsufficientCollateral(
            f"Not enough collateral to borrow {amount} {asset} (+{fee} fee): power {power}"
        )

    borrows = _copy_borrows(state)
    current = borrows.get(user, {}).get(asset)
    position = record_borrow(current, amount, fee, reserve.borrow_index, view.current_time, round_fn)
    _set_position(borrows, user, asset, position)

    reserves[asset] = replace(
        reserve,
        total_borrows=reserve.total_borrows + amount + fee,
        total_principal_borrowed=reserve.total_principal_borrowed + amount,
        total_fees=reserve.total_fees + fee,
    )

    moves = [Move(amount, asset, state.wallet, user, f"borrow_{pool}_{asset}")]
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves, borrows=borrows), moves,
        _origin(OriginType.USER_ACTION, user, pool, "BORROW"),
    )


def compute_repay(
    view: LedgerView,
    pool: str,
    caller: str,
    asset: str,
    amount: Optional[Decimal] = None,
    on_behalf_of: Optional[str] = None,
) -> PendingTransaction:
    """
    Repay debt in a reserve, for the caller or on behalf of another user.

    Payment goes to interest first, then the origination fee, then
    principal. The tokens are pulled from the caller.

    Args:
        amount: Amount to repay, None for the whole debt
        on_behalf_of: Borrower whose debt is repaid (default: caller)

    Raises:
        UnknownReserve: If the asset has no reserve
        NoDebt: If the borrower owes nothing in this reserve
        RepayExceedsDebt: If amount is larger than the debt
        InsufficientAllowance / TransferFailed: If the caller cannot pay
    """
    borrower = on_behalf_of or caller
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    reserve = _get_reserve(reserves, asset)

    round_fn = _round_fn(view, asset)
    position = state.borrows.get(borrower, {}).get(asset)
    balances = calculate_current_debt(position, reserve.borrow_index, round_fn)
    if balances.total <= 0:
        raise NoDebt(f"{borrower} has no debt in {asset}")

    if amount is None:
        amount = balances.total
    amount = round_fn(_positive("amount", amount))
    if amount <= 0:
        raise ValueError("amount rounds to zero")
    if amount > balances.total:
        raise RepayExceedsDebt(f"repayment {amount} exceeds debt {balances.total}")

    interest_paid, fee_paid, principal_paid = split_repayment(balances, amount)
    borrows = _copy_borrows(state)
    _set_position(borrows, borrower, asset,
                  apply_repayment(balances, amount, reserve.borrow_index, view.current_time))
    reserves[asset] = _debit_borrows(reserve, amount, principal_paid, fee_paid)

    pull, token_state = pull_from(
        view, asset, caller, state.wallet, state.wallet, amount, f"repay_{pool}_{asset}",
    )
    token_change = UnitStateChange(asset, view.get_unit_state(asset), token_state)
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves, borrows=borrows), [pull],
        _origin(OriginType.USER_ACTION, caller, pool, "REPAY"),
        token_changes=[token_change],
    )


def compute_redeem(
    view: LedgerView,
    pool: str,
    user: str,
    asset: str,
    amount: Optional[Decimal] = None,
) -> PendingTransaction:
    """
    Burn receipt tokens and return the underlying deposit.

    Args:
        amount: Amount to redeem, None to redeem everything

    Raises:
        UnknownReserve: If the asset has no reserve
        NoPosition: If the user has nothing deposited
        ValueError: If amount is not positive or exceeds the deposit
        InsufficientCollateral: If the withdrawal would drop the health factor
            below 1.0 while borrows are open
        InsufficientLiquidity: If the pool cannot pay out the amount now
    """
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    reserve = _get_reserve(reserves, asset)

    positions = _user_positions(view, state, reserves, user)
    deposit = positions[asset].deposit
    if deposit <= 0:
        raise NoPosition(f"{user} has no deposit in {asset}")
    if amount is None:
        amount = deposit
    amount = _round_fn(view, asset)(_positive("amount", amount))
    if amount <= 0:
        raise ValueError("amount rounds to zero")
    if amount > deposit:
        raise ValueError(f"redeem amount {amount} exceeds deposit {deposit}")

    if positions[asset].use_as_collateral:
        after = dict(positions)
        after[asset] = replace(positions[asset], deposit=deposit - amount)
        account = _account(after)
        if account.total_liabilities > 0 and account.health_factor < WAD:
            raise InsufficientCollateral(
                f"Redeeming {amount} {asset} would leave {user} under-collateralized"
            )

    available = _available(view, state, asset)
    if amount > available:
        raise InsufficientLiquidity(f"Only {available} {asset} available to redeem")

    collateral = _copy_collateral(state)
    if amount == deposit:
        collateral.get(user, {}).pop(asset, None)

    contract_id = f"redeem_{pool}_{asset}"
    moves = [
        Move(amount, reserve.receipt, user, SYSTEM_WALLET, contract_id),
        Move(amount, asset, state.wallet, user, contract_id),
    ]
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves, collateral=collateral), moves,
        _origin(OriginType.USER_ACTION, user, pool, "REDEEM"),
    )


def compute_set_use_reserve_as_collateral(
    view: LedgerView,
    pool: str,
    user: str,
    asset: str,
    enabled: bool,
) -> PendingTransaction:
    """
    Turn a user's collateral flag for a reserve on or off.

    The flag may be set before any deposit; an empty deposit adds no
    collateral value.

    Raises:
        UnknownReserve: If the asset has no reserve
        CollateralInUse: If disabling would drop the health factor below 1.0
            while borrows are open
    """
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    _get_reserve(reserves, asset)

    if not enabled:
        positions = _user_positions(view, state, reserves, user)
        after = dict(positions)
        after[asset] = replace(positions[asset], use_as_collateral=False)
        account = _account(after)
        if account.total_liabilities > 0 and account.health_factor < WAD:
            raise CollateralInUse(f"{asset} is backing {user}'s open borrows")

    collateral = _copy_collateral(state)
    collateral.setdefault(user, {})[asset] = bool(enabled)
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves, collateral=collateral), [],
        _origin(OriginType.USER_ACTION, user, pool, "SET_COLLATERAL"),
    )


def compute_liquidation(
    view: LedgerView,
    pool: str,
    liquidator: str,
    collateral_asset: str,
    debt_asset: str,
    borrower: str,
    debt_to_cover: Decimal,
) -> PendingTransaction:
    """
    Repay part of an unhealthy borrower's debt in exchange for collateral.

    Key Formulas:
        cover  = min(debt_to_cover, principal + interest)
        seized = cover * price(debt) / price(collateral) * (1 + bonus)
        If seized exceeds the borrower's collateral, seized is capped at the
        collateral and cover is reduced to match.
        The liquidator also pays the borrower's origination fee pro rata:
        fee_part = fee * cover / (principal + interest)

    The liquidator's payment is pulled with the allowance granted to the
    pool wallet; the seized amount is burned from the borrower's receipts
    and paid out in the underlying collateral asset. Collateral and debt may
    be the same asset.

    Raises:
        ValueError: If debt_to_cover is not positive
        UnknownReserve: If either asset has no reserve
        NotEligibleForLiquidation: If the borrower's health factor is >= 1.0
        NoDebt: If the borrower owes nothing in debt_asset
        NoPosition: If the borrower has no collateral in collateral_asset
        InsufficientLiquidity: If the pool cannot pay out the seized collateral
        InsufficientAllowance / TransferFailed: If the liquidator cannot pay
    """
    debt_to_cover = _positive("debt_to_cover", debt_to_cover)
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    col_reserve = _get_reserve(reserves, collateral_asset)
    debt_reserve = _get_reserve(reserves, debt_asset)
    round_debt = _round_fn(view, debt_asset)
    round_col = _round_fn(view, collateral_asset)

    positions = _user_positions(view, state, reserves, borrower)
    account = _account(positions)
    if account.health_factor >= WAD:
        raise NotEligibleForLiquidation(
            f"{borrower} health factor {account.health_factor} is not below {WAD}"
        )

    balances = positions[debt_asset].debt
    if balances.total <= 0:
        raise NoDebt(f"{borrower} has no debt in {debt_asset}")

    col_position = positions[collateral_asset]
    deposit = col_position.deposit
    if not col_position.use_as_collateral or deposit <= 0:
        raise NoPosition(f"{borrower} has no collateral in {collateral_asset}")

    bonus = Decimal("1") + col_reserve.params.liquidation_bonus
    cover = round_debt(min(debt_to_cover, balances.compounded))
    seized = round_col(cover * debt_reserve.price / col_reserve.price * bonus)
    if seized > deposit:
        seized = deposit
        cover = round_debt(min(
            deposit * col_reserve.price / (debt_reserve.price * bonus),
            balances.compounded,
        ))
    if cover <= 0 or seized <= 0:
        raise ValueError("liquidation amount rounds to zero")

    fee_part = round_debt(min(
        balances.origination_fee,
        balances.origination_fee * cover / balances.compounded,
    ))
    paid = cover + fee_part

    available = _available(view, state, collateral_asset)
    if collateral_asset == debt_asset:
        available += paid
    if seized > available:
        raise InsufficientLiquidity(f"Only {available} {collateral_asset} available to pay out")

    interest_paid = min(cover, balances.interest)
    borrows = _copy_borrows(state)
    _set_position(borrows, borrower, debt_asset, apply_liquidation_cover(
        balances, cover, fee_part, debt_reserve.borrow_index, view.current_time,
    ))
    reserves[debt_asset] = _debit_borrows(debt_reserve, paid, cover - interest_paid, fee_part)

    collateral = _copy_collateral(state)
    if seized == deposit:
        collateral.get(borrower, {}).pop(collateral_asset, None)

    contract_id = f"liquidation_{pool}_{borrower}"
    pull, token_state = pull_from(
        view, debt_asset, liquidator, state.wallet, state.wallet, paid, contract_id,
    )
    moves = [
        pull,
        Move(seized, col_reserve.receipt, borrower, SYSTEM_WALLET, contract_id),
        Move(seized, collateral_asset, state.wallet, liquidator, contract_id),
    ]
    token_change = UnitStateChange(debt_asset, view.get_unit_state(debt_asset), token_state)
    return _commit(
        view, pool, old_raw,
        replace(state, reserves=reserves, borrows=borrows, collateral=collateral), moves,
        _origin(OriginType.USER_ACTION, liquidator, pool, "LIQUIDATION"),
        token_changes=[token_change],
    )


def compute_pool_flash_loan(
    view: LedgerView,
    pool: str,
    receiver_wallet: str,
    asset: str,
    amount: Decimal,
    receiver: Callable[..., List[Move]],
) -> PendingTransaction:
    """
    Flash loan of a reserve's liquidity at the pool's fee rate.

    The reserve is accrued against its pre-loan liquidity in the same
    transaction as the loan. Interest earned up to now is fixed before the
    loan and its repayment change the pool wallet's balance.

    Raises:
        UnknownReserve: If asset has no reserve
        InsufficientLiquidity, Unauthorized, FlashLoanNotRepaid: see
            flash_loan.compute_flash_loan
    """
    old_raw = view.get_unit_state(pool)
    state = load_pool(view, pool)
    reserve = _get_reserve(state.reserves, asset)
    reserves = {
        **state.reserves,
        asset: accrue_reserve(reserve, _available(view, state, asset), view.current_time),
    }
    loan = compute_flash_loan(
        view, state.wallet, receiver_wallet, asset, amount, receiver, state.flash_loan_fee_rate,
    )
    return _commit(
        view, pool, old_raw, replace(state, reserves=reserves), list(loan.moves),
        loan.origin, token_changes=list(loan.state_changes),
    )


# ============================================================================
# READERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class ReserveData:
    """Public snapshot of a reserve. Rates and utilization are Ray."""
    asset: str
    enabled: bool
    price: Decimal
    available_liquidity: Decimal
    total_liquidity: Decimal
    total_borrows: Decimal
    total_principal_borrowed: Decimal
    utilization: int
    borrow_rate: int
    liquidity_rate: int
    borrow_index: int
    last_update: datetime


def get_number_of_reserves(view: LedgerView, pool: str) -> int:
    return len(view.get_unit_state(pool).get('reserves', {}))


def get_reserve_data(view: LedgerView, pool: str, asset: str) -> ReserveData:
    """Reserve figures accrued to the view's current time."""
    state = load_pool(view, pool)
    reserve = _get_reserve(state.reserves, asset)
    available = _available(view, state, asset)
    reserve = accrue_reserve(reserve, available, view.current_time)
    utilization = calculate_utilization(reserve.total_borrows, available)
    borrow_rate = calculate_borrow_rate(reserve.params.rate_strategy, utilization)
    return ReserveData(
        asset=asset,
        enabled=reserve.enabled,
        price=reserve.price,
        available_liquidity=available,
        total_liquidity=available + reserve.total_borrows,
        total_borrows=reserve.total_borrows,
        total_principal_borrowed=reserve.total_principal_borrowed,
        utilization=utilization,
        borrow_rate=borrow_rate,
        liquidity_rate=calculate_liquidity_rate(borrow_rate, utilization),
        borrow_index=reserve.borrow_index,
        last_update=reserve.last_update,
    )


def calculate_user_global_data(view: LedgerView, pool: str, user: str) -> UserAccountData:
    """Collateral, debt and health factor of a user across all reserves."""
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    return _account(_user_positions(view, state, reserves, user))


def get_user_borrow_balances(
    view: LedgerView,
    pool: str,
    asset: str,
    user: str,
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Debt of a user in one reserve.

    Returns:
        (principal + fee, principal + fee + interest, interest)
    """
    balances = get_borrow_balances(view, pool, asset, user)
    return balances.principal_plus_fee, balances.total, balances.interest


def get_borrow_balances(view: LedgerView, pool: str, asset: str, user: str) -> BorrowBalances:
    state = load_pool(view, pool)
    reserve = _get_reserve(state.reserves, asset)
    reserve = accrue_reserve(reserve, _available(view, state, asset), view.current_time)
    position = state.borrows.get(user, {}).get(asset)
    if position is None:
        return ZERO_BALANCES
    return calculate_current_debt(position, reserve.borrow_index, _round_fn(view, asset))


def balance_of_receipt_token(view: LedgerView, pool: str, user: str, asset: str) -> Decimal:
    """Deposit principal of a user in a reserve."""
    state = load_pool(view, pool)
    return _deposit_of(view, user, _get_reserve(state.reserves, asset))


def get_available_borrow_power(view: LedgerView, pool: str, user: str, asset: str) -> Decimal:
    """How much of asset the user could still borrow (fee included)."""
    state = load_pool(view, pool)
    reserves = _accrue_all(view, state)
    reserve = _get_reserve(reserves, asset)
    account = _account(_user_positions(view, state, reserves, user))
    return available_borrow_power(account, reserve.price)


def uses_as_collateral(view: LedgerView, pool: str, user: str, asset: str) -> bool:
    return bool(view.get_unit_state(pool).get('collateral', {}).get(user, {}).get(asset, False))


# ============================================================================
# FACADE
# ============================================================================

class LendingPool:
    """
    A lending pool bound to a ledger.

    Each method builds the operation's intent and executes it on the
    ledger while holding the pool lock, so checks and effects see the same
    state even when several threads share the pool.

    Example:
        ledger = Ledger("main")
        pool = LendingPool.deploy(ledger, "LP", admin="owner", oracle="oracle")
        pool.add_reserve("owner", "T1")
        pool.deposit("alice", "T1", Decimal("10000"), use_as_collateral=True)
    """

    def __init__(self, ledger, symbol: str, config: Optional[PoolConfig] = None):
        self.ledger = ledger
        self.symbol = symbol
        self.config = config or PoolConfig()
        self._lock = threading.RLock()

    @classmethod
    def deploy(
        cls,
        ledger,
        symbol: str,
        admin: str,
        oracle: str,
        config: Optional[PoolConfig] = None,
        wallet: Optional[str] = None,
    ) -> 'LendingPool':
        """
        Register a new pool unit and its custody wallet on the ledger.

        Args:
            ledger: Ledger to deploy on
            symbol: Pool unit symbol
            admin: Admin capability holder
            oracle: Oracle capability holder
            config: Pool configuration (defaults if None)
            wallet: Custody wallet id (default: "<symbol>_wallet")
        """
        config = config or PoolConfig()
        wallet = wallet or f"{symbol}_wallet"
        if not ledger.is_registered(wallet):
            ledger.register_wallet(wallet)
        ledger.register_unit(create_lending_pool(
            symbol, f"Lending pool {symbol}", admin, oracle, wallet, config.flash_loan_fee_rate,
        ))
        logger.info("Deployed lending pool %s (admin=%s, oracle=%s, wallet=%s)",
                    symbol, admin, oracle, wallet)
        return cls(ledger, symbol, config)

    @property
    def wallet(self) -> str:
        return self.ledger.get_unit_state(self.symbol)['wallet']

    def _run(self, event: str, build: Callable[[], PendingTransaction]) -> ExecuteResult:
        with self._lock, ledger_decimal_context():
            try:
                pending = build()
            except (LendingError, ValueError) as e:
                logger.warning("%s %s refused: %s", self.symbol, event, e)
                raise
            result = self.ledger.execute(pending)
            if result == ExecuteResult.REJECTED:
                logger.warning("%s %s rejected by ledger", self.symbol, event)
                raise TransferFailed(f"{event} rejected by the ledger")
            logger.info("%s %s %s", self.symbol, event, result.value)
            return result

    # Registry ---------------------------------------------------------------

    def add_reserve(self, caller: str, asset: str, params: Optional[ReserveParameters] = None) -> ExecuteResult:
        params = params or self.config.reserve_parameters(asset)
        return self._run("add_reserve", lambda: compute_add_reserve(
            self.ledger, self.symbol, caller, asset, params))

    def set_price(self, caller: str, asset: str, price: Decimal) -> ExecuteResult:
        return self._run("set_price", lambda: compute_set_price(
            self.ledger, self.symbol, caller, asset, price))

    def set_reserve_enabled(self, caller: str, asset: str, enabled: bool) -> ExecuteResult:
        return self._run("set_reserve_enabled", lambda: compute_set_reserve_enabled(
            self.ledger, self.symbol, caller, asset, enabled))

    def accrue(self, asset: Optional[str] = None) -> ExecuteResult:
        return self._run("accrue", lambda: compute_accrue(self.ledger, self.symbol, asset))

    # User operations --------------------------------------------------------

    def deposit(self, caller: str, asset: str, amount: Decimal, use_as_collateral: bool = True) -> ExecuteResult:
        return self._run("deposit", lambda: compute_deposit(
            self.ledger, self.symbol, caller, asset, amount, use_as_collateral))

    def borrow(self, caller: str, asset: str, amount: Decimal) -> ExecuteResult:
        return self._run("borrow", lambda: compute_borrow(
            self.ledger, self.symbol, caller, asset, amount))

    def repay(
        self,
        caller: str,
        asset: str,
        amount: Optional[Decimal] = None,
        on_behalf_of: Optional[str] = None,
    ) -> ExecuteResult:
        return self._run("repay", lambda: compute_repay(
            self.ledger, self.symbol, caller, asset, amount, on_behalf_of))

    def redeem(self, caller: str, asset: str, amount: Optional[Decimal] = None) -> ExecuteResult:
        return self._run("redeem", lambda: compute_redeem(
            self.ledger, self.symbol, caller, asset, amount))

    def redeem_all(self, caller: str, asset: str) -> ExecuteResult:
        return self.redeem(caller, asset, None)

    def set_use_reserve_as_collateral(self, caller: str, asset: str, enabled: bool) -> ExecuteResult:
        return self._run("set_use_reserve_as_collateral", lambda: compute_set_use_reserve_as_collateral(
            self.ledger, self.symbol, caller, asset, enabled))

    def liquidation(
        self,
        caller: str,
        collateral_asset: str,
        debt_asset: str,
        borrower: str,
        debt_to_cover: Decimal,
    ) -> ExecuteResult:
        return self._run("liquidation", lambda: compute_liquidation(
            self.ledger, self.symbol, caller, collateral_asset, debt_asset, borrower, debt_to_cover))

    def flash_loan(self, receiver_wallet: str, asset: str, amount: Decimal, receiver) -> ExecuteResult:
        """Lend pool liquidity for the duration of one transaction (see flash_loan.py)."""
        return self._run("flash_loan", lambda: compute_pool_flash_loan(
            self.ledger, self.symbol, receiver_wallet, asset, amount, receiver))

    # Readers ----------------------------------------------------------------

    def _read(self, reader, *args):
        with self._lock, ledger_decimal_context():
            return reader(self.ledger, self.symbol, *args)

    def get_number_of_reserves(self) -> int:
        return self._read(get_number_of_reserves)

    def get_reserve_data(self, asset: str) -> ReserveData:
        return self._read(get_reserve_data, asset)

    def calculate_user_global_data(self, user: str) -> UserAccountData:
        return self._read(calculate_user_global_data, user)

    def health_factor(self, user: str) -> int:
        return self.calculate_user_global_data(user).health_factor

    def get_user_borrow_balances(self, asset: str, user: str) -> Tuple[Decimal, Decimal, Decimal]:
        return self._read(get_user_borrow_balances, asset, user)

    def balance_of_receipt_token(self, user: str, asset: str) -> Decimal:
        return self._read(balance_of_receipt_token, user, asset)

    def available_borrow_power(self, user: str, asset: str) -> Decimal:
        return self._read(get_available_borrow_power, user, asset)
