"""
tokens.py - Fungible Tokens with an Allowance Model

A token is a ledger unit of type TOKEN. Balances are ordinary ledger
balances; the allowance table lives in the token's unit state:

    state['allowances'] = {owner: {spender: Decimal}}

Operations follow the usual fungible-token surface:

    approve(owner, spender, amount)        overwrite the allowance
    transfer(sender, to, amount)           move sender's own tokens
    transfer_from(owner, spender, to, amt) move owner's tokens, spending allowance

Every operation is a pure compute_* function returning a PendingTransaction.
pull_from() returns the raw pieces (move + allowance change) so the lending
pool can fold a token pull into its own transaction.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_TOKEN, DEFAULT_TOKEN_DECIMALS, SYSTEM_WALLET,
    InsufficientAllowance, TransferFailed,
    build_transaction, _freeze_state,
)


def create_token(
    symbol: str,
    name: str,
    decimal_places: int = DEFAULT_TOKEN_DECIMALS,
) -> Unit:
    """
    Create a fungible token unit.

    Balances may not go negative. The allowance table starts empty.

    Args:
        symbol: Token symbol (e.g., "T1", "DAI")
        name: Human-readable name
        decimal_places: Token precision (default 18)

    Returns:
        Unit of type TOKEN
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        max_balance=Decimal("Infinity"),
        decimal_places=decimal_places,
        transfer_rule=None,
        _frozen_state=_freeze_state({'allowances': {}}),
    )


def _as_amount(amount) -> Decimal:
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount


# ============================================================================
# READERS
# ============================================================================

def allowance(view: LedgerView, token: str, owner: str, spender: str) -> Decimal:
    """Return how much spender may still move out of owner's wallet."""
    allowances = view.get_unit_state(token).get('allowances', {})
    return allowances.get(owner, {}).get(spender, Decimal("0"))


def balance_of(view: LedgerView, token: str, wallet: str) -> Decimal:
    return view.get_balance(wallet, token)


def total_supply(view: LedgerView, token: str) -> Decimal:
    """Sum of all positive balances, i.e. tokens in circulation."""
    return sum(
        (qty for qty in view.get_positions(token).values() if qty > 0),
        Decimal("0"),
    )


# ============================================================================
# BUILDING BLOCKS
# ============================================================================

def _with_allowance(state: Dict, owner: str, spender: str, amount: Decimal) -> Dict:
    allowances = {o: dict(s) for o, s in state.get('allowances', {}).items()}
    allowances.setdefault(owner, {})[spender] = amount
    return {**state, 'allowances': allowances}


def pull_from(
    view: LedgerView,
    token: str,
    owner: str,
    spender: str,
    to: str,
    amount: Decimal,
    contract_id: str,
    state: Optional[Dict] = None,
) -> Tuple[Move, Dict]:
    """
    Build the move and the allowance update for a transfer_from.

    Args:
        view: Read-only ledger access
        token: Token symbol
        owner: Wallet whose tokens move
        spender: Wallet spending the allowance
        to: Destination wallet
        amount: Quantity to move (positive)
        contract_id: Reference recorded on the move
        state: Token state to build on, when the caller already debited the
               allowance earlier in the same transaction

    Returns:
        (move, new_token_state)

    Raises:
        InsufficientAllowance: If the allowance is below amount
        TransferFailed: If owner's balance is below amount
    """
    amount = _as_amount(amount)
    if state is None:
        state = view.get_unit_state(token)
    approved = state.get('allowances', {}).get(owner, {}).get(spender, Decimal("0"))
    if approved < amount:
        raise InsufficientAllowance(
            f"{spender} may move {approved} {token} from {owner}, needs {amount}"
        )
    balance = view.get_balance(owner, token)
    if balance < amount:
        raise TransferFailed(f"{owner} holds {balance} {token}, needs {amount}")

    move = Move(
        quantity=amount,
        unit_symbol=token,
        source=owner,
        dest=to,
        contract_id=contract_id,
    )
    return move, _with_allowance(state, owner, spender, approved - amount)


# ============================================================================
# OPERATIONS
# ============================================================================

def compute_approve(
    view: LedgerView,
    token: str,
    owner: str,
    spender: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Set the allowance of spender over owner's tokens (overwrites any previous value).

    Raises:
        ValueError: If amount is negative
    """
    amount = _as_amount(amount)
    if amount < 0:
        raise ValueError(f"allowance must be non-negative, got {amount}")
    old_state = view.get_unit_state(token)
    new_state = _with_allowance(old_state, owner, spender, amount)
    # Approvals for the same amount twice in a row must still execute
    new_state['approvals'] = old_state.get('approvals', 0) + 1
    origin = TransactionOrigin(OriginType.TOKEN, owner, token, "APPROVE")
    return build_transaction(
        view, [], [UnitStateChange(token, old_state, new_state)], origin=origin,
    )


def compute_transfer(
    view: LedgerView,
    token: str,
    sender: str,
    to: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Move sender's own tokens to another wallet.

    Raises:
        ValueError: If amount is not positive
        TransferFailed: If sender's balance is below amount
    """
    amount = _as_amount(amount)
    if amount <= 0:
        raise ValueError(f"transfer amount must be positive, got {amount}")
    balance = view.get_balance(sender, token)
    if balance < amount:
        raise TransferFailed(f"{sender} holds {balance} {token}, needs {amount}")
    old_state = view.get_unit_state(token)
    new_state = {**old_state, 'transfers': old_state.get('transfers', 0) + 1}
    moves: List[Move] = [Move(amount, token, sender, to, f"transfer_{token}")]
    origin = TransactionOrigin(OriginType.TOKEN, sender, token, "TRANSFER")
    return build_transaction(
        view, moves, [UnitStateChange(token, old_state, new_state)], origin=origin,
    )


def compute_transfer_from(
    view: LedgerView,
    token: str,
    owner: str,
    spender: str,
    to: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Move owner's tokens on behalf of spender, consuming allowance.

    Raises:
        ValueError: If amount is not positive
        InsufficientAllowance: If the allowance is below amount
        TransferFailed: If owner's balance is below amount
    """
    amount = _as_amount(amount)
    if amount <= 0:
        raise ValueError(f"transfer amount must be positive, got {amount}")
    old_state = view.get_unit_state(token)
    move, new_state = pull_from(
        view, token, owner, spender, to, amount, f"transfer_from_{token}", old_state,
    )
    new_state['transfers'] = old_state.get('transfers', 0) + 1
    origin = TransactionOrigin(OriginType.TOKEN, spender, token, "TRANSFER_FROM")
    return build_transaction(
        view, [move], [UnitStateChange(token, old_state, new_state)], origin=origin,
    )


def compute_mint(
    view: LedgerView,
    token: str,
    to: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Issue new tokens from the system wallet into a wallet.

    Raises:
        ValueError: If amount is not positive
    """
    amount = _as_amount(amount)
    if amount <= 0:
        raise ValueError(f"mint amount must be positive, got {amount}")
    old_state = view.get_unit_state(token)
    new_state = {**old_state, 'mints': old_state.get('mints', 0) + 1}
    moves = [Move(amount, token, SYSTEM_WALLET, to, f"mint_{token}")]
    origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, token, "MINT")
    return build_transaction(
        view, moves, [UnitStateChange(token, old_state, new_state)], origin=origin,
    )
