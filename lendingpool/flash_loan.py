"""
flash_loan.py - Same-Transaction Loans

A flash loan lends tokens and expects them back, plus a fee, within the
same ledger transaction. The receiver is a callback:

    receiver(view, asset, amount, fee) -> List[Move]

It sees the ledger as it was before the loan and returns the moves it makes
with the borrowed funds (trades, repayment, ...). Every one of those moves
must come out of the receiver's own wallet. The loan move and the
receiver's moves form a single PendingTransaction, so when the lender is
not repaid nothing happens at all.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Callable, List

from .core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    TransactionOrigin, OriginType,
    Unauthorized, InsufficientLiquidity, FlashLoanNotRepaid,
    build_transaction,
)
from .config import DEFAULT_FLASH_LOAN_FEE_RATE

FlashLoanReceiver = Callable[[LedgerView, str, Decimal, Decimal], List[Move]]


def calculate_flash_loan_fee(amount: Decimal, fee_rate: Decimal) -> Decimal:
    return amount * fee_rate


def compute_flash_loan(
    view: LedgerView,
    lender: str,
    receiver_wallet: str,
    asset: str,
    amount: Decimal,
    receiver: FlashLoanReceiver,
    fee_rate: Decimal = DEFAULT_FLASH_LOAN_FEE_RATE,
) -> PendingTransaction:
    """
    Build a flash loan from lender to receiver_wallet.

    Args:
        view: Read-only ledger access
        lender: Wallet providing the funds
        receiver_wallet: Wallet receiving the loan and running the callback
        asset: Token lent
        amount: Quantity lent (positive)
        receiver: Callback returning the receiver's moves
        fee_rate: Fee as a share of amount (default 5%)

    Returns:
        PendingTransaction containing the loan and the receiver's moves

    Raises:
        ValueError: If amount is not positive
        InsufficientLiquidity: If lender holds less than amount
        Unauthorized: If the receiver returns a move from another wallet
        FlashLoanNotRepaid: If the lender's net inflow is below the fee
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount <= 0:
        raise ValueError(f"flash loan amount must be positive, got {amount}")
    unit = view.get_unit(asset)
    amount = unit.round(amount)

    available = view.get_balance(lender, asset)
    if available < amount:
        raise InsufficientLiquidity(f"{lender} holds {available} {asset}, cannot lend {amount}")

    fee = unit.round(calculate_flash_loan_fee(amount, Decimal(str(fee_rate))))
    loan = Move(amount, asset, lender, receiver_wallet, f"flash_loan_{asset}")

    receiver_moves = list(receiver(view, asset, amount, fee))
    for move in receiver_moves:
        if move.source != receiver_wallet:
            raise Unauthorized(
                f"flash loan receiver {receiver_wallet} cannot move funds of {move.source}"
            )

    returned = sum(
        (m.quantity for m in receiver_moves if m.unit_symbol == asset and m.dest == lender),
        Decimal("0"),
    )
    if returned - amount < fee:
        raise FlashLoanNotRepaid(
            f"{receiver_wallet} returned {returned} {asset}, owes {amount + fee}"
        )

    # The loan counter keeps two identical loans from sharing an intent id
    old_state = view.get_unit_state(asset)
    new_state = {**old_state, 'flash_loans': old_state.get('flash_loans', 0) + 1}
    origin = TransactionOrigin(OriginType.FLASH_LOAN, receiver_wallet, asset, "FLASH_LOAN")
    return build_transaction(
        view, [loan] + receiver_moves, [UnitStateChange(asset, old_state, new_state)], origin=origin,
    )
