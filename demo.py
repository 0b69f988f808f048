#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Lending Pool Step by Step

A guided walk through the lending pool. Each step builds on the previous
one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup        - Tokens, wallets, deploying a pool and its reserves
  4-6:   Lending      - Deposits, receipts, borrowing and the health factor
  7-8:   Interest     - Rates from utilization, accrual over time
  9-10:  Risk         - Price shocks and liquidation
  11:    Flash Loans  - Borrow and repay inside one transaction
  12:    Finale       - Conservation proof

Run:
    python demo.py             # Interactive mode (press Enter for each step)
    python demo.py --quick     # Run all steps without pausing
    python demo.py --verbose   # Also print the pool's log records
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
import sys

from lendingpool import (
    Ledger, LendingPool, Move,
    WAD, MAX_UINT256, SYSTEM_WALLET, from_ray,
    build_transaction, create_token, compute_mint, compute_approve,
    LendingError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    carol_liquidity: Decimal = Decimal("50000")
    bob_collateral: Decimal = Decimal("10000")
    bob_borrow: Decimal = Decimal("5000")

    crash_price: Decimal = Decimal("2")
    liquidation_cover: Decimal = Decimal("1000")
    flash_amount: Decimal = Decimal("20000")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv
VERBOSE = "--verbose" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def fmt_hf(hf: int) -> str:
    if hf == MAX_UINT256:
        return "inf (no debt)"
    return f"{Decimal(hf) / Decimal(WAD):.4f}"


def mint(ledger: Ledger, token: str, wallet: str, amount: Decimal):
    ledger.execute(compute_mint(ledger, token, wallet, amount))


def approve(ledger: Ledger, token: str, owner: str, spender: str, amount: Decimal):
    ledger.execute(compute_approve(ledger, token, owner, spender, amount))


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_tokens():
    """Create the ledger, two tokens and the participants."""
    step_header(1, "Tokens and Wallets",
        "Every balance lives in a double-entry ledger.")

    print("""
    Tokens are issued from the SYSTEM wallet, so the system balance is
    always the negative of the circulating supply.
    """)

    ledger = Ledger("tutorial", initial_time=CONFIG.start_time, verbose=VERBOSE)
    ledger.register_unit(create_token("T1", "Token One"))
    ledger.register_unit(create_token("T2", "Token Two"))
    for wallet in ("owner", "oracle", "alice", "bob", "carol", "dave"):
        ledger.register_wallet(wallet)

    mint(ledger, "T2", "carol", CONFIG.carol_liquidity)
    mint(ledger, "T1", "bob", CONFIG.bob_collateral)

    section_header("Balances")
    print(f"carol T2:  {ledger.get_balance('carol', 'T2')}")
    print(f"bob T1:    {ledger.get_balance('bob', 'T1')}")
    print(f"system T2: {ledger.get_balance(SYSTEM_WALLET, 'T2')}")
    return ledger


def step_02_deploy(ledger: Ledger):
    """Deploy the pool."""
    step_header(2, "Deploying the Pool",
        "A pool is a ledger unit with its own custody wallet.")

    pool = LendingPool.deploy(ledger, "LP", admin="owner", oracle="oracle")
    print(f"Pool unit:      {pool.symbol}")
    print(f"Custody wallet: {pool.wallet}")
    print("""
    The admin may add reserves, and only the oracle may set prices.
    """)
    return pool


def step_03_reserves(pool: LendingPool):
    step_header(3, "Adding Reserves",
        "Each reserve has its own risk parameters and receipt token.")

    pool.add_reserve("owner", "T1")
    pool.add_reserve("owner", "T2")
    data = pool.get_reserve_data("T1")
    print(f"Reserves:     {pool.get_number_of_reserves()}")
    print(f"T1 price:     {data.price}")
    print(f"T1 receipt:   {pool.ledger.get_unit('aT1').name}")

    section_header("Permission check")
    try:
        pool.add_reserve("alice", "T3")
    except LendingError as e:
        print(f"alice cannot add reserves: {type(e).__name__}: {e}")
    return pool


# ============================================================================
# PHASE 2: LENDING (Steps 4-6)
# ============================================================================

def step_04_deposits(pool: LendingPool):
    step_header(4, "Deposits and Receipts",
        "Depositors receive receipt tokens one for one.")

    ledger = pool.ledger
    approve(ledger, "T2", "carol", pool.wallet, CONFIG.carol_liquidity)
    pool.deposit("carol", "T2", CONFIG.carol_liquidity, use_as_collateral=False)
    approve(ledger, "T1", "bob", pool.wallet, CONFIG.bob_collateral)
    pool.deposit("bob", "T1", CONFIG.bob_collateral, use_as_collateral=True)

    print(f"carol aT2: {pool.balance_of_receipt_token('carol', 'T2')}")
    print(f"bob aT1:   {pool.balance_of_receipt_token('bob', 'T1')}")
    print(f"pool T2 liquidity: {pool.get_reserve_data('T2').available_liquidity}")

    section_header("Receipts are not transferable")
    gift = build_transaction(ledger, [Move(Decimal("1"), "aT1", "bob", "alice", "gift")])
    print(f"bob -> alice 1 aT1: {ledger.execute(gift).value}")
    return pool


def step_05_borrow(pool: LendingPool):
    step_header(5, "Borrowing",
        "Borrow power is collateral value times LTV, minus what is owed.")

    print(f"bob can borrow up to {pool.available_borrow_power('bob', 'T2')} T2")
    pool.borrow("bob", "T2", CONFIG.bob_borrow)
    principal_plus_fee, total, interest = pool.get_user_borrow_balances("T2", "bob")
    print(f"bob owes {principal_plus_fee} T2 (origination fee included)")
    print(f"remaining power: {pool.available_borrow_power('bob', 'T2')} T2")
    return pool


def step_06_health(pool: LendingPool):
    step_header(6, "The Health Factor",
        "HF = collateral x liquidation threshold / debt. Below 1.0 is liquidatable.")

    data = pool.calculate_user_global_data("bob")
    print(f"collateral value: {data.total_collateral_value}")
    print(f"liabilities:      {data.total_liabilities}")
    print(f"health factor:    {fmt_hf(data.health_factor)}")
    print(f"carol HF:         {fmt_hf(pool.health_factor('carol'))}")
    return pool


# ============================================================================
# PHASE 3: INTEREST (Steps 7-8)
# ============================================================================

def step_07_rates(pool: LendingPool):
    step_header(7, "Rates from Utilization",
        "The busier a reserve, the more its borrowers pay.")

    data = pool.get_reserve_data("T2")
    print(f"utilization:    {from_ray(data.utilization):.4%}")
    print(f"borrow rate:    {from_ray(data.borrow_rate):.4%}")
    print(f"liquidity rate: {from_ray(data.liquidity_rate):.4%}")
    return pool


def step_08_accrual(pool: LendingPool):
    step_header(8, "Accrual",
        "Interest compounds per second into the reserve's borrow index.")

    ledger = pool.ledger
    ledger.advance_time(ledger.current_time + timedelta(days=180))
    _, total, interest = pool.get_user_borrow_balances("T2", "bob")
    print(f"after 180 days bob owes {total:.6f} T2 ({interest:.6f} interest)")
    pool.accrue()
    print(f"borrow index checkpointed: {from_ray(pool.get_reserve_data('T2').borrow_index):.8f}")
    return pool


# ============================================================================
# PHASE 4: RISK (Steps 9-10)
# ============================================================================

def step_09_price_shock(pool: LendingPool):
    step_header(9, "A Price Shock",
        "The oracle reprices T2; bob's debt is suddenly worth twice as much.")

    pool.set_price("oracle", "T2", CONFIG.crash_price)
    print(f"bob HF after repricing: {fmt_hf(pool.health_factor('bob'))}")
    return pool


def step_10_liquidation(pool: LendingPool):
    step_header(10, "Liquidation",
        "A third party repays debt and receives collateral plus a bonus.")

    ledger = pool.ledger
    mint(ledger, "T2", "dave", CONFIG.liquidation_cover * 2)
    approve(ledger, "T2", "dave", pool.wallet, CONFIG.liquidation_cover * 2)
    pool.liquidation("dave", "T1", "T2", "bob", CONFIG.liquidation_cover)

    print(f"dave received {ledger.get_balance('dave', 'T1')} T1")
    print(f"bob aT1 left: {pool.balance_of_receipt_token('bob', 'T1')}")
    print(f"bob HF now:   {fmt_hf(pool.health_factor('bob'))}")
    return pool


# ============================================================================
# PHASE 5: FLASH LOANS AND FINALE (Steps 11-12)
# ============================================================================

def step_11_flash_loan(pool: LendingPool):
    step_header(11, "Flash Loans",
        "Borrow without collateral, as long as it comes back in the same transaction.")

    ledger = pool.ledger
    mint(ledger, "T2", "alice", CONFIG.flash_amount * Decimal("0.1"))

    def arbitrage(view, asset, amount, fee):
        return [Move(amount + fee, asset, "alice", pool.wallet, "flash_repay")]

    before = pool.get_reserve_data("T2").available_liquidity
    result = pool.flash_loan("alice", "T2", CONFIG.flash_amount, arbitrage)
    after = pool.get_reserve_data("T2").available_liquidity
    print(f"flash loan {result.value}: liquidity {before} -> {after}")

    def runaway(view, asset, amount, fee):
        return []

    try:
        pool.flash_loan("alice", "T2", CONFIG.flash_amount, runaway)
    except LendingError as e:
        print(f"unrepaid loan refused: {type(e).__name__}")
    return pool


def step_12_conservation(pool: LendingPool):
    step_header(12, "Conservation",
        "Every token and receipt still sums to zero across all wallets.")

    report = pool.ledger.verify_double_entry(
        {unit: Decimal("0") for unit in pool.ledger.list_units()}
    )
    for unit, supply in sorted(report['supplies'].items()):
        print(f"{unit:>4}: {supply}")
    print(f"\nvalid: {report['valid']}")


def main():
    """Run the complete tutorial."""
    if VERBOSE:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 70)
    print("       LENDING POOL - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger = step_01_tokens()
    wait_for_enter()
    pool = step_02_deploy(ledger)
    wait_for_enter()
    step_03_reserves(pool)
    wait_for_enter()

    step_04_deposits(pool)
    wait_for_enter()
    step_05_borrow(pool)
    wait_for_enter()
    step_06_health(pool)
    wait_for_enter()

    step_07_rates(pool)
    wait_for_enter()
    step_08_accrual(pool)
    wait_for_enter()

    step_09_price_shock(pool)
    wait_for_enter()
    step_10_liquidation(pool)
    wait_for_enter()

    step_11_flash_loan(pool)
    wait_for_enter()
    step_12_conservation(pool)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - Run tests: pytest tests/
      - Tune reserve parameters with a YAML file and load_config()
    """)


if __name__ == "__main__":
    main()
