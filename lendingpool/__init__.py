"""
lendingpool - Collateralized Lending Pool on a Double-Entry Ledger

Users deposit tokens into shared reserves, mark deposits as collateral,
borrow against them, accrue interest, repay, and can be liquidated by third
parties once their health factor drops below 1.0.

Usage:
    from decimal import Decimal
    from lendingpool import Ledger, LendingPool, create_token, compute_mint, compute_approve

    ledger = Ledger("main")
    ledger.register_unit(create_token("T1", "Token One"))
    for wallet in ("owner", "oracle", "alice"):
        ledger.register_wallet(wallet)
    ledger.execute(compute_mint(ledger, "T1", "alice", Decimal("10000")))

    pool = LendingPool.deploy(ledger, "LP", admin="owner", oracle="oracle")
    pool.add_reserve("owner", "T1")

    ledger.execute(compute_approve(ledger, "T1", "alice", pool.wallet, Decimal("10000")))
    pool.deposit("alice", "T1", Decimal("10000"), use_as_collateral=True)
    pool.health_factor("alice")   # MAX_UINT256, no debt
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    receipt_transfer_rule,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_RECEIPT,
    UNIT_TYPE_LENDING_POOL,
    # Ledger errors
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    # Protocol errors
    LendingError,
    Unauthorized,
    UnknownReserve,
    AlreadyRegistered,
    ReserveInactive,
    InsufficientAllowance,
    TransferFailed,
    InsufficientLiquidity,
    InsufficientCollateral,
    NoPosition,
    NoDebt,
    RepayExceedsDebt,
    CollateralInUse,
    NotEligibleForLiquidation,
    FlashLoanNotRepaid,
)

# Ledger
from .ledger import Ledger

# Fixed-point math
from .wad_math import (
    WAD, RAY, MAX_UINT256,
    wad_mul, wad_div, ray_mul, ray_div, ray_pow, ray_to_wad, wad_to_ray,
    to_wad, from_wad, to_ray, from_ray,
)

# Tokens
from .tokens import (
    create_token,
    compute_mint,
    compute_approve,
    compute_transfer,
    compute_transfer_from,
    allowance,
    balance_of,
    total_supply,
)

# Configuration
from .config import (
    InterestRateStrategy,
    ReserveParameters,
    PoolConfig,
    load_config,
)

# Interest rate model
from .interest import (
    SECONDS_PER_YEAR,
    calculate_utilization,
    calculate_borrow_rate,
    calculate_liquidity_rate,
    calculate_compounded_index,
    accrue_reserve,
)

# Reserves, positions, risk
from .reserves import ReserveState, receipt_symbol, create_receipt_unit
from .positions import BorrowPosition, BorrowBalances
from .risk import (
    ReservePosition,
    UserAccountData,
    calculate_user_account_data,
    calculate_health_factor,
    available_borrow_power,
    is_liquidatable,
)

# Pool
from .pool import (
    Capability,
    PoolState,
    ReserveData,
    LendingPool,
    create_lending_pool,
    load_pool,
    compute_add_reserve,
    compute_set_price,
    compute_set_reserve_enabled,
    compute_accrue,
    compute_deposit,
    compute_borrow,
    compute_repay,
    compute_redeem,
    compute_set_use_reserve_as_collateral,
    compute_liquidation,
    compute_pool_flash_loan,
    get_number_of_reserves,
    get_reserve_data,
    calculate_user_global_data,
    get_user_borrow_balances,
    get_borrow_balances,
    balance_of_receipt_token,
    get_available_borrow_power,
)

# Flash loans
from .flash_loan import compute_flash_loan, calculate_flash_loan_fee

# Oracle
from .oracle import (
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
    compute_price_sync,
)

__version__ = "1.0.0"
