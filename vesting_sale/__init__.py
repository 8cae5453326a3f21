"""
vesting_sale - Token Sale with Deferred, Linearly-Vesting Settlement

Buyers pay a stable asset for an allocation of a sold asset, which is
claimable after a lock period and unlocks linearly over a vesting period.
Sale state and asset balances live in one double-entry Ledger, and every
sale operation is a single atomic transaction.

Usage:
    from decimal import Decimal
    from vesting_sale import (
        Ledger, Move, build_transaction, token, SYSTEM_WALLET,
        SaleConfig, VestingSale,
    )

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("VORPAL", "Vorpal"))
    ledger.register_unit(token("USDC", "USD Coin"))
    ledger.register_wallet("owner")
    ledger.register_wallet("alice")

    config = SaleConfig(
        sold_asset="VORPAL", stable_asset="USDC",
        price_per_unit=2_500_000_000_000_000,    # 0.0025 USDC per VORPAL
        sale_amount=Decimal("42000000"),
        sale_length=MONTH, lock_period=0, vesting_period=5 * MONTH,
    )
    sale = VestingSale.deploy(ledger, "SEED", "Seed Sale", config, "owner")

    # Fund custody and the buyer via SYSTEM_WALLET (proper issuance)
    ledger.execute(build_transaction(ledger, [
        Move(Decimal("42000000"), "VORPAL", SYSTEM_WALLET, sale.custody_wallet, "mint_sale"),
        Move(Decimal("1000"), "USDC", SYSTEM_WALLET, "alice", "mint_alice"),
    ]))

    sale.start_sale("owner")
    sale.buy_tokens("alice", Decimal("2.5"))    # 1000 VORPAL, vesting
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
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_VESTING_SALE,
    DEFAULT_TOKEN_DECIMALS,
    # Errors
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    SaleError,
    PhaseError,
    Unauthorized,
    SaleNotYetEnded,
    InsufficientAmount,
    TooManyRequested,
    NotEnoughUnlocked,
    StillLocked,
    SaleAllocationExceeded,
    ScheduleAlreadyExists,
    TransferFailed,
)

# Ledger
from .ledger import Ledger

# Access guard
from .access import AccessGuard, SingleAdministrator, require_administrator

# Sale phases
from .phase import SalePhase, require_phase, calculate_start, calculate_finish

# Vesting schedules
from .schedule import (
    VestingSchedule,
    PRICE_SCALE,
    MIN_PURCHASE,
    calculate_allocation,
    calculate_unlocked_amount,
    calculate_withdrawal,
    create_schedule,
    to_base_units,
    from_base_units,
)

# Settlement surface
from .sale import (
    SaleConfig,
    SaleState,
    create_vesting_sale,
    load_vesting_sale,
    sale_from_state,
    to_state_dict,
    compute_start_sale,
    compute_finish_sale,
    compute_buy_tokens,
    compute_withdraw_tokens,
    compute_withdraw_remaining,
    compute_withdraw_collected_stable_asset,
    get_schedule,
    get_unlocked_amount,
    SaleEvent,
    sale_history,
    sale_state_at,
    VestingSale,
)

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'token',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_VESTING_SALE', 'DEFAULT_TOKEN_DECIMALS',
    # Errors
    'LedgerError', 'UnitNotRegistered', 'WalletNotRegistered',
    'SaleError', 'PhaseError', 'Unauthorized', 'SaleNotYetEnded', 'InsufficientAmount',
    'TooManyRequested', 'NotEnoughUnlocked', 'StillLocked',
    'SaleAllocationExceeded', 'ScheduleAlreadyExists', 'TransferFailed',
    # Ledger
    'Ledger',
    # Access guard
    'AccessGuard', 'SingleAdministrator', 'require_administrator',
    # Phases
    'SalePhase', 'require_phase', 'calculate_start', 'calculate_finish',
    # Schedules
    'VestingSchedule', 'PRICE_SCALE', 'MIN_PURCHASE',
    'calculate_allocation', 'calculate_unlocked_amount', 'calculate_withdrawal',
    'create_schedule', 'to_base_units', 'from_base_units',
    # Sale
    'SaleConfig', 'SaleState', 'create_vesting_sale', 'load_vesting_sale', 'sale_from_state', 'to_state_dict',
    'compute_start_sale', 'compute_finish_sale', 'compute_buy_tokens',
    'compute_withdraw_tokens', 'compute_withdraw_remaining',
    'compute_withdraw_collected_stable_asset',
    'get_schedule', 'get_unlocked_amount',
    'SaleEvent', 'sale_history', 'sale_state_at', 'VestingSale',
]

__version__ = '1.0.0'
