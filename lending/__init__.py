"""
lending - Lending Pool Accounting Core

Pooled lending with a reward-per-share accumulator, continuous interest,
collateral valuation from exchange quotes and two-phase payouts.

Usage:
    from datetime import datetime, timedelta
    from lending import Ledger, LendingContract, StaticQuoteSource, TransferType

    t0 = datetime(2024, 1, 1)
    ledger = Ledger("main", t0)
    ledger.register_token("usdc")
    contract = LendingContract("lending", ledger, StaticQuoteSource(), t0)
    ledger.register_account("lending", handler=contract.on_transfer)
    ledger.register_account("alice")
    ledger.mint("usdc", "alice", 1_000_000)

    pool_id = contract.create_pool("usdc", interest_rate=2000)
    ledger.transfer_call("usdc", "alice", "lending", 1_000_000,
                         contract.envelope(TransferType.DEPOSIT, pool_id))
"""

# Core types
from .core import (
    SYSTEM_ACCOUNT,
    SHARE_DIVISOR,
    BPS_DIVISOR,
    FEE_DIVISOR,
    PERCENT_DIVISOR,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    QUOTE_MAX_AGE,
    U128_MAX,
    MAX_BORROW_RATE,
    LIQUIDATE_THRESHOLD,
    LIQUIDATOR_INCENTIVE,
    MAX_LIQUIDATE_RATE,
    ExecuteResult,
    TransferType,
    Transfer,
    PendingTransfer,
    Transaction,
    TokenLedger,
    PriceQuoter,
    LendingError,
    InvalidAmount,
    PoolNotFound,
    PoolMismatch,
    NoBorrower,
    NoLenderPosition,
    InsufficientLiquidity,
    RepaymentBelowInterest,
    WithdrawalExceedsShare,
    BorrowLimitExceeded,
    CollateralNotSupported,
    InsufficientCollateral,
    StalePriceData,
    MalformedQuoteResponse,
    PayoutFailed,
    PayoutPending,
    MathError,
    AmountOverflow,
    DivisionByZero,
    InsufficientFunds,
    TokenNotRegistered,
    AccountNotRegistered,
)

# Arithmetic and interest
from .fixed_point import to_amount, checked_add, checked_sub, mul_div
from .interest import elapsed_seconds, calculate_interest, calculate_pending_interest

# Quotes and valuation
from .quotes import (
    PoolState,
    QuoteSet,
    StaticQuoteSource,
    parse_pool_state,
    check_fresh,
    fetch_quotes,
)
from .valuation import (
    RiskParameters,
    LiquidationQuote,
    calculate_amount_out,
    quote_swap,
    calculate_collateral_value,
    calculate_borrow_limit,
    check_borrowable,
    is_liquidatable,
    calculate_liquidation,
)

# Pool aggregate
from .pool import (
    LendingPool,
    LenderPosition,
    Loan,
    Payout,
    PoolSummary,
    PendingBorrow,
    PendingClaim,
    PendingWithdrawal,
    PendingCollateralWithdrawal,
    PendingLiquidation,
)

# Ledger and contract facade
from .ledger import Ledger
from .contract import LendingContract, TransferMessage, LoanHealth


__all__ = [
    # Constants
    'SYSTEM_ACCOUNT', 'SHARE_DIVISOR', 'BPS_DIVISOR', 'FEE_DIVISOR', 'PERCENT_DIVISOR',
    'SECONDS_PER_DAY', 'SECONDS_PER_YEAR', 'QUOTE_MAX_AGE', 'U128_MAX',
    'MAX_BORROW_RATE', 'LIQUIDATE_THRESHOLD', 'LIQUIDATOR_INCENTIVE', 'MAX_LIQUIDATE_RATE',
    # Core types
    'ExecuteResult', 'TransferType', 'Transfer', 'PendingTransfer', 'Transaction',
    'TokenLedger', 'PriceQuoter',
    # Exceptions
    'LendingError', 'InvalidAmount', 'PoolNotFound', 'PoolMismatch', 'NoBorrower',
    'NoLenderPosition', 'InsufficientLiquidity', 'RepaymentBelowInterest',
    'WithdrawalExceedsShare', 'BorrowLimitExceeded', 'CollateralNotSupported',
    'InsufficientCollateral', 'StalePriceData', 'MalformedQuoteResponse',
    'PayoutFailed', 'PayoutPending', 'MathError', 'AmountOverflow', 'DivisionByZero',
    'InsufficientFunds', 'TokenNotRegistered', 'AccountNotRegistered',
    # Arithmetic and interest
    'to_amount', 'checked_add', 'checked_sub', 'mul_div',
    'elapsed_seconds', 'calculate_interest', 'calculate_pending_interest',
    # Quotes
    'PoolState', 'QuoteSet', 'StaticQuoteSource', 'parse_pool_state', 'check_fresh',
    'fetch_quotes',
    # Valuation
    'RiskParameters', 'LiquidationQuote', 'calculate_amount_out', 'quote_swap',
    'calculate_collateral_value', 'calculate_borrow_limit', 'check_borrowable',
    'is_liquidatable', 'calculate_liquidation',
    # Pool
    'LendingPool', 'LenderPosition', 'Loan', 'Payout', 'PoolSummary',
    'PendingBorrow', 'PendingClaim', 'PendingWithdrawal', 'PendingCollateralWithdrawal',
    'PendingLiquidation',
    # Ledger and contract
    'Ledger', 'LendingContract', 'TransferMessage', 'LoanHealth',
]

__version__ = '1.0.0'
