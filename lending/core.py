"""
Core types for the lending pool accounting system.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point divisors, time units, integer bounds
2. Exceptions: LendingError and domain-specific error types
3. Immutable records: Transfer, PendingTransfer, Transaction
4. Protocols: TokenLedger (fund movement) and PriceQuoter (exchange pool state)

Amounts are plain ints bounded to the unsigned 128-bit range. Times are
datetime values and are always passed in explicitly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
import hashlib
from typing import Any, Mapping, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved account for token issuance. Exempt from balance validation.
SYSTEM_ACCOUNT = "system"

# Scale applied to reward_per_share so that per-share rewards keep precision.
SHARE_DIVISOR = 1_000_000_000_000

# Interest rates are annual, in basis points (2000 = 20%).
BPS_DIVISOR = 10_000

# Exchange pool fees are expressed against this divisor (30 = 0.3%).
FEE_DIVISOR = 10_000

# Risk percentages (borrow limit, liquidation threshold, ...) are out of 100.
PERCENT_DIVISOR = 100

SECONDS_PER_DAY = 86_400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

# Quotes older than this are rejected for valuation.
QUOTE_MAX_AGE = timedelta(seconds=600)

# Balances live in u128; products are widened to u256 before dividing.
U128_MAX = 2**128 - 1
U256_MAX = 2**256 - 1

# Default economic parameters for collateral-backed pools.
MAX_BORROW_RATE = 50
LIQUIDATE_THRESHOLD = 65
LIQUIDATOR_INCENTIVE = 5
MAX_LIQUIDATE_RATE = 50


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transfer execution attempt.

    APPLIED: Transfer was validated and applied to the ledger.
    ALREADY_APPLIED: Intent was previously processed (idempotent behavior).
    REJECTED: Transfer failed validation (funds, registration, frozen account).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class TransferType(Enum):
    """Operation requested by a transfer-with-message envelope."""
    DEPOSIT = "Deposit"
    REPAY = "Repay"
    MORTGAGE = "Mortgage"
    LIQUIDATE = "Liquidate"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-related errors."""
    pass


class InvalidAmount(LendingError, ValueError):
    """Raised when an amount is zero, negative, or not an integer."""
    pass


class PoolNotFound(LendingError):
    """Raised when a pool id does not exist."""
    pass


class PoolMismatch(LendingError):
    """Raised when an envelope names a pool that differs from the derived one."""
    pass


class NoBorrower(LendingError):
    """Raised when an account has no loan in the pool."""
    pass


class NoLenderPosition(LendingError):
    """Raised when an account has no lender position in the pool."""
    pass


class InsufficientLiquidity(LendingError):
    """Raised when a borrow exceeds the pool's available liquidity."""
    pass


class RepaymentBelowInterest(LendingError):
    """Raised when a repayment does not cover the accrued interest."""
    pass


class WithdrawalExceedsShare(LendingError):
    """Raised when a lender withdraws more than their share."""
    pass


class BorrowLimitExceeded(LendingError):
    """Raised when the projected debt exceeds the collateral's borrow limit."""
    pass


class CollateralNotSupported(LendingError):
    """Raised when collateral is posted to a pool without a collateral token."""
    pass


class InsufficientCollateral(LendingError):
    """Raised when more collateral is withdrawn than the loan holds."""
    pass


class StalePriceData(LendingError):
    """Raised when a quoted pool state is older than the allowed window."""
    pass


class MalformedQuoteResponse(LendingError):
    """Raised when a quoting service response cannot be interpreted."""
    pass


class PayoutFailed(LendingError):
    """Raised when the ledger did not apply a payout."""
    pass


class PayoutPending(LendingError):
    """Raised when an account already has a payout in flight in the pool."""
    pass


class MathError(LendingError):
    """Base class for guarded arithmetic faults."""
    pass


class AmountOverflow(MathError):
    """Raised when a result leaves the unsigned 128-bit range."""
    pass


class DivisionByZero(MathError):
    """Raised when a guarded division has a zero divisor."""
    pass


class InsufficientFunds(LendingError):
    """Raised when a transfer would take an account balance below zero."""
    pass


class TokenNotRegistered(LendingError):
    """Raised when operating on a token unknown to the ledger."""
    pass


class AccountNotRegistered(LendingError):
    """Raised when operating on an account unknown to the ledger."""
    pass


# ============================================================================
# TRANSFER RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single movement of a fungible token between two accounts.

    Attributes:
        token: Token identifier (e.g., "usdc.token").
        sender: Account debited.
        receiver: Account credited.
        amount: Positive integer amount in the token's smallest unit.
        memo: Optional free text carried with the transfer.
    """
    token: str
    sender: str
    receiver: str
    amount: int
    memo: Optional[str] = None

    def __post_init__(self):
        if not self.token or not self.token.strip():
            raise ValueError("Transfer token cannot be empty")
        if not self.sender or not self.sender.strip():
            raise ValueError("Transfer sender cannot be empty")
        if not self.receiver or not self.receiver.strip():
            raise ValueError("Transfer receiver cannot be empty")
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"Transfer amount must be int, got {type(self.amount)}")
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")
        if self.amount > U128_MAX:
            raise ValueError("Transfer amount exceeds u128")
        if self.sender == self.receiver:
            raise ValueError("Sender and receiver must be different")

    def __repr__(self) -> str:
        return f"Transfer({self.amount} {self.token}: {self.sender}->{self.receiver})"


def _compute_intent_id(transfers: Tuple[Transfer, ...]) -> str:
    """
    Deterministic content hash of a set of transfers.

    Used for idempotency: the same intent is never applied twice. Callers that
    legitimately repeat an identical transfer must make the memo unique.
    """
    parts = [
        f"{t.token}|{t.sender}|{t.receiver}|{t.amount}|{t.memo or ''}"
        for t in sorted(transfers, key=lambda t: (t.token, t.sender, t.receiver, t.amount, t.memo or ""))
    ]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransfer:
    """
    A transfer intent before execution.

    Attributes:
        transfers: Tuple of token movements applied atomically.
        timestamp: When the intent was created.
        intent_id: Content hash (auto-computed) used for idempotency.
    """
    transfers: Tuple[Transfer, ...]
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(self.transfers))

    def is_empty(self) -> bool:
        return not self.transfers


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of applied transfers.

    Attributes:
        transfers: The token movements that were applied.
        timestamp: When the PendingTransfer was created.
        intent_id: Content hash from the PendingTransfer.
        exec_id: Unique execution identifier.
        ledger_name: Name of the executing ledger.
        sequence_number: Monotonic sequence within the ledger.
    """
    transfers: Tuple[Transfer, ...]
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    sequence_number: int

    def __post_init__(self):
        if not self.transfers:
            raise ValueError("Transaction must have transfers")


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class TokenLedger(Protocol):
    """
    Interface to the service that moves fungible tokens between accounts.

    transfer() never raises for business failures; it reports them through
    ExecuteResult so that callers can decide whether to finalize bookkeeping.
    """

    def transfer(
        self,
        token: str,
        sender: str,
        receiver: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> ExecuteResult:
        """Move amount of token from sender to receiver."""
        ...


@runtime_checkable
class PriceQuoter(Protocol):
    """
    Read-only interface to an exchange that reports pool balances and fees.

    Used purely for valuation, never for execution. The response is a raw
    mapping; see quotes.parse_pool_state for the accepted shape.
    """

    def get_pool_state(self, pool_ref: str) -> Mapping[str, Any]:
        """Return a snapshot of the exchange pool identified by pool_ref."""
        ...
