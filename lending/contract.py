"""
contract.py - Lending contract facade

LendingContract owns the arena of pools and is the account that holds the
pooled tokens on the ledger. It:

    - creates pools, addressed by integer id and by (lending, collateral) pair
    - routes transfer-with-message envelopes (Deposit / Repay / Mortgage /
      Liquidate) after checking the declared pool id
    - drives two-phase operations: begin_* on the pool, payout through the
      TokenLedger, complete_* with the payout's ExecuteResult
    - fetches quotes for collateral valuation, collateral quote first
    - exposes read-only views

Envelope format (JSON, carried in the msg of a transfer_call):

    {"transfer_type": "Deposit", "pool_id": 0, "token": "wnear", "borrower_id": null}

token is the counterparty token of the pool: the collateral token for
Deposit / Repay / Liquidate (sent in the lending token), the lending token
for Mortgage (sent in the collateral token). It is omitted for pools that
take no collateral.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import json
from typing import Dict, List, Optional, Tuple

from .core import (
    PERCENT_DIVISOR,
    ExecuteResult, TransferType, TokenLedger, PriceQuoter,
    PoolNotFound, PoolMismatch, PayoutFailed, CollateralNotSupported,
    MalformedQuoteResponse,
)
from .fixed_point import mul_div
from .pool import LendingPool, LenderPosition, Loan, Payout, PoolSummary
from .quotes import QuoteSet, fetch_quotes
from .valuation import RiskParameters, calculate_borrow_limit, is_liquidatable


# ============================================================================
# ENVELOPE
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransferMessage:
    """Decoded transfer-with-message envelope."""
    transfer_type: TransferType
    pool_id: int
    token: Optional[str] = None
    borrower_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.pool_id, bool) or not isinstance(self.pool_id, int) or self.pool_id < 0:
            raise ValueError(f"pool_id must be a non-negative int, got {self.pool_id!r}")
        for name in ("token", "borrower_id"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{name} must be a string, got {value!r}")
        if self.transfer_type is TransferType.LIQUIDATE and not self.borrower_id:
            raise ValueError("Liquidate requires borrower_id")

    @classmethod
    def from_json(cls, msg: str) -> TransferMessage:
        """
        Parse an envelope.

        Raises:
            ValueError: on invalid JSON, unknown transfer_type or missing fields.
        """
        data = json.loads(msg)
        if not isinstance(data, dict):
            raise ValueError("Envelope must be a JSON object")
        try:
            transfer_type = TransferType(data['transfer_type'])
            pool_id = data['pool_id']
        except KeyError as e:
            raise ValueError(f"Envelope missing field {e.args[0]}") from None
        return cls(
            transfer_type=transfer_type,
            pool_id=pool_id,
            token=data.get('token'),
            borrower_id=data.get('borrower_id'),
        )

    def to_json(self) -> str:
        data = {'transfer_type': self.transfer_type.value, 'pool_id': self.pool_id}
        if self.token is not None:
            data['token'] = self.token
        if self.borrower_id is not None:
            data['borrower_id'] = self.borrower_id
        return json.dumps(data)


@dataclass(frozen=True, slots=True)
class LoanHealth:
    """Valuation of a borrower's position at the current quotes."""
    debt: int
    collateral_amount: int
    collateral_value: int
    borrow_limit: int
    liquidation_value: int
    liquidatable: bool


# ============================================================================
# CONTRACT
# ============================================================================

class LendingContract:
    """
    Arena of lending pools plus the orchestration around them.

    Time is the contract's logical clock; advance it with advance_time().
    Pool ids are assigned sequentially from 0.

    Example:
        contract = LendingContract("lending", ledger, quoter)
        pool_id = contract.create_pool("usdc", 2000, collateral_token="wnear",
                                       collateral_pricing_ref="ref-1")
        ledger.register_account("lending", handler=contract.on_transfer)
        ledger.transfer_call("usdc", "alice", "lending", 1_000,
                             contract.envelope(TransferType.DEPOSIT, pool_id))
    """

    def __init__(
        self,
        account_id: str,
        ledger: TokenLedger,
        quoter: Optional[PriceQuoter] = None,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        self.account_id = account_id
        self.ledger = ledger
        self.quoter = quoter
        self.pools: List[LendingPool] = []
        self._pool_by_pair: Dict[Tuple[str, Optional[str]], int] = {}
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose

    # ========================================================================
    # TIME
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"🏦 [{self.account_id}] {message}")

    # ========================================================================
    # POOL ARENA
    # ========================================================================

    def create_pool(
        self,
        lending_token: str,
        interest_rate: int,
        collateral_token: Optional[str] = None,
        base_token: Optional[str] = None,
        collateral_pricing_ref: Optional[str] = None,
        lending_pricing_ref: Optional[str] = None,
        risk: Optional[RiskParameters] = None,
    ) -> int:
        """
        Create a pool and return its id.

        Raises:
            ValueError: if a pool for the same token pair exists.
        """
        pair = (lending_token, collateral_token)
        if pair in self._pool_by_pair:
            raise ValueError(f"Pool for {pair} already exists: {self._pool_by_pair[pair]}")
        pool_id = len(self.pools)
        pool = LendingPool(
            pool_id=pool_id,
            lending_token=lending_token,
            interest_rate=interest_rate,
            created_at=self._current_time,
            collateral_token=collateral_token,
            base_token=base_token,
            collateral_pricing_ref=collateral_pricing_ref,
            lending_pricing_ref=lending_pricing_ref,
            risk=risk,
        )
        self.pools.append(pool)
        self._pool_by_pair[pair] = pool_id
        self._log(
            f"Create lending pool for token: {lending_token}"
            f"{f' against {collateral_token}' if collateral_token else ''}, pool id: {pool_id}"
        )
        return pool_id

    def pool(self, pool_id: int) -> LendingPool:
        """
        Raises:
            PoolNotFound: if pool_id is not in the arena.
        """
        if not 0 <= pool_id < len(self.pools):
            raise PoolNotFound(f"Pool {pool_id} does not exist")
        return self.pools[pool_id]

    def pool_id_for(self, lending_token: str, collateral_token: Optional[str] = None) -> int:
        try:
            return self._pool_by_pair[(lending_token, collateral_token)]
        except KeyError:
            raise PoolNotFound(f"No pool lends {lending_token} against {collateral_token}") from None

    def envelope(
        self,
        transfer_type: TransferType,
        pool_id: int,
        borrower_id: Optional[str] = None,
    ) -> str:
        """Encode the envelope a transfer_call into pool_id must carry."""
        pool = self.pool(pool_id)
        if transfer_type is TransferType.MORTGAGE:
            token = pool.lending_token
        else:
            token = pool.collateral_token
        return TransferMessage(transfer_type, pool_id, token, borrower_id).to_json()

    def _known_token(self, token: str) -> bool:
        return any(
            lending == token or collateral == token
            for lending, collateral in self._pool_by_pair
        )

    # ========================================================================
    # QUOTES AND PAYOUTS
    # ========================================================================

    def _quotes_for(self, pool: LendingPool) -> QuoteSet:
        if pool.collateral_pricing_ref is None and pool.lending_pricing_ref is None:
            return QuoteSet()
        if self.quoter is None:
            raise MalformedQuoteResponse(f"Pool {pool.pool_id} needs quotes but no quoter is set")
        return fetch_quotes(
            self.quoter,
            pool.collateral_pricing_ref,
            pool.lending_pricing_ref,
            self._current_time,
            pool.risk.quote_max_age,
        )

    def _send(self, payout: Payout) -> ExecuteResult:
        return self.ledger.transfer(
            payout.token, self.account_id, payout.receiver, payout.amount, payout.memo
        )

    # ========================================================================
    # TRANSFER-WITH-MESSAGE HANDLER
    # ========================================================================

    def on_transfer(self, token: str, sender: str, amount: int, msg: str) -> int:
        """
        Handle tokens sent to the contract with an envelope.

        Transfers of tokens no pool knows are returned in full. Envelope and
        validation errors propagate, so the sending ledger rolls the transfer
        back.

        Returns:
            Amount to refund to sender.

        Raises:
            ValueError: malformed envelope
            PoolNotFound, PoolMismatch: the envelope names the wrong pool
            LendingError: the pool rejected the operation
        """
        if not self._known_token(token):
            self._log(f"Refund {amount} {token} from {sender}: no pool for token")
            return amount

        message = TransferMessage.from_json(msg)
        if message.transfer_type is TransferType.MORTGAGE:
            if message.token is None:
                raise PoolNotFound("Mortgage must name the lending token")
            pool_id = self.pool_id_for(message.token, token)
        else:
            pool_id = self.pool_id_for(token, message.token)
        if pool_id != message.pool_id:
            raise PoolMismatch(f"Envelope names pool {message.pool_id}, transfer belongs to pool {pool_id}")
        pool = self.pool(pool_id)
        now = self._current_time

        if message.transfer_type is TransferType.DEPOSIT:
            pool.deposit(sender, amount, now)
            self._log(f"{sender} deposited {amount} {token} to pool {pool_id}")
            return 0

        if message.transfer_type is TransferType.REPAY:
            borrower = message.borrower_id or sender
            refund = pool.repay(borrower, amount, now)
            self._log(f"{sender} repaid {amount - refund} {token} to pool {pool_id} for {borrower}")
            return refund

        if message.transfer_type is TransferType.MORTGAGE:
            borrower = message.borrower_id or sender
            pool.deposit_collateral(borrower, amount, now)
            self._log(f"{sender} posted {amount} {token} collateral to pool {pool_id} for {borrower}")
            return 0

        return self._liquidate(pool, sender, message.borrower_id, amount)

    def _liquidate(self, pool: LendingPool, liquidator: str, borrower: str, deposit: int) -> int:
        now = self._current_time
        pending = pool.begin_liquidation(liquidator, borrower, deposit, now, self._quotes_for(pool))
        if pending.payout is None:
            self._log(f"{borrower} in pool {pool.pool_id} is not liquidatable, refund {deposit}")
            return pool.complete_liquidation(pending, ExecuteResult.APPLIED, now)

        result = self._send(pending.payout)
        try:
            refund = pool.complete_liquidation(pending, result, now)
        except PayoutFailed:
            self._log(f"Liquidation of {borrower} in pool {pool.pool_id} failed: {result.value}")
            return deposit
        self._log(
            f"{liquidator} liquidated {borrower} in pool {pool.pool_id}: repaid "
            f"{pending.quote.repay_amount}, seized {pending.quote.collateral_out} {pool.collateral_token}"
        )
        return refund

    # ========================================================================
    # PAYOUT OPERATIONS
    # ========================================================================

    def borrow(self, borrower: str, pool_id: int, amount: int) -> Loan:
        """
        Borrow amount of the pool's lending token.

        Raises:
            InsufficientLiquidity, BorrowLimitExceeded, StalePriceData,
            MalformedQuoteResponse, PayoutPending, PayoutFailed
        """
        pool = self.pool(pool_id)
        now = self._current_time
        pending = pool.begin_borrow(borrower, amount, now, self._quotes_for(pool))
        result = self._send(pending.payout)
        loan = pool.complete_borrow(pending, result, now)
        self._log(f"{borrower} borrowed {amount} {pool.lending_token} from pool {pool_id}")
        return loan

    def claim(self, lender: str, pool_id: int) -> int:
        """Pay out a lender's claimable reward. Returns the amount paid."""
        pool = self.pool(pool_id)
        now = self._current_time
        pending = pool.begin_claim(lender, now)
        if pending.payout is None:
            return pool.complete_claim(pending, ExecuteResult.APPLIED, now)
        result = self._send(pending.payout)
        paid = pool.complete_claim(pending, result, now)
        self._log(f"{lender} claimed {paid} {pool.lending_token} from pool {pool_id}")
        return paid

    def withdraw(self, lender: str, pool_id: int, amount: int) -> int:
        """Withdraw amount of share plus all claimable reward. Returns the amount paid."""
        pool = self.pool(pool_id)
        now = self._current_time
        pending = pool.begin_withdraw(lender, amount, now)
        if pending.payout is None:
            return pool.complete_withdraw(pending, ExecuteResult.APPLIED, now)
        result = self._send(pending.payout)
        paid = pool.complete_withdraw(pending, result, now)
        self._log(f"{lender} withdrew {paid} {pool.lending_token} from pool {pool_id}")
        return paid

    def withdraw_collateral(self, borrower: str, pool_id: int, amount: int) -> Optional[Loan]:
        """Return posted collateral, keeping the loan within its borrow limit."""
        pool = self.pool(pool_id)
        now = self._current_time
        pending = pool.begin_withdraw_collateral(borrower, amount, now, self._quotes_for(pool))
        result = self._send(pending.payout)
        loan = pool.complete_withdraw_collateral(pending, result, now)
        self._log(f"{borrower} withdrew {amount} {pool.collateral_token} collateral from pool {pool_id}")
        return loan

    # ========================================================================
    # VIEWS
    # ========================================================================

    def get_pool(self, pool_id: int) -> PoolSummary:
        return self.pool(pool_id).summary()

    def get_pools(self, from_index: int = 0, limit: Optional[int] = None) -> List[PoolSummary]:
        """
        Summaries of pools from_index onwards, at most limit of them.

        Raises:
            ValueError: if from_index or limit is negative.
        """
        if from_index < 0:
            raise ValueError(f"from_index must be non-negative, got {from_index}")
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        end = len(self.pools) if limit is None else min(len(self.pools), from_index + limit)
        return [self.pools[i].summary() for i in range(from_index, end)]

    def get_loan(self, pool_id: int, borrower: str) -> Loan:
        return self.pool(pool_id).get_loan(borrower)

    def get_lender(self, pool_id: int, lender: str) -> LenderPosition:
        return self.pool(pool_id).get_lender(lender)

    def get_amount_claimable(self, pool_id: int, lender: str) -> int:
        return self.pool(pool_id).amount_claimable(lender, self._current_time)

    def get_health(self, pool_id: int, borrower: str) -> LoanHealth:
        """
        Value a borrower's position with freshly fetched quotes.

        Raises:
            CollateralNotSupported: for pools without collateral.
        """
        pool = self.pool(pool_id)
        if pool.collateral_token is None:
            raise CollateralNotSupported(f"Pool {pool_id} takes no collateral")
        loan = pool.get_loan(borrower)
        debt = pool.debt_of(borrower, self._current_time)
        value = pool.collateral_value(loan.collateral_amount, self._quotes_for(pool))
        return LoanHealth(
            debt=debt,
            collateral_amount=loan.collateral_amount,
            collateral_value=value,
            borrow_limit=calculate_borrow_limit(value, pool.risk),
            liquidation_value=mul_div(value, pool.risk.liquidate_threshold, PERCENT_DIVISOR),
            liquidatable=is_liquidatable(debt, value, pool.risk),
        )

    def __repr__(self) -> str:
        return f"LendingContract({self.account_id!r}, pools={len(self.pools)})"
