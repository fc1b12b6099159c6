"""
pool.py - Lending pool aggregate: reward accumulator, lenders and loans

The LendingPool owns one pool's books and is the only place they change.

Reward accounting (per pool):
    reward_per_share grows by pending_interest * SHARE_DIVISOR / total_share
    every time the pool is touched. A lender's claimable reward is

        reward_per_share * share / SHARE_DIVISOR + accrued_reward - reward_debt

    where reward_debt is the part of the accumulator already priced in when
    the position last changed, and accrued_reward is banked reward carried
    across share changes.

Supply accounting:
    supply counts value owed to lenders (deposits plus realised interest,
    net of payouts). Lent-out principal stays in supply and is tracked by
    amount_borrowed, so supply - amount_borrowed is the pool's cash.

Two-phase operations:
    Operations that pay tokens out are split into begin_*() which validates,
    touches the pool and returns a frozen pending effect carrying the payout,
    and complete_*() which applies the deferred mutation once the ledger
    reports the payout's ExecuteResult. A failed payout changes nothing.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Optional, Tuple

from .core import (
    SHARE_DIVISOR, ExecuteResult,
    LendingError, InvalidAmount, NoBorrower, NoLenderPosition,
    InsufficientLiquidity, RepaymentBelowInterest, WithdrawalExceedsShare,
    CollateralNotSupported, InsufficientCollateral, PayoutFailed, PayoutPending,
)
from .fixed_point import checked_add, checked_sub, mul_div, to_amount
from .interest import calculate_interest, calculate_pending_interest, elapsed_seconds
from .quotes import QuoteSet
from .valuation import (
    LiquidationQuote, RiskParameters,
    calculate_collateral_value, calculate_liquidation, check_borrowable, is_liquidatable,
)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LenderPosition:
    """A lender's stake in one pool."""
    share: int = 0
    reward_debt: int = 0
    accrued_reward: int = 0


@dataclass(frozen=True, slots=True)
class Loan:
    """
    A borrower's position in one pool.

    principal includes interest capitalized up to loan_start_time.
    collateral_amount is always 0 in pools without a collateral token.
    """
    principal: int
    loan_start_time: datetime
    collateral_amount: int = 0


@dataclass(frozen=True, slots=True)
class Payout:
    """Tokens the pool asks the ledger to send out."""
    token: str
    receiver: str
    amount: int
    memo: str


@dataclass(frozen=True, slots=True)
class PendingBorrow:
    pool_id: int
    effect_id: str
    borrower: str
    amount: int
    payout: Payout
    created_at: datetime


@dataclass(frozen=True, slots=True)
class PendingClaim:
    pool_id: int
    effect_id: str
    lender: str
    reward: int
    payout: Optional[Payout]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class PendingWithdrawal:
    pool_id: int
    effect_id: str
    lender: str
    amount: int
    reward: int
    payout: Optional[Payout]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class PendingCollateralWithdrawal:
    pool_id: int
    effect_id: str
    borrower: str
    amount: int
    payout: Payout
    created_at: datetime


@dataclass(frozen=True, slots=True)
class PendingLiquidation:
    """
    A liquidation awaiting its collateral payout.

    payout is None when the position turned out not to be liquidatable; the
    whole deposit is then refunded and nothing else happens.
    """
    pool_id: int
    effect_id: str
    liquidator: str
    borrower: str
    deposit: int
    quote: LiquidationQuote
    payout: Optional[Payout]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class PoolSummary:
    pool_id: int
    lending_token: str
    collateral_token: Optional[str]
    interest_rate: int
    supply: int
    amount_borrowed: int
    total_share: int
    reward_per_share: int
    reserved: int
    total_collateral: int


# ============================================================================
# LENDING POOL
# ============================================================================

class LendingPool:
    """
    Books of a single lending pool.

    Every mutating operation touches the pool before reading or writing the
    accumulator, positions or loans. Validation that does not depend on the
    accumulator runs first, so a rejected operation leaves the pool exactly
    as it was.

    Thread Safety:
        Not thread-safe. Interleaving happens only between begin_* and
        complete_* steps.
    """

    def __init__(
        self,
        pool_id: int,
        lending_token: str,
        interest_rate: int,
        created_at: datetime,
        collateral_token: Optional[str] = None,
        base_token: Optional[str] = None,
        collateral_pricing_ref: Optional[str] = None,
        lending_pricing_ref: Optional[str] = None,
        risk: Optional[RiskParameters] = None,
    ):
        """
        Create an empty pool.

        Args:
            pool_id: Index of the pool in its contract
            lending_token: Token lent and borrowed
            interest_rate: Annual rate in basis points
            created_at: Initial accumulator time
            collateral_token: Token posted as collateral (None = unsecured pool)
            base_token: Intermediate unit used to chain quotes
            collateral_pricing_ref: Exchange pool quoting collateral against base
            lending_pricing_ref: Exchange pool quoting base against lending token
            risk: Borrow limit / liquidation parameters
        """
        if interest_rate < 0:
            raise ValueError(f"interest_rate must be non-negative, got {interest_rate}")
        self.pool_id = pool_id
        self.lending_token = lending_token
        self.collateral_token = collateral_token
        self.base_token = base_token
        self.interest_rate = interest_rate
        self.collateral_pricing_ref = collateral_pricing_ref
        self.lending_pricing_ref = lending_pricing_ref
        self.risk = risk or RiskParameters()

        self.supply: int = 0
        self.amount_borrowed: int = 0
        self.total_share: int = 0
        self.reward_per_share: int = 0
        self.last_update_time: datetime = created_at
        self.reserved: int = 0
        self.total_collateral: int = 0

        self.lenders: Dict[str, LenderPosition] = {}
        self.loans: Dict[str, Loan] = {}

        # (role, account) -> effect_id of the payout in flight
        self._in_flight: Dict[Tuple[str, str], str] = {}
        self._next_effect: int = 0

    # ========================================================================
    # REWARD ACCUMULATOR
    # ========================================================================

    def _accrued_reward_per_share(self, now: datetime) -> int:
        """reward_per_share as of now, without committing it."""
        pending = calculate_pending_interest(
            ((loan.principal, loan.loan_start_time) for loan in self.loans.values()),
            self.interest_rate,
            self.last_update_time,
            now,
        )
        if self.total_share == 0 or pending == 0:
            return self.reward_per_share
        return checked_add(
            self.reward_per_share,
            mul_div(pending, SHARE_DIVISOR, self.total_share),
        )

    def touch(self, now: datetime) -> int:
        """
        Distribute interest accrued since the last touch across current shares.

        With no shares outstanding nothing is distributed, but the clock still
        advances so an idle period is never charged retroactively.

        Returns:
            The updated reward_per_share.

        Raises:
            ValueError: if now is before the last update.
        """
        self.reward_per_share = self._accrued_reward_per_share(now)
        self.last_update_time = now
        return self.reward_per_share

    def _priced_in(self, share: int) -> int:
        return mul_div(self.reward_per_share, share, SHARE_DIVISOR)

    def _claimable(self, position: LenderPosition, reward_per_share: int) -> int:
        earned = mul_div(reward_per_share, position.share, SHARE_DIVISOR)
        return earned + position.accrued_reward - position.reward_debt

    # ========================================================================
    # IN-FLIGHT PAYOUTS
    # ========================================================================

    def _new_effect_id(self, kind: str) -> str:
        effect_id = f"{self.pool_id}:{kind}:{self._next_effect}"
        self._next_effect += 1
        return effect_id

    def _ensure_idle(self, role: str, account: str) -> None:
        if (role, account) in self._in_flight:
            raise PayoutPending(
                f"{account} already has payout {self._in_flight[(role, account)]} in flight"
            )

    def _release(self, role: str, account: str, pending) -> None:
        if pending.pool_id != self.pool_id:
            raise LendingError(f"Effect {pending.effect_id} belongs to pool {pending.pool_id}")
        if self._in_flight.get((role, account)) != pending.effect_id:
            raise LendingError(f"Effect {pending.effect_id} is not in flight")
        del self._in_flight[(role, account)]

    @staticmethod
    def _require_applied(pending, result: ExecuteResult) -> None:
        if result is not ExecuteResult.APPLIED:
            raise PayoutFailed(f"Payout for {pending.effect_id} not applied: {result.value}")

    def _payout(self, token: str, receiver: str, amount: int, effect_id: str) -> Payout:
        return Payout(token=token, receiver=receiver, amount=amount, memo=f"lending:{effect_id}")

    # ========================================================================
    # LOAN ARITHMETIC
    # ========================================================================

    def _interest_of(self, loan: Loan, now: datetime) -> int:
        return calculate_interest(loan.principal, self.interest_rate, loan.loan_start_time, now)

    def _settle_payment(self, borrower: str, loan: Loan, amount: int, now: datetime) -> int:
        """
        Apply amount to a loan, interest first, and restart its interest clock.

        Interest not covered by amount is capitalized into principal. All
        accrued interest becomes part of supply (paid in cash or owed as
        principal).

        Returns:
            The part of amount exceeding principal + interest.
        """
        interest = self._interest_of(loan, now)
        owed = loan.principal + interest
        applied = min(amount, owed)
        new_principal = owed - applied

        self.supply = checked_add(self.supply, interest)
        self.amount_borrowed = checked_sub(checked_add(self.amount_borrowed, interest), applied)

        if new_principal == 0 and loan.collateral_amount == 0:
            del self.loans[borrower]
        else:
            self.loans[borrower] = replace(loan, principal=new_principal, loan_start_time=now)
        return amount - applied

    def _capitalize(self, loan: Loan, now: datetime) -> Loan:
        """Fold accrued interest into principal and restart the clock."""
        interest = self._interest_of(loan, now)
        if interest:
            self.supply = checked_add(self.supply, interest)
            self.amount_borrowed = checked_add(self.amount_borrowed, interest)
        return replace(loan, principal=checked_add(loan.principal, interest), loan_start_time=now)

    def collateral_value(self, collateral_amount: int, quotes: Optional[QuoteSet]) -> int:
        return calculate_collateral_value(
            collateral_amount,
            self.collateral_token,
            self.lending_token,
            self.base_token,
            quotes or QuoteSet(),
        )

    # ========================================================================
    # DEPOSIT
    # ========================================================================

    def deposit(self, lender: str, amount: int, now: datetime) -> LenderPosition:
        """
        Add amount to a lender's share.

        Reward earned under the previous share is banked first, and the new
        reward_debt is priced on the increased share so the deposit does not
        earn past rewards.
        """
        to_amount(amount)
        if amount == 0:
            raise InvalidAmount("Deposit amount must be positive")
        elapsed_seconds(self.last_update_time, now)
        self.touch(now)

        position = self.lenders.get(lender, LenderPosition())
        share = checked_add(position.share, amount)
        position = LenderPosition(
            share=share,
            reward_debt=self._priced_in(share),
            accrued_reward=self._claimable(position, self.reward_per_share),
        )

        supply = checked_add(self.supply, amount)
        total_share = checked_add(self.total_share, amount)

        self.lenders[lender] = position
        self.supply = supply
        self.total_share = total_share
        return position

    # ========================================================================
    # BORROW
    # ========================================================================

    def available_liquidity(self) -> int:
        """Cash not lent out and not reserved by a payout in flight."""
        return self.supply - self.amount_borrowed - self.reserved

    def _check_liquidity(self, amount: int) -> None:
        available = self.available_liquidity()
        if amount > available:
            raise InsufficientLiquidity(f"Requested {amount}, available {available}")

    def begin_borrow(
        self,
        borrower: str,
        amount: int,
        now: datetime,
        quotes: Optional[QuoteSet] = None,
    ) -> PendingBorrow:
        """
        Validate a borrow and reserve its liquidity.

        Collateral-backed pools check the projected debt against the borrow
        limit using the quotes received for this request.

        Raises:
            InvalidAmount, InsufficientLiquidity, BorrowLimitExceeded,
            PayoutPending, StalePriceData / MalformedQuoteResponse (via quotes)
        """
        to_amount(amount)
        if amount == 0:
            raise InvalidAmount("Borrow amount must be positive")
        elapsed_seconds(self.last_update_time, now)
        self._ensure_idle("borrower", borrower)
        self._check_liquidity(amount)

        if self.collateral_token is not None:
            loan = self.loans.get(borrower)
            collateral = loan.collateral_amount if loan else 0
            current_debt = (loan.principal + self._interest_of(loan, now)) if loan else 0
            collateral_value = self.collateral_value(collateral, quotes)
            check_borrowable(current_debt + amount, collateral_value, self.risk)

        self.touch(now)
        effect_id = self._new_effect_id("borrow")
        self._in_flight[("borrower", borrower)] = effect_id
        self.reserved += amount
        return PendingBorrow(
            pool_id=self.pool_id,
            effect_id=effect_id,
            borrower=borrower,
            amount=amount,
            payout=self._payout(self.lending_token, borrower, amount, effect_id),
            created_at=now,
        )

    def complete_borrow(self, pending: PendingBorrow, result: ExecuteResult, now: datetime) -> Loan:
        """
        Record a borrow once its payout is confirmed.

        Raises:
            PayoutFailed: if result is not APPLIED (only the reservation is released).
        """
        self._release("borrower", pending.borrower, pending)
        self.reserved -= pending.amount
        self._require_applied(pending, result)

        self.touch(now)
        loan = self.loans.get(pending.borrower)
        if loan is None:
            loan = Loan(principal=0, loan_start_time=now)
        else:
            loan = self._capitalize(loan, now)
        loan = replace(loan, principal=checked_add(loan.principal, pending.amount))

        self.loans[pending.borrower] = loan
        self.amount_borrowed = checked_add(self.amount_borrowed, pending.amount)
        return loan

    # ========================================================================
    # REPAY
    # ========================================================================

    def repay(self, borrower: str, amount: int, now: datetime) -> int:
        """
        Apply a repayment received from a borrower.

        The repayment must at least cover accrued interest. A repayment of
        principal + interest or more settles the loan.

        Returns:
            Refund owed back to the payer (0 for partial repayments).

        Raises:
            InvalidAmount, NoBorrower, RepaymentBelowInterest
        """
        to_amount(amount)
        if amount == 0:
            raise InvalidAmount("Repay amount must be positive")
        elapsed_seconds(self.last_update_time, now)
        loan = self.loans.get(borrower)
        if loan is None:
            raise NoBorrower(f"{borrower} has no loan in pool {self.pool_id}")
        interest = self._interest_of(loan, now)
        if amount < interest:
            raise RepaymentBelowInterest(f"Repayment {amount} is below accrued interest {interest}")

        self.touch(now)
        return self._settle_payment(borrower, loan, amount, now)

    # ========================================================================
    # CLAIM / WITHDRAW
    # ========================================================================

    def begin_claim(self, lender: str, now: datetime) -> PendingClaim:
        """
        Snapshot a lender's claimable reward as a payout and reserve it.

        payout is None when nothing is claimable.

        Raises:
            NoLenderPosition, InsufficientLiquidity, PayoutPending
        """
        elapsed_seconds(self.last_update_time, now)
        position = self.lenders.get(lender)
        if position is None:
            raise NoLenderPosition(f"{lender} has no position in pool {self.pool_id}")
        self._ensure_idle("lender", lender)
        reward = self._claimable(position, self._accrued_reward_per_share(now))
        self._check_liquidity(reward)

        self.touch(now)
        effect_id = self._new_effect_id("claim")
        self._in_flight[("lender", lender)] = effect_id
        self.reserved += reward
        return PendingClaim(
            pool_id=self.pool_id,
            effect_id=effect_id,
            lender=lender,
            reward=reward,
            payout=self._payout(self.lending_token, lender, reward, effect_id) if reward else None,
            created_at=now,
        )

    def complete_claim(self, pending: PendingClaim, result: ExecuteResult, now: datetime) -> int:
        """
        Settle a claim once its payout is confirmed.

        Reward that accrued while the payout was in flight stays banked.

        Returns:
            The reward paid.
        """
        self._release("lender", pending.lender, pending)
        if pending.payout is None:
            return 0
        self.reserved -= pending.reward
        self._require_applied(pending, result)

        self.touch(now)
        position = self.lenders[pending.lender]
        remaining = self._claimable(position, self.reward_per_share) - pending.reward
        self.lenders[pending.lender] = LenderPosition(
            share=position.share,
            reward_debt=self._priced_in(position.share),
            accrued_reward=max(remaining, 0),
        )
        self.supply = checked_sub(self.supply, pending.reward)
        return pending.reward

    def begin_withdraw(self, lender: str, amount: int, now: datetime) -> PendingWithdrawal:
        """
        Snapshot a withdrawal of amount share plus all claimable reward and
        reserve the payout.

        Raises:
            NoLenderPosition, WithdrawalExceedsShare, InsufficientLiquidity,
            PayoutPending
        """
        to_amount(amount)
        elapsed_seconds(self.last_update_time, now)
        position = self.lenders.get(lender)
        if position is None:
            raise NoLenderPosition(f"{lender} has no position in pool {self.pool_id}")
        if amount > position.share:
            raise WithdrawalExceedsShare(f"Withdrawal {amount} exceeds share {position.share}")
        self._ensure_idle("lender", lender)
        reward = self._claimable(position, self._accrued_reward_per_share(now))
        total = amount + reward
        self._check_liquidity(total)

        self.touch(now)
        effect_id = self._new_effect_id("withdraw")
        self._in_flight[("lender", lender)] = effect_id
        self.reserved += total
        return PendingWithdrawal(
            pool_id=self.pool_id,
            effect_id=effect_id,
            lender=lender,
            amount=amount,
            reward=reward,
            payout=self._payout(self.lending_token, lender, total, effect_id) if total else None,
            created_at=now,
        )

    def complete_withdraw(self, pending: PendingWithdrawal, result: ExecuteResult, now: datetime) -> int:
        """
        Settle a withdrawal once its payout is confirmed.

        Returns:
            The total paid (share withdrawn plus reward).
        """
        self._release("lender", pending.lender, pending)
        if pending.payout is None:
            return 0
        self.reserved -= pending.payout.amount
        self._require_applied(pending, result)

        self.touch(now)
        position = self.lenders[pending.lender]
        remaining = self._claimable(position, self.reward_per_share) - pending.reward
        share = checked_sub(position.share, pending.amount)
        position = LenderPosition(
            share=share,
            reward_debt=self._priced_in(share),
            accrued_reward=max(remaining, 0),
        )
        if position.share == 0 and position.accrued_reward == 0:
            del self.lenders[pending.lender]
        else:
            self.lenders[pending.lender] = position

        self.total_share = checked_sub(self.total_share, pending.amount)
        self.supply = checked_sub(self.supply, pending.payout.amount)
        return pending.payout.amount

    # ========================================================================
    # COLLATERAL
    # ========================================================================

    def _require_collateral_pool(self) -> str:
        if self.collateral_token is None:
            raise CollateralNotSupported(f"Pool {self.pool_id} takes no collateral")
        return self.collateral_token

    def deposit_collateral(self, borrower: str, amount: int, now: datetime) -> Loan:
        """Post collateral for a borrower, opening an empty loan if needed."""
        self._require_collateral_pool()
        to_amount(amount)
        if amount == 0:
            raise InvalidAmount("Collateral amount must be positive")
        elapsed_seconds(self.last_update_time, now)

        self.touch(now)
        loan = self.loans.get(borrower, Loan(principal=0, loan_start_time=now))
        loan = replace(loan, collateral_amount=checked_add(loan.collateral_amount, amount))
        self.loans[borrower] = loan
        self.total_collateral = checked_add(self.total_collateral, amount)
        return loan

    def begin_withdraw_collateral(
        self,
        borrower: str,
        amount: int,
        now: datetime,
        quotes: Optional[QuoteSet] = None,
    ) -> PendingCollateralWithdrawal:
        """
        Validate a collateral withdrawal against the remaining borrow limit.

        Raises:
            CollateralNotSupported, InvalidAmount, NoBorrower,
            InsufficientCollateral, BorrowLimitExceeded, PayoutPending
        """
        collateral_token = self._require_collateral_pool()
        to_amount(amount)
        if amount == 0:
            raise InvalidAmount("Collateral amount must be positive")
        elapsed_seconds(self.last_update_time, now)
        loan = self.loans.get(borrower)
        if loan is None:
            raise NoBorrower(f"{borrower} has no loan in pool {self.pool_id}")
        if amount > loan.collateral_amount:
            raise InsufficientCollateral(
                f"Withdrawal {amount} exceeds collateral {loan.collateral_amount}"
            )
        self._ensure_idle("borrower", borrower)
        debt = loan.principal + self._interest_of(loan, now)
        if debt > 0:
            remaining_value = self.collateral_value(loan.collateral_amount - amount, quotes)
            check_borrowable(debt, remaining_value, self.risk)

        self.touch(now)
        effect_id = self._new_effect_id("collateral")
        self._in_flight[("borrower", borrower)] = effect_id
        return PendingCollateralWithdrawal(
            pool_id=self.pool_id,
            effect_id=effect_id,
            borrower=borrower,
            amount=amount,
            payout=self._payout(collateral_token, borrower, amount, effect_id),
            created_at=now,
        )

    def complete_withdraw_collateral(
        self,
        pending: PendingCollateralWithdrawal,
        result: ExecuteResult,
        now: datetime,
    ) -> Optional[Loan]:
        """
        Release collateral once its payout is confirmed.

        Returns:
            The remaining loan, or None if it was closed.
        """
        self._release("borrower", pending.borrower, pending)
        self._require_applied(pending, result)

        self.touch(now)
        loan = self.loans[pending.borrower]
        loan = replace(loan, collateral_amount=checked_sub(loan.collateral_amount, pending.amount))
        self.total_collateral = checked_sub(self.total_collateral, pending.amount)
        if loan.principal == 0 and loan.collateral_amount == 0:
            del self.loans[pending.borrower]
            return None
        self.loans[pending.borrower] = loan
        return loan

    # ========================================================================
    # LIQUIDATION
    # ========================================================================

    def begin_liquidation(
        self,
        liquidator: str,
        borrower: str,
        deposit: int,
        now: datetime,
        quotes: Optional[QuoteSet] = None,
    ) -> PendingLiquidation:
        """
        Price a liquidation funded by deposit lending tokens.

        A position that is not liquidatable under the received quotes yields
        a pending effect without payout; completing it refunds the deposit.

        Raises:
            CollateralNotSupported, InvalidAmount, NoBorrower, PayoutPending
        """
        collateral_token = self._require_collateral_pool()
        to_amount(deposit)
        if deposit == 0:
            raise InvalidAmount("Liquidation deposit must be positive")
        elapsed_seconds(self.last_update_time, now)
        loan = self.loans.get(borrower)
        if loan is None:
            raise NoBorrower(f"{borrower} has no loan in pool {self.pool_id}")
        self._ensure_idle("borrower", borrower)

        debt = loan.principal + self._interest_of(loan, now)
        collateral_value = self.collateral_value(loan.collateral_amount, quotes)
        quote = calculate_liquidation(deposit, debt, loan.collateral_amount, collateral_value, self.risk)

        self.touch(now)
        effect_id = self._new_effect_id("liquidate")
        payout = None
        if quote.executable:
            payout = self._payout(collateral_token, liquidator, quote.collateral_out, effect_id)
            self._in_flight[("borrower", borrower)] = effect_id
        return PendingLiquidation(
            pool_id=self.pool_id,
            effect_id=effect_id,
            liquidator=liquidator,
            borrower=borrower,
            deposit=deposit,
            quote=quote,
            payout=payout,
            created_at=now,
        )

    def complete_liquidation(
        self,
        pending: PendingLiquidation,
        result: ExecuteResult,
        now: datetime,
    ) -> int:
        """
        Apply a liquidation once the collateral payout is confirmed.

        Returns:
            Lending tokens to refund to the liquidator.

        Raises:
            PayoutFailed: if the collateral payout was not applied.
        """
        if pending.payout is None:
            return pending.deposit
        self._release("borrower", pending.borrower, pending)
        self._require_applied(pending, result)

        self.touch(now)
        loan = self.loans[pending.borrower]
        loan = replace(
            loan,
            collateral_amount=checked_sub(loan.collateral_amount, pending.quote.collateral_out),
        )
        self.loans[pending.borrower] = loan
        self.total_collateral = checked_sub(self.total_collateral, pending.quote.collateral_out)
        overpaid = self._settle_payment(pending.borrower, loan, pending.quote.repay_amount, now)
        return pending.quote.refund + overpaid

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    def amount_claimable(self, lender: str, now: datetime) -> int:
        """Reward a lender could claim at now, including untouched interest."""
        position = self.lenders.get(lender)
        if position is None:
            return 0
        return self._claimable(position, self._accrued_reward_per_share(now))

    def get_lender(self, lender: str) -> LenderPosition:
        position = self.lenders.get(lender)
        if position is None:
            raise NoLenderPosition(f"{lender} has no position in pool {self.pool_id}")
        return position

    def get_loan(self, borrower: str) -> Loan:
        loan = self.loans.get(borrower)
        if loan is None:
            raise NoBorrower(f"{borrower} has no loan in pool {self.pool_id}")
        return loan

    def debt_of(self, borrower: str, now: datetime) -> int:
        """Principal plus interest accrued up to now."""
        loan = self.get_loan(borrower)
        return loan.principal + self._interest_of(loan, now)

    def is_liquidatable(self, borrower: str, now: datetime, quotes: Optional[QuoteSet] = None) -> bool:
        self._require_collateral_pool()
        loan = self.get_loan(borrower)
        debt = loan.principal + self._interest_of(loan, now)
        return is_liquidatable(debt, self.collateral_value(loan.collateral_amount, quotes), self.risk)

    def summary(self) -> PoolSummary:
        return PoolSummary(
            pool_id=self.pool_id,
            lending_token=self.lending_token,
            collateral_token=self.collateral_token,
            interest_rate=self.interest_rate,
            supply=self.supply,
            amount_borrowed=self.amount_borrowed,
            total_share=self.total_share,
            reward_per_share=self.reward_per_share,
            reserved=self.reserved,
            total_collateral=self.total_collateral,
        )

    def __repr__(self) -> str:
        return (
            f"LendingPool(id={self.pool_id}, token={self.lending_token}, "
            f"supply={self.supply}, borrowed={self.amount_borrowed}, shares={self.total_share})"
        )
