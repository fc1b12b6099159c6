"""
valuation.py - Collateral valuation, borrow limits and liquidation amounts

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - RiskParameters: economic parameters of a collateral-backed pool
   - LiquidationQuote: amounts a liquidation would move

2. PURE CALCULATION FUNCTIONS (calculate_* / is_* / check_*):
   - Take quotes, amounts and parameters explicitly
   - No pool state, no quoting service, no clock

Key Formulas:
    amount_out = amount_in*(FD-f)*out_balance / (in_balance*FD + amount_in*(FD-f))
    borrowable:    projected_debt <= collateral_value * max_borrow_rate / 100
    liquidatable:  debt > collateral_value * liquidate_threshold / 100
    repay          = min(deposit, debt * max_liquidate_rate / 100)
    collateral_out = repay * collateral_amount / collateral_value * (100 + incentive) / 100
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .core import (
    FEE_DIVISOR, PERCENT_DIVISOR, QUOTE_MAX_AGE,
    MAX_BORROW_RATE, LIQUIDATE_THRESHOLD, LIQUIDATOR_INCENTIVE, MAX_LIQUIDATE_RATE,
    BorrowLimitExceeded, MalformedQuoteResponse,
)
from .fixed_point import mul_div
from .quotes import PoolState, QuoteSet


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class RiskParameters:
    """
    Economic parameters of a collateral-backed pool. Percentages are out of 100.

    max_borrow_rate: Debt may reach this share of collateral value at borrow time.
    liquidate_threshold: Positions whose debt exceeds this share are liquidatable.
    liquidator_incentive: Collateral premium paid to liquidators.
    max_liquidate_rate: Largest share of the debt one liquidation may repay.
    quote_max_age: Maximum age of a quote used for valuation.
    """
    max_borrow_rate: int = MAX_BORROW_RATE
    liquidate_threshold: int = LIQUIDATE_THRESHOLD
    liquidator_incentive: int = LIQUIDATOR_INCENTIVE
    max_liquidate_rate: int = MAX_LIQUIDATE_RATE
    quote_max_age: timedelta = QUOTE_MAX_AGE

    def __post_init__(self):
        if not 0 < self.max_borrow_rate <= PERCENT_DIVISOR:
            raise ValueError(f"max_borrow_rate must be in (0, 100], got {self.max_borrow_rate}")
        if not 0 < self.liquidate_threshold <= PERCENT_DIVISOR:
            raise ValueError(f"liquidate_threshold must be in (0, 100], got {self.liquidate_threshold}")
        if self.liquidate_threshold < self.max_borrow_rate:
            raise ValueError("liquidate_threshold must not be below max_borrow_rate")
        if self.liquidator_incentive < 0:
            raise ValueError("liquidator_incentive must be non-negative")
        if not 0 < self.max_liquidate_rate <= PERCENT_DIVISOR:
            raise ValueError(f"max_liquidate_rate must be in (0, 100], got {self.max_liquidate_rate}")


@dataclass(frozen=True, slots=True)
class LiquidationQuote:
    """
    Amounts moved by a liquidation.

    repay_amount: Lending tokens applied against the borrower's debt
    collateral_out: Collateral paid to the liquidator (incentive included)
    refund: Part of the liquidator's deposit returned to them
    """
    repay_amount: int
    collateral_out: int
    refund: int

    @property
    def executable(self) -> bool:
        return self.collateral_out > 0


# ============================================================================
# SWAP QUOTES
# ============================================================================

def calculate_amount_out(
    amount_in: int,
    in_balance: int,
    out_balance: int,
    fee: int,
    fee_divisor: int = FEE_DIVISOR,
) -> int:
    """
    Output of a constant-product swap with the fee taken from the input leg.

    Returns 0 for a zero input.
    """
    if amount_in == 0:
        return 0
    amount_with_fee = amount_in * (fee_divisor - fee)
    return mul_div(amount_with_fee, out_balance, in_balance * fee_divisor + amount_with_fee)


def quote_swap(state: PoolState, token_in: str, token_out: str, amount_in: int) -> int:
    """Quoted output of swapping amount_in of token_in for token_out in state."""
    return calculate_amount_out(
        amount_in,
        state.balance_of(token_in),
        state.balance_of(token_out),
        state.fee,
    )


# ============================================================================
# COLLATERAL VALUATION
# ============================================================================

def calculate_collateral_value(
    collateral_amount: int,
    collateral_token: str,
    lending_token: str,
    base_token: Optional[str],
    quotes: QuoteSet,
) -> int:
    """
    Value of collateral_amount expressed in lending-token units.

    Chains collateral -> base -> lending. A leg is skipped when its input is
    already the base unit (or when collateral and lending tokens coincide).

    Raises:
        MalformedQuoteResponse: if a required quote is missing.
    """
    if collateral_amount == 0:
        return 0
    if collateral_token == lending_token:
        return collateral_amount

    base = base_token if base_token is not None else lending_token

    if collateral_token == base:
        base_amount = collateral_amount
    else:
        if quotes.collateral_quote is None:
            raise MalformedQuoteResponse("collateral quote required for valuation")
        base_amount = quote_swap(quotes.collateral_quote, collateral_token, base, collateral_amount)

    if lending_token == base:
        return base_amount
    if quotes.lending_quote is None:
        raise MalformedQuoteResponse("lending quote required for valuation")
    return quote_swap(quotes.lending_quote, base, lending_token, base_amount)


def calculate_borrow_limit(collateral_value: int, params: RiskParameters) -> int:
    """Largest debt admitted against collateral_value."""
    return mul_div(collateral_value, params.max_borrow_rate, PERCENT_DIVISOR)


def check_borrowable(projected_debt: int, collateral_value: int, params: RiskParameters) -> None:
    """
    Raises:
        BorrowLimitExceeded: if projected_debt is above the borrow limit.
    """
    limit = calculate_borrow_limit(collateral_value, params)
    if projected_debt > limit:
        raise BorrowLimitExceeded(
            f"Projected debt {projected_debt} exceeds borrow limit {limit} "
            f"({params.max_borrow_rate}% of {collateral_value})"
        )


def is_liquidatable(debt: int, collateral_value: int, params: RiskParameters) -> bool:
    """True when debt is above the liquidation threshold of collateral_value."""
    if debt == 0:
        return False
    return debt > mul_div(collateral_value, params.liquidate_threshold, PERCENT_DIVISOR)


def calculate_liquidation(
    deposit: int,
    debt: int,
    collateral_amount: int,
    collateral_value: int,
    params: RiskParameters,
) -> LiquidationQuote:
    """
    Amounts of a liquidation funded by a deposit of lending tokens.

    If the position is not liquidatable, or the collateral owed to the
    liquidator rounds to zero, the whole deposit is refunded.
    """
    nothing = LiquidationQuote(repay_amount=0, collateral_out=0, refund=deposit)
    if deposit == 0 or collateral_amount == 0:
        return nothing
    if not is_liquidatable(debt, collateral_value, params):
        return nothing

    cap = mul_div(debt, params.max_liquidate_rate, PERCENT_DIVISOR)
    repay_amount = min(deposit, cap)
    if repay_amount == 0:
        return nothing

    if collateral_value == 0:
        collateral_out = collateral_amount
    else:
        collateral_out = mul_div(
            repay_amount * (PERCENT_DIVISOR + params.liquidator_incentive),
            collateral_amount,
            collateral_value * PERCENT_DIVISOR,
        )
        collateral_out = min(collateral_out, collateral_amount)

    if collateral_out <= 0:
        return nothing

    return LiquidationQuote(
        repay_amount=repay_amount,
        collateral_out=collateral_out,
        refund=deposit - repay_amount,
    )
