"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, functional and conformance tests:
- Clock helpers anchored at T0
- Bare pools (unsecured and collateral-backed)
- A wired market: Ledger + StaticQuoteSource + LendingContract with funded accounts
"""

import pytest
from datetime import datetime, timedelta
from typing import Optional

from lending import (
    Ledger, LendingContract, LendingPool, StaticQuoteSource, QuoteSet,
    TransferType, RiskParameters,
)


T0 = datetime(2024, 1, 1)

CONTRACT = "lending.pool"
USDC = "usdc"
WNEAR = "wnear"
REF_WNEAR_USDC = "ref-wnear-usdc"

# 1 wnear = 5 usdc for small trades against these reserves
WNEAR_RESERVE = 1_000_000_000_000
USDC_RESERVE = 5_000_000_000_000

FUNDING = 10_000_000_000_000


def days(n: float) -> datetime:
    """T0 plus n days."""
    return T0 + timedelta(days=n)


# =============================================================================
# MARKET HARNESS
# =============================================================================

class Market:
    """
    Ledger, quoter and contract wired together.

    Pool 0 is unsecured (usdc). Pool 1 lends usdc against wnear priced on
    REF_WNEAR_USDC.
    """

    def __init__(self, interest_rate: int = 2000, risk: Optional[RiskParameters] = None):
        self.ledger = Ledger("test", T0, verbose=False)
        self.quoter = StaticQuoteSource()
        self.contract = LendingContract(CONTRACT, self.ledger, self.quoter, T0, verbose=False)

        self.ledger.register_token(USDC)
        self.ledger.register_token(WNEAR)
        self.ledger.register_account(CONTRACT, handler=self.contract.on_transfer)
        for account in ("alice", "bob", "carol", "liquidator"):
            self.ledger.register_account(account)
            self.ledger.mint(USDC, account, FUNDING)
            self.ledger.mint(WNEAR, account, FUNDING)

        self.set_price(WNEAR_RESERVE, USDC_RESERVE)
        self.unsecured = self.contract.create_pool(USDC, interest_rate)
        self.secured = self.contract.create_pool(
            USDC, interest_rate,
            collateral_token=WNEAR,
            collateral_pricing_ref=REF_WNEAR_USDC,
            risk=risk,
        )

    def set_price(self, wnear_reserve: int, usdc_reserve: int) -> None:
        self.quoter.set_pool(
            REF_WNEAR_USDC, (WNEAR, USDC), (wnear_reserve, usdc_reserve),
            observed_at=self.ledger.current_time,
        )

    def advance(self, when: datetime) -> None:
        self.ledger.advance_time(when)
        self.contract.advance_time(when)
        # keep the snapshot fresh
        state = self.quoter.states[REF_WNEAR_USDC]
        self.set_price(*state.balances)

    def balance(self, account: str, token: str = USDC) -> int:
        return self.ledger.get_balance(account, token)

    def deposit(self, lender: str, amount: int, pool_id: Optional[int] = None) -> int:
        pool_id = self.unsecured if pool_id is None else pool_id
        msg = self.contract.envelope(TransferType.DEPOSIT, pool_id)
        return self.ledger.transfer_call(USDC, lender, CONTRACT, amount, msg)

    def repay(self, borrower: str, amount: int, pool_id: Optional[int] = None) -> int:
        pool_id = self.unsecured if pool_id is None else pool_id
        msg = self.contract.envelope(TransferType.REPAY, pool_id)
        return self.ledger.transfer_call(USDC, borrower, CONTRACT, amount, msg)

    def mortgage(self, borrower: str, amount: int) -> int:
        msg = self.contract.envelope(TransferType.MORTGAGE, self.secured)
        return self.ledger.transfer_call(WNEAR, borrower, CONTRACT, amount, msg)

    def liquidate(self, liquidator: str, borrower: str, amount: int) -> int:
        msg = self.contract.envelope(TransferType.LIQUIDATE, self.secured, borrower_id=borrower)
        return self.ledger.transfer_call(USDC, liquidator, CONTRACT, amount, msg)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pool():
    """Unsecured pool at 20% a year, created at T0."""
    return LendingPool(0, USDC, 2000, T0)


@pytest.fixture
def funded_pool(pool):
    """Unsecured pool with alice as sole lender of 1,000,000,000,000."""
    pool.deposit("alice", 1_000_000_000_000, T0)
    return pool


@pytest.fixture
def secured_pool():
    """usdc pool taking wnear collateral priced on REF_WNEAR_USDC."""
    pool = LendingPool(
        1, USDC, 2000, T0,
        collateral_token=WNEAR,
        collateral_pricing_ref=REF_WNEAR_USDC,
    )
    pool.deposit("alice", 1_000_000_000_000, T0)
    return pool


@pytest.fixture
def quoter():
    source = StaticQuoteSource()
    source.set_pool(REF_WNEAR_USDC, (WNEAR, USDC), (WNEAR_RESERVE, USDC_RESERVE), observed_at=T0)
    return source


@pytest.fixture
def quotes(quoter):
    """QuoteSet pricing wnear at ~5 usdc."""
    return QuoteSet(collateral_quote=quoter.states[REF_WNEAR_USDC])


@pytest.fixture
def market():
    return Market()
