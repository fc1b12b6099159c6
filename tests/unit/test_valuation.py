"""
test_valuation.py - Unit tests for collateral valuation and liquidation math

Tests:
- RiskParameters validation
- Constant-product swap quotes with and without fee
- Collateral value: identity, one leg, two legs via a base unit, missing quotes
- Borrow limit and liquidation eligibility boundaries
- Liquidation amounts: cap, refund, incentive, collateral cap, no-op cases
"""

import pytest

from lending import (
    RiskParameters, LiquidationQuote, PoolState, QuoteSet,
    calculate_amount_out, quote_swap, calculate_collateral_value,
    calculate_borrow_limit, check_borrowable, is_liquidatable, calculate_liquidation,
    BorrowLimitExceeded, MalformedQuoteResponse,
)


DEFAULTS = RiskParameters()


def pool_state(ref, tokens, balances, fee=0):
    return PoolState(ref, tuple(tokens), tuple(balances), fee)


# ============================================================================
# RISK PARAMETERS
# ============================================================================

class TestRiskParameters:

    def test_defaults(self):
        assert DEFAULTS.max_borrow_rate == 50
        assert DEFAULTS.liquidate_threshold == 65
        assert DEFAULTS.liquidator_incentive == 5
        assert DEFAULTS.max_liquidate_rate == 50
        assert DEFAULTS.quote_max_age.total_seconds() == 600

    @pytest.mark.parametrize("kwargs", [
        {'max_borrow_rate': 0},
        {'max_borrow_rate': 101},
        {'liquidate_threshold': 40},
        {'liquidate_threshold': 101},
        {'liquidator_incentive': -1},
        {'max_liquidate_rate': 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RiskParameters(**kwargs)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULTS.max_borrow_rate = 80


# ============================================================================
# SWAP QUOTES
# ============================================================================

class TestAmountOut:

    def test_no_fee(self):
        # 100 * 1000 / (1000 + 100) = 90.9
        assert calculate_amount_out(100, 1000, 1000, 0) == 90

    def test_with_fee(self):
        # 100*9970*1000 / (1000*10000 + 100*9970) = 90.66
        assert calculate_amount_out(100, 1000, 1000, 30) == 90

    def test_deep_pool_price(self):
        assert calculate_amount_out(1_000_000, 10**12, 5 * 10**12, 0) == 4_999_995

    def test_fee_reduces_output(self):
        assert calculate_amount_out(10**6, 10**12, 10**12, 30) < calculate_amount_out(10**6, 10**12, 10**12, 0)

    def test_zero_input(self):
        assert calculate_amount_out(0, 1000, 1000, 30) == 0

    def test_quote_swap_uses_token_order(self):
        state = pool_state("ref", ("wnear", "usdc"), (10**12, 5 * 10**12))
        assert quote_swap(state, "wnear", "usdc", 1_000_000) == 4_999_995
        assert quote_swap(state, "usdc", "wnear", 5_000_000) == calculate_amount_out(5_000_000, 5 * 10**12, 10**12, 0)


# ============================================================================
# COLLATERAL VALUE
# ============================================================================

class TestCollateralValue:

    @pytest.fixture
    def col_quote(self):
        return pool_state("ref-col", ("wnear", "eth"), (10**12, 2 * 10**12))

    @pytest.fixture
    def lend_quote(self):
        return pool_state("ref-lend", ("eth", "usdc"), (10**12, 3 * 10**12))

    def test_same_token_is_identity(self):
        assert calculate_collateral_value(500, "usdc", "usdc", None, QuoteSet()) == 500

    def test_zero_collateral(self):
        assert calculate_collateral_value(0, "wnear", "usdc", None, QuoteSet()) == 0

    def test_single_leg_when_lending_token_is_base(self):
        quote = pool_state("ref", ("wnear", "usdc"), (10**12, 5 * 10**12))
        value = calculate_collateral_value(1_000_000, "wnear", "usdc", None, QuoteSet(collateral_quote=quote))
        assert value == 4_999_995

    def test_two_legs_through_base(self, col_quote, lend_quote):
        quotes = QuoteSet(collateral_quote=col_quote, lending_quote=lend_quote)
        value = calculate_collateral_value(1_000_000, "wnear", "usdc", "eth", quotes)
        in_base = quote_swap(col_quote, "wnear", "eth", 1_000_000)
        assert in_base == 1_999_998
        assert value == quote_swap(lend_quote, "eth", "usdc", in_base)

    def test_collateral_is_base(self, lend_quote):
        quotes = QuoteSet(lending_quote=lend_quote)
        value = calculate_collateral_value(1_000_000, "eth", "usdc", "eth", quotes)
        assert value == quote_swap(lend_quote, "eth", "usdc", 1_000_000)

    def test_missing_collateral_quote(self, lend_quote):
        with pytest.raises(MalformedQuoteResponse, match="collateral quote"):
            calculate_collateral_value(1_000, "wnear", "usdc", "eth", QuoteSet(lending_quote=lend_quote))

    def test_missing_lending_quote(self, col_quote):
        with pytest.raises(MalformedQuoteResponse, match="lending quote"):
            calculate_collateral_value(1_000, "wnear", "usdc", "eth", QuoteSet(collateral_quote=col_quote))


# ============================================================================
# BORROW LIMIT / ELIGIBILITY
# ============================================================================

class TestBorrowLimit:

    def test_limit(self):
        assert calculate_borrow_limit(2_999_997, DEFAULTS) == 1_499_998

    def test_at_limit_is_allowed(self):
        check_borrowable(1_499_998, 2_999_997, DEFAULTS)

    def test_above_limit(self):
        with pytest.raises(BorrowLimitExceeded):
            check_borrowable(1_499_999, 2_999_997, DEFAULTS)

    def test_no_collateral_admits_no_debt(self):
        check_borrowable(0, 0, DEFAULTS)
        with pytest.raises(BorrowLimitExceeded):
            check_borrowable(1, 0, DEFAULTS)

    def test_custom_rate(self):
        params = RiskParameters(max_borrow_rate=80, liquidate_threshold=90)
        check_borrowable(800, 1_000, params)


class TestIsLiquidatable:

    def test_threshold_is_strict(self):
        # 65% of 1000 = 650
        assert not is_liquidatable(650, 1_000, DEFAULTS)
        assert is_liquidatable(651, 1_000, DEFAULTS)

    def test_no_debt(self):
        assert not is_liquidatable(0, 0, DEFAULTS)

    def test_worthless_collateral(self):
        assert is_liquidatable(1, 0, DEFAULTS)


# ============================================================================
# LIQUIDATION AMOUNTS
# ============================================================================

class TestCalculateLiquidation:

    def test_capped_repay_with_refund(self):
        quote = calculate_liquidation(2_000_000, 2_400_000, 1_000_000, 2_999_997, DEFAULTS)
        assert quote == LiquidationQuote(repay_amount=1_200_000, collateral_out=420_000, refund=800_000)
        assert quote.executable

    def test_deposit_below_cap(self):
        quote = calculate_liquidation(600_000, 2_400_000, 1_000_000, 2_999_997, DEFAULTS)
        assert quote.repay_amount == 600_000
        assert quote.refund == 0
        # 600000 * 105 * 1e6 / (2999997 * 100) = 210000.21
        assert quote.collateral_out == 210_000

    def test_healthy_position_refunds_everything(self):
        quote = calculate_liquidation(1_000_000, 1_900_000, 1_000_000, 2_999_997, DEFAULTS)
        assert quote == LiquidationQuote(0, 0, 1_000_000)
        assert not quote.executable

    def test_collateral_out_capped_at_collateral(self):
        quote = calculate_liquidation(1_000, 1_000, 10, 100, DEFAULTS)
        assert quote.repay_amount == 500
        assert quote.collateral_out == 10

    def test_worthless_collateral_is_seized_whole(self):
        quote = calculate_liquidation(100, 100, 10, 0, DEFAULTS)
        assert quote.collateral_out == 10
        assert quote.repay_amount == 50

    def test_dust_liquidation_is_refunded(self):
        quote = calculate_liquidation(1, 1_000, 10, 1_000, DEFAULTS)
        assert quote == LiquidationQuote(0, 0, 1)

    def test_no_collateral(self):
        assert calculate_liquidation(100, 100, 0, 0, DEFAULTS).refund == 100

    def test_incentive_increases_collateral_out(self):
        generous = RiskParameters(liquidator_incentive=20)
        base = calculate_liquidation(600_000, 2_400_000, 1_000_000, 2_999_997, DEFAULTS)
        more = calculate_liquidation(600_000, 2_400_000, 1_000_000, 2_999_997, generous)
        assert more.collateral_out > base.collateral_out
