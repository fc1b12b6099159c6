"""
test_contract.py - Unit tests for the LendingContract facade

Tests:
- Pool arena: creation, lookup by id and token pair, pagination
- TransferMessage parsing and encoding
- on_transfer(): routing, pool-id verification, unknown tokens, rollback
- Payout orchestration: borrow, claim, withdraw, collateral withdrawal
- Failed payouts leave books untouched
- Quote fetching: ordering, staleness
- Views
"""

import json
import pytest
from datetime import timedelta

from lending import (
    LendingContract, TransferMessage, TransferType, ExecuteResult, StaticQuoteSource,
    PoolNotFound, PoolMismatch, PayoutFailed, StalePriceData, CollateralNotSupported,
    BorrowLimitExceeded, MalformedQuoteResponse, NoBorrower,
)
from tests.conftest import (
    T0, days, CONTRACT, USDC, WNEAR, FUNDING,
)
from tests.fake_ledger import FakeTokenLedger


DEPOSIT = 1_000_000_000_000
PRINCIPAL = 1_000_000_000
TEN_DAY_INTEREST = 5_479_452


# ============================================================================
# ARENA
# ============================================================================

class TestPoolArena:

    def test_ids_are_sequential(self, market):
        assert market.unsecured == 0
        assert market.secured == 1
        assert market.contract.pool_id_for(USDC) == 0
        assert market.contract.pool_id_for(USDC, WNEAR) == 1

    def test_duplicate_pair(self, market):
        with pytest.raises(ValueError):
            market.contract.create_pool(USDC, 500, collateral_token=WNEAR)

    def test_unknown_pool(self, market):
        with pytest.raises(PoolNotFound):
            market.contract.get_pool(7)
        with pytest.raises(PoolNotFound):
            market.contract.pool_id_for(WNEAR)

    def test_get_pools_pagination(self, market):
        market.contract.create_pool(WNEAR, 1000)
        assert [p.pool_id for p in market.contract.get_pools()] == [0, 1, 2]
        assert [p.pool_id for p in market.contract.get_pools(1, 1)] == [1]
        assert market.contract.get_pools(5, 10) == []

    @pytest.mark.parametrize("from_index, limit", [(-1, None), (-2, 1), (0, -1)])
    def test_get_pools_rejects_negative_bounds(self, market, from_index, limit):
        with pytest.raises(ValueError):
            market.contract.get_pools(from_index, limit)


# ============================================================================
# ENVELOPE
# ============================================================================

class TestTransferMessage:

    def test_round_trip(self):
        message = TransferMessage(TransferType.LIQUIDATE, 3, WNEAR, "bob")
        assert TransferMessage.from_json(message.to_json()) == message

    def test_wire_format(self):
        data = json.loads(TransferMessage(TransferType.DEPOSIT, 0, WNEAR).to_json())
        assert data == {'transfer_type': 'Deposit', 'pool_id': 0, 'token': WNEAR}

    @pytest.mark.parametrize("msg", [
        "lend",
        "[1, 2]",
        '{"pool_id": 0}',
        '{"transfer_type": "Lend", "pool_id": 0}',
        '{"transfer_type": "Deposit", "pool_id": -1}',
        '{"transfer_type": "Deposit", "pool_id": "0"}',
        '{"transfer_type": "Liquidate", "pool_id": 1, "token": "wnear"}',
    ])
    def test_malformed(self, msg):
        with pytest.raises(ValueError):
            TransferMessage.from_json(msg)


# ============================================================================
# TRANSFER HANDLER
# ============================================================================

class TestOnTransfer:

    def test_deposit(self, market):
        assert market.deposit("alice", DEPOSIT) == DEPOSIT
        assert market.balance(CONTRACT) == DEPOSIT
        assert market.contract.get_lender(0, "alice").share == DEPOSIT

    def test_declared_pool_must_match(self, market):
        msg = TransferMessage(TransferType.DEPOSIT, market.secured, None).to_json()
        with pytest.raises(PoolMismatch):
            market.ledger.transfer_call(USDC, "alice", CONTRACT, 1_000, msg)
        assert market.balance("alice") == FUNDING
        assert market.contract.get_pool(0).supply == 0
        assert market.contract.get_pool(1).supply == 0

    def test_unknown_pair(self, market):
        msg = TransferMessage(TransferType.DEPOSIT, 0, "dai").to_json()
        with pytest.raises(PoolNotFound):
            market.ledger.transfer_call(USDC, "alice", CONTRACT, 1_000, msg)
        assert market.balance("alice") == FUNDING

    def test_unknown_token_refunded(self, market):
        market.ledger.register_token("dai")
        market.ledger.mint("dai", "alice", 50)
        kept = market.ledger.transfer_call("dai", "alice", CONTRACT, 50, "anything")
        assert kept == 0
        assert market.ledger.get_balance("alice", "dai") == 50

    def test_malformed_envelope_rolled_back(self, market):
        with pytest.raises(ValueError):
            market.ledger.transfer_call(USDC, "alice", CONTRACT, 1_000, "lend")
        assert market.balance("alice") == FUNDING

    @pytest.mark.parametrize("field, value", [
        ("token", ["x"]),
        ("token", {"id": USDC}),
        ("token", 7),
        ("borrower_id", ["bob"]),
    ])
    def test_non_string_envelope_fields_rolled_back(self, market, field, value):
        envelope = {"transfer_type": "Deposit", "pool_id": 0, field: value}
        with pytest.raises(ValueError, match=field):
            market.ledger.transfer_call(USDC, "alice", CONTRACT, 1_000, json.dumps(envelope))
        assert market.balance("alice") == FUNDING
        assert market.balance(CONTRACT) == 0
        assert market.contract.get_pool(0).supply == 0

    def test_non_string_fields_rejected_on_construction(self):
        with pytest.raises(ValueError):
            TransferMessage(TransferType.LIQUIDATE, 1, None, ["bob"])

    def test_mortgage(self, market):
        market.mortgage("bob", 1_000_000)
        assert market.contract.get_loan(market.secured, "bob").collateral_amount == 1_000_000
        assert market.ledger.get_balance(CONTRACT, WNEAR) == 1_000_000

    def test_mortgage_into_unsecured_pool(self, market):
        msg = TransferMessage(TransferType.MORTGAGE, 0, USDC).to_json()
        with pytest.raises(PoolMismatch):
            market.ledger.transfer_call(WNEAR, "bob", CONTRACT, 1_000, msg)
        assert market.ledger.get_balance("bob", WNEAR) == FUNDING

    def test_repay_refunds_overpayment(self, market):
        market.deposit("alice", DEPOSIT)
        market.contract.borrow("bob", 0, PRINCIPAL)
        market.advance(days(10))
        kept = market.repay("bob", PRINCIPAL + TEN_DAY_INTEREST + 5_000)
        assert kept == PRINCIPAL + TEN_DAY_INTEREST
        assert market.balance("bob") == FUNDING - TEN_DAY_INTEREST
        assert market.balance(CONTRACT) == DEPOSIT + TEN_DAY_INTEREST

    def test_repay_on_behalf(self, market):
        market.deposit("alice", DEPOSIT)
        market.contract.borrow("bob", 0, PRINCIPAL)
        msg = market.contract.envelope(TransferType.REPAY, 0, borrower_id="bob")
        market.ledger.transfer_call(USDC, "carol", CONTRACT, PRINCIPAL, msg)
        with pytest.raises(NoBorrower):
            market.contract.get_loan(0, "bob")


# ============================================================================
# PAYOUTS
# ============================================================================

class TestPayouts:

    def test_borrow_pays_borrower(self, market):
        market.deposit("alice", DEPOSIT)
        loan = market.contract.borrow("bob", 0, PRINCIPAL)
        assert loan.principal == PRINCIPAL
        assert market.balance("bob") == FUNDING + PRINCIPAL
        assert market.balance(CONTRACT) == DEPOSIT - PRINCIPAL

    def test_borrow_payout_failure(self, market):
        market.deposit("alice", DEPOSIT)
        market.ledger.freeze_account("bob")
        with pytest.raises(PayoutFailed):
            market.contract.borrow("bob", 0, PRINCIPAL)
        summary = market.contract.get_pool(0)
        assert summary.amount_borrowed == 0
        assert summary.reserved == 0
        assert market.balance(CONTRACT) == DEPOSIT

    def test_claim(self, market):
        market.deposit("alice", DEPOSIT)
        market.contract.borrow("bob", 0, PRINCIPAL)
        market.advance(days(10))
        assert market.contract.get_amount_claimable(0, "alice") == TEN_DAY_INTEREST
        assert market.contract.claim("alice", 0) == TEN_DAY_INTEREST
        assert market.balance("alice") == FUNDING - DEPOSIT + TEN_DAY_INTEREST
        assert market.contract.get_amount_claimable(0, "alice") == 0

    def test_claim_payout_failure(self, market):
        market.deposit("alice", DEPOSIT)
        market.contract.borrow("bob", 0, PRINCIPAL)
        market.advance(days(10))
        market.ledger.freeze_account("alice")
        with pytest.raises(PayoutFailed):
            market.contract.claim("alice", 0)
        assert market.contract.get_amount_claimable(0, "alice") == TEN_DAY_INTEREST
        market.ledger.unfreeze_account("alice")
        assert market.contract.claim("alice", 0) == TEN_DAY_INTEREST

    def test_claim_nothing(self, market):
        market.deposit("alice", DEPOSIT)
        assert market.contract.claim("alice", 0) == 0

    def test_withdraw(self, market):
        market.deposit("alice", DEPOSIT)
        assert market.contract.withdraw("alice", 0, DEPOSIT) == DEPOSIT
        assert market.balance("alice") == FUNDING
        assert market.balance(CONTRACT) == 0

    def test_withdraw_collateral(self, market):
        market.mortgage("bob", 1_000_000)
        loan = market.contract.withdraw_collateral("bob", market.secured, 400_000)
        assert loan.collateral_amount == 600_000
        assert market.ledger.get_balance("bob", WNEAR) == FUNDING - 600_000

    def test_secured_borrow_respects_limit(self, market):
        market.deposit("alice", DEPOSIT, market.secured)
        market.mortgage("bob", 1_000_000)
        with pytest.raises(BorrowLimitExceeded):
            market.contract.borrow("bob", market.secured, 2_499_998)
        market.contract.borrow("bob", market.secured, 2_499_997)

    def test_memo_names_the_effect(self):
        fake = FakeTokenLedger()
        contract = LendingContract(CONTRACT, fake, initial_time=T0, verbose=False)
        contract.create_pool(USDC, 2000)
        contract.on_transfer(USDC, "alice", 10_000, contract.envelope(TransferType.DEPOSIT, 0))
        contract.borrow("bob", 0, 1_000)
        token, sender, receiver, amount, memo = fake.transfers[-1]
        assert (token, sender, receiver, amount) == (USDC, CONTRACT, "bob", 1_000)
        assert memo.startswith("lending:0:borrow:")

    def test_scripted_rejection(self):
        fake = FakeTokenLedger(results=[ExecuteResult.REJECTED])
        contract = LendingContract(CONTRACT, fake, initial_time=T0, verbose=False)
        contract.create_pool(USDC, 2000)
        contract.on_transfer(USDC, "alice", 10_000, contract.envelope(TransferType.DEPOSIT, 0))
        with pytest.raises(PayoutFailed):
            contract.borrow("bob", 0, 1_000)
        assert contract.borrow("bob", 0, 1_000).principal == 1_000


# ============================================================================
# QUOTES
# ============================================================================

class TestQuotes:

    def test_stale_quote_blocks_borrow(self, market):
        market.deposit("alice", DEPOSIT, market.secured)
        market.mortgage("bob", 1_000_000)
        market.contract.advance_time(T0 + timedelta(minutes=11))
        with pytest.raises(StalePriceData):
            market.contract.borrow("bob", market.secured, 1_000)

    def test_collateral_quote_fetched_first(self):
        quoter = StaticQuoteSource()
        quoter.set_pool("ref-col", (WNEAR, "eth"), (10**12, 2 * 10**12), observed_at=T0)
        quoter.set_pool("ref-lend", ("eth", USDC), (10**12, 3 * 10**12), observed_at=T0)
        contract = LendingContract(CONTRACT, FakeTokenLedger(), quoter, T0, verbose=False)
        pool_id = contract.create_pool(
            USDC, 2000, collateral_token=WNEAR, base_token="eth",
            collateral_pricing_ref="ref-col", lending_pricing_ref="ref-lend",
        )
        contract.on_transfer(WNEAR, "bob", 1_000_000, contract.envelope(TransferType.MORTGAGE, pool_id))
        health = contract.get_health(pool_id, "bob")
        assert quoter.requests == ["ref-col", "ref-lend"]
        assert health.collateral_value > 0

    def test_missing_quoter(self):
        contract = LendingContract(CONTRACT, FakeTokenLedger(), initial_time=T0, verbose=False)
        pool_id = contract.create_pool(USDC, 2000, collateral_token=WNEAR, collateral_pricing_ref="ref")
        contract.on_transfer(WNEAR, "bob", 1_000, contract.envelope(TransferType.MORTGAGE, pool_id))
        with pytest.raises(MalformedQuoteResponse):
            contract.get_health(pool_id, "bob")


# ============================================================================
# VIEWS
# ============================================================================

class TestViews:

    def test_get_pool(self, market):
        market.deposit("alice", DEPOSIT)
        summary = market.contract.get_pool(0)
        assert summary.supply == DEPOSIT
        assert summary.total_share == DEPOSIT

    def test_get_health(self, market):
        market.deposit("alice", DEPOSIT, market.secured)
        market.mortgage("bob", 1_000_000)
        market.contract.borrow("bob", market.secured, 2_400_000)
        health = market.contract.get_health(market.secured, "bob")
        assert health.debt == 2_400_000
        assert health.collateral_value == 4_999_995
        assert health.borrow_limit == 2_499_997
        assert health.liquidation_value == 3_249_996
        assert not health.liquidatable

        market.set_price(1_000_000_000_000, 3_000_000_000_000)
        assert market.contract.get_health(market.secured, "bob").liquidatable

    def test_get_health_unsecured(self, market):
        with pytest.raises(CollateralNotSupported):
            market.contract.get_health(0, "bob")

    def test_verbose_logging(self, capsys):
        contract = LendingContract(CONTRACT, FakeTokenLedger(), initial_time=T0)
        contract.create_pool(USDC, 2000)
        assert "pool id: 0" in capsys.readouterr().out

    def test_repr(self, market):
        assert "pools=2" in repr(market.contract)
