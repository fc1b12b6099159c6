"""
ledger.py - In-memory fungible token ledger

The Ledger class is the token service the lending contract pays out through.
It is the only module that moves token balances.

Key responsibilities:
    - Implements the TokenLedger protocol (transfer -> ExecuteResult)
    - Executes transfer intents atomically (all transfers apply or none)
    - Idempotent execution keyed on content-hash intent ids
    - transfer_call(): transfer-with-message delivered to a receiver handler,
      with refund of the unused amount and rollback when the handler raises
    - Issuance from SYSTEM_ACCOUNT and a conservation check
    - Frozen accounts, to exercise payout failures
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .core import (
    SYSTEM_ACCOUNT,
    Transfer, PendingTransfer, Transaction, ExecuteResult,
    LendingError, InsufficientFunds, TokenNotRegistered, AccountNotRegistered,
)


# Receives (token, sender, amount, msg) and returns the amount it did not use.
ReceiverHandler = Callable[[str, str, int, str], int]


class Ledger:
    """
    Fungible token ledger with validation and an audit trail.

    Balances are non-negative ints per (account, token). SYSTEM_ACCOUNT is
    exempt from balance validation: issuing tokens debits it below zero, so
    the sum of every balance of a token, system included, is always zero.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_token("usdc")
        ledger.register_account("alice")
        ledger.register_account("bob")
        ledger.mint("usdc", "alice", 1_000)
        result = ledger.transfer("usdc", "alice", "bob", 250, memo="invoice-7")
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Enable debug output (default: True)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.tokens: Set[str] = set()
        self.registered_accounts: Set[str] = set()
        self.frozen_accounts: Set[str] = set()
        self.handlers: Dict[str, ReceiverHandler] = {}
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._next_sequence: int = 0
        # Stamps transfers submitted without a memo so they never collide
        self._next_nonce: int = 0

        self.registered_accounts.add(SYSTEM_ACCOUNT)
        self.balances[SYSTEM_ACCOUNT] = defaultdict(int)

    # ========================================================================
    # READ-ONLY METHODS
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, account: str, token: str) -> int:
        """
        Balance of token held by account.

        Raises:
            AccountNotRegistered: If account is not registered
            TokenNotRegistered: If token is not registered
        """
        if account not in self.registered_accounts:
            raise AccountNotRegistered(f"Account {account} not registered")
        if token not in self.tokens:
            raise TokenNotRegistered(f"Token {token} not registered")
        return self.balances[account].get(token, 0)

    def is_registered(self, account: str) -> bool:
        return account in self.registered_accounts

    def total_supply(self, token: str) -> int:
        """
        Amount of token issued and held outside SYSTEM_ACCOUNT.

        Raises:
            TokenNotRegistered: If token is not registered
        """
        if token not in self.tokens:
            raise TokenNotRegistered(f"Token {token} not registered")
        return sum(
            self.balances[a].get(token, 0)
            for a in sorted(self.registered_accounts)
            if a != SYSTEM_ACCOUNT
        )

    def verify_conservation(self, expected_supplies: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Verify that no token was created or destroyed outside issuance.

        For every token the balances of all accounts, SYSTEM_ACCOUNT included,
        must sum to zero. With expected_supplies, the circulating supply of
        each listed token must also match.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all checks hold
            - 'supplies': Dict[str, int] - Circulating supply per token
            - 'discrepancies': List[Dict] - Details of any violation
        """
        supplies = {}
        discrepancies = []

        for token in sorted(self.tokens):
            net = sum(self.balances[a].get(token, 0) for a in self.registered_accounts)
            supply = self.total_supply(token)
            supplies[token] = supply
            if net != 0:
                discrepancies.append({'token': token, 'error': 'unbalanced', 'net': net})
            if expected_supplies and token in expected_supplies and expected_supplies[token] != supply:
                discrepancies.append({
                    'token': token,
                    'expected': expected_supplies[token],
                    'actual': supply,
                })

        if expected_supplies:
            for token, expected in expected_supplies.items():
                if token not in supplies:
                    discrepancies.append({
                        'token': token,
                        'expected': expected,
                        'actual': 0,
                        'error': 'token not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_token(self, token: str) -> str:
        """
        Register a fungible token.

        Raises:
            ValueError: If token is already registered
        """
        if token in self.tokens:
            raise ValueError(f"Token {token} already registered")
        self.tokens.add(token)
        if self.verbose:
            print(f"📝 Registered token: {token}")
        return token

    def register_account(self, account: str, handler: Optional[ReceiverHandler] = None) -> str:
        """
        Register an account, optionally with a transfer_call receiver.

        Raises:
            ValueError: If account is already registered
        """
        if account in self.registered_accounts:
            raise ValueError(f"Account {account} already registered")
        self.registered_accounts.add(account)
        self.balances[account] = defaultdict(int)
        if handler is not None:
            self.handlers[account] = handler
        return account

    def set_handler(self, account: str, handler: ReceiverHandler) -> None:
        if account not in self.registered_accounts:
            raise AccountNotRegistered(f"Account {account} not registered")
        self.handlers[account] = handler

    def freeze_account(self, account: str) -> None:
        """Reject every transfer to or from account until unfrozen."""
        if account not in self.registered_accounts:
            raise AccountNotRegistered(f"Account {account} not registered")
        self.frozen_accounts.add(account)

    def unfreeze_account(self, account: str) -> None:
        self.frozen_accounts.discard(account)

    # ========================================================================
    # TRANSFER EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def mint(self, token: str, receiver: str, amount: int) -> ExecuteResult:
        """Issue amount of token to receiver from SYSTEM_ACCOUNT."""
        return self.transfer(token, SYSTEM_ACCOUNT, receiver, amount)

    def transfer(
        self,
        token: str,
        sender: str,
        receiver: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> ExecuteResult:
        """
        Move amount of token from sender to receiver.

        Transfers with a memo are idempotent on their content: repeating the
        same (token, sender, receiver, amount, memo) returns ALREADY_APPLIED.
        Transfers without a memo are stamped with a fresh nonce.

        Returns:
            ExecuteResult of the underlying execute()
        """
        if memo is None:
            memo = f"{self.name}:{self._next_nonce}"
            self._next_nonce += 1
        try:
            move = Transfer(token, sender, receiver, amount, memo)
        except ValueError as e:
            if self.verbose:
                print(f"✗ REJECTED: {e}")
            return ExecuteResult.REJECTED
        return self.execute(PendingTransfer(transfers=(move,), timestamp=self._current_time))

    def execute(self, pending: PendingTransfer) -> ExecuteResult:
        """
        Execute a PendingTransfer atomically.

        All transfers succeed together or all fail together. Execution is
        idempotent: a pending transfer with the same intent_id is not applied
        twice.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            transfers=pending.transfers,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            sequence_number=sequence,
        )

        for move in tx.transfers:
            self.balances[move.sender][move.token] -= move.amount
            self.balances[move.receiver][move.token] += move.amount

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            for move in tx.transfers:
                print(f"✓ APPLIED: {move!r} [{tx.exec_id}]")
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransfer) -> Tuple[bool, str]:
        """
        Validate a pending transfer against all constraints.

        Checks performed:
        1. Timestamp (intent must not be from the future)
        2. Token and account registration
        3. Frozen accounts
        4. Non-negative balances after netting (SYSTEM_ACCOUNT exempt)

        Returns:
            Tuple of (success, reason)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.transfers:
            if move.token not in self.tokens:
                return False, f"token not registered: {move.token}"
            for account in (move.sender, move.receiver):
                if account not in self.registered_accounts:
                    return False, f"account not registered: {account}"
                if account in self.frozen_accounts:
                    return False, f"account frozen: {account}"

        net: Dict[Tuple[str, str], int] = defaultdict(int)
        for move in pending.transfers:
            net[(move.sender, move.token)] -= move.amount
            net[(move.receiver, move.token)] += move.amount

        for (account, token), delta in net.items():
            if account == SYSTEM_ACCOUNT:
                continue
            proposed = self.balances[account].get(token, 0) + delta
            if proposed < 0:
                return False, f"{account} {token}: balance {proposed} < 0"

        return True, ""

    # ========================================================================
    # TRANSFER WITH MESSAGE
    # ========================================================================

    def transfer_call(
        self,
        token: str,
        sender: str,
        receiver: str,
        amount: int,
        msg: str,
        memo: Optional[str] = None,
    ) -> int:
        """
        Transfer amount to receiver and deliver msg to its handler.

        The handler runs after the funds have moved and returns the part of
        amount it did not use, which is refunded to sender. If the handler
        raises, the whole transfer is returned and the error propagates.

        Returns:
            Amount kept by the receiver.

        Raises:
            InsufficientFunds: If the initial transfer is rejected
            AccountNotRegistered: If receiver has no handler
            Exception: Whatever the handler raised, after the refund
        """
        handler = self.handlers.get(receiver)
        if handler is None:
            raise AccountNotRegistered(f"Account {receiver} does not accept transfer_call")

        result = self.transfer(token, sender, receiver, amount, memo)
        if result is not ExecuteResult.APPLIED:
            raise InsufficientFunds(
                f"transfer_call of {amount} {token} from {sender} was {result.value}"
            )

        try:
            unused = handler(token, sender, amount, msg)
        except Exception:
            self._refund(token, receiver, sender, amount)
            raise

        unused = max(0, min(unused, amount))
        if unused:
            self._refund(token, receiver, sender, unused)
        return amount - unused

    def _refund(self, token: str, holder: str, sender: str, amount: int) -> None:
        result = self.transfer(token, holder, sender, amount)
        if result is not ExecuteResult.APPLIED:
            raise LendingError(f"Refund of {amount} {token} from {holder} to {sender} failed")

    def __repr__(self) -> str:
        return (
            f"Ledger({self.name!r}, tokens={len(self.tokens)}, "
            f"accounts={len(self.registered_accounts)}, txs={len(self.transaction_log)})"
        )
