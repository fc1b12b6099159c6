"""
quotes.py - Exchange pool snapshots used for collateral valuation

Provides:
- PoolState: validated, immutable snapshot of an exchange pool
- parse_pool_state(): turns a raw PriceQuoter response into a PoolState
- QuoteSet: the quotes fetched for one decision, addressed by name
- fetch_quotes(): requests the quotes a lending pool needs, in a fixed order
- StaticQuoteSource: in-memory PriceQuoter

Quotes are snapshots. A decision must use the quote it actually received and
reject quotes older than the allowed age.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .core import (
    FEE_DIVISOR, QUOTE_MAX_AGE, U128_MAX,
    MalformedQuoteResponse, PriceQuoter, StalePriceData,
)


@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Snapshot of a constant-product exchange pool.

    Attributes:
        pool_ref: Identifier of the exchange pool
        token_ids: Tokens held by the pool, index-aligned with balances
        balances: Reserve of each token
        fee: Swap fee against FEE_DIVISOR
        total_shares: Liquidity shares outstanding (informational)
        observed_at: When the snapshot was taken (None = at fetch time)
    """
    pool_ref: str
    token_ids: Tuple[str, ...]
    balances: Tuple[int, ...]
    fee: int
    total_shares: int = 0
    observed_at: Optional[datetime] = None

    def balance_of(self, token: str) -> int:
        """Reserve of token in this pool."""
        try:
            return self.balances[self.token_ids.index(token)]
        except ValueError:
            raise MalformedQuoteResponse(
                f"Exchange pool {self.pool_ref} does not hold {token}"
            ) from None

    def to_dict(self) -> Dict[str, Any]:
        """Raw form, as a quoting service would return it."""
        raw = {
            'token_account_ids': list(self.token_ids),
            'amounts': [str(b) for b in self.balances],
            'total_fee': self.fee,
            'shares_total_supply': str(self.total_shares),
        }
        if self.observed_at is not None:
            raw['timestamp'] = self.observed_at
        return raw


def _parse_int(value: Any, field_name: str, pool_ref: str) -> int:
    # Large balances travel as decimal strings.
    if isinstance(value, bool):
        raise MalformedQuoteResponse(f"{pool_ref}: {field_name} is not an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        try:
            result = int(value, 10)
        except ValueError:
            raise MalformedQuoteResponse(
                f"{pool_ref}: {field_name}={value!r} is not an integer"
            ) from None
    else:
        raise MalformedQuoteResponse(f"{pool_ref}: {field_name} is not an integer")
    if result < 0 or result > U128_MAX:
        raise MalformedQuoteResponse(f"{pool_ref}: {field_name} out of range")
    return result


def parse_pool_state(pool_ref: str, raw: Mapping[str, Any]) -> PoolState:
    """
    Validate a raw quoting-service response.

    Expected keys: token_account_ids, amounts, total_fee,
    shares_total_supply (optional), timestamp (optional datetime).

    Raises:
        MalformedQuoteResponse: on missing keys, mismatched lengths, fewer than
            two tokens, empty reserves, or a fee outside [0, FEE_DIVISOR).
    """
    if not isinstance(raw, Mapping):
        raise MalformedQuoteResponse(f"{pool_ref}: response is not a mapping")
    try:
        token_ids = raw['token_account_ids']
        amounts = raw['amounts']
        fee = raw['total_fee']
    except KeyError as e:
        raise MalformedQuoteResponse(f"{pool_ref}: missing field {e.args[0]}") from None

    if not isinstance(token_ids, (list, tuple)) or not isinstance(amounts, (list, tuple)):
        raise MalformedQuoteResponse(f"{pool_ref}: tokens and amounts must be lists")
    if len(token_ids) != len(amounts):
        raise MalformedQuoteResponse(f"{pool_ref}: {len(token_ids)} tokens but {len(amounts)} amounts")
    if len(token_ids) < 2:
        raise MalformedQuoteResponse(f"{pool_ref}: pool must hold at least two tokens")
    if len(set(token_ids)) != len(token_ids):
        raise MalformedQuoteResponse(f"{pool_ref}: duplicate tokens")

    balances = tuple(_parse_int(a, 'amounts', pool_ref) for a in amounts)
    if any(b == 0 for b in balances):
        raise MalformedQuoteResponse(f"{pool_ref}: empty reserve")

    fee = _parse_int(fee, 'total_fee', pool_ref)
    if fee >= FEE_DIVISOR:
        raise MalformedQuoteResponse(f"{pool_ref}: fee {fee} >= {FEE_DIVISOR}")

    total_shares = _parse_int(raw.get('shares_total_supply', 0), 'shares_total_supply', pool_ref)

    observed_at = raw.get('timestamp')
    if observed_at is not None and not isinstance(observed_at, datetime):
        raise MalformedQuoteResponse(f"{pool_ref}: timestamp must be a datetime")

    return PoolState(
        pool_ref=pool_ref,
        token_ids=tuple(str(t) for t in token_ids),
        balances=balances,
        fee=fee,
        total_shares=total_shares,
        observed_at=observed_at,
    )


def check_fresh(state: PoolState, now: datetime, max_age: timedelta = QUOTE_MAX_AGE) -> PoolState:
    """
    Reject snapshots older than max_age.

    Raises:
        StalePriceData: if now - observed_at > max_age.
    """
    if state.observed_at is not None and now - state.observed_at > max_age:
        raise StalePriceData(
            f"Quote for {state.pool_ref} observed at {state.observed_at} is older than {max_age}"
        )
    return state


@dataclass(frozen=True, slots=True)
class QuoteSet:
    """
    Quotes gathered for a single valuation.

    collateral_quote prices collateral against the base unit; lending_quote
    prices the base unit against the lending token. Either is None when the
    corresponding leg is not needed.
    """
    collateral_quote: Optional[PoolState] = None
    lending_quote: Optional[PoolState] = None


def fetch_quotes(
    quoter: PriceQuoter,
    collateral_ref: Optional[str],
    lending_ref: Optional[str],
    now: datetime,
    max_age: timedelta = QUOTE_MAX_AGE,
) -> QuoteSet:
    """
    Request the quotes for a valuation.

    The collateral quote is always requested before the lending quote.
    """
    collateral_quote = None
    lending_quote = None
    if collateral_ref is not None:
        raw = quoter.get_pool_state(collateral_ref)
        collateral_quote = check_fresh(parse_pool_state(collateral_ref, raw), now, max_age)
    if lending_ref is not None:
        raw = quoter.get_pool_state(lending_ref)
        lending_quote = check_fresh(parse_pool_state(lending_ref, raw), now, max_age)
    return QuoteSet(collateral_quote=collateral_quote, lending_quote=lending_quote)


class StaticQuoteSource:
    """
    In-memory quoting service.

    Holds one snapshot per exchange pool and returns it in raw form.
    Snapshots can be replaced to simulate price moves.
    """

    def __init__(self, states: Optional[Dict[str, PoolState]] = None):
        self.states: Dict[str, PoolState] = dict(states or {})
        self.requests: List[str] = []

    def get_pool_state(self, pool_ref: str) -> Dict[str, Any]:
        """Return the raw snapshot for pool_ref."""
        self.requests.append(pool_ref)
        if pool_ref not in self.states:
            raise MalformedQuoteResponse(f"Unknown exchange pool {pool_ref}")
        return self.states[pool_ref].to_dict()

    def set_pool(
        self,
        pool_ref: str,
        token_ids: Tuple[str, ...],
        balances: Tuple[int, ...],
        fee: int = 0,
        observed_at: Optional[datetime] = None,
    ) -> None:
        """Install or replace the snapshot of an exchange pool."""
        self.states[pool_ref] = PoolState(
            pool_ref=pool_ref,
            token_ids=tuple(token_ids),
            balances=tuple(balances),
            fee=fee,
            total_shares=0,
            observed_at=observed_at,
        )

    def __repr__(self):
        return f"StaticQuoteSource({len(self.states)} pools)"
