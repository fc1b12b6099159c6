"""
interest.py - Simple interest accrual between capitalizations

Interest accrues continuously at one-second granularity:

    interest = principal * rate_bps * elapsed_seconds / (BPS_DIVISOR * SECONDS_PER_YEAR)

A loan's interest is only ever computed on its principal since its last
capitalization. Pool-wide interest for the reward accumulator is, per loan,
the growth of that same figure between the last touch and now, so the
accumulator tracks borrower debt without drift from repeated rounding.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Iterable, Tuple

from .core import BPS_DIVISOR, SECONDS_PER_YEAR
from .fixed_point import mul_div


def elapsed_seconds(start: datetime, now: datetime) -> int:
    """
    Whole seconds between start and now.

    Raises:
        ValueError: if now is before start.
    """
    if now < start:
        raise ValueError(f"Cannot move time backwards: {now} < {start}")
    return (now - start) // timedelta(seconds=1)


def calculate_interest(principal: int, rate_bps: int, start: datetime, now: datetime) -> int:
    """
    Interest owed on principal for the interval [start, now].

    Args:
        principal: Outstanding principal
        rate_bps: Annual rate in basis points (2000 = 20%)
        start: Last capitalization time
        now: Current time

    Returns:
        Interest amount, rounded down
    """
    seconds = elapsed_seconds(start, now)
    if principal == 0 or rate_bps == 0 or seconds == 0:
        return 0
    return mul_div(principal * rate_bps, seconds, BPS_DIVISOR * SECONDS_PER_YEAR)


def calculate_pending_interest(
    loans: Iterable[Tuple[int, datetime]],
    rate_bps: int,
    since: datetime,
    now: datetime,
) -> int:
    """
    Total interest accrued by all loans over [since, now].

    Each loan is a (principal, loan_start_time) pair. A loan's share of the
    interval is the growth of its own interest since loan_start_time, so the
    pending amounts over successive touches add up to exactly the interest
    the borrower owes, whatever the touch frequency.
    """
    elapsed_seconds(since, now)
    total = 0
    for principal, start in loans:
        total += (
            calculate_interest(principal, rate_bps, start, now)
            - calculate_interest(principal, rate_bps, start, max(start, since))
        )
    return total
