"""
fixed_point.py - Guarded integer arithmetic for share and interest math

Balances are unsigned 128-bit values. Products such as
pending_interest * SHARE_DIVISOR can exceed that range, so every
multiply-then-divide is evaluated against a 256-bit intermediate bound and
the result is checked back into 128 bits. Violations raise instead of
wrapping.
"""

from .core import U128_MAX, U256_MAX, AmountOverflow, DivisionByZero, InvalidAmount


def to_amount(value: int, name: str = "amount") -> int:
    """
    Validate that value is a usable token amount.

    Raises:
        InvalidAmount: if value is not an int, is negative, or exceeds u128.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmount(f"{name} must be non-negative, got {value}")
    if value > U128_MAX:
        raise InvalidAmount(f"{name} exceeds u128")
    return value


def checked_add(a: int, b: int) -> int:
    """Add with u128 overflow checking."""
    result = a + b
    if result > U128_MAX:
        raise AmountOverflow("Arithmetic overflow in addition")
    return result


def checked_sub(a: int, b: int) -> int:
    """Subtract with underflow checking."""
    if b > a:
        raise AmountOverflow(f"Arithmetic underflow: {a} - {b}")
    return a - b


def mul_div(a: int, b: int, c: int) -> int:
    """
    Compute floor(a * b / c) with a widened intermediate.

    Raises:
        DivisionByZero: if c is zero.
        AmountOverflow: if a * b exceeds u256 or the quotient exceeds u128.
    """
    if c == 0:
        raise DivisionByZero("mul_div by zero")
    product = a * b
    if product > U256_MAX:
        raise AmountOverflow("Arithmetic overflow in widened multiplication")
    result = product // c
    if result > U128_MAX:
        raise AmountOverflow("Quotient does not fit in u128")
    return result
