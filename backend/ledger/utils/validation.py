"""Reusable request validation helpers for route handlers.

Every helper returns the cleaned value (to enable inline usage) or aborts with
a 400 carrying a short description naming the offending field.
"""
from __future__ import annotations
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional
from flask import abort

CENT = Decimal('0.01')
# Numeric(12,2) holds at most ten integer digits.
MAX_AMOUNT = Decimal('10000000000')
MAX_QUANTITY = 1_000_000
MAX_ID = 2 ** 63 - 1


def validate_choice(value: Any, allowed: Iterable[str], field_name: str) -> str:
    """Validate that value is one of allowed."""
    allowed = tuple(allowed)
    if value not in allowed:
        abort(400, description=f"{field_name} must be one of: {', '.join(allowed)}")
    return value


def validate_status(new_status: str, allowed: Iterable[str]) -> str:
    return validate_choice(new_status, allowed, 'status')


def require_str(value: Any, field_name: str, max_len: int, min_len: int = 1) -> str:
    if not isinstance(value, str) or not (min_len <= len(value.strip()) and len(value) <= max_len):
        abort(400, description=f'{field_name} must be a string of {min_len}-{max_len} characters')
    return value


def optional_str(value: Any, field_name: str, max_len: int) -> Optional[str]:
    """Accept None or a string up to max_len; empty strings are kept as-is."""
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > max_len:
        abort(400, description=f'{field_name} must be a string of at most {max_len} characters')
    return value


def positive_int(value: Any, field_name: str, maximum: int = MAX_ID) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        abort(400, description=f'{field_name} must be a positive integer')
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        abort(400, description=f'{field_name} must be a positive integer')
    if number < 1 or (isinstance(value, float) and not value.is_integer()):
        abort(400, description=f'{field_name} must be a positive integer')
    if number > maximum:
        abort(400, description=f'{field_name} must be at most {maximum}')
    return number


def optional_positive_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    return positive_int(value, field_name)


def quantity(value: Any, field_name: str = 'quantity') -> int:
    return positive_int(value, field_name, maximum=MAX_QUANTITY)


def money(value: Any, field_name: str, allow_zero: bool = False) -> Decimal:
    """Parse a monetary amount with at most two decimal places."""
    if isinstance(value, bool) or value is None:
        abort(400, description=f'{field_name} must be a number')
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        abort(400, description=f'{field_name} must be a number')
    if not amount.is_finite():
        abort(400, description=f'{field_name} must be a number')
    if amount < 0 or (amount == 0 and not allow_zero):
        abort(400, description=f'{field_name} must be positive')
    if amount >= MAX_AMOUNT:
        abort(400, description=f'{field_name} must be less than {MAX_AMOUNT}')
    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        abort(400, description=f'{field_name} must have at most 2 decimal places')
    return amount.quantize(CENT)


def percentage(value: Any, field_name: str = 'percentage') -> Decimal:
    pct = money(value, field_name, allow_zero=True)
    if pct > 100:
        abort(400, description=f'{field_name} must be between 0 and 100')
    return pct


__all__ = [
    'validate_choice', 'validate_status', 'require_str', 'optional_str', 'positive_int',
    'optional_positive_int', 'quantity', 'money', 'percentage', 'MAX_AMOUNT', 'MAX_QUANTITY',
]
