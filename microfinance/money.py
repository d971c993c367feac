"""
Money Handling Module

Decimal helpers for every monetary value in the lending core.
NEVER uses float for amounts, rates or allocations.
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Tuple, Union
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')

Amount = Union[Decimal, int, str]


def to_decimal(value: Amount) -> Decimal:
    """
    Convert an incoming value to Decimal

    Args:
        value: Decimal, int or numeric string

    Returns:
        Decimal value

    Raises:
        TypeError: If a float is passed (binary floats lose cents)
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Refusing to convert {type(value).__name__} to a monetary Decimal")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        return decimal_from_string(value)
    raise TypeError(f"Unsupported amount type: {type(value).__name__}")


def quantize_money(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round a Decimal to cents"""
    return value.quantize(CENT, rounding=rounding)


def divide_with_remainder(amount: Decimal, parts: int) -> Tuple[Decimal, Decimal]:
    """
    Split an amount into equal parts floored to cents

    Args:
        amount: Amount to split
        parts: Number of parts (must be positive)

    Returns:
        Tuple of (share per part, remainder left after parts * share)
    """
    if parts <= 0:
        raise ValueError("Cannot divide an amount into zero or negative parts")

    share = quantize_money(amount / Decimal(parts), rounding=ROUND_DOWN)
    remainder = amount - share * parts
    return share, remainder


def percentage(part: Decimal, whole: Decimal) -> str:
    """Return part/whole*100 formatted with two decimals, "0.00" for an empty whole"""
    if whole <= ZERO:
        return "0.00"
    return str(quantize_money(part / whole * HUNDRED))


def format_money(value: Decimal) -> str:
    """Format for display"""
    return f"{quantize_money(value):,.2f}"


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    # Thousands separators
    if ',' in clean_value and '.' in clean_value:
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')

    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    if not result.is_finite():
        raise ValueError(f"Cannot convert '{value}' to Decimal")
    return result
