"""
Money helpers for payment schedules.

Payment figures arrive from the calculation service as integer pence.
Arithmetic stays in Decimal; rounding and formatting happen at the display
boundary only.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import date, datetime
from typing import Optional, Union
import re
import logging

logger = logging.getLogger(__name__)

DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
PENCE_PER_POUND = Decimal('100')
MAX_PENCE_VALUE = 99999999999999
CURRENCY_SYMBOL = "£"

Numeric = Union[float, int, str, Decimal]


class MoneyPrecisionError(Exception):
    """Raised when a value cannot be treated as money"""
    pass


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise MoneyPrecisionError(f"Cannot convert {type(value)} to Decimal")
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            raise MoneyPrecisionError(f"Cannot convert '{value}' to Decimal")
    raise MoneyPrecisionError(f"Cannot convert {type(value)} to Decimal")


def round_financial(value: Numeric) -> Decimal:
    """Round a value to 2 decimal places, half up."""
    return to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def safe_add(*values: Numeric) -> Decimal:
    """Safe addition of multiple values, skipping None"""
    result = Decimal('0')
    for v in values:
        if v is None:
            continue
        result += to_decimal(v)
    return result


def pence_to_pounds(value_in_pence: int) -> Decimal:
    """
    Convert an integer pence value into a 2dp pounds value.

    Raises TypeError for non-integers and ValueError outside 0..MAX_PENCE_VALUE.
    """
    if isinstance(value_in_pence, bool) or not isinstance(value_in_pence, int):
        raise TypeError("Payment value must be an integer number of pence")
    if value_in_pence < 0 or value_in_pence > MAX_PENCE_VALUE:
        raise ValueError(f"Payment value must be between 0 and {MAX_PENCE_VALUE}")
    return round_financial(Decimal(value_in_pence) / PENCE_PER_POUND)


def format_currency(value: Optional[Numeric], in_pence: bool = False) -> str:
    """
    Format a pounds (or pence) value as en-GB currency, e.g. £1,234.56.

    None and empty strings render as "", never as £0.00.
    """
    if value is None or value == "":
        return ""
    amount = to_decimal(value)
    if in_pence:
        amount = amount / PENCE_PER_POUND
    amount = round_financial(amount)
    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(amount):,.2f}"


def format_payment_date(payment_date: Union[str, date, datetime]) -> str:
    """Format a YYYY-MM-DD string (or date) as DD/MM/YYYY"""
    if isinstance(payment_date, (date, datetime)):
        return payment_date.strftime("%d/%m/%Y")
    if not isinstance(payment_date, str):
        raise TypeError("Payment date must be a string")
    match = re.match(r"^(\d{4})-(\d{2})-(\d{2})", payment_date)
    if not match:
        raise ValueError("Payment date must be in YYYY-MM-DD format")
    year, month, day = match.groups()
    return f"{day}/{month}/{year}"
