"""
Amount parsing shared by deposits and withdrawals.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from ghostbank.errors import ValidationError

CENTS = Decimal("0.01")
INVALID_AMOUNT = "Please enter a valid amount (e.g. 10.00)."

# Currency prefix, whitespace and thousands separators; the sign stays
_DECORATION = re.compile(r"R\$|\s|,")


def parse_amount(value: Any) -> Decimal:
    """
    Turn a Decimal/number or user text like "R$ 1,000.50" into a positive
    amount in cents.

    Raises:
        ValidationError: unparseable, non-finite, zero or negative
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        cleaned = _DECORATION.sub("", str(value if value is not None else ""))
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            raise ValidationError(INVALID_AMOUNT)

    if not amount.is_finite():
        raise ValidationError(INVALID_AMOUNT)

    try:
        amount = amount.quantize(CENTS)
    except InvalidOperation:
        raise ValidationError(INVALID_AMOUNT)
    if amount <= 0:
        raise ValidationError(INVALID_AMOUNT)
    return amount
