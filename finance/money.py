"""Exact decimal helpers for currency amounts.

Amounts travel as strings or :class:`~decimal.Decimal` and are never
converted through binary floats.  Rounding to two places happens only when a
value is presented (:func:`quantize_money`, :func:`format_money`).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from .errors import FinanceValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")
MONEY_PLACES = 2


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    if isinstance(value, Decimal):
        numeric = value
    elif isinstance(value, bool):
        raise FinanceValidationError({field: "Enter a valid number."})
    elif isinstance(value, (int, float)):
        numeric = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            raise FinanceValidationError({field: "This field is required."})
        try:
            numeric = Decimal(text)
        except InvalidOperation as exc:
            raise FinanceValidationError({field: "Enter a valid number."}) from exc
    else:
        raise FinanceValidationError({field: "Enter a valid number."})

    if not numeric.is_finite():
        raise FinanceValidationError({field: "Enter a valid number."})
    return numeric


def decimal_or_zero(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    return to_decimal(value)


def sum_amounts(values: Iterable[Any]) -> Decimal:
    total = ZERO
    for value in values:
        total += decimal_or_zero(value)
    return total


def has_money_precision(value: Decimal) -> bool:
    """Return ``True`` when ``value`` needs no more than two decimal places."""

    exponent = value.normalize().as_tuple().exponent
    return not isinstance(exponent, int) or exponent >= -MONEY_PLACES


def quantize_money(value: Any) -> Decimal:
    return decimal_or_zero(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(quantize_money(value))


def format_money(value: Any, currency: str = "KES") -> str:
    return f"{currency} {quantize_money(value):,.2f}"
