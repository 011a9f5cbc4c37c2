from __future__ import annotations

import re
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from ledgerdesk.errors import InvalidAmount

CENTS_PER_UNIT = 100
CENT = Decimal("0.01")
# Numeric(12, 2) holds at most 10 integer digits.
MAX_AMOUNT = Decimal(10) ** 10
AMOUNT_ERROR = "amount must be a positive number"

_DECIMAL_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

AmountInput = Decimal | int | float | str | None


def to_minor_units(value: AmountInput) -> int:
    """Convert an amount to integer cents, treating unparseable input as zero.

    This is the permissive policy for already-persisted data. Digits past the
    second decimal place are truncated toward zero.
    """
    amount = _parse_decimal(value)
    if amount is None:
        return 0
    negative = amount < 0
    cents = int(abs(amount).scaleb(2).to_integral_value(rounding=ROUND_DOWN))
    return -cents if negative else cents


def format_amount(minor_units: int) -> str:
    negative = minor_units < 0
    units, cents = divmod(abs(minor_units), CENTS_PER_UNIT)
    formatted = f"{units}.{cents:02d}"
    return f"-{formatted}" if negative else formatted


def normalize_amount(value: AmountInput) -> str:
    return format_amount(to_minor_units(value))


def parse_amount_strict(value: AmountInput) -> Decimal:
    """Parse untrusted input into a positive amount in cents, or raise."""
    amount = _parse_decimal(value)
    if amount is None:
        raise InvalidAmount(AMOUNT_ERROR)
    try:
        quantized = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise InvalidAmount(AMOUNT_ERROR) from exc
    if quantized <= 0 or quantized >= MAX_AMOUNT:
        raise InvalidAmount(AMOUNT_ERROR)
    return quantized


def _parse_decimal(value: AmountInput) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    text = str(value).strip()
    if not _DECIMAL_PATTERN.match(text):
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None
