"""Decimal amount utilities: parsing, rounding, splitting and formatting."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext, localcontext
from typing import Iterable, Union


TWO_PLACES = Decimal("0.01")

# Digits before the decimal point; anything larger is not a real amount
MAX_INTEGER_DIGITS = 64

# Extra digits kept below the cent so rounding happens once, at the end
GUARD_DIGITS = 12

Amount = Union[str, int, Decimal]


def to_decimal(value: Amount) -> Decimal:
    """
    Parse an amount into a Decimal.

    Raises:
        ValueError: If the value is not a finite decimal number, or has more
            than MAX_INTEGER_DIGITS integer digits
    """
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    if amount.adjusted() >= MAX_INTEGER_DIGITS:
        raise ValueError(f"Amount too large: {value!r}")
    return amount


def _wide_context(*amounts: Decimal):
    """Local decimal context with room for every integer digit plus cents."""
    context = getcontext().copy()
    widest = max(amount.adjusted() for amount in amounts) if amounts else 0
    context.prec = max(context.prec, widest + 3 + GUARD_DIGITS)
    return localcontext(context)


def round2(value: Amount) -> str:
    """
    Round to exactly 2 fractional digits, half-up.

    Args:
        value: Amount as string, int or Decimal (e.g., "33.335")

    Returns:
        Decimal string with two places (e.g., "33.34")
    """
    amount = to_decimal(value)
    with _wide_context(amount):
        return str(amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def is_positive(value: Amount) -> bool:
    """True if the value parses and is greater than zero."""
    try:
        return to_decimal(value) > 0
    except ValueError:
        return False


def split_amount(total: Amount, parts: int) -> str:
    """Per-person share of a total, rounded once at the end."""
    total = to_decimal(total)
    with _wide_context(total):
        return round2(total / Decimal(parts))


def sum_amounts(amounts: Iterable[Amount]) -> str:
    """Sum a sequence of amounts and round the result."""
    values = [to_decimal(amount) for amount in amounts]
    with _wide_context(*values) as context:
        # Room for the carries of len(values) terms
        context.prec += len(str(len(values)))
        total = sum(values, Decimal("0"))
    return round2(total)


def to_token_units(amount: Amount, decimals: int) -> int:
    """Convert a decimal amount to the token's integer base units."""
    value = to_decimal(amount)
    with _wide_context(value) as context:
        context.prec = max(context.prec, len(value.as_tuple().digits)) + decimals
        units = value.scaleb(decimals)
        if units != units.to_integral_value():
            raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(units)


def format_amount(amount: Amount, token_symbol: str) -> str:
    """
    Format an amount for display.

    Example: format_amount("50", "USDC") -> "50.00 USDC"
    """
    return f"{round2(amount)} {token_symbol}"
