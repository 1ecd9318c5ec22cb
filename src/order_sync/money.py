"""Cent-safe money helpers.

All amounts are carried as ``Decimal``. Rounding to cents uses ROUND_HALF_UP
everywhere so that a split rounded here and a transaction total rounded by
the ledger agree on the last cent.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def to_decimal(amount: Decimal | float | int | str) -> Decimal:
    """
    Convert an amount to Decimal without picking up binary float noise.

    Floats go through ``str`` first, so ``0.1`` becomes ``Decimal("0.1")``
    rather than ``Decimal("0.1000000000000000055511151231257827...")``.

    Args:
        amount: Amount as Decimal, float, int, or numeric string

    Returns:
        Amount as Decimal
    """
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        return Decimal(str(amount))
    return Decimal(amount)


def round_cents(amount: Decimal | float | int | str) -> Decimal:
    """Round an amount to 2 decimal places (ROUND_HALF_UP)."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(
    a: Decimal | float, b: Decimal | float, tolerance: Decimal | float
) -> bool:
    """
    Check whether two amounts differ by no more than ``tolerance``.

    Comparison is done in Decimal, so the boundary is exact: two amounts
    exactly one tolerance apart still compare equal.
    """
    diff = abs(to_decimal(a) - to_decimal(b))
    return diff <= to_decimal(tolerance)


def match_sign(amount: Decimal, reference: Decimal) -> Decimal:
    """
    Give ``amount`` the sign of ``reference``.

    Zero and positive references produce a positive result; negative
    references (outflows) produce a negative one.
    """
    magnitude = abs(amount)
    return -magnitude if reference < 0 else magnitude


def format_usd(amount: Decimal | float) -> str:
    """Format an amount as ``$1234.56`` (sign dropped)."""
    return f"${abs(round_cents(amount)):.2f}"


def format_signed_usd(amount: Decimal | float) -> str:
    """Format an amount as ``$1234.56`` or ``-$1234.56``."""
    rounded = round_cents(amount)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{format_usd(rounded)}"


def parse_usd(text: str) -> Decimal:
    """
    Parse a currency string such as ``$1,234.56`` or ``-$5.00``.

    Raises:
        ValueError: If the text isn't a dollar amount
    """
    cleaned = text.strip()
    negative = cleaned.startswith("-")
    cleaned = cleaned.lstrip("-").lstrip("$").replace(",", "").strip()
    if not cleaned:
        raise ValueError(f"Empty amount: {text!r}")

    try:
        amount = Decimal(cleaned)
    except ArithmeticError as e:
        raise ValueError(f"Invalid amount: {text!r}") from e

    return -amount if negative else amount
