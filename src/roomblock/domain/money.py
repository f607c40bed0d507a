"""Money helpers. Amounts are Decimal with two places; JSON carries them as strings."""

from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(to_money(value))
