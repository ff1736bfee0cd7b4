from collections.abc import Iterable
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

MoneyLike = Union[Decimal, float, int, str]

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: MoneyLike) -> Decimal:
    """Convert to Decimal via str so floats never leak binary noise into amounts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: MoneyLike) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    value = to_decimal(value)
    if value < 0:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_DOWN)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def percentage_of(amount: MoneyLike, rate: MoneyLike) -> Decimal:
    """Unrounded ``amount * rate / 100``."""
    return to_decimal(amount) * to_decimal(rate) / HUNDRED


def sum_money(values: Iterable[MoneyLike]) -> Decimal:
    """Sum and round a sequence of amounts; an empty sequence sums to 0.00."""
    return round_money(sum((to_decimal(v) for v in values), ZERO))


def format_money(value: MoneyLike, currency: str) -> str:
    """Format as ``"140.00 EGP"``."""
    return f"{round_money(value):.2f} {currency.upper()}"
