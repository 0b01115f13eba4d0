"""Price and size arithmetic at exchange precision."""
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

SIZE_PRECISION = 8


def _exp(prec: int) -> Decimal:
    return Decimal(1).scaleb(-prec)


def round_to(value: Decimal, prec: int) -> Decimal:
    """Round half-up to `prec` decimal places."""
    return Decimal(value).quantize(_exp(prec), rounding=ROUND_HALF_UP)


def floor_to(value: Decimal, prec: int) -> Decimal:
    return Decimal(value).quantize(_exp(prec), rounding=ROUND_DOWN)


def multiply(price: Decimal, mult: Decimal, prec: int) -> Decimal:
    """`price * mult` at price precision, e.g. multiply(100, 1.05, 2) == 105.00."""
    return round_to(Decimal(price) * Decimal(mult), prec)


def format_multiplier(mult: Decimal) -> str:
    """Signed percentage: 1.05 -> '+5%', 0.9 -> '-10%'."""
    pct = (Decimal(mult) - 1) * 100
    pct = pct.quantize(Decimal(1)) if pct == pct.to_integral_value() else pct.normalize()
    sign = "+" if pct >= 0 else ""
    return f"{sign}{pct}%"


def max_sell_size(filled: Decimal, hold: bool, mult: Decimal, prec: int = SIZE_PRECISION) -> Decimal:
    """Quantity to sell after a buy fill.

    Without hold the whole fill is sold. With hold only the part needed to
    recoup the quote spent at the take-profit target is sold (`filled / mult`),
    the rest stays in the account as reserve.
    """
    if not hold:
        return floor_to(filled, prec)
    return floor_to(Decimal(filled) / Decimal(mult), prec)
