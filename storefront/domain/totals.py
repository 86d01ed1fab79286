# storefront/domain/totals.py
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def line_subtotal(price, quantity: int) -> Decimal:
    return to_money(Decimal(str(price)) * quantity)


def calculate_totals(
    subtotals: Iterable[Decimal],
    tax_rate: Decimal,
    shipping=Decimal("0.00"),
    discount=Decimal("0.00"),
) -> dict:
    """
    Liczy totals dla ticketu z pozycji kupionych.

    tax jest zaokraglany do centow przed sumowaniem, wiec
    total == subtotal + tax + shipping - discount zawsze dokladnie.
    Rabat jest obcinany tak, zeby total nie spadl ponizej zera.
    """
    subtotal = to_money(sum(subtotals, Decimal("0.00")))
    tax = to_money(subtotal * Decimal(str(tax_rate)))
    shipping = to_money(shipping)
    discount = to_money(discount)

    if shipping < 0 or discount < 0:
        raise ValueError("Koszt wysylki i rabat nie moga byc ujemne")

    discount = min(discount, subtotal + tax + shipping)
    total = subtotal + tax + shipping - discount

    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping": shipping,
        "discount": discount,
        "total": total,
    }
