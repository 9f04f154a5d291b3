# gestioo/quotations/pricing.py

"""Per-line and aggregate money arithmetic for quotations.

Everything here is a pure function of its arguments so it can run on every
edit. Amounts are kept unrounded; rounding only happens in ``format_amount``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from gestioo.errors import ValidationError
from gestioo.quotations.models import (
    Currency,
    DiscountItem,
    LineItem,
    ProductItem,
    to_display,
    to_local,
)

IVA_RATE = 0.19

__all__ = [
    "IVA_RATE",
    "LineValues",
    "Margin",
    "Totals",
    "compute_line",
    "compute_margin",
    "compute_totals",
    "format_amount",
    "price_with_profit",
    "profit_percent",
    "to_display",
    "to_local",
]


@dataclass(frozen=True)
class LineValues:
    base: float
    discount_amount: float
    net_after_discount: float
    tax_amount: float
    line_total: float
    # standalone reduction of a discount-adjustment line, 0 otherwise
    reduction: float = 0.0
    is_adjustment: bool = False
    # percentage actually applied, after the has_discount gate
    discount_percent: float = 0.0


@dataclass(frozen=True)
class Margin:
    percent: float
    amount: float


@dataclass(frozen=True)
class Totals:
    gross_subtotal: float = 0.0
    discounts: float = 0.0
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0


def _effective_discount(item: LineItem) -> float:
    if item.has_discount and item.discount_percent > 0:
        return item.discount_percent
    return 0.0


def compute_line(item: LineItem, local: bool = False) -> LineValues:
    """Money values of one line.

    With ``local=True`` the CLP shadow price is used instead of the displayed
    price; exports do this and convert back when formatting.
    """
    price = item.local_price if local else item.unit_price
    base = price * item.quantity
    percent = _effective_discount(item)

    if isinstance(item, DiscountItem):
        reduction = base * percent / 100
        return LineValues(
            base=0.0,
            discount_amount=0.0,
            net_after_discount=-reduction,
            tax_amount=0.0,
            line_total=-reduction,
            reduction=reduction,
            is_adjustment=True,
            discount_percent=percent,
        )

    discount = base * percent / 100
    net = base - discount
    tax = net * IVA_RATE if item.has_tax else 0.0
    return LineValues(
        base=base,
        discount_amount=discount,
        net_after_discount=net,
        tax_amount=tax,
        line_total=net + tax,
        discount_percent=percent,
    )


def compute_margin(item: LineItem) -> Optional[Margin]:
    """Profit of a catalog product, from the CLP shadow price.

    Returns ``None`` (not applicable) for services and discount adjustments.
    """
    if not isinstance(item, ProductItem):
        return None
    cost = item.cost_price or 0.0
    percent = (item.local_price - cost) / cost * 100 if cost > 0 else 0.0
    return Margin(percent=percent, amount=(item.local_price - cost) * item.quantity)


def compute_totals(items: Iterable[LineItem], local: bool = False) -> Totals:
    gross = discounts = subtotal = tax = total = 0.0
    for item in items:
        values = compute_line(item, local=local)
        gross += values.base
        discounts += values.discount_amount + values.reduction
        subtotal += values.net_after_discount
        tax += values.tax_amount
        total += values.line_total
    return Totals(
        gross_subtotal=gross,
        discounts=discounts,
        subtotal=subtotal,
        tax=tax,
        total=total,
    )


def _group_thousands(digits: str, sep: str) -> str:
    out = []
    while len(digits) > 3:
        out.insert(0, digits[-3:])
        digits = digits[:-3]
    out.insert(0, digits)
    return sep.join(out)


def format_amount(amount_local: float, currency: Currency, rate: float = 1.0) -> str:
    """Render a CLP amount in the quotation's display currency.

    CLP: ``$ 1.234.567`` (rounded half up to whole pesos).
    USD: ``US$ 1,299.50`` (amount divided by ``rate``).
    """
    if Currency(currency) is Currency.USD:
        if rate is None or rate <= 0:
            raise ValidationError("La tasa de cambio debe ser mayor a 0")
        usd = Decimal(str(amount_local / rate)).quantize(Decimal("0.01"), ROUND_HALF_UP)
        return f"US$ {usd:,.2f}"

    pesos = int(Decimal(str(amount_local)).quantize(Decimal("1"), ROUND_HALF_UP))
    sign = "-" if pesos < 0 else ""
    return f"$ {sign}{_group_thousands(str(abs(pesos)), '.')}"


def price_with_profit(cost: float, percent: float) -> float:
    """Sale price from a cost and a markup percentage."""
    if not cost or cost <= 0:
        return 0.0
    return round(cost * (1 + percent / 100), 2)


def profit_percent(cost: float, price: float) -> float:
    """Markup percentage of ``price`` over ``cost``."""
    if not cost or cost <= 0:
        return 0.0
    return round((price - cost) / cost * 100, 2)
