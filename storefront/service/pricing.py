"""
Расчёт сумм заказа по содержимому корзины.

Все суммы считаются в Decimal без промежуточного округления; до копеек
значения приводятся только при сохранении и выводе (``to_money``).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol

from storefront.core.config import settings


CENT = Decimal("0.01")


class PricedLine(Protocol):
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class PricingPolicy:
    free_shipping_threshold: Decimal
    flat_shipping_rate: Decimal
    tax_rate: Decimal


DEFAULT_POLICY = PricingPolicy(
    free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
    flat_shipping_rate=settings.FLAT_SHIPPING_RATE,
    tax_rate=settings.TAX_RATE,
)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def rounded(self) -> "OrderTotals":
        return OrderTotals(
            subtotal=to_money(self.subtotal),
            shipping_cost=to_money(self.shipping_cost),
            tax_amount=to_money(self.tax_amount),
            total_amount=to_money(self.total_amount),
        )


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(line: PricedLine) -> Decimal:
    return Decimal(line.unit_price) * int(line.quantity)


def calculate_totals(
    lines: Iterable[PricedLine],
    policy: PricingPolicy = DEFAULT_POLICY,
) -> OrderTotals:
    subtotal = sum((line_total(line) for line in lines), Decimal("0"))
    # порог бесплатной доставки сравнивается с неокруглённой суммой
    shipping_cost = Decimal("0") if subtotal >= policy.free_shipping_threshold else policy.flat_shipping_rate
    tax_amount = subtotal * policy.tax_rate
    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax_amount=tax_amount,
        total_amount=subtotal + shipping_cost + tax_amount,
    )


def format_currency(amount: Decimal, currency: str = "USD") -> str:
    symbols = {"USD": "$", "EUR": "€", "GBP": "£"}
    value = to_money(amount)
    sign = "-" if value < 0 else ""
    formatted = f"{abs(value):,.2f}"
    symbol = symbols.get(currency)
    if symbol is None:
        return f"{sign}{formatted} {currency}"
    return f"{sign}{symbol}{formatted}"
